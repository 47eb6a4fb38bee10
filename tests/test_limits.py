import orjson
import pytest

from dachstaler.core import limits
from dachstaler.core.limits import parse_counter

pytestmark = pytest.mark.asyncio

USER = "Carol"
KEY = "purchases:carol:bundle"


async def test_current_week_starts_monday(ctx, clock):
    # 2026-01-05 is a Monday
    assert limits.current_week_start(ctx) == "2026-01-05"
    clock.advance(6 * 86400)
    assert limits.current_week_start(ctx) == "2026-01-05"
    clock.advance(86400)
    assert limits.current_week_start(ctx) == "2026-01-12"


async def test_week_boundary_is_local_midnight(ctx, clock):
    # Sunday 2026-01-11 23:30 UTC is already Monday 00:30 in Berlin
    clock.now_ms += (6 * 86400 + 13 * 3600 + 30 * 60) * 1000
    assert limits.current_week_start(ctx) == "2026-01-12"


async def test_stale_counter_reads_as_zero(ctx, store):
    await store.put(KEY, orjson.dumps({"count": 3, "weekStart": "2025-12-29"}).decode())
    counter = await limits.get_weekly_purchases(ctx, USER, "bundle")
    assert counter.count == 0
    assert counter.week_start == "2026-01-05"


async def test_increment_restarts_stale_week(ctx, store):
    await store.put(KEY, orjson.dumps({"count": 3, "weekStart": "2025-12-29"}).decode())
    assert await limits.increment_weekly_purchases(ctx, USER, "bundle") == 1
    stored = orjson.loads(await store.get(KEY))
    assert stored == {"count": 1, "weekStart": "2026-01-05"}


async def test_increment_within_week(ctx):
    for expected in (1, 2, 3):
        assert await limits.increment_weekly_purchases(ctx, USER, "bundle") == expected
    assert (await limits.get_weekly_purchases(ctx, USER, "bundle")).count == 3


async def test_malformed_counter_is_zero():
    assert parse_counter("nope", "2026-01-05").count == 0
    assert parse_counter('{"count": 2}', "2026-01-05").count == 0
    assert parse_counter('{"count": 2, "weekStart": "2026-01-05"}', "2026-01-05").count == 2
