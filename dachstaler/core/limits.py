"""Weekly purchase counters (Dachs boost, spin bundle). A week starts Monday in the game timezone."""

from typing import Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field

from dachstaler.core import keys
from dachstaler.core.context import SlotsContext
from dachstaler.core.exceptions import StoreError
from dachstaler.core.logger import get_logger, log_error
from dachstaler.core.retry import KeyUpdate, optimistic_update
from dachstaler.core.tables import WEEKLY_COUNTER_TTL_SECONDS
from dachstaler.core.timeutil import week_start

logger = get_logger("limits")


class WeeklyCounter(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int = 0
    week_start: str = Field(alias="weekStart")

    def dumps(self) -> str:
        return orjson.dumps(self.model_dump(by_alias=True)).decode()


def current_week_start(ctx: SlotsContext) -> str:
    return week_start(ctx.now(), ctx.economy.timezone)


def _counter_key(username: str, limit_key: str) -> str:
    return keys.user_key(keys.PURCHASES, username, limit_key)


def parse_counter(raw: Optional[str], this_week: str) -> WeeklyCounter:
    """Decode a counter; anything stale or malformed counts as zero for this week."""
    fresh = WeeklyCounter(count=0, week_start=this_week)
    if raw is None:
        return fresh
    try:
        counter = WeeklyCounter.model_validate(orjson.loads(raw))
    except ValueError:
        return fresh
    if counter.week_start != this_week:
        return fresh
    return counter


async def get_weekly_purchases(ctx: SlotsContext, username: str, limit_key: str) -> WeeklyCounter:
    this_week = current_week_start(ctx)
    try:
        raw = await ctx.store.get(_counter_key(username, limit_key))
    except StoreError as e:
        log_error(logger, "get_weekly_purchases", e, username=username, limit=limit_key)
        raw = None
    return parse_counter(raw, this_week)


async def increment_weekly_purchases(ctx: SlotsContext, username: str, limit_key: str) -> int:
    this_week = current_week_start(ctx)

    def compute(raw):
        counter = parse_counter(raw, this_week)
        updated = WeeklyCounter(count=counter.count + 1, week_start=this_week)
        return KeyUpdate(updated.dumps(), ttl=WEEKLY_COUNTER_TTL_SECONDS, result=updated.count)

    outcome = await optimistic_update(
        ctx.store,
        _counter_key(username, limit_key),
        compute,
        ctx.settings.retry,
        "increment_weekly_purchases",
    )
    return outcome.result if outcome.success else 0
