import orjson
import pytest

from conftest import FailingStore, make_context
from dachstaler.core import buffs
from dachstaler.core.buffs import BuffState, BuffWithStack, calculate_buff_ttl

pytestmark = pytest.mark.asyncio

USER = "Alice"


def buff_key(name):
    return f"buff:alice:{name}"


async def test_activated_buff_is_active_until_expiry(ctx, store, clock):
    await buffs.activate_buff(ctx, USER, "lucky_charm", 3600)
    assert await buffs.is_buff_active(ctx, USER, "lucky_charm")

    clock.advance(3600)
    assert not await buffs.is_buff_active(ctx, USER, "lucky_charm")
    assert await store.get(buff_key("lucky_charm")) is None


async def test_buff_record_uses_expire_at_field(ctx, store, clock):
    await buffs.activate_buff(ctx, USER, "golden_hour", 60)
    record = orjson.loads(await store.get(buff_key("golden_hour")))
    assert record == {"expireAt": clock() + 60_000}


async def test_expired_read_is_idempotent_when_cleanup_fails(clock):
    store = FailingStore(fail_delete=True)
    ctx = make_context(store=store, clock=clock)
    await store.put(buff_key("happy_hour"), orjson.dumps({"expireAt": clock() - 1}).decode())

    assert not await buffs.is_buff_active(ctx, USER, "happy_hour")
    assert not await buffs.is_buff_active(ctx, USER, "happy_hour")
    # delete failed, so the stale record is still there
    assert await store.get(buff_key("happy_hour")) is not None


async def test_malformed_buff_is_removed(ctx, store):
    await store.put(buff_key("star_magnet"), "{not json")
    assert not await buffs.is_buff_active(ctx, USER, "star_magnet")
    assert await store.get(buff_key("star_magnet")) is None


async def test_read_failure_reports_inactive(clock):
    ctx = make_context(store=FailingStore(fail_get=True), clock=clock)
    assert not await buffs.is_buff_active(ctx, USER, "lucky_charm")


async def test_buff_with_uses_decrements_and_deletes(ctx, store):
    await buffs.activate_buff_with_uses(ctx, USER, "dachs_locator", 600, 2)

    state = await buffs.get_buff_with_uses(ctx, USER, "dachs_locator")
    assert state.active and state.data.uses == 2

    assert await buffs.decrement_buff_uses(ctx, USER, "dachs_locator") == 1
    assert await buffs.decrement_buff_uses(ctx, USER, "dachs_locator") == 0
    assert await store.get(buff_key("dachs_locator")) is None
    assert not (await buffs.get_buff_with_uses(ctx, USER, "dachs_locator")).active


async def test_decrement_without_buff_is_noop(ctx):
    assert await buffs.decrement_buff_uses(ctx, USER, "dachs_locator") is None


async def test_exhausted_uses_read_as_inactive(ctx, store, clock):
    await store.put(
        buff_key("dachs_locator"),
        orjson.dumps({"expireAt": clock() + 60_000, "uses": 0}).decode(),
    )
    assert not (await buffs.get_buff_with_uses(ctx, USER, "dachs_locator")).active
    assert await store.get(buff_key("dachs_locator")) is None


async def test_rage_stack_grows_on_loss_and_resets_on_win(ctx):
    await buffs.activate_buff_with_stack(ctx, USER, "rage_mode", 1800)

    state = await buffs.get_buff_with_stack(ctx, USER, "rage_mode")
    assert state.data.stack == 0
    await buffs.update_rage_stack(ctx, USER, state, won=False)
    state = await buffs.get_buff_with_stack(ctx, USER, "rage_mode")
    assert state.data.stack == 5

    await buffs.update_rage_stack(ctx, USER, state, won=True)
    state = await buffs.get_buff_with_stack(ctx, USER, "rage_mode")
    assert state.data.stack == 0


async def test_rage_stack_is_capped(ctx, clock):
    state = BuffState(True, BuffWithStack(expire_at=clock() + 60_000, stack=98))
    await buffs.update_rage_stack(ctx, USER, state, won=False)
    assert (await buffs.get_buff_with_stack(ctx, USER, "rage_mode")).data.stack == 100


async def test_rage_update_ignored_when_inactive(ctx, store):
    await buffs.update_rage_stack(ctx, USER, BuffState(False), won=False)
    assert await store.get(buff_key("rage_mode")) is None


async def test_load_grid_buffs_collects_modifiers(ctx):
    await buffs.activate_buff(ctx, USER, "lucky_charm", 3600)
    await buffs.activate_buff(ctx, USER, "diamond_rush", 3600)
    await buffs.activate_buff_with_uses(ctx, USER, "dachs_locator", 600, 10)

    grid_buffs = await buffs.load_grid_buffs(ctx, USER)
    mods = grid_buffs.modifiers
    assert mods.lucky_charm and mods.diamond_rush and mods.dachs_locator
    assert not mods.star_magnet
    assert mods.rage_stack == 0
    assert grid_buffs.locator.active
    assert not grid_buffs.rage.active


async def test_buff_ttl_has_buffer():
    now = 1_000_000
    assert calculate_buff_ttl(now + 3_600_000, now) == 3660
    assert calculate_buff_ttl(now - 5_000, now) == 60
