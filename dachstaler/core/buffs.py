"""
Timed buffs.

Three record shapes live under `buff:{user}:{key}`:
    TimedBuff      {"expireAt": ms}
    BuffWithUses   {"expireAt": ms, "uses": n}
    BuffWithStack  {"expireAt": ms, "stack": n}

Reads are expiry-aware: an expired, exhausted or malformed record is deleted
(best effort) and reported inactive, even if the store TTL has not fired yet.
"""

import asyncio
from dataclasses import dataclass
from typing import Generic, Optional, Type, TypeVar

import orjson
from pydantic import BaseModel, ConfigDict, Field

from dachstaler.core import keys
from dachstaler.core.context import SlotsContext
from dachstaler.core.exceptions import StoreError
from dachstaler.core.games.slots import GridModifiers
from dachstaler.core.logger import get_logger, log_error
from dachstaler.core.retry import KeyUpdate, optimistic_update
from dachstaler.core.tables import (
    BUFF_TTL_BUFFER_SECONDS,
    RAGE_MODE_LOSS_STACK,
    RAGE_MODE_MAX_STACK,
)

logger = get_logger("buffs")


# ==================== Records ====================

class TimedBuff(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expire_at: int = Field(alias="expireAt")

    def is_active(self, now: int) -> bool:
        return now < self.expire_at

    def dumps(self) -> str:
        return orjson.dumps(self.model_dump(by_alias=True)).decode()


class BuffWithUses(TimedBuff):
    uses: int

    def is_active(self, now: int) -> bool:
        return now < self.expire_at and self.uses > 0


class BuffWithStack(TimedBuff):
    stack: int = Field(default=0, ge=0, le=RAGE_MODE_MAX_STACK)


R = TypeVar("R", bound=TimedBuff)


@dataclass
class BuffState(Generic[R]):
    active: bool
    data: Optional[R] = None


def calculate_buff_ttl(expire_at: int, now: int) -> int:
    """Store TTL in seconds: time until expiry plus a buffer, never below the buffer."""
    remaining = (expire_at - now) // 1000
    return max(BUFF_TTL_BUFFER_SECONDS, remaining + BUFF_TTL_BUFFER_SECONDS)


def _buff_key(username: str, buff_key: str) -> str:
    return keys.user_key(keys.BUFF, username, buff_key)


async def _delete_best_effort(ctx: SlotsContext, key: str, context: str):
    try:
        await ctx.store.delete(key)
    except StoreError as e:
        log_error(logger, context, e, key=key)


async def _read_buff(ctx: SlotsContext, username: str, buff_key: str, model: Type[R]) -> BuffState[R]:
    key = _buff_key(username, buff_key)
    try:
        raw = await ctx.store.get(key)
    except StoreError as e:
        log_error(logger, "read_buff", e, username=username, buff=buff_key)
        return BuffState(False)

    if raw is None:
        return BuffState(False)

    try:
        record = model.model_validate(orjson.loads(raw))
    except ValueError:
        logger.warning(f"Malformed buff {key}, removing")
        await _delete_best_effort(ctx, key, "read_buff.cleanup")
        return BuffState(False)

    if not record.is_active(ctx.now()):
        await _delete_best_effort(ctx, key, "read_buff.expired")
        return BuffState(False)

    return BuffState(True, record)


# ==================== Activation ====================

async def _write_buff(ctx: SlotsContext, username: str, buff_key: str, record: TimedBuff, context: str):
    try:
        await ctx.store.put(
            _buff_key(username, buff_key),
            record.dumps(),
            ttl=calculate_buff_ttl(record.expire_at, ctx.now()),
        )
    except StoreError as e:
        log_error(logger, context, e, username=username, buff=buff_key)


async def activate_buff(ctx: SlotsContext, username: str, buff_key: str, duration: int):
    record = TimedBuff(expire_at=ctx.now() + duration * 1000)
    await _write_buff(ctx, username, buff_key, record, "activate_buff")


async def activate_buff_with_uses(ctx: SlotsContext, username: str, buff_key: str, duration: int, uses: int):
    record = BuffWithUses(expire_at=ctx.now() + duration * 1000, uses=uses)
    await _write_buff(ctx, username, buff_key, record, "activate_buff_with_uses")


async def activate_buff_with_stack(ctx: SlotsContext, username: str, buff_key: str, duration: int):
    record = BuffWithStack(expire_at=ctx.now() + duration * 1000, stack=0)
    await _write_buff(ctx, username, buff_key, record, "activate_buff_with_stack")


# ==================== Reads ====================

async def is_buff_active(ctx: SlotsContext, username: str, buff_key: str) -> bool:
    return (await _read_buff(ctx, username, buff_key, TimedBuff)).active


async def get_timed_buff(ctx: SlotsContext, username: str, buff_key: str) -> BuffState[TimedBuff]:
    return await _read_buff(ctx, username, buff_key, TimedBuff)


async def get_buff_with_uses(ctx: SlotsContext, username: str, buff_key: str) -> BuffState[BuffWithUses]:
    return await _read_buff(ctx, username, buff_key, BuffWithUses)


async def get_buff_with_stack(ctx: SlotsContext, username: str, buff_key: str) -> BuffState[BuffWithStack]:
    return await _read_buff(ctx, username, buff_key, BuffWithStack)


# ==================== Mutations ====================

async def decrement_buff_uses(ctx: SlotsContext, username: str, buff_key: str) -> Optional[int]:
    """
    Use up one charge. The record is deleted when the last charge goes.
    Returns the remaining uses, or None if nothing was decremented.
    """
    now = ctx.now()

    def compute(raw):
        if raw is None:
            return KeyUpdate.unchanged()
        try:
            record = BuffWithUses.model_validate(orjson.loads(raw))
        except ValueError:
            return KeyUpdate(None)
        if not record.is_active(now):
            return KeyUpdate(None)
        remaining = record.uses - 1
        if remaining <= 0:
            return KeyUpdate(None, result=0)
        updated = record.model_copy(update={"uses": remaining})
        return KeyUpdate(updated.dumps(), ttl=calculate_buff_ttl(record.expire_at, now), result=remaining)

    outcome = await optimistic_update(
        ctx.store, _buff_key(username, buff_key), compute, ctx.settings.retry, "decrement_buff_uses"
    )
    return outcome.result if outcome.success else None


async def update_rage_stack(ctx: SlotsContext, username: str, state: BuffState[BuffWithStack], won: bool):
    """Grow the rage stack on a loss (capped) and reset it on a win."""
    if not state.active or state.data is None:
        return
    record = state.data
    if won:
        stack = 0
    else:
        stack = min(record.stack + RAGE_MODE_LOSS_STACK, RAGE_MODE_MAX_STACK)
    await _write_buff(ctx, username, "rage_mode", record.model_copy(update={"stack": stack}), "update_rage_stack")


# ==================== Grid modifiers ====================

@dataclass
class GridBuffs:
    """Grid-relevant buff state read at the start of a spin or peek."""

    modifiers: GridModifiers
    locator: BuffState[BuffWithUses]
    rage: BuffState[BuffWithStack]


async def load_grid_buffs(ctx: SlotsContext, username: str) -> GridBuffs:
    """Read every buff that changes grid generation, in parallel."""
    lucky_charm, star_magnet, diamond_rush, locator, rage = await asyncio.gather(
        is_buff_active(ctx, username, "lucky_charm"),
        is_buff_active(ctx, username, "star_magnet"),
        is_buff_active(ctx, username, "diamond_rush"),
        get_buff_with_uses(ctx, username, "dachs_locator"),
        get_buff_with_stack(ctx, username, "rage_mode"),
    )
    modifiers = GridModifiers(
        lucky_charm=lucky_charm,
        star_magnet=star_magnet,
        diamond_rush=diamond_rush,
        dachs_locator=locator.active,
        rage_stack=rage.data.stack if rage.active and rage.data else 0,
    )
    return GridBuffs(modifiers=modifiers, locator=locator, rage=rage)
