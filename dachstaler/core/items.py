"""
One-time items and per-user inventories: symbol boosts, insurance, the win
multiplier, the free-spin ledger, guaranteed pair / wild card tokens and
stored peek grids.
"""

from dataclasses import dataclass
from typing import List, Optional

import orjson
from pydantic import BaseModel, Field, TypeAdapter

from dachstaler.core import keys
from dachstaler.core.context import SlotsContext
from dachstaler.core.exceptions import StoreError
from dachstaler.core.logger import get_logger, log_error
from dachstaler.core.retry import KeyUpdate, consume_marker, optimistic_update
from dachstaler.core.tables import GRID_SIZE, PEEK_TTL_SECONDS

logger = get_logger("items")


async def _get(ctx: SlotsContext, key: str, context: str) -> Optional[str]:
    try:
        return await ctx.store.get(key)
    except StoreError as e:
        log_error(logger, context, e, key=key)
        return None


async def _put(ctx: SlotsContext, key: str, value: str, context: str, ttl: Optional[int] = None):
    try:
        await ctx.store.put(key, value, ttl=ttl)
    except StoreError as e:
        log_error(logger, context, e, key=key)


async def _delete(ctx: SlotsContext, key: str, context: str):
    try:
        await ctx.store.delete(key)
    except StoreError as e:
        log_error(logger, context, e, key=key)


# ==================== Symbol boosts ====================

async def add_boost(ctx: SlotsContext, username: str, symbol: str):
    await _put(ctx, keys.user_key(keys.BOOST, username, symbol), keys.KV_ACTIVE, "add_boost")


async def has_boost(ctx: SlotsContext, username: str, symbol: str) -> bool:
    return await _get(ctx, keys.user_key(keys.BOOST, username, symbol), "has_boost") == keys.KV_ACTIVE


async def consume_boost(ctx: SlotsContext, username: str, symbol: str) -> bool:
    return await consume_marker(
        ctx.store, keys.user_key(keys.BOOST, username, symbol), keys.KV_ACTIVE, "consume_boost"
    )


# ==================== Win multiplier ====================

async def add_win_multiplier(ctx: SlotsContext, username: str):
    await _put(ctx, keys.user_key(keys.WIN_MULTIPLIER, username), keys.KV_ACTIVE, "add_win_multiplier")


async def has_win_multiplier(ctx: SlotsContext, username: str) -> bool:
    return await _get(ctx, keys.user_key(keys.WIN_MULTIPLIER, username), "has_win_multiplier") == keys.KV_ACTIVE


async def consume_win_multiplier(ctx: SlotsContext, username: str) -> bool:
    return await consume_marker(
        ctx.store, keys.user_key(keys.WIN_MULTIPLIER, username), keys.KV_ACTIVE, "consume_win_multiplier"
    )


# ==================== Insurance ====================

def _parse_count(raw: Optional[str]) -> int:
    if raw is None:
        return 0
    try:
        return max(0, int(raw))
    except ValueError:
        return 0


async def get_insurance_count(ctx: SlotsContext, username: str) -> int:
    return _parse_count(await _get(ctx, keys.user_key(keys.INSURANCE, username), "get_insurance_count"))


async def add_insurance(ctx: SlotsContext, username: str, count: int) -> int:
    def compute(raw):
        new_count = _parse_count(raw) + count
        return KeyUpdate(str(new_count), result=new_count)

    outcome = await optimistic_update(
        ctx.store, keys.user_key(keys.INSURANCE, username), compute, ctx.settings.retry, "add_insurance"
    )
    return outcome.result if outcome.success else 0


async def decrement_insurance(ctx: SlotsContext, username: str) -> int:
    """Use one insurance charge; the key disappears at zero. Returns the remaining count."""
    def compute(raw):
        current = _parse_count(raw)
        if current <= 0:
            return KeyUpdate.unchanged(0)
        remaining = current - 1
        return KeyUpdate(str(remaining) if remaining > 0 else None, result=remaining)

    outcome = await optimistic_update(
        ctx.store, keys.user_key(keys.INSURANCE, username), compute, ctx.settings.retry, "decrement_insurance"
    )
    return outcome.result if outcome.success else 0


# ==================== Free spins ====================

class FreeSpinBucket(BaseModel):
    multiplier: int = Field(ge=1)
    count: int = Field(ge=0)


_buckets_adapter = TypeAdapter(List[FreeSpinBucket])


@dataclass
class FreeSpinUse:
    used: bool
    multiplier: int = 0


def parse_free_spins(raw: Optional[str]) -> List[FreeSpinBucket]:
    """Decode the ledger, dropping empty buckets; malformed data reads as empty."""
    if raw is None:
        return []
    try:
        buckets = _buckets_adapter.validate_python(orjson.loads(raw))
    except ValueError:
        logger.warning("Malformed free spin ledger, treating as empty")
        return []
    return sorted((b for b in buckets if b.count > 0), key=lambda b: b.multiplier)


def _dump_free_spins(buckets: List[FreeSpinBucket]) -> Optional[str]:
    if not buckets:
        return None
    return orjson.dumps([b.model_dump() for b in buckets]).decode()


async def get_free_spins(ctx: SlotsContext, username: str) -> List[FreeSpinBucket]:
    key = keys.user_key(keys.FREE_SPINS, username)
    raw = await _get(ctx, key, "get_free_spins")
    buckets = parse_free_spins(raw)
    if raw is not None and not buckets:
        await _delete(ctx, key, "get_free_spins.cleanup")
    return buckets


async def add_free_spins(ctx: SlotsContext, username: str, count: int, multiplier: int) -> bool:
    """Merge `count` spins into the bucket for `multiplier`, keeping buckets sorted ascending."""
    if count <= 0:
        return True

    def compute(raw):
        buckets = parse_free_spins(raw)
        for bucket in buckets:
            if bucket.multiplier == multiplier:
                bucket.count += count
                break
        else:
            buckets.append(FreeSpinBucket(multiplier=multiplier, count=count))
        buckets.sort(key=lambda b: b.multiplier)
        return KeyUpdate(_dump_free_spins(buckets))

    outcome = await optimistic_update(
        ctx.store, keys.user_key(keys.FREE_SPINS, username), compute, ctx.settings.retry, "add_free_spins"
    )
    return outcome.success


async def consume_free_spin(ctx: SlotsContext, username: str) -> FreeSpinUse:
    """Take one spin from the lowest-multiplier bucket."""
    def compute(raw):
        buckets = parse_free_spins(raw)
        if not buckets:
            if raw is not None:
                return KeyUpdate(None, result=FreeSpinUse(False))
            return KeyUpdate.unchanged(FreeSpinUse(False))
        lowest = buckets[0]
        lowest.count -= 1
        remaining = [b for b in buckets if b.count > 0]
        return KeyUpdate(_dump_free_spins(remaining), result=FreeSpinUse(True, lowest.multiplier))

    outcome = await optimistic_update(
        ctx.store, keys.user_key(keys.FREE_SPINS, username), compute, ctx.settings.retry, "consume_free_spin"
    )
    if not outcome.success:
        return FreeSpinUse(False)
    return outcome.result


# ==================== Guaranteed pair & wild card ====================

async def activate_guaranteed_pair(ctx: SlotsContext, username: str):
    await _put(ctx, keys.user_key(keys.GUARANTEED_PAIR, username), keys.KV_ACTIVE, "activate_guaranteed_pair")


async def has_guaranteed_pair(ctx: SlotsContext, username: str) -> bool:
    key = keys.user_key(keys.GUARANTEED_PAIR, username)
    return await _get(ctx, key, "has_guaranteed_pair") == keys.KV_ACTIVE


async def consume_guaranteed_pair(ctx: SlotsContext, username: str):
    await _delete(ctx, keys.user_key(keys.GUARANTEED_PAIR, username), "consume_guaranteed_pair")


async def activate_wild_card(ctx: SlotsContext, username: str):
    await _put(ctx, keys.user_key(keys.WILD_CARD, username), keys.KV_ACTIVE, "activate_wild_card")


async def has_wild_card(ctx: SlotsContext, username: str) -> bool:
    return await _get(ctx, keys.user_key(keys.WILD_CARD, username), "has_wild_card") == keys.KV_ACTIVE


async def consume_wild_card(ctx: SlotsContext, username: str):
    await _delete(ctx, keys.user_key(keys.WILD_CARD, username), "consume_wild_card")


# ==================== Peek grid ====================

async def store_peek_grid(ctx: SlotsContext, username: str, grid: List[str]):
    await _put(
        ctx,
        keys.user_key(keys.PEEK, username),
        orjson.dumps(grid).decode(),
        "store_peek_grid",
        ttl=PEEK_TTL_SECONDS,
    )


async def take_peek_grid(ctx: SlotsContext, username: str) -> Optional[List[str]]:
    """
    Pop a stored peek grid. The key is deleted whether or not the value is
    usable; a malformed grid returns None so the caller rolls a fresh one.
    """
    key = keys.user_key(keys.PEEK, username)
    raw = await _get(ctx, key, "take_peek_grid")
    if raw is None:
        return None
    await _delete(ctx, key, "take_peek_grid")
    try:
        grid = orjson.loads(raw)
    except orjson.JSONDecodeError:
        logger.warning(f"Malformed peek grid for {username}, rolling a new one")
        return None
    if not isinstance(grid, list) or len(grid) != GRID_SIZE or not all(isinstance(s, str) for s in grid):
        logger.warning(f"Invalid peek grid for {username}, rolling a new one")
        return None
    return grid
