"""
Per-user account state: balance, cooldown, prestige rank, unlocks, streaks,
the daily bonus marker, monthly login days, the disclaimer flag and self-bans.

Reads degrade to safe defaults when the store fails; writes are logged and
swallowed so a spin or purchase still completes.
"""

from typing import List, Optional, Tuple

import orjson
from pydantic import BaseModel, ConfigDict, Field

from dachstaler.core import keys
from dachstaler.core.context import SlotsContext
from dachstaler.core.exceptions import StoreError
from dachstaler.core.logger import get_logger, log_error
from dachstaler.core.retry import KeyUpdate, optimistic_update
from dachstaler.core.tables import (
    LAST_ACTIVE_TTL_SECONDS,
    PRESTIGE_RANKS,
    STREAK_MULTIPLIER_INCREMENT,
    STREAK_MULTIPLIER_MAX,
    STREAK_TTL_SECONDS,
    DAILY_TTL_SECONDS,
)
from dachstaler.core.timeutil import local_datetime, local_month

logger = get_logger("accounts")


# ==================== Balance ====================

def clamp_balance(ctx: SlotsContext, amount: int) -> int:
    return max(0, min(int(amount), ctx.economy.max_balance))


async def get_balance(ctx: SlotsContext, username: str) -> int:
    """Current balance; a user without one is created with the starting balance."""
    key = keys.user_key(keys.BALANCE, username)
    starting = ctx.economy.starting_balance
    try:
        raw = await ctx.store.get(key)
    except StoreError as e:
        log_error(logger, "get_balance", e, username=username)
        return starting

    if raw is None:
        await set_balance(ctx, username, starting)
        return starting
    try:
        return clamp_balance(ctx, int(raw))
    except ValueError:
        logger.warning(f"Corrupt balance for {username}: {raw!r}, resetting")
        await set_balance(ctx, username, starting)
        return starting


async def set_balance(ctx: SlotsContext, username: str, amount: int) -> int:
    """Persist a balance clamped to [0, max_balance]; returns the stored value."""
    value = clamp_balance(ctx, amount)
    try:
        await ctx.store.put(keys.user_key(keys.BALANCE, username), str(value))
    except StoreError as e:
        log_error(logger, "set_balance", e, username=username, amount=value)
    return value


async def credit_balance(ctx: SlotsContext, username: str, amount: int) -> int:
    current = await get_balance(ctx, username)
    return await set_balance(ctx, username, current + amount)


async def deduct_balance(ctx: SlotsContext, username: str, amount: int) -> Tuple[bool, int]:
    """Debit `amount` if the user can afford it. Returns (success, balance after)."""
    current = await get_balance(ctx, username)
    if current < amount:
        return False, current
    return True, await set_balance(ctx, username, current - amount)


async def apply_balance_delta(ctx: SlotsContext, username: str, delta: int) -> Tuple[int, int]:
    """
    Apply a signed delta with clamping.

    Returns (new balance, applied delta); the applied delta differs from
    `delta` when the result was clamped at zero or the cap.
    """
    current = await get_balance(ctx, username)
    new_balance = await set_balance(ctx, username, current + delta)
    return new_balance, new_balance - current


# ==================== Cooldown & activity ====================

async def get_last_spin(ctx: SlotsContext, username: str) -> Optional[int]:
    try:
        raw = await ctx.store.get(keys.user_key(keys.COOLDOWN, username))
        return int(raw) if raw is not None else None
    except (StoreError, ValueError) as e:
        log_error(logger, "get_last_spin", e, username=username)
        return None


async def set_last_spin(ctx: SlotsContext, username: str, timestamp: int):
    try:
        await ctx.store.put(
            keys.user_key(keys.COOLDOWN, username),
            str(timestamp),
            ttl=ctx.economy.cooldown_ttl_seconds,
        )
    except StoreError as e:
        log_error(logger, "set_last_spin", e, username=username)


async def set_last_active(ctx: SlotsContext, username: str):
    try:
        await ctx.store.put(
            keys.user_key(keys.LAST_ACTIVE, username),
            str(ctx.now()),
            ttl=LAST_ACTIVE_TTL_SECONDS,
        )
    except StoreError as e:
        log_error(logger, "set_last_active", e, username=username)


# ==================== Prestige & unlocks ====================

async def get_prestige_rank(ctx: SlotsContext, username: str) -> Optional[str]:
    try:
        rank = await ctx.store.get(keys.user_key(keys.RANK, username))
    except StoreError as e:
        log_error(logger, "get_prestige_rank", e, username=username)
        return None
    return rank if rank in PRESTIGE_RANKS else None


async def set_prestige_rank(ctx: SlotsContext, username: str, rank: str):
    try:
        await ctx.store.put(keys.user_key(keys.RANK, username), rank)
    except StoreError as e:
        log_error(logger, "set_prestige_rank", e, username=username, rank=rank)


def rank_index(rank: Optional[str]) -> int:
    """Position in the prestige ladder, -1 for no rank."""
    return PRESTIGE_RANKS.index(rank) if rank in PRESTIGE_RANKS else -1


async def has_unlock(ctx: SlotsContext, username: str, unlock_key: str) -> bool:
    try:
        value = await ctx.store.get(keys.user_key(keys.UNLOCK, username, unlock_key))
    except StoreError as e:
        log_error(logger, "has_unlock", e, username=username, unlock=unlock_key)
        return False
    return value == keys.KV_TRUE


async def set_unlock(ctx: SlotsContext, username: str, unlock_key: str):
    try:
        await ctx.store.put(keys.user_key(keys.UNLOCK, username, unlock_key), keys.KV_TRUE)
    except StoreError as e:
        log_error(logger, "set_unlock", e, username=username, unlock=unlock_key)


# ==================== Streaks ====================

class Streak(BaseModel):
    wins: int = 0
    losses: int = 0


async def get_streak(ctx: SlotsContext, username: str) -> Streak:
    key = keys.user_key(keys.STREAK, username)
    try:
        raw = await ctx.store.get(key)
    except StoreError as e:
        log_error(logger, "get_streak", e, username=username)
        return Streak()
    if raw is None:
        return Streak()
    try:
        return Streak.model_validate(orjson.loads(raw))
    except ValueError:
        logger.warning(f"Corrupt streak for {username}, clearing")
        await _delete_quietly(ctx, key, "get_streak")
        return Streak()


async def set_streak(ctx: SlotsContext, username: str, streak: Streak):
    try:
        await ctx.store.put(
            keys.user_key(keys.STREAK, username),
            orjson.dumps(streak.model_dump()).decode(),
            ttl=STREAK_TTL_SECONDS,
        )
    except StoreError as e:
        log_error(logger, "set_streak", e, username=username)


def _parse_multiplier(raw: Optional[str]) -> float:
    if raw is None:
        return 1.0
    try:
        return max(1.0, float(raw))
    except ValueError:
        return 1.0


async def get_streak_multiplier(ctx: SlotsContext, username: str) -> float:
    try:
        raw = await ctx.store.get(keys.user_key(keys.STREAK_MULTIPLIER, username))
    except StoreError as e:
        log_error(logger, "get_streak_multiplier", e, username=username)
        return 1.0
    return _parse_multiplier(raw)


async def increment_streak_multiplier(ctx: SlotsContext, username: str) -> float:
    def compute(raw):
        current = _parse_multiplier(raw)
        new_value = round(min(current + STREAK_MULTIPLIER_INCREMENT, STREAK_MULTIPLIER_MAX), 1)
        return KeyUpdate(str(new_value), ttl=STREAK_TTL_SECONDS, result=new_value)

    outcome = await optimistic_update(
        ctx.store,
        keys.user_key(keys.STREAK_MULTIPLIER, username),
        compute,
        ctx.settings.retry,
        "increment_streak_multiplier",
    )
    return outcome.result if outcome.success else 1.0


async def reset_streak_multiplier(ctx: SlotsContext, username: str):
    await _delete_quietly(ctx, keys.user_key(keys.STREAK_MULTIPLIER, username), "reset_streak_multiplier")


# ==================== Daily ====================

async def get_last_daily(ctx: SlotsContext, username: str) -> Optional[int]:
    try:
        raw = await ctx.store.get(keys.user_key(keys.DAILY, username))
        return int(raw) if raw is not None else None
    except (StoreError, ValueError) as e:
        log_error(logger, "get_last_daily", e, username=username)
        return None


async def set_last_daily(ctx: SlotsContext, username: str, timestamp: int):
    try:
        await ctx.store.put(keys.user_key(keys.DAILY, username), str(timestamp), ttl=DAILY_TTL_SECONDS)
    except StoreError as e:
        log_error(logger, "set_last_daily", e, username=username)


# ==================== Disclaimer & self-ban ====================

async def has_accepted_disclaimer(ctx: SlotsContext, username: str) -> bool:
    try:
        value = await ctx.store.get(keys.user_key(keys.DISCLAIMER, username))
    except StoreError as e:
        log_error(logger, "has_accepted_disclaimer", e, username=username)
        return False
    return value == keys.KV_ACCEPTED


async def set_disclaimer_accepted(ctx: SlotsContext, username: str):
    try:
        await ctx.store.put(keys.user_key(keys.DISCLAIMER, username), keys.KV_ACCEPTED)
    except StoreError as e:
        log_error(logger, "set_disclaimer_accepted", e, username=username)


class SelfBan(BaseModel):
    timestamp: int
    date: str


async def get_self_ban(ctx: SlotsContext, username: str) -> Optional[SelfBan]:
    try:
        raw = await ctx.store.get(keys.user_key(keys.SELFBAN, username))
    except StoreError as e:
        log_error(logger, "get_self_ban", e, username=username)
        return None
    if raw is None:
        return None
    try:
        return SelfBan.model_validate(orjson.loads(raw))
    except ValueError:
        # Unreadable record still counts as a ban
        logger.warning(f"Corrupt self-ban record for {username}")
        return SelfBan(timestamp=0, date="unknown")


async def set_self_ban(ctx: SlotsContext, username: str) -> SelfBan:
    now = ctx.now()
    ban = SelfBan(
        timestamp=now,
        date=local_datetime(now, ctx.economy.timezone).strftime("%d.%m.%Y %H:%M"),
    )
    try:
        await ctx.store.put(keys.user_key(keys.SELFBAN, username), orjson.dumps(ban.model_dump()).decode())
    except StoreError as e:
        log_error(logger, "set_self_ban", e, username=username)
    return ban


# ==================== Monthly login ====================

class MonthlyLogin(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    month: str
    days: List[str] = Field(default_factory=list)
    claimed_milestones: List[int] = Field(default_factory=list, alias="claimedMilestones")

    def dumps(self) -> str:
        return orjson.dumps(self.model_dump(by_alias=True)).decode()


async def get_monthly_login(ctx: SlotsContext, username: str) -> MonthlyLogin:
    """Login days of the current month; a record from an earlier month reads as empty."""
    month = local_month(ctx.now(), ctx.economy.timezone)
    try:
        raw = await ctx.store.get(keys.user_key(keys.MONTHLY_LOGIN, username))
    except StoreError as e:
        log_error(logger, "get_monthly_login", e, username=username)
        return MonthlyLogin(month=month)
    if raw is None:
        return MonthlyLogin(month=month)
    try:
        record = MonthlyLogin.model_validate(orjson.loads(raw))
    except ValueError:
        logger.warning(f"Corrupt monthly login for {username}, starting over")
        return MonthlyLogin(month=month)
    if record.month != month:
        return MonthlyLogin(month=month)
    return record


async def save_monthly_login(ctx: SlotsContext, username: str, record: MonthlyLogin):
    try:
        await ctx.store.put(keys.user_key(keys.MONTHLY_LOGIN, username), record.dumps())
    except StoreError as e:
        log_error(logger, "save_monthly_login", e, username=username)


def record_login_day(record: MonthlyLogin, today: str) -> MonthlyLogin:
    if today not in record.days:
        record.days = sorted(record.days + [today])
    return record


async def _delete_quietly(ctx: SlotsContext, key: str, context: str):
    try:
        await ctx.store.delete(key)
    except StoreError as e:
        log_error(logger, context, e, key=key)
