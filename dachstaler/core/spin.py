"""
The `!slots` spin.

Flow: parallel state reads -> self-ban and disclaimer gates -> cooldown /
amount / balance checks -> grid (stored peek or fresh roll) -> special items
-> win calculation -> hourly jackpot -> multiplier chain -> streak bonuses ->
rage / streak multiplier -> insurance or net balance update -> house ledger
-> reply.
"""

import asyncio
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dachstaler.core import accounts, bank, buffs, items
from dachstaler.core.accounts import SelfBan, Streak
from dachstaler.core.context import SlotsContext
from dachstaler.core.games.payout import WinResult, calculate_win
from dachstaler.core.items import FreeSpinUse
from dachstaler.core.jackpot import check_and_claim_hourly_jackpot
from dachstaler.core.logger import get_logger, log_event
from dachstaler.core.results import CommandResult, failed, rejected, success
from dachstaler.core.tables import (
    COMBO_BONUSES,
    COMEBACK_BONUS,
    FREE_SPIN_COST_THRESHOLD,
    GOLDEN_HOUR_BONUS,
    HOT_STREAK_BONUS,
    HOURLY_JACKPOT_AMOUNT,
    INSURANCE_REFUND_RATE,
    LOSS_STREAK_WARNINGS,
    MAX_FIXED_SPIN_AMOUNT,
    MULTIPLIER_MAP,
    PROFIT_DOUBLER_FACTOR,
    RAGE_MODE_WIN_THRESHOLD,
    ROTATING_LOSS_WARNINGS,
    SLOTS_ALL_UNLOCK,
    STREAK_THRESHOLD,
    SYMBOL_BOOST_FACTOR,
    UNLOCK_MAP,
    WIN_MULTIPLIER_FACTOR,
)
from dachstaler.core.timeutil import local_date

logger = get_logger("spin")


# ==================== Spin amount ====================

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def leading_int(text: str) -> Optional[int]:
    """Integer at the start of `text`, ignoring trailing junk: "20abc" -> 20, "abc" -> None."""
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else None


async def parse_spin_amount(
    ctx: SlotsContext, username: str, amount_arg: Optional[str], balance: int
) -> Dict:
    """
    Resolve `!slots [amount]` into a cost and payout multiplier.

    Returns:
        {"valid": True, "cost": int, "multiplier": int} or {"valid": False, "error": str}
    """
    base = ctx.economy.base_spin_cost
    if not amount_arg:
        return {"valid": True, "cost": base, "multiplier": 1}

    lower = amount_arg.lower()
    if lower == "all":
        if not await accounts.has_unlock(ctx, username, SLOTS_ALL_UNLOCK):
            return {"valid": False, "error": f"@{username} ❌ !slots all is not unlocked! Buy it in the shop."}
        if balance < 1:
            return {"valid": False, "error": f"@{username} ❌ You need at least 1 DachsTaler for !slots all!"}
        return {"valid": True, "cost": balance, "multiplier": max(1, balance // base)}

    amount = leading_int(amount_arg)
    if amount is None:
        return {"valid": True, "cost": base, "multiplier": 1}

    if await accounts.has_unlock(ctx, username, SLOTS_ALL_UNLOCK):
        if amount < 1:
            return {"valid": False, "error": f"@{username} ❌ Minimum is !slots 1!"}
        if amount > balance:
            return {
                "valid": False,
                "error": f"@{username} ❌ You only have {balance} DachsTaler! Use !slots 1-{balance} or !slots all",
            }
        return {"valid": True, "cost": amount, "multiplier": max(1, amount // base)}

    if amount < base:
        return {"valid": False, "error": f"@{username} ❌ Minimum is !slots {base}!"}
    if amount > MAX_FIXED_SPIN_AMOUNT:
        return {
            "valid": False,
            "error": f"@{username} ❌ Maximum is !slots {MAX_FIXED_SPIN_AMOUNT}! Unlock !slots all for free amounts.",
        }
    if amount == base:
        return {"valid": True, "cost": base, "multiplier": 1}

    unlock_key = UNLOCK_MAP.get(amount)
    if unlock_key is None:
        allowed = ", ".join(str(a) for a in MULTIPLIER_MAP)
        return {"valid": False, "error": f"@{username} ❌ !slots {amount} is not available. Amounts: {allowed}"}
    if not await accounts.has_unlock(ctx, username, unlock_key):
        return {"valid": False, "error": f"@{username} ❌ !slots {amount} is not unlocked! Buy it in the shop."}
    return {"valid": True, "cost": amount, "multiplier": MULTIPLIER_MAP[amount]}


# ==================== Multipliers & bonuses ====================

@dataclass
class MultiplierOutcome:
    shop_buffs: List[str] = field(default_factory=list)
    streak_multiplier: float = 1.0


def matched_symbols(grid: List[str]) -> List[str]:
    """Symbols that appear at least twice in the grid, in grid order."""
    found = []
    for i, j in ((0, 1), (1, 2), (0, 2)):
        if grid[i] == grid[j] and grid[i] not in found:
            found.append(grid[i])
    return found


async def apply_multipliers(
    ctx: SlotsContext,
    username: str,
    result: WinResult,
    multiplier: int,
    grid: List[str],
    golden_hour: bool,
    profit_doubler: bool,
    streak_multiplier: float,
) -> MultiplierOutcome:
    """Award free spins and run `result.points` through the multiplier chain in place."""
    outcome = MultiplierOutcome()

    if result.free_spins > 0:
        await items.add_free_spins(ctx, username, result.free_spins, multiplier)

    result.points *= multiplier

    if result.points > 0 and await items.consume_win_multiplier(ctx, username):
        result.points *= WIN_MULTIPLIER_FACTOR
        outcome.shop_buffs.append("2x")

    if result.points > 0:
        symbols = matched_symbols(grid)
        if symbols:
            consumed = await asyncio.gather(*(items.consume_boost(ctx, username, s) for s in symbols))
            if any(consumed):
                result.points *= SYMBOL_BOOST_FACTOR
                outcome.shop_buffs.append("2x Boost")

    if result.points > 0:
        if golden_hour:
            result.points = math.floor(result.points * GOLDEN_HOUR_BONUS)
            outcome.shop_buffs.append("+30%")
        if profit_doubler and result.points > RAGE_MODE_WIN_THRESHOLD:
            result.points *= PROFIT_DOUBLER_FACTOR
            outcome.shop_buffs.append("Profit x2")
        if streak_multiplier > 1.0:
            result.points = math.floor(result.points * streak_multiplier)
            outcome.streak_multiplier = streak_multiplier

    return outcome


@dataclass
class StreakOutcome:
    new_streak: Streak
    streak_bonus: int = 0
    combo_bonus: int = 0
    natural_bonuses: List[str] = field(default_factory=list)
    loss_warning: str = ""

    @property
    def total(self) -> int:
        return self.streak_bonus + self.combo_bonus


def calculate_streak_bonuses(is_win: bool, previous: Streak) -> StreakOutcome:
    """Hot streak, comeback and combo bonuses plus loss-streak warnings."""
    streak_bonus = 0
    natural = []
    reset = False

    if is_win and previous.wins + 1 == STREAK_THRESHOLD:
        streak_bonus += HOT_STREAK_BONUS
        natural.append(f"🔥 Hot Streak +{HOT_STREAK_BONUS}")
        reset = True
    if is_win and previous.losses >= STREAK_THRESHOLD:
        streak_bonus += COMEBACK_BONUS
        natural.append(f"👑 Comeback +{COMEBACK_BONUS}")
        reset = True

    if reset:
        new_streak = Streak()
    elif is_win:
        new_streak = Streak(wins=previous.wins + 1, losses=0)
    else:
        new_streak = Streak(wins=0, losses=previous.losses + 1)

    combo_bonus = 0
    if is_win:
        combo_bonus = COMBO_BONUSES.get(new_streak.wins, 0)
        if combo_bonus:
            natural.append(f"🎯 Combo +{combo_bonus}")

    warning = ""
    if not is_win and new_streak.losses >= 10:
        if new_streak.losses in LOSS_STREAK_WARNINGS:
            warning = LOSS_STREAK_WARNINGS[new_streak.losses]
        elif new_streak.losses > 20:
            warning = ROTATING_LOSS_WARNINGS[(new_streak.losses - 21) % len(ROTATING_LOSS_WARNINGS)]

    return StreakOutcome(new_streak, streak_bonus, combo_bonus, natural, warning)


# ==================== Reply ====================

def disclaimer_prompt(username: str) -> str:
    return (
        f"@{username} 🦡 Welcome! DachsTaler Slots is for entertainment only, no real money is involved. "
        "Got it? Type \"!slots accept\" to play! 🎰"
    )


def self_ban_message(username: str, ban: SelfBan) -> str:
    return f"@{username} 🚫 You excluded yourself from playing (since {ban.date}). Contact an admin to be unlocked."


def build_spin_message(
    username: str,
    grid: List[str],
    result: WinResult,
    total_win: int,
    new_balance: int,
    rank: Optional[str],
    free_spin: FreeSpinUse,
    remaining_free_spins: int,
    jackpot_won: bool,
    bonuses: StreakOutcome,
    multipliers: MultiplierOutcome,
    warning: str,
) -> str:
    parts = [f"@{username}"]
    if rank:
        parts.append(rank)
    if free_spin.used:
        parts.append(f"🎁 FREE SPIN ({free_spin.multiplier * 10} DT, {remaining_free_spins} left)")
    parts.append(f"[ {' '.join(grid)} ]")

    if result.free_spins > 0:
        parts.append(result.message)
    elif total_win > 0:
        parts.append(f"{result.message} +{total_win} DachsTaler 💰")
        extras = list(bonuses.natural_bonuses)
        if jackpot_won:
            extras.insert(0, f"⏰ Hourly Jackpot +{HOURLY_JACKPOT_AMOUNT}")
        if multipliers.streak_multiplier > 1.0:
            extras.append(f"📈 Streak x{multipliers.streak_multiplier:.1f}")
        if extras:
            parts.append(f"║ {' • '.join(extras)}")
        if multipliers.shop_buffs:
            parts.append(f"║ 🛒 {', '.join(multipliers.shop_buffs)}")
    else:
        parts.append(f"{result.message} 💸")

    parts.append(f"║ Balance: {new_balance} DachsTaler")
    if warning:
        parts.append(warning)
    return " ".join(parts)


# ==================== Entry point ====================

async def handle_spin(ctx: SlotsContext, username: str, amount_arg: Optional[str] = None) -> CommandResult:
    try:
        return await _spin(ctx, username, amount_arg)
    except Exception:
        logger.exception(f"Spin failed for {username}")
        return failed(f"@{username} ❌ Something went wrong with your spin. Please try again.")


async def _spin(ctx: SlotsContext, username: str, amount_arg: Optional[str]) -> CommandResult:
    now = ctx.now()
    economy = ctx.economy

    (
        self_ban,
        accepted,
        last_spin,
        balance,
        grid_buffs,
        has_pair_token,
        has_wild_token,
        free_spins,
        happy_hour,
        insurance_count,
        previous_streak,
        golden_hour,
        profit_doubler,
        streak_multiplier,
        rank,
        last_daily,
        has_daily_boost,
    ) = await asyncio.gather(
        accounts.get_self_ban(ctx, username),
        accounts.has_accepted_disclaimer(ctx, username),
        accounts.get_last_spin(ctx, username),
        accounts.get_balance(ctx, username),
        buffs.load_grid_buffs(ctx, username),
        items.has_guaranteed_pair(ctx, username),
        items.has_wild_card(ctx, username),
        items.get_free_spins(ctx, username),
        buffs.is_buff_active(ctx, username, "happy_hour"),
        items.get_insurance_count(ctx, username),
        accounts.get_streak(ctx, username),
        buffs.is_buff_active(ctx, username, "golden_hour"),
        buffs.is_buff_active(ctx, username, "profit_doubler"),
        accounts.get_streak_multiplier(ctx, username),
        accounts.get_prestige_rank(ctx, username),
        accounts.get_last_daily(ctx, username),
        accounts.has_unlock(ctx, username, "daily_boost"),
    )

    if self_ban is not None:
        return rejected(self_ban_message(username, self_ban), self_banned=True)
    if ctx.settings.features.require_disclaimer and not accepted:
        return rejected(disclaimer_prompt(username), needs_disclaimer=True)

    cooldown_ms = economy.cooldown_seconds * 1000
    if last_spin is not None and now - last_spin < cooldown_ms:
        remaining = math.ceil((cooldown_ms - (now - last_spin)) / 1000)
        return rejected(f"@{username} ⏱️ Cooldown: {remaining} seconds left!", cooldown_remaining=remaining)

    # Consumed only after the cooldown check so a rejected spin keeps its free spin
    free_spin = FreeSpinUse(False)
    if free_spins:
        free_spin = await items.consume_free_spin(ctx, username)

    if free_spin.used:
        spin_cost = 0
        multiplier = free_spin.multiplier
    else:
        amount = await parse_spin_amount(ctx, username, amount_arg, balance)
        if not amount["valid"]:
            return rejected(amount["error"])
        spin_cost = amount["cost"]
        multiplier = amount["multiplier"]
        if happy_hour and spin_cost < FREE_SPIN_COST_THRESHOLD:
            spin_cost = max(1, spin_cost // 2)
        if balance < spin_cost:
            return rejected(
                f"@{username} ❌ Not enough DachsTaler! You need {spin_cost} (current: {balance}) 🦡",
                balance=balance,
            )

    grid = await items.take_peek_grid(ctx, username)
    if grid is None:
        grid = ctx.engine.roll_grid(grid_buffs.modifiers, username)

    if grid_buffs.locator.active:
        await buffs.decrement_buff_uses(ctx, username, "dachs_locator")

    special = ctx.engine.apply_special_items(grid, has_pair_token, has_wild_token)
    grid = special.grid
    token_writes = []
    if special.used_guaranteed_pair:
        token_writes.append(items.consume_guaranteed_pair(ctx, username))
    if special.used_wild_card:
        token_writes.append(items.consume_wild_card(ctx, username))
    if token_writes:
        await asyncio.gather(*token_writes)

    result = calculate_win(grid, ctx.tables, ctx.rng)

    jackpot_won = await check_and_claim_hourly_jackpot(ctx)
    if jackpot_won:
        result.points += HOURLY_JACKPOT_AMOUNT

    multipliers = await apply_multipliers(
        ctx, username, result, multiplier, grid, golden_hour, profit_doubler, streak_multiplier
    )

    is_win = result.is_win
    bonuses = calculate_streak_bonuses(is_win, previous_streak)
    await accounts.set_streak(ctx, username, bonuses.new_streak)

    streak_update = (
        accounts.increment_streak_multiplier(ctx, username)
        if is_win
        else accounts.reset_streak_multiplier(ctx, username)
    )
    await asyncio.gather(
        buffs.update_rage_stack(ctx, username, grid_buffs.rage, won=is_win),
        streak_update,
    )

    rank_prefix = f"{rank} " if rank else ""

    if not free_spin.used and result.points == 0 and not result.free_spins and insurance_count > 0:
        refund = math.floor(spin_cost * INSURANCE_REFUND_RATE)
        new_balance, applied = await accounts.apply_balance_delta(ctx, username, -(spin_cost - refund))
        remaining_insurance = await items.decrement_insurance(ctx, username)
        await asyncio.gather(
            bank.update_bank_balance(ctx, -applied),
            accounts.set_last_spin(ctx, username, now),
            accounts.set_last_active(ctx, username),
        )
        log_event(logger, "insurance", username, refund=refund, cost=spin_cost, balance=new_balance)
        message = (
            f"@{username} {rank_prefix}[ {' '.join(grid)} ] {result.message} 🛡️ "
            f"║ Insurance +{refund} ({remaining_insurance} left) ║ Balance: {new_balance} DachsTaler"
        )
        return success(
            message,
            grid=grid,
            points=0,
            balance=new_balance,
            insurance_refund=refund,
            spin_cost=spin_cost,
        )

    total_bonuses = bonuses.total
    net_delta = result.points + total_bonuses - spin_cost
    new_balance, applied = await accounts.apply_balance_delta(ctx, username, net_delta)

    await asyncio.gather(
        bank.update_bank_balance(ctx, -applied),
        accounts.set_last_spin(ctx, username, now),
        accounts.set_last_active(ctx, username),
    )

    remaining_free_spins = sum(b.count for b in free_spins)
    if free_spin.used:
        remaining_free_spins = max(0, remaining_free_spins - 1)

    warning = bonuses.loss_warning
    if new_balance < economy.low_balance_warning:
        today = local_date(now, economy.timezone)
        if last_daily is None or local_date(last_daily, economy.timezone) != today:
            daily_amount = economy.daily_boost_amount if has_daily_boost else economy.daily_amount
            reminder = f"⚠️ Low balance! Use !slots daily for +{daily_amount} DachsTaler"
            warning = f"{warning} {reminder}" if warning else reminder

    total_win = result.points + total_bonuses
    message = build_spin_message(
        username,
        grid,
        result,
        total_win,
        new_balance,
        rank,
        free_spin,
        remaining_free_spins,
        jackpot_won,
        bonuses,
        multipliers,
        warning,
    )
    log_event(
        logger,
        "spin",
        username,
        f"[ {' '.join(grid)} ]",
        cost=spin_cost,
        points=result.points,
        bonuses=total_bonuses,
        balance=new_balance,
        free_spin=free_spin.used,
    )

    return success(
        message,
        grid=grid,
        points=result.points,
        bonuses=total_bonuses,
        free_spins_won=result.free_spins,
        free_spin_used=free_spin.used,
        spin_cost=spin_cost,
        balance=new_balance,
        hourly_jackpot=jackpot_won,
    )
