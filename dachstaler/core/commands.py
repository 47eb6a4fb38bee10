"""
Chat command dispatch.

    !slots [amount]            spin
    !slots accept              accept the entertainment-only disclaimer
    !slots selfban             exclude yourself from playing
    !slots daily               daily bonus plus monthly login milestones
    !slots balance             balance and free spins
    !slots buffs               active buffs and held items
    !slots bank                house ledger
    !slots transfer @user N    send DachsTaler (also !transfer)
    !shop [buy N]              shop
"""

import asyncio
import re
from typing import List, Optional

from dachstaler.core import accounts, bank, buffs, items, keys
from dachstaler.core.context import SlotsContext
from dachstaler.core.logger import get_logger, log_event
from dachstaler.core.results import CommandResult, failed, rejected, success
from dachstaler.core.retry import acquire_lock, backoff_delay, release_lock
from dachstaler.core.shop import handle_shop
from dachstaler.core.spin import disclaimer_prompt, handle_spin, leading_int
from dachstaler.core.tables import (
    BOOST_SYMBOL_NAMES,
    MAX_TRANSFER,
    MIN_TRANSFER,
    MONTHLY_LOGIN_REWARDS,
    TIMED_BUFF_LABELS,
    TRANSFER_LOCK_TTL_SECONDS,
    USERNAME_MAX_LENGTH,
)
from dachstaler.core.timeutil import (
    days_in_month,
    format_remaining,
    local_date,
    seconds_until_midnight,
)

logger = get_logger("commands")

_USERNAME_JUNK = re.compile(r"[^a-z0-9_]")


def sanitize_username(raw: str) -> Optional[str]:
    """Lowercase, drop `@` and anything outside [a-z0-9_]; None if nothing usable is left."""
    clean = _USERNAME_JUNK.sub("", raw.strip().lower())
    if not clean or len(clean) > USERNAME_MAX_LENGTH:
        return None
    return clean


# ==================== Disclaimer & self-ban ====================

async def handle_accept(ctx: SlotsContext, username: str) -> CommandResult:
    if await accounts.has_accepted_disclaimer(ctx, username):
        return success(f"@{username} ✅ You already accepted the disclaimer! Just use !slots to play 🎰")

    await accounts.set_disclaimer_accepted(ctx, username)
    balance = await accounts.get_balance(ctx, username)
    log_event(logger, "accept", username, balance=balance)
    return success(
        f"@{username} ✅ Disclaimer accepted! Your balance: {balance} DachsTaler. "
        "Have fun! 🦡🎰 Use !slots to spin!",
        balance=balance,
    )


async def handle_selfban(ctx: SlotsContext, username: str) -> CommandResult:
    ban = await accounts.set_self_ban(ctx, username)
    log_event(logger, "selfban", username, since=ban.date)
    return success(
        f"@{username} ✅ You are now excluded from playing slots. Only an admin can lift this. "
        "If you need help, please reach out 🦡",
        self_banned=True,
    )


# ==================== Daily ====================

async def handle_daily(ctx: SlotsContext, username: str) -> CommandResult:
    economy = ctx.economy
    now = ctx.now()
    accepted, last_daily, has_boost, monthly = await asyncio.gather(
        accounts.has_accepted_disclaimer(ctx, username),
        accounts.get_last_daily(ctx, username),
        accounts.has_unlock(ctx, username, "daily_boost"),
        accounts.get_monthly_login(ctx, username),
    )
    if ctx.settings.features.require_disclaimer and not accepted:
        return rejected(disclaimer_prompt(username), needs_disclaimer=True)

    month_days = days_in_month(now, economy.timezone)
    today = local_date(now, economy.timezone)
    if last_daily is not None and local_date(last_daily, economy.timezone) == today:
        seconds_left = seconds_until_midnight(now, economy.timezone)
        return rejected(
            f"@{username} ⏰ Daily bonus already claimed! Next one in {format_remaining(seconds_left)} "
            f"| Login days: {len(monthly.days)}/{month_days} 📅",
            next_in_seconds=seconds_left,
        )

    monthly = accounts.record_login_day(monthly, today)
    login_days = len(monthly.days)
    milestone = MONTHLY_LOGIN_REWARDS.get(login_days, 0)
    if milestone and login_days in monthly.claimed_milestones:
        milestone = 0
    if milestone:
        monthly.claimed_milestones.append(login_days)

    amount = (economy.daily_boost_amount if has_boost else economy.daily_amount) + milestone
    new_balance, applied = await accounts.apply_balance_delta(ctx, username, amount)
    await asyncio.gather(
        accounts.set_last_daily(ctx, username, now),
        accounts.save_monthly_login(ctx, username, monthly),
        bank.update_bank_balance(ctx, -applied),
    )
    log_event(logger, "daily", username, amount=applied, milestone=milestone, login_days=login_days)

    boost_text = " (💎 Boost)" if has_boost else ""
    milestone_text = f" | 🎉 {login_days} day milestone: +{milestone} DachsTaler!" if milestone else ""
    return success(
        f"@{username} 🎁 Daily bonus! +{amount} DachsTaler{boost_text}{milestone_text} 🦡 "
        f"| Login days: {login_days}/{month_days} 📅 | Balance: {new_balance}",
        balance=new_balance,
        amount=applied,
        milestone=milestone,
        login_days=login_days,
    )


# ==================== Read-only ====================

async def handle_balance(ctx: SlotsContext, username: str) -> CommandResult:
    balance, free_spins = await asyncio.gather(
        accounts.get_balance(ctx, username),
        items.get_free_spins(ctx, username),
    )
    if not free_spins:
        return success(f"@{username}, your balance: {balance} DachsTaler 🦡💰", balance=balance)

    total = sum(b.count for b in free_spins)
    details = ", ".join(f"{b.count}x {b.multiplier * 10} DT" for b in free_spins)
    return success(
        f"@{username}, your balance: {balance} DachsTaler 🦡💰 | 🎰 {total} free spins | {details}",
        balance=balance,
        free_spins=total,
    )


async def handle_bank(ctx: SlotsContext, username: str) -> CommandResult:
    ledger = await bank.get_bank_balance(ctx)
    start = ctx.economy.bank_start_balance
    return success(
        f"@{username} 🏦 DachsBank: {ledger} DachsTaler ({ledger - start:+d} since opening)",
        bank=ledger,
    )


async def handle_buffs(ctx: SlotsContext, username: str) -> CommandResult:
    """Everything the user currently holds, one `||`-separated line."""
    now = ctx.now()
    timed, locator, rage, boosts, win_multiplier, insurance, pair_token, wild_token = await asyncio.gather(
        asyncio.gather(*(buffs.get_timed_buff(ctx, username, key) for key, _, _ in TIMED_BUFF_LABELS)),
        buffs.get_buff_with_uses(ctx, username, "dachs_locator"),
        buffs.get_buff_with_stack(ctx, username, "rage_mode"),
        asyncio.gather(*(items.has_boost(ctx, username, symbol) for symbol, _ in BOOST_SYMBOL_NAMES)),
        items.has_win_multiplier(ctx, username),
        items.get_insurance_count(ctx, username),
        items.has_guaranteed_pair(ctx, username),
        items.has_wild_card(ctx, username),
    )

    active = []
    for (_, emoji, name), state in zip(TIMED_BUFF_LABELS, timed):
        if state.active:
            active.append(f"{emoji} {name} ({format_remaining((state.data.expire_at - now) // 1000)})")
    if locator.active:
        active.append(f"🦡 Dachs Locator ({locator.data.uses} spins)")
    if rage.active:
        remaining = format_remaining((rage.data.expire_at - now) // 1000)
        active.append(f"🔥 Rage Mode ({remaining}, Stack: {rage.data.stack}%)")
    for (symbol, name), held in zip(BOOST_SYMBOL_NAMES, boosts):
        if held:
            active.append(f"{symbol} {name} Boost (1x)")
    if win_multiplier:
        active.append("⚡ Win Multiplier (1x)")
    if insurance > 0:
        active.append(f"🛡️ Insurance Pack ({insurance}x)")
    if pair_token:
        active.append("🎯 Guaranteed Pair (1x)")
    if wild_token:
        active.append("🃏 Wild Card (1x)")

    if not active:
        return success(f"@{username} ❌ No active buffs! Take a look at the !shop", buffs=[])
    return success(f"@{username} 🔥 Your active buffs: {' || '.join(active)}", buffs=active)


# ==================== Transfer ====================

async def handle_transfer(ctx: SlotsContext, username: str, target: str, amount_arg: str) -> CommandResult:
    """
    Move DachsTaler between two players. The house ledger is not involved.

    The sender holds a short lock for the debit and credit so two transfers
    from the same account cannot both pass the balance check.
    """
    if not target:
        return rejected(f"@{username} ❌ No target user given! Use: !transfer @user amount")

    amount = leading_int(amount_arg) if amount_arg else None
    if amount is None or not MIN_TRANSFER <= amount <= MAX_TRANSFER:
        return rejected(f"@{username} ❌ Invalid amount! ({MIN_TRANSFER}-{MAX_TRANSFER})")

    receiver = sanitize_username(target)
    if receiver is None:
        return rejected(f"@{username} ❌ Invalid username!")
    if receiver == username.lower():
        return rejected(f"@{username} ❌ You can't send DachsTaler to yourself!")

    if ctx.settings.features.require_disclaimer and not await accounts.has_accepted_disclaimer(ctx, receiver):
        return rejected(
            f"@{username} ❌ @{receiver} has never played! They need to use !slots first to open an account."
        )

    lock_key = keys.user_key(keys.TRANSFER_LOCK, username)
    retry = ctx.settings.retry
    for attempt in range(retry.max_retries):
        token = await acquire_lock(ctx.store, lock_key, TRANSFER_LOCK_TTL_SECONDS, "transfer.lock")
        if token is None:
            if attempt < retry.max_retries - 1:
                await asyncio.sleep(backoff_delay(attempt, retry.backoff_base_ms))
            continue
        try:
            ok, sender_balance = await accounts.deduct_balance(ctx, username, amount)
            if not ok:
                return rejected(
                    f"@{username} ❌ Not enough DachsTaler! You have {sender_balance}.",
                    balance=sender_balance,
                )
            receiver_balance, received = await accounts.apply_balance_delta(ctx, receiver, amount)
        finally:
            await release_lock(ctx.store, lock_key, token, "transfer.unlock")

        log_event(logger, "transfer", username, to=receiver, amount=amount, received=received)
        if received < amount:
            return success(
                f"@{username} ✅ Sent {amount} DachsTaler to @{receiver}! ⚠️ {amount - received} DachsTaler "
                f"were not credited (max balance reached) | Your balance: {sender_balance} 💸",
                balance=sender_balance,
                received=received,
            )
        return success(
            f"@{username} ✅ Sent {amount} DachsTaler to @{receiver}! Your balance: {sender_balance} "
            f"| @{receiver}'s balance: {receiver_balance} 💸",
            balance=sender_balance,
            received=received,
        )

    return rejected(f"@{username} ❌ A transfer is already being processed, please wait a moment.")


# ==================== Routing ====================

async def handle_slots(ctx: SlotsContext, username: str, args: List[str]) -> CommandResult:
    sub = args[0].lower() if args else None
    if sub == "daily":
        return await handle_daily(ctx, username)
    if sub in ("balance", "konto"):
        return await handle_balance(ctx, username)
    if sub == "bank":
        return await handle_bank(ctx, username)
    if sub == "buffs":
        return await handle_buffs(ctx, username)
    if sub == "accept":
        return await handle_accept(ctx, username)
    if sub == "selfban":
        return await handle_selfban(ctx, username)
    if sub == "transfer":
        return await handle_transfer(ctx, username, *_transfer_args(args[1:]))
    return await handle_spin(ctx, username, args[0] if args else None)


def _transfer_args(args: List[str]):
    target = args[0] if args else ""
    amount = args[1] if len(args) > 1 else ""
    return target, amount


async def handle_command(ctx: SlotsContext, username: str, action: str, args: List[str]) -> CommandResult:
    """Route one chat command. Unexpected errors become a generic `error` result."""
    username = username.strip().lstrip("@")
    if not username:
        return rejected("❌ Missing username")

    try:
        action = action.lower().lstrip("!")
        if action in ("slots", "spin"):
            return await handle_slots(ctx, username, args)
        if action == "shop":
            return await handle_shop(ctx, username, args)
        if action == "balance":
            return await handle_balance(ctx, username)
        if action == "daily":
            return await handle_daily(ctx, username)
        if action == "bank":
            return await handle_bank(ctx, username)
        if action == "buffs":
            return await handle_buffs(ctx, username)
        if action == "transfer":
            return await handle_transfer(ctx, username, *_transfer_args(args))
        return rejected(f"@{username} ❌ Unknown command: {action}")
    except Exception:
        logger.exception(f"Command {action} failed for {username}")
        return failed(f"@{username} ❌ Something went wrong. Please try again.")
