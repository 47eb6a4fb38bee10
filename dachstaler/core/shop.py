"""
Shop purchases.

buy_item runs a fixed pipeline: load the state the item type needs, validate,
debit the price (credited to the house ledger), then hand off to the handler
registered for the item's model class. Every class in ITEM_TYPES must have a
handler; the registry is checked at import time.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, get_args

from dachstaler.core import accounts, bank, buffs, items, limits
from dachstaler.core.catalog import (
    ITEM_TYPES,
    MYSTERY_BOX_ITEMS,
    SHOP_ITEM_MAX,
    SHOP_ITEMS,
    InstantEffect,
    InstantItem,
    InsuranceItem,
    PeekItem,
    PrestigeItem,
    ShopItem,
    SpinBundleItem,
    SymbolBoostItem,
    TimedBuffItem,
    UnlockItem,
    WinMultiplierItem,
    get_item,
    unlock_name,
)
from dachstaler.core.context import SlotsContext
from dachstaler.core.exceptions import ActivationError, PurchaseRejected
from dachstaler.core.games.payout import calculate_win
from dachstaler.core.logger import get_logger, log_error, log_event
from dachstaler.core.results import CommandResult, failed, rejected, success
from dachstaler.core.tables import (
    CHAOS_SPIN_MAX,
    CHAOS_SPIN_MIN,
    DIAMOND_MINE_MAX_SPINS,
    DIAMOND_MINE_MIN_SPINS,
    PRESTIGE_RANKS,
    REVERSE_CHAOS_MAX,
    REVERSE_CHAOS_MIN,
    WHEEL_BUCKETS,
    WHEEL_DACHS_PRIZE,
    WHEEL_JACKPOT_CHANCE,
    WHEEL_JACKPOT_PRIZE,
    WHEEL_JACKPOT_THRESHOLD,
    WHEEL_LOSS,
)

logger = get_logger("shop")

MYSTERY_BOX_TIMEOUT_SECONDS = 10

Handler = Callable[[SlotsContext, str, ShopItem, int], Awaitable[CommandResult]]


# ==================== Item handlers ====================

async def _buy_prestige(ctx: SlotsContext, username: str, item: PrestigeItem, balance: int) -> CommandResult:
    await accounts.set_prestige_rank(ctx, username, item.rank)
    return success(
        f"@{username} ✅ {item.name} bought! Your new rank: {item.rank} | Balance: {balance}",
        balance=balance,
        rank=item.rank,
    )


async def _buy_unlock(ctx: SlotsContext, username: str, item: UnlockItem, balance: int) -> CommandResult:
    await accounts.set_unlock(ctx, username, item.unlock_key)
    return success(
        f"@{username} ✅ {item.name} unlocked! | Balance: {balance}",
        balance=balance,
        unlock=item.unlock_key,
    )


async def activate_timed_buff(ctx: SlotsContext, username: str, item: TimedBuffItem):
    if item.variant == "uses":
        await buffs.activate_buff_with_uses(ctx, username, item.buff_key, item.duration, item.uses or 0)
    elif item.variant == "stack":
        await buffs.activate_buff_with_stack(ctx, username, item.buff_key, item.duration)
    else:
        await buffs.activate_buff(ctx, username, item.buff_key, item.duration)


def _format_duration(seconds: int) -> str:
    if seconds >= 3600 and seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{seconds // 60} minutes"


async def _buy_timed(ctx: SlotsContext, username: str, item: TimedBuffItem, balance: int) -> CommandResult:
    await activate_timed_buff(ctx, username, item)
    detail = _format_duration(item.duration)
    if item.variant == "uses":
        detail = f"{detail} or {item.uses} spins"
    return success(
        f"@{username} ✅ {item.name} active for {detail}! | Balance: {balance}",
        balance=balance,
        buff=item.buff_key,
    )


async def _buy_boost(ctx: SlotsContext, username: str, item: SymbolBoostItem, balance: int) -> CommandResult:
    await items.add_boost(ctx, username, item.symbol)
    if item.weekly_limit and item.limit_key:
        await limits.increment_weekly_purchases(ctx, username, item.limit_key)
    return success(
        f"@{username} ✅ {item.name} active! Your next {item.symbol} win is doubled. | Balance: {balance}",
        balance=balance,
        boost=item.symbol,
    )


async def _buy_insurance(ctx: SlotsContext, username: str, item: InsuranceItem, balance: int) -> CommandResult:
    total = await items.add_insurance(ctx, username, item.count)
    return success(
        f"@{username} ✅ Insurance Pack bought! {total} insured spins (50% refund on a loss). | Balance: {balance}",
        balance=balance,
        insurance=total,
    )


async def _buy_win_multiplier(
    ctx: SlotsContext, username: str, item: WinMultiplierItem, balance: int
) -> CommandResult:
    await items.add_win_multiplier(ctx, username)
    return success(
        f"@{username} ✅ Win Multiplier active! Your next win is doubled. | Balance: {balance}",
        balance=balance,
    )


async def _buy_bundle(ctx: SlotsContext, username: str, item: SpinBundleItem, balance: int) -> CommandResult:
    await asyncio.gather(
        items.add_free_spins(ctx, username, item.spins, item.multiplier),
        limits.increment_weekly_purchases(ctx, username, item.limit_key),
    )
    return success(
        f"@{username} ✅ Spin Bundle! {item.spins} free spins ({item.multiplier * 10} DachsTaler) added. "
        f"| Balance: {balance}",
        balance=balance,
        free_spins=item.spins,
    )


async def _buy_peek(ctx: SlotsContext, username: str, item: PeekItem, balance: int) -> CommandResult:
    """Roll the next spin's grid now, store it, and reveal only whether it wins."""
    grid_buffs, has_pair_token, has_wild_token = await asyncio.gather(
        buffs.load_grid_buffs(ctx, username),
        items.has_guaranteed_pair(ctx, username),
        items.has_wild_card(ctx, username),
    )
    grid = ctx.engine.roll_grid(grid_buffs.modifiers, username)
    await items.store_peek_grid(ctx, username, grid)

    result = calculate_win(grid, ctx.tables, ctx.rng)
    will_win = result.points > 0 or result.free_spins > 0

    modifiers = grid_buffs.modifiers
    icons = []
    if modifiers.lucky_charm:
        icons.append("🍀")
    if modifiers.star_magnet:
        icons.append("⭐")
    if modifiers.diamond_rush:
        icons.append("💎")
    buff_text = f" ({''.join(icons)} active!)" if icons else ""
    # Tokens are applied on the real spin, after the stored grid is read back
    held = []
    if has_pair_token:
        held.append("🎯 Guaranteed Pair")
    if has_wild_token:
        held.append("🃏 Wild Card")
    token_text = f" ⚠️ Your {' and '.join(held)} will still apply and can change this!" if held else ""

    verdict = "✅ WIN" if will_win else "❌ LOSE"
    return success(
        f"@{username} 🔮 Peek Token! Your next spin will {verdict}! 🔮{buff_text}{token_text} | Balance: {balance}",
        balance=balance,
        will_win=will_win,
        held_tokens=len(held),
    )


# ==================== Instant effects ====================

def spin_wheel(ctx: SlotsContext):
    """Returns (display, message, prize)."""
    roll = ctx.rng.random_float() * 100
    if roll < WHEEL_JACKPOT_THRESHOLD:
        if ctx.rng.chance(WHEEL_JACKPOT_CHANCE):
            return "🦡 🦡 🦡 🦡 🦡", "🔥 5x DACHS JACKPOT! 🔥", WHEEL_JACKPOT_PRIZE
        return "🦡 🦡 💎 ⭐ 💰", "Dachse!", WHEEL_DACHS_PRIZE
    for threshold, display, message, prize in WHEEL_BUCKETS:
        if roll < threshold:
            return display, message, prize
    return WHEEL_LOSS


async def _chaos_spin(ctx: SlotsContext, username: str, item: InstantItem, balance: int) -> CommandResult:
    amount = ctx.rng.random_int(CHAOS_SPIN_MIN, CHAOS_SPIN_MAX)
    new_balance, applied = await accounts.apply_balance_delta(ctx, username, amount)
    await bank.update_bank_balance(ctx, -applied)
    return success(
        f"@{username} 🎲 Chaos Spin! {amount:+d} DachsTaler! | Balance: {new_balance}",
        balance=new_balance,
        amount=amount,
    )


async def _wheel(ctx: SlotsContext, username: str, item: InstantItem, balance: int) -> CommandResult:
    display, message, prize = spin_wheel(ctx)
    new_balance = balance
    if prize > 0:
        new_balance = await accounts.credit_balance(ctx, username, prize)
        await bank.update_bank_balance(ctx, -prize)
    net = prize - item.price
    return success(
        f"@{username} 🎡 [ {display} ] {message} {net:+d} DachsTaler! | Balance: {new_balance}",
        balance=new_balance,
        prize=prize,
    )


async def activate_mystery_reward(ctx: SlotsContext, username: str, reward: ShopItem):
    """Activate a mystery box reward as if it had been bought."""
    if isinstance(reward, SymbolBoostItem):
        await items.add_boost(ctx, username, reward.symbol)
    elif isinstance(reward, InsuranceItem):
        await items.add_insurance(ctx, username, reward.count)
    elif isinstance(reward, WinMultiplierItem):
        await items.add_win_multiplier(ctx, username)
    elif isinstance(reward, TimedBuffItem):
        await activate_timed_buff(ctx, username, reward)
    else:
        raise ActivationError(f"{reward.name} cannot come out of a mystery box")


async def _mystery_box(ctx: SlotsContext, username: str, item: InstantItem, balance: int) -> CommandResult:
    reward_id = ctx.rng.random_choice(MYSTERY_BOX_ITEMS)
    reward = get_item(reward_id)

    try:
        await asyncio.wait_for(
            activate_mystery_reward(ctx, username, reward), timeout=MYSTERY_BOX_TIMEOUT_SECONDS
        )
    except Exception as e:
        log_error(logger, "mystery_box.activation", e, username=username, reward=reward.name)
        try:
            refunded = await accounts.credit_balance(ctx, username, item.price)
            await bank.update_bank_balance(ctx, -item.price)
        except Exception as rollback_error:
            logger.critical(
                f"Mystery box refund of {item.price} for {username} failed: {rollback_error}",
                exc_info=True,
            )
            return failed(f"@{username} ❌ Mystery Box error! Please contact an admin for a refund.")
        return rejected(
            f"@{username} ❌ Mystery Box error! Your {item.price} DachsTaler were refunded. | Balance: {refunded}",
            balance=refunded,
            refunded=item.price,
        )

    return success(
        f"@{username} 📦 Mystery Box! You won: {reward.name} (value: {reward.price})! "
        f"The item is active! | Balance: {balance}",
        balance=balance,
        reward=reward.id,
    )


async def _reverse_chaos(ctx: SlotsContext, username: str, item: InstantItem, balance: int) -> CommandResult:
    amount = ctx.rng.random_int(REVERSE_CHAOS_MIN, REVERSE_CHAOS_MAX)
    new_balance = await accounts.credit_balance(ctx, username, amount)
    await bank.update_bank_balance(ctx, -amount)
    return success(
        f"@{username} 🎲 Reverse Chaos! +{amount} DachsTaler! | Balance: {new_balance}",
        balance=new_balance,
        amount=amount,
    )


async def _diamond_mine(ctx: SlotsContext, username: str, item: InstantItem, balance: int) -> CommandResult:
    spins = ctx.rng.random_int(DIAMOND_MINE_MIN_SPINS, DIAMOND_MINE_MAX_SPINS)
    await items.add_free_spins(ctx, username, spins, 1)
    return success(
        f"@{username} 💎 Diamond Mine! You found {spins} free spins! 💎 | Balance: {balance}",
        balance=balance,
        free_spins=spins,
    )


async def _guaranteed_pair(ctx: SlotsContext, username: str, item: InstantItem, balance: int) -> CommandResult:
    await items.activate_guaranteed_pair(ctx, username)
    return success(
        f"@{username} ✅ Guaranteed Pair active! Your next spin has at least one pair! 🎯 | Balance: {balance}",
        balance=balance,
    )


async def _wild_card(ctx: SlotsContext, username: str, item: InstantItem, balance: int) -> CommandResult:
    await items.activate_wild_card(ctx, username)
    return success(
        f"@{username} ✅ Wild Card active! Your next spin contains a 🃏 wild! | Balance: {balance}",
        balance=balance,
    )


INSTANT_EFFECTS: Dict[str, Handler] = {
    "chaos_spin": _chaos_spin,
    "wheel": _wheel,
    "mystery_box": _mystery_box,
    "reverse_chaos": _reverse_chaos,
    "diamond_mine": _diamond_mine,
    "guaranteed_pair": _guaranteed_pair,
    "wild_card": _wild_card,
}


async def _buy_instant(ctx: SlotsContext, username: str, item: InstantItem, balance: int) -> CommandResult:
    return await INSTANT_EFFECTS[item.effect](ctx, username, item, balance)


ITEM_HANDLERS: Dict[type, Handler] = {
    PrestigeItem: _buy_prestige,
    UnlockItem: _buy_unlock,
    TimedBuffItem: _buy_timed,
    SymbolBoostItem: _buy_boost,
    InsuranceItem: _buy_insurance,
    WinMultiplierItem: _buy_win_multiplier,
    SpinBundleItem: _buy_bundle,
    PeekItem: _buy_peek,
    InstantItem: _buy_instant,
}

_missing = [cls.__name__ for cls in ITEM_TYPES if cls not in ITEM_HANDLERS]
if _missing:
    raise TypeError(f"No purchase handler for: {', '.join(_missing)}")
_missing = [effect for effect in get_args(InstantEffect) if effect not in INSTANT_EFFECTS]
if _missing:
    raise TypeError(f"No instant effect handler for: {', '.join(_missing)}")


# ==================== Validation ====================

async def _validate_purchase(ctx: SlotsContext, username: str, item: ShopItem):
    """Pre-debit checks. Raises PurchaseRejected; nothing has been mutated at that point."""
    current_rank = None
    if isinstance(item, PrestigeItem):
        balance, current_rank = await asyncio.gather(
            accounts.get_balance(ctx, username),
            accounts.get_prestige_rank(ctx, username),
        )
    elif isinstance(item, UnlockItem):
        checks = [accounts.get_balance(ctx, username), accounts.has_unlock(ctx, username, item.unlock_key)]
        if item.requires:
            checks.append(accounts.has_unlock(ctx, username, item.requires))
        results = await asyncio.gather(*checks)
        balance, already_unlocked = results[0], results[1]
        if item.requires and not results[2]:
            raise PurchaseRejected(f"@{username} ❌ You need to unlock {unlock_name(item.requires)} first!")
        if already_unlocked:
            raise PurchaseRejected(f"@{username} ❌ You already unlocked {item.name}!")
    else:
        balance = await accounts.get_balance(ctx, username)

    if balance < item.price:
        raise PurchaseRejected(
            f"@{username} ❌ Not enough DachsTaler! {item.name} costs {item.price}, you have {balance}."
        )

    if isinstance(item, PrestigeItem):
        current_index = accounts.rank_index(current_rank)
        if current_index >= PRESTIGE_RANKS.index(item.rank):
            raise PurchaseRejected(f"@{username} ❌ You already have {current_rank} or higher!")
        if item.requires_rank and current_index < PRESTIGE_RANKS.index(item.requires_rank):
            raise PurchaseRejected(f"@{username} ❌ You need the {item.requires_rank} rank first!")

    if isinstance(item, SymbolBoostItem) and item.weekly_limit and item.limit_key:
        active, counter = await asyncio.gather(
            items.has_boost(ctx, username, item.symbol),
            limits.get_weekly_purchases(ctx, username, item.limit_key),
        )
        if active:
            raise PurchaseRejected(
                f"@{username} ❌ You already have an active {item.name}! Use it before buying another."
            )
        if counter.count >= item.weekly_limit:
            raise PurchaseRejected(
                f"@{username} ❌ Weekly limit reached! Max {item.weekly_limit} {item.name} per week. "
                f"Resets Monday 00:00."
            )

    if isinstance(item, SpinBundleItem):
        counter = await limits.get_weekly_purchases(ctx, username, item.limit_key)
        if counter.count >= item.weekly_limit:
            raise PurchaseRejected(
                f"@{username} ❌ Weekly limit reached! Max {item.weekly_limit} Spin Bundles per week. "
                f"Resets Monday 00:00."
            )


# ==================== Entry points ====================

async def buy_item(ctx: SlotsContext, username: str, item_id: int) -> CommandResult:
    try:
        item = get_item(item_id)
        if item is None:
            return rejected(f"@{username} ❌ Item not found!")

        try:
            await _validate_purchase(ctx, username, item)
        except PurchaseRejected as e:
            return rejected(e.message)

        ok, balance = await accounts.deduct_balance(ctx, username, item.price)
        if not ok:
            return rejected(
                f"@{username} ❌ Not enough DachsTaler! {item.name} costs {item.price}, you have {balance}.",
                balance=balance,
            )
        await bank.update_bank_balance(ctx, item.price)
        log_event(
            logger, "purchase", username, f"#{item.id} {item.name}", item=item.id, price=item.price, balance=balance
        )

        return await ITEM_HANDLERS[type(item)](ctx, username, item, balance)
    except Exception:
        logger.exception(f"Purchase of item {item_id} failed for {username}")
        return failed(f"@{username} ❌ Something went wrong with your purchase.")


def format_shop_listing() -> List[str]:
    """One line per item: `#id name - price DT`."""
    return [f"#{item.id} {item.name} - {item.price} DT" for item in SHOP_ITEMS.values()]


async def handle_shop(ctx: SlotsContext, username: str, args: List[str]) -> CommandResult:
    """`!shop` → usage hint, `!shop buy N` → purchase."""
    if not args:
        return success(f"@{username} 🛒 DachsTaler Shop: items 1-{SHOP_ITEM_MAX} | Use: !shop buy [number]")

    if args[0].lower() != "buy" or len(args) < 2:
        return rejected(f"@{username} ❌ Use: !shop buy [number]")

    try:
        item_id = int(args[1])
    except ValueError:
        item_id = 0
    if item_id < 1 or item_id > SHOP_ITEM_MAX:
        return rejected(f"@{username} ❌ Invalid item number! Use 1-{SHOP_ITEM_MAX}.")

    return await buy_item(ctx, username, item_id)
