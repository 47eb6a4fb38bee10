import orjson
import pytest

from conftest import CHERRY, DIAMOND, GRAPE, LEMON, ORANGE, FailingStore, ScriptedRNG, make_context, spin_floats
from dachstaler.core import accounts, bank, buffs, items
from dachstaler.core.accounts import Streak
from dachstaler.core.games.payout import WinResult
from dachstaler.core.results import STATUS_OK, STATUS_REJECTED
from dachstaler.core.spin import (
    apply_multipliers,
    calculate_streak_bonuses,
    handle_spin,
    leading_int,
    parse_spin_amount,
)

pytestmark = pytest.mark.asyncio

USER = "Eve"
BANK_START = 444444


def spin_context(store, clock, *symbol_floats, ints=()):
    return make_context(store=store, rng=ScriptedRNG(spin_floats(*symbol_floats), ints), clock=clock)


# ==================== Basic spin ====================

async def test_losing_spin_debits_player_and_credits_bank(store, clock):
    ctx = spin_context(store, clock, CHERRY, LEMON, ORANGE)

    result = await handle_spin(ctx, USER)

    assert result.status == STATUS_OK
    assert result.side_effects["grid"] == ["🍒", "🍋", "🍊"]
    assert result.side_effects["points"] == 0
    assert result.side_effects["balance"] == 90
    assert await accounts.get_balance(ctx, USER) == 90
    assert await bank.get_bank_balance(ctx) == BANK_START + 10
    assert await store.get("cooldown:eve") == str(clock())
    assert "Low balance" in result.message
    assert "+50 DachsTaler" in result.message


async def test_winning_pair_pays_out(store, clock):
    ctx = spin_context(store, clock, CHERRY, CHERRY, LEMON)

    result = await handle_spin(ctx, USER)

    assert result.side_effects["points"] == 5
    assert result.side_effects["balance"] == 95
    assert await bank.get_bank_balance(ctx) == BANK_START + 5
    assert await accounts.get_streak(ctx, USER) == Streak(wins=1, losses=0)
    assert await accounts.get_streak_multiplier(ctx, USER) == 1.1


async def test_second_spin_within_cooldown_is_rejected(store, clock):
    ctx = spin_context(store, clock, CHERRY, LEMON, ORANGE)
    await handle_spin(ctx, USER)

    clock.advance(10)
    result = await handle_spin(ctx, USER)

    assert result.status == STATUS_REJECTED
    assert result.side_effects["cooldown_remaining"] == 20
    assert await accounts.get_balance(ctx, USER) == 90


async def test_spin_allowed_after_cooldown(store, clock):
    ctx = spin_context(store, clock, CHERRY, LEMON, ORANGE, CHERRY, LEMON, ORANGE)
    await handle_spin(ctx, USER)

    clock.advance(30)
    result = await handle_spin(ctx, USER)

    assert result.ok
    assert result.side_effects["balance"] == 80


async def test_spin_rejected_without_funds(store, clock):
    ctx = spin_context(store, clock, CHERRY, LEMON, ORANGE)
    await accounts.set_balance(ctx, USER, 5)

    result = await handle_spin(ctx, USER)

    assert result.status == STATUS_REJECTED
    assert "Not enough DachsTaler" in result.message
    assert await accounts.get_balance(ctx, USER) == 5
    assert await store.get("cooldown:eve") is None


async def test_dachs_single_pays_hundred(store, clock):
    ctx = make_context(
        store=store,
        rng=ScriptedRNG([0.0, 0.99, LEMON, 0.99, ORANGE]),
        clock=clock,
    )
    result = await handle_spin(ctx, USER)
    assert result.side_effects["grid"] == ["🦡", "🍋", "🍊"]
    assert result.side_effects["balance"] == 190


# ==================== Spin amounts ====================

async def test_higher_amount_needs_unlock(store, clock):
    ctx = spin_context(store, clock, CHERRY, CHERRY, LEMON)

    result = await handle_spin(ctx, USER, "20")
    assert result.status == STATUS_REJECTED
    assert "not unlocked" in result.message

    await accounts.set_unlock(ctx, USER, "slots_20")
    result = await handle_spin(ctx, USER, "20")
    assert result.ok
    assert result.side_effects["spin_cost"] == 20
    assert result.side_effects["points"] == 10
    assert result.side_effects["balance"] == 90


async def test_parse_spin_amount_rules(ctx):
    assert await parse_spin_amount(ctx, USER, None, 100) == {"valid": True, "cost": 10, "multiplier": 1}
    assert await parse_spin_amount(ctx, USER, "abc", 100) == {"valid": True, "cost": 10, "multiplier": 1}
    assert not (await parse_spin_amount(ctx, USER, "5", 100))["valid"]
    assert not (await parse_spin_amount(ctx, USER, "500", 1000))["valid"]
    assert "not available" in (await parse_spin_amount(ctx, USER, "40", 100))["error"]
    assert not (await parse_spin_amount(ctx, USER, "all", 100))["valid"]


async def test_slots_all_allows_any_amount(ctx):
    await accounts.set_unlock(ctx, USER, "slots_all")
    assert await parse_spin_amount(ctx, USER, "ALL", 250) == {"valid": True, "cost": 250, "multiplier": 25}
    assert await parse_spin_amount(ctx, USER, "7", 250) == {"valid": True, "cost": 7, "multiplier": 1}
    assert not (await parse_spin_amount(ctx, USER, "0", 250))["valid"]
    assert not (await parse_spin_amount(ctx, USER, "300", 250))["valid"]
    assert not (await parse_spin_amount(ctx, USER, "all", 0))["valid"]


async def test_amount_reads_leading_digits(ctx):
    await accounts.set_unlock(ctx, USER, "slots_20")
    assert await parse_spin_amount(ctx, USER, "20abc", 100) == {"valid": True, "cost": 20, "multiplier": 2}
    assert await parse_spin_amount(ctx, USER, " 20", 100) == {"valid": True, "cost": 20, "multiplier": 2}
    assert await parse_spin_amount(ctx, USER, "x20", 100) == {"valid": True, "cost": 10, "multiplier": 1}
    assert "not unlocked" in (await parse_spin_amount(ctx, USER, "50x", 100))["error"]
    assert "Minimum" in (await parse_spin_amount(ctx, USER, "-20", 100))["error"]


@pytest.mark.parametrize("text,expected", [("20abc", 20), ("+7", 7), ("  3 ", 3), ("abc", None), ("", None)])
async def test_leading_int(text, expected):
    assert leading_int(text) == expected


# ==================== Gates ====================

async def test_spin_needs_accepted_disclaimer(store, clock):
    ctx = make_context(
        store=store, rng=ScriptedRNG(spin_floats(CHERRY, LEMON, ORANGE)), clock=clock, require_disclaimer=True
    )

    result = await handle_spin(ctx, USER)

    assert result.status == STATUS_REJECTED
    assert result.side_effects["needs_disclaimer"]
    assert "!slots accept" in result.message
    assert await accounts.get_balance(ctx, USER) == 100
    assert await store.get("cooldown:eve") is None

    await accounts.set_disclaimer_accepted(ctx, USER)
    result = await handle_spin(ctx, USER)
    assert result.ok
    assert result.side_effects["grid"] == ["🍒", "🍋", "🍊"]


async def test_self_ban_blocks_spin(store, clock):
    ctx = spin_context(store, clock, CHERRY, CHERRY, LEMON)
    await accounts.set_balance(ctx, USER, 500)
    await accounts.set_self_ban(ctx, USER)

    result = await handle_spin(ctx, USER)

    assert result.status == STATUS_REJECTED
    assert result.side_effects["self_banned"]
    # 10:00 UTC is 11:00 in Berlin
    assert "since 05.01.2026 11:00" in result.message
    assert await accounts.get_balance(ctx, USER) == 500


async def test_self_ban_checked_before_disclaimer(store, clock):
    ctx = make_context(store=store, clock=clock, require_disclaimer=True)
    await store.put("selfban:eve", "not json")

    result = await handle_spin(ctx, USER)

    assert result.side_effects == {"self_banned": True}


# ==================== Free spins ====================

async def test_free_spin_costs_nothing(store, clock):
    ctx = spin_context(store, clock, CHERRY, LEMON, ORANGE)
    await items.add_free_spins(ctx, USER, 2, 1)

    result = await handle_spin(ctx, USER)

    assert result.side_effects["free_spin_used"]
    assert result.side_effects["spin_cost"] == 0
    assert result.side_effects["balance"] == 100
    assert await bank.get_bank_balance(ctx) == BANK_START
    assert "1 left" in result.message


async def test_free_spin_uses_bucket_multiplier(store, clock):
    ctx = spin_context(store, clock, CHERRY, CHERRY, LEMON)
    await items.add_free_spins(ctx, USER, 1, 3)

    result = await handle_spin(ctx, USER)

    assert result.side_effects["points"] == 15
    assert result.side_effects["balance"] == 115
    assert await store.get("freespins:eve") is None


async def test_diamond_pair_awards_free_spin(store, clock):
    ctx = spin_context(store, clock, DIAMOND, DIAMOND, CHERRY)

    result = await handle_spin(ctx, USER)

    assert result.side_effects["free_spins_won"] == 1
    assert result.side_effects["balance"] == 90
    stored = orjson.loads(await store.get("freespins:eve"))
    assert stored == [{"multiplier": 1, "count": 1}]


# ==================== Items during a spin ====================

async def test_insurance_refunds_half_on_loss(store, clock):
    ctx = spin_context(store, clock, CHERRY, LEMON, ORANGE)
    await items.add_insurance(ctx, USER, 5)

    result = await handle_spin(ctx, USER)

    assert result.side_effects["insurance_refund"] == 5
    assert result.side_effects["balance"] == 95
    assert await items.get_insurance_count(ctx, USER) == 4
    assert await bank.get_bank_balance(ctx) == BANK_START + 5


async def test_insurance_untouched_on_win(store, clock):
    ctx = spin_context(store, clock, CHERRY, CHERRY, LEMON)
    await items.add_insurance(ctx, USER, 5)

    await handle_spin(ctx, USER)

    assert await items.get_insurance_count(ctx, USER) == 5


async def test_happy_hour_halves_cost(store, clock):
    ctx = spin_context(store, clock, CHERRY, LEMON, ORANGE)
    await buffs.activate_buff(ctx, USER, "happy_hour", 3600)

    result = await handle_spin(ctx, USER)

    assert result.side_effects["spin_cost"] == 5
    assert result.side_effects["balance"] == 95


async def test_peeked_grid_is_used_for_next_spin(store, clock):
    ctx = spin_context(store, clock)
    await items.store_peek_grid(ctx, USER, ["🦡", "🦡", "🦡"])

    result = await handle_spin(ctx, USER)

    assert result.side_effects["points"] == 15000
    assert result.side_effects["balance"] == 15090
    assert await bank.get_bank_balance(ctx) == BANK_START - 14990


async def test_guaranteed_pair_token_is_spent(store, clock):
    ctx = spin_context(store, clock, CHERRY, LEMON, GRAPE)
    await items.activate_guaranteed_pair(ctx, USER)

    result = await handle_spin(ctx, USER)

    assert result.side_effects["grid"] == ["🍒", "🍒", "🍇"]
    assert result.side_effects["points"] == 5
    assert not await items.has_guaranteed_pair(ctx, USER)


async def test_guaranteed_pair_token_kept_when_grid_already_pairs(store, clock):
    ctx = spin_context(store, clock, CHERRY, CHERRY, GRAPE)
    await items.activate_guaranteed_pair(ctx, USER)

    await handle_spin(ctx, USER)

    assert await items.has_guaranteed_pair(ctx, USER)


async def test_hourly_jackpot_turns_loss_into_win(store, clock):
    # 11:00:41 Berlin is the lucky second for that hour
    clock.advance(41)
    ctx = spin_context(store, clock, CHERRY, LEMON, ORANGE)

    result = await handle_spin(ctx, USER)

    assert result.side_effects["hourly_jackpot"]
    assert result.side_effects["points"] == 100
    assert result.side_effects["balance"] == 190
    assert "Hourly Jackpot" in result.message

    # only the first spin in that second claims it
    second = await handle_spin(spin_context(store, clock, CHERRY, LEMON, ORANGE), "Frank")
    assert not second.side_effects["hourly_jackpot"]


async def test_store_outage_does_not_crash_spin(clock):
    store = FailingStore(fail_get=True, fail_put=True, fail_delete=True)
    ctx = spin_context(store, clock, CHERRY, LEMON, ORANGE)

    result = await handle_spin(ctx, USER)

    assert result.ok
    assert result.side_effects["balance"] == 90


# ==================== Multiplier chain ====================

async def test_multiplier_chain_order(ctx):
    await items.add_win_multiplier(ctx, USER)
    await items.add_boost(ctx, USER, "🍒")
    result = WinResult(50, "Triple 🍒!")

    outcome = await apply_multipliers(
        ctx, USER, result, 1, ["🍒", "🍒", "🍒"],
        golden_hour=True, profit_doubler=True, streak_multiplier=1.5,
    )

    # 50 -> x2 -> x2 boost -> +30% -> profit x2 -> streak x1.5
    assert result.points == 780
    assert outcome.shop_buffs == ["2x", "2x Boost", "+30%", "Profit x2"]
    assert outcome.streak_multiplier == 1.5
    assert not await items.has_boost(ctx, USER, "🍒")


async def test_multipliers_skip_losses(ctx):
    await items.add_win_multiplier(ctx, USER)
    result = WinResult(0, "Next time!")

    outcome = await apply_multipliers(ctx, USER, result, 5, ["🍒", "🍋", "🍊"], True, True, 2.0)

    assert result.points == 0
    assert outcome.shop_buffs == []
    # the multiplier survives for a later win
    assert await items.consume_win_multiplier(ctx, USER)


# ==================== Streak bonuses ====================

async def test_combo_bonus_on_second_win():
    outcome = calculate_streak_bonuses(True, Streak(wins=1))
    assert outcome.new_streak == Streak(wins=2, losses=0)
    assert outcome.combo_bonus == 10
    assert outcome.total == 10


async def test_hot_streak_resets():
    outcome = calculate_streak_bonuses(True, Streak(wins=4))
    assert outcome.streak_bonus == 500
    assert outcome.combo_bonus == 0
    assert outcome.new_streak == Streak()


async def test_comeback_after_losing_run():
    outcome = calculate_streak_bonuses(True, Streak(losses=7))
    assert outcome.streak_bonus == 150
    assert outcome.new_streak == Streak()


async def test_loss_streak_warnings():
    assert calculate_streak_bonuses(False, Streak(losses=8)).loss_warning == ""
    assert "10 losses" in calculate_streak_bonuses(False, Streak(losses=9)).loss_warning
    assert calculate_streak_bonuses(False, Streak(losses=20)).loss_warning.startswith("🦡🛌")
