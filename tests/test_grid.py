import math

import pytest

from conftest import CHERRY, DIAMOND, LEMON, NO_DACHS, ORANGE, ScriptedRNG
from dachstaler.core.games.slots import GridEngine, GridModifiers, has_any_pair
from dachstaler.core.rng import SeededRNG, TrueRNG
from dachstaler.core.tables import DACHS, DACHS_BASE_CHANCE, DEFAULT_TABLES, GameTables

W = "🃏"
STAR = "⭐"


def engine_with(floats=(), ints=(), debug_pair_username=None, tables=DEFAULT_TABLES):
    return GridEngine(tables, ScriptedRNG(floats, ints), debug_pair_username=debug_pair_username)


# ==================== Symbol weighting ====================

def test_weighted_symbol_uses_strict_upper_bounds():
    tables = GameTables(symbol_weights=(("a", 1), ("b", 1), ("c", 2)))
    # draw 0.25 * 4 = 1.0 sits exactly on the first bound and belongs to the next bucket
    assert engine_with([0.25], tables=tables).get_weighted_symbol() == "b"
    assert engine_with([0.0], tables=tables).get_weighted_symbol() == "a"
    assert engine_with([0.999], tables=tables).get_weighted_symbol() == "c"


def test_plain_roll_draws_dachs_then_symbol_per_cell():
    engine = engine_with([NO_DACHS, CHERRY, NO_DACHS, LEMON, 0.0, ORANGE])
    grid = engine.roll_grid(GridModifiers())
    assert grid == ["🍒", "🍋", DACHS]


# ==================== Modifiers ====================

def test_dachs_chance_boosts_multiply():
    base = DACHS_BASE_CHANCE
    assert GridModifiers().dachs_chance(base) == base
    assert GridModifiers(lucky_charm=True).dachs_chance(base) == pytest.approx(2 * base)
    assert GridModifiers(lucky_charm=True, dachs_locator=True).dachs_chance(base) == pytest.approx(6 * base)
    assert GridModifiers(rage_stack=50).dachs_chance(base) == pytest.approx(1.5 * base)
    all_on = GridModifiers(lucky_charm=True, dachs_locator=True, rage_stack=100)
    assert all_on.dachs_chance(base) == pytest.approx(12 * base)


def test_star_magnet_pulls_when_both_gates_pass():
    engine = engine_with([NO_DACHS, CHERRY, 0.1, 0.1] * 3)
    assert engine.roll_grid(GridModifiers(star_magnet=True)) == [STAR] * 3


def test_magnet_needs_both_draws():
    # reroll gate passes, boost gate fails
    engine = engine_with([NO_DACHS, CHERRY, 0.1, 0.5] * 3)
    assert engine.roll_grid(GridModifiers(star_magnet=True)) == ["🍒"] * 3


def test_star_magnet_is_checked_before_diamond_rush():
    engine = engine_with([NO_DACHS, CHERRY, 0.1, 0.1] * 3)
    grid = engine.roll_grid(GridModifiers(star_magnet=True, diamond_rush=True))
    assert grid == [STAR] * 3


def test_diamond_rush_alone_pulls_to_diamond():
    engine = engine_with([NO_DACHS, LEMON, 0.2, 0.2] * 3)
    assert engine.roll_grid(GridModifiers(diamond_rush=True)) == ["💎"] * 3


def test_diamond_rush_leaves_existing_diamond():
    engine = engine_with([NO_DACHS, DIAMOND, 0.2, 0.2] * 3)
    assert engine.roll_grid(GridModifiers(diamond_rush=True)) == ["💎"] * 3


# ==================== Rare-symbol frequency ====================

def test_lucky_charm_doubles_dachs_frequency():
    engine = GridEngine(DEFAULT_TABLES, SeededRNG(20260105))
    modifiers = GridModifiers(lucky_charm=True)
    spins = 10_000

    dachs_cells = sum(engine.roll_grid(modifiers).count(DACHS) for _ in range(spins))

    cells = spins * 3
    p = 2 * DACHS_BASE_CHANCE
    expected = cells * p
    sigma = math.sqrt(cells * p * (1 - p))
    assert abs(dachs_cells - expected) < 5 * sigma


def test_base_frequency_without_buffs():
    engine = GridEngine(DEFAULT_TABLES, SeededRNG(42))
    spins = 10_000

    dachs_cells = sum(engine.roll_grid(GridModifiers()).count(DACHS) for _ in range(spins))

    cells = spins * 3
    expected = cells * DACHS_BASE_CHANCE
    sigma = math.sqrt(cells * DACHS_BASE_CHANCE * (1 - DACHS_BASE_CHANCE))
    assert abs(dachs_cells - expected) < 5 * sigma


# ==================== Debug pair path ====================

def test_debug_pair_only_for_configured_user():
    engine = engine_with([0.5, CHERRY, CHERRY, LEMON], ints=[1], debug_pair_username="Tester")
    assert engine.roll_grid(GridModifiers(), "tester") == ["🍒", DACHS, DACHS]


def test_debug_pair_not_used_for_other_users():
    engine = engine_with([NO_DACHS, CHERRY, NO_DACHS, LEMON, NO_DACHS, ORANGE], debug_pair_username="tester")
    assert engine.roll_grid(GridModifiers(), "someone") == ["🍒", "🍋", "🍊"]


def test_debug_pair_disabled_by_default():
    engine = engine_with([NO_DACHS, CHERRY, NO_DACHS, LEMON, NO_DACHS, ORANGE])
    assert engine.roll_grid(GridModifiers(), "tester") == ["🍒", "🍋", "🍊"]


# ==================== Special items ====================

def test_has_any_pair():
    assert has_any_pair(["🍒", "🍒", "🍋"])
    assert has_any_pair(["🍒", "🍋", "🍒"])
    assert not has_any_pair(["🍒", "🍋", "🍊"])


def test_guaranteed_pair_forces_pair_when_missing():
    engine = engine_with(ints=[2])
    outcome = engine.apply_special_items(["🍒", "🍋", "🍇"], guaranteed_pair=True, wild_card=False)
    assert outcome.grid == ["🍊", "🍊", "🍇"]
    assert outcome.used_guaranteed_pair
    assert not outcome.used_wild_card


def test_guaranteed_pair_kept_when_grid_already_pairs():
    engine = engine_with(ints=[2])
    grid = ["🍒", "🍋", "🍒"]
    outcome = engine.apply_special_items(grid, guaranteed_pair=True, wild_card=False)
    assert outcome.grid == grid
    assert not outcome.used_guaranteed_pair


def test_wild_card_always_fires():
    engine = engine_with(ints=[1])
    outcome = engine.apply_special_items(["🍒", "🍒", "🍋"], guaranteed_pair=False, wild_card=True)
    assert outcome.grid == ["🍒", W, "🍋"]
    assert outcome.used_wild_card


def test_wild_card_applies_after_forced_pair():
    engine = engine_with(ints=[0, 0])
    outcome = engine.apply_special_items(["🍒", "🍋", "🍇"], guaranteed_pair=True, wild_card=True)
    assert outcome.grid == [W, "🍒", "🍇"]
    assert outcome.used_guaranteed_pair and outcome.used_wild_card


def test_special_items_do_not_mutate_input():
    engine = engine_with(ints=[0])
    grid = ["🍒", "🍋", "🍇"]
    engine.apply_special_items(grid, guaranteed_pair=False, wild_card=True)
    assert grid == ["🍒", "🍋", "🍇"]


# ==================== Draw helpers ====================

def test_chance_is_strictly_below_probability():
    assert ScriptedRNG([0.0]).chance(0.01)
    assert not ScriptedRNG([0.5]).chance(0.5)
    assert not ScriptedRNG([0.99]).chance(0.0)


def test_weighted_index_buckets():
    cumulative = [1, 2, 4]
    assert ScriptedRNG([0.0]).weighted_index(cumulative, 4) == 0
    assert ScriptedRNG([0.25]).weighted_index(cumulative, 4) == 1
    assert ScriptedRNG([0.75]).weighted_index(cumulative, 4) == 2


def test_true_rng_stays_in_bounds():
    rng = TrueRNG()
    for _ in range(200):
        assert 0.0 <= rng.random_float() < 1.0
        assert 3 <= rng.random_int(3, 5) <= 5
    assert rng.random_int(7, 7) == 7
    assert rng.random_choice(["🦡"]) == "🦡"


def test_rng_rejects_inverted_range():
    with pytest.raises(ValueError):
        TrueRNG().random_int(5, 1)
    with pytest.raises(ValueError):
        SeededRNG(1).random_int(5, 1)


def test_seeded_rng_is_reproducible():
    first, second = SeededRNG(42), SeededRNG(42)
    assert [first.random_float() for _ in range(5)] == [second.random_float() for _ in range(5)]
