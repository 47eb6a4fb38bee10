from dataclasses import dataclass
from typing import List, Optional

from dachstaler.core.rng import TrueRNG
from dachstaler.core.tables import (
    BUFF_REROLL_CHANCE,
    DACHS,
    DIAMOND,
    GRID_SIZE,
    STAR,
    SYMBOL_BOOST_CHANCE,
    WILD,
    GameTables,
)

DEBUG_PAIR_CHANCE = 0.75


@dataclass(frozen=True)
class GridModifiers:
    """Active buffs that change how a grid is rolled."""

    lucky_charm: bool = False
    star_magnet: bool = False
    diamond_rush: bool = False
    dachs_locator: bool = False
    rage_stack: int = 0

    def dachs_chance(self, base_chance: float) -> float:
        """Rare-symbol chance per cell; boosts multiply."""
        chance = base_chance
        if self.lucky_charm:
            chance *= 2
        if self.dachs_locator:
            chance *= 3
        if self.rage_stack > 0:
            chance *= 1 + self.rage_stack / 100
        return chance


@dataclass
class SpecialItemOutcome:
    grid: List[str]
    used_guaranteed_pair: bool = False
    used_wild_card: bool = False


def has_any_pair(grid: List[str]) -> bool:
    return grid[0] == grid[1] or grid[1] == grid[2] or grid[0] == grid[2]


class GridEngine:
    """
    3-cell slot grid generator.
    The Dachs gets its own draw per cell; everything else comes from the
    weighted symbol table, optionally pulled toward ⭐ or 💎 by magnet buffs.
    """

    def __init__(self, tables: GameTables, rng: TrueRNG, debug_pair_username: Optional[str] = None):
        self.tables = tables
        self.rng = rng
        self.debug_pair_username = debug_pair_username.lower() if debug_pair_username else None

    def get_weighted_symbol(self) -> str:
        """Pick a symbol by weight: first cumulative bucket strictly above the draw."""
        index = self.rng.weighted_index(self.tables.cumulative_weights, self.tables.total_weight)
        if index >= len(self.tables.symbol_weights):
            return STAR
        return self.tables.symbol_weights[index][0]

    def _roll_cell(self, modifiers: GridModifiers, dachs_chance: float) -> str:
        if self.rng.chance(dachs_chance):
            return DACHS

        symbol = self.get_weighted_symbol()
        if modifiers.star_magnet or modifiers.diamond_rush:
            buff_roll = self.rng.chance(BUFF_REROLL_CHANCE)
            boost_roll = self.rng.chance(SYMBOL_BOOST_CHANCE)
            pulled = buff_roll and boost_roll
            # Star wins when both magnets are active
            if modifiers.star_magnet and symbol != STAR and pulled:
                symbol = STAR
            elif modifiers.diamond_rush and symbol != DIAMOND and pulled:
                symbol = DIAMOND
        return symbol

    def _roll_debug_pair(self) -> List[str]:
        """Exactly two adjacent Dachs with an ordinary third cell."""
        grid = [self.get_weighted_symbol() for _ in range(GRID_SIZE)]
        start = self.rng.random_int(0, 1)
        grid[start] = DACHS
        grid[start + 1] = DACHS
        return grid

    def roll_grid(self, modifiers: GridModifiers, username: Optional[str] = None) -> List[str]:
        """
        Roll a fresh grid. Used for real spins and for peek previews alike.

        Args:
            modifiers: Active grid buffs
            username: Spinning user (only consulted for the debug pair path)

        Returns:
            List of 3 symbols
        """
        if (
            self.debug_pair_username
            and username
            and username.lower() == self.debug_pair_username
            and self.rng.chance(DEBUG_PAIR_CHANCE)
        ):
            return self._roll_debug_pair()

        dachs_chance = modifiers.dachs_chance(self.tables.dachs_base_chance)
        return [self._roll_cell(modifiers, dachs_chance) for _ in range(GRID_SIZE)]

    def apply_special_items(
        self, grid: List[str], guaranteed_pair: bool, wild_card: bool
    ) -> SpecialItemOutcome:
        """
        Apply one-time tokens. A guaranteed pair only fires (and is only spent)
        when the grid has no pair yet; a wild card always fires afterwards.
        """
        outcome = SpecialItemOutcome(grid=list(grid))

        if guaranteed_pair and not has_any_pair(outcome.grid):
            symbol = self.rng.random_choice(self.tables.pairable_symbols)
            outcome.grid[0] = symbol
            outcome.grid[1] = symbol
            outcome.used_guaranteed_pair = True

        if wild_card:
            position = self.rng.random_int(0, GRID_SIZE - 1)
            outcome.grid[position] = WILD
            outcome.used_wild_card = True

        return outcome
