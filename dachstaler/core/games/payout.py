"""
Win calculation for a 3-cell grid.

Tiers are checked in a fixed order and the first match wins:
Dachs x3 / x2 / x1, diamond free spins, triple, adjacent pair, loss.
Wilds are resolved first; the Dachs and symbol tiers look at the resolved
grid, the diamond tier at the grid as rolled (a wild is never a diamond).
"""

from dataclasses import dataclass
from typing import List

from dachstaler.core.rng import TrueRNG, rng as default_rng
from dachstaler.core.tables import (
    DACHS,
    DACHS_PAIR_PAYOUT,
    DACHS_SINGLE_PAYOUT,
    DACHS_TRIPLE_PAYOUT,
    DEFAULT_PAIR_PAYOUT,
    DEFAULT_TABLES,
    DEFAULT_TRIPLE_PAYOUT,
    DIAMOND,
    DIAMOND_PAIR_FREE_SPINS,
    DIAMOND_TRIPLE_FREE_SPINS,
    WILD,
    GameTables,
)

WILD_SUFFIX = f" ({WILD} Wild!)"


@dataclass
class WinResult:
    points: int
    message: str
    free_spins: int = 0

    @property
    def is_win(self) -> bool:
        return self.points > 0 or self.free_spins > 0


def resolve_wilds(grid: List[str], tables: GameTables = DEFAULT_TABLES) -> List[str]:
    """Replace wilds with the best symbol they can complete."""
    wild_count = grid.count(WILD)
    if wild_count == 0:
        return list(grid)

    concrete = [symbol for symbol in grid if symbol != WILD]
    if wild_count == 3:
        return [tables.best_triple_symbol] * 3
    if wild_count == 2:
        return [concrete[0]] * 3

    first, second = concrete
    if first == second:
        return [first] * 3

    first_value, second_value = tables.pair_value(first), tables.pair_value(second)
    if first_value > second_value or (
        first_value == second_value and tables.table_order(first) <= tables.table_order(second)
    ):
        return [first, first, second]
    return [second, second, first]


def _diamond_free_spins(grid: List[str]) -> int:
    if grid.count(DIAMOND) == 3:
        return DIAMOND_TRIPLE_FREE_SPINS
    if grid[0] == grid[1] == DIAMOND and grid[2] != DIAMOND:
        return DIAMOND_PAIR_FREE_SPINS
    if grid[1] == grid[2] == DIAMOND and grid[0] != DIAMOND:
        return DIAMOND_PAIR_FREE_SPINS
    return 0


def calculate_win(
    grid: List[str], tables: GameTables = DEFAULT_TABLES, rng: TrueRNG = default_rng
) -> WinResult:
    """
    Score a grid.

    Args:
        grid: The 3 symbols as shown to the player (may contain wilds)
        tables: Payout tables
        rng: Only used to pick a loss message

    Returns:
        WinResult with points, message and any free spins won
    """
    suffix = WILD_SUFFIX if WILD in grid else ""
    processed = resolve_wilds(grid, tables)

    dachs_count = processed.count(DACHS)
    if dachs_count == 3:
        return WinResult(DACHS_TRIPLE_PAYOUT, "🔥🦡🔥 MEGA DACHS JACKPOT!!! 🔥🦡🔥 HOLY MOLY!!!" + suffix)
    if dachs_count == 2:
        return WinResult(DACHS_PAIR_PAYOUT, "💥🦡💥 DOUBLE DACHS!!! 💥🦡💥" + suffix)
    if dachs_count == 1:
        return WinResult(DACHS_SINGLE_PAYOUT, "🦡 Dachs spotted! Nice!" + suffix)

    free_spins = _diamond_free_spins(grid)
    if free_spins == DIAMOND_TRIPLE_FREE_SPINS:
        return WinResult(0, "💎💎💎 DIAMOND JACKPOT! +5 FREE SPINS!", free_spins=free_spins)
    if free_spins:
        return WinResult(0, "💎💎 Diamonds! +1 FREE SPIN!", free_spins=free_spins)

    if processed[0] == processed[1] == processed[2]:
        symbol = processed[0]
        points = tables.triple_payouts.get(symbol, DEFAULT_TRIPLE_PAYOUT)
        return WinResult(points, f"Triple {symbol}!{suffix}")

    # Only adjacent pairs pay; cells 0 and 2 alone do not count
    if processed[0] == processed[1] or processed[1] == processed[2]:
        symbol = processed[1]
        points = tables.pair_payouts.get(symbol, DEFAULT_PAIR_PAYOUT)
        return WinResult(points, f"Double {symbol}!{suffix}")

    return WinResult(0, rng.random_choice(tables.loss_messages) + suffix)
