"""
Randomness for the slot machine.

Every draw goes through one object so tests can swap in scripted draws. The
helpers (`chance`, `weighted_index`) each consume exactly one float, which
keeps scripted sequences easy to line up with grid cells.
"""

import random
import secrets
from bisect import bisect_right
from typing import Optional, Sequence

# Resolution of a float draw; 10**12 buckets keeps 1/150 Dachs odds exact enough
FLOAT_PRECISION = 10**12


class TrueRNG:
    """Draws backed by `secrets` for live symbol rolls, wheel spins and chaos payouts."""

    def random_float(self) -> float:
        """Uniform in [0.0, 1.0)."""
        return secrets.randbelow(FLOAT_PRECISION) / FLOAT_PRECISION

    def random_int(self, min_val: int, max_val: int) -> int:
        """Uniform integer in [min_val, max_val], both ends included."""
        if min_val > max_val:
            raise ValueError("min_val must be less than or equal to max_val")
        return min_val + secrets.randbelow(max_val - min_val + 1)

    def random_choice(self, options: Sequence):
        if not options:
            raise IndexError("Cannot choose from an empty sequence")
        return options[self.random_int(0, len(options) - 1)]

    def chance(self, probability: float) -> bool:
        """True with the given probability (Dachs draw, magnet pulls, wheel jackpot)."""
        return self.random_float() < probability

    def weighted_index(self, cumulative_weights: Sequence[int], total_weight: int) -> int:
        """
        Index of the first cumulative bucket strictly above the draw.

        May return len(cumulative_weights) when float rounding lands exactly
        on the total; callers map that to their last symbol.
        """
        return bisect_right(cumulative_weights, self.random_float() * total_weight)


class SeededRNG(TrueRNG):
    """Reproducible draws from `random.Random`, for simulations and payout checks."""

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    def random_float(self) -> float:
        return self._random.random()

    def random_int(self, min_val: int, max_val: int) -> int:
        if min_val > max_val:
            raise ValueError("min_val must be less than or equal to max_val")
        return self._random.randint(min_val, max_val)


rng = TrueRNG()
