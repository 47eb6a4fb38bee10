"""Slot engine: grid generation and win calculation."""

from .slots import GridEngine, GridModifiers, SpecialItemOutcome, has_any_pair
from .payout import WinResult, calculate_win, resolve_wilds

__all__ = [
    "GridEngine",
    "GridModifiers",
    "SpecialItemOutcome",
    "has_any_pair",
    "WinResult",
    "calculate_win",
    "resolve_wilds",
]
