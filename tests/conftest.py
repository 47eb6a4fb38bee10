"""Shared fixtures: in-memory store, scripted randomness and a fixed clock."""

from datetime import datetime
from typing import Iterable, Optional

import pytest
import pytz

from dachstaler.config import AppConfig
from dachstaler.core.context import SlotsContext
from dachstaler.core.exceptions import StoreError
from dachstaler.core.rng import TrueRNG
from dachstaler.core.storage import MemoryStore

# Monday 2026-01-05 10:00:00 UTC = 11:00:00 in Berlin; lucky second for that hour is 41
SPIN_TIME_MS = int(datetime(2026, 1, 5, 10, 0, 0, tzinfo=pytz.utc).timestamp() * 1000)

# Weighted-table floats (total weight 120) that land on a given symbol
CHERRY = 0.1   # 12    -> 🍒
LEMON = 0.3    # 36    -> 🍋
ORANGE = 0.45  # 54    -> 🍊
DIAMOND = 0.6  # 72    -> 💎
GRAPE = 0.8    # 96    -> 🍇
MELON = 0.9    # 108   -> 🍉
STAR = 0.99    # 118.8 -> ⭐
NO_DACHS = 0.99


class ScriptedRNG(TrueRNG):
    """
    Replays fixed draws in order. Once a script runs out, floats return
    `default_float` and ints return the lower bound.
    """

    def __init__(self, floats: Iterable[float] = (), ints: Iterable[int] = (), default_float: float = 0.99):
        self.floats = list(floats)
        self.ints = list(ints)
        self.default_float = default_float

    def random_float(self) -> float:
        if self.floats:
            return self.floats.pop(0)
        return self.default_float

    def random_int(self, min_val: int, max_val: int) -> int:
        if self.ints:
            value = self.ints.pop(0)
            assert min_val <= value <= max_val, f"scripted int {value} outside [{min_val}, {max_val}]"
            return value
        return min_val


class FixedClock:
    """Callable epoch-ms clock that only moves when told to."""

    def __init__(self, now_ms: int = SPIN_TIME_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float):
        self.now_ms += int(seconds * 1000)


class FailingStore(MemoryStore):
    """MemoryStore whose selected operations raise StoreError."""

    def __init__(self, fail_get=False, fail_put=False, fail_delete=False):
        super().__init__()
        self.fail_get = fail_get
        self.fail_put = fail_put
        self.fail_delete = fail_delete

    async def get(self, key: str) -> Optional[str]:
        if self.fail_get:
            raise StoreError("get", key, RuntimeError("backend down"))
        return await super().get(key)

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if self.fail_put:
            raise StoreError("put", key, RuntimeError("backend down"))
        await super().put(key, value, ttl=ttl)

    async def delete(self, key: str) -> None:
        if self.fail_delete:
            raise StoreError("delete", key, RuntimeError("backend down"))
        await super().delete(key)


def spin_floats(*symbol_floats: float) -> list:
    """Per-cell draws for a plain roll: a failed Dachs draw, then the weighted pick."""
    floats = []
    for f in symbol_floats:
        floats.extend([NO_DACHS, f])
    return floats


def make_context(store=None, rng=None, clock=None, settings=None, require_disclaimer=False) -> SlotsContext:
    """Context for tests; the disclaimer gate is off unless a test is about it."""
    settings = settings or AppConfig()
    settings.retry.backoff_base_ms = 0
    settings.features.require_disclaimer = require_disclaimer
    return SlotsContext(
        store=store if store is not None else MemoryStore(),
        settings=settings,
        rng=rng or ScriptedRNG(),
        clock=clock or FixedClock(),
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def rng():
    return ScriptedRNG()


@pytest.fixture
def ctx(store, rng, clock):
    return make_context(store=store, rng=rng, clock=clock)
