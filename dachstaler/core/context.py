"""Per-process game context handed to every operation."""

from dataclasses import dataclass, field
from typing import Callable, Optional

from dachstaler.config import AppConfig
from dachstaler.core.games.slots import GridEngine
from dachstaler.core.rng import TrueRNG, rng as default_rng
from dachstaler.core.storage import KeyValueStore
from dachstaler.core.tables import DEFAULT_TABLES, GameTables
from dachstaler.core.timeutil import now_ms


@dataclass
class SlotsContext:
    """Store, randomness, configuration and clock for one running service."""

    store: KeyValueStore
    settings: AppConfig
    rng: TrueRNG = default_rng
    tables: GameTables = DEFAULT_TABLES
    clock: Callable[[], int] = now_ms
    engine: Optional[GridEngine] = field(default=None)

    def __post_init__(self):
        if self.engine is None:
            self.engine = GridEngine(
                tables=self.tables,
                rng=self.rng,
                debug_pair_username=self.settings.features.debug_pair_username,
            )

    @property
    def economy(self):
        return self.settings.economy

    def now(self) -> int:
        return self.clock()
