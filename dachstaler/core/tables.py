"""
Static game tables: symbols, weights, payouts, bonus constants and message pools.

Everything here is read-only. `GameTables` bundles the tables into one frozen
object that is built once and handed to the engine by reference.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Tuple

# ==================== Symbols ====================

DACHS = "🦡"
WILD = "🃏"
DIAMOND = "💎"
STAR = "⭐"

# Weighted symbols (the Dachs has its own independent draw on top)
SYMBOL_WEIGHTS: Tuple[Tuple[str, int], ...] = (
    ("🍒", 24),
    ("🍋", 20),
    ("🍊", 19),
    (DIAMOND, 21),
    ("🍇", 15),
    ("🍉", 11),
    (STAR, 10),
)

GRID_SIZE = 3

# Symbols a guaranteed pair may be forced to
GUARANTEED_PAIR_SYMBOLS: Tuple[str, ...] = ("🍒", "🍋", "🍊", "🍇", "🍉", STAR)

PRESTIGE_RANKS: Tuple[str, ...] = ("🥉", "🥈", "🥇", "💎", "👑")

# ==================== Payouts ====================

DACHS_BASE_CHANCE = 1 / 150
DACHS_TRIPLE_PAYOUT = 15000
DACHS_PAIR_PAYOUT = 2500
DACHS_SINGLE_PAYOUT = 100

TRIPLE_PAYOUTS: Mapping[str, int] = MappingProxyType({
    STAR: 500,
    "🍉": 250,
    "🍇": 150,
    "🍊": 100,
    "🍋": 75,
    "🍒": 50,
})
DEFAULT_TRIPLE_PAYOUT = 50

PAIR_PAYOUTS: Mapping[str, int] = MappingProxyType({
    STAR: 50,
    "🍉": 25,
    "🍇": 15,
    "🍊": 10,
    "🍋": 8,
    "🍒": 5,
})
DEFAULT_PAIR_PAYOUT = 5

DIAMOND_TRIPLE_FREE_SPINS = 5
DIAMOND_PAIR_FREE_SPINS = 1

# Magnet buffs re-roll a cell only if both draws succeed
BUFF_REROLL_CHANCE = 0.66
SYMBOL_BOOST_CHANCE = 0.33

# ==================== Bonuses ====================

STREAK_THRESHOLD = 5
HOT_STREAK_BONUS = 500
COMEBACK_BONUS = 150
COMBO_BONUSES: Mapping[int, int] = MappingProxyType({2: 10, 3: 30, 4: 100})

STREAK_MULTIPLIER_INCREMENT = 0.1
STREAK_MULTIPLIER_MAX = 3.0

RAGE_MODE_LOSS_STACK = 5
RAGE_MODE_MAX_STACK = 100
RAGE_MODE_WIN_THRESHOLD = 50  # also the profit doubler threshold

GOLDEN_HOUR_BONUS = 1.3
WIN_MULTIPLIER_FACTOR = 2
SYMBOL_BOOST_FACTOR = 2
PROFIT_DOUBLER_FACTOR = 2

INSURANCE_REFUND_RATE = 0.5
INSURANCE_PACK_SIZE = 5

HOURLY_JACKPOT_AMOUNT = 100

FREE_SPIN_COST_THRESHOLD = 1000  # happy hour only discounts spins below this

# ==================== Spin amounts ====================

UNLOCK_MAP: Mapping[int, str] = MappingProxyType({
    20: "slots_20",
    30: "slots_30",
    50: "slots_50",
    100: "slots_100",
})
MULTIPLIER_MAP: Mapping[int, int] = MappingProxyType({10: 1, 20: 2, 30: 3, 50: 5, 100: 10})
MAX_FIXED_SPIN_AMOUNT = 100
SLOTS_ALL_UNLOCK = "slots_all"

# ==================== Instant items ====================

CHAOS_SPIN_MIN = -300
CHAOS_SPIN_MAX = 700
REVERSE_CHAOS_MIN = 50
REVERSE_CHAOS_MAX = 200
DIAMOND_MINE_MIN_SPINS = 3
DIAMOND_MINE_MAX_SPINS = 5

# Wheel buckets over rand * 100, lowest threshold first
WHEEL_JACKPOT_THRESHOLD = 1
WHEEL_JACKPOT_CHANCE = 0.00032
WHEEL_JACKPOT_PRIZE = 100000
WHEEL_DACHS_PRIZE = 500
WHEEL_BUCKETS: Tuple[Tuple[int, str, str, int], ...] = (
    (5, "💎 💎 💎 ⭐ 💰", "Diamonds!", 1000),
    (20, "💰 💰 💰 ⭐ 💸", "Gold!", 400),
    (50, "⭐ ⭐ ⭐ 💰 💸", "Stars!", 200),
)
WHEEL_LOSS = ("💸 💸 ⭐ 💰 🦡", "No luck this time!", 0)

# ==================== Daily & transfers ====================

# Extra daily payout on the Nth login day of a calendar month
MONTHLY_LOGIN_REWARDS: Mapping[int, int] = MappingProxyType({1: 50, 5: 150, 10: 400, 15: 750, 20: 1500})

MIN_TRANSFER = 1
MAX_TRANSFER = 100000
USERNAME_MAX_LENGTH = 25

# ==================== Buff listing ====================

TIMED_BUFF_LABELS: Tuple[Tuple[str, str, str], ...] = (
    ("happy_hour", "⚡", "Happy Hour"),
    ("lucky_charm", "🍀", "Lucky Charm"),
    ("golden_hour", "✨", "Golden Hour"),
    ("profit_doubler", "📈", "Profit Doubler"),
    ("star_magnet", "⭐", "Star Magnet"),
    ("diamond_rush", "💎", "Diamond Rush"),
)

BOOST_SYMBOL_NAMES: Tuple[Tuple[str, str], ...] = (
    ("🍒", "Cherry"),
    ("🍋", "Lemon"),
    ("🍊", "Orange"),
    ("🍇", "Grape"),
    ("🍉", "Melon"),
    (STAR, "Star"),
    (DACHS, "Dachs"),
)

# ==================== TTLs (seconds) ====================

BUFF_TTL_BUFFER_SECONDS = 60
PEEK_TTL_SECONDS = 3600
JACKPOT_CLAIM_TTL_SECONDS = 3600
DAILY_TTL_SECONDS = 86400 + 3600
STREAK_TTL_SECONDS = 7 * 86400
WEEKLY_COUNTER_TTL_SECONDS = 8 * 86400
LAST_ACTIVE_TTL_SECONDS = 30 * 86400
TRANSFER_LOCK_TTL_SECONDS = 5

# ==================== Messages ====================

SPIN_LOSS_MESSAGES: Tuple[str, ...] = (
    "Lost this one! 😢",
    "Next time!",
    "So close! Try again!",
    "No luck this time...",
)

LOSS_STREAK_WARNINGS: Mapping[int, str] = MappingProxyType({
    10: "😔 10 losses in a row. Maybe take a break?",
    11: "🦡 11 losses. The Dachs is still hiding... a short break?",
    12: "🦡💤 12 losses. The Dachs is napping... a break might help!",
    13: "🦡🌙 13 losses. The Dachs dreams of winning... tomorrow maybe?",
    14: "🦡🍂 14 losses. The Dachs is stocking up for winter... break time!",
    15: "🦡❄️ 15 losses. The Dachs is hibernating... come back later!",
    16: "🦡🏔️ 16 losses. The Dachs is deep in its burrow... more luck tomorrow?",
    17: "🦡🌌 17 losses. The Dachs ponders life... a break is recommended!",
    18: "🦡📚 18 losses. The Dachs is reading a book... you too? Break! 📖",
    19: "🦡🎮 19 losses. The Dachs is playing something else... you too? 🎮",
    20: "🦡☕ 20 losses. The Dachs is having coffee... seriously, take a break! ☕",
})

ROTATING_LOSS_WARNINGS: Tuple[str, ...] = (
    "🦡🛌 The Dachs is fast asleep... let it rest! 😴",
    "🦡🧘 The Dachs is meditating... find some inner peace! 🧘",
    "🦡🎨 The Dachs is painting... a creative break! 🎨",
    "🦡🏃 The Dachs is working out... get moving too! 🏃",
    "🦡🌳 The Dachs is enjoying nature... go outside! 🌳",
)


@dataclass(frozen=True)
class GameTables:
    """Read-only bundle of the tables the engine consults."""

    symbol_weights: Tuple[Tuple[str, int], ...] = SYMBOL_WEIGHTS
    dachs_base_chance: float = DACHS_BASE_CHANCE
    triple_payouts: Mapping[str, int] = field(default_factory=lambda: TRIPLE_PAYOUTS)
    pair_payouts: Mapping[str, int] = field(default_factory=lambda: PAIR_PAYOUTS)
    pairable_symbols: Tuple[str, ...] = GUARANTEED_PAIR_SYMBOLS
    loss_messages: Tuple[str, ...] = SPIN_LOSS_MESSAGES
    cumulative_weights: Tuple[int, ...] = field(init=False)
    total_weight: int = field(init=False)

    def __post_init__(self):
        running = 0
        cumulative = []
        for _, weight in self.symbol_weights:
            running += weight
            cumulative.append(running)
        # frozen dataclass: derived fields are set through object.__setattr__
        object.__setattr__(self, "cumulative_weights", tuple(cumulative))
        object.__setattr__(self, "total_weight", running)

    @property
    def best_triple_symbol(self) -> str:
        """Symbol with the highest triple payout (what three wilds become)."""
        return max(self.triple_payouts, key=self.triple_payouts.get)

    def pair_value(self, symbol: str) -> int:
        """Value used to decide which symbol a single wild pairs with."""
        if symbol == DACHS:
            return DACHS_PAIR_PAYOUT
        if symbol == DIAMOND:
            return 0
        return self.pair_payouts.get(symbol, DEFAULT_PAIR_PAYOUT)

    def table_order(self, symbol: str) -> int:
        """Position of a symbol in the weight table; unknown symbols sort first."""
        for index, (name, _) in enumerate(self.symbol_weights):
            if name == symbol:
                return index
        return -1


DEFAULT_TABLES = GameTables()
