"""
Shop catalog.

Each item category is its own frozen pydantic model tagged by `kind`; the
`ShopItem` union is closed, and the purchase pipeline dispatches on the
concrete model type.
"""

from types import MappingProxyType
from typing import Annotated, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from dachstaler.core.tables import (
    DACHS,
    INSURANCE_PACK_SIZE,
    PRESTIGE_RANKS,
)


class _Item(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    price: int


class PrestigeItem(_Item):
    kind: Literal["prestige"] = "prestige"
    rank: str
    requires_rank: Optional[str] = None


class UnlockItem(_Item):
    kind: Literal["unlock"] = "unlock"
    unlock_key: str
    requires: Optional[str] = None


class TimedBuffItem(_Item):
    kind: Literal["timed"] = "timed"
    buff_key: str
    duration: int  # seconds
    variant: Literal["simple", "uses", "stack"] = "simple"
    uses: Optional[int] = None


class SymbolBoostItem(_Item):
    kind: Literal["boost"] = "boost"
    symbol: str
    weekly_limit: Optional[int] = None
    limit_key: Optional[str] = None


class InsuranceItem(_Item):
    kind: Literal["insurance"] = "insurance"
    count: int = INSURANCE_PACK_SIZE


class WinMultiplierItem(_Item):
    kind: Literal["winmulti"] = "winmulti"


class SpinBundleItem(_Item):
    kind: Literal["bundle"] = "bundle"
    spins: int = 10
    multiplier: int = 1
    weekly_limit: int = 3
    limit_key: str = "bundle"


class PeekItem(_Item):
    kind: Literal["peek"] = "peek"


InstantEffect = Literal[
    "chaos_spin",
    "wheel",
    "mystery_box",
    "reverse_chaos",
    "diamond_mine",
    "guaranteed_pair",
    "wild_card",
]


class InstantItem(_Item):
    kind: Literal["instant"] = "instant"
    effect: InstantEffect


ShopItem = Annotated[
    Union[
        PrestigeItem,
        UnlockItem,
        TimedBuffItem,
        SymbolBoostItem,
        InsuranceItem,
        WinMultiplierItem,
        SpinBundleItem,
        PeekItem,
        InstantItem,
    ],
    Field(discriminator="kind"),
]

ITEM_TYPES: Tuple[type, ...] = (
    PrestigeItem,
    UnlockItem,
    TimedBuffItem,
    SymbolBoostItem,
    InsuranceItem,
    WinMultiplierItem,
    SpinBundleItem,
    PeekItem,
    InstantItem,
)

# Mystery box rewards must be activatable without user input
MYSTERY_REWARD_TYPES: Tuple[type, ...] = (
    SymbolBoostItem,
    InsuranceItem,
    WinMultiplierItem,
    TimedBuffItem,
)


def _symbol_boost(item_id: int, symbol: str, label: str) -> SymbolBoostItem:
    return SymbolBoostItem(id=item_id, name=f"{symbol} {label} Boost", price=50, symbol=symbol)


_ITEMS = (
    PeekItem(id=1, name="Peek Token", price=75),
    _symbol_boost(2, "🍒", "Cherry"),
    _symbol_boost(3, "🍋", "Lemon"),
    _symbol_boost(4, "🍊", "Orange"),
    _symbol_boost(5, "🍇", "Grape"),
    _symbol_boost(6, "🍉", "Watermelon"),
    _symbol_boost(7, "⭐", "Star"),
    SymbolBoostItem(
        id=8, name=f"{DACHS} Dachs Boost", price=150, symbol=DACHS,
        weekly_limit=1, limit_key="dachsboost",
    ),
    InsuranceItem(id=9, name="Insurance Pack", price=250),
    WinMultiplierItem(id=10, name="Win Multiplier", price=250),
    InstantItem(id=11, name="Chaos Spin", price=250, effect="chaos_spin"),
    InstantItem(id=12, name="Wheel of Fortune Spin", price=300, effect="wheel"),
    UnlockItem(id=13, name="!slots 20 Unlock", price=500, unlock_key="slots_20"),
    TimedBuffItem(id=14, name="Happy Hour", price=800, buff_key="happy_hour", duration=3600),
    SpinBundleItem(id=15, name="Spin Bundle", price=90),
    InstantItem(id=16, name="Mystery Box", price=1000, effect="mystery_box"),
    PrestigeItem(id=17, name="Bronze 🥉", price=1200, rank=PRESTIGE_RANKS[0]),
    UnlockItem(id=18, name="Stats Tracker", price=1250, unlock_key="stats_tracker"),
    UnlockItem(id=19, name="!slots 30 Unlock", price=2000, unlock_key="slots_30", requires="slots_20"),
    TimedBuffItem(id=20, name="Lucky Charm", price=2000, buff_key="lucky_charm", duration=3600),
    UnlockItem(id=21, name="!slots 50 Unlock", price=2500, unlock_key="slots_50", requires="slots_30"),
    PrestigeItem(
        id=22, name="Silver 🥈", price=3000, rank=PRESTIGE_RANKS[1], requires_rank=PRESTIGE_RANKS[0],
    ),
    UnlockItem(id=23, name="!slots 100 Unlock", price=3250, unlock_key="slots_100", requires="slots_50"),
    TimedBuffItem(id=24, name="Golden Hour", price=3500, buff_key="golden_hour", duration=3600),
    UnlockItem(id=25, name="!slots all Unlock", price=4444, unlock_key="slots_all", requires="slots_100"),
    PrestigeItem(
        id=26, name="Gold 🥇", price=8000, rank=PRESTIGE_RANKS[2], requires_rank=PRESTIGE_RANKS[1],
    ),
    UnlockItem(id=27, name="Daily Interest Boost", price=10000, unlock_key="daily_boost"),
    UnlockItem(id=28, name="Custom Win Message", price=10000, unlock_key="custom_message"),
    PrestigeItem(
        id=29, name="Platinum 💎", price=25000, rank=PRESTIGE_RANKS[3], requires_rank=PRESTIGE_RANKS[2],
    ),
    PrestigeItem(
        id=30, name="Legendary 👑", price=44444, rank=PRESTIGE_RANKS[4], requires_rank=PRESTIGE_RANKS[3],
    ),
    InstantItem(id=31, name="Reverse Chaos", price=150, effect="reverse_chaos"),
    TimedBuffItem(id=32, name="Star Magnet", price=1200, buff_key="star_magnet", duration=3600),
    TimedBuffItem(
        id=33, name="Dachs Locator", price=1500, buff_key="dachs_locator", duration=600,
        variant="uses", uses=10,
    ),
    TimedBuffItem(
        id=34, name="Rage Mode", price=4000, buff_key="rage_mode", duration=1800, variant="stack",
    ),
    TimedBuffItem(id=35, name="Profit Doubler", price=5000, buff_key="profit_doubler", duration=86400),
    InstantItem(id=36, name="Diamond Mine", price=2500, effect="diamond_mine"),
    InstantItem(id=37, name="Guaranteed Pair", price=180, effect="guaranteed_pair"),
    InstantItem(id=38, name="Wild Card", price=250, effect="wild_card"),
    TimedBuffItem(id=39, name="Diamond Rush", price=2000, buff_key="diamond_rush", duration=3600),
)

SHOP_ITEMS: Mapping[int, ShopItem] = MappingProxyType({item.id: item for item in _ITEMS})
SHOP_ITEM_MAX = max(SHOP_ITEMS)

MYSTERY_BOX_ITEMS: Tuple[int, ...] = (2, 3, 4, 5, 6, 7, 8, 9, 10, 14, 20, 24, 32, 33, 34, 35, 39)

for _item_id in MYSTERY_BOX_ITEMS:
    if not isinstance(SHOP_ITEMS[_item_id], MYSTERY_REWARD_TYPES):
        raise TypeError(f"Mystery box reward {_item_id} cannot be activated directly")


def get_item(item_id: int) -> Optional[ShopItem]:
    return SHOP_ITEMS.get(item_id)


def unlock_name(unlock_key: str) -> str:
    """Display name of the item that grants `unlock_key`."""
    for item in _ITEMS:
        if isinstance(item, UnlockItem) and item.unlock_key == unlock_key:
            return item.name
    return unlock_key
