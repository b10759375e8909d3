"""
Item identifier parsing and slot metadata.

Identifiers look like ``T{tier}_{slot}_{core}[@{enchant}]``, e.g.
``T6_2H_BOW_KEEPER@2``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

ITEM_ID_RE = re.compile(r"^T([4-8])_([A-Z0-9]+)_([^@]+)(?:@([0-4]))?$")

_SHAPESHIFTER_RE = re.compile(r"SHAPESHIFTER")
_BAG_RE = re.compile(r"BAG|SATCHEL")
_INSIGHT_RE = re.compile(r"INSIGHT")
_CAPE_GENERAL_RE = re.compile(r"(^|_)CAPE$")
_CAPE_CITY_RE = re.compile(r"_CAPE_")
_BOW_RE = re.compile(r"BOW")


class Handedness(str, Enum):
    ONE_HANDED = "1H"
    TWO_HANDED = "2H"
    OFF_HAND = "OFF"
    OTHER = "OTHER"


@dataclass(frozen=True)
class ItemIdentifier:
    tier: int
    slot: str
    core: str
    enchant: int = 0


@dataclass(frozen=True)
class ItemMeta:
    handedness: Handedness
    num_items: int
    is_shapeshifter: bool = False
    is_bag: bool = False
    is_cape_general: bool = False
    is_cape_city: bool = False
    requires_tome: bool = False


def parse_item_identifier(item_id: str) -> Optional[ItemIdentifier]:
    """Parse ``item_id``; returns None instead of raising on a mismatch."""
    m = ITEM_ID_RE.match((item_id or "").strip().upper())
    if not m:
        return None
    return ItemIdentifier(
        tier=int(m.group(1)),
        slot=m.group(2),
        core=m.group(3),
        enchant=int(m.group(4)) if m.group(4) else 0,
    )


def classify_meta(core: str, slot: str) -> ItemMeta:
    """Derive handedness, valuation multiplier and special flags.

    Later overrides win: bag 16, general cape 8, city cape 0,
    shapeshifter/bow forced to two-handed with 32.
    """
    up = (core or "").upper()
    s = (slot or "").upper()

    is_shapeshifter = bool(_SHAPESHIFTER_RE.search(up))
    is_bag = bool(_BAG_RE.search(up))
    is_cape_general = bool(_CAPE_GENERAL_RE.search(up))
    is_cape_city = bool(_CAPE_CITY_RE.search(up))
    is_bow = bool(_BOW_RE.search(up))

    if s == "OFF":
        handed, num_items = Handedness.OFF_HAND, 8
    elif s == "2H":
        handed, num_items = Handedness.TWO_HANDED, 32
    elif s == "MAIN":
        handed, num_items = Handedness.ONE_HANDED, 24
    else:
        handed, num_items = Handedness.OTHER, 24

    if is_bag:
        num_items = 16
    if is_cape_general:
        num_items = 8
    if is_cape_city:
        num_items = 0
    if is_shapeshifter or is_bow:
        handed, num_items = Handedness.TWO_HANDED, 32

    return ItemMeta(
        handedness=handed,
        num_items=num_items,
        is_shapeshifter=is_shapeshifter,
        is_bag=is_bag,
        is_cape_general=is_cape_general,
        is_cape_city=is_cape_city,
        requires_tome=bool(_INSIGHT_RE.search(up)),
    )


__all__ = [
    "Handedness",
    "ItemIdentifier",
    "ItemMeta",
    "parse_item_identifier",
    "classify_meta",
]
