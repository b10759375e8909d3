"""
Item value and station usage fee.

Item value drives the production tax a crafting station charges.  Rarity
(artefact type) is looked up by core token in an externally supplied map.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Mapping, Optional

log = logging.getLogger(__name__)


class ArteType(str, Enum):
    STANDARD = "Standard"
    RUNE = "Rune"
    SOUL = "Soul"
    RELIC = "Relic"
    MIST = "Mist"
    AVALONIAN = "Avalonian"
    CRYSTAL = "Crystal"

    @classmethod
    def parse(cls, value) -> "ArteType":
        if isinstance(value, cls):
            return value
        s = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == s:
                return member
        return cls.STANDARD


ARTE_MULTIPLIER: Dict[ArteType, int] = {
    ArteType.STANDARD: 0,
    ArteType.RUNE: 4,
    ArteType.SOUL: 12,
    ArteType.RELIC: 28,
    ArteType.MIST: 28,
    ArteType.AVALONIAN: 60,
    ArteType.CRYSTAL: 60,
}

SHAPESHIFTER_FACTOR = 16 / 11
USAGE_FEE_RATE = 0.1125

_SUBSTITUTES: Dict[ArteType, str] = {
    ArteType.RUNE: "CRYSTALLIZED_SPIRIT",
    ArteType.SOUL: "CRYSTALLIZED_DREAD",
    ArteType.RELIC: "CRYSTALLIZED_MAGIC",
    ArteType.AVALONIAN: "CRYSTALLIZED_DIVINITY",
}
CRYSTALLIZED_IDS: List[str] = list(_SUBSTITUTES.values())


def substitute_for(arte_type: ArteType) -> Optional[str]:
    """Crystallized resource that can replace an artefact of ``arte_type``.

    Standard, Mist and Crystal artefacts have no substitute.
    """
    return _SUBSTITUTES.get(ArteType.parse(arte_type))


def arte_type_of(core: str, arte_map: Optional[Mapping[str, ArteType]]) -> ArteType:
    return ArteType.parse((arte_map or {}).get((core or "").upper()))


def compute_item_value(
    tier: int,
    enchant: int,
    num_items: int,
    arte_type: ArteType,
    is_shapeshifter: bool,
) -> float:
    base = 16 * 2 ** (tier + enchant - 4)
    arte = ARTE_MULTIPLIER[ArteType.parse(arte_type)] * 2 ** (tier - 4)
    shape = SHAPESHIFTER_FACTOR if is_shapeshifter else 1
    return num_items * (base + arte) * shape


def compute_usage_fee(item_value: float, station_fee_per_100: float) -> float:
    return item_value * USAGE_FEE_RATE * (station_fee_per_100 / 100)


# ---------------------------------------------------------------------------
# Rarity map loading
# ---------------------------------------------------------------------------

def _parse_json_map(text: str) -> Dict[str, ArteType]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("rarity map must be a JSON object")
    return {str(k).upper(): ArteType.parse(v) for k, v in data.items()}


def _parse_csv_map(text: str) -> Dict[str, ArteType]:
    out: Dict[str, ArteType] = {}
    for row in csv.reader(io.StringIO(text)):
        if not row or not row[0].strip() or row[0].strip().startswith("#"):
            continue
        if len(row) < 2 or not row[1].strip():
            continue
        core, kind = row[0].strip(), row[1].strip()
        if core.upper() == "CORE" and kind.upper() == "ARTETYPE":
            continue
        out[core.upper()] = ArteType.parse(kind)
    return out


@lru_cache()
def load_arte_map(path: str) -> Dict[str, ArteType]:
    """Load ``core -> ArteType`` from a JSON object or a ``core,arteType`` CSV.

    Loaded once per path for the life of the process.  A missing or
    unreadable file yields an empty map, so every core values as Standard.
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except (FileNotFoundError, PermissionError, OSError) as e:
        log.warning("Rarity map not readable (%s), treating every core as Standard", e)
        return {}
    try:
        arte_map = _parse_json_map(text)
    except ValueError:
        arte_map = _parse_csv_map(text)
    log.info("Loaded %d rarity entries from %s", len(arte_map), p)
    return arte_map


__all__ = [
    "ArteType",
    "ARTE_MULTIPLIER",
    "SHAPESHIFTER_FACTOR",
    "USAGE_FEE_RATE",
    "CRYSTALLIZED_IDS",
    "substitute_for",
    "arte_type_of",
    "compute_item_value",
    "compute_usage_fee",
    "load_arte_map",
]
