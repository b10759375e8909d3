"""
Recipe loader for the craft profit scanner.

Builds recipes from a headerless item table with the columns
``item_id, tier, slot, core, enchant[, artefact]``.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Tuple

import pandas as pd

log = logging.getLogger(__name__)

RECIPE_ID_RE = re.compile(r"^T[4-8]_(MAIN|2H|OFF|ARMOR|HEAD|SHOES|BAG|CAPE)_")
_CITY_CAPE_RE = re.compile(r"_CAPE_")
_INSIGHT_RE = re.compile(r"INSIGHT")
_TRUTHY = {"1", "true", "yes", "y", "x"}
COLUMNS = ("item_id", "tier", "slot", "core", "enchant", "artefact")


class MaterialKind(str, Enum):
    RESOURCE = "resource"
    ARTEFACT = "artefact"


@dataclass(frozen=True)
class MaterialRequirement:
    item_id: str
    quantity: int
    kind: MaterialKind = MaterialKind.RESOURCE


@dataclass(frozen=True)
class Recipe:
    """Represents a crafting recipe."""
    item_id: str
    tier: int
    enchant: int
    slot: str
    core: str
    materials: Tuple[MaterialRequirement, ...] = ()
    requires_tome: bool = False


class RecipeValidationError(Exception):
    """Exception raised when the recipe table cannot be read."""
    pass


def with_enchant(base_id: str, enchant: int) -> str:
    return f"{base_id}@{enchant}" if enchant > 0 else base_id


def artefact_id(tier: int, slot: str, core: str) -> str:
    return f"T{tier}_ARTEFACT_{slot}_{core}"


def default_materials(tier: int, slot: str, enchant: int) -> List[MaterialRequirement]:
    """Standard resource bill for a slot; refined resources carry the enchant."""
    def res(name: str, qty: int) -> MaterialRequirement:
        return MaterialRequirement(with_enchant(f"T{tier}_{name}", enchant), qty)

    if slot == "BAG":
        return [res("CLOTH", 8), res("LEATHER", 8)]
    if slot == "CAPE":
        return [res("CLOTH", 4), res("LEATHER", 4)]
    if slot == "OFF":
        return [res("PLANKS", 4), res("METALBAR", 4)]
    return [res("METALBAR", 16), res("LEATHER", 8)]


def _cell(row: Tuple[Any, ...], idx: int) -> Optional[str]:
    if idx >= len(row):
        return None
    value = row[idx]
    if value is None or pd.isna(value):
        return None
    return str(value).strip()


def _to_int(value: Optional[str], default: int = 0) -> int:
    try:
        return int(float(value)) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default


def recipes_from_frame(df: pd.DataFrame) -> List[Recipe]:
    """Turn table rows into recipes, skipping non-craftable ids and city capes."""
    out: List[Recipe] = []
    skipped = 0
    for row in df.itertuples(index=False, name=None):
        item_id = _cell(row, 0) or ""
        if not RECIPE_ID_RE.match(item_id):
            skipped += 1
            continue
        tier = _to_int(_cell(row, 1))
        slot = (_cell(row, 2) or "").upper()
        core = (_cell(row, 3) or "").upper()
        enchant = _to_int(_cell(row, 4))
        if not 4 <= tier <= 8 or not slot or not core:
            log.warning("Skipping malformed recipe row for %s", item_id)
            skipped += 1
            continue
        if slot == "CAPE" and _CITY_CAPE_RE.search(core):
            skipped += 1
            continue

        materials = default_materials(tier, slot, enchant)
        if (_cell(row, 5) or "").lower() in _TRUTHY:
            materials.append(MaterialRequirement(artefact_id(tier, slot, core), 1, MaterialKind.ARTEFACT))

        out.append(
            Recipe(
                item_id=item_id,
                tier=tier,
                enchant=enchant,
                slot=slot,
                core=core,
                materials=tuple(materials),
                requires_tome=bool(_INSIGHT_RE.search(core)),
            )
        )
    log.info("Built %d recipes (%d rows skipped)", len(out), skipped)
    return out


def load_recipes_csv(path) -> List[Recipe]:
    """Load recipes from a headerless CSV file."""
    p = Path(path)
    try:
        df = pd.read_csv(
            p, header=None, names=list(range(len(COLUMNS))), index_col=False,
            dtype=str, skip_blank_lines=True, comment="#",
        )
    except FileNotFoundError as e:
        raise RecipeValidationError(f"Recipes file not found: {p}") from e
    except pd.errors.EmptyDataError:
        log.warning("Recipes file %s is empty", p)
        return []
    except (pd.errors.ParserError, UnicodeDecodeError, OSError) as e:
        raise RecipeValidationError(f"Failed to parse recipes file {p}: {e}") from e
    return recipes_from_frame(df)


__all__ = [
    "MaterialKind",
    "MaterialRequirement",
    "Recipe",
    "RecipeValidationError",
    "with_enchant",
    "artefact_id",
    "default_materials",
    "recipes_from_frame",
    "load_recipes_csv",
]
