import re
from typing import Iterable, List

ALL_QUALITIES = [1, 2, 3, 4, 5]


def parse_quality_input(selection) -> List[int]:
    """Return the selected quality levels; an empty list means "any quality".

    Accepts an iterable of numbers or free text such as ``"1,2"``,
    ``"Normal (1)"`` or ``"All"``.  Values outside 1-5 are ignored.
    """
    if isinstance(selection, Iterable) and not isinstance(selection, (str, bytes)):
        nums = [int(x) for x in selection if str(x).strip().isdigit()]
    else:
        s = (selection or "").strip().lower()
        if not s or s in ("all", "all qualities", "any"):
            return []
        nums = [int(n) for n in re.findall(r"\d+", s)]
    return sorted({n for n in nums if n in ALL_QUALITIES})


def cities_to_list(selection, default_all: list[str]) -> list[str]:
    # Accept list or CSV string; blank/All -> default_all
    if isinstance(selection, (list, tuple)):
        return list(selection) if selection else list(default_all)
    if not selection or str(selection).strip().lower() in ("all", "all cities"):
        return list(default_all)
    return [c.strip() for c in str(selection).split(",") if c.strip()]


def parse_items(raw: str | None) -> List[str]:
    """Parse comma separated ``raw`` string into UPPERCASE item codes."""
    raw = (raw or "").strip()
    return list(dict.fromkeys(t.strip().upper() for t in raw.split(",") if t.strip()))


__all__ = [
    "ALL_QUALITIES",
    "parse_quality_input",
    "cities_to_list",
    "parse_items",
]
