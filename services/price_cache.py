from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from services.market_prices import PickedPrice

log = logging.getLogger(__name__)

ANY_QUALITY = "*"
KEY_SEP = "|"


def quality_token(qualities: Optional[Iterable[int]]) -> str:
    quals = sorted({int(q) for q in (qualities or [])})
    return ",".join(map(str, quals)) if quals else ANY_QUALITY


class PriceCache:
    """Session-lifetime map of ``endpoint|city|qualitySet|itemId`` -> PickedPrice.

    Entries never expire; callers drop them with :meth:`invalidate` when a
    server, city or quality selection changes.  Check-then-insert across
    threads is serialized by the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._map: Dict[str, "PickedPrice"] = {}

    @staticmethod
    def make_key(endpoint: str, city: str, qualities: Optional[Iterable[int]], item_id: str) -> str:
        return KEY_SEP.join((endpoint, city, quality_token(qualities), item_id))

    @staticmethod
    def key_prefix(endpoint: str, city: Optional[str] = None) -> str:
        parts = [endpoint] if city is None else [endpoint, city]
        return KEY_SEP.join(parts) + KEY_SEP

    def get(self, key: str) -> Optional["PickedPrice"]:
        with self._lock:
            return self._map.get(key)

    def put(self, key: str, picked: "PickedPrice") -> None:
        with self._lock:
            self._map[key] = picked

    def invalidate(self, predicate: Optional[Callable[[str], bool]] = None) -> int:
        """Drop every entry, or only those whose key satisfies ``predicate``."""
        with self._lock:
            if predicate is None:
                n = len(self._map)
                self._map.clear()
            else:
                dead = [k for k in self._map if predicate(k)]
                for k in dead:
                    del self._map[k]
                n = len(dead)
        log.info("Price cache invalidated %d entries", n)
        return n

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._map)

    def __len__(self) -> int:
        with self._lock:
            return len(self._map)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._map


__all__ = ["PriceCache", "quality_token", "ANY_QUALITY"]
