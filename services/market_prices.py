"""Bulk price resolution with chunking, retries, city fallback and a session cache."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
import logging
import random
import threading
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

import requests

from datasources.aodp_url import (
    DEFAULT_CITIES,
    base_for,
    build_local_prices_request,
    build_prices_request,
    city_query_order,
    is_local,
)
from datasources.http import (
    FetchCancelled,
    RetryPolicy,
    check_cancelled,
    get_shared_session,
    pause,
    request_with_retry,
)
from services.price_cache import PriceCache

log = logging.getLogger(__name__)

# 150-200 ids per request keeps the upstream under its row and URL limits.
CHUNK_SIZE = 150
COURTESY_DELAY = 0.12
COURTESY_JITTER = 0.1
DEFAULT_TIMEOUT = (5, 10)


class PriceAPIError(Exception):
    """Permanent failure of a price request (bad status or body)."""


@dataclass(frozen=True)
class PriceRow:
    """One market quote, normalized from either upstream flavour."""
    item_id: str
    city: str
    sell_price_min: float
    quality: Optional[int] = None


@dataclass(frozen=True)
class PickedPrice:
    """Final price decision for one item.

    A price of 0 always comes with ``city_used=None``: "no usable price" is a
    state of its own, not just a numeric zero.
    """
    price: float
    city_used: Optional[str]
    quality_used: Optional[int] = None

    def __post_init__(self):
        if self.price < 0:
            raise ValueError(f"negative price {self.price}")
        if (self.price == 0) != (self.city_used is None):
            raise ValueError("price 0 must pair with city_used=None")

    @classmethod
    def unresolved(cls) -> "PickedPrice":
        return cls(price=0, city_used=None)

    @property
    def resolved(self) -> bool:
        return self.city_used is not None


UNRESOLVED = PickedPrice.unresolved()


@dataclass(frozen=True)
class RawPriceResponse:
    """Undecoded rows tagged with the endpoint flavour that produced them."""
    kind: Literal["aodp", "local"]
    rows: List[Dict[str, Any]]
    queried_city: str


@dataclass
class BulkPrices:
    prices: Dict[str, float] = field(default_factory=dict)
    picked: Dict[str, PickedPrice] = field(default_factory=dict)
    failed_ids: List[str] = field(default_factory=list)


def _num(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return v if v > 0 else 0.0


def _quality(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_aodp_rows(rows: Iterable[Dict[str, Any]]) -> List[PriceRow]:
    """``{item_id, city, sell_price_min, quality?}`` -> PriceRow.

    Rows missing an item id or a city are dropped.
    """
    out: List[PriceRow] = []
    for r in rows:
        item_id = str(r.get("item_id") or "").strip()
        city = str(r.get("city") or "").strip()
        if not item_id or not city:
            continue
        out.append(
            PriceRow(
                item_id=item_id,
                city=city,
                sell_price_min=_num(r.get("sell_price_min")),
                quality=_quality(r.get("quality")),
            )
        )
    return out


def normalize_local_rows(rows: Iterable[Dict[str, Any]], queried_city: str) -> List[PriceRow]:
    """``{item_id, price, cityUsed?}`` -> PriceRow.

    The local service answers for one location and may already have fallen
    back to another city; ``cityUsed`` wins over the queried city.
    """
    out: List[PriceRow] = []
    for r in rows:
        item_id = str(r.get("item_id") or "").strip()
        if not item_id:
            continue
        out.append(
            PriceRow(
                item_id=item_id,
                city=str(r.get("cityUsed") or queried_city),
                sell_price_min=_num(r.get("price")),
                quality=None,
            )
        )
    return out


def normalize_response(raw: RawPriceResponse) -> List[PriceRow]:
    if raw.kind == "local":
        return normalize_local_rows(raw.rows, raw.queried_city)
    return normalize_aodp_rows(raw.rows)


def filter_by_quality(rows: Iterable[PriceRow], qualities: Optional[Iterable[int]]) -> List[PriceRow]:
    """Drop rows with a quality outside ``qualities``; rows without one pass."""
    allowed = {int(q) for q in (qualities or [])}
    if not allowed:
        return list(rows)
    return [r for r in rows if r.quality is None or r.quality in allowed]


def pick_price(rows: Iterable[PriceRow], preferred_city: str) -> Dict[str, PickedPrice]:
    """Apply the preferred-city / cheapest-elsewhere rule per item.

    (a) cheapest positive quote in ``preferred_city``; else (b) cheapest
    positive quote in any other city; else (c) unresolved.
    """
    by_item: Dict[str, List[PriceRow]] = defaultdict(list)
    for r in rows:
        by_item[r.item_id].append(r)

    out: Dict[str, PickedPrice] = {}
    for item, arr in by_item.items():
        positive = [r for r in arr if r.sell_price_min > 0]
        preferred = [r for r in positive if r.city == preferred_city]
        pool = preferred or positive
        if not pool:
            out[item] = UNRESOLVED
            continue
        best = min(pool, key=lambda r: r.sell_price_min)
        out[item] = PickedPrice(best.sell_price_min, best.city, best.quality)
    return out


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    size = max(1, int(size))
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def qualities_csv(qualities: Optional[Iterable[int]]) -> str:
    return ",".join(str(q) for q in sorted({int(q) for q in (qualities or [])}))


class PriceResolver:
    """Resolves one price per item id for a server and preferred city."""

    def __init__(
        self,
        session=None,
        cache: Optional[PriceCache] = None,
        *,
        chunk_size: int = CHUNK_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        courtesy_delay: float = COURTESY_DELAY,
        courtesy_jitter: float = COURTESY_JITTER,
        cities: Optional[Sequence[str]] = None,
        timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
    ):
        self.session = session or get_shared_session()
        self.cache = cache if cache is not None else PriceCache()
        self.chunk_size = max(1, int(chunk_size))
        self.retry_policy = retry_policy or RetryPolicy()
        self.courtesy_delay = max(0.0, courtesy_delay)
        self.courtesy_jitter = max(0.0, courtesy_jitter)
        self.cities = list(cities or DEFAULT_CITIES)
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Dict[str, Any], session=None, cache: Optional[PriceCache] = None,
                    retry_policy: Optional[RetryPolicy] = None) -> "PriceResolver":
        prices_cfg = config.get("prices", {})
        return cls(
            session=session,
            cache=cache,
            chunk_size=prices_cfg.get("chunk_size", CHUNK_SIZE),
            retry_policy=retry_policy or RetryPolicy.from_config(config.get("retry")),
            courtesy_delay=float(prices_cfg.get("courtesy_delay_ms", 120)) / 1000.0,
            courtesy_jitter=float(prices_cfg.get("courtesy_jitter_ms", 100)) / 1000.0,
            cities=config.get("cities") or DEFAULT_CITIES,
            timeout=(
                float(prices_cfg.get("connect_timeout_seconds", DEFAULT_TIMEOUT[0])),
                float(prices_cfg.get("read_timeout_seconds", DEFAULT_TIMEOUT[1])),
            ),
        )

    # -- network -----------------------------------------------------------

    def _request_chunk(
        self,
        endpoint: str,
        ids: List[str],
        cities: List[str],
        qualities: Optional[Iterable[int]],
        cancel: Optional[threading.Event],
    ) -> RawPriceResponse:
        base = base_for(endpoint)
        if is_local(endpoint):
            kind = "local"
            url, params = build_local_prices_request(base, ids, cities[0])
        else:
            kind = "aodp"
            url, params = build_prices_request(base, ids, cities, qualities_csv(qualities))
        log.info("Price GET: endpoint=%s items=%d cities=%d kind=%s", endpoint, len(ids), len(cities), kind)
        log.debug("Price URL: %s params=%s", url, params)

        resp = request_with_retry(
            self.session, "GET", url, self.retry_policy, cancel,
            params=params, timeout=self.timeout,
        )
        status = resp.status_code
        if not 200 <= status < 300:
            raise PriceAPIError(f"Unexpected status {status}")
        try:
            data = resp.json()
        except ValueError as e:
            raise PriceAPIError(f"Invalid JSON response: {e}") from e
        if data is None:
            data = []
        if not isinstance(data, list):
            raise PriceAPIError(f"Expected a JSON array, got {type(data).__name__}")
        log.info("Price RESP: status=%s records=%d", status, len(data))
        return RawPriceResponse(kind=kind, rows=data, queried_city=cities[0])

    def _courtesy_pause(self, cancel: Optional[threading.Event]) -> None:
        pause(self.courtesy_delay + random.uniform(0, self.courtesy_jitter), cancel)

    # -- public API --------------------------------------------------------

    def fetch_price_rows(
        self,
        endpoint: str,
        item_ids: Iterable[str],
        cities: Optional[Sequence[str]] = None,
        qualities: Optional[Iterable[int]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[PriceRow]:
        """Return normalized, quality-filtered rows without picking or caching."""
        ids = list(dict.fromkeys(i.strip() for i in item_ids if i and i.strip()))
        city_list = list(cities or self.cities)
        if not ids or not city_list:
            return []
        qualities = list(qualities or [])
        out: List[PriceRow] = []
        chunks = chunked(ids, self.chunk_size)
        for idx, chunk in enumerate(chunks):
            check_cancelled(cancel)
            try:
                raw = self._request_chunk(endpoint, chunk, city_list, qualities, cancel)
            except FetchCancelled:
                raise
            except (requests.RequestException, PriceAPIError) as e:
                log.error("Chunk failed (%d/%d): %r", idx + 1, len(chunks), e)
            else:
                out.extend(filter_by_quality(normalize_response(raw), qualities))
            if idx < len(chunks) - 1:
                self._courtesy_pause(cancel)
        return out

    def fetch_bulk_prices(
        self,
        endpoint: str,
        preferred_city: str,
        item_ids: Iterable[str],
        qualities: Optional[Iterable[int]] = None,
        cancel: Optional[threading.Event] = None,
        on_progress: Optional[Callable[[int, str], None]] = None,
    ) -> BulkPrices:
        """Resolve a price for every id in ``item_ids``.

        Cached ids cost nothing.  Misses are fetched sequentially in chunks,
        each chunk asking for every known city at once so the fallback rule
        has data without a second round trip.  A chunk that still fails
        after retries leaves its ids unresolved (and uncached) without
        affecting other chunks; cancellation aborts the whole call.
        """
        qualities = sorted({int(q) for q in (qualities or [])})
        uniq = list(dict.fromkeys(i.strip() for i in item_ids if i and i.strip()))
        result = BulkPrices()

        miss: List[str] = []
        for item_id in uniq:
            cached = self.cache.get(PriceCache.make_key(endpoint, preferred_city, qualities, item_id))
            if cached is not None:
                result.prices[item_id] = cached.price
                result.picked[item_id] = cached
            else:
                miss.append(item_id)

        if not miss:
            log.debug("All %d ids served from cache", len(uniq))
            return result

        log.info("Resolving %d ids (%d cached) on %s for %s", len(miss), len(uniq) - len(miss), endpoint, preferred_city)
        cities = city_query_order(preferred_city, self.cities)
        chunks = chunked(miss, self.chunk_size)
        total = len(chunks)

        for idx, ids in enumerate(chunks):
            check_cancelled(cancel)
            try:
                raw = self._request_chunk(endpoint, ids, cities, qualities, cancel)
            except FetchCancelled:
                raise
            except (requests.RequestException, PriceAPIError) as e:
                log.error("Chunk failed (%d/%d): %r", idx + 1, total, e)
                result.failed_ids.extend(ids)
                for item_id in ids:
                    result.prices[item_id] = UNRESOLVED.price
                    result.picked[item_id] = UNRESOLVED
            else:
                rows = filter_by_quality(normalize_response(raw), qualities)
                chunk_picked = pick_price(rows, preferred_city)
                for item_id in ids:
                    p = chunk_picked.get(item_id, UNRESOLVED)
                    result.prices[item_id] = p.price
                    result.picked[item_id] = p
                    self.cache.put(PriceCache.make_key(endpoint, preferred_city, qualities, item_id), p)

            if on_progress:
                on_progress(int((idx + 1) / total * 100), f"Fetched {idx + 1}/{total} chunks")
            if idx < total - 1:
                self._courtesy_pause(cancel)

        if result.failed_ids:
            log.warning("Resolution completed with %d unresolved ids from failed chunks", len(result.failed_ids))
        return result

    def invalidate(self, predicate: Optional[Callable[[str], bool]] = None) -> int:
        return self.cache.invalidate(predicate)


__all__ = [
    "PriceAPIError",
    "PriceRow",
    "PickedPrice",
    "UNRESOLVED",
    "RawPriceResponse",
    "BulkPrices",
    "PriceResolver",
    "normalize_aodp_rows",
    "normalize_local_rows",
    "normalize_response",
    "filter_by_quality",
    "pick_price",
    "chunked",
    "qualities_csv",
    "CHUNK_SIZE",
]
