"""
Profit scanner for crafted items.

Joins recipes, resolved market prices and item valuation into one profit
row per craftable item.  Rare artefacts are replaced by their crystallized
equivalent whenever that is cheaper.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from engine.fees import FeeCalculator
from engine.item_meta import classify_meta, parse_item_identifier
from engine.valuation import (
    CRYSTALLIZED_IDS,
    ArteType,
    arte_type_of,
    compute_item_value,
    compute_usage_fee,
    substitute_for,
)
from recipes.loader import MaterialKind, Recipe
from services.market_prices import PickedPrice, PriceResolver

log = logging.getLogger(__name__)

INF = float("inf")


class ArtefactChoice(str, Enum):
    ARTEFACT = "artefact"
    CRYSTALLIZED = "crystallized"
    UNPRICED = "unpriced"


class SkipReason(str, Enum):
    UNPARSEABLE = "unparseable"
    CITY_CAPE = "city_cape"


@dataclass
class ScanConfig:
    server: str
    city: str
    sale_tax_pct: float
    listing_pct: float
    return_rate_pct: float
    station_fee_per_100: float
    tome_price: float = 0.0
    qualities: Optional[List[int]] = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ScanConfig":
        scan = config.get('scan', {})
        return cls(
            server=config.get('server', 'europe'),
            city=config.get('city', 'Martlock'),
            sale_tax_pct=float(scan.get('sale_tax_pct', 4.0)),
            listing_pct=float(scan.get('listing_pct', 2.5)),
            return_rate_pct=float(scan.get('return_rate_pct', 15.2)),
            station_fee_per_100=float(scan.get('station_fee_per_100', 100)),
            tome_price=float(scan.get('tome_price', 0) or 0),
            qualities=list(config.get('qualities') or []) or None,
        )


@dataclass
class ProfitRow:
    item_id: str
    profit: float
    profit_margin: float
    product_price: float
    usage_fee: float
    material_cost: float
    effective_material_cost: float
    arte_type: str
    substituted: bool = False
    artefact_choices: Dict[str, ArtefactChoice] = field(default_factory=dict)


@dataclass
class ScanResult:
    rows: List[ProfitRow] = field(default_factory=list)
    picked: Dict[str, PickedPrice] = field(default_factory=dict)
    failed_ids: List[str] = field(default_factory=list)
    skipped: Dict[str, SkipReason] = field(default_factory=dict)


def _price_or_inf(prices: Mapping[str, float], item_id: Optional[str]) -> float:
    if not item_id:
        return INF
    price = prices.get(item_id, 0) or 0
    return price if price > 0 else INF


def pick_artefact_or_crystallized(
    arte_type: ArteType, artefact_item_id: str, prices: Mapping[str, float]
) -> Tuple[float, ArtefactChoice]:
    """Cheaper of the raw artefact and its crystallized substitute.

    Unresolved prices count as unbounded; when neither side has a price
    the cost contribution is zero.
    """
    arte_price = _price_or_inf(prices, artefact_item_id)
    sub_price = _price_or_inf(prices, substitute_for(arte_type))
    if arte_price == INF and sub_price == INF:
        return 0.0, ArtefactChoice.UNPRICED
    if arte_price <= sub_price:
        return arte_price, ArtefactChoice.ARTEFACT
    return sub_price, ArtefactChoice.CRYSTALLIZED


def required_item_ids(recipes: Iterable[Recipe]) -> List[str]:
    """Products, materials and every crystallized substitute, deduplicated."""
    ids: List[str] = []
    for r in recipes:
        ids.append(r.item_id)
        ids.extend(m.item_id for m in r.materials)
    ids.extend(CRYSTALLIZED_IDS)
    return list(dict.fromkeys(ids))


class ProfitScanner:
    """Computes ranked profit rows for a set of recipes."""

    def __init__(self, resolver: PriceResolver, arte_map: Optional[Mapping[str, ArteType]] = None):
        self.resolver = resolver
        self.arte_map = dict(arte_map or {})

    def scan(
        self,
        recipes: Iterable[Recipe],
        config: ScanConfig,
        cancel: Optional[threading.Event] = None,
    ) -> ScanResult:
        recipes = list(recipes)
        result = ScanResult()
        if not recipes:
            return result

        bulk = self.resolver.fetch_bulk_prices(
            config.server, config.city, required_item_ids(recipes),
            qualities=config.qualities, cancel=cancel,
        )
        result.picked = bulk.picked
        result.failed_ids = bulk.failed_ids
        prices = bulk.prices
        fees = FeeCalculator(config.sale_tax_pct, config.listing_pct)

        for r in recipes:
            if parse_item_identifier(r.item_id) is None:
                result.skipped[r.item_id] = SkipReason.UNPARSEABLE
                continue
            meta = classify_meta(r.core, r.slot)
            if meta.is_cape_city:
                result.skipped[r.item_id] = SkipReason.CITY_CAPE
                continue
            result.rows.append(self._profit_row(r, meta, prices, config, fees))

        result.rows.sort(key=lambda row: row.profit, reverse=True)
        log.info(
            "Profit scan: %d rows, %d skipped, %d unresolved ids",
            len(result.rows), len(result.skipped), len(result.failed_ids),
        )
        return result

    def _profit_row(self, r: Recipe, meta, prices: Mapping[str, float],
                    config: ScanConfig, fees: FeeCalculator) -> ProfitRow:
        arte_type = arte_type_of(r.core, self.arte_map)
        item_value = compute_item_value(r.tier, r.enchant, meta.num_items, arte_type, meta.is_shapeshifter)
        usage_fee = compute_usage_fee(item_value, config.station_fee_per_100)
        product_price = prices.get(r.item_id, 0) or 0

        resource_cost = 0.0
        artefact_cost = 0.0
        choices: Dict[str, ArtefactChoice] = {}
        for m in r.materials:
            if m.kind == MaterialKind.ARTEFACT:
                unit, choice = pick_artefact_or_crystallized(arte_type, m.item_id, prices)
                artefact_cost += unit * m.quantity
                choices[m.item_id] = choice
            else:
                resource_cost += (prices.get(m.item_id, 0) or 0) * m.quantity

        tome_cost = config.tome_price if (r.requires_tome or meta.requires_tome) else 0.0
        costs = fees.calculate_crafting_costs(resource_cost, artefact_cost, tome_cost, config.return_rate_pct)
        revenue = fees.calculate_sell_order_revenue(product_price)

        profit = revenue.net_amount - (costs['effective_material_cost'] + usage_fee)
        margin = profit / product_price * 100 if product_price > 0 else 0.0

        return ProfitRow(
            item_id=r.item_id,
            profit=profit,
            profit_margin=margin,
            product_price=product_price,
            usage_fee=usage_fee,
            material_cost=costs['material_cost'],
            effective_material_cost=costs['effective_material_cost'],
            arte_type=arte_type.value,
            substituted=any(c == ArtefactChoice.CRYSTALLIZED for c in choices.values()),
            artefact_choices=choices,
        )


def scan_profit(
    recipes: Iterable[Recipe],
    config: ScanConfig,
    resolver: PriceResolver,
    arte_map: Optional[Mapping[str, ArteType]] = None,
    cancel: Optional[threading.Event] = None,
) -> List[ProfitRow]:
    return ProfitScanner(resolver, arte_map).scan(recipes, config, cancel=cancel).rows


PROFIT_COLUMNS = [
    "item_id", "profit", "profit_margin", "product_price", "usage_fee",
    "material_cost", "effective_material_cost", "arte_type", "substituted",
]


def profit_frame(rows: Iterable[ProfitRow]) -> pd.DataFrame:
    """Tabular view of profit rows, in the order given."""
    records = []
    for row in rows:
        rec = asdict(row)
        rec.pop("artefact_choices", None)
        records.append(rec)
    return pd.DataFrame(records, columns=PROFIT_COLUMNS)


__all__ = [
    "ArtefactChoice",
    "SkipReason",
    "ScanConfig",
    "ProfitRow",
    "ScanResult",
    "ProfitScanner",
    "scan_profit",
    "pick_artefact_or_crystallized",
    "required_item_ids",
    "profit_frame",
]
