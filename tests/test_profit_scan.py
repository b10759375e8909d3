import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

import pytest

from engine.profit_scan import (
    ArtefactChoice,
    ProfitScanner,
    ScanConfig,
    SkipReason,
    pick_artefact_or_crystallized,
    profit_frame,
    required_item_ids,
    scan_profit,
)
from engine.valuation import ArteType
from recipes.loader import MaterialKind, MaterialRequirement, Recipe
from services.market_prices import UNRESOLVED, BulkPrices, PickedPrice


class FakeResolver:
    def __init__(self, prices, failed=()):
        self.prices = prices
        self.failed = list(failed)
        self.calls = []

    def fetch_bulk_prices(self, endpoint, city, item_ids, qualities=None, cancel=None, on_progress=None):
        self.calls.append((endpoint, city, list(item_ids), qualities))
        res = BulkPrices(failed_ids=list(self.failed))
        for item_id in item_ids:
            price = self.prices.get(item_id, 0)
            res.prices[item_id] = price
            res.picked[item_id] = PickedPrice(price, city) if price > 0 else UNRESOLVED
        return res


def cfg(**kw):
    base = dict(
        server="europe", city="Martlock", sale_tax_pct=4.0, listing_pct=2.5,
        return_rate_pct=0.0, station_fee_per_100=0.0,
    )
    base.update(kw)
    return ScanConfig(**base)


def sword(tier=4, enchant=0, extra=()):
    mats = (
        MaterialRequirement("T4_METALBAR", 16),
        MaterialRequirement("T4_LEATHER", 8),
    ) + tuple(extra)
    return Recipe("T4_MAIN_SWORD", tier, enchant, "MAIN", "SWORD", mats)


def test_crystallized_wins_when_cheaper():
    prices = {"T6_ARTEFACT_MAIN_RUNESWORD": 500, "CRYSTALLIZED_SPIRIT": 300}
    cost, choice = pick_artefact_or_crystallized(ArteType.RUNE, "T6_ARTEFACT_MAIN_RUNESWORD", prices)
    assert (cost, choice) == (300, ArtefactChoice.CRYSTALLIZED)


def test_artefact_wins_ties_and_unpriced_substitute():
    prices = {"ART": 300, "CRYSTALLIZED_SPIRIT": 300}
    assert pick_artefact_or_crystallized(ArteType.RUNE, "ART", prices) == (300, ArtefactChoice.ARTEFACT)
    assert pick_artefact_or_crystallized(ArteType.RUNE, "ART", {"ART": 10}) == (10, ArtefactChoice.ARTEFACT)
    assert pick_artefact_or_crystallized(ArteType.MIST, "ART", {"ART": 10, "CRYSTALLIZED_SPIRIT": 1}) == (
        10, ArtefactChoice.ARTEFACT)


def test_neither_priced_contributes_nothing():
    assert pick_artefact_or_crystallized(ArteType.SOUL, "ART", {}) == (0.0, ArtefactChoice.UNPRICED)


def test_required_ids_include_materials_and_crystallized():
    ids = required_item_ids([sword(), sword()])
    assert ids[:3] == ["T4_MAIN_SWORD", "T4_METALBAR", "T4_LEATHER"]
    assert "CRYSTALLIZED_DIVINITY" in ids
    assert len(ids) == len(set(ids))


def test_full_profit_row():
    prices = {"T4_MAIN_SWORD": 1000, "T4_METALBAR": 10, "T4_LEATHER": 20}
    resolver = FakeResolver(prices)
    result = ProfitScanner(resolver).scan([sword()], cfg(return_rate_pct=50, station_fee_per_100=100))
    row = result.rows[0]
    assert row.material_cost == pytest.approx(320)
    assert row.effective_material_cost == pytest.approx(160)
    assert row.usage_fee == pytest.approx(384 * 0.1125)
    assert row.profit == pytest.approx(935 - 160 - 43.2)
    assert row.profit_margin == pytest.approx(row.profit / 1000 * 100)
    assert row.arte_type == "Standard"
    assert resolver.calls[0][:2] == ("europe", "Martlock")


def test_substitution_recorded_on_row():
    art = MaterialRequirement("T4_ARTEFACT_MAIN_SWORD", 1, MaterialKind.ARTEFACT)
    prices = {"T4_MAIN_SWORD": 2000, "T4_ARTEFACT_MAIN_SWORD": 500, "CRYSTALLIZED_SPIRIT": 300}
    rows = scan_profit([sword(extra=[art])], cfg(), FakeResolver(prices), {"SWORD": ArteType.RUNE})
    row = rows[0]
    assert row.substituted
    assert row.artefact_choices == {"T4_ARTEFACT_MAIN_SWORD": ArtefactChoice.CRYSTALLIZED}
    assert row.material_cost == pytest.approx(300)
    assert row.arte_type == "Rune"


def test_unresolved_product_has_zero_margin():
    rows = scan_profit([sword()], cfg(), FakeResolver({"T4_METALBAR": 10}))
    assert rows[0].product_price == 0
    assert rows[0].profit_margin == 0
    assert rows[0].profit == pytest.approx(-160)


def test_tome_cost_added_for_insight_items():
    bag = Recipe("T4_BAG_INSIGHT", 4, 0, "BAG", "INSIGHT",
                 (MaterialRequirement("T4_CLOTH", 8),), requires_tome=True)
    prices = {"T4_BAG_INSIGHT": 5000, "T4_CLOTH": 10}
    rows = scan_profit([bag], cfg(tome_price=1000, return_rate_pct=50), FakeResolver(prices))
    assert rows[0].material_cost == pytest.approx(1080)
    assert rows[0].effective_material_cost == pytest.approx(1040)


def test_skips_unparseable_and_city_capes():
    bad = Recipe("T9_MAIN_SWORD", 9, 0, "MAIN", "SWORD")
    cape = Recipe("T4_CAPE_FW_CAPE_BRIDGEWATCH", 4, 0, "CAPE", "FW_CAPE_BRIDGEWATCH")
    result = ProfitScanner(FakeResolver({})).scan([bad, cape, sword()], cfg())
    assert [r.item_id for r in result.rows] == ["T4_MAIN_SWORD"]
    assert result.skipped == {
        "T9_MAIN_SWORD": SkipReason.UNPARSEABLE,
        "T4_CAPE_FW_CAPE_BRIDGEWATCH": SkipReason.CITY_CAPE,
    }


def test_rows_sorted_by_profit_and_failures_reported():
    cheap = Recipe("T4_OFF_SHIELD", 4, 0, "OFF", "SHIELD")
    pricey = Recipe("T5_2H_CLAYMORE", 5, 0, "2H", "CLAYMORE")
    prices = {"T4_OFF_SHIELD": 100, "T5_2H_CLAYMORE": 900}
    result = ProfitScanner(FakeResolver(prices, failed=["X"])).scan([cheap, pricey], cfg())
    assert [r.item_id for r in result.rows] == ["T5_2H_CLAYMORE", "T4_OFF_SHIELD"]
    assert result.failed_ids == ["X"]


def test_empty_recipes_make_no_request():
    resolver = FakeResolver({})
    assert ProfitScanner(resolver).scan([], cfg()).rows == []
    assert resolver.calls == []


def test_profit_frame_columns():
    rows = scan_profit([sword()], cfg(), FakeResolver({"T4_MAIN_SWORD": 1000}))
    df = profit_frame(rows)
    assert list(df.columns)[:2] == ["item_id", "profit"]
    assert "artefact_choices" not in df.columns
    assert df.iloc[0]["item_id"] == "T4_MAIN_SWORD"
    assert profit_frame([]).empty


def test_scan_config_from_config():
    config = {
        "server": "west", "city": "Lymhurst", "qualities": [2],
        "scan": {"sale_tax_pct": 8, "listing_pct": 2.5, "return_rate_pct": 24.8,
                 "station_fee_per_100": 300, "tome_price": 4000},
    }
    sc = ScanConfig.from_config(config)
    assert (sc.server, sc.city, sc.qualities) == ("west", "Lymhurst", [2])
    assert sc.sale_tax_pct == 8.0 and sc.station_fee_per_100 == 300.0 and sc.tome_price == 4000.0
    assert ScanConfig.from_config({}).qualities is None
