#!/usr/bin/env python3
"""
Albion Craft Profit - command line entry point.

Usage:
    python main.py scan recipes.csv [--server europe] [--city Martlock] [--top 50]
    python main.py prices T4_BAG,T5_BAG [--city Lymhurst] [--qualities 1,2]
    python main.py snapshot T4_BAG,T5_BAG [--server west] [--cities Martlock,Thetford]
    python main.py config set scan.return_rate_pct 24.8
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

import requests
import yaml

from logging_config import setup_logging, get_logger
from datasources.http import FetchCancelled
from engine.config import ConfigError, ConfigManager
from engine.profit_scan import ProfitScanner, ScanConfig, profit_frame
from engine.valuation import load_arte_map
from recipes.loader import RecipeValidationError, load_recipes_csv
from services.market_prices import PriceResolver
from services.uploader import SnapshotUploader, SnapshotUploadError, ingest_price_rows
from utils.params import cities_to_list, parse_items, parse_quality_input
from utils.paths import init_app_paths


def _market_args(p: argparse.ArgumentParser, city: bool = True) -> None:
    p.add_argument("--server")
    if city:
        p.add_argument("--city")
    p.add_argument("--cities", help="Comma separated cities to query; the first is preferred unless --city is given")
    p.add_argument("--qualities")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crafting profit scanner for Albion Online markets")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--log-level", help="Console log level (overrides config)")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Rank recipes by crafting profit")
    scan.add_argument("recipes", help="Headerless CSV: item_id,tier,slot,core,enchant[,artefact]")
    _market_args(scan)
    scan.add_argument("--top", type=int, default=50)

    prices = sub.add_parser("prices", help="Show picked prices for items")
    prices.add_argument("items", help="Comma separated item ids")
    _market_args(prices)

    snap = sub.add_parser("snapshot", help="Fetch market rows and push them to the snapshot service")
    snap.add_argument("items", help="Comma separated item ids")
    _market_args(snap, city=False)

    conf = sub.add_parser("config", help="Show or change the saved configuration")
    conf_sub = conf.add_subparsers(dest="action", required=True)
    conf_sub.add_parser("show", help="Print the effective configuration")
    conf_set = conf_sub.add_parser("set", help="Set a dotted key and save")
    conf_set.add_argument("key", help="Dotted key, e.g. scan.tome_price")
    conf_set.add_argument("value", help="YAML value, e.g. 24.8 or [1, 2]")
    return parser


def _apply_overrides(config: dict, args: argparse.Namespace) -> None:
    if getattr(args, "server", None):
        config["server"] = args.server.lower()
    if getattr(args, "cities", None):
        config["cities"] = cities_to_list(args.cities, config.get("cities") or [])
        if not getattr(args, "city", None) and config.get("city") not in config["cities"]:
            config["city"] = config["cities"][0]
    if getattr(args, "city", None):
        config["city"] = args.city
    if getattr(args, "qualities", None):
        config["qualities"] = parse_quality_input(args.qualities)


def cmd_config(args, manager: ConfigManager) -> int:
    if args.action == "set":
        manager.set(args.key, yaml.safe_load(args.value))
        errors = manager.validate_config()
        if errors:
            for problem in errors:
                print(f"Configuration error: {problem}", file=sys.stderr)
            return 2
        manager.save_config()
        print(f"{args.key} saved to {manager.config_path}")
        return 0
    print(yaml.safe_dump(manager.get_config(), default_flow_style=False, sort_keys=False), end="")
    return 0


def cmd_scan(args, config: dict, resolver: PriceResolver, cancel: threading.Event) -> int:
    recipes = load_recipes_csv(args.recipes)
    arte_map = load_arte_map(str(config["data"]["arte_map"]))
    result = ProfitScanner(resolver, arte_map).scan(recipes, ScanConfig.from_config(config), cancel=cancel)
    df = profit_frame(result.rows).head(args.top)
    print(df.to_string(index=False) if not df.empty else "No profitable rows.")
    if result.failed_ids:
        print(f"\n{len(result.failed_ids)} item prices could not be fetched.", file=sys.stderr)
    return 0


def cmd_prices(args, config: dict, resolver: PriceResolver, cancel: threading.Event) -> int:
    items = parse_items(args.items)
    bulk = resolver.fetch_bulk_prices(
        config["server"], config["city"], items, qualities=config.get("qualities"), cancel=cancel
    )
    for item_id in items:
        p = bulk.picked.get(item_id)
        city = p.city_used if p and p.city_used else "-"
        print(f"{item_id:<40} {bulk.prices.get(item_id, 0):>12,.0f}  {city}")
    return 0


def cmd_snapshot(args, config: dict, resolver: PriceResolver, cancel: threading.Event,
                 uploader: SnapshotUploader) -> int:
    rows = resolver.fetch_price_rows(
        config["server"], parse_items(args.items), qualities=config.get("qualities"), cancel=cancel
    )
    result = ingest_price_rows(rows, uploader, cancel=cancel)
    print(f"Uploaded {result['inserted']} snapshots from {len(rows)} rows.")
    return 0


def main(argv=None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    init_app_paths()

    try:
        manager = ConfigManager(args.config)
        config = manager.load_config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.command == "config":
        return cmd_config(args, manager)

    _apply_overrides(config, args)
    errors = manager.validate_config()
    if errors:
        for problem in errors:
            print(f"Configuration error: {problem}", file=sys.stderr)
        return 2

    log_cfg = config.get("logging", {})
    setup_logging(
        args.log_level or log_cfg.get("level", "INFO"),
        Path(log_cfg["dir"]) if log_cfg.get("dir") else None,
        int(log_cfg.get("max_size_mb", 2)) * 1024 * 1024,
        int(log_cfg.get("backup_count", 5)),
    )
    log = get_logger(__name__)

    cancel = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: cancel.set())

    policy = manager.get_retry_policy()
    resolver = PriceResolver.from_config(config, retry_policy=policy)
    try:
        if args.command == "snapshot":
            uploader = SnapshotUploader.from_config(config, retry_policy=policy)
            return cmd_snapshot(args, config, resolver, cancel, uploader)
        if args.command == "scan":
            return cmd_scan(args, config, resolver, cancel)
        return cmd_prices(args, config, resolver, cancel)
    except FetchCancelled:
        log.warning("Cancelled")
        return 130
    except (RecipeValidationError, SnapshotUploadError) as e:
        log.error("%s", e)
        return 1
    except requests.RequestException as e:
        log.error("Network error: %r", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
