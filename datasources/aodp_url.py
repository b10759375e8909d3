from __future__ import annotations

from typing import Dict, List, Tuple

SERVER_BASE = {
    "local":  "http://127.0.0.1:8000",
    "west":   "https://west.albion-online-data.com",
    "east":   "https://east.albion-online-data.com",
    "europe": "https://europe.albion-online-data.com",
}
LOCAL_SERVER = "local"

# Preferred city first, then the rest in this order.
DEFAULT_CITIES = [
    "Martlock", "Bridgewatch", "Lymhurst", "Fort Sterling", "Thetford", "Caerleon", "Brecilien"
]

# Location ids understood by the local price service.
LOCATION_IDS: Dict[str, str] = {
    "Thetford": "0007",
    "Lymhurst": "1002",
    "Bridgewatch": "2004",
    "Black Market": "3003",
    "Caerleon": "3005",
    "Martlock": "3008",
    "Fort Sterling": "4002",
    "Brecilien": "5003",
}


def base_for(server: str | None) -> str:
    return SERVER_BASE.get((server or "europe").lower(), SERVER_BASE["europe"])


def is_local(server: str | None) -> bool:
    return (server or "").lower() == LOCAL_SERVER


def city_query_order(preferred: str, known: List[str] | None = None) -> List[str]:
    """Return ``[preferred, *others]`` so one request covers every fallback city."""
    known = DEFAULT_CITIES if known is None else known
    return [preferred] + [c for c in known if c != preferred]


def build_prices_request(base: str, items: list[str], cities: list[str], quals_csv: str) -> Tuple[str, dict]:
    """
    Returns (url, params) for v2 prices, with LOWERCASE path.
    We pass query via 'params=' so spaces get encoded correctly.
    """
    url = f"{base}/api/v2/stats/prices/{','.join(items)}.json"
    params = {"locations": ",".join(cities)}
    if quals_csv:
        params["qualities"] = quals_csv
    return url, params


def build_local_prices_request(base: str, items: list[str], city: str) -> Tuple[str, dict]:
    """Returns (url, params) for the local single-location prices endpoint."""
    url = f"{base}/api/v2/stats/prices"
    params = {"items": ",".join(items), "location_id": LOCATION_IDS.get(city, city)}
    return url, params


def snapshots_url(base: str) -> str:
    return f"{base.rstrip('/')}/snapshots/bulk"
