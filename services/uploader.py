"""Bulk upload of price snapshots to the local persistence service."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from datasources.aodp_url import SERVER_BASE, snapshots_url
from datasources.http import RetryPolicy, check_cancelled, get_shared_session, pause, request_with_retry

log = logging.getLogger(__name__)

SNAPSHOT_CHUNK_SIZE = 200


class SnapshotUploadError(Exception):
    """The snapshot service rejected a chunk."""

    def __init__(self, status: int, reason: str = "", body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"bulk upload failed: {status} {reason} {body}".rstrip())


@dataclass
class SnapshotInput:
    item_id: str
    city: str
    sell_price_min: float = 0
    buy_price_max: float = 0
    quality: Optional[int] = None

    def to_payload(self) -> Dict:
        return {
            "item_id": self.item_id,
            "city": self.city,
            "sell_price_min": int(self.sell_price_min or 0),
            "buy_price_max": int(self.buy_price_max or 0),
            "quality": self.quality,
        }


def snapshots_from_rows(rows: Iterable) -> List[SnapshotInput]:
    """Convert resolver PriceRows into snapshots; buy prices are unknown (0)."""
    return [
        SnapshotInput(
            item_id=r.item_id,
            city=r.city,
            sell_price_min=r.sell_price_min or 0,
            buy_price_max=0,
            quality=r.quality,
        )
        for r in rows
    ]


class SnapshotUploader:
    def __init__(
        self,
        base_url: str = SERVER_BASE["local"],
        session=None,
        chunk_size: int = SNAPSHOT_CHUNK_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        courtesy_delay: float = 0.12,
        courtesy_jitter: float = 0.1,
        timeout=(5, 30),
    ):
        self.url = snapshots_url(base_url)
        self.session = session or get_shared_session()
        self.chunk_size = max(1, int(chunk_size))
        self.retry_policy = retry_policy or RetryPolicy()
        self.courtesy_delay = courtesy_delay
        self.courtesy_jitter = courtesy_jitter
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Dict, session=None,
                    retry_policy: Optional[RetryPolicy] = None) -> "SnapshotUploader":
        snap = config.get("snapshots", {})
        return cls(
            base_url=snap.get("base_url", SERVER_BASE["local"]),
            session=session,
            chunk_size=snap.get("chunk_size", SNAPSHOT_CHUNK_SIZE),
            retry_policy=retry_policy or RetryPolicy.from_config(config.get("retry")),
        )

    def push(self, snapshots: Iterable[SnapshotInput], cancel: Optional[threading.Event] = None) -> Dict:
        """Upload ``snapshots`` in chunks; the first rejected chunk raises."""
        payload = [s.to_payload() for s in snapshots]
        total = 0
        for start in range(0, len(payload), self.chunk_size):
            check_cancelled(cancel)
            chunk = payload[start:start + self.chunk_size]
            resp = request_with_retry(
                self.session, "POST", self.url, self.retry_policy, cancel,
                json=chunk, timeout=self.timeout,
            )
            if not 200 <= resp.status_code < 300:
                body = getattr(resp, "text", "") or ""
                raise SnapshotUploadError(resp.status_code, getattr(resp, "reason", "") or "", body)
            try:
                data = resp.json() or {}
            except ValueError:
                data = {}
            inserted = data.get("inserted") if isinstance(data, dict) else None
            total += int(inserted) if inserted is not None else len(chunk)
            log.info("Snapshot chunk uploaded: rows=%d inserted=%s", len(chunk), inserted)
            if start + self.chunk_size < len(payload):
                pause(self.courtesy_delay + random.uniform(0, self.courtesy_jitter), cancel)
        return {"ok": True, "inserted": total}


def ingest_price_rows(rows: Iterable, uploader: SnapshotUploader,
                      cancel: Optional[threading.Event] = None) -> Dict:
    result = uploader.push(snapshots_from_rows(rows), cancel=cancel)
    log.info("uploaded: %s", result)
    return result


__all__ = [
    "SnapshotInput",
    "SnapshotUploader",
    "SnapshotUploadError",
    "snapshots_from_rows",
    "ingest_price_rows",
    "SNAPSHOT_CHUNK_SIZE",
]
