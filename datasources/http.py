"""Shared HTTP session and the retry policy used by every price read and snapshot write."""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import requests
from requests.adapters import HTTPAdapter

log = logging.getLogger(__name__)

_session_local = threading.local()

RETRY_STATUSES: Tuple[int, ...] = (429, 502, 503, 504)


class FetchCancelled(Exception):
    """Raised when the caller's cancel event is set; never retried."""


def _new_session() -> requests.Session:
    s = requests.Session()
    # Retrying is owned by RetryPolicy, not by the adapter.
    adapter = HTTPAdapter(pool_connections=20, pool_maxsize=50, max_retries=0)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update({
        "User-Agent": "AlbionCraftProfit/1.0",
        "Accept": "application/json",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    })
    return s


def get_shared_session() -> requests.Session:
    s = getattr(_session_local, "session", None)
    if s is None:
        s = _new_session()
        _session_local.session = s
    return s


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with exponential backoff and additive jitter.

    The delay before retry ``k`` (0-indexed) is
    ``base_delay * 2**k + uniform(0, jitter)`` seconds.
    """

    max_attempts: int = 4
    base_delay: float = 0.3
    jitter: float = 0.1
    retry_statuses: Tuple[int, ...] = RETRY_STATUSES

    @classmethod
    def from_config(cls, retry_cfg: Optional[dict]) -> "RetryPolicy":
        """Build from a ``retry`` config section (delays in milliseconds)."""
        retry_cfg = retry_cfg or {}
        return cls(
            max_attempts=max(1, int(retry_cfg.get("max_attempts", 4))),
            base_delay=float(retry_cfg.get("base_delay_ms", 300)) / 1000.0,
            jitter=float(retry_cfg.get("jitter_ms", 100)) / 1000.0,
            retry_statuses=tuple(int(s) for s in retry_cfg.get("retry_statuses", RETRY_STATUSES)),
        )

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt) + random.uniform(0, self.jitter)

    def should_retry(self, status: int) -> bool:
        return status in self.retry_statuses


DEFAULT_POLICY = RetryPolicy()


def check_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise FetchCancelled("request cancelled")


def pause(delay: float, cancel: Optional[threading.Event] = None) -> None:
    """Sleep for ``delay`` seconds, waking up early if ``cancel`` is set."""
    if delay <= 0:
        check_cancelled(cancel)
        return
    if cancel is None:
        time.sleep(delay)
        return
    if cancel.wait(delay):
        raise FetchCancelled("request cancelled")


def request_with_retry(
    session,
    method: str,
    url: str,
    policy: Optional[RetryPolicy] = None,
    cancel: Optional[threading.Event] = None,
    **kwargs,
) -> requests.Response:
    """Perform one logical request under ``policy``.

    Non-retryable error statuses are returned as-is so the caller can decide
    what to do with them.  When every attempt failed, the last transport
    error is re-raised; if all failures were status-only, one final
    unretried attempt is made and its response returned.
    """
    policy = policy or DEFAULT_POLICY
    send = getattr(session, method.lower())
    last_err: Optional[BaseException] = None

    for attempt in range(policy.max_attempts):
        check_cancelled(cancel)
        try:
            resp = send(url, **kwargs)
        except requests.RequestException as e:
            last_err = e
            log.warning("%s %s failed (attempt %d/%d): %r",
                        method.upper(), url, attempt + 1, policy.max_attempts, e)
            pause(policy.delay_for(attempt), cancel)
            continue

        status = resp.status_code
        if 200 <= status < 300:
            return resp
        if policy.should_retry(status):
            log.info("%s %s -> %d, backing off (attempt %d/%d)",
                     method.upper(), url, status, attempt + 1, policy.max_attempts)
            pause(policy.delay_for(attempt), cancel)
            continue
        return resp

    if last_err is not None:
        raise last_err
    check_cancelled(cancel)
    return send(url, **kwargs)


__all__ = [
    "FetchCancelled",
    "RetryPolicy",
    "DEFAULT_POLICY",
    "RETRY_STATUSES",
    "check_cancelled",
    "pause",
    "request_with_retry",
    "get_shared_session",
]
