"""Data source helpers for the craft profit scanner."""

# Delay heavy imports to avoid circular dependencies
__all__ = ["FetchCancelled", "RetryPolicy", "request_with_retry", "get_shared_session"]


def __getattr__(name):  # pragma: no cover - simple lazy loader
    if name in __all__:
        from . import http
        value = getattr(http, name)
        globals()[name] = value
        return value
    raise AttributeError(name)
