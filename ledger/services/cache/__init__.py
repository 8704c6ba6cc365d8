"""Response cache package."""

from ledger.services.cache.response_cache import ResponseCache

__all__ = ["ResponseCache"]
