"""In-process caching with TTL expiry."""

from __future__ import annotations

from threadmux.cache.ttl_cache import TTLCache

__all__ = ["TTLCache"]
