"""Typed records shared by the cache store and fetch responses."""

from typing import Any

from typing_extensions import TypedDict

# Fetch response metadata keys
META_CACHE_READ = "cache_read"
META_CACHE_WRITE = "cache_write"
META_CACHE_WRITE_ERROR = "cache_write_error"


class CacheEntry(TypedDict):
    """On-disk cache file contents."""

    data: Any
    timestamp: str  # ISO 8601 time of the write


class CacheWriteRecord(TypedDict):
    """Metadata stored under ``cache_write`` after a successful write."""

    path: str
    timestamp: str  # ISO 8601, same as the file's timestamp


class CacheReadRecord(TypedDict):
    """Metadata stored under ``cache_read`` on a cache hit."""

    path: str
    timestamp: str  # ISO 8601 time the entry was written
    age: float  # seconds between the write and the request


class CacheStatus(TypedDict):
    """Snapshot of one cache entry's freshness."""

    path: str
    timestamp: str
    age: float
    ttl: int
    ttl_remaining: int
    fresh: bool
