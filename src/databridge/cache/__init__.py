"""Local JSON cache for fetch results.

Key components:
- CacheStore: Reads, writes and expires cache entries in one directory
- CacheError and subclasses: Cache persistence failures
"""

from databridge.cache.store import CacheStore
from databridge.errors import (
    CacheError,
    CachePermissionError,
    CacheReadError,
    CacheWriteError,
)

__all__ = [
    "CacheStore",
    "CacheError",
    "CacheReadError",
    "CacheWriteError",
    "CachePermissionError",
]
