"""Exception hierarchy for databridge."""

from pathlib import Path
from typing import Optional, Union


class DatabridgeError(Exception):
    """Base exception for databridge errors."""

    pass


class ValidationError(DatabridgeError, ValueError):
    """Raised when a constructor or method receives malformed arguments."""

    pass


class NameConflictError(DatabridgeError, ValueError):
    """Raised when a datasource name is already taken on a bridge."""

    pass


class UnknownDatasourceError(DatabridgeError, KeyError):
    """Raised when a fetch is requested for an unregistered datasource."""

    def __str__(self) -> str:
        # KeyError repr()s its message otherwise
        return str(self.args[0]) if self.args else ""


class CacheError(DatabridgeError):
    """Base exception for cache persistence errors.

    Attributes:
        path: Cache file involved, if known
    """

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = str(path) if path is not None else None


class CacheReadError(CacheError):
    """Raised when a cache file exists but cannot be read or parsed."""

    pass


class CacheWriteError(CacheError):
    """Raised when fetched data cannot be persisted to the cache."""

    pass


class CachePermissionError(CacheWriteError):
    """Raised when cache directory permissions are insufficient."""

    pass
