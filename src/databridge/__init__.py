"""databridge: named datasources behind a time-based JSON disk cache."""

__version__ = "0.1.0"

from databridge.bridge import Databridge
from databridge.config import BridgeConfig
from databridge.datasource import Datasource
from databridge.errors import (
    CacheError,
    CachePermissionError,
    CacheReadError,
    CacheWriteError,
    DatabridgeError,
    NameConflictError,
    UnknownDatasourceError,
    ValidationError,
)
from databridge.fetch import FetchRequest, FetchResponse

__all__ = [
    "Databridge",
    "BridgeConfig",
    "Datasource",
    "FetchRequest",
    "FetchResponse",
    "DatabridgeError",
    "ValidationError",
    "NameConflictError",
    "UnknownDatasourceError",
    "CacheError",
    "CacheReadError",
    "CacheWriteError",
    "CachePermissionError",
    "__version__",
]
