"""On-disk JSON cache for fetch results."""

import asyncio
import hashlib
import logging
import math
import re
import uuid
from collections.abc import Iterator, Sequence
from os import PathLike
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import orjson

from databridge.errors import CachePermissionError, CacheReadError, CacheWriteError
from databridge.records import CacheEntry, CacheWriteRecord
from databridge.timestamps import elapsed_seconds, is_ttl_valid, now_iso
from databridge.validation import iso8601

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".json"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

# Integer range orjson can serialize natively
_INT_MIN = -(2**63)
_INT_MAX = 2**64 - 1


def _canonical(value: Any) -> Any:
    """Convert a parameter to a tagged form that orjson encodes unambiguously.

    Only ``str``, ``bool``, ``None``, in-range ``int``, finite ``float``,
    lists, tuples and dicts are encoded as themselves. Every dict becomes a
    ``{"__dict__": [[key, value], ...]}`` pair list sorted by encoded key, so
    a user dict can never look like one of the tags below. Anything else is
    tagged with its type:

    - non-finite floats: ``{"__float__": "inf"}``
    - ints orjson can't hold: ``{"__int__": "1180591620717411303424"}``
    - other objects: ``{"__repr__": "decimal.Decimal", "v": "Decimal('1')"}``

    Tuples and lists encode alike.

    Examples:
        >>> _canonical([1, float("nan")])
        [1, {'__float__': 'nan'}]
    """
    kind = type(value)
    if value is None or kind in (str, bool):
        return value
    if kind is int:
        if _INT_MIN <= value <= _INT_MAX:
            return value
        return {"__int__": str(value)}
    if kind is float:
        if math.isfinite(value):
            return value
        return {"__float__": repr(value)}
    if isinstance(value, (list, tuple)):
        return [_canonical(item) for item in value]
    if isinstance(value, dict):
        pairs = [
            [orjson.dumps(_canonical(k)), _canonical(k), _canonical(v)]
            for k, v in value.items()
        ]
        pairs.sort(key=lambda pair: (pair[0], orjson.dumps(pair[2])))
        return {"__dict__": [[k, v] for _, k, v in pairs]}
    return {"__repr__": f"{kind.__module__}.{kind.__qualname__}", "v": repr(value)}


class CacheStore:
    """Reads and writes cache entries in a single directory.

    Each entry is one JSON file holding ``{"data": ..., "timestamp": ...}``
    where the timestamp records when the entry was written. Files are
    named after the datasource plus a digest of the fetcher parameters, so
    the same (datasource, parameters) pair always maps to the same file.

    There is no locking: concurrent writers to the same key race and the
    last completed write wins.
    """

    def __init__(self, cache_dir: Union[str, PathLike]):
        """Initialize cache store.

        Args:
            cache_dir: Directory holding cache files. Created lazily on the
                first write.
        """
        self.cache_dir = Path(cache_dir).expanduser()

    @staticmethod
    def _normalize_name(source_name: str) -> str:
        """Convert a datasource name to a filesystem-safe prefix.

        Examples:
            >>> CacheStore._normalize_name('weather/daily')
            'weather_daily'
            >>> CacheStore._normalize_name('..')
            'source'
        """
        normalized = _UNSAFE_CHARS.sub("_", source_name).strip("._")
        return normalized[:100] or "source"

    @staticmethod
    def cache_key(source_name: str, params: Sequence[Any] = ()) -> str:
        """Derive the cache file name for a datasource and its parameters.

        The digest covers the exact datasource name and a type-tagged JSON
        form of the parameter list (see :func:`_canonical`), so distinct
        parameters map to distinct files and the key is stable across runs
        for parameters whose ``repr`` is.

        Args:
            source_name: Datasource name
            params: Positional fetcher parameters

        Returns:
            File name such as ``weather-3f2a...e9.json``
        """
        canonical = orjson.dumps(_canonical([source_name, list(params)]))
        digest = hashlib.sha256(canonical).hexdigest()
        return f"{CacheStore._normalize_name(source_name)}-{digest}{CACHE_SUFFIX}"

    def path_for(self, source_name: str, params: Sequence[Any] = ()) -> Path:
        """Get the cache file path for a datasource and its parameters."""
        return self.cache_dir / self.cache_key(source_name, params)

    # =========================================================================
    # Reading
    # =========================================================================

    def load_entry(self, path: Union[str, PathLike]) -> CacheEntry:
        """Load a cache entry, failing loudly.

        Args:
            path: Cache file path

        Returns:
            The parsed entry

        Raises:
            CacheReadError: If the file is missing, unreadable or malformed
        """
        path = Path(path)
        try:
            with open(path, "rb") as f:
                raw = orjson.loads(f.read())
        except FileNotFoundError as e:
            raise CacheReadError(f"Cache file not found: {path}", path) from e
        except orjson.JSONDecodeError as e:
            raise CacheReadError(f"Cannot parse cache file {path}: {e}", path) from e
        except OSError as e:
            raise CacheReadError(f"Cannot read cache file {path}: {e}", path) from e

        if not isinstance(raw, dict) or "data" not in raw or "timestamp" not in raw:
            raise CacheReadError(f"Malformed cache file {path}", path)

        timestamp = raw["timestamp"]
        if not isinstance(timestamp, str) or not timestamp or iso8601(timestamp):
            raise CacheReadError(
                f"Cache file {path} has a bad timestamp: {timestamp!r}", path
            )

        return CacheEntry(data=raw["data"], timestamp=timestamp)

    def read_entry(self, path: Union[str, PathLike]) -> Optional[CacheEntry]:
        """Read a cache entry.

        A missing, unreadable or malformed file is treated as a cache miss.

        Args:
            path: Cache file path

        Returns:
            The entry, or None if there is no usable entry at path
        """
        if not Path(path).exists():
            return None
        try:
            return self.load_entry(path)
        except CacheReadError as e:
            logger.warning(f"Ignoring cache file: {e}")
            return None

    async def read_entry_async(
        self, path: Union[str, PathLike]
    ) -> Optional[CacheEntry]:
        """Read a cache entry without blocking the event loop."""
        return await asyncio.to_thread(self.read_entry, path)

    def lookup(
        self, path: Union[str, PathLike], ttl: int, now: Optional[str] = None
    ) -> Optional[Tuple[CacheEntry, float]]:
        """Read an entry and check it against a TTL.

        Args:
            path: Cache file path
            ttl: Time-to-live in seconds; zero never matches
            now: Reference timestamp for the age computation

        Returns:
            ``(entry, age_seconds)`` for a fresh entry, otherwise None
        """
        entry = self.read_entry(path)
        if entry is None:
            return None
        if not is_ttl_valid(entry["timestamp"], ttl, now):
            logger.debug(f"Cache entry {path} is stale (ttl={ttl}s)")
            return None
        return entry, elapsed_seconds(entry["timestamp"], now)

    async def lookup_async(
        self, path: Union[str, PathLike], ttl: int, now: Optional[str] = None
    ) -> Optional[Tuple[CacheEntry, float]]:
        """Async variant of :meth:`lookup`."""
        return await asyncio.to_thread(self.lookup, path, ttl, now)

    # =========================================================================
    # Writing
    # =========================================================================

    def write_entry(
        self,
        path: Union[str, PathLike],
        data: Any,
        timestamp: Optional[str] = None,
    ) -> CacheWriteRecord:
        """Persist data as a cache entry.

        The entry is written to a temporary file in the target directory
        and then moved into place, so readers never see a partial file.

        Args:
            path: Cache file path
            data: JSON-serializable data
            timestamp: Write time (defaults to now)

        Returns:
            Record of the written path and timestamp

        Raises:
            CachePermissionError: If the directory or file is not writable
            CacheWriteError: If the data can't be serialized or written
        """
        path = Path(path)
        timestamp = timestamp or now_iso()

        try:
            content = orjson.dumps(
                {"data": data, "timestamp": timestamp},
                option=orjson.OPT_INDENT_2 | orjson.OPT_SERIALIZE_NUMPY,
            )
        except orjson.JSONEncodeError as e:
            raise CacheWriteError(f"Cannot serialize data for {path}: {e}", path) from e

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise CachePermissionError(
                f"Cannot create cache directory {path.parent}: {e}", path
            ) from e
        except OSError as e:
            raise CacheWriteError(f"Cannot create cache directory: {e}", path) from e

        temp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(temp_path, "wb") as f:
                f.write(content)
            temp_path.replace(path)
        except PermissionError as e:
            self._discard(temp_path)
            raise CachePermissionError(f"Cannot write cache file {path}: {e}", path) from e
        except OSError as e:
            self._discard(temp_path)
            raise CacheWriteError(f"Cannot write cache file {path}: {e}", path) from e

        logger.info(f"Wrote cache entry {path}")
        return CacheWriteRecord(path=str(path), timestamp=timestamp)

    async def write_entry_async(
        self,
        path: Union[str, PathLike],
        data: Any,
        timestamp: Optional[str] = None,
    ) -> CacheWriteRecord:
        """Write a cache entry without blocking the event loop."""
        return await asyncio.to_thread(self.write_entry, path, data, timestamp)

    @staticmethod
    def _discard(temp_path: Path) -> None:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to clean up temp file {temp_path}: {e}")

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def iter_entries(self) -> Iterator[Tuple[Path, CacheEntry]]:
        """Yield ``(path, entry)`` for every readable entry, sorted by path."""
        if not self.cache_dir.is_dir():
            return
        for path in sorted(self.cache_dir.glob(f"*{CACHE_SUFFIX}")):
            entry = self.read_entry(path)
            if entry is not None:
                yield path, entry

    def remove(self, path: Union[str, PathLike]) -> bool:
        """Delete one cache file.

        Returns:
            True if a file was removed
        """
        path = Path(path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Removed cache entry {path}")
        return True

    def clear(self, older_than: Optional[float] = None) -> int:
        """Delete cache entries.

        Args:
            older_than: Only delete entries written more than this many
                seconds ago. None deletes every cache file, readable or not.

        Returns:
            Number of files removed
        """
        if not self.cache_dir.is_dir():
            return 0

        if older_than is None:
            targets = list(self.cache_dir.glob(f"*{CACHE_SUFFIX}"))
        else:
            targets = [
                path
                for path, entry in self.iter_entries()
                if elapsed_seconds(entry["timestamp"]) > older_than
            ]

        removed = sum(1 for path in targets if self.remove(path))
        logger.info(f"Removed {removed} cache entries from {self.cache_dir}")
        return removed
