"""Fetch request and response envelopes."""

import asyncio
import inspect
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

from databridge.datasource import Datasource
from databridge.errors import ValidationError
from databridge.validation import (
    iso8601,
    require,
    validate_options,
    validate_params,
    validate_single,
)

if TYPE_CHECKING:
    from databridge.bridge import Databridge

_MISSING = object()


class FetchRequest:
    """Immutable description of a single fetch.

    Attributes are exposed through read-only properties, several of which
    have a short alias (``bridge``, ``source``, ``options``, ``params``).
    Options and parameters are copied on construction and exposed as a
    read-only mapping and a tuple.
    """

    def __init__(
        self,
        bridge: Optional["Databridge"] = None,
        source: Optional[Datasource] = None,
        fetch_options: Optional[Mapping[str, Any]] = None,
        fetcher_params: Optional[Sequence[Any]] = None,
        timestamp: Optional[str] = None,
    ):
        """Initialize a fetch request.

        Args:
            bridge: Databridge issuing the request
            source: Datasource to fetch from
            fetch_options: Effective options for this fetch
            fetcher_params: Positional arguments for the fetcher
            timestamp: ISO 8601 time the request was issued

        Raises:
            ValidationError: If any argument is missing or has the wrong type
        """
        from databridge.bridge import Databridge

        require(bridge, "bridge")
        if not isinstance(bridge, Databridge):
            raise ValidationError(
                f"bridge must be a Databridge, got {type(bridge).__name__}"
            )
        require(source, "source")
        if not isinstance(source, Datasource):
            raise ValidationError(
                f"source must be a Datasource, got {type(source).__name__}"
            )
        require(fetch_options, "fetch_options")
        validate_options(fetch_options, "fetch_options")
        require(fetcher_params, "fetcher_params")
        validate_params(fetcher_params)
        require(timestamp, "timestamp")
        validate_single(timestamp, "timestamp", iso8601)
        if not timestamp:
            raise ValidationError("timestamp cannot be empty")

        self._bridge = bridge
        self._source = source
        self._fetch_options = MappingProxyType(dict(fetch_options))
        self._fetcher_params = tuple(fetcher_params)
        self._timestamp = timestamp

    def __repr__(self) -> str:
        return (
            f"FetchRequest(source={self._source.name!r}, "
            f"params={self._fetcher_params!r}, timestamp={self._timestamp!r})"
        )

    @property
    def databridge(self) -> "Databridge":
        return self._bridge

    bridge = databridge

    @property
    def datasource(self) -> Datasource:
        return self._source

    source = datasource

    @property
    def fetch_options(self) -> Mapping[str, Any]:
        return self._fetch_options

    options = fetch_options

    @property
    def fetcher_params(self) -> Sequence[Any]:
        return self._fetcher_params

    params = fetcher_params

    @property
    def timestamp(self) -> str:
        return self._timestamp

    @property
    def enable_caching(self) -> bool:
        """Whether this fetch may read and write the cache."""
        return bool(self._fetch_options.get("enable_caching", True))

    @property
    def cache_ttl(self) -> Optional[int]:
        """TTL in seconds applying to this fetch, if resolved."""
        return self._fetch_options.get("cache_ttl")


class FetchResponse:
    """Mutable envelope for a fetch's eventual data and its metadata.

    The data arrives through :attr:`data_promise`, a future that can be set
    exactly once. Metadata such as ``cache_write`` or ``cache_read`` records
    is kept in a string-keyed mapping.

    Examples:
        >>> response = bridge.fetch_response("forecast", {}, ["Dublin"])
        >>> data = await response.data_promise
        >>> response.meta("cache_write")
        {'path': '...', 'timestamp': '2024-01-15T10:30:00+00:00'}
    """

    def __init__(
        self, request: Optional[FetchRequest] = None, meta: Optional[Dict[str, Any]] = None
    ):
        """Initialize a fetch response.

        Args:
            request: The originating request
            meta: Initial metadata (kept by reference)

        Raises:
            ValidationError: If request is missing or meta isn't a dict
        """
        require(request, "request")
        if not isinstance(request, FetchRequest):
            raise ValidationError(
                f"request must be a FetchRequest, got {type(request).__name__}"
            )
        if meta is not None and not isinstance(meta, dict):
            raise ValidationError(f"meta must be a dict, got {type(meta).__name__}")

        self._request = request
        self._data_promise: Optional[asyncio.Future] = None
        self._meta = meta if meta is not None else {}

    def __repr__(self) -> str:
        return f"FetchResponse(request={self._request!r}, meta={self._meta!r})"

    @property
    def request(self) -> FetchRequest:
        return self._request

    @property
    def data_promise(self) -> Optional[asyncio.Future]:
        """Future resolving to the fetched data, or None before it is set."""
        return self._data_promise

    @data_promise.setter
    def data_promise(self, value: Any) -> None:
        if not inspect.isawaitable(value):
            raise TypeError(
                f"data_promise must be awaitable, got {type(value).__name__}"
            )
        if self._data_promise is not None:
            if inspect.iscoroutine(value):
                value.close()
            raise asyncio.InvalidStateError("data_promise can only be set once")
        self._data_promise = asyncio.ensure_future(value)

    def meta(self, key: Any = _MISSING, value: Any = _MISSING) -> Any:
        """Read or write one metadata entry.

        Args:
            key: Metadata key
            value: If given, stored under key

        Returns:
            The value stored under key (None if unset)

        Raises:
            ValidationError: If key is missing or not a string
        """
        if key is _MISSING:
            raise ValidationError("meta() requires a key")
        if not isinstance(key, str):
            raise ValidationError(f"meta key must be a string, got {type(key).__name__}")

        if value is not _MISSING:
            self._meta[key] = value
        return self._meta.get(key)

    def all_meta(self) -> Dict[str, Any]:
        """Return a shallow copy of all metadata."""
        return dict(self._meta)
