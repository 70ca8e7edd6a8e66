"""The Databridge: a registry of datasources with a TTL disk cache in front."""

import asyncio
import functools
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from databridge.cache.store import CacheStore
from databridge.config import BridgeConfig
from databridge.datasource import Datasource, validate_caching_options
from databridge.errors import (
    CacheWriteError,
    NameConflictError,
    UnknownDatasourceError,
    ValidationError,
)
from databridge.fetch import FetchRequest, FetchResponse
from databridge.records import (
    META_CACHE_READ,
    META_CACHE_WRITE,
    META_CACHE_WRITE_ERROR,
    CacheReadRecord,
    CacheStatus,
)
from databridge.timestamps import elapsed_seconds, get_ttl_remaining, is_ttl_valid, now_iso
from databridge.validation import validate_options, validate_params

logger = logging.getLogger(__name__)


class Databridge:
    """Fetch data from named datasources through a TTL-based disk cache.

    Each registered :class:`Datasource` wraps a fetch function. A fetch
    either returns a fresh cached result or calls the fetch function and,
    when caching is enabled, writes the result to the cache directory.

    Caching policy for one fetch is resolved in order of precedence: the
    fetch options passed to the call, then the datasource's options, then
    the bridge's ``default_cache_ttl`` (caching itself defaults to on).

    Examples:
        >>> bridge = Databridge({"cache_dir": "./cache", "default_cache_ttl": 600})
        >>> bridge.register(Datasource("forecast", get_forecast))
        >>> response = bridge.fetch("forecast", {}, ["Dublin"])
        >>> data = await response.data_promise
        >>> # Shortcut added on registration
        >>> data = await bridge.forecast({}, ["Dublin"]).data_promise
    """

    def __init__(
        self,
        options: Optional[Mapping[str, Any]] = None,
        *,
        config: Optional[BridgeConfig] = None,
    ):
        """Initialize a bridge.

        Args:
            options: ``cache_dir`` (default ``./databridgeJsonCache``) and
                ``default_cache_ttl`` (seconds, default 3600). Other keys are
                kept and readable through :meth:`option`.
            config: A ready-made configuration, instead of options

        Raises:
            ValidationError: If options are malformed, or both options and
                config are given
        """
        validate_options(options)
        if options is not None and config is not None:
            raise ValidationError("Pass either options or config, not both")
        if config is not None and not isinstance(config, BridgeConfig):
            raise ValidationError(
                f"config must be a BridgeConfig, got {type(config).__name__}"
            )

        self._config = config or BridgeConfig.from_options(options)
        self._options = self._config.as_options()
        self._datasources: Dict[str, Datasource] = {}
        self._cache = CacheStore(self._config.cache_path)

    def __repr__(self) -> str:
        return (
            f"Databridge(cache_dir={str(self._config.cache_dir)!r}, "
            f"datasources={sorted(self._datasources)!r})"
        )

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def cache(self) -> CacheStore:
        return self._cache

    def option(self, name: str) -> Any:
        """Get a bridge option, or None if it isn't set."""
        return self._options.get(name)

    # =========================================================================
    # Datasource registry
    # =========================================================================

    def register_datasource(self, datasource: Datasource) -> "Databridge":
        """Register a datasource.

        Also adds a shortcut method named after the datasource, so
        ``bridge.<name>(fetch_options, fetcher_params)`` is the same as
        ``bridge.fetch_response(name, fetch_options, fetcher_params)``.

        Args:
            datasource: Datasource to register

        Returns:
            The bridge itself, for chaining

        Raises:
            ValidationError: If datasource isn't a Datasource
            NameConflictError: If the name is taken by another datasource or
                by an attribute of the bridge
        """
        if not isinstance(datasource, Datasource):
            raise ValidationError(
                f"Expected a Datasource, got {type(datasource).__name__}"
            )

        name = datasource.name
        if name in self._datasources:
            raise NameConflictError(f"A datasource named '{name}' is already registered")
        if hasattr(self, name):
            raise NameConflictError(
                f"Datasource name '{name}' clashes with a Databridge attribute"
            )

        self._datasources[name] = datasource
        setattr(self, name, functools.partial(self.fetch_response, name))
        logger.info(f"Registered datasource '{name}'")
        return self

    register = register_datasource

    def datasource(self, name: str) -> Optional[Datasource]:
        """Get a registered datasource, or None if there is none by that name."""
        if not isinstance(name, str):
            return None
        return self._datasources.get(name)

    source = datasource

    def datasource_names(self) -> List[str]:
        """List registered datasource names."""
        return list(self._datasources.keys())

    def has_datasource(self, name: str) -> bool:
        return self.datasource(name) is not None

    def _require_datasource(self, name: str) -> Datasource:
        if not isinstance(name, str):
            raise ValidationError(
                f"Datasource name must be a string, got {type(name).__name__}"
            )
        source = self._datasources.get(name)
        if source is None:
            available = ", ".join(sorted(self._datasources)) or "none"
            raise UnknownDatasourceError(
                f"No datasource registered with name '{name}'. Available: {available}"
            )
        return source

    # =========================================================================
    # Cache inspection
    # =========================================================================

    def _effective_ttl(self, source: Datasource) -> int:
        ttl = source.option("cache_ttl")
        return self.option("default_cache_ttl") if ttl is None else ttl

    def cache_path(self, name: str, fetcher_params: Optional[Sequence[Any]] = None):
        """Get the cache file path used for a datasource and parameters."""
        validate_params(fetcher_params)
        source = self._require_datasource(name)
        return self._cache.path_for(source.name, fetcher_params or [])

    def cache_status(
        self, name: str, fetcher_params: Optional[Sequence[Any]] = None
    ) -> Optional[CacheStatus]:
        """Describe the cache entry for a datasource and parameters.

        Args:
            name: Datasource name
            fetcher_params: Fetcher parameters

        Returns:
            Status dict, or None if nothing usable is cached
        """
        path = self.cache_path(name, fetcher_params)
        entry = self._cache.read_entry(path)
        if entry is None:
            return None

        ttl = self._effective_ttl(self._datasources[name])
        return CacheStatus(
            path=str(path),
            timestamp=entry["timestamp"],
            age=elapsed_seconds(entry["timestamp"]),
            ttl=ttl,
            ttl_remaining=get_ttl_remaining(entry["timestamp"], ttl),
            fresh=is_ttl_valid(entry["timestamp"], ttl),
        )

    def invalidate(self, name: str, fetcher_params: Optional[Sequence[Any]] = None) -> bool:
        """Remove the cache entry for a datasource and parameters.

        Returns:
            True if an entry was removed
        """
        return self._cache.remove(self.cache_path(name, fetcher_params))

    # =========================================================================
    # Fetching
    # =========================================================================

    def _resolve_fetch_options(
        self, source: Datasource, fetch_options: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        """Merge call-level options over datasource options and bridge defaults."""
        resolved = dict(fetch_options or {})

        enable_caching = resolved.get("enable_caching")
        if enable_caching is None:
            enable_caching = source.option("enable_caching")
        resolved["enable_caching"] = True if enable_caching is None else enable_caching

        cache_ttl = resolved.get("cache_ttl")
        if cache_ttl is None:
            cache_ttl = self._effective_ttl(source)
        resolved["cache_ttl"] = cache_ttl

        return resolved

    def fetch_response(
        self,
        name: str,
        fetch_options: Optional[Mapping[str, Any]] = None,
        fetcher_params: Optional[Sequence[Any]] = None,
    ) -> FetchResponse:
        """Start a fetch and return its response envelope immediately.

        The response's ``data_promise`` is a task running the cache/fetch
        pipeline; await it for the data. Fetcher failures surface through
        that task. A failed cache write does not fail the fetch and is
        recorded under the ``cache_write_error`` metadata key instead.

        Must be called while an event loop is running.

        Args:
            name: Registered datasource name
            fetch_options: Per-call ``enable_caching`` / ``cache_ttl``
                overrides
            fetcher_params: Positional arguments for the fetcher

        Returns:
            FetchResponse whose data may still be pending

        Raises:
            UnknownDatasourceError: If no datasource has this name
            ValidationError: If options or params are malformed
            RuntimeError: If no event loop is running
        """
        source = self._require_datasource(name)
        validate_options(fetch_options, "fetch_options")
        validate_caching_options(fetch_options or {}, "fetch_options")
        validate_params(fetcher_params)
        loop = asyncio.get_running_loop()

        request = FetchRequest(
            self,
            source,
            self._resolve_fetch_options(source, fetch_options),
            fetcher_params if fetcher_params is not None else (),
            now_iso(),
        )
        response = FetchResponse(request)
        response.data_promise = loop.create_task(self._run_pipeline(response))
        return response

    fetch = fetch_response

    def fetch_data_promise(
        self,
        name: str,
        fetch_options: Optional[Mapping[str, Any]] = None,
        fetcher_params: Optional[Sequence[Any]] = None,
    ) -> "asyncio.Future[Any]":
        """Start a fetch and return only its data future."""
        return self.fetch_response(name, fetch_options, fetcher_params).data_promise

    async def _run_pipeline(self, response: FetchResponse) -> Any:
        """Resolve one fetch from the cache or the datasource."""
        request = response.request
        source = request.source
        params = request.params

        if not request.enable_caching:
            logger.debug(f"Caching disabled for '{source.name}', fetching")
            return await source.fetch_data_promise(*params)

        path = self._cache.path_for(source.name, params)
        hit = await self._cache.lookup_async(path, request.cache_ttl, request.timestamp)
        if hit is not None:
            entry, age = hit
            logger.debug(f"Cache hit for '{source.name}' ({path}, age {age:.1f}s)")
            response.meta(
                META_CACHE_READ,
                CacheReadRecord(path=str(path), timestamp=entry["timestamp"], age=age),
            )
            return entry["data"]

        logger.debug(f"Cache miss for '{source.name}' ({path}), fetching")
        data = await source.fetch_data_promise(*params)

        try:
            record = await self._cache.write_entry_async(path, data)
        except CacheWriteError as e:
            logger.warning(f"Could not cache data for '{source.name}': {e}")
            response.meta(META_CACHE_WRITE_ERROR, e)
        else:
            response.meta(META_CACHE_WRITE, record)
        return data
