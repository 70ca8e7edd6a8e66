"""Named data sources wrapping a user-supplied fetch function."""

import asyncio
import inspect
from typing import Any, Callable, Dict, Mapping, Optional

from databridge.validation import (
    validate_bool,
    validate_datasource_name,
    validate_fetcher,
    validate_options,
    validate_ttl,
)

DEFAULT_DATASOURCE_OPTIONS: Dict[str, Any] = {
    "enable_caching": True,
    "cache_ttl": None,  # None defers to the bridge's default_cache_ttl
}


def validate_caching_options(options: Mapping[str, Any], name: str) -> None:
    """Type-check the caching keys of a datasource or fetch options mapping."""
    if options.get("enable_caching") is not None:
        validate_bool(options["enable_caching"], f"{name}['enable_caching']")
    if options.get("cache_ttl") is not None:
        validate_ttl(options["cache_ttl"], f"{name}['cache_ttl']")


class Datasource:
    """A named data fetcher plus its caching policy.

    The fetcher is any callable. It may return a plain value, or an
    awaitable (coroutine, task or future) that produces the value.

    Examples:
        >>> def get_forecast(city):
        ...     return {"city": city, "temp": 21}
        >>> ds = Datasource("forecast", get_forecast, {"cache_ttl": 600})
        >>> ds.name
        'forecast'
        >>> ds.option("cache_ttl")
        600
    """

    def __init__(
        self,
        name: Optional[str] = None,
        fetcher: Optional[Callable[..., Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ):
        """Initialize a datasource.

        Args:
            name: Unique name within a bridge
            fetcher: Callable producing the data
            options: ``enable_caching`` (default True) and ``cache_ttl``
                (seconds, default unset)

        Raises:
            ValidationError: If name or fetcher is missing or malformed
        """
        validate_datasource_name(name)
        validate_fetcher(fetcher)
        validate_options(options)
        validate_caching_options(options or {}, "options")

        self._name = name
        self._data_fetcher = fetcher
        self._options = {**DEFAULT_DATASOURCE_OPTIONS, **(options or {})}
        if self._options["enable_caching"] is None:
            self._options["enable_caching"] = True

    def __repr__(self) -> str:
        return f"Datasource(name={self._name!r})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def data_fetcher(self) -> Callable[..., Any]:
        return self._data_fetcher

    def option(self, key: str) -> Any:
        """Get an option value, or None if it isn't set."""
        return self._options.get(key)

    def fetch_data_promise(self, *params: Any) -> "asyncio.Future[Any]":
        """Invoke the fetcher and return its result as a future.

        Awaitables returned by the fetcher are forwarded (a future is
        returned as is), plain values are wrapped in a resolved future, and
        an exception raised by the fetcher becomes a failed future.

        Must be called while an event loop is running.

        Args:
            *params: Positional arguments for the fetcher

        Returns:
            Future resolving to the fetched data
        """
        loop = asyncio.get_running_loop()
        try:
            result = self._data_fetcher(*params)
        except Exception as e:
            future = loop.create_future()
            future.set_exception(e)
            return future

        if inspect.isawaitable(result):
            return asyncio.ensure_future(result)

        future = loop.create_future()
        future.set_result(result)
        return future
