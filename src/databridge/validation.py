"""Argument validation helpers.

Two kinds of helpers live here:

- ``validate_*`` functions raise :class:`~databridge.errors.ValidationError`
  when an argument is malformed and return ``None`` otherwise.
- Custom checks (:func:`folder_exists`, :func:`iso8601`) return an error
  message string when the value fails and ``None`` when it passes, so they
  can be composed with :func:`validate_single`.
"""

from collections.abc import Mapping
from datetime import datetime
from os import PathLike
from pathlib import Path
from typing import Any, Callable, Optional

from databridge.errors import ValidationError

Check = Callable[[Any], Optional[str]]


def require(value: Any, name: str) -> None:
    """Raise if a required argument was not supplied.

    Args:
        value: Argument value
        name: Argument name used in the error message

    Raises:
        ValidationError: If value is None
    """
    if value is None:
        raise ValidationError(f"{name} is required")


def validate_datasource_name(name: Any) -> None:
    """Validate a datasource name.

    Args:
        name: Name to validate

    Raises:
        ValidationError: If name is missing, not a string, empty, padded
            with whitespace, or longer than 255 characters

    Examples:
        >>> validate_datasource_name('weather')  # OK
        >>> validate_datasource_name('')
        Traceback (most recent call last):
            ...
        databridge.errors.ValidationError: Datasource name cannot be empty
    """
    require(name, "Datasource name")

    if not isinstance(name, str):
        raise ValidationError(
            f"Datasource name must be a string, got {type(name).__name__}"
        )

    if not name:
        raise ValidationError("Datasource name cannot be empty")

    if name != name.strip():
        raise ValidationError(
            f"Datasource name '{name}' cannot have leading or trailing whitespace"
        )

    if len(name) > 255:
        raise ValidationError(
            f"Datasource name '{name}' is too long (max 255 characters)"
        )


def validate_fetcher(fetcher: Any) -> None:
    """Validate a datasource's data fetcher."""
    require(fetcher, "Data fetcher")
    if not callable(fetcher):
        raise ValidationError(
            f"Data fetcher must be callable, got {type(fetcher).__name__}"
        )


def validate_ttl(value: Any, name: str, allow_zero: bool = True) -> None:
    """Validate a TTL given in whole seconds.

    Args:
        value: TTL to validate
        name: Option name used in the error message
        allow_zero: Whether a TTL of zero (never reuse) is acceptable

    Raises:
        ValidationError: If value is not an int or is out of range
    """
    # bool is an int subclass but never a meaningful TTL
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{name} must be an integer number of seconds, got {type(value).__name__}"
        )
    minimum = 0 if allow_zero else 1
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}, got {value}")


def validate_bool(value: Any, name: str) -> None:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be a bool, got {type(value).__name__}")


def validate_options(options: Any, name: str = "options") -> None:
    """Validate an optional options mapping."""
    if options is not None and not isinstance(options, Mapping):
        raise ValidationError(
            f"{name} must be a mapping, got {type(options).__name__}"
        )


def validate_params(params: Any, name: str = "fetcher_params") -> None:
    """Validate an optional positional parameter sequence."""
    if params is not None and not isinstance(params, (list, tuple)):
        raise ValidationError(
            f"{name} must be a list or tuple, got {type(params).__name__}"
        )


def validate_path(value: Any, name: str) -> None:
    require(value, name)
    if not isinstance(value, (str, PathLike)):
        raise ValidationError(
            f"{name} must be a string or path, got {type(value).__name__}"
        )


# =============================================================================
# Custom checks
# =============================================================================


def folder_exists(value: Any) -> Optional[str]:
    """Check that a value names an existing directory.

    Args:
        value: Path to check (None passes, so the check can be combined
            with a separate presence check)

    Returns:
        Error message, or None if the check passes

    Examples:
        >>> folder_exists(None) is None
        True
        >>> folder_exists('/thingys')
        "'/thingys' does not exist"
    """
    if value is None:
        return None
    if not isinstance(value, (str, PathLike)):
        return f"must be a path, got {type(value).__name__}"
    path = Path(value)
    if not path.exists():
        return f"'{value}' does not exist"
    if not path.is_dir():
        return f"'{value}' is not a directory"
    return None


def iso8601(value: Any) -> Optional[str]:
    """Check that a value is an ISO-8601 timestamp string.

    None and the empty string pass.

    Examples:
        >>> iso8601('2017-07-27T10:28:53') is None
        True
        >>> iso8601('thingys')
        "'thingys' is not a valid ISO 8601 timestamp"
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        return f"must be an ISO 8601 string, got {type(value).__name__}"
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return f"'{value}' is not a valid ISO 8601 timestamp"
    return None


def validate_single(value: Any, name: str, *checks: Check) -> None:
    """Run custom checks against a value, raising on the first failure.

    Args:
        value: Value to check
        name: Argument name used in the error message
        *checks: Check functions returning an error message or None

    Raises:
        ValidationError: With the first failing check's message
    """
    for check in checks:
        message = check(value)
        if message is not None:
            raise ValidationError(f"{name} {message}")
