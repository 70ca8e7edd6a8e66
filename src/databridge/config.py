"""Databridge configuration management."""

import json
import os
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any, Dict, Optional, Union

from databridge.errors import ValidationError
from databridge.validation import validate_path, validate_ttl

DEFAULT_CACHE_DIR = os.path.join(".", "databridgeJsonCache")
DEFAULT_CACHE_TTL = 3600  # 1 hour


@dataclass
class BridgeConfig:
    """Configuration for a Databridge.

    Attributes:
        cache_dir: Directory holding cached fetch results. Relative paths are
            resolved against the working directory at write time.
        default_cache_ttl: TTL in seconds for datasources that don't set
            their own
        extra: Any further options, readable through ``Databridge.option()``
    """

    cache_dir: Union[str, PathLike] = DEFAULT_CACHE_DIR
    default_cache_ttl: int = DEFAULT_CACHE_TTL
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate option values."""
        validate_path(self.cache_dir, "cache_dir")
        validate_ttl(self.default_cache_ttl, "default_cache_ttl", allow_zero=False)

    @classmethod
    def from_options(cls, options: Optional[Dict[str, Any]] = None) -> "BridgeConfig":
        """Build a configuration from an options mapping.

        Known keys are ``cache_dir`` and ``default_cache_ttl``; missing or
        None values take the defaults, anything else is kept in ``extra``.
        """
        options = dict(options or {})
        cache_dir = options.pop("cache_dir", None)
        default_cache_ttl = options.pop("default_cache_ttl", None)
        return cls(
            cache_dir=DEFAULT_CACHE_DIR if cache_dir is None else cache_dir,
            default_cache_ttl=(
                DEFAULT_CACHE_TTL if default_cache_ttl is None else default_cache_ttl
            ),
            extra=options,
        )

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    def as_options(self) -> Dict[str, Any]:
        """Return all options as a flat mapping."""
        return {
            **self.extra,
            "cache_dir": self.cache_dir,
            "default_cache_ttl": self.default_cache_ttl,
        }

    @classmethod
    def load(cls, config_path: Path) -> "BridgeConfig":
        """Load configuration from a JSON file.

        Args:
            config_path: Path to config file. A missing file yields defaults.

        Returns:
            BridgeConfig instance
        """
        config_path = Path(config_path)
        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        return cls.from_options(data)

    def save(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            **self.extra,
            "cache_dir": str(self.cache_dir),
            "default_cache_ttl": self.default_cache_ttl,
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Create configuration from environment variables.

        Environment variables:
            DATABRIDGE_CACHE_DIR: Cache directory path
            DATABRIDGE_CACHE_TTL: Default TTL in seconds

        Returns:
            BridgeConfig instance

        Raises:
            ValidationError: If DATABRIDGE_CACHE_TTL is not a positive integer
        """
        options: Dict[str, Any] = {}

        if os.getenv("DATABRIDGE_CACHE_DIR"):
            options["cache_dir"] = os.getenv("DATABRIDGE_CACHE_DIR")

        ttl = os.getenv("DATABRIDGE_CACHE_TTL")
        if ttl:
            try:
                options["default_cache_ttl"] = int(ttl)
            except ValueError as e:
                raise ValidationError(
                    f"DATABRIDGE_CACHE_TTL must be an integer number of seconds, got {ttl!r}"
                ) from e

        return cls.from_options(options)
