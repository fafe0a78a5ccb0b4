"""
Configuration Resolution

A single ``ConfigResolver`` is built at startup and handed to every
component. Each option key is resolved from, in order:

1. an explicit runtime override (``set``), e.g. a command-line flag;
2. the environment variable bound to the key, for the few keys that have one;
3. the first existing config file among the candidate paths (YAML);
4. a derived default, computed from other keys on every call.

Derived defaults call back into the resolver, so overriding ``base_dir``
after construction moves ``ca_dir``, ``serial_file`` and the rest with it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from certkeeper.exceptions import ConfigError
from certkeeper.record import CertType

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS: tuple[Path, ...] = (
    Path("certkeeper.yaml"),
    Path("~/.config/certkeeper/config.yaml"),
    Path("/etc/certkeeper/config.yaml"),
)

ENV_BINDINGS: dict[str, str] = {
    "base_dir": "CERTKEEPER_HOME",
    "signer_command": "CERTKEEPER_SIGNER",
    "debug": "CERTKEEPER_DEBUG",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


class ConfigFile(BaseModel):
    """Schema for the YAML config file: a flat mapping of option keys."""

    model_config = ConfigDict(extra="forbid")

    base_dir: Optional[str] = Field(default=None, description="CA home directory")
    ca_dir: Optional[str] = Field(default=None, description="CA key and counter directory")
    certs_dir: Optional[str] = Field(default=None, description="Certificate record root")
    tmp_dir: Optional[str] = Field(default=None, description="Scratch area for signer calls")
    serial_file: Optional[str] = Field(default=None, description="Serial counter file")
    user_ca_key: Optional[str] = Field(default=None, description="User CA private key")
    host_ca_key: Optional[str] = Field(default=None, description="Host CA private key")
    user_validity: Optional[str] = Field(default=None, description="Default user validity")
    host_validity: Optional[str] = Field(default=None, description="Default host validity")
    signer_command: Optional[str] = Field(default=None, description="Signing executable")
    debug: Optional[bool] = Field(default=None, description="Verbose logging")


def _under(parent: str, name: str) -> Callable[["ConfigResolver"], Path]:
    return lambda cfg: cfg.resolve_path(parent) / name


_DERIVED: dict[str, Callable[["ConfigResolver"], Any]] = {
    "base_dir": lambda cfg: Path("~/.certkeeper"),
    "ca_dir": _under("base_dir", "ca"),
    "certs_dir": _under("base_dir", "certs"),
    "tmp_dir": _under("base_dir", "tmp"),
    "serial_file": _under("ca_dir", "serial"),
    "user_ca_key": _under("ca_dir", "user_ca"),
    "host_ca_key": _under("ca_dir", "host_ca"),
    "user_validity": lambda cfg: "+52w",
    "host_validity": lambda cfg: "+520w",
    "signer_command": lambda cfg: "ssh-keygen",
    "debug": lambda cfg: False,
}

KNOWN_KEYS: frozenset[str] = frozenset(_DERIVED)


class ConfigResolver:
    """Merges overrides, environment, config file and defaults into one view.

    Args:
        environ: Environment mapping to consult. Defaults to ``os.environ``.

    Example:
        >>> cfg = ConfigResolver(environ={})
        >>> cfg.set("base_dir", "/srv/ca")
        >>> str(cfg.resolve_path("serial_file"))
        '/srv/ca/ca/serial'
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = os.environ if environ is None else environ
        self._overrides: dict[str, Any] = {}
        self._file_values: dict[str, Any] = {}
        self._loaded = False
        self.source: Optional[Path] = None

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any) -> None:
        """Set an explicit override. ``None`` removes the override."""
        self._check_key(key)
        if value is None:
            self._overrides.pop(key, None)
        else:
            self._overrides[key] = value

    def unset(self, key: str) -> None:
        self.set(key, None)

    def load(
        self,
        paths: Optional[Iterable[Union[str, Path]]] = None,
        required: bool = False,
    ) -> Optional[Path]:
        """Load the first existing config file among *paths*.

        Only a missing path moves on to the next candidate. A path that
        exists but cannot be read or parsed is fatal. Loading happens once;
        later calls return the already-chosen source without re-reading.

        Args:
            paths: Candidate paths in priority order. Defaults to
                ``DEFAULT_CONFIG_PATHS``.
            required: Raise if none of the candidates exist.

        Returns:
            The path that was loaded, or ``None`` if no candidate exists.

        Raises:
            ConfigError: On an unreadable or invalid file, or when
                ``required`` is set and nothing was found.
        """
        if self._loaded:
            return self.source

        if paths is None:
            paths = DEFAULT_CONFIG_PATHS
        candidates = [Path(p).expanduser() for p in paths]
        for path in candidates:
            if not path.exists():
                logger.debug("Config candidate %s not present", path)
                continue
            self._file_values = _read_config_file(path)
            self.source = path
            logger.debug("Loaded %d option(s) from %s", len(self._file_values), path)
            break
        else:
            if required:
                raise ConfigError(
                    "Config file not found: " + ", ".join(str(p) for p in candidates)
                )

        self._loaded = True
        return self.source

    @property
    def loaded(self) -> bool:
        return self._loaded

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, key: str) -> Any:
        """Return the effective value for *key*.

        Raises:
            ConfigError: If *key* is not a known option.
        """
        self._check_key(key)
        if key in self._overrides:
            return self._overrides[key]

        env_name = ENV_BINDINGS.get(key)
        if env_name is not None:
            env_value = self._environ.get(env_name)
            if env_value:
                return env_value

        if key in self._file_values:
            return self._file_values[key]

        return _DERIVED[key](self)

    def resolve_path(self, key: str) -> Path:
        return Path(str(self.resolve(key))).expanduser()

    def resolve_bool(self, key: str) -> bool:
        value = self.resolve(key)
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigError(f"Option {key!r} is not a boolean: {value!r}")

    def validity_for(self, cert_type: Union[CertType, str]) -> str:
        """Default validity expression for a certificate type."""
        return str(self.resolve(f"{CertType(cert_type).value}_validity"))

    def ca_key_for(self, cert_type: Union[CertType, str]) -> Path:
        """CA private key path used to sign certificates of *cert_type*."""
        return self.resolve_path(f"{CertType(cert_type).value}_ca_key")

    def snapshot(self) -> dict[str, str]:
        """Every known option with its effective value, as strings."""
        return {key: str(self.resolve(key)) for key in sorted(KNOWN_KEYS)}

    @staticmethod
    def _check_key(key: str) -> None:
        if key not in KNOWN_KEYS:
            raise ConfigError(f"Unknown configuration option: {key!r}")


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")

    try:
        parsed = ConfigFile.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid config file {path}: {exc}") from exc
    return parsed.model_dump(exclude_none=True)
