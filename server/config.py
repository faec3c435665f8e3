"""
Server configuration.

Values are layered, later sources winning:

    defaults  <-  YAML file  <-  RELAY_* environment  <-  explicit overrides (CLI)

Example relay.yaml:

    host: 0.0.0.0
    port: 8888
    duplicate_policy: reject
    registry_shards: 16
    registration_timeout: 30
    log_level: INFO
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from server.core.MemoryTable import DuplicatePolicy, UserTable
from shared.errors import ConfigError
from shared.log import get_logger
from shared.utils import is_valid_port

logger = get_logger(__name__)

DEFAULT_PORT = 8888

_ENV_KEYS = {
    "RELAY_HOST": "host",
    "RELAY_PORT": "port",
    "RELAY_DUPLICATE_POLICY": "duplicate_policy",
}


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT
    registry_shards: int = UserTable.DEFAULT_SHARDS
    registration_timeout: Optional[float] = None
    log_level: str = "INFO"

    def validated(self) -> "ServerConfig":
        """Coerce loosely-typed values and check ranges. Returns a new config."""
        try:
            port = int(self.port)
        except (TypeError, ValueError):
            raise ConfigError("port", f"not an integer: {self.port!r}")
        if not is_valid_port(port):
            raise ConfigError("port", f"out of range: {port}")

        try:
            policy = DuplicatePolicy(self.duplicate_policy)
        except ValueError:
            allowed = ", ".join(p.value for p in DuplicatePolicy)
            raise ConfigError("duplicate_policy", f"{self.duplicate_policy!r} (expected one of {allowed})")

        try:
            shards = int(self.registry_shards)
        except (TypeError, ValueError):
            raise ConfigError("registry_shards", f"not an integer: {self.registry_shards!r}")
        if shards < 1:
            raise ConfigError("registry_shards", "must be at least 1")

        timeout = self.registration_timeout
        if timeout is not None:
            try:
                timeout = float(timeout)
            except (TypeError, ValueError):
                raise ConfigError("registration_timeout", f"not a number: {timeout!r}")
            if timeout <= 0:
                raise ConfigError("registration_timeout", "must be positive")

        if not isinstance(self.host, str) or not self.host:
            raise ConfigError("host", "must be a non-empty string")

        return replace(
            self,
            port=port,
            duplicate_policy=policy,
            registry_shards=shards,
            registration_timeout=timeout,
            log_level=str(self.log_level).upper(),
        )


def _known_keys() -> set:
    return {f.name for f in fields(ServerConfig)}


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Read a top-level YAML mapping of config keys."""
    if not path.exists():
        raise ConfigError("config", f"file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError("config", f"cannot parse {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError("config", f"{path} must contain a mapping at the top level")

    unknown = set(data) - _known_keys()
    if unknown:
        raise ConfigError(sorted(unknown)[0], f"unknown key in {path}")
    return data


def _from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for env_key, field_name in _ENV_KEYS.items():
        value = environ.get(env_key)
        if value:
            values[field_name] = value
    return values


def load_config(
    path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> ServerConfig:
    """
    Build a validated ServerConfig.

    Args:
        path: optional YAML file
        environ: environment mapping (defaults to os.environ)
        **overrides: explicit values, typically CLI flags; None means "not given"

    Raises:
        ConfigError: on unreadable files, unknown keys or bad values
    """
    values: Dict[str, Any] = {}
    if path is not None:
        values.update(_load_yaml(Path(path)))
        logger.debug(f"Loaded config from {path}")
    values.update(_from_env(os.environ if environ is None else environ))

    unknown = set(overrides) - _known_keys()
    if unknown:
        raise ConfigError(sorted(unknown)[0], "unknown override")
    values.update({k: v for k, v in overrides.items() if v is not None})

    return ServerConfig(**values).validated()
