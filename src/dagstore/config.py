"""Store configuration loading.

Resolution order for each setting:
1. Environment variable (e.g., DAGSTORE_DB_PATH)
2. Config file (``dagstore.yaml``)
3. Built-in default
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from ruamel.yaml import YAML

# Default configuration values
DEFAULT_BACKEND = "sqlite"
DEFAULT_DB_PATH = "dagstore.db"
DEFAULT_BUSY_TIMEOUT = 5.0
DEFAULT_CONFIG_FILE = Path("dagstore.yaml")

BACKENDS = ("sqlite", "memory")

Backend = Literal["sqlite", "memory"]


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""

    def __init__(self, source: Path | str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")


@dataclass
class DagStoreConfig:
    """Configuration for the DAG store.

    Attributes:
        backend: ``sqlite`` for a durable database, ``memory`` for a
            process-local store.
        db_path: SQLite database file (``:memory:`` allowed).
        busy_timeout: Seconds a writer waits for another writer's lock.
        operation_timeout: Per-operation deadline in seconds used by the CLI;
            None or 0 means no deadline.
    """

    backend: Backend = DEFAULT_BACKEND
    db_path: str = DEFAULT_DB_PATH
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT
    operation_timeout: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: Path | str = "<dict>") -> DagStoreConfig:
        """Create config from dictionary.

        Args:
            data: Mapping with optional backend, db_path, busy_timeout and
                operation_timeout keys.
            source: Where the data came from, for error messages.

        Returns:
            DagStoreConfig instance.

        Raises:
            ConfigError: If a value has the wrong type or an unknown backend.
        """
        backend = str(data.get("backend", DEFAULT_BACKEND))
        if backend not in BACKENDS:
            raise ConfigError(source, f"unknown backend {backend!r} (expected one of {BACKENDS})")

        return cls(
            backend=backend,  # type: ignore[arg-type]
            db_path=str(data.get("db_path", DEFAULT_DB_PATH)),
            busy_timeout=_as_seconds(data.get("busy_timeout", DEFAULT_BUSY_TIMEOUT), source),
            operation_timeout=_as_optional_seconds(data.get("operation_timeout"), source),
        )


def _as_seconds(value: Any, source: Path | str) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(source, f"expected a number of seconds, got {value!r}") from e
    if seconds < 0:
        raise ConfigError(source, f"timeout must not be negative, got {seconds}")
    return seconds


def _as_optional_seconds(value: Any, source: Path | str) -> float | None:
    if value is None or value == "":
        return None
    return _as_seconds(value, source)


_ENV_KEYS = {
    "DAGSTORE_BACKEND": "backend",
    "DAGSTORE_DB_PATH": "db_path",
    "DAGSTORE_BUSY_TIMEOUT": "busy_timeout",
    "DAGSTORE_OPERATION_TIMEOUT": "operation_timeout",
}


def load_config(config_path: Path | None = None) -> DagStoreConfig:
    """Load configuration from a YAML file and the environment.

    A missing file is not an error when *config_path* is None (the default
    ``dagstore.yaml`` is optional); an explicitly named file must exist.

    Args:
        config_path: YAML file to read, or None for ``./dagstore.yaml``.

    Returns:
        DagStoreConfig instance.

    Raises:
        ConfigError: If the file cannot be read or holds invalid values.
    """
    path = config_path or DEFAULT_CONFIG_FILE
    data: dict[str, Any] = {}

    if path.exists():
        yaml = YAML(typ="safe")
        try:
            with path.open("r", encoding="utf-8") as f:
                loaded = yaml.load(f)
        except Exception as e:
            raise ConfigError(path, str(e)) from e
        if loaded is not None:
            if not isinstance(loaded, dict):
                raise ConfigError(path, "top level must be a mapping")
            data.update(loaded)
    elif config_path is not None:
        raise ConfigError(path, "File not found")

    for env_key, field_name in _ENV_KEYS.items():
        value = os.getenv(env_key)
        if value is not None:
            data[field_name] = value

    return DagStoreConfig.from_dict(data, source=path)
