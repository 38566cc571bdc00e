"""Configuration file loading."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Union

from .engine import TrafficAccountant
from .exceptions import ConfigError, UnknownFormatError
from .models import LogSource
from .parsers import get_parser
from .snapshot import DEFAULT_CHECKPOINT_INTERVAL
from .state import ResumeStore

CONFIG_ENV = "LOGTALLY_CONFIG"
LOG_LEVEL_ENV = "LOGTALLY_LOG_LEVEL"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
DEFAULT_CONFIG_PATH = "logtally.json"
DEFAULT_STATE_PATH = "logtally-resume.json"


def default_config_path() -> Path:
    """Config path from ``$LOGTALLY_CONFIG``, else ``./logtally.json``."""
    return Path(os.getenv(CONFIG_ENV, DEFAULT_CONFIG_PATH))


def default_log_level() -> str:
    """Log level from ``$LOGTALLY_LOG_LEVEL``; unknown names fall back to WARNING."""
    level = os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
    return level if level in LOG_LEVELS else "WARNING"


@dataclass
class AccountingConfig:
    """Settings for a set of log sources sharing one resume store.

    Attributes:
        state_path: Resume store file
        snapshot_dir: Where private log copies go (None = system temp)
        checkpoint_interval: Snapshot offset granularity, in lines
        sources: Log sources keyed by name
    """

    state_path: Path
    snapshot_dir: Path | None = None
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL
    sources: Dict[str, LogSource] = field(default_factory=dict)

    def build_accountant(self) -> TrafficAccountant:
        """Create an accountant for these settings."""
        return TrafficAccountant(
            self.sources,
            ResumeStore(self.state_path),
            snapshot_dir=self.snapshot_dir,
            checkpoint_interval=self.checkpoint_interval,
        )


def _resolve(base: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


def _positive_int(config_path: Path, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(config_path, f"{key!r} must be a positive integer")
    return value


def _parse_source(config_path: Path, name: str, entry: Any) -> LogSource:
    base = config_path.parent
    if not isinstance(entry, dict):
        raise ConfigError(config_path, f"source {name!r} must be an object")
    if not isinstance(entry.get("path"), str):
        raise ConfigError(config_path, f"source {name!r} needs a 'path' string")

    log_format = entry.get("format", "keyvalue")
    try:
        get_parser(log_format)
    except (UnknownFormatError, TypeError):
        raise ConfigError(
            config_path, f"source {name!r} has unknown format {log_format!r}"
        ) from None

    rotations = entry.get("rotations", 1)
    if isinstance(rotations, bool) or not isinstance(rotations, int) or rotations < 0:
        raise ConfigError(
            config_path, f"source {name!r}: 'rotations' must be a non-negative integer"
        )

    suffix = entry.get("rotated_suffix", ".{n}")
    if not isinstance(suffix, str) or "{n}" not in suffix:
        raise ConfigError(
            config_path, f"source {name!r}: 'rotated_suffix' must contain '{{n}}'"
        )

    return LogSource(
        name=name,
        path=_resolve(base, entry["path"]),
        format=log_format,
        rotations=rotations,
        rotated_suffix=suffix,
    )


def load_config(config_path: Union[str, Path]) -> AccountingConfig:
    """Load and validate a JSON configuration file.

    Relative paths inside the file are resolved against its directory.

    Raises:
        ConfigError: If the file is missing, not JSON, or invalid
    """
    path = Path(config_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(path, "file not found") from None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(path, str(e)) from e

    if not isinstance(data, dict):
        raise ConfigError(path, "top-level value must be an object")

    base = path.parent
    sources_data = data.get("sources")
    if not isinstance(sources_data, dict) or not sources_data:
        raise ConfigError(path, "'sources' must be a non-empty object")

    state_path = data.get("state_path", DEFAULT_STATE_PATH)
    if not isinstance(state_path, str):
        raise ConfigError(path, "'state_path' must be a string")

    snapshot_dir = data.get("snapshot_dir")
    if snapshot_dir is not None and not isinstance(snapshot_dir, str):
        raise ConfigError(path, "'snapshot_dir' must be a string or null")

    return AccountingConfig(
        state_path=_resolve(base, state_path),
        snapshot_dir=_resolve(base, snapshot_dir) if snapshot_dir else None,
        checkpoint_interval=_positive_int(
            path,
            "checkpoint_interval",
            data.get("checkpoint_interval", DEFAULT_CHECKPOINT_INTERVAL),
        ),
        sources={
            name: _parse_source(path, name, entry)
            for name, entry in sources_data.items()
        },
    )
