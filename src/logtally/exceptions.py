"""Custom exceptions for logtally."""

from pathlib import Path


class LogtallyError(Exception):
    """Base class for all logtally errors.

    Lets callers catch every failure of an accounting run with a single
    except clause.
    """


class SnapshotError(LogtallyError, OSError):
    """A log file could not be snapshotted.

    Raised when the live log or one of its rotated siblings is missing,
    unreadable, or cannot be copied to a private location. Fatal to the
    current run: no resume index is written and the caller's totals are
    left untouched. The caller should retry on its next scheduled tick.

    Attributes:
        path: Path of the log file that could not be snapshotted
        reason: Short description of the underlying failure
    """

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot snapshot {self.path}: {reason}")


class StateError(LogtallyError):
    """The resume index could not be written.

    Load failures never raise this; a missing or corrupt index is treated
    as a fresh start. Only a failed ``store`` surfaces it.

    Attributes:
        state_path: Path of the resume store file
    """

    def __init__(self, state_path: Path | str, reason: str) -> None:
        self.state_path = Path(state_path)
        self.reason = reason
        super().__init__(f"Cannot write resume index {self.state_path}: {reason}")


class UnknownSourceError(LogtallyError, KeyError):
    """No log source is configured under the requested name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"Unknown log source: {self.name!r}"


class UnknownFormatError(LogtallyError, KeyError):
    """No line parser is registered under the requested format name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"Unknown log format: {self.name!r}"


class ConfigError(LogtallyError):
    """The configuration file is missing or invalid.

    Attributes:
        config_path: Path to the offending configuration file
    """

    def __init__(self, config_path: Path | str, reason: str) -> None:
        self.config_path = Path(config_path)
        self.reason = reason
        super().__init__(f"Invalid configuration {self.config_path}: {reason}")
