"""logtally: incremental, rotation-aware traffic accounting from log files.

Example:
    >>> from logtally import LogSource, ResumeStore, TrafficAccountant
    >>> accountant = TrafficAccountant(
    ...     [LogSource("mail", "/var/log/mail.log", format="courier")],
    ...     ResumeStore("/var/lib/logtally/resume.json"),
    ... )
    >>>
    >>> # Only lines added since the previous run are parsed
    >>> totals = {"example.test": 1_024}
    >>> report = accountant.account_traffic("mail", {"example.test"}, totals)
    >>> print(report.delta)
    >>>
    >>> # Custom log formats
    >>> from logtally import RegexLineParser, register_parser
    >>> register_parser(
    ...     "nginx",
    ...     RegexLineParser(r"^(?P<entity>\\S+) (?P<bytes_in>\\d+) (?P<bytes_out>\\d+)"),
    ... )
"""

from .accumulator import add, merge
from .config import AccountingConfig, load_config
from .engine import TrafficAccountant, account_traffic
from .exceptions import (
    ConfigError,
    LogtallyError,
    SnapshotError,
    StateError,
    UnknownFormatError,
    UnknownSourceError,
)
from .models import AccountingReport, FileReport, LogSource, Record, ResumeIndex
from .parsers import (
    LineParser,
    RegexLineParser,
    available_formats,
    get_parser,
    register_parser,
)
from .snapshot import LogSnapshot
from .state import ResumeStore

__version__ = "0.1.0"
__all__ = [
    # Core
    "TrafficAccountant",
    "account_traffic",
    "LogSource",
    "ResumeIndex",
    "Record",
    "AccountingReport",
    "FileReport",
    # Building blocks
    "LogSnapshot",
    "ResumeStore",
    "LineParser",
    "RegexLineParser",
    "available_formats",
    "get_parser",
    "register_parser",
    "add",
    "merge",
    # Configuration
    "AccountingConfig",
    "load_config",
    # Exceptions
    "LogtallyError",
    "SnapshotError",
    "StateError",
    "UnknownSourceError",
    "UnknownFormatError",
    "ConfigError",
]
