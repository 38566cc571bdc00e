"""Line parsers extracting traffic records from raw log lines.

Each log format is a :class:`LineParser` registered under a name. A parser
returns a :class:`~logtally.models.Record` for a line it understands and
``None`` for anything else; unrelated lines and format drift are skipped,
never raised.
"""

from __future__ import annotations

import re
from typing import Dict, Pattern, Protocol, Union

from .exceptions import UnknownFormatError
from .models import Record

REQUIRED_GROUPS = frozenset({"entity", "bytes_in", "bytes_out"})


class LineParser(Protocol):
    """Anything that turns one log line into a Record (or None)."""

    def parse(self, line: str) -> Record | None: ...


class RegexLineParser:
    """Line parser driven by a regular expression with named groups.

    The pattern must define the groups ``entity``, ``bytes_in`` and
    ``bytes_out``; the byte groups must only match digits.

    Example:
        >>> parser = RegexLineParser(r"^(?P<entity>\\S+) (?P<bytes_in>\\d+) (?P<bytes_out>\\d+)")
        >>> parser.parse("example.test 10 20")
        Record(entity='example.test', bytes_in=10, bytes_out=20)
    """

    def __init__(self, pattern: Union[str, Pattern[str]], *, lowercase: bool = False) -> None:
        """Compile a parser.

        Args:
            pattern: Regular expression (string or compiled)
            lowercase: Normalize the entity to lower case (domain names)

        Raises:
            ValueError: If a required named group is missing
        """
        self._regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        missing = REQUIRED_GROUPS - set(self._regex.groupindex)
        if missing:
            raise ValueError(
                f"Pattern is missing named group(s): {', '.join(sorted(missing))}"
            )
        self._lowercase = lowercase

    @property
    def pattern(self) -> str:
        return self._regex.pattern

    def parse(self, line: str) -> Record | None:
        """Extract a record from ``line``.

        Returns:
            The record, or None if the line does not match
        """
        match = self._regex.search(line)
        if match is None:
            return None

        entity = match.group("entity")
        if not entity:
            return None
        try:
            bytes_in = int(match.group("bytes_in"))
            bytes_out = int(match.group("bytes_out"))
        except (TypeError, ValueError):
            return None

        if self._lowercase:
            entity = entity.lower()
        return Record(entity=entity, bytes_in=bytes_in, bytes_out=bytes_out)

    def __repr__(self) -> str:
        return f"RegexLineParser({self._regex.pattern!r})"


# IMAP/POP3 LOGOUT lines written by the Courier daemons:
# Apr 21 15:14:44 www pop3d: LOGOUT, user=user@domain.tld, ip=[::ffff:192.168.1.1], port=[36852], top=0, retr=0, rcvd=6, sent=30, time=0, stls=1
# Apr 21 15:24:36 www imapd-ssl: LOGOUT, user=user@domain.tld, ip=[::ffff:192.168.1.1], headers=0, body=0, rcvd=50, sent=374, time=10, starttls=1
COURIER_PATTERN = (
    r"(?:imapd|pop3d)(?:-ssl)?:.*\buser=[^@,\s]+@(?P<entity>[^,\s]+)"
    r".*\brcvd=(?P<bytes_in>\d+).*\bsent=(?P<bytes_out>\d+)"
)

# Generic key=value lines, whitespace or comma delimited:
# 2024-04-21T15:14:44 svc entity=example.test, rcvd=10, sent=20
KEYVALUE_PATTERN = (
    r"(?:^|[\s,])entity=(?P<entity>[^,\s]+)"
    r".*?(?:^|[\s,])rcvd=(?P<bytes_in>\d+)"
    r".*?(?:^|[\s,])sent=(?P<bytes_out>\d+)"
)

# Virtual host traffic log (LogFormat "%v %I %O"):
# example.test 1520 38022
WEB_PATTERN = r"^(?P<entity>[^\s@]+)\s+(?P<bytes_in>\d+)\s+(?P<bytes_out>\d+)\s*$"

# FTP transfer log, one line per session:
# joe@example.test 1024 52311
FTP_PATTERN = r"^[^\s@]+@(?P<entity>[^\s@]+)\s+(?P<bytes_in>\d+)\s+(?P<bytes_out>\d+)\s*$"

_PARSERS: Dict[str, LineParser] = {
    "courier": RegexLineParser(COURIER_PATTERN),
    "keyvalue": RegexLineParser(KEYVALUE_PATTERN),
    "web": RegexLineParser(WEB_PATTERN),
    "ftp": RegexLineParser(FTP_PATTERN),
}


def register_parser(name: str, parser: LineParser, *, replace: bool = False) -> None:
    """Make ``parser`` available under ``name``.

    Raises:
        ValueError: If the name is taken and replace is False
    """
    if name in _PARSERS and not replace:
        raise ValueError(f"A parser is already registered as {name!r}")
    _PARSERS[name] = parser


def unregister_parser(name: str) -> bool:
    """Remove a registered parser. Returns True if it existed."""
    return _PARSERS.pop(name, None) is not None


def get_parser(name: str) -> LineParser:
    """Look up the parser registered under ``name``.

    Raises:
        UnknownFormatError: If no parser has that name
    """
    try:
        return _PARSERS[name]
    except KeyError:
        raise UnknownFormatError(name) from None


def available_formats() -> list[str]:
    """Names of all registered parsers, sorted."""
    return sorted(_PARSERS)
