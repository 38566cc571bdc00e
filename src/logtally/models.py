"""Data models for logtally."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List


@dataclass(frozen=True, slots=True)
class LineInfo:
    """Position of a single line inside a snapshot.

    Attributes:
        line_number: 0-indexed line number
        offset: Byte offset from start of file
        length: Length in bytes (including newline)
    """

    line_number: int
    offset: int
    length: int


@dataclass(frozen=True)
class LogSource:
    """A live log file and the naming convention of its rotated siblings.

    Attributes:
        name: Key under which the resume index is persisted
        path: Path to the live log file
        format: Name of the line parser used for this log
        rotations: Number of rotation generations that may be consulted
            when rotation is detected (1 means only ``path.1``)
        rotated_suffix: Template turning a generation number into the
            sibling's suffix
    """

    name: str
    path: Path
    format: str = "keyvalue"
    rotations: int = 1
    rotated_suffix: str = ".{n}"

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))
        if self.rotations < 0:
            raise ValueError(f"rotations must be >= 0, got {self.rotations}")

    def rotated_path(self, generation: int) -> Path:
        """Path of the rotated sibling ``generation`` rotations back."""
        if generation < 1:
            raise ValueError(f"generation must be >= 1, got {generation}")
        suffix = self.rotated_suffix.format(n=generation)
        return self.path.with_name(self.path.name + suffix)

    def candidates(self) -> list[Path]:
        """Live path followed by each rotated sibling, newest first."""
        return [self.path] + [
            self.rotated_path(n) for n in range(1, self.rotations + 1)
        ]


@dataclass(frozen=True)
class ResumeIndex:
    """How far a log source has been processed.

    Attributes:
        line_number: 0-indexed number of the last processed line
        fingerprint: Verbatim text of that line in the live log
        updated_at: ISO timestamp of the run that wrote it (informational)
    """

    line_number: int = 0
    fingerprint: str = ""
    updated_at: str | None = None

    @classmethod
    def empty(cls) -> "ResumeIndex":
        """The zero index used on first encounter of a source."""
        return cls()

    @property
    def is_empty(self) -> bool:
        """True if nothing has ever been committed for this source."""
        return self.fingerprint == ""


@dataclass(frozen=True, slots=True)
class Record:
    """Traffic extracted from one log line.

    Attributes:
        entity: Accounting key (usually a domain name)
        bytes_in: Bytes received
        bytes_out: Bytes sent
    """

    entity: str
    bytes_in: int
    bytes_out: int

    @property
    def total(self) -> int:
        """Bytes in both directions."""
        return self.bytes_in + self.bytes_out


@dataclass
class FileReport:
    """What one accounting run did with one file.

    Attributes:
        path: The file that was parsed
        start_line: First line parsed (lines before it were skipped)
        total_lines: Number of lines in the snapshot
        matched_lines: Lines that produced a record for a known entity
        is_live: False for rotated siblings
    """

    path: Path
    start_line: int
    total_lines: int
    matched_lines: int = 0
    is_live: bool = True

    @property
    def parsed_lines(self) -> int:
        """Number of lines read past the resume point."""
        return max(self.total_lines - self.start_line, 0)


@dataclass
class AccountingReport:
    """Summary of one ``account_traffic`` run.

    Attributes:
        source: Name of the log source
        files: Per-file details, in processing order
        delta: Bytes added to each entity by this run
        committed: True if the resume index was written
        index: Resume index in effect after the run
    """

    source: str
    files: List[FileReport] = field(default_factory=list)
    delta: Dict[str, int] = field(default_factory=dict)
    committed: bool = False
    index: ResumeIndex = field(default_factory=ResumeIndex.empty)

    @property
    def lines_processed(self) -> int:
        """Lines parsed across all files."""
        return sum(f.parsed_lines for f in self.files)

    @property
    def bytes_accounted(self) -> int:
        """Bytes added across all entities."""
        return sum(self.delta.values())
