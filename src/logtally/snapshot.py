"""Point-in-time, memory-bounded snapshots of log files."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections import OrderedDict
from pathlib import Path
from typing import IO, Iterator, Union

from .exceptions import SnapshotError
from .models import LineInfo

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_INTERVAL = 1000
WINDOW_SIZE = 256


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


class LogSnapshot:
    """Read-only copy of a log file with random access by line number.

    The source file is copied to a private temporary file first, so that the
    daemon owning the log can keep appending to it (or rotate it) while the
    snapshot is being read. Only the byte offset of every
    ``checkpoint_interval``-th line is kept in memory; reading line ``i``
    seeks to the closest checkpoint and reads forward.

    Example:
        >>> with LogSnapshot.take("/var/log/mail.log") as snapshot:
        ...     print(len(snapshot), snapshot.last_line())
        ...     for line_number, text in snapshot.iter_from(120):
        ...         handle(text)
    """

    def __init__(
        self,
        source_path: Path,
        copy_path: Path,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    ) -> None:
        """Index an already-copied snapshot file.

        Prefer :meth:`take`, which performs the copy.

        Args:
            source_path: The log file the copy was taken from
            copy_path: The private copy to read
            checkpoint_interval: Keep one offset every N lines
        """
        if checkpoint_interval < 1:
            raise ValueError(
                f"checkpoint_interval must be >= 1, got {checkpoint_interval}"
            )
        self._source_path = Path(source_path)
        self._copy_path = Path(copy_path)
        self._checkpoint_interval = checkpoint_interval
        self._checkpoints: list[LineInfo] = []
        self._last: LineInfo | None = None
        self._total_lines = 0
        self._terminated = True
        self._window: OrderedDict[int, str] = OrderedDict()
        self._handle: IO[bytes] | None = open(self._copy_path, "rb")
        try:
            self._build_checkpoints()
        except OSError:
            self._handle.close()
            raise

    @classmethod
    def take(
        cls,
        path: Union[str, Path],
        directory: Union[str, Path, None] = None,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    ) -> "LogSnapshot":
        """Copy ``path`` to a private location and index the copy.

        Args:
            path: Log file to snapshot
            directory: Where to place the private copy (default: system temp)
            checkpoint_interval: Keep one offset every N lines

        Returns:
            An open LogSnapshot; close it (or use it as a context manager)
            to delete the copy.

        Raises:
            SnapshotError: If the file is missing, unreadable or the copy fails
            ValueError: If checkpoint_interval is not positive
        """
        if checkpoint_interval < 1:
            raise ValueError(
                f"checkpoint_interval must be >= 1, got {checkpoint_interval}"
            )
        source = Path(path)
        if not source.is_file():
            raise SnapshotError(source, "no such file")

        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"logtally-{source.name}-",
                suffix=".snapshot",
                dir=str(directory) if directory else None,
            )
        except OSError as e:
            raise SnapshotError(source, e.strerror or str(e)) from e
        os.close(fd)
        copy_path = Path(tmp_name)

        try:
            shutil.copyfile(source, copy_path)
            snapshot = cls(source, copy_path, checkpoint_interval)
        except OSError as e:
            copy_path.unlink(missing_ok=True)
            raise SnapshotError(source, e.strerror or str(e)) from e

        logger.debug(
            "Snapshot of %s taken (%d lines) at %s",
            source, len(snapshot), copy_path,
        )
        return snapshot

    def _build_checkpoints(self) -> None:
        """Scan the copy once, recording sparse line offsets."""
        assert self._handle is not None
        offset = 0
        line_number = -1
        length = 0

        self._handle.seek(0)
        for line_number, raw in enumerate(self._handle):
            length = len(raw)
            if line_number % self._checkpoint_interval == 0:
                self._checkpoints.append(
                    LineInfo(line_number=line_number, offset=offset, length=length)
                )
            offset += length

        self._total_lines = line_number + 1
        if self._total_lines:
            self._terminated = raw.endswith(b"\n")
            self._last = LineInfo(
                line_number=line_number, offset=offset - length, length=length
            )

    @property
    def source_path(self) -> Path:
        """Path of the log file this snapshot was taken from."""
        return self._source_path

    @property
    def copy_path(self) -> Path:
        """Path of the private copy."""
        return self._copy_path

    @property
    def closed(self) -> bool:
        return self._handle is None

    def __len__(self) -> int:
        """Return total number of lines."""
        return self._total_lines

    @property
    def complete_lines(self) -> int:
        """Number of lines terminated by a newline.

        A last line without one may still be being written by the daemon
        owning the log.
        """
        if self._total_lines and not self._terminated:
            return self._total_lines - 1
        return self._total_lines

    def __getitem__(self, line_number: int) -> str:
        """Get a line by index (e.g., snapshot[100])."""
        return self.line(line_number)

    def _check_open(self) -> IO[bytes]:
        if self._handle is None:
            raise ValueError(f"Snapshot of {self._source_path} is closed")
        return self._handle

    def _seek_checkpoint(self, handle: IO[bytes], line_number: int) -> int:
        """Position ``handle`` at the checkpoint preceding ``line_number``.

        Returns:
            The line number the handle is now positioned at
        """
        checkpoint = self._checkpoints[line_number // self._checkpoint_interval]
        handle.seek(checkpoint.offset)
        return checkpoint.line_number

    def line(self, line_number: int) -> str:
        """Read a specific line.

        Args:
            line_number: 0-indexed line number

        Returns:
            The line content (decoded as UTF-8, newline stripped)

        Raises:
            IndexError: If line_number is out of range
        """
        if line_number < 0 or line_number >= self._total_lines:
            raise IndexError(
                f"Line {line_number} out of range (0-{self._total_lines - 1})"
            )

        cached = self._window.get(line_number)
        if cached is not None:
            self._window.move_to_end(line_number)
            return cached

        handle = self._check_open()
        if self._last is not None and line_number == self._last.line_number:
            handle.seek(self._last.offset)
            text = _decode(handle.read(self._last.length))
        else:
            current = self._seek_checkpoint(handle, line_number)
            while current < line_number:
                handle.readline()
                current += 1
            text = _decode(handle.readline())

        self._window[line_number] = text
        if len(self._window) > WINDOW_SIZE:
            self._window.popitem(last=False)
        return text

    def last_line(self) -> str | None:
        """Text of the last line, or None for an empty snapshot."""
        if not self._total_lines:
            return None
        return self.line(self._total_lines - 1)

    def iter_from(
        self, start_line: int = 0, end_line: int | None = None
    ) -> Iterator[tuple[int, str]]:
        """Iterate lines starting from a specific line.

        Args:
            start_line: 0-indexed line to start from (default: 0)
            end_line: Stop before this line (default: end of snapshot)

        Yields:
            Tuples of (line_number, text)
        """
        if start_line < 0:
            start_line = 0
        stop = self._total_lines if end_line is None else min(end_line, self._total_lines)
        if start_line >= stop:
            return

        handle = self._check_open()
        current = self._seek_checkpoint(handle, start_line)
        while current < start_line:
            handle.readline()
            current += 1

        for raw in handle:
            if current >= stop:
                break
            yield current, _decode(raw)
            current += 1

    def close(self) -> None:
        """Close the copy and delete it from disk."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            self._window.clear()
            self._copy_path.unlink(missing_ok=True)

    def __enter__(self) -> "LogSnapshot":
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit context manager and delete the copy."""
        self.close()

    def __repr__(self) -> str:
        return f"LogSnapshot({str(self._source_path)!r}, lines={self._total_lines})"
