"""Rotation detection: where to resume and which rotated files to read first."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .models import LogSource, ResumeIndex
from .snapshot import LogSnapshot

logger = logging.getLogger(__name__)

OpenSnapshot = Callable[[Path], LogSnapshot]


@dataclass
class PendingFile:
    """A snapshot queued for parsing.

    Attributes:
        snapshot: The snapshot to parse
        start_line: First line to parse
        is_live: True for the live log, False for a rotated sibling
        end_line: Stop before this line (default: end of the snapshot)
    """

    snapshot: LogSnapshot
    start_line: int = 0
    is_live: bool = False
    end_line: int | None = None


def has_content(path: Path) -> bool:
    """True if ``path`` is a regular, non-empty file."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def resume_point(snapshot: LogSnapshot, index: ResumeIndex) -> int | None:
    """First line of ``snapshot`` that has not been accounted for yet.

    Returns:
        0 if nothing was ever committed, ``index.line_number + 1`` if the
        fingerprinted line is still at its recorded position, None if it is
        not (the file was rotated since the index was written)
    """
    if index.is_empty:
        return 0
    if index.line_number < len(snapshot) and (
        snapshot.line(index.line_number) == index.fingerprint
    ):
        return index.line_number + 1
    return None


class RotationResolver:
    """Finds the rotated files holding lines not yet accounted for.

    Rotated siblings are walked as an explicit candidate list (``.1``,
    ``.2``, ... up to ``LogSource.rotations``), never recursively.
    """

    def __init__(self, open_snapshot: OpenSnapshot) -> None:
        self._open_snapshot = open_snapshot

    def _rotated(self, source: LogSource) -> list[Path]:
        return [path for path in source.candidates()[1:] if has_content(path)]

    def fallback(self, source: LogSource, index: ResumeIndex) -> PendingFile | None:
        """Pick the work to do when the live log is missing or empty.

        The newest non-empty rotated sibling is the only file processed. It
        resumes after the fingerprinted line if that line is found there,
        otherwise from its first line.

        Returns:
            The sibling to parse, or None if there is none
        """
        rotated = self._rotated(source)
        if not rotated:
            return None

        path = rotated[0]
        logger.debug(
            "%s is empty; processing last rotated log file %s", source.path, path
        )
        snapshot = self._open_snapshot(path)
        start = resume_point(snapshot, index)
        if start is None:
            logger.warning(
                "Resume point for %s not found in %s; processing it in full",
                source.name, path,
            )
            start = 0
        return PendingFile(snapshot=snapshot, start_line=start)

    def backlog(self, source: LogSource, index: ResumeIndex) -> list[PendingFile]:
        """Rotated files to parse before the live log after a rotation.

        Generations are searched newest first for the one still holding the
        fingerprinted line at its recorded position. That generation is read
        from just after the line; every newer generation is read in full.
        If no generation holds it, only the newest sibling is read, in full.

        Returns:
            Pending files in processing order (oldest first)
        """
        opened: list[LogSnapshot] = []
        try:
            for path in self._rotated(source):
                snapshot = self._open_snapshot(path)
                opened.append(snapshot)
                start = resume_point(snapshot, index)
                if start is not None:
                    logger.debug(
                        "Resume point for %s found in %s at line %d",
                        source.name, path, index.line_number,
                    )
                    return [PendingFile(snapshot=snapshot, start_line=start)] + [
                        PendingFile(snapshot=newer) for newer in reversed(opened[:-1])
                    ]
        except Exception:
            for snapshot in opened:
                snapshot.close()
            raise

        if not opened:
            logger.warning(
                "Log rotation detected for %s but no rotated log file found; "
                "processing the live log from its first line",
                source.name,
            )
            return []

        for snapshot in opened[1:]:
            snapshot.close()
        logger.warning(
            "Resume point for %s not found in any rotated log file; "
            "processing %s in full",
            source.name, opened[0].source_path,
        )
        return [PendingFile(snapshot=opened[0])]
