"""Resume index persistence (save/load per-source positions to disk)."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Union

from .exceptions import StateError
from .models import ResumeIndex

logger = logging.getLogger(__name__)

# Resume store format version
FORMAT_VERSION = "1.0"


class _CorruptState(Exception):
    """Internal marker for a store file that cannot be trusted."""


def _entry_to_index(name: str, entry: Any) -> ResumeIndex:
    if not isinstance(entry, dict):
        raise _CorruptState(f"entry for {name!r} is not an object")

    line_number = entry.get("line_number")
    fingerprint = entry.get("fingerprint")
    if isinstance(line_number, bool) or not isinstance(line_number, int):
        raise _CorruptState(f"line_number for {name!r} is not an integer")
    if line_number < 0:
        raise _CorruptState(f"line_number for {name!r} is negative")
    if not isinstance(fingerprint, str):
        raise _CorruptState(f"fingerprint for {name!r} is not a string")

    return ResumeIndex(
        line_number=line_number,
        fingerprint=fingerprint,
        updated_at=entry.get("updated_at"),
    )


class ResumeStore:
    """JSON file holding one resume index per log source.

    The file looks like::

        {"format_version": "1.0",
         "sources": {"mail": {"line_number": 41,
                              "fingerprint": "Apr 21 ... rcvd=6, sent=30",
                              "updated_at": "2024-04-21T15:15:00+00:00"}}}

    Loading never fails: a missing, unreadable or corrupt file means "start
    from scratch". Writing goes through a temporary file that is renamed over
    the target, so a crash mid-write leaves the previous content intact.

    Example:
        >>> store = ResumeStore("/var/lib/logtally/resume.json")
        >>> index = store.load("mail")
        >>> store.store("mail", 41, "Apr 21 15:14:44 www pop3d: LOGOUT, ...")
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        """Path to the store file."""
        return self._path

    def _read(self) -> dict[str, Any]:
        """Return the raw ``sources`` mapping.

        Raises:
            FileNotFoundError: If the store does not exist yet
            _CorruptState: If the file cannot be parsed or has another format
        """
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise _CorruptState(str(e)) from e

        if not isinstance(data, dict):
            raise _CorruptState("top-level value is not an object")
        if data.get("format_version") != FORMAT_VERSION:
            raise _CorruptState(
                f"unsupported format version {data.get('format_version')!r}"
            )
        sources = data.get("sources", {})
        if not isinstance(sources, dict):
            raise _CorruptState("'sources' is not an object")
        return sources

    def _read_for_update(self) -> dict[str, Any]:
        try:
            return self._read()
        except FileNotFoundError:
            return {}
        except _CorruptState as e:
            logger.warning(
                "Discarding unreadable resume store %s: %s", self._path, e
            )
            return {}

    def load(self, source_name: str) -> ResumeIndex:
        """Load the resume index of one source.

        Args:
            source_name: The log source name

        Returns:
            The stored index, or the zero index if there is none or it
            cannot be trusted
        """
        try:
            sources = self._read()
        except FileNotFoundError:
            logger.debug(
                "No resume store at %s; starting %s from scratch",
                self._path, source_name,
            )
            return ResumeIndex.empty()
        except _CorruptState as e:
            logger.warning(
                "Resume store %s is unreadable (%s); starting %s from scratch",
                self._path, e, source_name,
            )
            return ResumeIndex.empty()

        if source_name not in sources:
            logger.debug("No resume index for %s; starting from scratch", source_name)
            return ResumeIndex.empty()

        try:
            return _entry_to_index(source_name, sources[source_name])
        except _CorruptState as e:
            logger.warning(
                "Resume index for %s is corrupt (%s); starting from scratch",
                source_name, e,
            )
            return ResumeIndex.empty()

    def sources(self) -> dict[str, ResumeIndex]:
        """All valid resume indexes in the store, keyed by source name."""
        result: dict[str, ResumeIndex] = {}
        for name, entry in self._read_for_update().items():
            try:
                result[name] = _entry_to_index(name, entry)
            except _CorruptState:
                continue
        return result

    def _write(self, sources: dict[str, Any]) -> None:
        data = {"format_version": FORMAT_VERSION, "sources": sources}
        directory = self._path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}-", suffix=".tmp", dir=str(directory)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, separators=(",", ":"))
            os.replace(tmp_name, self._path)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StateError(self._path, e.strerror or str(e)) from e

    def store(
        self, source_name: str, line_number: int, fingerprint: str
    ) -> ResumeIndex:
        """Persist the resume index of one source.

        Performs a read-modify-write so that the entries of other sources
        are preserved.

        Args:
            source_name: The log source name
            line_number: 0-indexed number of the last processed live line
            fingerprint: Verbatim text of that line

        Returns:
            The index as written

        Raises:
            StateError: If the store cannot be written
        """
        if line_number < 0:
            raise ValueError(f"line_number must be >= 0, got {line_number}")

        index = ResumeIndex(
            line_number=line_number,
            fingerprint=fingerprint,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )
        sources = self._read_for_update()
        sources[source_name] = {
            "line_number": index.line_number,
            "fingerprint": index.fingerprint,
            "updated_at": index.updated_at,
        }
        self._write(sources)
        logger.debug(
            "Resume index for %s committed at line %d", source_name, line_number
        )
        return index

    def reset(self, source_name: str) -> bool:
        """Forget the resume index of one source.

        Args:
            source_name: The log source name

        Returns:
            True if the source had an entry and it was removed
        """
        sources = self._read_for_update()
        if source_name not in sources:
            return False

        del sources[source_name]
        self._write(sources)
        return True

    def __repr__(self) -> str:
        return f"ResumeStore({str(self._path)!r})"
