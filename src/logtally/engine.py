"""Incremental, rotation-aware traffic accounting."""

from __future__ import annotations

import logging
from collections import abc
from contextlib import ExitStack
from pathlib import Path
from typing import AbstractSet, Iterable, Mapping, MutableMapping, Union

from .accumulator import add, merge
from .exceptions import UnknownSourceError
from .models import AccountingReport, FileReport, LogSource
from .parsers import LineParser, get_parser
from .rotation import PendingFile, RotationResolver, has_content, resume_point
from .snapshot import DEFAULT_CHECKPOINT_INTERVAL, LogSnapshot
from .state import ResumeStore

logger = logging.getLogger(__name__)


def _commit_point(snapshot: LogSnapshot, end: int) -> tuple[int, str] | None:
    """Last non-blank live line before ``end``, as (line_number, text).

    A blank line makes an empty fingerprint, which reads back as "never
    committed"; trailing blank lines carry no traffic, so the last non-blank
    line is committed instead.
    """
    for line_number in range(end - 1, -1, -1):
        text = snapshot.line(line_number)
        if text:
            return line_number, text
    return None


class TrafficAccountant:
    """Accumulates per-entity traffic from append-only log files.

    Each call to :meth:`account_traffic` snapshots a log source, skips the
    lines a previous run already accounted for, parses the rest and adds
    the bytes of known entities to the caller's totals. The position reached
    in the live log is then persisted in the resume store, so the next call
    picks up exactly there. When the log was rotated in between, the rotated
    sibling's unprocessed tail is accounted for first.

    Example:
        >>> accountant = TrafficAccountant(
        ...     [LogSource("mail", "/var/log/mail.log", format="courier")],
        ...     ResumeStore("/var/lib/logtally/resume.json"),
        ... )
        >>> totals = {"example.test": 0}
        >>> report = accountant.account_traffic("mail", {"example.test"}, totals)
        >>> print(report.delta, totals)
    """

    def __init__(
        self,
        sources: Union[Mapping[str, LogSource], Iterable[LogSource]],
        store: ResumeStore,
        snapshot_dir: Union[str, Path, None] = None,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    ) -> None:
        """Create an accountant.

        Args:
            sources: Log sources, as a name mapping or an iterable
            store: Where resume indexes are persisted
            snapshot_dir: Where private log copies are placed (default: system temp)
            checkpoint_interval: Snapshot offset granularity, in lines
        """
        if isinstance(sources, abc.Mapping):
            self._sources = dict(sources)
        else:
            self._sources = {source.name: source for source in sources}
        self._store = store
        self._snapshot_dir = Path(snapshot_dir) if snapshot_dir else None
        self._checkpoint_interval = checkpoint_interval
        self._resolver = RotationResolver(self._open_snapshot)

    @property
    def sources(self) -> dict[str, LogSource]:
        """Configured log sources, keyed by name."""
        return dict(self._sources)

    @property
    def store(self) -> ResumeStore:
        return self._store

    def source(self, name: str) -> LogSource:
        """Look up a log source.

        Raises:
            UnknownSourceError: If no source has that name
        """
        try:
            return self._sources[name]
        except KeyError:
            raise UnknownSourceError(name) from None

    def _open_snapshot(self, path: Path) -> LogSnapshot:
        return LogSnapshot.take(
            path,
            directory=self._snapshot_dir,
            checkpoint_interval=self._checkpoint_interval,
        )

    def _account_file(
        self,
        pending: PendingFile,
        parser: LineParser,
        known_entities: AbstractSet[str],
        delta: dict[str, int],
    ) -> FileReport:
        snapshot = pending.snapshot
        end = len(snapshot) if pending.end_line is None else pending.end_line
        report = FileReport(
            path=snapshot.source_path,
            start_line=pending.start_line,
            total_lines=end,
            is_live=pending.is_live,
        )
        if pending.start_line > 0:
            logger.debug(
                "Skipping logs that were already processed in %s (lines 0 to %d)",
                snapshot.source_path, pending.start_line - 1,
            )

        unmatched = 0
        for _, text in snapshot.iter_from(pending.start_line, end):
            record = parser.parse(text)
            if record is None:
                unmatched += 1
                continue
            if add(delta, record, known_entities):
                report.matched_lines += 1

        logger.debug(
            "Processed %d lines of %s: %d counted, %d not matching the format",
            report.parsed_lines, snapshot.source_path, report.matched_lines, unmatched,
        )
        return report

    def account_traffic(
        self,
        source_name: str,
        known_entities: Iterable[str] | None,
        totals: MutableMapping[str, int],
    ) -> AccountingReport:
        """Account the new traffic of one log source.

        ``totals`` is updated in place, only once every new line has been
        parsed and the resume index committed. On failure it is left as it
        was and nothing is persisted, so the same lines are picked up again
        on the next call.

        Args:
            source_name: Name of a configured log source
            known_entities: Entities whose traffic is counted; None means
                the keys already present in ``totals``
            totals: Caller-owned entity -> bytes mapping

        Returns:
            Report of the run, including the bytes added per entity

        Raises:
            UnknownSourceError: If the source is not configured
            UnknownFormatError: If the source's format has no parser
            SnapshotError: If a log file cannot be snapshotted
            StateError: If the resume index cannot be written
        """
        source = self.source(source_name)
        parser = get_parser(source.format)
        if known_entities is None:
            known: AbstractSet[str] = frozenset(totals)
        elif isinstance(known_entities, abc.Set):
            known = known_entities
        else:
            known = frozenset(known_entities)

        report = AccountingReport(source=source.name)
        delta: dict[str, int] = {}

        with ExitStack() as stack:
            live: LogSnapshot | None = None
            if not has_content(source.path):
                index = self._store.load(source.name)
                report.index = index
                pending = self._resolver.fallback(source, index)
                if pending is None:
                    logger.info(
                        "No new logs found in %s for processing", source.path
                    )
                    return report
                stack.enter_context(pending.snapshot)
                steps = [pending]
            else:
                live = stack.enter_context(self._open_snapshot(source.path))
                index = self._store.load(source.name)
                report.index = index
                start = resume_point(live, index)
                steps = []
                if start is None:
                    logger.info(
                        "Log rotation detected for %s; processing rotated logs first",
                        source.name,
                    )
                    for backlog in self._resolver.backlog(source, index):
                        stack.enter_context(backlog.snapshot)
                        steps.append(backlog)
                    start = 0
                if live.complete_lines < len(live):
                    logger.debug(
                        "Last line of %s is not terminated yet; leaving it for the next run",
                        source.path,
                    )
                steps.append(PendingFile(
                    snapshot=live,
                    start_line=start,
                    is_live=True,
                    end_line=live.complete_lines,
                ))

            for pending in steps:
                report.files.append(
                    self._account_file(pending, parser, known, delta)
                )

            if live is not None:
                commit = _commit_point(live, live.complete_lines)
                if commit is not None:
                    report.index = self._store.store(source.name, *commit)
                    report.committed = True

        merge(totals, delta)
        report.delta = delta
        logger.info(
            "Accounted %d bytes for %d entities from %s (%d lines processed)",
            report.bytes_accounted, len(delta), source.name, report.lines_processed,
        )
        return report


def account_traffic(
    source: LogSource,
    known_entities: Iterable[str] | None,
    totals: MutableMapping[str, int],
    store: ResumeStore,
    **kwargs,
) -> AccountingReport:
    """Account one log source without keeping an accountant around.

    Keyword arguments are passed on to :class:`TrafficAccountant`.
    """
    accountant = TrafficAccountant([source], store, **kwargs)
    return accountant.account_traffic(source.name, known_entities, totals)
