"""Command-line interface for logtally."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import NoReturn

from .config import (
    LOG_LEVELS,
    AccountingConfig,
    default_config_path,
    default_log_level,
    load_config,
)
from .exceptions import ConfigError, LogtallyError
from .parsers import available_formats
from .state import ResumeStore

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _load(args: argparse.Namespace) -> AccountingConfig | None:
    try:
        return load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None


def _read_entities(args: argparse.Namespace) -> set[str]:
    entities = set(args.entity or [])
    if args.entities_file:
        with open(args.entities_file, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    entities.add(line)
    return entities


def _read_totals(path: Path) -> dict[str, int]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict) or not all(
        isinstance(v, int) and not isinstance(v, bool) for v in data.values()
    ):
        raise ValueError(f"{path} must hold a JSON object of integer totals")
    return data


def _write_totals(path: Path, totals: dict[str, int]) -> None:
    """Replace the totals file atomically."""
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}-", suffix=".tmp", dir=str(path.parent)
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(totals, f, indent=2, sort_keys=True)
        os.replace(tmp_name, path)
    except OSError:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)
        raise


def cmd_account(args: argparse.Namespace) -> int:
    """Handle the 'account' subcommand."""
    config = _load(args)
    if config is None:
        return 1

    try:
        entities = _read_entities(args)
        totals = _read_totals(Path(args.totals)) if args.totals else {}
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not entities and not totals:
        print(
            "Error: no known entities (use --entity, --entities-file or --totals)",
            file=sys.stderr,
        )
        return 1

    # Entities named on the command line extend the keys of the totals file
    known = entities | set(totals) if entities else None
    accountant = config.build_accountant()
    try:
        report = accountant.account_traffic(args.source, known, totals)
    except LogtallyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.totals:
        try:
            _write_totals(Path(args.totals), totals)
        except OSError as e:
            print(
                f"Error: cannot write totals to {args.totals}: {e.strerror or e}; "
                f"the resume index was already committed, this run added {report.delta}",
                file=sys.stderr,
            )
            return 1

    if args.json:
        info = {
            "source": report.source,
            "delta": report.delta,
            "totals": totals,
            "lines_processed": report.lines_processed,
            "committed": report.committed,
            "index": {
                "line_number": report.index.line_number,
                "fingerprint": report.index.fingerprint,
            },
            "files": [
                {
                    "path": str(f.path),
                    "start_line": f.start_line,
                    "total_lines": f.total_lines,
                    "matched_lines": f.matched_lines,
                    "live": f.is_live,
                }
                for f in report.files
            ],
        }
        print(json.dumps(info, indent=2))
    else:
        for f in report.files:
            kind = "live" if f.is_live else "rotated"
            print(f"{kind}: {f.path} (lines {f.start_line}-{f.total_lines}, {f.matched_lines} counted)")
        for entity in sorted(totals):
            added = report.delta.get(entity, 0)
            print(f"{entity}: {_format_size(totals[entity])} (+{added:,} bytes)")
        print(f"Index: {'committed' if report.committed else 'unchanged'}")

    return 0


def cmd_index(args: argparse.Namespace) -> int:
    """Handle the 'index' subcommand."""
    config = _load(args)
    if config is None:
        return 1
    if args.source not in config.sources:
        print(f"Error: Unknown log source: {args.source!r}", file=sys.stderr)
        return 1

    index = ResumeStore(config.state_path).load(args.source)
    if args.json:
        info = {
            "source": args.source,
            "line_number": index.line_number,
            "fingerprint": index.fingerprint,
            "updated_at": index.updated_at,
        }
        print(json.dumps(info, indent=2))
    elif index.is_empty:
        print(f"Source: {args.source}")
        print("Index: none (next run starts from the first line)")
    else:
        print(f"Source: {args.source}")
        print(f"Line: {index.line_number:,}")
        print(f"Fingerprint: {index.fingerprint}")
        print(f"Updated: {index.updated_at or 'unknown'}")

    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    """Handle the 'reset' subcommand."""
    config = _load(args)
    if config is None:
        return 1

    try:
        removed = ResumeStore(config.state_path).reset(args.source)
    except LogtallyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if removed:
        print(f"Resume index for {args.source} removed")
    else:
        print(f"No resume index for {args.source}")
    return 0


def cmd_sources(args: argparse.Namespace) -> int:
    """Handle the 'sources' subcommand."""
    config = _load(args)
    if config is None:
        return 1

    if args.json:
        info = {
            name: {
                "path": str(source.path),
                "format": source.format,
                "rotations": source.rotations,
            }
            for name, source in config.sources.items()
        }
        print(json.dumps(info, indent=2))
    else:
        for name, source in sorted(config.sources.items()):
            print(f"{name}: {source.path} [{source.format}, {source.rotations} rotation(s)]")
    return 0


def cmd_formats(args: argparse.Namespace) -> int:
    """Handle the 'formats' subcommand."""
    for name in available_formats():
        print(name)
    return 0


def _format_size(size_bytes: int) -> str:
    """Format byte size in human-readable form."""
    size: float = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024:
            if unit == "B":
                return f"{int(size)} {unit}"
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} PB"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="logtally",
        description="Incremental, rotation-aware traffic accounting from log files",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=default_config_path(),
        help="Path to the JSON configuration (default: $LOGTALLY_CONFIG or ./logtally.json)",
    )
    parser.add_argument(
        "--log-level",
        default=default_log_level(),
        choices=LOG_LEVELS,
        type=str.upper,
        help="Logging verbosity (default: $LOGTALLY_LOG_LEVEL or WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # account subcommand
    account_parser = subparsers.add_parser(
        "account",
        help="Account new traffic of a log source",
        description="Parse the lines added since the last run and add their traffic",
    )
    account_parser.add_argument("source", help="Configured log source name")
    account_parser.add_argument(
        "--entity", action="append", help="Known entity (repeatable)"
    )
    account_parser.add_argument(
        "--entities-file", help="File with one known entity per line"
    )
    account_parser.add_argument(
        "--totals",
        help="JSON file of entity totals to add to (read, then rewritten); "
        "its keys are known entities too",
    )
    account_parser.add_argument(
        "--json", action="store_true", help="Output as JSON for scripting"
    )
    account_parser.set_defaults(func=cmd_account)

    # index subcommand
    index_parser = subparsers.add_parser(
        "index",
        help="Show the resume index of a log source",
        description="Display the last processed line and its fingerprint",
    )
    index_parser.add_argument("source", help="Configured log source name")
    index_parser.add_argument(
        "--json", action="store_true", help="Output as JSON for scripting"
    )
    index_parser.set_defaults(func=cmd_index)

    # reset subcommand
    reset_parser = subparsers.add_parser(
        "reset",
        help="Forget the resume index of a log source",
        description="The next run processes the live log from its first line",
    )
    reset_parser.add_argument("source", help="Log source name")
    reset_parser.set_defaults(func=cmd_reset)

    # sources subcommand
    sources_parser = subparsers.add_parser(
        "sources", help="List configured log sources"
    )
    sources_parser.add_argument(
        "--json", action="store_true", help="Output as JSON for scripting"
    )
    sources_parser.set_defaults(func=cmd_sources)

    # formats subcommand
    formats_parser = subparsers.add_parser(
        "formats", help="List available log formats"
    )
    formats_parser.set_defaults(func=cmd_formats)

    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format=LOG_FORMAT)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
