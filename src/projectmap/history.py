#!/usr/bin/env python3
"""Timestamped history of map generations.

History entries are ids of the form ``YYYYMMDD-HHMMSS`` (UTC), which sort
lexically in time order. Two saves within the same second get ``-002``,
``-003``, ... suffixes instead of overwriting each other.

Example:
    >>> history = HistoryStore('/my/project')
    >>> old_id = history.save(maps, {'reason': 'before-refactor'})
    >>> report = history.compare(old_id, history.save(new_maps))
    >>> report['comparison']['time_delta']['human_readable']
    '2 hours, 5 minutes'
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .colors import get_colors
from .config import ConfigResolver
from .diff_formatter import DiffFormatter
from .differ import MapDiffer
from .errors import ProjectMapError
from .git import GitIntegration
from .loader import MapLoader
from .paths import MapPaths
from .store import MapStore, utc_now

logger = logging.getLogger(__name__)

ID_FORMAT = "%Y%m%d-%H%M%S"
DEFAULT_MAX_ENTRIES = 10


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def time_delta(timestamp1: str, timestamp2: str) -> Dict[str, Any]:
    """Absolute distance between two ISO timestamps, in several units."""
    first = datetime.fromisoformat(timestamp1)
    second = datetime.fromisoformat(timestamp2)
    seconds = int(abs((second - first).total_seconds()))
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        readable = f"{_plural(days, 'day')}, {_plural(hours % 24, 'hour')}"
    elif hours > 0:
        readable = f"{_plural(hours, 'hour')}, {_plural(minutes % 60, 'minute')}"
    elif minutes > 0:
        readable = f"{_plural(minutes, 'minute')}, {_plural(seconds % 60, 'second')}"
    else:
        readable = _plural(seconds, "second")

    return {
        "seconds": seconds,
        "minutes": minutes,
        "hours": hours,
        "days": days,
        "human_readable": readable,
    }


class HistoryStore(MapStore):
    """Long-term, timestamp-addressed map history."""

    kind = "History entry"
    lock_name = "history"

    def __init__(
        self,
        project_root: Union[str, Path],
        paths: Optional[MapPaths] = None,
        config: Optional[ConfigResolver] = None,
    ):
        paths = paths if paths is not None else MapPaths(project_root)
        super().__init__(project_root, paths.history_dir, paths=paths, config=config)

    def generate_id(self, when: datetime) -> str:
        """Timestamp id for ``when``, suffixed if that second is already taken.

        Call with the store's lock held, as ``save`` does.
        """
        base = when.strftime(ID_FORMAT)
        if not self.exists(base):
            return base
        counter = 2
        while self.exists(f"{base}-{counter:03d}"):
            counter += 1
        return f"{base}-{counter:03d}"

    def save(
        self,
        maps: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
        when: Optional[datetime] = None,
    ) -> str:
        """Save ``maps`` as a new history entry.

        Args:
            maps: Map payload keyed by map name.
            metadata: Extra metadata; ``reason``, ``git_commit``,
                ``git_branch`` and ``notes`` default to ``manual-save``,
                the current HEAD, the current branch and None.
            when: Entry time (defaults to now, UTC).

        Returns:
            The new entry id.
        """
        when = when or utc_now()
        metadata = dict(metadata or {})
        if "git_commit" not in metadata or "git_branch" not in metadata:
            git = GitIntegration(self.project_root)
            metadata.setdefault("git_commit", git.get_head_hash())
            metadata.setdefault("git_branch", git.get_branch())
        metadata.setdefault("reason", "manual-save")
        metadata.setdefault("notes", None)

        return self._write(lambda: self.generate_id(when), maps, metadata, when)

    def compare(self, id1: str, id2: str) -> Dict[str, Any]:
        """Diff two history entries, ``id1`` being the older side.

        Returns:
            A full diff report with an added ``comparison`` block.

        Raises:
            MapNotFoundError: If either entry does not exist.
        """
        first = self.load(id1)
        second = self.load(id2)
        report = MapDiffer().generate_full_diff(first["maps"], second["maps"])
        report["comparison"] = {
            "from": {"id": id1, "timestamp": first["timestamp"], "metadata": first.get("metadata", {})},
            "to": {"id": id2, "timestamp": second["timestamp"], "metadata": second.get("metadata", {})},
            "time_delta": time_delta(first["timestamp"], second["timestamp"]),
        }
        return report

    def stats(self) -> Dict[str, Any]:
        entries = self.list()
        if not entries:
            return {"total": 0, "oldest": None, "newest": None, "total_size": 0, "average_size": 0}

        total_size = 0
        for entry in entries:
            try:
                total_size += self.entry_path(entry["id"]).stat().st_size
            except OSError:
                continue
        return {
            "total": len(entries),
            "oldest": entries[-1],
            "newest": entries[0],
            "total_size": total_size,
            "average_size": round(total_size / len(entries)),
        }


def add_history_arguments(parser: argparse.ArgumentParser) -> None:
    """Add history subcommands to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("project", help="Project root")
    common.add_argument("--compact", action="store_true", help="Output compact JSON")
    common.add_argument("--no-color", action="store_true", help="Disable colored output")
    # Absent unless given, so it does not override a --debug before the command
    common.add_argument("--debug", action="store_true", default=argparse.SUPPRESS, help="Enable debug logging")
    commands = parser.add_subparsers(dest="history_command", metavar="<command>", required=True)

    commands.add_parser("list", help="List history entries, newest first", parents=[common])

    p = commands.add_parser("save", help="Save the current maps to history", parents=[common])
    p.add_argument("reason", nargs="?", default="manual-save", help="Reason (default: manual-save)")
    p.add_argument("--notes", help="Free-form notes")

    p = commands.add_parser("load", help="Print a history entry as JSON", parents=[common])
    p.add_argument("id", help="History entry id")

    p = commands.add_parser("compare", help="Diff two history entries", parents=[common])
    p.add_argument("id1", help="Older entry id")
    p.add_argument("id2", help="Newer entry id")
    p.add_argument("-v", "--verbose", action="store_true", help="Print the detailed diff to stderr")

    p = commands.add_parser("prune", help="Keep only the N newest entries", parents=[common])
    p.add_argument(
        "max_entries",
        nargs="?",
        type=int,
        default=DEFAULT_MAX_ENTRIES,
        help=f"Entries to keep (default: {DEFAULT_MAX_ENTRIES})",
    )

    p = commands.add_parser("delete", help="Delete one history entry", parents=[common])
    p.add_argument("id", help="History entry id")

    commands.add_parser("stats", help="Show history statistics", parents=[common])


def run_history(args: argparse.Namespace) -> int:
    """Execute a history subcommand.

    Returns:
        Process exit code.
    """
    c = get_colors(no_color=args.no_color)
    store = HistoryStore(args.project)
    command = args.history_command
    output: Any = None

    try:
        if command == "list":
            output = store.list()
            print(f"Found {len(output)} history entr{'y' if len(output) == 1 else 'ies'}", file=sys.stderr)

        elif command == "save":
            loader = MapLoader(args.project, paths=store.paths)
            if not loader.exists():
                print(c.error(f"Error: no maps found in {store.paths.maps_dir}"), file=sys.stderr)
                return 1
            entry_id = store.save(loader.load_all(), {"reason": args.reason, "notes": args.notes})
            print(f"{c.success('✓')} Saved history entry: {entry_id}", file=sys.stderr)
            output = {"id": entry_id}

        elif command == "load":
            output = store.load(args.id)

        elif command == "compare":
            output = store.compare(args.id1, args.id2)
            formatter = DiffFormatter(colors=c)
            delta = output["comparison"]["time_delta"]["human_readable"]
            print(f"{args.id1} -> {args.id2} ({delta})", file=sys.stderr)
            if args.verbose:
                print(formatter.format_verbose(output), file=sys.stderr)
            else:
                print(formatter.format_summary(output), file=sys.stderr)

        elif command == "prune":
            deleted = store.prune(args.max_entries)
            print(f"Pruned {deleted} history entr{'y' if deleted == 1 else 'ies'}", file=sys.stderr)
            output = {"deleted": deleted}

        elif command == "delete":
            store.delete(args.id)
            print(f"{c.success('✓')} Deleted history entry: {args.id}", file=sys.stderr)

        elif command == "stats":
            output = store.stats()

    except ProjectMapError as e:
        print(c.error(f"Error: {e}"), file=sys.stderr)
        return 1

    if output is not None:
        if args.compact:
            print(json.dumps(output, separators=(",", ":")))
        else:
            print(json.dumps(output, indent=2))
    return 0
