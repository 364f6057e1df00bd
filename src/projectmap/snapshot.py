#!/usr/bin/env python3
"""Named ad-hoc snapshots of the current maps.

Snapshots capture the maps before a refresh so the result can be diffed
against them afterwards. They are short-lived: ``cleanup`` removes
snapshots older than a day by default.

Example:
    $ projectmap-snapshot save . before-upgrade
    $ projectmap-snapshot has . before-upgrade
    true
    $ projectmap-snapshot cleanup . 12
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .colors import get_colors
from .config import ConfigResolver
from .errors import ProjectMapError, StorageError
from .loader import MapLoader
from .paths import MapPaths
from .store import MapStore, utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_HOURS = 24


class SnapshotStore(MapStore):
    """Snapshots addressed by caller-chosen names."""

    kind = "Snapshot"
    lock_name = "snapshots"

    def __init__(
        self,
        project_root: Union[str, Path],
        paths: Optional[MapPaths] = None,
        config: Optional[ConfigResolver] = None,
    ):
        paths = paths if paths is not None else MapPaths(project_root)
        super().__init__(project_root, paths.snapshots_dir, paths=paths, config=config)

    def save(self, maps: Dict[str, Any], name: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Save ``maps`` under ``name``, replacing any snapshot of that name.

        Returns:
            The snapshot name.
        """
        self._write(name, maps, dict(metadata or {}), utc_now())
        return name

    def has(self, name: str) -> bool:
        return self.exists(name)

    def cleanup(self, max_age_hours: float = DEFAULT_MAX_AGE_HOURS) -> int:
        """Delete snapshots whose file is older than ``max_age_hours``.

        Returns:
            Number of snapshots deleted.
        """
        if not self.directory.is_dir():
            return 0

        cutoff = time.time() - max_age_hours * 3600
        deleted = 0
        with self.locks.lock(self.lock_name):
            for path in sorted(self.directory.glob("*.json")):
                try:
                    if path.stat().st_mtime >= cutoff:
                        continue
                    self._remove(path.stem, path)
                    deleted += 1
                except (OSError, StorageError) as e:
                    logger.warning("Failed to clean up snapshot %s: %s", path.stem, e)
        return deleted


def add_snapshot_arguments(parser: argparse.ArgumentParser) -> None:
    """Add snapshot subcommands to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("project", help="Project root")
    common.add_argument("--compact", action="store_true", help="Output compact JSON")
    common.add_argument("--no-color", action="store_true", help="Disable colored output")
    # Absent unless given, so it does not override a --debug before the command
    common.add_argument("--debug", action="store_true", default=argparse.SUPPRESS, help="Enable debug logging")
    commands = parser.add_subparsers(dest="snapshot_command", metavar="<command>", required=True)

    commands.add_parser("list", help="List snapshots", parents=[common])

    p = commands.add_parser("save", help="Snapshot the current maps", parents=[common])
    p.add_argument("name", help="Snapshot name")

    p = commands.add_parser("load", help="Print a snapshot as JSON", parents=[common])
    p.add_argument("name", help="Snapshot name")

    p = commands.add_parser("has", help="Print true/false; exit 0 if the snapshot exists", parents=[common])
    p.add_argument("name", help="Snapshot name")

    p = commands.add_parser("delete", help="Delete a snapshot", parents=[common])
    p.add_argument("name", help="Snapshot name")

    p = commands.add_parser("cleanup", help="Delete snapshots older than N hours", parents=[common])
    p.add_argument(
        "max_age_hours",
        nargs="?",
        type=float,
        default=DEFAULT_MAX_AGE_HOURS,
        help=f"Maximum age in hours (default: {DEFAULT_MAX_AGE_HOURS})",
    )


def _dump(data: Any, compact: bool) -> None:
    if compact:
        print(json.dumps(data, separators=(",", ":")))
    else:
        print(json.dumps(data, indent=2))


def run_snapshot(args: argparse.Namespace) -> int:
    """Execute a snapshot subcommand.

    Returns:
        Process exit code. ``has`` returns 1 when the snapshot is missing.
    """
    c = get_colors(no_color=args.no_color)
    store = SnapshotStore(args.project)
    command = args.snapshot_command

    try:
        if command == "list":
            entries = store.list()
            if entries:
                print(f"Found {len(entries)} snapshot(s)", file=sys.stderr)
            else:
                print("No snapshots found", file=sys.stderr)
            _dump(entries, args.compact)

        elif command == "save":
            loader = MapLoader(args.project, paths=store.paths)
            if not loader.exists():
                print(c.error(f"Error: no maps found in {store.paths.maps_dir}"), file=sys.stderr)
                return 1
            store.save(loader.load_all(), args.name)
            print(f"{c.success('✓')} Saved snapshot: {args.name}", file=sys.stderr)

        elif command == "load":
            _dump(store.load(args.name), args.compact)

        elif command == "has":
            exists = store.has(args.name)
            print("true" if exists else "false")
            return 0 if exists else 1

        elif command == "delete":
            store.delete(args.name)
            print(f"{c.success('✓')} Deleted snapshot: {args.name}", file=sys.stderr)

        elif command == "cleanup":
            deleted = store.cleanup(args.max_age_hours)
            print(f"Cleaned up {deleted} old snapshot(s)", file=sys.stderr)

    except ProjectMapError as e:
        print(c.error(f"Error: {e}"), file=sys.stderr)
        return 1
    return 0

