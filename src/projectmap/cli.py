#!/usr/bin/env python3
"""Unified CLI for projectmap.

This module provides a single entry point `projectmap` with subcommands for
the whole map lifecycle:
    - projectmap scan: Scan a project and print file metadata
    - projectmap generate: Write a fresh generation of the maps
    - projectmap refresh: Refresh the maps (full or incremental)
    - projectmap staleness: Score how outdated the maps are
    - projectmap diff: Compare two map directories
    - projectmap history: Manage timestamped map history
    - projectmap snapshot: Manage named map snapshots
    - projectmap list: List the stored maps with their sizes
    - projectmap stats: Show project statistics from the summary map
    - projectmap deps: Show what a file imports and what imports it

The refresh, history and snapshot tools are also installed as standalone
scripts: projectmap-refresh, projectmap-history and projectmap-snapshot.

Example:
    $ projectmap generate /path/to/project
    $ projectmap staleness /path/to/project
    $ projectmap refresh --project /path/to/project --history --keep 10
    $ projectmap history compare . 20250108-143022 20250108-150045
    $ projectmap deps src/app.py --project /path/to/project
    $ projectmap-snapshot has . pre-refresh
"""

import argparse
import logging
import sys

from . import __version__
from .differ import add_diff_arguments, run_diff
from .generator import add_generate_arguments, run_generate
from .history import add_history_arguments, run_history
from .loader import (
    add_deps_arguments,
    add_list_arguments,
    add_stats_arguments,
    run_deps,
    run_list,
    run_stats,
)
from .refresh import add_refresh_arguments, run_refresh
from .scanner import add_scan_arguments, run_scan
from .snapshot import add_snapshot_arguments, run_snapshot
from .staleness import add_staleness_arguments, run_staleness

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(debug: bool = False) -> None:
    """Send library log records to stderr; DEBUG with --debug, else WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        stream=sys.stderr,
        format=LOG_FORMAT,
    )


def _add_debug_argument(parser: argparse.ArgumentParser, subcommand: bool = False) -> None:
    # On a subcommand the flag is absent unless given, keeping a --debug placed before it
    default = argparse.SUPPRESS if subcommand else False
    parser.add_argument("--debug", action="store_true", default=default, help="Enable debug logging")


def main():
    """Unified command-line interface for projectmap.

    Usage:
        projectmap scan [PATH] [--quick] [--role ROLE] [--type TYPE]
        projectmap generate [PATH]
        projectmap refresh [--full | --incremental] [--project PATH] [--history] [--keep N]
        projectmap staleness [PATH] [--map FILE]
        projectmap diff OLD_DIR NEW_DIR [--type TYPE] [-v] [--json]
        projectmap history <list|save|load|compare|prune|delete|stats> PROJECT [ARGS...]
        projectmap snapshot <list|save|load|has|delete|cleanup> PROJECT [ARGS...]
        projectmap list [PATH]
        projectmap stats [PATH]
        projectmap deps FILE [--project PATH]

    --debug is accepted before or after the command.
    """
    parser = argparse.ArgumentParser(
        prog="projectmap",
        description="Generate, refresh and compare structural maps of a project",
        epilog="Run 'projectmap <command> --help' for more information on a command.",
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    _add_debug_argument(parser)

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    # projectmap scan
    scan_parser = subparsers.add_parser(
        "scan",
        help="Scan a project and print file metadata",
        description="Walk a project tree and print a JSON scan result.",
        epilog="Example: projectmap scan /my/project --role test",
    )
    add_scan_arguments(scan_parser)

    # projectmap generate
    generate_parser = subparsers.add_parser(
        "generate",
        help="Generate the project maps",
        description="Scan a project and write every map to its maps directory.",
        epilog="Example: projectmap generate /my/project",
    )
    add_generate_arguments(generate_parser)

    # projectmap refresh
    refresh_parser = subparsers.add_parser(
        "refresh",
        help="Refresh the project maps",
        description="Refresh the maps, choosing full or incremental mode from their staleness.",
        epilog="Example: projectmap refresh --incremental --project /my/project",
    )
    add_refresh_arguments(refresh_parser)

    # projectmap staleness
    staleness_parser = subparsers.add_parser(
        "staleness",
        help="Score how outdated the maps are",
        description="Compare the stored maps with the live repository state.",
        epilog="Example: projectmap staleness /my/project",
    )
    add_staleness_arguments(staleness_parser)

    # projectmap diff
    diff_parser = subparsers.add_parser(
        "diff",
        help="Compare two map directories",
        description="Diff the files, dependencies, components and modules of two map generations.",
        epilog="Example: projectmap diff old-maps/ .projectmap/ --type files --verbose",
    )
    add_diff_arguments(diff_parser)

    # projectmap history
    history_parser = subparsers.add_parser(
        "history",
        help="Manage map history",
        description="List, save, load, compare, prune and delete timestamped map history.",
        epilog="Example: projectmap history prune . 5",
    )
    add_history_arguments(history_parser)

    # projectmap snapshot
    snapshot_parser = subparsers.add_parser(
        "snapshot",
        help="Manage named map snapshots",
        description="List, save, load, check, delete and clean up named snapshots.",
        epilog="Example: projectmap snapshot has . pre-refresh",
    )
    add_snapshot_arguments(snapshot_parser)

    # projectmap list
    list_parser = subparsers.add_parser(
        "list",
        help="List the stored maps",
        description="List every stored map with its size on disk and compression method.",
        epilog="Example: projectmap list /my/project",
    )
    add_list_arguments(list_parser)

    # projectmap stats
    stats_parser = subparsers.add_parser(
        "stats",
        help="Show project statistics",
        description="Show the summary statistics of the maps and their total size.",
        epilog="Example: projectmap stats /my/project",
    )
    add_stats_arguments(stats_parser)

    # projectmap deps
    deps_parser = subparsers.add_parser(
        "deps",
        help="Show a file's imports and importers",
        description="Show what a file imports and which project files import it.",
        epilog="Example: projectmap deps src/util.py --project /my/project",
    )
    add_deps_arguments(deps_parser)

    for command_parser in subparsers.choices.values():
        _add_debug_argument(command_parser, subcommand=True)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    configure_logging(args.debug)

    commands = {
        "scan": run_scan,
        "generate": run_generate,
        "refresh": run_refresh,
        "staleness": run_staleness,
        "diff": run_diff,
        "history": run_history,
        "snapshot": run_snapshot,
        "list": run_list,
        "stats": run_stats,
        "deps": run_deps,
    }
    sys.exit(commands[args.command](args))


def _standalone(prog: str, description: str, add_arguments, run) -> None:
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    _add_debug_argument(parser)
    add_arguments(parser)
    args = parser.parse_args()
    configure_logging(args.debug)
    sys.exit(run(args))


def refresh_main():
    """Entry point for ``projectmap-refresh``."""
    _standalone(
        "projectmap-refresh",
        "Refresh project maps (full or incremental).",
        add_refresh_arguments,
        run_refresh,
    )


def history_main():
    """Entry point for ``projectmap-history``."""
    _standalone("projectmap-history", "Manage timestamped map history.", add_history_arguments, run_history)


def snapshot_main():
    """Entry point for ``projectmap-snapshot``."""
    _standalone("projectmap-snapshot", "Manage named map snapshots.", add_snapshot_arguments, run_snapshot)


if __name__ == "__main__":
    main()
