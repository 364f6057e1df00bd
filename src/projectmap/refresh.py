#!/usr/bin/env python3
"""Refresh orchestration: choose full or incremental regeneration and report the diff.

The refresh flow:

    1. Require existing maps (MapNotFoundError otherwise).
    2. In auto mode, pick full when staleness is critical, else incremental.
    3. Snapshot the current maps as ``pre-refresh``.
    4. Regenerate (incremental falls back to full when it cannot proceed).
    5. Diff the snapshot against the new maps, then delete the snapshot.
    6. Optionally record a history entry and prune old ones.

Example:
    $ projectmap refresh --project /my/project
    $ projectmap-refresh --full --history --keep 20
"""

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .colors import get_colors
from .config import ConfigResolver
from .diff_formatter import DiffFormatter, detect_anomalies
from .differ import MapDiffer
from .errors import MapNotFoundError, ProjectMapError
from .generator import MapGenerator
from .git import GitIntegration
from .history import HistoryStore
from .loader import MapLoader
from .paths import MapPaths
from .snapshot import SnapshotStore
from .staleness import CRITICAL_THRESHOLD, NO_GIT
from .updater import IncrementalUpdater

logger = logging.getLogger(__name__)

MODES = ("auto", "full", "incremental")
PRE_REFRESH_SNAPSHOT = "pre-refresh"


@dataclass
class RefreshResult:
    """Outcome of one refresh.

    Attributes:
        mode: Mode actually performed, ``full`` or ``incremental``.
        requested_mode: Mode asked for, including ``auto``.
        fell_back: True when an incremental refresh became a full one.
        reason: Why that mode was chosen or fallen back to.
        files_scanned: Files scanned by the refresh.
        maps: Map names written.
        diff_summary: One-line summary of the changes.
        diff: Full diff report, when one could be computed.
        anomalies: Warnings raised by anomaly detection on the diff.
        history_id: Id of the history entry saved, if any.
        pruned: History entries removed by pruning.
        staleness_before: Staleness score before refreshing.
        staleness_after: Staleness score after refreshing.
        duration: Seconds spent.
    """

    mode: str
    requested_mode: str
    fell_back: bool = False
    reason: str = ""
    files_scanned: int = 0
    maps: List[str] = field(default_factory=list)
    diff_summary: str = ""
    diff: Optional[Dict[str, Any]] = None
    anomalies: List[str] = field(default_factory=list)
    history_id: Optional[str] = None
    pruned: int = 0
    staleness_before: Optional[int] = None
    staleness_after: Optional[int] = None
    duration: float = 0.0

    def to_dict(self, include_diff: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        if not include_diff:
            data.pop("diff")
        return data


class RefreshRunner:
    """Refreshes the maps of one project.

    Attributes:
        paths: MapPaths of the project.
        save_history: Record a history entry after refreshing.
        keep: Prune history to this many entries after saving (None keeps all).
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        paths: Optional[MapPaths] = None,
        config: Optional[ConfigResolver] = None,
        save_history: bool = False,
        keep: Optional[int] = None,
    ):
        self.paths = paths if paths is not None else MapPaths(project_root)
        self.config = config if config is not None else ConfigResolver(self.paths.project_root).load()
        self.save_history = save_history
        self.keep = keep
        self.loader = MapLoader(self.paths.project_root, paths=self.paths)
        self.snapshots = SnapshotStore(self.paths.project_root, paths=self.paths, config=self.config)

    def determine_mode(self, mode: str, staleness_score: Optional[int]) -> str:
        if mode != "auto":
            return mode
        if staleness_score is None or staleness_score >= CRITICAL_THRESHOLD:
            return "full"
        return "incremental"

    def run(self, mode: str = "auto") -> RefreshResult:
        """Refresh the maps.

        Args:
            mode: ``auto``, ``full`` or ``incremental``.

        Raises:
            ValueError: For an unknown mode.
            MapNotFoundError: If no maps have been generated yet.
            LockTimeoutError: If the maps lock is held elsewhere.
            StorageError: If the maps cannot be written.
        """
        if mode not in MODES:
            raise ValueError(f"Unknown refresh mode: {mode}")
        if not self.loader.exists():
            raise MapNotFoundError(str(self.paths.maps_dir), "Project maps")

        start = time.time()
        before = self.loader.get_staleness()
        chosen = self.determine_mode(mode, before.score if before else None)
        result = RefreshResult(
            mode=chosen,
            requested_mode=mode,
            staleness_before=before.score if before else None,
            reason="requested" if mode != "auto" else f"staleness {before.score if before else 'unknown'}/100",
        )

        old_maps = self.loader.load_all()
        try:
            self.snapshots.save(old_maps, PRE_REFRESH_SNAPSHOT, {"reason": "pre-refresh"})
        except ProjectMapError as e:
            logger.warning("Could not save pre-refresh snapshot: %s", e)

        if chosen == "incremental":
            fallback = self._incremental(old_maps, result)
            if fallback:
                logger.info("Falling back to full refresh: %s", fallback)
                result.mode = "full"
                result.fell_back = True
                result.reason = fallback
        if result.mode == "full":
            generation = MapGenerator(self.paths.project_root, paths=self.paths, config=self.config).generate()
            result.files_scanned = generation.file_count
            result.maps = generation.maps

        new_maps = self.loader.load_all()
        report = MapDiffer.generate_full_diff(old_maps, new_maps)
        result.diff = report
        result.diff_summary = DiffFormatter().format_summary(report)
        result.anomalies = detect_anomalies(report)["warnings"]
        self.snapshots.delete(PRE_REFRESH_SNAPSHOT)

        if self.save_history:
            history = HistoryStore(self.paths.project_root, paths=self.paths, config=self.config)
            result.history_id = history.save(new_maps, {"reason": f"refresh-{result.mode}"})
            if self.keep is not None:
                result.pruned = history.prune(self.keep)

        after = self.loader.get_staleness()
        result.staleness_after = after.score if after else None
        result.duration = round(time.time() - start, 3)
        return result

    def _incremental(self, old_maps: Dict[str, Any], result: RefreshResult) -> Optional[str]:
        """Try an incremental update.

        Returns:
            None on success, otherwise the reason a full refresh is needed.
        """
        stored_hash = (old_maps.get("summary") or {}).get("staleness", {}).get("git_hash")
        if not stored_hash or stored_hash == NO_GIT:
            return "no git history recorded in the maps"
        git = GitIntegration(self.paths.project_root)
        if not git.has_commit(stored_hash):
            return f"stored commit {stored_hash} not found"

        updater = IncrementalUpdater(self.paths.project_root, paths=self.paths, config=self.config)
        update = updater.update(updater.get_changed_files(stored_hash))
        if update.requires_full:
            return update.message
        result.files_scanned = update.files_scanned
        result.maps = update.maps
        return None


def add_refresh_arguments(parser: argparse.ArgumentParser) -> None:
    """Add refresh command arguments to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--full", action="store_const", const="full", dest="mode", help="Force a full rescan")
    mode.add_argument(
        "--incremental",
        action="store_const",
        const="incremental",
        dest="mode",
        help="Only rescan changed files (falls back to full when needed)",
    )
    parser.set_defaults(mode="auto")
    parser.add_argument("--project", default=".", help="Project root (default: .)")
    parser.add_argument("--history", action="store_true", help="Save the refreshed maps to history")
    parser.add_argument("--keep", type=int, help="After saving to history, keep only the N newest entries")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print the detailed diff")
    parser.add_argument("--compact", action="store_true", help="Output compact JSON")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")


def run_refresh(args: argparse.Namespace) -> int:
    """Execute the refresh command.

    Returns:
        0 on success, 1 on failure or when no maps exist yet.
    """
    c = get_colors(no_color=args.no_color)
    runner = RefreshRunner(args.project, save_history=args.history or args.keep is not None, keep=args.keep)

    try:
        result = runner.run(args.mode)
    except MapNotFoundError:
        print(c.error("No project maps found"), file=sys.stderr)
        print(f"Generate maps first with: projectmap generate {args.project}", file=sys.stderr)
        return 1
    except ProjectMapError as e:
        print(c.error(f"Refresh failed: {e}"), file=sys.stderr)
        return 1

    label = f"{result.mode.capitalize()} refresh"
    if result.fell_back:
        label += f" (fallback: {result.reason})"
    print(f"{c.success('✓')} {label}: {result.files_scanned} files in {result.duration:.2f}s", file=sys.stderr)
    if args.verbose and result.diff:
        print(DiffFormatter(colors=c).format_verbose(result.diff), file=sys.stderr)
    else:
        print(result.diff_summary, file=sys.stderr)
    for warning in result.anomalies:
        print(c.warning(f"!  {warning}"), file=sys.stderr)
    if result.history_id:
        print(f"Saved history entry: {result.history_id}", file=sys.stderr)
    if result.staleness_after is not None:
        print(f"Staleness: {result.staleness_after}/100", file=sys.stderr)

    if args.compact:
        print(json.dumps(result.to_dict(), separators=(",", ":")))
    else:
        print(json.dumps(result.to_dict(), indent=2))
    return 0
