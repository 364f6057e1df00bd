#!/usr/bin/env python3
"""Incremental map updates.

Re-derives only the files that changed since the last refresh, then
rebuilds the derived maps (reverse dependencies, modules, tree, summary)
from the patched metadata. Stored imports of unchanged files are reused
and re-resolved against the new file set without being re-read.

Example:
    >>> updater = IncrementalUpdater('/my/project')
    >>> result = updater.update(['src/app.py', 'src/removed.py'])
    >>> result.requires_full, result.updated, result.removed
    (False, ['src/app.py'], ['src/removed.py'])
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .config import ConfigResolver
from .dependencies import DependencyGraph
from .errors import MapNotFoundError
from .generator import MAPS_LOCK, build_maps, save_maps
from .git import GitIntegration
from .loader import MapLoader
from .locks import LockManager
from .paths import MapPaths
from .scanner import FileScanner
from .staleness import StalenessChecker, build_staleness_block

logger = logging.getLogger(__name__)

# Above this share of changed files a full rescan is cheaper
MAX_CHANGE_PERCENT = 30.0


@dataclass
class UpdateResult:
    """Outcome of an incremental update.

    Attributes:
        success: True when the maps were updated.
        requires_full: True when the caller should run a full generation instead.
        message: Human-readable explanation.
        updated: Paths re-scanned that were already in the maps.
        added: Paths newly added to the maps.
        removed: Paths dropped from the maps.
        maps: Names of the maps written.
        duration: Seconds spent.
    """

    success: bool = True
    requires_full: bool = False
    message: str = ""
    updated: List[str] = field(default_factory=list)
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    maps: List[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def files_scanned(self) -> int:
        return len(self.updated) + len(self.added)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["files_scanned"] = self.files_scanned
        return data


class IncrementalUpdater:
    """Patches the stored maps for a list of changed paths.

    Attributes:
        paths: MapPaths of the project.
        config: ConfigResolver deciding which changed paths matter.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        paths: Optional[MapPaths] = None,
        config: Optional[ConfigResolver] = None,
    ):
        self.paths = paths if paths is not None else MapPaths(project_root)
        self.config = config if config is not None else ConfigResolver(self.paths.project_root).load()
        self.loader = MapLoader(self.paths.project_root, paths=self.paths)

    def get_changed_files(self, since: Optional[str]) -> List[str]:
        """Paths changed since commit ``since``, including uncommitted and untracked ones."""
        return GitIntegration(self.paths.project_root).get_changed_files(since)

    def update(self, changed_files: Iterable[str]) -> UpdateResult:
        """Apply changes for ``changed_files`` (paths relative to the project root).

        Stored files that no longer exist on disk are treated as changed
        too, whether or not they appear in ``changed_files``.

        The maps lock is held from reading the stored maps until the
        patched maps are written.

        Returns:
            UpdateResult. ``requires_full`` is set, and nothing is written,
            when the maps hold no files or more than 30% of them changed.

        Raises:
            MapNotFoundError: If the metadata map does not exist.
            LockTimeoutError: If the maps lock cannot be taken.
        """
        start = time.time()
        with LockManager(self.paths.lock_dir).lock(MAPS_LOCK):
            result = self._update_locked(changed_files)
        result.duration = round(time.time() - start, 3)
        return result

    def _update_locked(self, changed_files: Iterable[str]) -> UpdateResult:
        metadata = self.loader.load("metadata")
        try:
            forward = self.loader.load("dependencies-forward").get("dependencies", {})
        except MapNotFoundError:
            forward = {}

        files: Dict[str, Dict[str, Any]] = {f["path"]: f for f in metadata.get("files", [])}
        changed = {
            self.config.relative_path(p)
            for p in changed_files
            if p and (self.config.relative_path(p) in files or self.config.should_include(p))
        }
        # Deleted files git no longer reports, e.g. ones that were never committed
        root = self.paths.project_root
        changed.update(p for p in files if not (root / p).is_file())
        changed = sorted(changed)

        if not files:
            return UpdateResult(
                success=False, requires_full=True, message="Stored maps contain no files, full rescan required"
            )

        percent = len(changed) / len(files) * 100
        if percent > MAX_CHANGE_PERCENT:
            return UpdateResult(
                success=False,
                requires_full=True,
                message=f"Too many changes ({percent:.1f}%), full rescan recommended",
            )

        result = UpdateResult()
        scanner = FileScanner(self.paths.project_root, config=self.config)
        for rel_path in changed:
            try:
                record = scanner.scan_single_file(rel_path)
            except FileNotFoundError:
                record = None
            except OSError as e:
                logger.warning("Skipping %s: %s", rel_path, e)
                continue

            if record is None:
                if files.pop(rel_path, None) is not None:
                    result.removed.append(rel_path)
            elif rel_path in files:
                files[rel_path] = record.to_map_entry()
                result.updated.append(rel_path)
            else:
                files[rel_path] = record.to_map_entry()
                result.added.append(rel_path)

        graph = DependencyGraph.from_forward_map(self.paths.project_root, files.keys(), forward)
        for rel_path in result.updated + result.added:
            graph.update_file(rel_path)
        graph.resolve_all()

        current = StalenessChecker().get_current_state(self.paths.project_root)
        staleness = build_staleness_block(current["git_hash"], current["file_count"])
        maps = build_maps(self.paths, list(files.values()), graph, staleness)
        result.maps = save_maps(self.paths, maps, self.config)

        result.message = (
            f"Updated {len(result.updated)}, added {len(result.added)}, removed {len(result.removed)} files"
        )
        logger.debug(result.message)
        return result
