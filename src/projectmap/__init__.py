"""projectmap - Versioned structural maps of a source tree.

Scans a project, writes a set of JSON "maps" describing its files,
dependencies and modules, and keeps them current: staleness scoring,
incremental refresh of changed files, named snapshots, timestamped history
and deterministic diffs between generations.

Components:
    - ConfigResolver: .projectmaprc loading and include/exclude/role rules
    - FileScanner: Tree walk producing FileRecords and aggregate stats
    - LockManager: mkdir-based cross-process locks
    - SnapshotStore / HistoryStore: Persisted map bundles
    - MapDiffer / DiffFormatter: Structured diffs and anomaly warnings
    - StalenessChecker: 0-100 score of how outdated stored maps are
    - MapGenerator / IncrementalUpdater / RefreshRunner: Map lifecycle

Quick Start:
    >>> from projectmap import MapGenerator, RefreshRunner
    >>> MapGenerator('/my/project').generate()
    >>> RefreshRunner('/my/project').run('auto')
"""

import hashlib
import os
from pathlib import Path
from typing import Union

__version__ = "1.0.0"
__license__ = "MIT"


def compute_project_hash(project_path: Union[str, Path]) -> str:
    """Derive a stable short identifier from a project's absolute path.

    The path is resolved and normalized first, so ``/a/b/../c`` and
    ``/a/c`` share one hash.

    Args:
        project_path: Project root directory.

    Returns:
        A 16-character MD5 hex digest.

    Example:
        >>> compute_project_hash('/my/project') == compute_project_hash('/my/./project')
        True
    """
    normalized = os.path.normcase(str(Path(project_path).resolve()))
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()[:16]


# Imported after compute_project_hash: paths.py depends on it.
from .config import ConfigResolver  # noqa: E402
from .differ import MapDiffer  # noqa: E402
from .diff_formatter import DiffFormatter, detect_anomalies  # noqa: E402
from .errors import (  # noqa: E402
    InvalidFormatError,
    LockTimeoutError,
    MapNotFoundError,
    ProjectMapError,
    StorageError,
)
from .generator import MapGenerator  # noqa: E402
from .history import HistoryStore  # noqa: E402
from .loader import MapLoader  # noqa: E402
from .locks import LockManager  # noqa: E402
from .paths import MapPaths  # noqa: E402
from .refresh import RefreshRunner  # noqa: E402
from .scanner import FileRecord, FileScanner, ScanResult, ScanStats  # noqa: E402
from .snapshot import SnapshotStore  # noqa: E402
from .staleness import StalenessChecker, StalenessResult  # noqa: E402
from .updater import IncrementalUpdater  # noqa: E402

__all__ = [
    "compute_project_hash",
    "ConfigResolver",
    "DiffFormatter",
    "FileRecord",
    "FileScanner",
    "HistoryStore",
    "IncrementalUpdater",
    "InvalidFormatError",
    "LockManager",
    "LockTimeoutError",
    "MapDiffer",
    "MapGenerator",
    "MapLoader",
    "MapNotFoundError",
    "MapPaths",
    "ProjectMapError",
    "RefreshRunner",
    "ScanResult",
    "ScanStats",
    "SnapshotStore",
    "StalenessChecker",
    "StalenessResult",
    "StorageError",
    "detect_anomalies",
    "__version__",
]
