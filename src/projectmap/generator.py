#!/usr/bin/env python3
"""Full map generation.

Runs a complete scan and writes the current generation of every map into
the project's maps directory:

    summary                project info, statistics and the staleness block
    tree                   nested directory tree
    metadata               one entry per file, sorted by path
    dependencies-forward   imports per file
    dependencies-reverse   importers per file
    modules                files grouped into modules with their dependencies

Example:
    >>> result = MapGenerator('/my/project').generate()
    >>> result.maps
    ['summary', 'tree', 'metadata', 'dependencies-forward', 'dependencies-reverse', 'modules']
"""

import argparse
import json
import logging
import sys
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .colors import get_colors
from .compression import minify, save_map
from .config import ConfigResolver
from .dependencies import DependencyGraph
from .errors import ProjectMapError
from .locks import LockManager
from .paths import MapPaths
from .scanner import FileScanner
from .staleness import StalenessChecker, build_staleness_block

logger = logging.getLogger(__name__)

MAPS_LOCK = "maps"
MAP_NAMES = [
    "summary",
    "tree",
    "metadata",
    "dependencies-forward",
    "dependencies-reverse",
    "modules",
]
PRIMARY_LANGUAGE_COUNT = 3


@dataclass
class GenerationResult:
    """Outcome of a full generation."""

    maps: List[str] = field(default_factory=list)
    file_count: int = 0
    duration: float = 0.0
    maps_dir: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_tree(paths: List[str]) -> Dict[str, Any]:
    """Nest relative paths; files of a directory are listed under ``_files``."""
    tree: Dict[str, Any] = {}
    for path in sorted(paths):
        parts = path.split("/")
        current = tree
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current.setdefault("_files", []).append(parts[-1])
    return tree


def build_statistics(files: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_type = Counter(f["type"] for f in files)
    by_role = Counter(f["role"] for f in files)
    return {
        "total_files": len(files),
        "total_size": sum(f.get("size", 0) for f in files),
        "total_lines": sum(f.get("lines", 0) for f in files),
        "files_by_type": dict(sorted(by_type.items())),
        "files_by_role": dict(sorted(by_role.items())),
        "primary_languages": [
            {"language": language, "files": count}
            for language, count in sorted(by_type.items(), key=lambda item: (-item[1], item[0]))[
                :PRIMARY_LANGUAGE_COUNT
            ]
        ],
    }


def build_maps(
    paths: MapPaths,
    files: List[Dict[str, Any]],
    graph: DependencyGraph,
    staleness: Dict[str, Any],
) -> Dict[str, Any]:
    """Assemble every map from metadata entries and a resolved graph.

    Shared by full generation and incremental updates so both produce the
    same shapes.
    """
    files = sorted(files, key=lambda f: f["path"])
    now = datetime.now(timezone.utc).isoformat()
    return {
        "summary": {
            "project": {
                "name": paths.project_root.name,
                "root": str(paths.project_root),
                "hash": paths.project_hash,
            },
            "generated_at": now,
            "statistics": build_statistics(files),
            "staleness": staleness,
        },
        "tree": {"root": paths.project_root.name, "tree": build_tree([f["path"] for f in files])},
        "metadata": {"files": files},
        "dependencies-forward": {"dependencies": graph.forward_map()},
        "dependencies-reverse": {"dependencies": graph.reverse_map()},
        "modules": {"modules": graph.modules_map(files)},
    }


def save_maps(paths: MapPaths, maps: Dict[str, Any], config: Optional[ConfigResolver] = None) -> List[str]:
    """Write each map atomically. The caller must hold the maps lock.

    Returns:
        Names of the written maps, in write order.

    Raises:
        StorageError: If a map cannot be written.
    """
    paths.ensure_directories()
    written = []
    for name, data in maps.items():
        level = config.get_compression_level(len(minify(data).encode("utf-8"))) if config else None
        save_map(paths.map_path(name), data, level)
        written.append(name)
    logger.debug("Wrote %d maps to %s", len(written), paths.maps_dir)
    return written


def write_maps(paths: MapPaths, maps: Dict[str, Any], config: Optional[ConfigResolver] = None) -> List[str]:
    """Take the maps lock and save_maps.

    Raises:
        LockTimeoutError: If another process holds the maps lock too long.
        StorageError: If a map cannot be written.
    """
    with LockManager(paths.lock_dir).lock(MAPS_LOCK):
        return save_maps(paths, maps, config)


class MapGenerator:
    """Scans a project and writes a fresh generation of its maps.

    Attributes:
        paths: MapPaths of the project.
        config: ConfigResolver shared with the scanner.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        paths: Optional[MapPaths] = None,
        config: Optional[ConfigResolver] = None,
    ):
        self.paths = paths if paths is not None else MapPaths(project_root)
        self.config = config if config is not None else ConfigResolver(self.paths.project_root).load()
        self.scanner = FileScanner(self.paths.project_root, config=self.config)

    def build(self) -> Dict[str, Any]:
        """Scan and assemble the maps without writing them."""
        result = self.scanner.scan()
        files = [record.to_map_entry() for record in result.files]
        graph = DependencyGraph(self.paths.project_root).build(f["path"] for f in files)
        current = StalenessChecker().get_current_state(self.paths.project_root)
        staleness = build_staleness_block(current["git_hash"], current["file_count"])
        return build_maps(self.paths, files, graph, staleness)

    def generate(self) -> GenerationResult:
        """Scan, assemble and write every map."""
        start = time.time()
        maps = self.build()
        written = write_maps(self.paths, maps, self.config)
        return GenerationResult(
            maps=written,
            file_count=len(maps["metadata"]["files"]),
            duration=round(time.time() - start, 3),
            maps_dir=str(self.paths.maps_dir),
        )


def add_generate_arguments(parser: argparse.ArgumentParser) -> None:
    """Add generate command arguments to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    parser.add_argument("--compact", action="store_true", help="Output compact JSON")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")


def run_generate(args: argparse.Namespace) -> int:
    """Execute the generate command.

    Returns:
        Process exit code.
    """
    c = get_colors(no_color=args.no_color)
    root = Path(args.path)
    if not root.is_dir():
        print(c.error(f"Error: not a directory: {root}"), file=sys.stderr)
        return 1

    try:
        result = MapGenerator(root).generate()
    except ProjectMapError as e:
        print(c.error(f"Error: {e}"), file=sys.stderr)
        return 1

    print(
        f"{c.success('✓')} Generated {len(result.maps)} maps for {result.file_count} files "
        f"in {result.duration:.2f}s",
        file=sys.stderr,
    )
    print(f"  Location: {c.path(result.maps_dir)}", file=sys.stderr)

    if args.compact:
        print(json.dumps(result.to_dict(), separators=(",", ":")))
    else:
        print(json.dumps(result.to_dict(), indent=2))
    return 0
