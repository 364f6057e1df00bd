#!/usr/bin/env python3
"""Loading of the current map generation, with staleness checking.

Also provides the read-only inspection commands: ``projectmap list``,
``projectmap stats`` and ``projectmap deps``.

Example:
    >>> loader = MapLoader('/my/project')
    >>> if loader.exists():
    ...     summary = loader.load('summary', check_staleness=True)
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .colors import get_colors
from .compression import load_map
from .errors import InvalidFormatError, MapNotFoundError, ProjectMapError, StorageError
from .generator import MAP_NAMES
from .paths import MapPaths
from .staleness import CRITICAL_THRESHOLD, MODERATE_THRESHOLD, StalenessChecker, StalenessResult

logger = logging.getLogger(__name__)

# Maps grouped by how much of the project they describe, smallest first
TIERS = {
    1: ["summary"],
    2: ["tree", "modules"],
    3: ["metadata", "dependencies-forward", "dependencies-reverse"],
}


class MapLoader:
    """Reads maps from a project's maps directory.

    Attributes:
        paths: MapPaths of the project.
        warn_threshold: Staleness score that triggers a warning on load.
        critical_threshold: Staleness score that triggers an error-level message.
        staleness: Result of the most recent staleness check, if any.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        paths: Optional[MapPaths] = None,
        warn_threshold: int = MODERATE_THRESHOLD,
        critical_threshold: int = CRITICAL_THRESHOLD,
    ):
        self.paths = paths if paths is not None else MapPaths(project_root)
        self.warn_threshold = warn_threshold
        self.critical_threshold = critical_threshold
        self.checker = StalenessChecker()
        self.staleness: Optional[StalenessResult] = None

    @property
    def project_hash(self) -> str:
        return self.paths.project_hash

    @property
    def maps_dir(self) -> Path:
        return self.paths.maps_dir

    def exists(self) -> bool:
        """True when a summary map has been generated for this project."""
        return self.paths.map_path("summary").is_file()

    def available_maps(self) -> List[str]:
        if not self.paths.maps_dir.is_dir():
            return []
        return sorted(p.stem for p in self.paths.maps_dir.glob("*.json"))

    def load(self, name: str, check_staleness: bool = False) -> Dict[str, Any]:
        """Load one map by name.

        Args:
            name: Map name, with or without ``.json``.
            check_staleness: Score the project against the summary map and
                log a warning (or an error for critical staleness) first.

        Raises:
            MapNotFoundError: If the map file does not exist.
            InvalidFormatError: If it cannot be parsed.
            StorageError: On other read failures.
        """
        if name.endswith(".json"):
            name = name[: -len(".json")]
        path = self.paths.map_path(name)
        if not path.is_file():
            raise MapNotFoundError(str(path))

        if check_staleness and name != "summary":
            self.get_staleness()
        try:
            data = load_map(path)
        except FileNotFoundError as e:
            raise MapNotFoundError(str(path)) from e
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError("load map", name, e) from e

        if check_staleness and name == "summary":
            self._report(self.checker.check_staleness(self.paths.project_root, data))
        return data

    def load_many(self, names: List[str]) -> Dict[str, Any]:
        """Load several maps, skipping missing ones."""
        maps = {}
        for name in names:
            try:
                maps[name] = self.load(name)
            except MapNotFoundError:
                logger.debug("Map %s not present, skipping", name)
        return maps

    def load_all(self) -> Dict[str, Any]:
        """Load every known map plus any extra map files in the directory."""
        names = list(MAP_NAMES) + [n for n in self.available_maps() if n not in MAP_NAMES]
        return self.load_many(names)

    def load_tier(self, tier: int) -> Dict[str, Any]:
        """Load the maps of one tier (see TIERS), skipping missing ones.

        Raises:
            ValueError: If ``tier`` is not 1, 2 or 3.
        """
        if tier not in TIERS:
            raise ValueError(f"Invalid tier: {tier}. Must be one of {sorted(TIERS)}")
        return self.load_many(TIERS[tier])

    def describe(self, name: str) -> Dict[str, Any]:
        """Size and compression details of one stored map, read from its envelope.

        Returns:
            ``{name, size, compressed, level, method, original_size}``; sizes in bytes.

        Raises:
            MapNotFoundError: If the map file does not exist.
            InvalidFormatError: If it is not valid JSON.
            StorageError: On other read failures.
        """
        path = self.paths.map_path(name)
        try:
            size = path.stat().st_size
            envelope = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise MapNotFoundError(str(path)) from e
        except json.JSONDecodeError as e:
            raise InvalidFormatError(str(path), f"invalid JSON: {e}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError("read map", name, e) from e

        info = {
            "name": name,
            "size": size,
            "compressed": False,
            "level": 0,
            "method": None,
            "original_size": size,
        }
        if isinstance(envelope, dict) and envelope.get("compressed"):
            meta = envelope.get("metadata") or {}
            info["compressed"] = True
            info["level"] = envelope.get("level", 0)
            info["method"] = meta.get("method")
            info["original_size"] = meta.get("original_size", size)
        return info

    def dependencies_of(self, file_path: str) -> Dict[str, Any]:
        """What ``file_path`` imports and which project files import it.

        Args:
            file_path: Path relative to the project root, or absolute.

        Raises:
            MapNotFoundError: If the metadata or a dependency map is missing.
        """
        candidate = Path(file_path)
        if candidate.is_absolute():
            try:
                candidate = candidate.resolve().relative_to(self.paths.project_root)
            except ValueError:
                pass
        rel_path = candidate.as_posix()

        forward = self.load("dependencies-forward").get("dependencies", {})
        reverse = self.load("dependencies-reverse").get("dependencies", {})
        files = self.load("metadata").get("files", [])
        return {
            "file": rel_path,
            "known": any(f.get("path") == rel_path for f in files),
            "imports": forward.get(rel_path, {}).get("imports", []),
            "imported_by": reverse.get(rel_path, {}).get("imported_by", []),
        }

    def get_staleness(self) -> Optional[StalenessResult]:
        """Score the stored summary map against the live project.

        Returns:
            The result, or None when no readable summary map exists.
        """
        try:
            summary = self.load("summary")
        except (MapNotFoundError, InvalidFormatError, StorageError) as e:
            logger.debug("Cannot check staleness: %s", e)
            return None
        self._report(self.checker.check_staleness(self.paths.project_root, summary))
        return self.staleness

    def _report(self, result: StalenessResult) -> None:
        self.staleness = result
        if result.score >= self.critical_threshold:
            logger.error(
                "Maps are critically stale (%d/100): %s. %s",
                result.score,
                "; ".join(result.reasons),
                result.recommendation,
            )
        elif result.score >= self.warn_threshold:
            logger.warning(
                "Maps may be outdated (%d/100): %s. %s",
                result.score,
                "; ".join(result.reasons),
                result.recommendation,
            )


def _print_json(data: Any, compact: bool) -> None:
    if compact:
        print(json.dumps(data, separators=(",", ":")))
    else:
        print(json.dumps(data, indent=2))


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    return f"{size / 1024:.1f} KB"


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--compact", action="store_true", help="Output compact JSON")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")


def add_list_arguments(parser: argparse.ArgumentParser) -> None:
    """Add list command arguments to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    _add_common_arguments(parser)


def run_list(args: argparse.Namespace) -> int:
    """Execute the list command: every stored map with its size and compression.

    Returns:
        0 on success, 1 when the project has no maps.
    """
    c = get_colors(no_color=args.no_color)
    loader = MapLoader(args.path)
    names = loader.available_maps()
    if not names:
        print(c.error(f"Error: no maps found in {loader.maps_dir}"), file=sys.stderr)
        return 1

    try:
        entries = [loader.describe(name) for name in names]
    except ProjectMapError as e:
        print(c.error(f"Error: {e}"), file=sys.stderr)
        return 1

    print(f"{c.heading('Maps')} in {c.path(str(loader.maps_dir))}:", file=sys.stderr)
    for entry in entries:
        method = entry["method"] or "uncompressed"
        print(f"  {entry['name']:<22} {_format_size(entry['size']):>10}  {method}", file=sys.stderr)
    _print_json(entries, args.compact)
    return 0


def add_stats_arguments(parser: argparse.ArgumentParser) -> None:
    """Add stats command arguments to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    _add_common_arguments(parser)


def run_stats(args: argparse.Namespace) -> int:
    """Execute the stats command: project statistics and on-disk map totals.

    Returns:
        0 on success, 1 when the summary map is missing or unreadable.
    """
    c = get_colors(no_color=args.no_color)
    loader = MapLoader(args.path)
    try:
        summary = loader.load("summary")
        entries = [loader.describe(name) for name in loader.available_maps()]
    except MapNotFoundError:
        print(c.error(f"Error: no maps found in {loader.maps_dir}"), file=sys.stderr)
        return 1
    except ProjectMapError as e:
        print(c.error(f"Error: {e}"), file=sys.stderr)
        return 1

    statistics = summary.get("statistics", {})
    total_size = sum(e["size"] for e in entries)
    original_size = sum(e["original_size"] for e in entries)
    ratio = (original_size - total_size) / original_size * 100 if original_size else 0.0
    stats = {
        "project": summary.get("project", {}),
        "generated_at": summary.get("generated_at"),
        "statistics": statistics,
        "maps": {
            "count": len(entries),
            "total_size": total_size,
            "original_size": original_size,
            "ratio": f"{ratio:.1f}%",
        },
    }

    print(
        f"{c.heading('Files')}: {c.count(statistics.get('total_files', 0))}, "
        f"lines: {c.count(statistics.get('total_lines', 0))}",
        file=sys.stderr,
    )
    for language in statistics.get("primary_languages", []):
        print(f"  {language['language']}: {language['files']}", file=sys.stderr)
    print(f"  Maps: {len(entries)} using {_format_size(total_size)} ({ratio:.1f}% saved)", file=sys.stderr)
    _print_json(stats, args.compact)
    return 0


def add_deps_arguments(parser: argparse.ArgumentParser) -> None:
    """Add deps command arguments to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    parser.add_argument("file", help="File to inspect, relative to the project root")
    parser.add_argument("--project", default=".", help="Project root (default: .)")
    _add_common_arguments(parser)


def run_deps(args: argparse.Namespace) -> int:
    """Execute the deps command: a file's imports and importers.

    Returns:
        0 on success, 1 when maps are missing or the file is not in them.
    """
    c = get_colors(no_color=args.no_color)
    loader = MapLoader(args.project)
    try:
        result = loader.dependencies_of(args.file)
    except MapNotFoundError:
        print(c.error(f"Error: no maps found in {loader.maps_dir}"), file=sys.stderr)
        return 1
    except ProjectMapError as e:
        print(c.error(f"Error: {e}"), file=sys.stderr)
        return 1

    if not result["known"]:
        print(c.error(f"Error: {result['file']} is not in the maps"), file=sys.stderr)
        return 1

    print(f"{c.path(result['file'])}", file=sys.stderr)
    print(f"  Imports ({c.count(len(result['imports']))}):", file=sys.stderr)
    for imp in result["imports"]:
        target = imp.get("resolved") or imp["source"]
        print(f"    {c.added('->')} {target}", file=sys.stderr)
    print(f"  Imported by ({c.count(len(result['imported_by']))}):", file=sys.stderr)
    for importer in result["imported_by"]:
        print(f"    {c.modified('<-')} {importer['file']}", file=sys.stderr)
    _print_json(result, args.compact)
    return 0
