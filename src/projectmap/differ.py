#!/usr/bin/env python3
"""Structured diffs between two generations of project maps.

Each map type is matched by a stable key (file path, ``file::source`` for
imports, component path, module name) and reported as added, removed and
modified entries plus counts. Output ordering is fully determined by the
keys, so diffing the same inputs twice gives byte-identical JSON.

Example:
    >>> report = MapDiffer.generate_full_diff(old_maps, new_maps)
    >>> report["summary"]["has_changes"]
    True
    >>> [f["path"] for f in report["metadata"]["added_files"]]
    ['src/new_module.py']
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .colors import get_colors
from .compression import load_map
from .diff_formatter import DiffFormatter
from .errors import InvalidFormatError

FILE_PROPERTIES = ("size", "lines", "modified", "git_status")
NUMERIC_PROPERTIES = frozenset(["size", "lines", "file_count", "total_size", "total_lines"])
COMPONENT_PROPERTIES = ("size", "layer", "reusable")
COMPONENT_LIST_PROPERTIES = ("uses", "used_by")
MODULE_STATS = ("file_count", "total_size", "total_lines")
DEPENDENCY_PROPERTIES = ("type", "resolved", "default", "namespace")

COMPONENT_MAP_ALIASES = ("components", "frontend-components")

ChangeList = List[Dict[str, Any]]


def _change(prop: str, old: Any, new: Any) -> Dict[str, Any]:
    change = {"property": prop, "old": old, "new": new}
    if prop in NUMERIC_PROPERTIES and isinstance(old, (int, float)) and isinstance(new, (int, float)):
        change["delta"] = new - old
    return change


def _sorted_list(value: Any) -> List[Any]:
    if not value:
        return []
    return sorted(value, key=lambda v: json.dumps(v, sort_keys=True))


def _empty_section(kind: str) -> Dict[str, Any]:
    return {
        f"added_{kind}": [],
        f"removed_{kind}": [],
        f"modified_{kind}": [],
        "stats": {"total_added": 0, "total_removed": 0, "total_modified": 0, "unchanged": 0},
    }


def _compare_keyed(
    kind: str,
    old: Optional[Dict[str, Any]],
    new: Optional[Dict[str, Any]],
    get_changes: Callable[[Any, Any], ChangeList],
    describe: Callable[[str, Any, Any, ChangeList], Dict[str, Any]],
) -> Dict[str, Any]:
    """Compare two dicts of entries keyed by a stable identity.

    Args:
        kind: Section noun, e.g. ``files``.
        old: Old entries by key, or None when the old map is missing.
        new: New entries by key, or None when the new map is missing.
        get_changes: Returns the change list for an entry present on both sides.
        describe: Builds the modified-entry record.
    """
    old = old or {}
    new = new or {}
    section = _empty_section(kind)
    added = section[f"added_{kind}"]
    removed = section[f"removed_{kind}"]
    modified = section[f"modified_{kind}"]
    stats = section["stats"]

    for key in sorted(new):
        if key not in old:
            added.append(new[key])
            continue
        changes = get_changes(old[key], new[key])
        if changes:
            modified.append(describe(key, old[key], new[key], changes))
        else:
            stats["unchanged"] += 1

    for key in sorted(old):
        if key not in new:
            removed.append(old[key])

    stats["total_added"] = len(added)
    stats["total_removed"] = len(removed)
    stats["total_modified"] = len(modified)
    return section


class MapDiffer:
    """Stateless comparison of map generations.

    All methods are static; a missing map on either side is treated as
    empty, so everything on the other side is added or removed.
    """

    @staticmethod
    def _index_files(metadata_map: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not metadata_map or "files" not in metadata_map:
            return None
        files = metadata_map["files"]
        if isinstance(files, dict):
            return {path: dict(entry, path=entry.get("path", path)) for path, entry in files.items()}
        return {entry["path"]: entry for entry in files if isinstance(entry, dict) and "path" in entry}

    @staticmethod
    def file_changes(old: Dict[str, Any], new: Dict[str, Any]) -> ChangeList:
        return [_change(p, old.get(p), new.get(p)) for p in FILE_PROPERTIES if old.get(p) != new.get(p)]

    @classmethod
    def compare_files(
        cls, old_map: Optional[Dict[str, Any]], new_map: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Compare two metadata maps file by file (keyed by relative path).

        A file is modified when size, lines, modified time or git status differ.
        """
        return _compare_keyed(
            "files",
            cls._index_files(old_map),
            cls._index_files(new_map),
            cls.file_changes,
            lambda key, o, n, changes: {"path": key, "changes": changes, "old": o, "new": n},
        )

    @staticmethod
    def _index_dependencies(forward_map: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not forward_map or "dependencies" not in forward_map:
            return None
        index: Dict[str, Any] = {}
        for file_path, deps in (forward_map.get("dependencies") or {}).items():
            for imp in (deps or {}).get("imports", []):
                source = imp.get("source") or imp.get("module")
                index[f"{file_path}::{source}"] = {"file": file_path, "import": imp}
        return index

    @staticmethod
    def dependency_changes(old: Dict[str, Any], new: Dict[str, Any]) -> ChangeList:
        old_imp, new_imp = old["import"], new["import"]
        changes = []
        old_symbols = sorted(old_imp.get("symbols") or old_imp.get("names") or [])
        new_symbols = sorted(new_imp.get("symbols") or new_imp.get("names") or [])
        if old_symbols != new_symbols:
            changes.append(_change("symbols", old_symbols, new_symbols))
        for prop in DEPENDENCY_PROPERTIES:
            if old_imp.get(prop) != new_imp.get(prop):
                changes.append(_change(prop, old_imp.get(prop), new_imp.get(prop)))
        return changes

    @classmethod
    def compare_dependencies(
        cls, old_map: Optional[Dict[str, Any]], new_map: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Compare two dependencies-forward maps import by import.

        Identity is ``<file>::<source>``; an import is modified when its
        symbol set, kind, resolved target or default/namespace binding differ.
        """
        return _compare_keyed(
            "dependencies",
            cls._index_dependencies(old_map),
            cls._index_dependencies(new_map),
            cls.dependency_changes,
            lambda key, o, n, changes: {
                "file": n["file"],
                "source": key.split("::", 1)[1],
                "changes": changes,
                "old": o["import"],
                "new": n["import"],
            },
        )

    @staticmethod
    def component_changes(old: Dict[str, Any], new: Dict[str, Any]) -> ChangeList:
        changes = [
            _change(p, old.get(p), new.get(p)) for p in COMPONENT_PROPERTIES if old.get(p) != new.get(p)
        ]
        for prop in COMPONENT_LIST_PROPERTIES:
            old_list, new_list = _sorted_list(old.get(prop)), _sorted_list(new.get(prop))
            if old_list != new_list:
                changes.append(_change(prop, old_list, new_list))
        return changes

    @classmethod
    def compare_components(
        cls, old_map: Optional[Dict[str, Any]], new_map: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Compare two component maps keyed by component path."""
        old = old_map.get("components") if old_map else None
        new = new_map.get("components") if new_map else None
        return _compare_keyed(
            "components",
            old,
            new,
            cls.component_changes,
            lambda key, o, n, changes: {
                "path": key,
                "name": n.get("name"),
                "changes": changes,
                "old": o,
                "new": n,
            },
        )

    @staticmethod
    def _normalize_module_files(files: Any) -> Any:
        if isinstance(files, dict):
            return {k: _sorted_list(v) for k, v in sorted(files.items()) if isinstance(v, list)}
        if isinstance(files, list):
            return _sorted_list(files)
        return {}

    @classmethod
    def module_changes(cls, old: Dict[str, Any], new: Dict[str, Any]) -> ChangeList:
        old_stats, new_stats = old.get("stats") or {}, new.get("stats") or {}
        changes = [
            _change(s, old_stats.get(s), new_stats.get(s))
            for s in MODULE_STATS
            if old_stats.get(s) != new_stats.get(s)
        ]
        old_files = cls._normalize_module_files(old.get("files"))
        new_files = cls._normalize_module_files(new.get("files"))
        if old_files != new_files:
            changes.append(_change("files", old_files, new_files))
        return changes

    @classmethod
    def compare_modules(
        cls, old_map: Optional[Dict[str, Any]], new_map: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Compare two module maps keyed by module name."""
        old = old_map.get("modules") if old_map else None
        new = new_map.get("modules") if new_map else None
        return _compare_keyed(
            "modules",
            old,
            new,
            cls.module_changes,
            lambda key, o, n, changes: {"name": key, "changes": changes, "old": o, "new": n},
        )

    @staticmethod
    def _component_map(maps: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for name in COMPONENT_MAP_ALIASES:
            if maps.get(name):
                return maps[name]
        return None

    @classmethod
    def generate_full_diff(
        cls,
        old_maps: Optional[Dict[str, Any]],
        new_maps: Optional[Dict[str, Any]],
        timestamp: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Diff every map type present on either side.

        Args:
            old_maps: Map name -> map payload for the old generation.
            new_maps: Same for the new generation.
            timestamp: Optional timestamp to embed; omitted by default so the
                report depends only on its inputs.

        Returns:
            DiffReport dict with ``summary`` and one section per map type
            (None when neither side has that map).
        """
        old_maps = old_maps or {}
        new_maps = new_maps or {}

        sections: List[Tuple[str, Optional[Dict[str, Any]], Optional[Dict[str, Any]], Callable]] = [
            ("metadata", old_maps.get("metadata"), new_maps.get("metadata"), cls.compare_files),
            (
                "dependencies",
                old_maps.get("dependencies-forward"),
                new_maps.get("dependencies-forward"),
                cls.compare_dependencies,
            ),
            ("components", cls._component_map(old_maps), cls._component_map(new_maps), cls.compare_components),
            ("modules", old_maps.get("modules"), new_maps.get("modules"), cls.compare_modules),
        ]

        report: Dict[str, Any] = {
            "summary": {"has_changes": False, "total_changes": 0, "changes_by_type": {}},
        }
        if timestamp is not None:
            report["timestamp"] = timestamp

        for name, old, new, compare in sections:
            if not old and not new:
                report[name] = None
                continue
            section = compare(old, new)
            report[name] = section
            stats = section["stats"]
            report["summary"]["changes_by_type"][name] = (
                stats["total_added"] + stats["total_removed"] + stats["total_modified"]
            )

        total = sum(report["summary"]["changes_by_type"].values())
        report["summary"]["total_changes"] = total
        report["summary"]["has_changes"] = total > 0
        return report


def load_map_directory(directory: Path) -> Dict[str, Any]:
    """Load the diffable maps from a maps directory. Missing maps are skipped."""
    maps: Dict[str, Any] = {}
    for name in ("metadata", "dependencies-forward", "modules") + COMPONENT_MAP_ALIASES:
        path = directory / f"{name}.json"
        if path.is_file():
            maps[name] = load_map(path)
    return maps


DIFF_TYPES = {
    "files": ("metadata", MapDiffer.compare_files),
    "dependencies": ("dependencies-forward", MapDiffer.compare_dependencies),
    "components": ("components", MapDiffer.compare_components),
    "modules": ("modules", MapDiffer.compare_modules),
}


def add_diff_arguments(parser: argparse.ArgumentParser) -> None:
    """Add diff command arguments to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    parser.add_argument("old_dir", help="Directory with the old maps")
    parser.add_argument("new_dir", help="Directory with the new maps")
    parser.add_argument(
        "--type",
        dest="type",
        default="all",
        choices=["all"] + sorted(DIFF_TYPES),
        help="Map type to compare (default: all)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show every changed entry")
    parser.add_argument("--json", action="store_true", help="Print the raw diff report as JSON")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")


def run_diff(args: argparse.Namespace) -> int:
    """Execute the diff command with parsed arguments.

    Returns:
        Process exit code.
    """
    c = get_colors(no_color=args.no_color)
    old_dir, new_dir = Path(args.old_dir), Path(args.new_dir)
    for directory in (old_dir, new_dir):
        if not directory.is_dir():
            print(c.error(f"Error: maps directory not found: {directory}"), file=sys.stderr)
            return 1

    try:
        old_maps = load_map_directory(old_dir)
        new_maps = load_map_directory(new_dir)
    except (InvalidFormatError, OSError) as e:
        print(c.error(f"Error: {e}"), file=sys.stderr)
        return 1

    if args.type == "all":
        result = MapDiffer.generate_full_diff(old_maps, new_maps)
    else:
        map_name, compare = DIFF_TYPES[args.type]
        if args.type == "components":
            old, new = MapDiffer._component_map(old_maps), MapDiffer._component_map(new_maps)
        else:
            old, new = old_maps.get(map_name), new_maps.get(map_name)
        section_name = "metadata" if args.type == "files" else args.type
        section = compare(old, new)
        stats = section["stats"]
        total = stats["total_added"] + stats["total_removed"] + stats["total_modified"]
        result = {section_name: section}
        result["summary"] = {
            "has_changes": total > 0,
            "total_changes": total,
            "changes_by_type": {section_name: total},
        }

    if args.json:
        print(json.dumps(result, indent=2, sort_keys=True))
        return 0

    formatter = DiffFormatter(colors=c)
    if args.verbose:
        print(formatter.format_verbose(result))
    else:
        print(formatter.format_summary(result))
    return 0
