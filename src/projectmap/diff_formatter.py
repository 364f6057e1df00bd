#!/usr/bin/env python3
"""Human-readable rendering of diff reports, plus anomaly detection.

Example:
    >>> formatter = DiffFormatter()
    >>> formatter.format_summary(report)
    'Changes: +5 files, -2 files, ~3 modified, 4 dep changes'
    >>> detect_anomalies(report)["warnings"]
    ['Mass file removal detected: 25 files removed (threshold: 20)']
"""

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Tuple

from .colors import Colors

SUSPICIOUS_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"(^|/)node_modules(/|$)", re.IGNORECASE), "Changes affecting node_modules detected"),
    (re.compile(r"(^|/)\.git(/|$)", re.IGNORECASE), "Changes affecting .git directory detected"),
    (
        re.compile(r"(^|/)(package-lock\.json|yarn\.lock|pnpm-lock\.yaml|poetry\.lock|Cargo\.lock)$", re.IGNORECASE),
        "Lock file changed",
    ),
]

ADDED_DISPLAY_LIMIT = 20
MODIFIED_DISPLAY_LIMIT = 15
DEPENDENCY_DISPLAY_LIMIT = 15


@dataclass
class AnomalyThresholds:
    """Limits above which a diff is flagged as suspicious.

    Attributes:
        mass_removal_count: Removed files at or above this count are flagged.
        mass_change_percent: Percentage of files changed that is flagged.
        dependency_change_percent: Percentage of imports changed that is flagged.
        suspicious_patterns: (regex, message) pairs checked against changed paths.
    """

    mass_removal_count: int = 20
    mass_change_percent: float = 30.0
    dependency_change_percent: float = 50.0
    suspicious_patterns: List[Tuple[Pattern, str]] = field(
        default_factory=lambda: list(SUSPICIOUS_PATTERNS)
    )


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _section_total(section: Optional[Dict[str, Any]]) -> int:
    if not section:
        return 0
    stats = section["stats"]
    return stats["total_added"] + stats["total_removed"] + stats["total_modified"]


def detect_anomalies(
    report: Optional[Dict[str, Any]], thresholds: Optional[AnomalyThresholds] = None
) -> Dict[str, Any]:
    """Scan a diff report for changes that look like mistakes.

    The report is only read, never modified.

    Returns:
        ``{"has_anomalies": bool, "warnings": [str, ...]}``
    """
    thresholds = thresholds or AnomalyThresholds()
    warnings: List[str] = []

    meta = (report or {}).get("metadata")
    if meta:
        stats = meta["stats"]
        if stats["total_removed"] >= thresholds.mass_removal_count:
            warnings.append(
                f"Mass file removal detected: {stats['total_removed']} files removed "
                f"(threshold: {thresholds.mass_removal_count})"
            )

        changed = _section_total(meta)
        total = changed + stats["unchanged"]
        if total > 0:
            percent = changed / total * 100
            if percent >= thresholds.mass_change_percent:
                warnings.append(
                    f"High change rate detected: {percent:.1f}% of files changed "
                    f"(threshold: {thresholds.mass_change_percent:g}%)"
                )

        changed_paths = (
            [f.get("path", "") for f in meta.get("added_files", [])]
            + [f.get("path", "") for f in meta.get("removed_files", [])]
            + [f.get("path", "") for f in meta.get("modified_files", [])]
        )
        for pattern, message in thresholds.suspicious_patterns:
            matching = [p for p in changed_paths if pattern.search(p)]
            if matching:
                warnings.append(f"{message} ({_plural(len(matching), 'file')})")

    deps = (report or {}).get("dependencies")
    if deps:
        changed = _section_total(deps)
        total = changed + deps["stats"]["unchanged"]
        if total > 0:
            percent = changed / total * 100
            if percent >= thresholds.dependency_change_percent:
                warnings.append(
                    f"Large dependency graph changes: {percent:.1f}% of dependencies changed"
                )

    modules = (report or {}).get("modules")
    if modules and modules.get("removed_modules"):
        count = len(modules["removed_modules"])
        warnings.append(f"{_plural(count, 'entire module')} removed")

    return {"has_anomalies": bool(warnings), "warnings": warnings}


def annotate_anomalies(
    report: Dict[str, Any], thresholds: Optional[AnomalyThresholds] = None
) -> Dict[str, Any]:
    """Return a copy of ``report`` with an ``anomalies`` block added."""
    annotated = copy.deepcopy(report)
    annotated["anomalies"] = detect_anomalies(report, thresholds)
    return annotated


def format_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes}B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f}KB"
    return f"{num_bytes / (1024 * 1024):.1f}MB"


class DiffFormatter:
    """Renders DiffReports as a one-line summary or a sectioned report.

    Attributes:
        thresholds: Anomaly thresholds used by format_verbose.
        colors: Colors instance; defaults to uncolored output.
    """

    def __init__(self, thresholds: Optional[AnomalyThresholds] = None, colors: Optional[Colors] = None):
        self.thresholds = thresholds or AnomalyThresholds()
        self.colors = colors or Colors(enabled=False)

    def format_summary(self, report: Optional[Dict[str, Any]]) -> str:
        """One-line summary such as ``Changes: +5 files, -2 files, ~3 modified``."""
        if not report or not report.get("summary", {}).get("has_changes"):
            return "No changes detected"

        parts: List[str] = []
        meta = report.get("metadata")
        if meta:
            stats = meta["stats"]
            if stats["total_added"]:
                parts.append(f"+{_plural(stats['total_added'], 'file')}")
            if stats["total_removed"]:
                parts.append(f"-{_plural(stats['total_removed'], 'file')}")
            if stats["total_modified"]:
                parts.append(f"~{stats['total_modified']} modified")

        for key, noun in (("dependencies", "dep change"), ("components", "component"), ("modules", "module")):
            total = _section_total(report.get(key))
            if total:
                parts.append(_plural(total, noun))

        if not parts:
            return "Changes detected (details unavailable)"
        return "Changes: " + ", ".join(parts)

    def format_stats(self, report: Dict[str, Any]) -> Dict[str, Any]:
        """Flat counters derived from a report, including the file change rate."""
        stats = {
            "total_changes": report.get("summary", {}).get("total_changes", 0),
            "total_files": 0,
            "files_added": 0,
            "files_removed": 0,
            "files_modified": 0,
            "files_unchanged": 0,
            "change_rate": 0.0,
            "dependency_changes": _section_total(report.get("dependencies")),
            "component_changes": _section_total(report.get("components")),
            "module_changes": _section_total(report.get("modules")),
        }
        meta = report.get("metadata")
        if meta:
            s = meta["stats"]
            stats["files_added"] = s["total_added"]
            stats["files_removed"] = s["total_removed"]
            stats["files_modified"] = s["total_modified"]
            stats["files_unchanged"] = s["unchanged"]
            stats["total_files"] = _section_total(meta) + s["unchanged"]
            if stats["total_files"]:
                stats["change_rate"] = _section_total(meta) / stats["total_files"] * 100
        return stats

    def format_verbose(self, report: Optional[Dict[str, Any]]) -> str:
        """Multi-section report with per-entry changes and anomaly warnings."""
        if not report or "summary" not in report:
            return "No diff report available"

        c = self.colors
        out: List[str] = [c.heading("# Map Diff Report")]
        if report.get("timestamp"):
            out.append(f"Generated: {report['timestamp']}")
        out.append("")
        out.append("## Summary")
        out.append(self.format_summary(report))
        stats = self.format_stats(report)
        out.append(f"Total changes: {stats['total_changes']}")
        out.append(f"Change rate: {stats['change_rate']:.1f}%")
        out.append("")

        anomalies = detect_anomalies(report, self.thresholds)
        if anomalies["has_anomalies"]:
            out.append("## Warnings")
            out.extend(c.warning(f"!  {w}") for w in anomalies["warnings"])
            out.append("")

        if report.get("metadata"):
            out.extend(self._format_files(report["metadata"]))
        if report.get("dependencies"):
            out.extend(self._format_dependencies(report["dependencies"]))
        if report.get("components"):
            out.extend(self._format_named("Component", report["components"], "components", "path"))
        if report.get("modules"):
            out.extend(self._format_named("Module", report["modules"], "modules", "name"))

        return "\n".join(out).rstrip("\n")

    def _stats_line(self, stats: Dict[str, int]) -> str:
        return (
            f"Added: {stats['total_added']} | Removed: {stats['total_removed']} | "
            f"Modified: {stats['total_modified']} | Unchanged: {stats['unchanged']}"
        )

    def _limited(self, items: List[Any], limit: int, render) -> List[str]:
        lines = [line for item in items[:limit] for line in render(item)]
        if len(items) > limit:
            lines.append(f"  ... and {len(items) - limit} more")
        return lines

    def _format_files(self, section: Dict[str, Any]) -> List[str]:
        c = self.colors
        out = ["## File Changes", self._stats_line(section["stats"]), ""]

        if section["added_files"]:
            out.append("### Added Files")
            out.extend(
                self._limited(
                    section["added_files"],
                    ADDED_DISPLAY_LIMIT,
                    lambda f: [
                        c.added(f"  + {f.get('path')}")
                        + (f" ({format_size(f['size'])})" if f.get("size") else "")
                    ],
                )
            )
            out.append("")

        if section["removed_files"]:
            out.append("### Removed Files")
            out.extend(
                self._limited(
                    section["removed_files"], ADDED_DISPLAY_LIMIT, lambda f: [c.removed(f"  - {f.get('path')}")]
                )
            )
            out.append("")

        if section["modified_files"]:
            out.append("### Modified Files")
            out.extend(
                self._limited(
                    section["modified_files"],
                    MODIFIED_DISPLAY_LIMIT,
                    lambda f: [c.modified(f"  ~ {f['path']}")]
                    + [f"    {format_change(ch)}" for ch in f.get("changes", [])],
                )
            )
            out.append("")
        return out

    def _format_dependencies(self, section: Dict[str, Any]) -> List[str]:
        c = self.colors
        out = ["## Dependency Changes", self._stats_line(section["stats"]), ""]

        def source_of(dep: Dict[str, Any]) -> str:
            imp = dep.get("import", {})
            return imp.get("source") or imp.get("module") or "unknown"

        if section["added_dependencies"]:
            out.append("### New Dependencies")
            out.extend(
                self._limited(
                    section["added_dependencies"],
                    DEPENDENCY_DISPLAY_LIMIT,
                    lambda d: [c.added(f"  + {d['file']} -> {source_of(d)}")],
                )
            )
            out.append("")

        if section["removed_dependencies"]:
            out.append("### Removed Dependencies")
            out.extend(
                self._limited(
                    section["removed_dependencies"],
                    DEPENDENCY_DISPLAY_LIMIT,
                    lambda d: [c.removed(f"  - {d['file']} -> {source_of(d)}")],
                )
            )
            out.append("")

        if section["modified_dependencies"]:
            out.append("### Changed Dependencies")
            out.extend(
                self._limited(
                    section["modified_dependencies"],
                    DEPENDENCY_DISPLAY_LIMIT,
                    lambda d: [c.modified(f"  ~ {d['file']} -> {d['source']}")]
                    + [f"    {format_change(ch)}" for ch in d.get("changes", [])],
                )
            )
            out.append("")
        return out

    def _format_named(self, title: str, section: Dict[str, Any], kind: str, key: str) -> List[str]:
        c = self.colors
        out = [f"## {title} Changes", self._stats_line(section["stats"]), ""]

        def label(entry: Dict[str, Any]) -> str:
            return str(entry.get("name") or entry.get(key) or "unknown")

        if section[f"added_{kind}"]:
            out.append(f"### New {title}s")
            out.extend(
                self._limited(
                    section[f"added_{kind}"], MODIFIED_DISPLAY_LIMIT, lambda e: [c.added(f"  + {label(e)}")]
                )
            )
            out.append("")
        if section[f"removed_{kind}"]:
            out.append(f"### Removed {title}s")
            out.extend(
                self._limited(
                    section[f"removed_{kind}"], MODIFIED_DISPLAY_LIMIT, lambda e: [c.removed(f"  - {label(e)}")]
                )
            )
            out.append("")
        if section[f"modified_{kind}"]:
            out.append(f"### Modified {title}s")
            out.extend(
                self._limited(
                    section[f"modified_{kind}"],
                    MODIFIED_DISPLAY_LIMIT,
                    lambda e: [c.modified(f"  ~ {label(e)}")]
                    + [f"    {format_change(ch)}" for ch in e.get("changes", [])],
                )
            )
            out.append("")
        return out


def format_change(change: Dict[str, Any]) -> str:
    """Render one ``{property, old, new, delta?}`` change on a single line."""
    prop, old, new = change["property"], change.get("old"), change.get("new")

    if "delta" in change:
        sign = "+" if change["delta"] > 0 else ""
        return f"{prop}: {old} -> {new} ({sign}{change['delta']})"

    if isinstance(old, list) and isinstance(new, list):
        added = [v for v in new if v not in old]
        removed = [v for v in old if v not in new]
        if added and removed:
            return f"{prop}: +{len(added)}, -{len(removed)}"
        if added:
            return f"{prop}: +{', '.join(map(str, added[:3]))}{'...' if len(added) > 3 else ''}"
        if removed:
            return f"{prop}: -{', '.join(map(str, removed[:3]))}{'...' if len(removed) > 3 else ''}"

    return f"{prop}: {old} -> {new}"
