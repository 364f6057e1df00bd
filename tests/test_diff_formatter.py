#!/usr/bin/env python3
"""Tests for diff rendering and anomaly detection."""

import copy

from projectmap.colors import Colors
from projectmap.diff_formatter import (
    AnomalyThresholds,
    DiffFormatter,
    annotate_anomalies,
    detect_anomalies,
    format_change,
    format_size,
)
from projectmap.differ import MapDiffer


def files_map(paths, size=100):
    return {"files": [{"path": p, "size": size, "lines": 1, "type": "javascript", "role": "source"} for p in paths]}


def diff_files(old_paths, new_paths):
    return MapDiffer.generate_full_diff({"metadata": files_map(old_paths)}, {"metadata": files_map(new_paths)})


class TestDetectAnomalies:
    """Tests for anomaly detection."""

    def test_clean_diff(self):
        paths = [f"src/f{i}.js" for i in range(10)]
        report = diff_files(paths, paths + ["src/new.js"])
        assert detect_anomalies(report) == {"has_anomalies": False, "warnings": []}

    def test_mass_removal(self):
        paths = [f"src/f{i}.js" for i in range(100)]
        report = diff_files(paths, paths[:75])
        warnings = detect_anomalies(report)["warnings"]
        assert warnings == ["Mass file removal detected: 25 files removed (threshold: 20)"]

    def test_high_change_rate(self):
        paths = [f"src/f{i}.js" for i in range(10)]
        report = diff_files(paths, paths[:7])
        warnings = detect_anomalies(report)["warnings"]
        assert warnings == ["High change rate detected: 30.0% of files changed (threshold: 30%)"]

    def test_suspicious_paths(self):
        paths = [f"src/f{i}.js" for i in range(20)]
        report = diff_files(paths, paths + ["node_modules/x/index.js", "package-lock.json"])
        warnings = detect_anomalies(report)["warnings"]
        assert "Changes affecting node_modules detected (1 file)" in warnings
        assert "Lock file changed (1 file)" in warnings

    def test_dependency_change_rate(self):
        old = {"dependencies-forward": {"dependencies": {"a.js": {"imports": [{"source": "x"}, {"source": "y"}]}}}}
        new = {"dependencies-forward": {"dependencies": {"a.js": {"imports": [{"source": "x"}, {"source": "z"}]}}}}
        report = MapDiffer.generate_full_diff(old, new)
        warnings = detect_anomalies(report)["warnings"]
        assert warnings == ["Large dependency graph changes: 66.7% of dependencies changed"]

    def test_removed_modules(self):
        old = {"modules": {"modules": {"legacy": {"files": []}, "src": {"files": []}}}}
        new = {"modules": {"modules": {"src": {"files": []}}}}
        warnings = detect_anomalies(MapDiffer.generate_full_diff(old, new))["warnings"]
        assert warnings == ["1 entire module removed"]

    def test_custom_thresholds(self):
        paths = [f"src/f{i}.js" for i in range(100)]
        report = diff_files(paths, paths[:95])
        thresholds = AnomalyThresholds(mass_removal_count=5, mass_change_percent=90)
        warnings = detect_anomalies(report, thresholds)["warnings"]
        assert warnings == ["Mass file removal detected: 5 files removed (threshold: 5)"]

    def test_detection_does_not_mutate(self):
        report = diff_files(["a.js"], [])
        before = copy.deepcopy(report)
        annotated = annotate_anomalies(report)

        assert report == before
        assert annotated["anomalies"]["has_anomalies"] is True
        assert "anomalies" not in report

    def test_empty_report(self):
        assert detect_anomalies(None) == {"has_anomalies": False, "warnings": []}


class TestFormatSummary:
    """Tests for the one-line summary."""

    def test_no_changes(self):
        assert DiffFormatter().format_summary(diff_files(["a.js"], ["a.js"])) == "No changes detected"
        assert DiffFormatter().format_summary(None) == "No changes detected"

    def test_file_changes(self):
        old = files_map(["a.js", "b.js", "c.js"])
        new = files_map(["a.js", "d.js", "e.js"])
        new["files"][0]["size"] = 5
        report = MapDiffer.generate_full_diff({"metadata": old}, {"metadata": new})
        assert DiffFormatter().format_summary(report) == "Changes: +2 files, -2 files, ~1 modified"

    def test_dependency_changes(self):
        old = {"dependencies-forward": {"dependencies": {}}}
        new = {"dependencies-forward": {"dependencies": {"a.js": {"imports": [{"source": "x"}]}}}}
        report = MapDiffer.generate_full_diff(old, new)
        assert DiffFormatter().format_summary(report) == "Changes: 1 dep change"


class TestFormatVerbose:
    """Tests for the multi-section report."""

    def test_sections(self):
        old = files_map(["a.js", "b.js"])
        new = files_map(["a.js", "c.js"], size=2048)
        report = MapDiffer.generate_full_diff({"metadata": old}, {"metadata": new})
        text = DiffFormatter().format_verbose(report)

        assert text.startswith("# Map Diff Report")
        assert "## File Changes" in text
        assert "Added: 1 | Removed: 1 | Modified: 1 | Unchanged: 0" in text
        assert "  + c.js (2.0KB)" in text
        assert "  - b.js" in text
        assert "  ~ a.js" in text
        assert "    size: 100 -> 2048 (+1948)" in text
        assert "## Warnings" in text

    def test_display_limit(self):
        report = diff_files([], [f"f{i:02d}.js" for i in range(25)])
        text = DiffFormatter().format_verbose(report)
        assert "  ... and 5 more" in text

    def test_colors_applied(self):
        report = diff_files([], ["a.js"])
        text = DiffFormatter(colors=Colors(enabled=True)).format_verbose(report)
        assert Colors.GREEN in text

    def test_missing_report(self):
        assert DiffFormatter().format_verbose({}) == "No diff report available"


class TestFormatStats:
    """Tests for flat statistics."""

    def test_change_rate(self):
        report = diff_files(["a.js", "b.js", "c.js", "d.js"], ["a.js", "b.js", "c.js"])
        stats = DiffFormatter().format_stats(report)
        assert stats["total_files"] == 4
        assert stats["files_removed"] == 1
        assert stats["files_unchanged"] == 3
        assert stats["change_rate"] == 25.0


class TestHelpers:
    """Tests for change and size rendering."""

    def test_format_change(self):
        assert format_change({"property": "lines", "old": 10, "new": 4, "delta": -6}) == "lines: 10 -> 4 (-6)"
        assert format_change({"property": "uses", "old": ["A"], "new": ["A", "B"]}) == "uses: +B"
        assert format_change({"property": "uses", "old": ["A", "B"], "new": ["A"]}) == "uses: -B"
        assert format_change({"property": "uses", "old": ["A"], "new": ["B"]}) == "uses: +1, -1"
        assert format_change({"property": "role", "old": "source", "new": "test"}) == "role: source -> test"

    def test_format_size(self):
        assert format_size(512) == "512B"
        assert format_size(1536) == "1.5KB"
        assert format_size(3 * 1024 * 1024) == "3.0MB"
