#!/usr/bin/env python3
"""Tests for refresh orchestration."""

import pytest

from projectmap.compression import save_map
from projectmap.errors import MapNotFoundError
from projectmap.generator import MapGenerator
from projectmap.history import HistoryStore
from projectmap.loader import MapLoader
from projectmap.refresh import PRE_REFRESH_SNAPSHOT, RefreshRunner
from projectmap.snapshot import SnapshotStore

from conftest import git, write_files


class TestDetermineMode:
    """Tests for mode selection."""

    @pytest.mark.parametrize(
        "mode,score,expected",
        [
            ("auto", 0, "incremental"),
            ("auto", 59, "incremental"),
            ("auto", 60, "full"),
            ("auto", None, "full"),
            ("full", 0, "full"),
            ("incremental", 100, "incremental"),
        ],
    )
    def test_determine_mode(self, sample_project, mode, score, expected):
        assert RefreshRunner(sample_project).determine_mode(mode, score) == expected


class TestRefreshRunner:
    """Tests for RefreshRunner.run."""

    def test_requires_existing_maps(self, sample_project):
        with pytest.raises(MapNotFoundError):
            RefreshRunner(sample_project).run("full")

    def test_unknown_mode(self, sample_project):
        MapGenerator(sample_project).generate()
        with pytest.raises(ValueError):
            RefreshRunner(sample_project).run("partial")

    def test_full_refresh_reports_diff(self, sample_project):
        MapGenerator(sample_project).generate()
        write_files(sample_project, {"docs/guide.md": "# Guide\n"})

        result = RefreshRunner(sample_project).run("full")

        assert result.mode == "full"
        assert result.requested_mode == "full"
        assert not result.fell_back
        assert result.files_scanned == 7
        assert result.diff_summary == "Changes: +1 file, 1 module"
        assert [f["path"] for f in result.diff["metadata"]["added_files"]] == ["docs/guide.md"]
        assert result.anomalies == []
        assert result.staleness_after == 0
        assert not SnapshotStore(sample_project).has(PRE_REFRESH_SNAPSHOT)

    def test_no_changes(self, sample_project):
        MapGenerator(sample_project).generate()
        result = RefreshRunner(sample_project).run("full")
        assert result.diff_summary == "No changes detected"
        assert result.diff["summary"]["has_changes"] is False

    def test_incremental_without_git_falls_back(self, sample_project):
        MapGenerator(sample_project).generate()
        result = RefreshRunner(sample_project).run("incremental")

        assert result.mode == "full"
        assert result.fell_back
        assert result.reason == "no git history recorded in the maps"

    def test_auto_mode_records_staleness(self, sample_project):
        MapGenerator(sample_project).generate()
        write_files(sample_project, {"src/extra.py": "X = 1\n"})

        result = RefreshRunner(sample_project).run()

        assert result.requested_mode == "auto"
        assert result.staleness_before == 3
        assert result.reason == "no git history recorded in the maps"
        assert result.staleness_after == 0

    def test_history_saved_and_pruned(self, sample_project):
        MapGenerator(sample_project).generate()
        runner = RefreshRunner(sample_project, save_history=True, keep=1)

        first = runner.run("full")
        second = runner.run("full")

        history = HistoryStore(sample_project)
        assert first.history_id and second.history_id
        assert second.pruned == 1
        assert [e["id"] for e in history.list()] == [second.history_id]
        assert history.load(second.history_id)["metadata"]["reason"] == "refresh-full"

    def test_to_dict_omits_diff(self, sample_project):
        MapGenerator(sample_project).generate()
        result = RefreshRunner(sample_project).run("full")
        assert "diff" not in result.to_dict()
        assert result.to_dict(include_diff=True)["diff"] is not None


class TestGitRefresh:
    """Tests for refreshes inside a git repository."""

    def test_incremental_after_commit(self, git_repo):
        MapGenerator(git_repo).generate()
        (git_repo / "src" / "util.py").write_text("def helper():\n    return 42\n\n\nEXTRA = True\n")
        git(git_repo, "commit", "-q", "-am", "Change util")

        result = RefreshRunner(git_repo).run()

        assert result.staleness_before == 40
        assert result.mode == "incremental"
        assert not result.fell_back
        assert result.files_scanned == 1
        assert result.diff_summary.startswith("Changes: ~1 modified")
        assert result.staleness_after == 0

        summary = MapLoader(git_repo).load("summary")
        assert summary["staleness"]["git_hash"] == git(git_repo, "rev-parse", "--short", "HEAD").strip()

    def test_unknown_stored_commit_falls_back(self, git_repo):
        MapGenerator(git_repo).generate()
        loader = MapLoader(git_repo)
        summary = loader.load("summary")
        summary["staleness"]["git_hash"] = "deadbee"
        save_map(loader.paths.map_path("summary"), summary)

        result = RefreshRunner(git_repo).run("incremental")
        assert result.mode == "full"
        assert result.fell_back
        assert result.reason == "stored commit deadbee not found"

    def test_deleted_untracked_file_removed(self, git_repo):
        """A file that was never committed drops out of the maps once deleted."""
        write_files(git_repo, {"src/scratch.py": "TEMP = 1\n"})
        MapGenerator(git_repo).generate()
        (git_repo / "src" / "scratch.py").unlink()

        result = RefreshRunner(git_repo).run("incremental")

        assert result.mode == "incremental"
        assert not result.fell_back
        paths = [f["path"] for f in MapLoader(git_repo).load("metadata")["files"]]
        assert "src/scratch.py" not in paths
        assert len(paths) == 6
