"""Tests for the unified CLI module."""

import json
import shutil
import sys
from unittest.mock import patch

import pytest

from projectmap import __version__
from projectmap.cli import history_main, main, refresh_main, snapshot_main
from projectmap.generator import MAP_NAMES
from projectmap.history import HistoryStore
from projectmap.paths import MapPaths

from conftest import write_files


def run_cli(argv, entry=main):
    """Run a CLI entry point and return its exit code."""
    with patch.object(sys, "argv", argv):
        with pytest.raises(SystemExit) as exc_info:
            entry()
    return exc_info.value.code


class TestCLIHelp:
    """Tests for CLI help and version output."""

    def test_main_help(self, capsys):
        """Test that main help lists the subcommands."""
        assert run_cli(["projectmap", "--help"]) == 0
        out = capsys.readouterr().out
        for command in ("scan", "generate", "refresh", "staleness", "diff", "history", "snapshot", "list", "stats", "deps"):
            assert command in out

    def test_main_version(self, capsys):
        """Test that version is displayed correctly."""
        assert run_cli(["projectmap", "--version"]) == 0
        assert __version__ in capsys.readouterr().out

    @pytest.mark.parametrize(
        "command", ["scan", "generate", "refresh", "staleness", "diff", "history", "snapshot", "list", "stats", "deps"]
    )
    def test_subcommand_help(self, command):
        """Test that every subcommand has help."""
        assert run_cli(["projectmap", command, "--help"]) == 0

    def test_no_command_shows_help(self, capsys):
        """Test that running without a command shows help."""
        assert run_cli(["projectmap"]) == 0
        assert "usage:" in capsys.readouterr().out

    def test_unknown_command(self):
        """Test that an unknown subcommand is a usage error."""
        assert run_cli(["projectmap", "explode"]) == 2

    def test_standalone_help(self):
        """Test that the standalone scripts parse --help."""
        assert run_cli(["projectmap-refresh", "--help"], refresh_main) == 0
        assert run_cli(["projectmap-history", "--help"], history_main) == 0
        assert run_cli(["projectmap-snapshot", "--help"], snapshot_main) == 0


class TestDebugFlag:
    """Tests for --debug before and after the subcommand."""

    @pytest.mark.parametrize(
        "argv",
        [
            ["projectmap", "--debug", "scan", "{project}", "--quick"],
            ["projectmap", "scan", "{project}", "--quick", "--debug"],
            ["projectmap", "refresh", "--debug", "--project", "{project}"],
            ["projectmap", "history", "list", "{project}", "--debug"],
            ["projectmap", "snapshot", "--debug", "list", "{project}"],
        ],
    )
    def test_debug_enabled(self, sample_project, argv):
        argv = [a.format(project=sample_project) for a in argv]
        with patch("projectmap.cli.configure_logging") as configure:
            run_cli(argv + ["--no-color"])
        configure.assert_called_once_with(True)

    def test_debug_off_by_default(self, sample_project):
        with patch("projectmap.cli.configure_logging") as configure:
            run_cli(["projectmap", "scan", str(sample_project), "--quick", "--no-color"])
        configure.assert_called_once_with(False)

    def test_standalone_debug_after_options(self, sample_project):
        argv = ["projectmap-refresh", "--project", str(sample_project), "--no-color", "--debug"]
        with patch("projectmap.cli.configure_logging") as configure:
            run_cli(argv, refresh_main)
        configure.assert_called_once_with(True)


class TestScanCommand:
    """Tests for projectmap scan."""

    def test_scan_compact(self, sample_project, capsys):
        code = run_cli(["projectmap", "scan", str(sample_project), "--compact", "--no-color"])
        assert code == 0

        captured = capsys.readouterr()
        data = json.loads(captured.out)
        assert len(data["files"]) == 6
        assert data["stats"]["total_files"] == 6
        assert "Scanned" in captured.err

    def test_scan_role_filter(self, sample_project, capsys):
        run_cli(["projectmap", "scan", str(sample_project), "--role", "test", "--no-color"])
        data = json.loads(capsys.readouterr().out)
        assert [f["relative_path"] for f in data["files"]] == ["tests/test_app.py"]

    def test_scan_missing_directory(self, tmp_path, capsys):
        assert run_cli(["projectmap", "scan", str(tmp_path / "missing"), "--no-color"]) == 1
        assert "not a directory" in capsys.readouterr().err


class TestGenerateAndStaleness:
    """Tests for projectmap generate and projectmap staleness."""

    def test_generate(self, sample_project, capsys):
        assert run_cli(["projectmap", "generate", str(sample_project), "--no-color"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["maps"] == MAP_NAMES
        assert data["file_count"] == 6
        assert MapPaths(sample_project).map_path("summary").is_file()

    def test_staleness_without_maps(self, sample_project, capsys):
        assert run_cli(["projectmap", "staleness", str(sample_project), "--no-color"]) == 1
        assert "no map found" in capsys.readouterr().err

    def test_staleness_fresh(self, sample_project, capsys):
        run_cli(["projectmap", "generate", str(sample_project), "--no-color"])
        capsys.readouterr()

        assert run_cli(["projectmap", "staleness", str(sample_project), "--compact", "--no-color"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["score"] == 0
        assert data["level"] == "fresh"

    def test_staleness_stale(self, sample_project, capsys):
        run_cli(["projectmap", "generate", str(sample_project), "--no-color"])
        write_files(sample_project, {f"lib/extra{i}.py": "" for i in range(10)})
        capsys.readouterr()

        assert run_cli(["projectmap", "staleness", str(sample_project), "--no-color"]) == 1
        assert json.loads(capsys.readouterr().out)["score"] == 30


class TestDiffCommand:
    """Tests for projectmap diff."""

    @pytest.fixture
    def map_dirs(self, sample_project, tmp_path, capsys):
        run_cli(["projectmap", "generate", str(sample_project), "--no-color"])
        maps_dir = MapPaths(sample_project).maps_dir
        old_dir = tmp_path / "old-maps"
        shutil.copytree(maps_dir, old_dir)

        write_files(sample_project, {"docs/guide.md": "# Guide\n"})
        run_cli(["projectmap", "generate", str(sample_project), "--no-color"])
        capsys.readouterr()
        return old_dir, maps_dir

    def test_files_json(self, map_dirs, capsys):
        old_dir, new_dir = map_dirs
        code = run_cli(["projectmap", "diff", str(old_dir), str(new_dir), "--type", "files", "--json"])
        assert code == 0

        data = json.loads(capsys.readouterr().out)
        assert [f["path"] for f in data["metadata"]["added_files"]] == ["docs/guide.md"]
        assert data["summary"] == {"has_changes": True, "total_changes": 1, "changes_by_type": {"metadata": 1}}

    def test_summary_output(self, map_dirs, capsys):
        old_dir, new_dir = map_dirs
        assert run_cli(["projectmap", "diff", str(old_dir), str(new_dir), "--no-color"]) == 0
        assert "Changes: +1 file, 1 module" in capsys.readouterr().out

    def test_same_directory_has_no_changes(self, map_dirs, capsys):
        _, new_dir = map_dirs
        run_cli(["projectmap", "diff", str(new_dir), str(new_dir), "--no-color"])
        assert "No changes detected" in capsys.readouterr().out

    def test_invalid_type(self, map_dirs):
        old_dir, new_dir = map_dirs
        assert run_cli(["projectmap", "diff", str(old_dir), str(new_dir), "--type", "bogus"]) == 2

    def test_missing_directory(self, tmp_path, capsys):
        code = run_cli(["projectmap", "diff", str(tmp_path / "a"), str(tmp_path / "b"), "--no-color"])
        assert code == 1
        assert "maps directory not found" in capsys.readouterr().err


class TestRefreshCommand:
    """Tests for projectmap refresh and projectmap-refresh."""

    def test_refresh_without_maps(self, sample_project, capsys):
        code = run_cli(["projectmap-refresh", "--project", str(sample_project), "--no-color"], refresh_main)
        assert code == 1
        assert "No project maps found" in capsys.readouterr().err

    def test_full_refresh_with_history(self, sample_project, capsys):
        run_cli(["projectmap", "generate", str(sample_project), "--no-color"])
        capsys.readouterr()

        code = run_cli(
            ["projectmap", "refresh", "--full", "--project", str(sample_project), "--keep", "5", "--no-color"]
        )
        assert code == 0

        captured = capsys.readouterr()
        data = json.loads(captured.out)
        assert data["mode"] == "full"
        assert data["history_id"]
        assert "Full refresh" in captured.err
        assert [e["id"] for e in HistoryStore(sample_project).list()] == [data["history_id"]]

    def test_full_and_incremental_are_exclusive(self, sample_project):
        assert run_cli(["projectmap", "refresh", "--full", "--incremental"]) == 2


class TestHistoryCommand:
    """Tests for projectmap history."""

    def test_save_list_prune(self, sample_project, capsys):
        run_cli(["projectmap", "generate", str(sample_project), "--no-color"])
        project = str(sample_project)

        for reason in ("first", "second", "third"):
            assert run_cli(["projectmap", "history", "save", project, reason, "--no-color"]) == 0
        capsys.readouterr()

        assert run_cli(["projectmap-history", "list", project, "--compact"], history_main) == 0
        entries = json.loads(capsys.readouterr().out)
        assert len(entries) == 3

        assert run_cli(["projectmap", "history", "prune", project, "1"]) == 0
        assert json.loads(capsys.readouterr().out) == {"deleted": 2}
        assert len(HistoryStore(sample_project).list()) == 1

    def test_save_without_maps(self, sample_project, capsys):
        assert run_cli(["projectmap", "history", "save", str(sample_project), "--no-color"]) == 1
        assert "no maps found" in capsys.readouterr().err

    def test_load_missing_entry(self, sample_project, capsys):
        code = run_cli(["projectmap", "history", "load", str(sample_project), "20990101-000000", "--no-color"])
        assert code == 1
        assert "not found" in capsys.readouterr().err

    def test_missing_argument(self):
        assert run_cli(["projectmap", "history", "compare", "."]) == 2

    def test_unknown_subcommand(self):
        assert run_cli(["projectmap", "history", "rewind", "."]) == 2


class TestSnapshotCommand:
    """Tests for projectmap snapshot."""

    def test_has_save_delete(self, sample_project, capsys):
        project = str(sample_project)
        run_cli(["projectmap", "generate", project, "--no-color"])
        capsys.readouterr()

        assert run_cli(["projectmap-snapshot", "has", project, "pre-refresh"], snapshot_main) == 1
        assert capsys.readouterr().out.strip() == "false"

        assert run_cli(["projectmap", "snapshot", "save", project, "pre-refresh", "--no-color"]) == 0
        assert run_cli(["projectmap", "snapshot", "has", project, "pre-refresh"]) == 0
        assert capsys.readouterr().out.strip() == "true"

        assert run_cli(["projectmap", "snapshot", "load", project, "pre-refresh", "--compact"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert set(data["maps"]) == set(MAP_NAMES)

        assert run_cli(["projectmap", "snapshot", "delete", project, "pre-refresh", "--no-color"]) == 0
        assert run_cli(["projectmap", "snapshot", "has", project, "pre-refresh"]) == 1

    def test_list_empty(self, sample_project, capsys):
        assert run_cli(["projectmap", "snapshot", "list", str(sample_project)]) == 0
        captured = capsys.readouterr()
        assert json.loads(captured.out) == []
        assert "No snapshots found" in captured.err


class TestInspectionCommands:
    """Tests for projectmap list, stats and deps."""

    @pytest.fixture
    def generated(self, sample_project, capsys):
        run_cli(["projectmap", "generate", str(sample_project), "--no-color"])
        capsys.readouterr()
        return sample_project

    def test_list(self, generated, capsys):
        assert run_cli(["projectmap", "list", str(generated), "--compact", "--no-color"]) == 0
        captured = capsys.readouterr()
        entries = json.loads(captured.out)

        assert [e["name"] for e in entries] == sorted(MAP_NAMES)
        for entry in entries:
            assert entry["size"] == MapPaths(generated).map_path(entry["name"]).stat().st_size
            assert entry["compressed"] == (entry["method"] is not None)
        assert "metadata" in captured.err

    def test_list_without_maps(self, sample_project, capsys):
        assert run_cli(["projectmap", "list", str(sample_project), "--no-color"]) == 1
        assert "no maps found" in capsys.readouterr().err

    def test_stats(self, generated, capsys):
        assert run_cli(["projectmap", "stats", str(generated), "--compact", "--no-color"]) == 0
        captured = capsys.readouterr()
        data = json.loads(captured.out)

        assert data["statistics"]["total_files"] == 6
        assert data["statistics"]["files_by_role"]["test"] == 1
        assert data["maps"]["count"] == len(MAP_NAMES)
        assert data["maps"]["total_size"] > 0
        assert data["project"]["name"] == "sample"
        assert "Files: 6" in captured.err

    def test_stats_without_maps(self, sample_project, capsys):
        assert run_cli(["projectmap", "stats", str(sample_project), "--no-color"]) == 1
        assert "no maps found" in capsys.readouterr().err

    def test_deps(self, generated, capsys):
        code = run_cli(["projectmap", "deps", "src/app.py", "--project", str(generated), "--compact", "--no-color"])
        assert code == 0
        data = json.loads(capsys.readouterr().out)

        assert data["file"] == "src/app.py"
        assert "src/util.py" in [i["resolved"] for i in data["imports"]]
        assert [i["file"] for i in data["imported_by"]] == ["tests/test_app.py"]

    def test_deps_absolute_path(self, generated, capsys):
        target = str(generated / "src" / "util.py")
        assert run_cli(["projectmap", "deps", target, "--project", str(generated), "--compact"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["file"] == "src/util.py"
        assert data["imports"] == []
        assert [i["file"] for i in data["imported_by"]] == ["src/app.py"]

    def test_deps_unknown_file(self, generated, capsys):
        code = run_cli(["projectmap", "deps", "src/missing.py", "--project", str(generated), "--no-color"])
        assert code == 1
        assert "not in the maps" in capsys.readouterr().err
