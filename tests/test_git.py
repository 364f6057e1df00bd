#!/usr/bin/env python3
"""Tests for git integration and the batched status provider."""

from projectmap.git import (
    STATUS_NOT_IN_REPO,
    STATUS_TRACKED,
    STATUS_UNKNOWN,
    GitIntegration,
    GitStatusProvider,
    parse_porcelain,
)

from conftest import git, write_files


class TestParsePorcelain:
    """Tests for porcelain output parsing."""

    def test_basic_codes(self):
        output = " M a.py\0M  b.py\0MM c.py\0?? d.py\0!! build/\0A  e.py\0"
        assert parse_porcelain(output) == {
            "a.py": "modified-unstaged",
            "b.py": "modified-staged",
            "c.py": "modified-both",
            "d.py": "untracked",
            "build": "ignored",
            "e.py": "added",
        }

    def test_rename_skips_source_field(self):
        output = "R  new.py\0old.py\0 M other.py\0"
        assert parse_porcelain(output) == {"new.py": "renamed", "other.py": "modified-unstaged"}

    def test_unknown_code(self):
        assert parse_porcelain("UU conflict.py\0") == {"conflict.py": STATUS_UNKNOWN}

    def test_empty_output(self):
        assert parse_porcelain("") == {}


class TestGitIntegration:
    """Tests for GitIntegration against real repositories."""

    def test_not_a_repository(self, sample_project):
        integration = GitIntegration(sample_project)
        assert not integration.available
        assert integration.get_head_hash() is None
        assert integration.get_branch() is None
        assert integration.get_tracked_files() == set()
        assert integration.count_tracked_files() is None
        assert integration.get_changed_files() == []
        assert integration.get_status_map() is None

    def test_head_and_tracked_files(self, git_repo):
        integration = GitIntegration(git_repo)
        assert integration.available
        head = integration.get_head_hash()
        assert head and head == git(git_repo, "rev-parse", "--short", "HEAD").strip()
        assert integration.has_commit(head)
        assert not integration.has_commit("0000000")
        assert "src/app.py" in integration.get_tracked_files()
        assert integration.count_tracked_files() == 6

    def test_changed_files_include_worktree_and_untracked(self, git_repo):
        integration = GitIntegration(git_repo)
        (git_repo / "src" / "util.py").write_text("def helper():\n    return 2\n")
        write_files(git_repo, {"src/new.py": "x = 1\n"})

        assert integration.get_changed_files() == ["src/new.py", "src/util.py"]

    def test_changed_files_since_commit(self, git_repo):
        integration = GitIntegration(git_repo)
        base = integration.get_head_hash()
        write_files(git_repo, {"src/added.py": "y = 2\n"})
        (git_repo / "README.md").unlink()
        git(git_repo, "add", "-A")
        git(git_repo, "commit", "-q", "-m", "Second commit")

        assert integration.get_changed_files(base) == ["README.md", "src/added.py"]

    def test_status_map(self, git_repo):
        (git_repo / "src" / "util.py").write_text("changed\n")
        write_files(git_repo, {"notes.md": "new\n"})

        statuses = GitIntegration(git_repo).get_status_map()
        assert statuses == {"src/util.py": "modified-unstaged", "notes.md": "untracked"}

    def test_status_map_from_subdirectory(self, git_repo):
        (git_repo / "src" / "util.py").write_text("changed\n")
        statuses = GitIntegration(git_repo / "src").get_status_map()
        assert statuses == {"util.py": "modified-unstaged"}


class TestGitStatusProvider:
    """Tests for per-file status lookups."""

    def test_outside_repository(self, sample_project):
        provider = GitStatusProvider(GitIntegration(sample_project))
        assert provider.status_for("src/app.py") == STATUS_NOT_IN_REPO

    def test_status_vocabulary(self, git_repo):
        write_files(git_repo, {".gitignore": "generated/\n", "generated/out.js": "x\n", "extra.py": "z\n"})
        (git_repo / "src" / "app.py").write_text("print(1)\n")
        provider = GitStatusProvider(GitIntegration(git_repo))

        assert provider.status_for("src/util.py") == STATUS_TRACKED
        assert provider.status_for("src/app.py") == "modified-unstaged"
        assert provider.status_for("extra.py") == "untracked"
        assert provider.status_for("generated/out.js") == "ignored"
        assert provider.status_for("does/not/exist.py") == STATUS_UNKNOWN

    def test_invalidate_requeries(self, git_repo):
        provider = GitStatusProvider(GitIntegration(git_repo))
        assert provider.status_for("src/util.py") == STATUS_TRACKED

        (git_repo / "src" / "util.py").write_text("changed\n")
        assert provider.status_for("src/util.py") == STATUS_TRACKED

        provider.invalidate()
        assert provider.status_for("src/util.py") == "modified-unstaged"
