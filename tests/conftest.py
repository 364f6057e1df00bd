"""Shared fixtures for projectmap tests."""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict

import pytest

SAMPLE_FILES = {
    "src/app.py": "from .util import helper\nimport os\n\nprint(helper())\n",
    "src/util.py": "def helper():\n    return 1\n",
    "src/web/index.js": "import { render } from './view';\nimport React from 'react';\n\nrender(React);\n",
    "src/web/view.js": "export function render() {}\n",
    "tests/test_app.py": "from src.app import helper\n\n\ndef test_helper():\n    assert helper() == 1\n",
    "README.md": "# Sample\n\nA sample project.\n",
}


def write_files(root: Path, files: Dict[str, str]) -> Path:
    """Write ``{relative_path: content}`` under root, creating directories."""
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


def write_undecodable_file(root: Path) -> None:
    """Create src/caf<0xE9>.py, whose name is Latin-1 rather than valid UTF-8."""
    try:
        with open(os.path.join(os.fsencode(root), b"src", b"caf\xe9.py"), "wb") as f:
            f.write(b"x = 1\n")
    except OSError:
        pytest.skip("filesystem rejects non-UTF-8 file names")


def git(root: Path, *args: str) -> str:
    result = subprocess.run(
        ["git"] + list(args), cwd=root, capture_output=True, text=True, check=True
    )
    return result.stdout


@pytest.fixture(autouse=True)
def _local_maps_dir(monkeypatch):
    """Keep maps inside each test project."""
    monkeypatch.delenv("PROJECTMAP_HOME", raising=False)


@pytest.fixture
def sample_project(tmp_path):
    """A small mixed Python/JavaScript project outside any git repository."""
    project = tmp_path / "sample"
    project.mkdir()
    return write_files(project, SAMPLE_FILES)


@pytest.fixture
def git_repo(tmp_path):
    """The sample project committed to a fresh git repository."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")

    project = tmp_path / "repo"
    project.mkdir()
    write_files(project, SAMPLE_FILES)
    git(project, "init", "-q")
    git(project, "config", "user.name", "Test User")
    git(project, "config", "user.email", "test@example.com")
    git(project, "config", "commit.gpgsign", "false")
    git(project, "add", "-A")
    git(project, "commit", "-q", "-m", "Initial commit")
    return project
