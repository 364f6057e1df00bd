#!/usr/bin/env python3
"""Git integration for projectmap.

Every call shells out to ``git`` with a timeout and degrades to "no git"
when git is missing, times out, or the project is not a repository.

Example:
    >>> git = GitIntegration(Path('/path/to/repo'))
    >>> if git.available:
    ...     print(git.get_head_hash(), git.get_branch())
"""

import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)

# Porcelain XY code -> status vocabulary
PORCELAIN_STATUS = {
    "M ": "modified-staged",
    " M": "modified-unstaged",
    "MM": "modified-both",
    "A ": "added",
    "AM": "added",
    "D ": "deleted",
    " D": "deleted",
    "R ": "renamed",
    "RM": "renamed",
    "C ": "copied",
    "??": "untracked",
    "!!": "ignored",
}

STATUS_TRACKED = "tracked"
STATUS_UNKNOWN = "unknown"
STATUS_NOT_IN_REPO = "not-in-repo"


class GitIntegration:
    """Thin wrapper around the git command line.

    Attributes:
        root_path: Path to the project root.
        available: Whether git is available and the root is inside a repository.
    """

    def __init__(self, root_path: Path):
        """Initialize git integration.

        Args:
            root_path: Path to the project root.
        """
        self.root_path = Path(root_path)
        self.available = self._check_git_available()

    def _run(self, args: List[str], timeout: int = 30) -> Optional[str]:
        """Run a git command and return stdout, or None on any failure."""
        try:
            result = subprocess.run(
                ["git"] + args,
                cwd=self.root_path,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
                timeout=timeout,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
            logger.debug("git %s failed: %s", " ".join(args), e)
            return None
        if result.returncode != 0:
            logger.debug("git %s exited %d: %s", " ".join(args), result.returncode, result.stderr.strip())
            return None
        return result.stdout

    def _check_git_available(self) -> bool:
        """Check if git is available and this is a git repository."""
        return self._run(["rev-parse", "--git-dir"], timeout=5) is not None

    def get_head_hash(self) -> Optional[str]:
        """Get the short hash of HEAD, or None outside a repository or before the first commit."""
        if not self.available:
            return None
        out = self._run(["rev-parse", "--short", "HEAD"], timeout=5)
        return out.strip() if out else None

    def get_branch(self) -> Optional[str]:
        """Get the current branch name."""
        if not self.available:
            return None
        out = self._run(["rev-parse", "--abbrev-ref", "HEAD"], timeout=5)
        return out.strip() if out else None

    def has_commit(self, ref: str) -> bool:
        """Check that ``ref`` names a commit in this repository."""
        if not self.available:
            return False
        return self._run(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], timeout=5) is not None

    def get_tracked_files(self) -> Set[str]:
        """Get all files tracked by git.

        Returns:
            Set of relative file paths tracked by git.
        """
        if not self.available:
            return set()
        out = self._run(["ls-files", "-z"])
        if not out:
            return set()
        return {entry for entry in out.split("\0") if entry}

    def count_tracked_files(self) -> Optional[int]:
        """Count tracked files, or None when git cannot answer."""
        if not self.available:
            return None
        out = self._run(["ls-files", "-z"])
        if out is None:
            return None
        return len([entry for entry in out.split("\0") if entry])

    def get_changed_files(self, since: Optional[str] = None) -> List[str]:
        """Get files changed since a commit, plus uncommitted and untracked changes.

        Args:
            since: Commit reference to diff against HEAD. When None, only the
                working tree and index are considered.

        Returns:
            Sorted list of relative paths, deduplicated. Renames report the new path.
        """
        if not self.available:
            return []

        changed: Set[str] = set()
        commands = [
            ["diff", "--relative", "--name-status"],
            ["diff", "--relative", "--cached", "--name-status"],
        ]
        if since:
            commands.insert(0, ["diff", "--relative", "--name-status", f"{since}..HEAD"])

        for args in commands:
            out = self._run(args)
            if not out:
                continue
            for line in out.splitlines():
                fields = line.split("\t")
                if len(fields) < 2:
                    continue
                # R100\told\tnew: both sides changed from the map's point of view
                changed.update(f for f in fields[1:] if f)

        out = self._run(["ls-files", "--others", "--exclude-standard"])
        if out:
            changed.update(line for line in out.splitlines() if line)

        return sorted(changed)

    def get_status_map(self) -> Optional[Dict[str, str]]:
        """Get porcelain status for every non-clean path in one git call.

        Returns:
            Dict mapping relative path to status vocabulary entry, or None
            when git is unavailable.
        """
        if not self.available:
            return None

        out = self._run(
            ["status", "--porcelain", "-z", "--untracked-files=all", "--ignored"],
            timeout=60,
        )
        if out is None:
            return None

        # Porcelain paths are relative to the repository root
        prefix = (self._run(["rev-parse", "--show-prefix"], timeout=5) or "").strip()
        statuses = parse_porcelain(out)
        if not prefix:
            return statuses
        return {
            path[len(prefix):]: status
            for path, status in statuses.items()
            if path.startswith(prefix)
        }


def parse_porcelain(output: str) -> Dict[str, str]:
    """Parse ``git status --porcelain -z`` output.

    Rename and copy entries carry the original path as an extra NUL
    separated field; the new path is the one recorded.

    Example:
        >>> parse_porcelain(' M a.py\\0?? b.py\\0')
        {'a.py': 'modified-unstaged', 'b.py': 'untracked'}
    """
    statuses: Dict[str, str] = {}
    entries = output.split("\0")
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if len(entry) < 4:
            continue
        code, path = entry[:2], entry[3:]
        if code[0] in "RC":
            # Next field is the source path
            i += 1
        if path.endswith("/"):
            path = path.rstrip("/")
        statuses[path] = PORCELAIN_STATUS.get(code, STATUS_UNKNOWN)
    return statuses


class GitStatusProvider:
    """Answers per-file git status from a single batched porcelain call.

    The porcelain output and tracked-file list are loaded lazily on the
    first lookup and reused for every file of the scan.

    Example:
        >>> provider = GitStatusProvider(GitIntegration(root))
        >>> provider.status_for('src/app.js')
        'tracked'
    """

    def __init__(self, git: GitIntegration):
        self.git = git
        self._statuses: Optional[Dict[str, str]] = None
        self._tracked: Set[str] = set()
        self._ignored_dirs: List[str] = []
        self._loaded = False

    def _load(self) -> None:
        self._loaded = True
        self._statuses = self.git.get_status_map()
        if self._statuses is None:
            return
        self._tracked = self.git.get_tracked_files()
        # --ignored reports whole directories once
        self._ignored_dirs = [
            path + "/" for path, status in self._statuses.items() if status == "ignored"
        ]

    def status_for(self, relative_path: str) -> str:
        """Return the status vocabulary entry for one relative POSIX path."""
        if not self._loaded:
            self._load()
        if self._statuses is None:
            return STATUS_NOT_IN_REPO

        status = self._statuses.get(relative_path)
        if status is not None:
            return status
        if relative_path in self._tracked:
            return STATUS_TRACKED
        if any(relative_path.startswith(d) for d in self._ignored_dirs):
            return "ignored"
        # Untracked directories are expanded by --untracked-files=all, so
        # anything left is neither tracked nor reported.
        return STATUS_UNKNOWN

    def invalidate(self) -> None:
        """Drop cached status so the next lookup re-queries git."""
        self._loaded = False
        self._statuses = None
        self._tracked = set()
        self._ignored_dirs = []
