#!/usr/bin/env python3
"""File scanner for projectmap.

Walks a project tree depth-first, consults the ConfigResolver before
recursing into a directory or recording a file, and collects per-file
metadata together with aggregate statistics.

Example:
    >>> scanner = FileScanner('/my/project')
    >>> result = scanner.scan()
    >>> print(result.stats.total_files, result.stats.files_by_role)
    42 {'source': 30, 'test': 8, 'doc': 4}
"""

import argparse
import json
import logging
import os
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .colors import get_colors
from .config import ConfigResolver
from .git import STATUS_UNKNOWN, GitIntegration, GitStatusProvider

logger = logging.getLogger(__name__)

# Extension -> file type
FILE_TYPES = {
    "js": "javascript",
    "jsx": "javascript-react",
    "ts": "typescript",
    "tsx": "typescript-react",
    "mjs": "javascript-module",
    "cjs": "javascript-commonjs",
    "py": "python",
    "pyi": "python-interface",
    "java": "java",
    "kt": "kotlin",
    "scala": "scala",
    "groovy": "groovy",
    "c": "c",
    "cpp": "cpp",
    "cc": "cpp",
    "cxx": "cpp",
    "h": "c-header",
    "hpp": "cpp-header",
    "hh": "cpp-header",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "sass": "sass",
    "less": "less",
    "go": "go",
    "rs": "rust",
    "rb": "ruby",
    "php": "php",
    "swift": "swift",
    "vue": "vue",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "toml": "toml",
    "xml": "xml",
    "ini": "ini",
    "md": "markdown",
    "txt": "text",
    "rst": "restructuredtext",
    "adoc": "asciidoc",
}

# Extensions whose line count is worth reading the file for
TEXT_EXTENSIONS = frozenset(
    list(FILE_TYPES) + ["sh", "bash", "zsh", "sql", "graphql", "gql"]
)


def get_file_type(extension: str) -> str:
    """Map an extension (without the dot) to a file type, defaulting to the extension."""
    return FILE_TYPES.get(extension.lower(), extension.lower())


def count_lines(path: Union[str, Path]) -> int:
    """Count lines in a text file. Returns 0 if the file cannot be read."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return sum(1 for _ in f)
    except OSError:
        return 0


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class FileRecord:
    """Metadata for one scanned file.

    Attributes:
        path: Absolute path.
        relative_path: POSIX path relative to the scan root.
        name: Basename.
        extension: Extension without the dot ('' when there is none).
        type: File type derived from the extension.
        role: source, test, config, doc, build, style or unknown.
        size: Size in bytes.
        lines: Line count (0 for non-text files and quick scans).
        modified: Last-modified time, ISO 8601 UTC.
        created: Creation time (ctime where birthtime is unavailable), ISO 8601 UTC.
        git_status: Entry of the git status vocabulary; ``unknown`` for quick scans.
    """

    path: str
    relative_path: str
    name: str
    extension: str
    type: str
    role: str = "unknown"
    size: int = 0
    lines: int = 0
    modified: str = ""
    created: str = ""
    git_status: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_map_entry(self) -> Dict[str, Any]:
        """Entry stored in the metadata map, keyed by relative path."""
        return {
            "path": self.relative_path,
            "name": self.name,
            "extension": self.extension,
            "type": self.type,
            "role": self.role,
            "size": self.size,
            "lines": self.lines,
            "modified": self.modified,
            "git_status": self.git_status,
        }


@dataclass
class ScanStats:
    """Aggregate statistics over the records of one scan."""

    total_files: int = 0
    total_size: int = 0
    total_lines: int = 0
    files_by_type: Dict[str, int] = field(default_factory=dict)
    files_by_role: Dict[str, int] = field(default_factory=dict)
    scan_time: float = 0.0

    def add(self, record: FileRecord) -> None:
        self.total_files += 1
        self.total_size += record.size
        self.total_lines += record.lines
        self.files_by_type[record.type] = self.files_by_type.get(record.type, 0) + 1
        self.files_by_role[record.role] = self.files_by_role.get(record.role, 0) + 1

    @classmethod
    def from_records(cls, records: List[FileRecord]) -> "ScanStats":
        stats = cls()
        for record in records:
            stats.add(record)
        return stats


@dataclass
class ScanResult:
    """Outcome of one scan pass.

    Attributes:
        files: Records in discovery order.
        stats: Aggregates consistent with ``files``.
        project_root: Absolute project root.
    """

    files: List[FileRecord]
    stats: ScanStats
    project_root: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_root": self.project_root,
            "files": [f.to_dict() for f in self.files],
            "stats": asdict(self.stats),
        }


class FileScanner:
    """Scans a project tree and extracts file metadata.

    Attributes:
        project_root: Absolute project root.
        config: ConfigResolver used for inclusion, exclusion and roles.
        files: Records of the most recent scan.

    Example:
        >>> scanner = FileScanner('/my/project')
        >>> result = scanner.quick_scan()
        >>> [f.relative_path for f in scanner.get_files_by_role('test')]
        ['tests/test_app.py']
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        config: Optional[ConfigResolver] = None,
        git_status: Optional[GitStatusProvider] = None,
    ):
        """Initialize the scanner.

        Args:
            project_root: Directory to scan.
            config: Preloaded resolver; one is created and loaded if omitted.
            git_status: Status provider; defaults to a batched git provider.
        """
        self.project_root = Path(project_root).resolve()
        self.config = config if config is not None else ConfigResolver(self.project_root)
        self.config.load()
        self._git_status = git_status
        self.files: List[FileRecord] = []

    @property
    def git_status(self) -> GitStatusProvider:
        if self._git_status is None:
            self._git_status = GitStatusProvider(GitIntegration(self.project_root))
        return self._git_status

    def scan(self) -> ScanResult:
        """Full scan with line counts and git status."""
        return self._run(with_details=True)

    def quick_scan(self) -> ScanResult:
        """Lightweight scan: no line counting, no git status."""
        return self._run(with_details=False)

    def _run(self, with_details: bool) -> ScanResult:
        start = time.time()
        if with_details:
            self.git_status.invalidate()

        records: List[FileRecord] = []
        self._scan_directory(self.project_root, 0, records, with_details)

        stats = ScanStats.from_records(records)
        stats.scan_time = round(time.time() - start, 3)
        self.files = records
        return ScanResult(files=records, stats=stats, project_root=str(self.project_root))

    def _scan_directory(
        self, dir_path: Path, depth: int, records: List[FileRecord], with_details: bool
    ) -> None:
        if depth > self.config.scan_depth:
            return

        try:
            with os.scandir(dir_path) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            # Unreadable directory
            return

        for entry in entries:
            entry_path = Path(entry.path)
            try:
                is_dir = entry.is_dir()
                is_file = entry.is_file()
                is_symlink = entry.is_symlink()
            except OSError:
                continue

            if self.config.should_exclude(entry_path, is_dir=is_dir):
                continue

            if is_dir:
                if is_symlink and not self.config.follow_symlinks:
                    continue
                self._scan_directory(entry_path, depth + 1, records, with_details)
            elif is_file and self.config.should_include(entry_path):
                record = self._build_record(entry_path, with_details)
                if record is not None:
                    records.append(record)

    def _build_record(self, file_path: Path, with_details: bool) -> Optional[FileRecord]:
        try:
            return self._stat_record(file_path, with_details)
        except OSError:
            return None

    def _stat_record(self, file_path: Path, with_details: bool) -> Optional[FileRecord]:
        """Build a record, letting OSError propagate. None when over the size limit."""
        st = file_path.stat()
        if st.st_size > self.config.max_file_size:
            return None

        relative = self.config.relative_path(file_path)
        try:
            relative.encode("utf-8")
        except UnicodeEncodeError:
            logger.debug("Skipping file with undecodable name: %r", relative)
            return None
        extension = file_path.suffix[1:] if file_path.suffix else ""

        lines = 0
        git_status = STATUS_UNKNOWN
        if with_details:
            if extension.lower() in TEXT_EXTENSIONS:
                lines = count_lines(file_path)
            git_status = self.git_status.status_for(relative)

        return FileRecord(
            path=str(file_path),
            relative_path=relative,
            name=file_path.name,
            extension=extension,
            type=get_file_type(extension),
            role=self.config.get_file_role(file_path),
            size=st.st_size,
            lines=lines,
            modified=_iso(st.st_mtime),
            created=_iso(getattr(st, "st_birthtime", st.st_ctime)),
            git_status=git_status,
        )

    def scan_single_file(self, path: Union[str, Path]) -> Optional[FileRecord]:
        """Re-derive one FileRecord without walking the tree.

        Args:
            path: Absolute path or path relative to the project root.

        Returns:
            The record, or None if the file is excluded, not included, or
            larger than ``max_file_size``, or its name is not valid UTF-8.

        Raises:
            OSError: If the file cannot be stat'ed (e.g. it was deleted).
        """
        file_path = Path(path)
        if not file_path.is_absolute():
            file_path = self.project_root / file_path
        if not self.config.should_include(file_path):
            return None
        return self._stat_record(file_path, with_details=True)

    def get_file(self, path: str) -> Optional[FileRecord]:
        for record in self.files:
            if record.path == path or record.relative_path == path:
                return record
        return None

    def get_files_by_role(self, role: str) -> List[FileRecord]:
        return [f for f in self.files if f.role == role]

    def get_files_by_type(self, file_type: str) -> List[FileRecord]:
        return [f for f in self.files if f.type == file_type]

    def get_directory_tree(self) -> Dict[str, Any]:
        """Nest the scanned relative paths into a directory tree.

        Files of a directory are listed under the ``_files`` key.

        Example:
            >>> scanner.get_directory_tree()
            {'src': {'_files': ['app.js']}, '_files': ['README.md']}
        """
        tree: Dict[str, Any] = {}
        for record in self.files:
            parts = record.relative_path.split("/")
            current = tree
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current.setdefault("_files", []).append(parts[-1])
        return tree


def add_scan_arguments(parser: argparse.ArgumentParser) -> None:
    """Add scan command arguments to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    parser.add_argument(
        "--quick", action="store_true", help="Skip line counts and git status"
    )
    parser.add_argument("--role", help="Only list files with this role")
    parser.add_argument("--type", dest="file_type", help="Only list files of this type")
    parser.add_argument(
        "--compact", action="store_true", help="Output compact JSON (default: pretty-printed)"
    )
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")


def run_scan(args: argparse.Namespace) -> int:
    """Execute the scan command with parsed arguments.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Process exit code.
    """
    c = get_colors(no_color=args.no_color)
    root = Path(args.path)
    if not root.is_dir():
        print(c.error(f"Error: not a directory: {root}"), file=sys.stderr)
        return 1

    scanner = FileScanner(root)
    result = scanner.quick_scan() if args.quick else scanner.scan()

    files = result.files
    if args.role:
        files = [f for f in files if f.role == args.role]
    if args.file_type:
        files = [f for f in files if f.type == args.file_type]

    stats = result.stats
    print(
        f"{c.success('✓')} Scanned {c.path(str(result.project_root))}: "
        f"{c.count(stats.total_files)} files, {stats.total_lines} lines "
        f"in {stats.scan_time:.2f}s",
        file=sys.stderr,
    )

    output = result.to_dict()
    output["files"] = [f.to_dict() for f in files]
    if args.compact:
        print(json.dumps(output, separators=(",", ":")))
    else:
        print(json.dumps(output, indent=2))
    return 0
