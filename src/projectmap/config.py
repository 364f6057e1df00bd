#!/usr/bin/env python3
"""Scan configuration for projectmap.

Loads an optional ``.projectmaprc`` JSON file from the project root, deep-merges
it over the built-in defaults, and exposes the inclusion, exclusion and role
classification predicates the scanner relies on.

Example:
    >>> resolver = ConfigResolver('/my/project')
    >>> resolver.load()
    >>> resolver.should_include('src/app.js')
    True
    >>> resolver.get_file_role('src/app.test.js')
    'test'
"""

import copy
import fnmatch
import json
import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".projectmaprc"

KB = 1024
MB = 1024 * KB

DEFAULT_CONFIG: Dict[str, Any] = {
    "version": "1.0",
    "scan_depth": 100,
    "max_file_size": 5 * MB,
    "follow_symlinks": False,
    "respect_gitignore": True,
    "include": [
        "**/*.js",
        "**/*.ts",
        "**/*.jsx",
        "**/*.tsx",
        "**/*.json",
        "**/*.md",
        "**/*.py",
        "**/*.java",
        "**/*.go",
        "**/*.rs",
        "**/*.c",
        "**/*.cpp",
        "**/*.h",
        "**/*.hpp",
        "**/*.css",
        "**/*.scss",
        "**/*.html",
        "**/*.vue",
        "**/*.rb",
        "**/*.php",
        "**/*.swift",
        "**/*.kt",
    ],
    "exclude_directories": [
        "node_modules",
        ".git",
        "dist",
        "build",
        "coverage",
        ".next",
        ".nuxt",
        "out",
        "target",
        "bin",
        "obj",
        "__pycache__",
        ".pytest_cache",
        ".venv",
        "venv",
        "vendor",
        ".idea",
        ".vscode",
        ".DS_Store",
        "tmp",
        "temp",
        ".cache",
        ".projectmap",
    ],
    "exclude": [
        "**/*.min.js",
        "**/*.bundle.js",
        "**/*.map",
        "**/package-lock.json",
        "**/yarn.lock",
        "**/pnpm-lock.yaml",
        "**/*.log",
        "**/.env*",
        "**/.*cache*",
    ],
    # Role -> patterns. Plain extensions, specific filenames/suffixes, or
    # fnmatch globs. Evaluated by the ordered rules in ConfigResolver.
    "file_roles": {
        "source": ["js", "ts", "jsx", "tsx", "py", "java", "go", "rs", "c", "cpp", "rb", "php", "swift", "kt"],
        "test": ["*.test.js", "*.test.ts", "*.spec.js", "*.spec.ts", "*_test.go", "*_test.py", "test_*.py"],
        "config": ["json", "yaml", "yml", "toml", "ini", "conf", "config.js", "config.ts"],
        "doc": ["md", "txt", "rst", "adoc"],
        "build": ["Makefile", "Dockerfile", "docker-compose.yml", "package.json", "tsconfig.json"],
        "style": ["css", "scss", "sass", "less", "styl"],
    },
    "compression": {
        "enabled": True,
        "level": "auto",
    },
}

# camelCase spellings accepted in .projectmaprc
KEY_ALIASES = {
    "scanDepth": "scan_depth",
    "maxFileSize": "max_file_size",
    "followSymlinks": "follow_symlinks",
    "respectGitignore": "respect_gitignore",
    "excludeDirectories": "exclude_directories",
    "fileRoles": "file_roles",
}

COMPRESSION_LEVELS = {
    "none": 0,
    "minify": 1,
    "abbreviate": 2,
    "deduplicate": 3,
}

AUTO_DEDUPLICATE_THRESHOLD = 20 * KB
AUTO_ABBREVIATE_THRESHOLD = 5 * KB

_EXTENSION_PATTERN = re.compile(r"^[a-z0-9+]+$")
_GLOB_CHARS = set("*?[")

RolePredicate = Callable[[str], bool]


def deep_merge(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``defaults``.

    Nested dicts merge recursively; lists and scalars from ``override``
    replace the default value outright.

    Args:
        defaults: Base configuration.
        override: User configuration.

    Returns:
        New merged dict. Neither input is modified.
    """
    merged = copy.deepcopy(defaults)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@lru_cache(maxsize=1024)
def glob_to_regex(pattern: str) -> "re.Pattern":
    """Translate a glob pattern into a compiled, fully anchored regex.

    Supported tokens:
        ``**/`` zero or more leading path segments (matches at the root too)
        ``**``  any run of characters, separators included
        ``*``   any run of non-separator characters
        ``?``   exactly one character

    Every other character is matched literally, so ``.`` never acts as a
    regex wildcard.

    Example:
        >>> bool(glob_to_regex('**/*.js').fullmatch('a.js'))
        True
        >>> bool(glob_to_regex('src/*.js').fullmatch('src/lib/a.js'))
        False
    """
    parts: List[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append(".")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts))


def matches_glob(path: str, pattern: str) -> bool:
    """Check whether a POSIX relative path matches a glob pattern."""
    return glob_to_regex(pattern).fullmatch(path) is not None


def gitignore_to_glob(pattern: str) -> Optional[str]:
    """Convert one .gitignore line to a glob understood by glob_to_regex.

    Negations are not supported and yield None, as do comments and blanks.

    Example:
        >>> gitignore_to_glob('build/')
        '**/build/**'
        >>> gitignore_to_glob('*.pyc')
        '**/*.pyc'
        >>> gitignore_to_glob('/docs/api')
        'docs/api'
    """
    pattern = pattern.strip()
    if not pattern or pattern.startswith("#") or pattern.startswith("!"):
        return None

    anchored = pattern.startswith("/")
    pattern = pattern.lstrip("/")
    if not pattern:
        return None

    if pattern.endswith("/"):
        name = pattern.rstrip("/")
        if anchored or "/" in name:
            return f"{name}/**"
        return f"**/{name}/**"

    if anchored or "/" in pattern:
        return pattern
    return f"**/{pattern}"


def _normalize_keys(config: Dict[str, Any]) -> Dict[str, Any]:
    return {KEY_ALIASES.get(key, key): value for key, value in config.items()}


def _build_role_rules(file_roles: Dict[str, List[str]]) -> List[Tuple[RolePredicate, str]]:
    """Build the ordered (predicate, role) list used by get_file_role.

    Order:
        1. every glob pattern of the ``test`` role
        2. glob patterns of the remaining roles
        3. specific filenames / compound suffixes (``package.json``, ``config.js``)
        4. plain extensions, role by role in configuration order
    """
    rules: List[Tuple[RolePredicate, str]] = []

    def glob_rule(pat: str) -> RolePredicate:
        return lambda name: fnmatch.fnmatchcase(name, pat)

    def name_rule(pat: str) -> RolePredicate:
        return lambda name: name == pat or name.endswith("." + pat) or (
            pat.startswith(("_", "-")) and name.endswith(pat)
        )

    def ext_rule(pat: str) -> RolePredicate:
        return lambda name: name.rsplit(".", 1)[-1].lower() == pat if "." in name else False

    ordered_roles = sorted(file_roles, key=lambda role: role != "test")

    for role in ordered_roles:
        for pat in file_roles[role]:
            if any(ch in _GLOB_CHARS for ch in pat):
                rules.append((glob_rule(pat), role))

    for role in ordered_roles:
        for pat in file_roles[role]:
            if not any(ch in _GLOB_CHARS for ch in pat) and not _EXTENSION_PATTERN.match(pat):
                rules.append((name_rule(pat), role))

    for role in ordered_roles:
        for pat in file_roles[role]:
            if _EXTENSION_PATTERN.match(pat):
                rules.append((ext_rule(pat), role))

    return rules


class ConfigResolver:
    """Resolves scan configuration for a single project root.

    Attributes:
        project_root: Absolute path of the project.
        config: Merged configuration (available after load()).
        gitignore_patterns: Globs derived from the project's .gitignore.

    Example:
        >>> resolver = ConfigResolver('/my/project').load()
        >>> resolver.should_exclude('node_modules/react/index.js')
        True
    """

    def __init__(self, project_root: Union[str, Path]):
        self.project_root = Path(project_root).resolve()
        self.config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self.gitignore_patterns: List[str] = []
        self._role_rules = _build_role_rules(self.config["file_roles"])
        self._loaded = False

    def load(self) -> "ConfigResolver":
        """Read .projectmaprc (if any) and .gitignore (if enabled).

        A malformed .projectmaprc is logged and ignored; defaults are used.

        Returns:
            self, to allow chaining.
        """
        if self._loaded:
            return self

        user_config: Dict[str, Any] = {}
        config_path = self.project_root / CONFIG_FILENAME
        try:
            raw = json.loads(config_path.read_text(encoding="utf-8"))
            if isinstance(raw, dict):
                user_config = _normalize_keys(raw)
            else:
                logger.warning("Ignoring %s: top-level value must be an object", config_path)
        except FileNotFoundError:
            pass
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning("Could not parse %s, using defaults: %s", config_path, e)

        self.config = deep_merge(DEFAULT_CONFIG, user_config)
        self._role_rules = _build_role_rules(self.config["file_roles"])

        if self.config.get("respect_gitignore"):
            self._load_gitignore()

        self._loaded = True
        return self

    def _load_gitignore(self) -> None:
        gitignore_path = self.project_root / ".gitignore"
        try:
            lines = gitignore_path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError):
            self.gitignore_patterns = []
            return

        patterns = []
        for line in lines:
            glob = gitignore_to_glob(line)
            if glob:
                patterns.append(glob)
        self.gitignore_patterns = patterns

    def relative_path(self, path: Union[str, Path]) -> str:
        """Return ``path`` relative to the project root in POSIX form."""
        p = Path(path)
        if p.is_absolute():
            try:
                p = p.relative_to(self.project_root)
            except ValueError:
                p = Path(os.path.relpath(p, self.project_root))
        return p.as_posix()

    def should_exclude(self, path: Union[str, Path], is_dir: bool = False) -> bool:
        """Check whether a path is excluded.

        A path is excluded when any of its segments is an excluded directory
        name, or it matches an exclude glob or a .gitignore-derived glob.

        Args:
            path: Absolute path, or path relative to the project root.
            is_dir: Also match directory-only patterns such as ``build/**``
                against the directory itself.
        """
        rel = self.relative_path(path)
        if rel in ("", "."):
            return False
        candidates = [rel, rel + "/"] if is_dir else [rel]

        excluded_dirs = set(self.config.get("exclude_directories", []))
        if any(segment in excluded_dirs for segment in rel.split("/")):
            return True

        for pattern in list(self.config.get("exclude", [])) + self.gitignore_patterns:
            if any(matches_glob(candidate, pattern) for candidate in candidates):
                return True

        return False

    def should_include(self, path: Union[str, Path]) -> bool:
        """Check whether a file should be recorded. Exclusion always wins."""
        if self.should_exclude(path):
            return False
        rel = self.relative_path(path)
        return any(matches_glob(rel, pattern) for pattern in self.config.get("include", []))

    def get_file_role(self, path: Union[str, Path]) -> str:
        """Classify a file's role from its name.

        Test patterns take precedence over extension rules, so
        ``app.test.js`` is ``test`` even though ``js`` is a source extension.

        Returns:
            Role label, or ``'unknown'`` if no rule matches.
        """
        name = Path(path).name
        for predicate, role in self._role_rules:
            if predicate(name):
                return role
        return "unknown"

    def get_compression_level(self, byte_size: int) -> int:
        """Pick a compression level (0-3) for a payload of ``byte_size`` bytes.

        In ``auto`` mode: >20KB deduplicates (3), >5KB abbreviates (2),
        anything else is minified (1). A disabled compression block yields 0.
        """
        settings = self.config.get("compression", {})
        if not settings.get("enabled", True):
            return 0

        level = settings.get("level", "auto")
        if isinstance(level, int):
            return max(0, min(3, level))
        if level != "auto":
            return COMPRESSION_LEVELS.get(level, 1)

        if byte_size > AUTO_DEDUPLICATE_THRESHOLD:
            return 3
        if byte_size > AUTO_ABBREVIATE_THRESHOLD:
            return 2
        return 1

    @property
    def scan_depth(self) -> int:
        return int(self.config.get("scan_depth", 100))

    @property
    def max_file_size(self) -> int:
        return int(self.config.get("max_file_size", 5 * MB))

    @property
    def follow_symlinks(self) -> bool:
        return bool(self.config.get("follow_symlinks", False))
