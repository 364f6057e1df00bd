#!/usr/bin/env python3
"""Staleness scoring for stored maps.

Three independent signals are summed and clamped to 0-100:

    git HEAD differs from the stored hash          +40
    tracked file count differs by N                +min(30, N * 3)
    more than 7 days since the last refresh        +min(30, floor(days * 4))

Levels: >=60 critical (full refresh), >=30 moderate (incremental refresh),
>0 minor, 0 fresh.

Example:
    >>> checker = StalenessChecker()
    >>> result = checker.check_staleness('/my/project', summary_map)
    >>> result.level, result.score
    ('moderate', 40)
"""

import argparse
import json
import math
import os
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .colors import get_colors
from .compression import load_map
from .errors import InvalidFormatError
from .git import GitIntegration
from .paths import LOCAL_DIRNAME, MapPaths

NO_GIT = "no-git"

GIT_HASH_POINTS = 40
FILE_COUNT_POINTS_PER_FILE = 3
FILE_COUNT_MAX_POINTS = 30
TIME_GRACE_DAYS = 7
TIME_POINTS_PER_DAY = 4
TIME_MAX_POINTS = 30
MAX_SCORE = 100

CRITICAL_THRESHOLD = 60
MODERATE_THRESHOLD = 30

# Skipped by the filesystem fallback count
COUNT_SKIP_DIRS = frozenset(["node_modules", ".git", "dist", "build", LOCAL_DIRNAME])


@dataclass
class StalenessResult:
    """Assessment of how outdated a stored map is.

    Attributes:
        score: 0-100.
        is_stale: True for moderate and critical levels.
        level: fresh, minor, moderate or critical.
        recommendation: Suggested action.
        reasons: One entry per signal that fired; empty iff score is 0.
        current_state: git_hash and file_count of the live project.
        stored_state: git_hash, file_count and last_refresh from the map.
    """

    score: int = 0
    is_stale: bool = False
    level: str = "fresh"
    recommendation: str = "Maps are up to date"
    reasons: List[str] = field(default_factory=list)
    current_state: Dict[str, Any] = field(default_factory=dict)
    stored_state: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def classify(score: int) -> Dict[str, Any]:
    """Map a score to level, is_stale and recommendation."""
    if score >= CRITICAL_THRESHOLD:
        return {"level": "critical", "is_stale": True, "recommendation": "Full refresh recommended"}
    if score >= MODERATE_THRESHOLD:
        return {"level": "moderate", "is_stale": True, "recommendation": "Incremental refresh recommended"}
    if score > 0:
        return {"level": "minor", "is_stale": False, "recommendation": "Maps are mostly fresh"}
    return {"level": "fresh", "is_stale": False, "recommendation": "Maps are up to date"}


def score_staleness(
    current_git_hash: str,
    current_file_count: int,
    stored_state: Dict[str, Any],
    now: Optional[datetime] = None,
) -> StalenessResult:
    """Score staleness from already-gathered state. Pure function.

    Args:
        current_git_hash: Live HEAD short hash, or ``'no-git'``.
        current_file_count: Live tracked file count.
        stored_state: ``{git_hash, file_count, last_refresh}`` from the map.
        now: Reference time (defaults to the current UTC time).
    """
    now = now or datetime.now(timezone.utc)
    score = 0
    reasons: List[str] = []

    stored_hash = stored_state.get("git_hash")
    if current_git_hash != stored_hash:
        score += GIT_HASH_POINTS
        reasons.append(f"Git hash changed: {stored_hash} -> {current_git_hash}")

    stored_count = stored_state.get("file_count") or 0
    count_diff = abs(current_file_count - stored_count)
    if count_diff > 0:
        score += min(FILE_COUNT_MAX_POINTS, count_diff * FILE_COUNT_POINTS_PER_FILE)
        reasons.append(f"File count changed by {count_diff}: {stored_count} -> {current_file_count}")

    last_refresh = _parse_timestamp(stored_state.get("last_refresh"))
    if last_refresh is not None:
        days = (now - last_refresh).total_seconds() / 86400
        if days > TIME_GRACE_DAYS:
            score += min(TIME_MAX_POINTS, math.floor(days * TIME_POINTS_PER_DAY))
            reasons.append(f"{math.floor(days)} days since last refresh")

    score = max(0, min(MAX_SCORE, score))
    return StalenessResult(
        score=score,
        reasons=reasons,
        current_state={"git_hash": current_git_hash, "file_count": current_file_count},
        stored_state={
            "git_hash": stored_hash,
            "file_count": stored_state.get("file_count"),
            "last_refresh": stored_state.get("last_refresh"),
        },
        **classify(score),
    )


def count_files_recursive(directory: Union[str, Path]) -> int:
    """Count files under ``directory``, skipping COUNT_SKIP_DIRS. Unreadable parts count as empty."""
    count = 0
    for _root, dirs, files in os.walk(directory, onerror=lambda e: None):
        dirs[:] = [d for d in dirs if d not in COUNT_SKIP_DIRS]
        count += len(files)
    return count


class StalenessChecker:
    """Gathers live project state and scores stored maps against it."""

    def get_current_git_hash(self, project_path: Union[str, Path]) -> str:
        return GitIntegration(Path(project_path)).get_head_hash() or NO_GIT

    def get_file_count(self, project_path: Union[str, Path]) -> int:
        """Tracked file count from git, falling back to a filesystem walk."""
        count = GitIntegration(Path(project_path)).count_tracked_files()
        if count is not None:
            return count
        return count_files_recursive(project_path)

    def get_current_state(self, project_path: Union[str, Path]) -> Dict[str, Any]:
        return {
            "git_hash": self.get_current_git_hash(project_path),
            "file_count": self.get_file_count(project_path),
        }

    def check_staleness(
        self,
        project_path: Union[str, Path],
        stored_metadata: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> StalenessResult:
        """Score a stored map against the live project.

        Args:
            project_path: Project root.
            stored_metadata: Map payload carrying a ``staleness`` block
                (normally the summary map).
            now: Reference time, for deterministic tests.
        """
        current = self.get_current_state(project_path)
        stored_state = (stored_metadata or {}).get("staleness") or {}
        return score_staleness(current["git_hash"], current["file_count"], stored_state, now)

    def needs_refresh(
        self,
        project_path: Union[str, Path],
        stored_metadata: Dict[str, Any],
        threshold: int = MODERATE_THRESHOLD,
    ) -> bool:
        return self.check_staleness(project_path, stored_metadata).score >= threshold


def build_staleness_block(git_hash: Optional[str], file_count: int, when: Optional[datetime] = None) -> Dict[str, Any]:
    """Staleness block stored in the summary map at generation time."""
    when = when or datetime.now(timezone.utc)
    return {
        "git_hash": git_hash or NO_GIT,
        "file_count": file_count,
        "last_refresh": when.isoformat(),
    }


def add_staleness_arguments(parser: argparse.ArgumentParser) -> None:
    """Add staleness command arguments to a parser.

    Args:
        parser: The argument parser to add arguments to.
    """
    parser.add_argument("path", nargs="?", default=".", help="Project root (default: .)")
    parser.add_argument("--map", help="Map file with a staleness block (default: the summary map)")
    parser.add_argument("--compact", action="store_true", help="Output compact JSON")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")


def run_staleness(args: argparse.Namespace) -> int:
    """Execute the staleness command.

    Returns:
        0 when maps are fresh or minor, 1 when stale or missing.
    """
    c = get_colors(no_color=args.no_color)
    map_file = Path(args.map) if args.map else MapPaths(args.path).map_path("summary")
    if not map_file.is_file():
        print(c.error(f"Error: no map found at {map_file}"), file=sys.stderr)
        return 1

    try:
        stored = load_map(map_file)
    except (InvalidFormatError, OSError) as e:
        print(c.error(f"Error: {e}"), file=sys.stderr)
        return 1

    result = StalenessChecker().check_staleness(args.path, stored)
    print(
        f"Staleness: {c.level(result.level, f'{result.score}/100 ({result.level})')} - {result.recommendation}",
        file=sys.stderr,
    )
    for reason in result.reasons:
        print(f"  - {reason}", file=sys.stderr)

    if args.compact:
        print(json.dumps(result.to_dict(), separators=(",", ":")))
    else:
        print(json.dumps(result.to_dict(), indent=2))
    return 1 if result.is_stale else 0
