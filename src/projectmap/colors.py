#!/usr/bin/env python3
"""Terminal colors for projectmap status lines and diff reports.

Status output goes to stderr, so detection looks at stderr rather than stdout.
Respects NO_COLOR (https://no-color.org/) and FORCE_COLOR.

Example:
    >>> from projectmap.colors import get_colors
    >>> c = get_colors()
    >>> print(c.added("+ src/new.py"), file=sys.stderr)
"""

import os
import sys
from typing import Optional


class Colors:
    """Maps output roles (added, removed, staleness levels, ...) to ANSI styles.

    Attributes:
        enabled: Whether escape codes are emitted.
    """

    RESET = "\033[0m"
    BOLD = "\033[1m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"

    STYLES = {
        "added": GREEN,
        "removed": RED,
        "modified": YELLOW,
        "path": CYAN,
        "heading": BOLD,
        "count": GREEN,
        "warning": YELLOW,
        "success": BOLD + GREEN,
        "error": BOLD + RED,
        # staleness levels
        "fresh": GREEN,
        "minor": CYAN,
        "moderate": YELLOW,
        "critical": BOLD + RED,
    }

    def __init__(self, enabled: Optional[bool] = None):
        self.enabled = detect_color_support() if enabled is None else enabled

    def paint(self, role: str, text: str) -> str:
        """Wrap text in the style for ``role``; unknown roles are left plain."""
        style = self.STYLES.get(role)
        if not self.enabled or not style:
            return text
        return f"{style}{text}{self.RESET}"

    def added(self, text: str) -> str:
        return self.paint("added", text)

    def removed(self, text: str) -> str:
        return self.paint("removed", text)

    def modified(self, text: str) -> str:
        return self.paint("modified", text)

    def path(self, text: str) -> str:
        return self.paint("path", text)

    def heading(self, text: str) -> str:
        return self.paint("heading", text)

    def count(self, value) -> str:
        return self.paint("count", str(value))

    def success(self, text: str) -> str:
        return self.paint("success", text)

    def error(self, text: str) -> str:
        return self.paint("error", text)

    def warning(self, text: str) -> str:
        return self.paint("warning", text)

    def level(self, level: str, text: Optional[str] = None) -> str:
        """Color text by staleness level (fresh, minor, moderate, critical)."""
        return self.paint(level, level if text is None else text)


def detect_color_support(stream=None) -> bool:
    """Decide from the environment whether ``stream`` (default stderr) gets colors."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    stream = stream or sys.stderr
    if not hasattr(stream, "isatty") or not stream.isatty():
        return False
    return os.environ.get("TERM", "") != "dumb"


def get_colors(no_color: bool = False) -> Colors:
    """Colors for CLI output; ``no_color`` comes from the --no-color flag."""
    return Colors(enabled=False) if no_color else Colors()
