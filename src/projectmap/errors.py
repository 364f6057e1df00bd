"""Exception hierarchy for projectmap.

All errors raised by the map lifecycle derive from ProjectMapError so CLI
entry points can catch a single type and exit with a non-zero status.

Example:
    >>> from projectmap.errors import MapNotFoundError
    >>> try:
    ...     store.load("20240101-120000")
    ... except MapNotFoundError as e:
    ...     print(e.target)
"""

from typing import Optional


class ProjectMapError(Exception):
    """Base class for all projectmap errors."""


class MapNotFoundError(ProjectMapError):
    """A requested snapshot, history entry, map or maps directory is missing.

    Attributes:
        target: The id or path that could not be found.
    """

    def __init__(self, target: str, kind: str = "Map"):
        self.target = target
        self.kind = kind
        super().__init__(f"{kind} not found: {target}")


class InvalidFormatError(ProjectMapError):
    """A persisted payload could not be parsed or lacks required fields.

    Attributes:
        target: The id or path of the offending payload.
        reason: Short description of what was wrong.
    """

    def __init__(self, target: str, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"Invalid format in {target}: {reason}")


class LockTimeoutError(ProjectMapError):
    """A lock could not be acquired within its timeout.

    Attributes:
        name: Lock name.
        timeout: Timeout in seconds that elapsed.
    """

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"Failed to acquire lock '{name}' within {timeout:g}s")


class StorageError(ProjectMapError):
    """A filesystem operation failed while reading or writing persisted state.

    Attributes:
        operation: What was being attempted (e.g. 'save', 'acquire lock').
        target: The lock, snapshot or path involved.
    """

    def __init__(self, operation: str, target: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.target = target
        self.cause = cause
        message = f"Failed to {operation} '{target}'"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
