#!/usr/bin/env python3
"""Directory-based locks for projectmap state.

A lock is the existence of a ``.<name>.lock`` directory under a base
directory. ``os.mkdir`` either creates it or fails with FileExistsError,
which gives mutual exclusion between independently started processes.
A lock directory older than ``stale_timeout`` is treated as abandoned and
may be reclaimed by any waiter.

Example:
    >>> locks = LockManager('/my/project/.projectmap')
    >>> with locks.lock('maps'):
    ...     write_maps()
"""

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar, Union

from .errors import LockTimeoutError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 5.0
DEFAULT_RETRY_INTERVAL = 0.05
DEFAULT_STALE_TIMEOUT = 30.0


@dataclass
class LockHandle:
    """Result of an acquisition attempt.

    Attributes:
        acquired: Whether the lock is now held by the caller.
        lock_dir: Backing directory when acquired, else None.
    """

    acquired: bool
    lock_dir: Optional[Path] = None
    _manager: Optional["LockManager"] = None
    _name: Optional[str] = None

    def release(self) -> None:
        """Release the lock. A no-op for handles that were never acquired."""
        if self.acquired and self._manager is not None and self._name is not None:
            self._manager.release_lock(self._name)
            self.acquired = False


class LockManager:
    """Creates and releases named directory locks under ``base_dir``.

    Attributes:
        base_dir: Directory that holds the lock directories.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)

    def lock_path(self, name: str) -> Path:
        return self.base_dir / f".{name}.lock"

    def acquire_lock(
        self,
        name: str,
        timeout: float = DEFAULT_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        stale_timeout: float = DEFAULT_STALE_TIMEOUT,
        wait: bool = True,
    ) -> LockHandle:
        """Try to take the named lock.

        Args:
            name: Lock name, e.g. ``'maps'``.
            timeout: Seconds to keep retrying before giving up.
            retry_interval: Seconds to sleep between attempts.
            stale_timeout: Age in seconds after which a lock is reclaimable.
            wait: If False, give up on the first contended attempt.

        Returns:
            LockHandle with ``acquired`` set accordingly.

        Raises:
            StorageError: On filesystem errors other than contention.
        """
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("create lock directory for", name, e) from e

        lock_dir = self.lock_path(name)
        start = time.monotonic()

        while True:
            try:
                os.mkdir(lock_dir)
                logger.debug("Acquired lock %s", lock_dir)
                return LockHandle(acquired=True, lock_dir=lock_dir, _manager=self, _name=name)
            except FileExistsError:
                pass
            except OSError as e:
                raise StorageError("acquire lock", name, e) from e

            try:
                age = time.time() - lock_dir.stat().st_mtime
            except FileNotFoundError:
                # Released between mkdir and stat
                continue
            except OSError as e:
                raise StorageError("acquire lock", name, e) from e

            if age > stale_timeout:
                logger.warning("Reclaiming stale lock %s (%.1fs old)", lock_dir, age)
                try:
                    os.rmdir(lock_dir)
                except OSError:
                    # Another waiter reclaimed it first
                    pass
                continue

            if not wait:
                return LockHandle(acquired=False)

            elapsed = time.monotonic() - start
            if elapsed >= timeout:
                logger.debug("Timed out waiting for lock %s", lock_dir)
                return LockHandle(acquired=False)

            time.sleep(min(retry_interval, timeout - elapsed))

    def release_lock(self, name: str) -> None:
        """Remove the lock directory. Already-released locks are not an error."""
        try:
            os.rmdir(self.lock_path(name))
        except OSError:
            pass

    def is_locked(self, name: str) -> bool:
        return self.lock_path(name).is_dir()

    def with_lock(self, name: str, fn: Callable[[], T], **options: Any) -> T:
        """Run ``fn`` while holding the named lock.

        Args:
            name: Lock name.
            fn: Zero-argument callable.
            **options: Passed to acquire_lock.

        Returns:
            Whatever ``fn`` returns.

        Raises:
            LockTimeoutError: If the lock is not acquired within the timeout.
        """
        with self.lock(name, **options):
            return fn()

    @contextmanager
    def lock(self, name: str, **options: Any) -> Iterator[LockHandle]:
        """Context manager form of with_lock.

        Locks are not reentrant: nesting the same name in one process
        waits on itself until the timeout.
        """
        handle = self.acquire_lock(name, **options)
        if not handle.acquired:
            raise LockTimeoutError(name, options.get("timeout", DEFAULT_TIMEOUT))
        try:
            yield handle
        finally:
            handle.release()
