#!/usr/bin/env python3
"""Persisted bundles of maps.

A MapStore keeps one compressed JSON file per entry inside a directory.
Every entry is wrapped in the same envelope::

    {
        "version": "1.0",
        "id": "...",
        "project_root": "/abs/path",
        "project_hash": "...",
        "timestamp": "2024-05-01T12:00:00.000000+00:00",
        "metadata": {...},
        "maps": {...}
    }

Writes hold the store's lock and go through an atomic temp-file move, so
concurrent readers never observe a partially written entry.
"""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .compression import load_map, minify, save_map
from .config import ConfigResolver
from .errors import InvalidFormatError, MapNotFoundError, StorageError
from .locks import LockManager
from .paths import MapPaths

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = "1.0"

_VALID_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MapStore:
    """Shared save/load/list/delete/prune contract for snapshots and history.

    Subclasses set ``kind`` and ``lock_name`` and pick their directory.

    Attributes:
        paths: MapPaths of the owning project.
        directory: Directory holding this store's entries.
    """

    kind = "Entry"
    lock_name = "store"

    def __init__(
        self,
        project_root: Union[str, Path],
        directory: Path,
        paths: Optional[MapPaths] = None,
        config: Optional[ConfigResolver] = None,
    ):
        self.paths = paths if paths is not None else MapPaths(project_root)
        self.project_root = self.paths.project_root
        self.project_hash = self.paths.project_hash
        self.directory = directory
        self.config = config
        self.locks = LockManager(self.paths.lock_dir)

    def entry_path(self, entry_id: str) -> Path:
        if entry_id.endswith(".json"):
            entry_id = entry_id[: -len(".json")]
        if not _VALID_ID.match(entry_id):
            raise InvalidFormatError(entry_id, f"invalid {self.kind.lower()} id")
        return self.directory / f"{entry_id}.json"

    def _compression_level(self, envelope: Dict[str, Any]) -> Optional[int]:
        if self.config is None:
            return None
        return self.config.get_compression_level(len(minify(envelope).encode("utf-8")))

    def _write(
        self,
        entry_id: Union[str, Callable[[], str]],
        maps: Dict[str, Any],
        metadata: Dict[str, Any],
        timestamp: datetime,
    ) -> str:
        """Write one entry under the store's lock.

        ``entry_id`` may be a callable; it is then called with the lock held,
        so ids chosen from the directory contents cannot race another writer.

        Returns:
            The id written.
        """
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"create {self.kind.lower()} directory", str(self.directory), e) from e

        with self.locks.lock(self.lock_name):
            if callable(entry_id):
                entry_id = entry_id()
            path = self.entry_path(entry_id)
            envelope = {
                "version": ENVELOPE_VERSION,
                "id": entry_id,
                "project_root": str(self.project_root),
                "project_hash": self.project_hash,
                "timestamp": timestamp.isoformat(),
                "metadata": metadata,
                "maps": maps,
            }
            save_map(path, envelope, self._compression_level(envelope))
        logger.debug("Saved %s %s to %s", self.kind.lower(), entry_id, path)
        return entry_id

    def load(self, entry_id: str) -> Dict[str, Any]:
        """Load one entry.

        Raises:
            MapNotFoundError: If the entry does not exist.
            InvalidFormatError: If it cannot be parsed or has no ``maps`` field.
            StorageError: On other read failures.
        """
        path = self.entry_path(entry_id)
        if not path.is_file():
            raise MapNotFoundError(entry_id, self.kind)

        try:
            data = load_map(path)
        except FileNotFoundError as e:
            raise MapNotFoundError(entry_id, self.kind) from e
        except InvalidFormatError as e:
            raise InvalidFormatError(entry_id, e.reason) from e
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"load {self.kind.lower()}", entry_id, e) from e

        if not isinstance(data, dict) or "maps" not in data:
            raise InvalidFormatError(entry_id, "missing 'maps' field")

        stored_hash = data.get("project_hash")
        if stored_hash != self.project_hash:
            logger.warning(
                "%s %s has project hash %s, expected %s; it may belong to another project",
                self.kind,
                entry_id,
                stored_hash,
                self.project_hash,
            )
        return data

    def list(self) -> List[Dict[str, Any]]:
        """List entries newest first as ``{id, timestamp, metadata}`` dicts.

        Unreadable entries are skipped with a warning.
        """
        if not self.directory.is_dir():
            return []

        entries = []
        for path in self.directory.glob("*.json"):
            try:
                data = load_map(path)
                if not isinstance(data, dict):
                    raise InvalidFormatError(path.name, "not an object")
            except (InvalidFormatError, OSError, UnicodeDecodeError) as e:
                logger.warning("Skipping unreadable %s %s: %s", self.kind.lower(), path.name, e)
                continue
            entries.append(
                {
                    "id": data.get("id") or path.stem,
                    "timestamp": data.get("timestamp") or "",
                    "metadata": data.get("metadata") or {},
                }
            )

        entries.sort(key=lambda e: (e["timestamp"], e["id"]), reverse=True)
        return entries

    def exists(self, entry_id: str) -> bool:
        try:
            return self.entry_path(entry_id).is_file()
        except InvalidFormatError:
            return False

    def delete(self, entry_id: str) -> None:
        """Delete an entry. Deleting a missing entry is a no-op.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        path = self.entry_path(entry_id)
        with self.locks.lock(self.lock_name):
            self._remove(entry_id, path)

    def _remove(self, entry_id: str, path: Optional[Path] = None) -> None:
        """Unlink one entry; the caller holds the store's lock."""
        path = path or self.entry_path(entry_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"delete {self.kind.lower()}", entry_id, e) from e

    def prune(self, max_count: int) -> int:
        """Keep the ``max_count`` newest entries and delete the rest.

        A failure to delete one entry is logged and the rest are still tried.

        Returns:
            Number of entries actually deleted.
        """
        if not self.directory.is_dir():
            return 0

        deleted = 0
        with self.locks.lock(self.lock_name):
            entries = self.list()
            for entry in entries[max(max_count, 0):]:
                try:
                    self._remove(entry["id"])
                    deleted += 1
                except (StorageError, InvalidFormatError) as e:
                    logger.warning("Failed to delete %s %s: %s", self.kind.lower(), entry["id"], e)
        return deleted
