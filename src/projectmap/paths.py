"""On-disk layout of persisted maps.

Maps for a project live in one directory, namespaced by project hash when a
shared home is used::

    <maps_dir>/<map-name>.json
    <maps_dir>/snapshots/<name>.json
    <maps_dir>/history/<YYYYMMDD-HHMMSS>.json

With ``PROJECTMAP_HOME`` (or an explicit ``base_dir``) the maps directory is
``<home>/<project-hash>``; otherwise it is ``<project>/.projectmap``.
"""

import os
from pathlib import Path
from typing import Optional, Union

from . import compute_project_hash
from .errors import StorageError

HOME_ENV_VAR = "PROJECTMAP_HOME"
LOCAL_DIRNAME = ".projectmap"


class MapPaths:
    """Resolves every persisted-state path for one project.

    Attributes:
        project_root: Absolute project root.
        project_hash: Short hash of the project root.
        maps_dir: Directory holding the current map generation.
    """

    def __init__(self, project_root: Union[str, Path], base_dir: Optional[Union[str, Path]] = None):
        self.project_root = Path(project_root).resolve()
        self.project_hash = compute_project_hash(self.project_root)

        if base_dir is None and os.environ.get(HOME_ENV_VAR):
            base_dir = os.environ[HOME_ENV_VAR]

        if base_dir is not None:
            self.maps_dir = Path(base_dir).expanduser().resolve() / self.project_hash
        else:
            self.maps_dir = self.project_root / LOCAL_DIRNAME

    @property
    def snapshots_dir(self) -> Path:
        return self.maps_dir / "snapshots"

    @property
    def history_dir(self) -> Path:
        return self.maps_dir / "history"

    @property
    def lock_dir(self) -> Path:
        return self.maps_dir

    def map_path(self, name: str) -> Path:
        return self.maps_dir / f"{name}.json"

    def ensure_directories(self) -> None:
        """Create the maps, snapshots and history directories if missing."""
        for directory in (self.maps_dir, self.snapshots_dir, self.history_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError("create directory", str(directory), e) from e
