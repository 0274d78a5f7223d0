"""
Version store: numbered snapshots of one entity inside a run directory.

Files are named ``<prefix>-<id>-vNN.yaml`` and numbered 01, 02, ... with no
gaps. Not safe for concurrent writers.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from bmad.lib.errors import BmadError, ErrorKind

logger = logging.getLogger(__name__)

FILE_MODE = 0o600


def dump_yaml(payload: Any) -> str:
    """Canonical serialization used for every persisted document."""
    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True, default_flow_style=False, width=100)


class VersionStore:
    """Snapshots of one entity, scoped to one run directory."""

    def __init__(self, run_dir: Path, entity_id: str, prefix: str = "story"):
        self.run_dir = Path(run_dir)
        self.entity_id = entity_id
        self.prefix = prefix
        self._current = 0

    def path_for(self, version: int) -> Path:
        return self.run_dir / f"{self.prefix}-{self.entity_id}-v{version:02d}.yaml"

    def current_version(self) -> int:
        return self._current

    def latest_path(self) -> Path:
        if self._current == 0:
            raise BmadError(ErrorKind.STORE, f"No versions saved yet for {self.prefix} {self.entity_id}")
        return self.path_for(self._current)

    def save_initial(self, payload: Any) -> Path:
        """Write v01 and reset the counter."""
        self._current = 0
        return self.save_next(payload)

    def save_next(self, payload: Any) -> Path:
        """Write the next version and return its path."""
        version = self._current + 1
        path = self.path_for(version)
        self._write(path, dump_yaml(payload))
        self._current = version
        logger.debug(f"Saved {path.name}")
        return path

    def reserve_next(self) -> Path:
        """Copy the latest version forward and return the new path.

        Used when an external writer (the fix applier) edits the file in place.
        """
        source = self.latest_path()
        try:
            content = source.read_text()
        except OSError as e:
            raise BmadError(ErrorKind.STORE, f"Cannot read {source}") from e
        version = self._current + 1
        path = self.path_for(version)
        self._write(path, content)
        self._current = version
        return path

    def load_latest(self) -> Any:
        path = self.latest_path()
        try:
            return yaml.safe_load(path.read_text())
        except OSError as e:
            raise BmadError(ErrorKind.STORE, f"Cannot read {path}") from e
        except yaml.YAMLError as e:
            raise BmadError(ErrorKind.PARSE, f"Invalid YAML in {path.name}") from e

    def _write(self, path: Path, content: str) -> None:
        try:
            self.run_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.chmod(path, FILE_MODE)
        except OSError as e:
            raise BmadError(ErrorKind.STORE, f"Cannot write {path}") from e
