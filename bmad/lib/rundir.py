"""Per-invocation run directory: <base>/YYYY-MM-DD-HH-MM[-N]/."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from bmad.lib.errors import BmadError, ErrorKind

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M"


@dataclass(frozen=True)
class RunDirectory:
    """Root for every artifact written by one invocation. Never auto-deleted."""
    path: Path

    @classmethod
    def create(cls, base: Path, now: Optional[datetime] = None) -> "RunDirectory":
        """Create a fresh timestamped directory under ``base``.

        Two invocations within the same minute get ``-2``, ``-3``, ... suffixes.
        """
        stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
        try:
            base.mkdir(parents=True, exist_ok=True)
            candidate = base / stamp
            suffix = 1
            while True:
                try:
                    candidate.mkdir()
                    break
                except FileExistsError:
                    suffix += 1
                    candidate = base / f"{stamp}-{suffix}"
        except OSError as e:
            raise BmadError(ErrorKind.STORE, f"Cannot create run directory under {base}") from e

        logger.debug(f"Run directory: {candidate}")
        return cls(candidate)

    def __str__(self):
        return str(self.path)
