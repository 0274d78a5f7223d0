"""
Logging setup for bmad-cli.

Every record goes to a JSON-lines file in the run directory. The console
gets INFO and above on stdout; DEBUG=1 adds a verbose stderr handler.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOG_FILENAME = "bmad-cli.log.json"

# Marker attribute so repeated configure_logging() calls replace our handlers
_HANDLER_MARK = "_bmad_handler"


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def debug_enabled() -> bool:
    return os.environ.get("DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(run_dir: Optional[Path] = None, debug: Optional[bool] = None) -> None:
    """Install file and console handlers on the root logger."""
    if debug is None:
        debug = debug_enabled()

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(logging.DEBUG)

    handlers: list[logging.Handler] = []

    if run_dir is not None:
        file_handler = logging.FileHandler(Path(run_dir) / LOG_FILENAME)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        handlers.append(file_handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    handlers.append(console)

    if debug:
        verbose = logging.StreamHandler(sys.stderr)
        verbose.setLevel(logging.DEBUG)
        verbose.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handlers.append(verbose)

    for handler in handlers:
        setattr(handler, _HANDLER_MARK, True)
        root.addHandler(handler)
