"""Reference documents (architecture, coding standards, ...) injected into prompts."""

import logging
from pathlib import Path

from bmad.lib.prompts import build_reference_section

logger = logging.getLogger(__name__)


class ReferenceDocs:
    """Documents configured under ``documents:``, read once per run."""

    def __init__(self, paths: dict[str, Path]):
        self.paths = paths
        self._loaded: dict[str, str] | None = None

    def load(self) -> dict[str, str]:
        if self._loaded is None:
            self._loaded = {}
            for key, path in self.paths.items():
                try:
                    self._loaded[key] = path.read_text()
                except FileNotFoundError:
                    logger.warning(f"Reference document '{key}' not found: {path}")
                except OSError as e:
                    logger.warning(f"Cannot read reference document '{key}' ({path}): {e}")
            logger.debug(f"Loaded {len(self._loaded)} reference document(s)")
        return self._loaded

    def select(self, keys: list[str] | None = None) -> dict[str, str]:
        """Documents for ``keys`` (all when None); unknown keys are skipped."""
        docs = self.load()
        if keys is None:
            return dict(docs)
        selected = {}
        for key in keys:
            if key in docs:
                selected[key] = docs[key]
            else:
                logger.debug(f"Reference document '{key}' not available")
        return selected

    def section(self, keys: list[str] | None = None) -> str | None:
        return build_reference_section(self.select(keys))

    def paths_for(self, keys: list[str] | None = None) -> list[str]:
        """Paths of available documents, for prompts that let the AI read them itself."""
        docs = self.load()
        chosen = keys if keys is not None else list(self.paths)
        return [str(self.paths[k]) for k in chosen if k in docs]
