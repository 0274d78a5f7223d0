"""
Schema validation for bmad-cli.

Two collaborators:
- JSON Schema validation (jsonschema) at data boundaries: config and
  checklist documents, loaded from bmad/schemas/<name>.schema.json
  (shipped as package data).
- Structural story validation delegated to the external ``yamale`` tool.
  A missing tool is a warning, not a failure.
"""

import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional

import jsonschema

from bmad.lib.cancel import CancelToken
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.shell import run_command

logger = logging.getLogger(__name__)

# Cache loaded schemas
_schema_cache: dict[str, dict] = {}

YAMALE_TIMEOUT = 60


def _get_schemas_dir() -> Path:
    """Get path to schemas directory."""
    return Path(__file__).parent.parent / "schemas"


def _load_schema(schema_name: str) -> dict:
    """Load schema by name, with caching."""
    if schema_name not in _schema_cache:
        schema_path = _get_schemas_dir() / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise BmadError(
                ErrorKind.VALIDATION,
                f"[{schema_name}] Schema file not found: {schema_path}",
                details={"predicate": "schema_exists", "path": str(schema_path)},
            )
        _schema_cache[schema_name] = json.loads(schema_path.read_text())
    return _schema_cache[schema_name]


def validate(data: Any, schema_name: str) -> None:
    """
    Validate data against named schema.

    Raises:
        BmadError(VALIDATION): with details {"predicate": <schema keyword>, "path": <dotted path>}
    """
    schema = _load_schema(schema_name)

    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise BmadError(
            ErrorKind.VALIDATION,
            f"[{schema_name}] '{e.validator}' check failed at {path}",
            details={"predicate": f"{schema_name}.{e.validator}", "path": path},
        ) from e


class StructuralValidator:
    """Validates a serialized story document against a yamale schema file."""

    def __init__(self, schema_path: Optional[Path], cancel: Optional[CancelToken] = None):
        self.schema_path = schema_path
        self.cancel = cancel

    def validate(self, yaml_content: str) -> list[str]:
        """Return a list of violations (empty when valid or when yamale is unavailable)."""
        if self.schema_path is None:
            logger.debug("No story schema configured - skipping structural validation")
            return []

        if not self.schema_path.exists():
            raise BmadError(
                ErrorKind.VALIDATION,
                f"Story schema not found: {self.schema_path}",
                details={"predicate": "schema_exists", "path": str(self.schema_path)},
            )

        if shutil.which("yamale") is None:
            logger.warning("yamale command not found - skipping structural validation")
            return []

        with tempfile.NamedTemporaryFile("w", suffix=".yaml", prefix="story-", delete=False) as tmp:
            tmp.write(yaml_content)
            data_path = Path(tmp.name)

        try:
            result = run_command(
                ["yamale", "-s", str(self.schema_path.resolve()), str(data_path)],
                timeout=YAMALE_TIMEOUT,
                cancel=self.cancel,
            )
        finally:
            try:
                data_path.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove temporary file {data_path}: {e}")

        if result.success:
            logger.info("Story document passed structural validation")
            return []

        violations = [
            line.strip() for line in result.output.splitlines()
            if line.strip() and not line.startswith("Validating")
        ]
        return violations or [f"yamale exited with code {result.returncode}"]

    def check(self, yaml_content: str) -> None:
        """Raise a VALIDATION error listing every violation."""
        violations = self.validate(yaml_content)
        if violations:
            raise BmadError(
                ErrorKind.VALIDATION,
                f"Story document failed structural validation: {'; '.join(violations)}",
                details={"predicate": "story_schema", "path": str(self.schema_path), "violations": violations},
            )
