"""
Configuration loader for bmad-cli.

Reads bmad-cli.yaml, validates it against bmad/schemas/config.schema.json and
resolves every path relative to the directory holding the file.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from bmad.lib import validate
from bmad.lib.errors import BmadError, ErrorKind

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "bmad-cli.yaml"
CONFIG_ENV_VAR = "BMAD_CONFIG"

DEFAULT_ENGINE = "claude"
DEFAULT_MODEL = "sonnet"
DEFAULT_AI_TIMEOUT = 600
DEFAULT_APPROVAL_THRESHOLD = 5
DEFAULT_REQUIREMENTS = "docs/requirements.yaml"
DEFAULT_TESTS_DIR = "tests"
DEFAULT_IMPLEMENT_ATTEMPTS = 5

# Templates every command may ask for. Missing entries fail at load time
# rather than halfway through a pipeline.
REQUIRED_TEMPLATES = [
    "heuristic", "heuristic_system",
    "implement", "implement_system",
    "tasks", "tasks_system",
    "devnotes", "devnotes_system",
    "testing", "testing_system",
    "scenarios", "scenarios_system",
    "qa", "qa_system",
    "checklist", "checklist_system",
    "fix_generator", "fix_generator_system",
    "fix_applier", "fix_applier_system",
    "implement_story", "implement_story_system",
    "merge_scenarios", "merge_scenarios_system",
    "generate_tests", "generate_tests_system",
    "validate_tests", "validate_tests_system",
]


@dataclass
class EngineConfig:
    type: str = DEFAULT_ENGINE
    model: str = DEFAULT_MODEL
    timeout: int = DEFAULT_AI_TIMEOUT


@dataclass
class Config:
    """Loaded bmad-cli.yaml."""
    path: Path
    run_dir_base: Path
    stories_dir: Path
    epics_dir: Path
    checklist: Path
    story_schema: Optional[Path]
    templates: dict[str, Path]
    documents: dict[str, Path]
    engine: EngineConfig = field(default_factory=EngineConfig)
    approval_threshold: int = DEFAULT_APPROVAL_THRESHOLD
    max_clarification_rounds: Optional[int] = None
    requirements: Optional[Path] = None
    tests_dir: Optional[Path] = None
    test_command: Optional[str] = None
    max_implement_attempts: int = DEFAULT_IMPLEMENT_ATTEMPTS

    def template(self, name: str) -> Path:
        """Look up a template path in the registry."""
        try:
            return self.templates[name]
        except KeyError:
            raise BmadError(ErrorKind.CONFIG, f"No template registered for '{name}'") from None


def find_config(explicit: Optional[str] = None) -> Path:
    """Locate the config file: --config, then $BMAD_CONFIG, then ./bmad-cli.yaml."""
    candidate = explicit or os.environ.get(CONFIG_ENV_VAR) or CONFIG_FILENAME
    path = Path(candidate).expanduser()
    if not path.exists():
        raise BmadError(ErrorKind.CONFIG, f"Config file not found: {path}")
    return path


def _resolve(base: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


def load_config(path: Path) -> Config:
    """Load, validate and resolve a config file."""
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise BmadError(ErrorKind.CONFIG, f"Cannot read config file {path}") from e
    except yaml.YAMLError as e:
        raise BmadError(ErrorKind.CONFIG, f"Invalid YAML in config file {path}") from e

    if not isinstance(data, dict):
        raise BmadError(ErrorKind.CONFIG, f"Config file {path} must contain a mapping")

    try:
        validate.validate(data, "config")
    except BmadError as e:
        raise BmadError(ErrorKind.CONFIG, f"Invalid config {path}: {e.message}", details=e.details) from e

    base = path.resolve().parent
    paths = data["paths"]

    templates = {name: _resolve(base, p) for name, p in (data.get("templates") or {}).items()}
    missing = [name for name in REQUIRED_TEMPLATES if name not in templates]
    if missing:
        raise BmadError(ErrorKind.CONFIG, f"Missing required template entries: {', '.join(missing)}")

    engine_data = data.get("engine") or {}
    triage = data.get("triage") or {}
    fix_loop = data.get("fix_loop") or {}
    testing = data.get("testing") or {}

    config = Config(
        path=path,
        run_dir_base=_resolve(base, paths.get("run_dir_base", "tmp")),
        stories_dir=_resolve(base, paths["stories_dir"]),
        epics_dir=_resolve(base, paths["epics_dir"]),
        checklist=_resolve(base, paths["checklist"]),
        story_schema=_resolve(base, paths["story_schema"]) if paths.get("story_schema") else None,
        templates=templates,
        documents={key: _resolve(base, p) for key, p in (data.get("documents") or {}).items()},
        engine=EngineConfig(
            type=engine_data.get("type", DEFAULT_ENGINE),
            model=engine_data.get("model", DEFAULT_MODEL),
            timeout=int(engine_data.get("timeout", DEFAULT_AI_TIMEOUT)),
        ),
        approval_threshold=int(triage.get("approval_threshold", DEFAULT_APPROVAL_THRESHOLD)),
        max_clarification_rounds=fix_loop.get("max_clarification_rounds"),
        requirements=_resolve(base, paths.get("requirements", DEFAULT_REQUIREMENTS)),
        tests_dir=_resolve(base, paths.get("tests_dir", DEFAULT_TESTS_DIR)),
        test_command=testing.get("command"),
        max_implement_attempts=int(testing.get("max_attempts", DEFAULT_IMPLEMENT_ATTEMPTS)),
    )
    logger.debug(f"Loaded config from {path} (engine={config.engine.type})")
    return config
