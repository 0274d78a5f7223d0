"""Loads the checklist YAML (stages -> sections -> criteria -> validation_prompts)."""

import logging
from pathlib import Path

import yaml

from bmad.checklist.models import Checklist, Criterion, Prompt, Section
from bmad.lib import validate
from bmad.lib.errors import BmadError, ErrorKind

logger = logging.getLogger(__name__)


def _section(data: dict) -> Section:
    return Section(
        id=str(data["id"]),
        name=str(data.get("name") or data["id"]),
        prompts=[Prompt.from_dict(p) for p in data.get("validation_prompts") or []],
        criteria=[
            Criterion(
                id=str(c["id"]),
                name=str(c.get("name") or c["id"]),
                prompts=[Prompt.from_dict(p) for p in c.get("validation_prompts") or []],
            )
            for c in data.get("criteria") or []
        ],
    )


def parse_checklist(data: dict) -> Checklist:
    """Build a Checklist from an already-loaded document."""
    validate.validate(data, "checklist")

    sections_data = list(data.get("sections") or [])
    # Stages only group sections; paths stay section/criterion
    for stage in data.get("stages") or []:
        sections_data.extend(stage.get("sections") or [])

    checklist = Checklist(
        version=str(data.get("version") or ""),
        default_docs=[str(d) for d in data.get("default_docs") or []],
        sections=[_section(s) for s in sections_data],
    )
    logger.debug(
        f"Checklist loaded: {len(checklist.prompts())} prompt(s), {checklist.skipped_count()} skipped"
    )
    return checklist


def load_checklist(path: Path) -> Checklist:
    try:
        data = yaml.safe_load(path.read_text())
    except FileNotFoundError as e:
        raise BmadError(ErrorKind.CONFIG, f"Checklist not found: {path}") from e
    except OSError as e:
        raise BmadError(ErrorKind.STORE, f"Cannot read checklist {path}") from e
    except yaml.YAMLError as e:
        raise BmadError(ErrorKind.PARSE, f"Invalid YAML in checklist {path.name}") from e
    if not isinstance(data, dict):
        raise BmadError(ErrorKind.PARSE, f"Checklist {path.name} must be a mapping")
    return parse_checklist(data)
