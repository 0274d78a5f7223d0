"""Epic files: ``<epics_dir>/epic-NN-<slug>.yaml`` holding a ``stories`` list."""

import logging
import re
from pathlib import Path

import yaml

from bmad.lib.errors import BmadError, ErrorKind
from bmad.story.models import Story

logger = logging.getLogger(__name__)

STORY_NUMBER_RE = re.compile(r"^(\d+)\.(\d+)$")


def parse_story_number(story_number: str) -> tuple[int, int]:
    """Split ``N.M`` into (epic, index)."""
    match = STORY_NUMBER_RE.match(story_number.strip())
    if not match:
        raise BmadError(ErrorKind.PARSE, f"Invalid story number '{story_number}' (expected <epic>.<story>, e.g. 3.1)")
    return int(match.group(1)), int(match.group(2))


def find_epic_file(epics_dir: Path, epic_number: int) -> Path:
    pattern = f"epic-{epic_number:02d}-*.yaml"
    matches = sorted(epics_dir.glob(pattern))
    if not matches:
        raise BmadError(ErrorKind.STORE, f"No epic file matching {pattern} in {epics_dir}")
    if len(matches) > 1:
        names = ", ".join(m.name for m in matches)
        raise BmadError(ErrorKind.STORE, f"Multiple epic files match {pattern}: {names}")
    return matches[0]


def load_story_from_epic(epics_dir: Path, story_number: str) -> Story:
    """Load story ``N.M``: the M-th (1-based) entry of epic N's ``stories``."""
    epic_number, index = parse_story_number(story_number)
    path = find_epic_file(epics_dir, epic_number)

    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise BmadError(ErrorKind.STORE, f"Cannot read epic file {path}") from e
    except yaml.YAMLError as e:
        raise BmadError(ErrorKind.PARSE, f"Invalid YAML in epic file {path.name}") from e

    stories = (data or {}).get("stories") or []
    if index < 1 or index > len(stories):
        raise BmadError(
            ErrorKind.PARSE,
            f"Story {story_number} not found: epic {epic_number} has {len(stories)} stories",
        )

    entry = dict(stories[index - 1])
    entry.setdefault("id", story_number)
    story = Story.from_dict(entry)
    logger.info(f"Loaded story {story.id} '{story.title}' from {path.name}")
    return story
