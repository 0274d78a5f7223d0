"""
Story factory: epic entry -> fully generated, validated story document.

Stages run in order (tasks, devnotes, testing, scenarios, qa); each result
is saved as the next version under the run directory.
"""

import logging
from pathlib import Path
from typing import Callable

import yaml

from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.git import slugify
from bmad.lib.validate import StructuralValidator
from bmad.lib.versions import VersionStore, dump_yaml
from bmad.story import generators
from bmad.story.epics import load_story_from_epic
from bmad.story.generators import StoryContext
from bmad.story.models import StoryDocument

logger = logging.getLogger(__name__)


def story_filename(doc: StoryDocument) -> str:
    return f"{doc.story.id}-{slugify(doc.story.title)}.yaml"


# (stage, generate, document attribute)
STAGES: list[tuple[str, Callable, str]] = [
    ("tasks", generators.generate_tasks, "tasks"),
    ("devnotes", generators.generate_dev_notes, "dev_notes"),
    ("testing", generators.generate_testing, "testing"),
    ("scenarios", generators.generate_scenarios, "scenarios"),
    ("qa", generators.generate_qa_results, "qa_results"),
]


class StoryFactory:
    def __init__(self, ctx: StoryContext):
        self.ctx = ctx

    def create(self, story_number: str) -> tuple[StoryDocument, VersionStore]:
        """Generate every section of story ``story_number``."""
        config = self.ctx.config
        story = load_story_from_epic(config.epics_dir, story_number)
        doc = StoryDocument.initial(story)

        store = VersionStore(self.ctx.run_dir, story.id)
        store.save_initial(doc.to_dict())

        for stage, generate, attr in STAGES:
            if self.ctx.cancel is not None:
                self.ctx.cancel.raise_if_cancelled(stage)
            logger.info(f"Story {story.id}: generating {stage}")
            setattr(doc, attr, generate(self.ctx, doc))
            path = store.save_next(doc.to_dict())
            logger.info(f"Story {story.id}: {stage} saved to {path.name}")

        StructuralValidator(config.story_schema, cancel=self.ctx.cancel).check(dump_yaml(doc.to_dict()))
        return doc, store

    def write(self, doc: StoryDocument) -> Path:
        """Write the document to the stories directory."""
        stories_dir = self.ctx.config.stories_dir
        path = stories_dir / story_filename(doc)
        try:
            stories_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(dump_yaml(doc.to_dict()))
        except OSError as e:
            raise BmadError(ErrorKind.STORE, f"Cannot write story file {path}") from e
        logger.info(f"Story written to {path}")
        return path


def find_story_file(stories_dir: Path, story_number: str) -> Path:
    """Locate ``<stories_dir>/<N.M>-*.yaml``."""
    matches = sorted(stories_dir.glob(f"{story_number}-*.yaml"))
    if not matches:
        raise BmadError(ErrorKind.STORE, f"No story file for {story_number} in {stories_dir}")
    if len(matches) > 1:
        logger.warning(f"Multiple story files for {story_number}, using {matches[0].name}")
    return matches[0]


def load_story_file(path: Path) -> StoryDocument:
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise BmadError(ErrorKind.STORE, f"Cannot read story file {path}") from e
    except yaml.YAMLError as e:
        raise BmadError(ErrorKind.PARSE, f"Invalid YAML in story file {path.name}") from e
    return StoryDocument.from_dict(data)
