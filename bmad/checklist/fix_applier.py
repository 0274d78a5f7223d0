"""Applies an accepted fix prompt by letting the AI edit the next story version in place."""

import logging
from pathlib import Path
from typing import Optional

import yaml

from bmad.agents.modes import FULL_ACCESS
from bmad.lib.cancel import CancelToken
from bmad.lib.config import Config
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.prompts import render_prompt
from bmad.lib.versions import VersionStore
from bmad.runner.generator import Generator
from bmad.story.models import StoryDocument
from bmad.story.validation import validate_story_document

logger = logging.getLogger(__name__)


def load_story_version(path: Path) -> StoryDocument:
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise BmadError(ErrorKind.STORE, f"Cannot read {path}") from e
    except yaml.YAMLError as e:
        raise BmadError(ErrorKind.PARSE, f"Story file {path.name} is no longer valid YAML") from e
    return StoryDocument.from_dict(data)


class FixApplier:
    def __init__(self, config: Config, client, run_dir: Path, cancel: Optional[CancelToken] = None):
        self.config = config
        self.client = client
        self.run_dir = run_dir
        self.cancel = cancel

    def apply(self, store: VersionStore, fix_prompt: str, index: int, iteration: int) -> StoryDocument:
        """Copy the latest version forward, have the AI edit it, reload and validate."""
        target = store.reserve_next()
        logger.info(f"Applying fix to {target.name}")

        def build_prompts(data: dict) -> tuple[str, str]:
            system = render_prompt(self.config.template("fix_applier_system"), **data)
            user = render_prompt(self.config.template("fix_applier"), **data)
            return system, user

        return Generator(
            self.client,
            self.run_dir,
            store.entity_id,
            f"apply-{index:02d}-iter{iteration}",
            load_data=lambda: {"story_file": target, "fix_prompt": fix_prompt, "iteration": iteration},
            build_prompts=build_prompts,
            parse_response=lambda _response: load_story_version(target),
            validate=validate_story_document,
            model=self.config.engine.model,
            mode=FULL_ACCESS,
            cancel=self.cancel,
        ).generate()
