"""
Story generation stages.

Each stage is one Generator whose real output is a YAML file the AI writes
under the run directory (``<id>-<stage>.yaml``); the streamed reply is kept
only as a diagnostic dump.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from bmad.agents.modes import restricted_mode
from bmad.lib.cancel import CancelToken
from bmad.lib.config import Config
from bmad.lib.prompts import render_prompt
from bmad.lib.versions import dump_yaml
from bmad.runner.generator import Generator, output_path, side_channel_parser
from bmad.story.docs import ReferenceDocs
from bmad.story.models import QAResults, StoryDocument, Task, TestScenario, Testing
from bmad.story.validation import validate_dev_notes, validate_scenarios, validate_tasks

logger = logging.getLogger(__name__)


@dataclass
class StoryContext:
    """Collaborators shared by every story generator in one run."""
    config: Config
    client: Any
    run_dir: Path
    docs: ReferenceDocs
    cancel: Optional[CancelToken] = None


def _story_generator(
    ctx: StoryContext,
    doc: StoryDocument,
    name: str,
    key: str,
    convert: Callable[[Any], Any],
    validate: Optional[Callable[[Any], None]] = None,
) -> Generator:
    """Generator for stage ``name`` reading top-level ``key`` from its output file."""
    story_id = doc.story.id
    out_file = output_path(ctx.run_dir, story_id, name)
    read_key = side_channel_parser(out_file, key)

    def load_data() -> dict:
        return {
            "story": doc.story,
            "story_yaml": dump_yaml(doc.to_dict()),
            "output_file": out_file,
            "output_key": key,
            "run_dir": ctx.run_dir,
            "doc_paths": "\n".join(f"- {p}" for p in ctx.docs.paths_for()) or "(none)",
        }

    def build_prompts(data: dict) -> tuple[str, str]:
        system = render_prompt(ctx.config.template(f"{name}_system"), **data)
        user = render_prompt(ctx.config.template(name), reference=ctx.docs.section(), **data)
        return system, user

    return Generator(
        ctx.client,
        ctx.run_dir,
        story_id,
        name,
        load_data=load_data,
        build_prompts=build_prompts,
        parse_response=lambda response: convert(read_key(response)),
        validate=validate,
        model=ctx.config.engine.model,
        mode=restricted_mode(ctx.run_dir),
        cancel=ctx.cancel,
    )


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def generate_tasks(ctx: StoryContext, doc: StoryDocument) -> list[Task]:
    return _story_generator(
        ctx, doc, "tasks", "tasks",
        convert=lambda raw: [Task.from_dict(t) for t in _as_list(raw)],
        validate=validate_tasks,
    ).generate()


def generate_dev_notes(ctx: StoryContext, doc: StoryDocument) -> dict:
    return _story_generator(
        ctx, doc, "devnotes", "dev_notes",
        convert=lambda raw: raw,
        validate=validate_dev_notes,
    ).generate()


def generate_testing(ctx: StoryContext, doc: StoryDocument) -> Testing:
    return _story_generator(ctx, doc, "testing", "testing", convert=Testing.from_dict).generate()


def generate_scenarios(ctx: StoryContext, doc: StoryDocument) -> list[TestScenario]:
    def convert(raw: Any) -> list[TestScenario]:
        if isinstance(raw, dict):
            raw = raw.get("test_scenarios")
        return [TestScenario.from_dict(s) for s in _as_list(raw)]

    return _story_generator(
        ctx, doc, "scenarios", "scenarios",
        convert=convert,
        validate=lambda scenarios: validate_scenarios(doc, scenarios),
    ).generate()


def generate_qa_results(ctx: StoryContext, doc: StoryDocument) -> QAResults:
    return _story_generator(ctx, doc, "qa", "qa_results", convert=QAResults.from_dict).generate()

