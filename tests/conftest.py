"""Shared fixtures: a scripted AI client and a config built on the repo's prompts."""

from dataclasses import dataclass
from pathlib import Path

import pytest
import yaml

from bmad.lib.config import REQUIRED_TEMPLATES, load_config
from bmad.lib.prompts import clear_cache
from bmad.story.docs import ReferenceDocs
from bmad.story.models import AcceptanceCriterion, Story, StoryDocument

REPO_ROOT = Path(__file__).parent.parent
PROMPTS_DIR = REPO_ROOT / "prompts"


@dataclass
class Call:
    system_prompt: str
    user_prompt: str
    model: str
    mode: object


class FakeClient:
    """Replays scripted replies in order.

    A reply is a string, an exception to raise, or a callable taking
    (system_prompt, user_prompt) and returning the text.
    """

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls: list[Call] = []

    def execute(self, system_prompt, user_prompt, model, mode, cancel=None):
        self.calls.append(Call(system_prompt, user_prompt, model, mode))
        if not self.replies:
            raise AssertionError(f"Unexpected AI call #{len(self.calls)}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(system_prompt, user_prompt)
        return reply


def writes_yaml(path, payload, text="done"):
    """Reply that writes ``payload`` to ``path`` like the AI writing a side-channel file."""

    def reply(system_prompt, user_prompt):
        Path(path).write_text(yaml.safe_dump(payload, sort_keys=False))
        return text

    return reply


@pytest.fixture(autouse=True)
def _fresh_prompt_cache():
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def project(tmp_path):
    """A project directory with epics, a checklist and bmad-cli.yaml."""
    (tmp_path / "epics").mkdir()
    (tmp_path / "stories").mkdir()
    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "architecture.md").write_text("Layered architecture.\n")

    (tmp_path / "epics" / "epic-03-payments.yaml").write_text(yaml.safe_dump({
        "epic": 3,
        "stories": [
            {
                "title": "Pay by card",
                "as_a": "shopper",
                "i_want": "to pay with a card",
                "so_that": "I can finish my order",
                "acceptance_criteria": [
                    {"id": "1", "description": "Valid card is charged"},
                    {"id": "2", "description": "Declined card shows an error"},
                ],
            },
        ],
    }))

    (tmp_path / "checklist.yaml").write_text(yaml.safe_dump({
        "version": "1.0",
        "sections": [
            {
                "id": "template",
                "name": "Template",
                "criteria": [
                    {
                        "id": "who",
                        "name": "Persona",
                        "validation_prompts": [{"Q": "Is there a persona?", "A": "yes"}],
                    },
                ],
            },
        ],
    }))

    config = {
        "paths": {
            "run_dir_base": "tmp",
            "stories_dir": "stories",
            "epics_dir": "epics",
            "checklist": "checklist.yaml",
        },
        "templates": {name: str(PROMPTS_DIR / f"{name}.md") for name in REQUIRED_TEMPLATES},
        "documents": {"architecture": "docs/architecture.md"},
        "engine": {"type": "claude", "model": "sonnet", "timeout": 30},
    }
    (tmp_path / "bmad-cli.yaml").write_text(yaml.safe_dump(config))
    return tmp_path


@pytest.fixture
def config(project):
    return load_config(project / "bmad-cli.yaml")


@pytest.fixture
def run_dir(tmp_path):
    path = tmp_path / "run"
    path.mkdir()
    return path


@pytest.fixture
def docs(config):
    return ReferenceDocs(config.documents)


@pytest.fixture
def story_doc():
    story = Story(
        id="3.1",
        title="Pay by card",
        persona="shopper",
        want="to pay with a card",
        so_that="I can finish my order",
        acceptance_criteria=[
            AcceptanceCriterion(id="1", description="Valid card is charged"),
            AcceptanceCriterion(id="2", description="Declined card shows an error"),
        ],
    )
    doc = StoryDocument.initial(story)
    doc.dev_notes = {
        "technology_stack": {"source": "tech-stack.md", "description": "Python"},
        "architecture": {"source": "architecture.md", "description": "Layered"},
        "file_structure": {"source": "source-tree.md", "description": "payments/"},
    }
    return doc
