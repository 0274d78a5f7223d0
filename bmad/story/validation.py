"""Semantic checks on story documents. Any violation is fatal."""

import logging
from typing import Any

from bmad.lib.errors import BmadError, ErrorKind
from bmad.story.models import StoryDocument, Task, TestScenario

logger = logging.getLogger(__name__)

MANDATORY_DEV_NOTES = ("technology_stack", "architecture", "file_structure")
# Sub-documents that must carry source + description whenever present
SOURCED_DEV_NOTES = MANDATORY_DEV_NOTES + ("configuration", "performance_requirements")
SOURCED_FIELDS = ("source", "description")


def _violation(message: str, predicate: str, path: str) -> BmadError:
    return BmadError(ErrorKind.VALIDATION, message, details={"predicate": predicate, "path": path})


def validate_dev_notes(dev_notes: Any) -> None:
    if not isinstance(dev_notes, dict):
        raise _violation("dev_notes must be a mapping", "dev_notes_is_mapping", "dev_notes")

    for entity in MANDATORY_DEV_NOTES:
        if entity not in dev_notes:
            raise _violation(
                f"mandatory entity '{entity}' is missing from dev_notes",
                "dev_notes_mandatory_entity",
                f"dev_notes.{entity}",
            )

    for entity in SOURCED_DEV_NOTES:
        if entity not in dev_notes:
            continue
        value = dev_notes[entity]
        if not isinstance(value, dict):
            raise _violation(
                f"entity '{entity}' must be a mapping, got {type(value).__name__}",
                "dev_notes_entity_is_mapping",
                f"dev_notes.{entity}",
            )
        for name in SOURCED_FIELDS:
            if name not in value:
                raise _violation(
                    f"entity '{entity}' is missing mandatory '{name}' field",
                    "dev_notes_source_description",
                    f"dev_notes.{entity}.{name}",
                )


def validate_tasks(tasks: list[Task]) -> None:
    if not tasks:
        raise _violation("AI generated no tasks", "tasks_not_empty", "tasks")
    for i, task in enumerate(tasks):
        if not task.name.strip():
            raise _violation(f"task {i + 1} has an empty name", "task_has_name", f"tasks[{i}].name")


def uncovered_acceptance_criteria(doc: StoryDocument, scenarios: list[TestScenario]) -> list[str]:
    """AC ids not referenced by any scenario."""
    referenced = {ac.strip().upper() for s in scenarios for ac in s.acceptance_criteria}
    return [
        ac.id for ac in doc.story.acceptance_criteria
        if ac.id and ac.id.strip().upper() not in referenced
    ]


def validate_scenarios(doc: StoryDocument, scenarios: list[TestScenario]) -> None:
    if not scenarios:
        raise _violation("AI generated no test scenarios", "scenarios_not_empty", "scenarios.test_scenarios")
    for i, scenario in enumerate(scenarios):
        if not scenario.steps:
            raise _violation(
                f"scenario '{scenario.id}' has no steps",
                "scenario_has_steps",
                f"scenarios.test_scenarios[{i}].steps",
            )
    uncovered = uncovered_acceptance_criteria(doc, scenarios)
    if uncovered:
        logger.warning(f"Acceptance criteria without a test scenario: {', '.join(uncovered)}")


def validate_story_document(doc: StoryDocument) -> None:
    """Checks for a whole document: after an in-place fix and before implementing."""
    if not doc.story.title.strip():
        raise _violation("story title is empty", "story_has_title", "story.title")
    validate_dev_notes(doc.dev_notes)
