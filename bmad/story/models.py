"""
Story document model.

Dataclasses mirror the persisted YAML layout. ``to_dict`` gives the canonical
key order used for every snapshot; ``from_dict`` accepts what the AI or a
human may have written (extra keys are ignored, known aliases mapped).
"""

import re
from dataclasses import MISSING, asdict, dataclass, field, fields
from datetime import date
from typing import Any, Optional

from bmad.lib.errors import BmadError, ErrorKind

DEFAULT_STATUS = "Draft"
INITIAL_CHANGE = ("Initial story creation", "1.0.0", "bmad-cli")

_AC_REF = re.compile(r"(\d+)")


def _build(cls, data: Any, entity: str):
    """Instantiate dataclass ``cls`` from a mapping, naming missing fields."""
    if not isinstance(data, dict):
        raise BmadError(ErrorKind.PARSE, f"{entity} must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    required = [
        f.name for f in fields(cls)
        if f.default is MISSING and f.default_factory is MISSING
    ]
    missing = [name for name in required if data.get(name) is None]
    if missing:
        raise BmadError(ErrorKind.PARSE, f"{entity} is missing required field(s): {', '.join(missing)}")
    return cls(**{k: v for k, v in data.items() if k in known and v is not None})


def _ac_refs(values: Any) -> list[int]:
    """Accept [1, 2], ["AC-1", "AC2"] or "1, 2"."""
    if values is None:
        return []
    if isinstance(values, (int, str)):
        values = [values]
    refs = []
    for value in values:
        if isinstance(value, int):
            refs.append(value)
            continue
        match = _AC_REF.search(str(value))
        if match:
            refs.append(int(match.group(1)))
    return refs


@dataclass
class AcceptanceCriterion:
    id: str
    description: str

    @classmethod
    def from_dict(cls, data: Any) -> "AcceptanceCriterion":
        if isinstance(data, str):
            return cls(id="", description=data)
        return _build(cls, {**data, "id": str(data.get("id", ""))}, "acceptance criterion")


@dataclass
class Story:
    id: str
    title: str
    persona: str = ""
    want: str = ""
    so_that: str = ""
    status: str = DEFAULT_STATUS
    acceptance_criteria: list[AcceptanceCriterion] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Story":
        if not isinstance(data, dict):
            raise BmadError(ErrorKind.PARSE, "story must be a mapping")
        data = dict(data)
        # Epic files use the as_a / i_want spelling
        if "as_a" in data:
            data.setdefault("persona", data.pop("as_a"))
        if "i_want" in data:
            data.setdefault("want", data.pop("i_want"))
        data["id"] = str(data.get("id", "")) or None
        story = _build(cls, data, "story")
        story.acceptance_criteria = [AcceptanceCriterion.from_dict(ac) for ac in story.acceptance_criteria or []]
        return story


@dataclass
class Task:
    name: str
    ac_refs: list[int] = field(default_factory=list)
    subtasks: list[str] = field(default_factory=list)
    status: str = "pending"

    @classmethod
    def from_dict(cls, data: Any) -> "Task":
        if isinstance(data, dict) and "ac_refs" not in data and "acceptance_criteria" in data:
            data = {**data, "ac_refs": data["acceptance_criteria"]}
        task = _build(cls, data, "task")
        task.ac_refs = _ac_refs(task.ac_refs)
        task.subtasks = [str(s) for s in task.subtasks or []]
        return task


@dataclass
class Testing:
    test_location: str = ""
    frameworks: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)
    coverage: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Testing":
        return _build(cls, data or {}, "testing")


@dataclass
class TestScenario:
    """A Gherkin scenario; each step is a one-key mapping (given/when/then/and/but)."""
    __test__ = False

    id: str
    acceptance_criteria: list[str] = field(default_factory=list)
    steps: list[dict[str, str]] = field(default_factory=list)
    scenario_outline: bool = False
    examples: list[dict[str, Any]] = field(default_factory=list)
    level: str = ""
    priority: str = ""
    mitigates_risks: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "TestScenario":
        scenario = _build(cls, data, "test scenario")
        scenario.acceptance_criteria = [str(ac) for ac in scenario.acceptance_criteria or []]
        return scenario

    def to_dict(self) -> dict:
        data = asdict(self)
        # Optional keys are left out when empty
        for key in ("scenario_outline", "examples", "mitigates_risks"):
            if not data[key]:
                del data[key]
        return data


@dataclass
class QAResults:
    review_date: str = ""
    reviewed_by: str = ""
    assessment: dict[str, Any] = field(default_factory=dict)
    gate_status: str = ""
    gate_reference: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "QAResults":
        return _build(cls, data, "qa_results")


@dataclass
class ChangeLogEntry:
    date: str
    version: str
    description: str
    author: str

    @classmethod
    def from_dict(cls, data: Any) -> "ChangeLogEntry":
        return _build(cls, {k: str(v) for k, v in (data or {}).items()}, "change log entry")


@dataclass
class DevAgentRecord:
    agent_model_used: Optional[str] = None
    debug_log_references: list[str] = field(default_factory=list)
    completion_notes: list[str] = field(default_factory=list)
    file_list: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "DevAgentRecord":
        return _build(cls, data or {}, "dev_agent_record")


@dataclass
class StoryDocument:
    """Everything persisted for one story."""
    story: Story
    tasks: list[Task] = field(default_factory=list)
    dev_notes: dict[str, Any] = field(default_factory=dict)
    testing: Testing = field(default_factory=Testing)
    scenarios: list[TestScenario] = field(default_factory=list)
    change_log: list[ChangeLogEntry] = field(default_factory=list)
    qa_results: Optional[QAResults] = None
    dev_agent_record: DevAgentRecord = field(default_factory=DevAgentRecord)

    @classmethod
    def initial(cls, story: Story, today: Optional[date] = None) -> "StoryDocument":
        description, version, author = INITIAL_CHANGE
        entry = ChangeLogEntry(
            date=(today or date.today()).isoformat(),
            version=version,
            description=description,
            author=author,
        )
        return cls(story=story, change_log=[entry])

    def to_dict(self) -> dict:
        data = {
            "story": asdict(self.story),
            "tasks": [asdict(t) for t in self.tasks],
            "dev_notes": self.dev_notes,
            "testing": asdict(self.testing),
            "scenarios": {"test_scenarios": [s.to_dict() for s in self.scenarios]},
            "change_log": [asdict(c) for c in self.change_log],
        }
        if self.qa_results is not None:
            data["qa_results"] = asdict(self.qa_results)
        data["dev_agent_record"] = asdict(self.dev_agent_record)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "StoryDocument":
        if not isinstance(data, dict) or "story" not in data:
            raise BmadError(ErrorKind.PARSE, "Story document must be a mapping with a 'story' key")
        scenarios = data.get("scenarios") or {}
        if isinstance(scenarios, dict):
            scenarios = scenarios.get("test_scenarios") or []
        return cls(
            story=Story.from_dict(data["story"]),
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
            dev_notes=dict(data.get("dev_notes") or {}),
            testing=Testing.from_dict(data.get("testing")),
            scenarios=[TestScenario.from_dict(s) for s in scenarios],
            change_log=[ChangeLogEntry.from_dict(c) for c in data.get("change_log") or []],
            qa_results=QAResults.from_dict(data["qa_results"]) if data.get("qa_results") else None,
            dev_agent_record=DevAgentRecord.from_dict(data.get("dev_agent_record")),
        )
