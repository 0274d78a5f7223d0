"""Checklist, validation results and the aggregated report."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

PERCENT = 100

STATUS_NEEDS_ATTENTION = "NEEDS ATTENTION"
STATUS_ACCEPTABLE = "ACCEPTABLE WITH WARNINGS"
STATUS_PASSED = "PASSED"


class Status(Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"
    SKIP = "SKIP"


@dataclass
class Prompt:
    """One Q/A validation prompt. YAML uses upper-case ``Q`` and ``A``."""
    question: str
    expected_answer: str
    rationale: str = ""
    skip: str = ""
    action_if_fail: str = ""
    docs: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Prompt":
        return cls(
            question=str(data.get("Q", data.get("question", ""))),
            expected_answer=str(data.get("A", data.get("expected_answer", ""))),
            rationale=str(data.get("rationale") or ""),
            skip=str(data.get("skip") or ""),
            action_if_fail=str(data.get("action_if_fail") or ""),
            docs=[str(d) for d in data.get("docs") or []],
        )

    @property
    def skipped(self) -> bool:
        return bool(self.skip.strip())


@dataclass
class Criterion:
    id: str
    name: str
    prompts: list[Prompt] = field(default_factory=list)


@dataclass
class Section:
    id: str
    name: str
    prompts: list[Prompt] = field(default_factory=list)
    criteria: list[Criterion] = field(default_factory=list)


@dataclass
class PromptWithContext:
    """A prompt tagged with where it lives in the checklist."""
    section_path: str
    section_name: str
    prompt: Prompt
    default_docs: list[str] = field(default_factory=list)

    @property
    def effective_docs(self) -> list[str]:
        return self.prompt.docs or self.default_docs


@dataclass
class Checklist:
    version: str = ""
    default_docs: list[str] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)

    def _all(self) -> list[PromptWithContext]:
        result = []
        for section in self.sections:
            for prompt in section.prompts:
                result.append(PromptWithContext(section.id, section.name, prompt, self.default_docs))
            for criterion in section.criteria:
                for prompt in criterion.prompts:
                    result.append(PromptWithContext(
                        f"{section.id}/{criterion.id}",
                        f"{section.name} / {criterion.name}",
                        prompt,
                        self.default_docs,
                    ))
        return result

    def prompts(self) -> list[PromptWithContext]:
        """Every prompt that is not marked skip, in checklist order."""
        return [p for p in self._all() if not p.prompt.skipped]

    def skipped_count(self) -> int:
        return sum(1 for p in self._all() if p.prompt.skipped)


@dataclass
class ValidationResult:
    section_path: str
    question: str
    expected: str
    actual: str
    status: Status
    rationale: str = ""
    fix_prompt: Optional[str] = None
    docs: list[str] = field(default_factory=list)
    action_if_fail: str = ""


@dataclass
class Report:
    story_id: str
    story_title: str
    results: list[ValidationResult] = field(default_factory=list)
    checklist_skipped: int = 0

    def _count(self, status: Status) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def total_prompts(self) -> int:
        return len(self.results)

    @property
    def pass_count(self) -> int:
        return self._count(Status.PASS)

    @property
    def warn_count(self) -> int:
        return self._count(Status.WARN)

    @property
    def fail_count(self) -> int:
        return self._count(Status.FAIL)

    @property
    def skip_count(self) -> int:
        """Prompts skipped by the checklist plus results the evaluator marked SKIP."""
        return self.checklist_skipped + self._count(Status.SKIP)

    @property
    def evaluated_count(self) -> int:
        """Denominator of the pass rate: results not marked SKIP."""
        return self.total_prompts - self._count(Status.SKIP)

    @property
    def pass_rate(self) -> float:
        if self.evaluated_count == 0:
            return 0.0
        return self.pass_count * PERCENT / self.evaluated_count

    @property
    def overall_status(self) -> str:
        if self.fail_count:
            return STATUS_NEEDS_ATTENTION
        if self.warn_count:
            return STATUS_ACCEPTABLE
        return STATUS_PASSED

    @property
    def all_passed(self) -> bool:
        return self.fail_count == 0

    def first_failure(self) -> Optional[tuple[int, ValidationResult]]:
        """(1-based index, result) of the first FAIL."""
        for i, result in enumerate(self.results, 1):
            if result.status is Status.FAIL:
                return i, result
        return None


@dataclass
class ClarifyQuestion:
    id: str
    text: str
    context: str = ""
    options: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any], index: int) -> "ClarifyQuestion":
        return cls(
            id=str(data.get("id") or f"q{index}"),
            text=str(data.get("question") or data.get("text") or ""),
            context=str(data.get("context") or ""),
            options=[str(o) for o in data.get("options") or []],
        )


@dataclass
class FixResult:
    """Either a fix prompt or clarification questions, never both."""
    fix_prompt: str = ""
    questions: list[ClarifyQuestion] = field(default_factory=list)

    @property
    def has_questions(self) -> bool:
        return bool(self.questions)
