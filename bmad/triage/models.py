"""Data types for PR triage."""

import re
from dataclasses import dataclass, field

from bmad.lib.github import ReviewComment, ReviewThread

REQUIRED_ITEMS = (
    "tools_present",
    "pr_detected",
    "conversations_fetched",
    "auto_resolved_outdated",
    "relevance_classified",
    "human_approval_needed",
)

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass(frozen=True)
class ThreadContext:
    """One review thread bound to a pull request."""
    pr_id: int
    thread_id: str
    comments: tuple[ReviewComment, ...]

    @classmethod
    def from_thread(cls, pr_id: int, thread: ReviewThread) -> "ThreadContext":
        return cls(pr_id=pr_id, thread_id=thread.id, comments=tuple(thread.comments))

    @property
    def artifact_id(self) -> str:
        """Filesystem-safe id used for run-directory artifacts."""
        return f"pr{self.pr_id}-{_UNSAFE_ID_CHARS.sub('_', self.thread_id)}"

    @property
    def first(self) -> ReviewComment:
        return self.comments[0]

    @property
    def outdated(self) -> bool:
        return bool(self.comments) and self.comments[0].outdated

    @property
    def location(self) -> str:
        return f"{self.first.file}:{self.first.line}"

    def transcript(self) -> str:
        """Comments rendered for a prompt."""
        blocks = []
        for i, c in enumerate(self.comments, 1):
            flag = " (outdated)" if c.outdated else ""
            blocks.append(f"--- Comment {i}{flag} ---\nFile: {c.file}:{c.line}\nURL: {c.url}\n\n{c.body.strip()}")
        return "\n\n".join(blocks)


@dataclass
class HeuristicResult:
    """Assessment of one thread by the heuristic generator."""
    score: int
    summary: str
    proposed_actions: list[str]
    items: dict[str, bool]
    alternatives: list[dict[str, str]] = field(default_factory=list)

    def render(self) -> str:
        """Canonical final-block form; parse_heuristic(render()) reproduces this result."""
        lines = [f"risk_score: {self.score}", f'summary: "{self.summary}"']
        lines += [f'preferred_option: "{action}"' for action in self.proposed_actions]
        lines.append("items:")
        lines += [f"  {key}: {'true' if self.items[key] else 'false'}" for key in REQUIRED_ITEMS]
        if self.alternatives:
            lines.append("alternatives:")
            for alt in self.alternatives:
                for n, (key, value) in enumerate(alt.items()):
                    prefix = "  - " if n == 0 else "    "
                    lines.append(f'{prefix}{key}: "{value}"')
        return "\n".join(lines) + "\n"


@dataclass
class ThreadOutcome:
    """Final state of one thread after triage."""
    thread_id: str
    location: str
    state: str
    score: int | None = None
    message: str = ""


@dataclass
class TriageSummary:
    pr_number: int
    outcomes: list[ThreadOutcome] = field(default_factory=list)

    def count(self, state: str) -> int:
        return sum(1 for o in self.outcomes if o.state == state)
