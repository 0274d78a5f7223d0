"""Tool-permission profiles for the AI backend."""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class ExecutionMode:
    name: str
    allowed_tools: tuple[str, ...] = field(default_factory=tuple)
    disallowed_tools: tuple[str, ...] = field(default_factory=tuple)


def restricted_mode(run_dir: Path) -> ExecutionMode:
    """Read and search anywhere, write only under ``run_dir``, no shell or edits."""
    return ExecutionMode(
        name="restricted",
        allowed_tools=("Read(**)", f"Write({run_dir}/**)", "Glob(**)", "Grep(**)"),
        disallowed_tools=("Bash", "Edit", "MultiEdit", "WebFetch", "WebSearch", "Task"),
    )


FULL_ACCESS = ExecutionMode(
    name="full-access",
    allowed_tools=("Read", "Write", "Edit", "MultiEdit", "Glob", "Grep", "Bash", "WebFetch", "WebSearch", "Task"),
)


def edit_mode(run_dir: Path) -> ExecutionMode:
    """Read anywhere, edit existing files under ``run_dir`` only."""
    return ExecutionMode(
        name="edit",
        allowed_tools=("Read(**)", f"Edit({run_dir}/**)", "Glob(**)", "Grep(**)"),
        disallowed_tools=("Bash", "Write", "MultiEdit", "WebFetch", "WebSearch", "Task"),
    )


TEST_WRITER = ExecutionMode(
    name="test-writer",
    allowed_tools=("Read", "Write", "Edit", "MultiEdit", "Glob", "Grep"),
    disallowed_tools=("Bash", "WebFetch", "WebSearch", "Task"),
)
