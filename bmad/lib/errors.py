"""
Error type for bmad-cli.

Every failure surfaces as a BmadError tagged with an ErrorKind. Causes are
chained with ``raise ... from`` and never formatted into the message, so the
user-facing line stays short while logs keep the full chain.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    CONFIG = "config"
    TEMPLATE = "template"
    AI = "ai"
    PARSE = "parse"
    VALIDATION = "validation"
    STORE = "store"
    PLATFORM = "platform"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class BmadError(Exception):
    """A failure observed somewhere in a pipeline."""
    kind: ErrorKind
    message: str
    stage: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __str__(self):
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message

    def in_stage(self, stage: str) -> "BmadError":
        """Return a copy tagged with ``stage``, chained to this error.

        An error that already names a stage keeps it: the innermost stage is
        where the failure was observed.
        """
        wrapped = replace(self, stage=self.stage or stage)
        wrapped.__cause__ = self
        return wrapped

    @property
    def cancelled(self) -> bool:
        return self.kind is ErrorKind.CANCELLED


def root_cause(err: BaseException) -> BaseException:
    """Follow the ``__cause__`` chain to its end."""
    seen = set()
    while err.__cause__ is not None and id(err) not in seen:
        seen.add(id(err))
        err = err.__cause__
    return err


def format_error(err: BaseException) -> str:
    """Single-line rendering used for stderr."""
    if not isinstance(err, BmadError):
        return f"ERROR {type(err).__name__}: {err}"

    stage = err.stage or "main"
    line = f"ERROR [{stage}] {err.kind.value}: {err.message}"

    root = root_cause(err)
    if root is not err and not isinstance(root, BmadError):
        # First line only: jsonschema errors span several lines
        cause = str(root).split("\n", 1)[0]
        if cause:
            line += f" (caused by: {cause})"
    elif isinstance(root, BmadError) and root.message != err.message:
        line += f" (caused by: {root.message})"
    return line
