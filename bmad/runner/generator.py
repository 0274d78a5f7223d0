"""
Generic AI generation pipeline.

One Generator turns an input record into a parsed, validated output through
a fixed sequence of stages:

    ensure_run_dir -> load_data -> build_prompts -> dump_prompts -> call_ai
    -> dump_response -> parse_response -> validate

Every stage failure is raised as a BmadError naming the stage. Diagnostic
dumps are best-effort: a failed dump logs a warning and the pipeline goes on.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generic, Optional, TypeVar

from bmad.agents.modes import ExecutionMode, restricted_mode
from bmad.lib.cancel import CancelToken
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.parsing import read_side_channel

logger = logging.getLogger(__name__)

I = TypeVar("I")
O = TypeVar("O")

DEFAULT_MODEL = "sonnet"

STAGE_ORDER = [
    "ensure_run_dir",
    "load_data",
    "build_prompts",
    "dump_prompts",
    "call_ai",
    "dump_response",
    "parse_response",
    "validate",
]

# Stages whose failure is downgraded to a warning
BEST_EFFORT_STAGES = {"dump_prompts", "dump_response"}

# Error kind for unexpected exceptions raised by caller-supplied thunks
STAGE_ERROR_KINDS = {
    "load_data": ErrorKind.STORE,
    "build_prompts": ErrorKind.TEMPLATE,
    "call_ai": ErrorKind.AI,
    "parse_response": ErrorKind.PARSE,
    "validate": ErrorKind.VALIDATION,
}


def artifact_path(run_dir: Path, entity_id: str, name: str, suffix: str) -> Path:
    return Path(run_dir) / f"{entity_id}-{name}{suffix}"


def output_path(run_dir: Path, entity_id: str, name: str) -> Path:
    """Side-channel file the AI is told to write for generator ``name``."""
    return artifact_path(run_dir, entity_id, name, ".yaml")


class Generator(Generic[I, O]):
    """A single AI-driven transformation step."""

    def __init__(
        self,
        client,
        run_dir: Path,
        entity_id: str,
        name: str,
        load_data: Callable[[], I],
        build_prompts: Callable[[I], tuple[str, str]],
        parse_response: Callable[[str], O],
        validate: Optional[Callable[[O], None]] = None,
        model: str = DEFAULT_MODEL,
        mode: Optional[ExecutionMode] = None,
        cancel: Optional[CancelToken] = None,
    ):
        self.client = client
        self.run_dir = Path(run_dir)
        self.entity_id = entity_id
        self.name = name
        self.load_data = load_data
        self.build_prompts = build_prompts
        self.parse_response = parse_response
        self.validate = validate
        self.model = model
        self.mode = mode or restricted_mode(self.run_dir)
        self.cancel = cancel

    # Artifact paths

    def _artifact(self, suffix: str) -> Path:
        return artifact_path(self.run_dir, self.entity_id, self.name, suffix)

    @property
    def system_prompt_path(self) -> Path:
        return self._artifact("-system-prompt.txt")

    @property
    def user_prompt_path(self) -> Path:
        return self._artifact("-user-prompt.txt")

    @property
    def response_path(self) -> Path:
        return self._artifact("-full-response.txt")

    @property
    def output_path(self) -> Path:
        """Side-channel file the AI is told to write."""
        return self._artifact(".yaml")

    # Pipeline

    def _run_stage(self, stage: str, fn: Callable[[], Any]) -> Any:
        if self.cancel is not None:
            self.cancel.raise_if_cancelled(f"{self.name}/{stage}")

        label = f"{self.name}/{stage}"
        logger.debug(f"Starting stage: {label}")
        start = time.time()
        try:
            result = fn()
        except BmadError as e:
            if stage in BEST_EFFORT_STAGES and not e.cancelled:
                logger.warning(f"Stage {label} failed (continuing): {e.message}")
                return None
            logger.debug(f"Stage {label} failed: {e.message}")
            raise e.in_stage(label) from e
        except OSError as e:
            if stage in BEST_EFFORT_STAGES:
                logger.warning(f"Stage {label} failed (continuing): {e}")
                return None
            raise BmadError(ErrorKind.STORE, f"I/O error during {stage}", stage=label) from e
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            kind = STAGE_ERROR_KINDS.get(stage, ErrorKind.STORE)
            raise BmadError(kind, f"{type(e).__name__} during {stage}", stage=label) from e

        logger.debug(f"Stage {label} passed ({time.time() - start:.2f}s)")
        return result

    def _ensure_run_dir(self) -> None:
        try:
            self.run_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BmadError(ErrorKind.STORE, f"Cannot create run directory {self.run_dir}") from e

    def _dump_prompts(self, system_prompt: str, user_prompt: str) -> None:
        self.system_prompt_path.write_text(system_prompt)
        self.user_prompt_path.write_text(user_prompt)

    def _call_ai(self, system_prompt: str, user_prompt: str) -> str:
        # A leftover side-channel file from an earlier run must not be mistaken for fresh output
        if self.output_path.exists():
            logger.debug(f"Removing stale {self.output_path.name}")
            self.output_path.unlink()

        response = self.client.execute(system_prompt, user_prompt, self.model, self.mode, cancel=self.cancel)
        if not response or not response.strip():
            raise BmadError(ErrorKind.AI, f"AI returned empty output for {self.name}")
        return response

    def _validate(self, output: O) -> None:
        if self.validate is not None:
            self.validate(output)

    def generate(self) -> O:
        """Run every stage in order and return the parsed output."""
        logger.info(f"Generating {self.name} for {self.entity_id}")

        self._run_stage("ensure_run_dir", self._ensure_run_dir)
        data = self._run_stage("load_data", self.load_data)
        system_prompt, user_prompt = self._run_stage("build_prompts", lambda: self.build_prompts(data))
        self._run_stage("dump_prompts", lambda: self._dump_prompts(system_prompt, user_prompt))
        response = self._run_stage("call_ai", lambda: self._call_ai(system_prompt, user_prompt))
        self._run_stage("dump_response", lambda: self.response_path.write_text(response))
        output = self._run_stage("parse_response", lambda: self.parse_response(response))
        self._run_stage("validate", lambda: self._validate(output))

        logger.info(f"Generated {self.name} for {self.entity_id}")
        return output


def side_channel_parser(path: Path, key: str) -> Callable[[str], Any]:
    """Parser that ignores the streamed text and reads ``key`` from ``path``."""
    return lambda _response: read_side_channel(path, key)
