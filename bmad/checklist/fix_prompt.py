"""
Fix-prompt generation for a failed checklist check.

The AI writes ``<id>-<name>.yaml`` holding either ``fix_prompt`` (ready to
apply) or ``questions`` (clarification needed). When the file is missing the
reply text is searched for marker-delimited sections instead.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from bmad.agents.modes import restricted_mode
from bmad.checklist.models import ClarifyQuestion, FixResult, ValidationResult
from bmad.lib.cancel import CancelToken
from bmad.lib.config import Config
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.parsing import extract_between_markers, parse_error
from bmad.lib.prompts import render_prompt
from bmad.lib.versions import dump_yaml
from bmad.runner.generator import Generator, output_path
from bmad.story.docs import ReferenceDocs
from bmad.story.models import StoryDocument

logger = logging.getLogger(__name__)

QUESTIONS_START = "=== QUESTIONS_START ==="
QUESTIONS_END = "=== QUESTIONS_END ==="
FIX_START = "=== FIX_PROMPT_START ==="
FIX_END = "=== FIX_PROMPT_END ==="


def _questions(raw: Any) -> list[ClarifyQuestion]:
    if not isinstance(raw, list):
        raise parse_error("'questions' must be a list")
    questions = [ClarifyQuestion.from_dict(q, i) for i, q in enumerate(raw, 1) if isinstance(q, dict)]
    if any(not q.text for q in questions):
        raise parse_error("Every clarification question needs a 'question' text")
    return questions


def build_fix_result(fix_prompt: Any, questions: Any) -> FixResult:
    """Exactly one of ``fix_prompt`` and ``questions`` must be non-empty."""
    has_fix = isinstance(fix_prompt, str) and bool(fix_prompt.strip())
    has_questions = bool(questions)
    if has_fix and has_questions:
        raise parse_error("Reply contains both a fix prompt and questions")
    if has_questions:
        return FixResult(questions=_questions(questions))
    if has_fix:
        return FixResult(fix_prompt=fix_prompt.strip())
    raise parse_error("Reply contains neither a fix prompt nor questions")


def parse_fix_response(response: str, side_channel: Path) -> FixResult:
    if side_channel.exists():
        try:
            data = yaml.safe_load(side_channel.read_text()) or {}
        except yaml.YAMLError as e:
            raise parse_error(f"Invalid YAML in {side_channel.name}") from e
        if not isinstance(data, dict):
            raise parse_error(f"{side_channel.name} must contain a mapping")
        return build_fix_result(data.get("fix_prompt"), data.get("questions"))

    questions = None
    block = extract_between_markers(response, QUESTIONS_START, QUESTIONS_END)
    if block is not None:
        try:
            questions = (yaml.safe_load(block) or {}).get("questions")
        except (yaml.YAMLError, AttributeError) as e:
            raise parse_error("Invalid questions block") from e
    fix_prompt = extract_between_markers(response, FIX_START, FIX_END)
    return build_fix_result(fix_prompt, questions)


def format_answers(questions: list[ClarifyQuestion], answers: dict[str, str]) -> str:
    if not answers:
        return ""
    by_id = {q.id: q for q in questions}
    lines = []
    for qid, answer in answers.items():
        text = by_id[qid].text if qid in by_id else qid
        lines.append(f"- {qid}: {text}\n  Answer: {answer}")
    return "\n".join(lines)


class FixPromptGenerator:
    def __init__(
        self,
        config: Config,
        client,
        run_dir: Path,
        docs: ReferenceDocs,
        cancel: Optional[CancelToken] = None,
    ):
        self.config = config
        self.client = client
        self.run_dir = run_dir
        self.docs = docs
        self.cancel = cancel

    def prompt_file(self, story_id: str, index: int) -> Path:
        return self.run_dir / f"{index:02d}-{story_id}-fix-prompts.md"

    def generate(
        self,
        doc: StoryDocument,
        failed: ValidationResult,
        index: int,
        iteration: int,
        round_number: int = 0,
        answers: str = "",
        feedback: str = "",
        previous_fix: str = "",
    ) -> FixResult:
        story_id = doc.story.id
        name = f"fix-{index:02d}-iter{iteration}-r{round_number}"
        side_channel = output_path(self.run_dir, story_id, name)
        doc_keys = failed.docs or None

        def load_data() -> dict:
            return {
                "story": doc.story,
                "story_yaml": dump_yaml(doc.to_dict()),
                "failed": failed,
                "action_if_fail": failed.action_if_fail or "(none)",
                "iteration": iteration,
                "user_answers": answers or "(none)",
                "feedback": feedback or "(none)",
                "previous_fix": previous_fix or "(none)",
                "doc_paths": "\n".join(f"- {p}" for p in self.docs.paths_for(doc_keys)) or "(none)",
                "output_file": side_channel,
            }

        def build_prompts(data: dict) -> tuple[str, str]:
            system = render_prompt(self.config.template("fix_generator_system"), **data)
            user = render_prompt(self.config.template("fix_generator"), **data)
            return system, user

        result = Generator(
            self.client,
            self.run_dir,
            story_id,
            name,
            load_data=load_data,
            build_prompts=build_prompts,
            parse_response=lambda response: parse_fix_response(response, side_channel),
            model=self.config.engine.model,
            mode=restricted_mode(self.run_dir),
            cancel=self.cancel,
        ).generate()

        if not result.has_questions:
            path = self.prompt_file(story_id, index)
            try:
                path.write_text(result.fix_prompt + "\n")
            except OSError as e:
                raise BmadError(ErrorKind.STORE, f"Cannot write {path}") from e
            logger.info(f"Fix prompt saved to {path.name}")
        return result
