"""
Checklist evaluator: asks the AI to judge each prompt against a story.

The reply is expected to end with::

    answer: <actual answer>
    status: PASS | WARN | FAIL | SKIP
    rationale: <optional>

Only the block starting at the last ``answer:`` line is read. Without an
explicit status the answer is compared with the expected one; without an
``answer:`` line the first non-empty line of the reply is the answer.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from bmad.agents.modes import restricted_mode
from bmad.checklist.compare import compare_answers
from bmad.checklist.models import Checklist, PromptWithContext, Report, Status, ValidationResult
from bmad.lib.cancel import CancelToken
from bmad.lib.config import Config
from bmad.lib.errors import BmadError
from bmad.lib.parsing import extract_final_block, find_scalar, parse_error
from bmad.lib.prompts import render_prompt
from bmad.lib.versions import dump_yaml
from bmad.runner.generator import Generator
from bmad.story.docs import ReferenceDocs
from bmad.story.models import StoryDocument

logger = logging.getLogger(__name__)

ANSWER_ANCHOR = re.compile(r"(?m)^[ \t]*answer[ \t]*:")


def parse_evaluation(text: str) -> tuple[str, Optional[Status], str]:
    """Return (actual answer, explicit status or None, rationale)."""
    if ANSWER_ANCHOR.search(text) is None:
        for line in text.strip().splitlines():
            if line.strip():
                return line.strip(), None, ""
        raise parse_error("Empty evaluation reply")

    lines = [line.strip() for line in extract_final_block(text, ANSWER_ANCHOR).splitlines()]
    answer = find_scalar(lines, "answer") or ""
    rationale = find_scalar(lines, "rationale") or ""

    raw_status = find_scalar(lines, "status")
    status = None
    if raw_status:
        try:
            status = Status(raw_status.strip().upper())
        except ValueError:
            raise parse_error(f"Invalid status {raw_status!r} (expected PASS, WARN, FAIL or SKIP)") from None
    return answer, status, rationale


class ChecklistEvaluator:
    def __init__(
        self,
        config: Config,
        client,
        run_dir: Path,
        checklist: Checklist,
        docs: ReferenceDocs,
        cancel: Optional[CancelToken] = None,
    ):
        self.config = config
        self.client = client
        self.run_dir = run_dir
        self.checklist = checklist
        self.docs = docs
        self.cancel = cancel
        self.rounds = 0

    def evaluate(self, doc: StoryDocument) -> Report:
        """Evaluate every non-skipped prompt, in checklist order."""
        self.rounds += 1
        prompts = self.checklist.prompts()
        report = Report(
            story_id=doc.story.id,
            story_title=doc.story.title,
            checklist_skipped=self.checklist.skipped_count(),
        )
        story_yaml = dump_yaml(doc.to_dict())

        for i, item in enumerate(prompts, 1):
            logger.info(f"[{i}/{len(prompts)}] Evaluating {item.section_path}")
            try:
                result = self._evaluate_prompt(doc, story_yaml, item, i)
            except BmadError as e:
                if e.cancelled:
                    raise
                logger.error(f"Failed to evaluate {item.section_path}: {e}")
                result = ValidationResult(
                    section_path=item.section_path,
                    question=item.prompt.question,
                    expected=item.prompt.expected_answer,
                    actual=f"ERROR: {e.message}",
                    status=Status.FAIL,
                    rationale=item.prompt.rationale,
                    docs=item.effective_docs,
                    action_if_fail=item.prompt.action_if_fail,
                )
            report.results.append(result)

        logger.info(
            f"Checklist: {report.pass_count} pass, {report.warn_count} warn, "
            f"{report.fail_count} fail, {report.skip_count} skipped ({report.overall_status})"
        )
        return report

    def _evaluate_prompt(
        self,
        doc: StoryDocument,
        story_yaml: str,
        item: PromptWithContext,
        index: int,
    ) -> ValidationResult:
        docs = item.effective_docs

        def build_prompts(data: dict) -> tuple[str, str]:
            system = render_prompt(self.config.template("checklist_system"), **data)
            user = render_prompt(self.config.template("checklist"), reference=self.docs.section(docs), **data)
            return system, user

        generator = Generator(
            self.client,
            self.run_dir,
            doc.story.id,
            f"checklist-r{self.rounds}-{index:02d}",
            load_data=lambda: {
                "story": doc.story,
                "story_yaml": story_yaml,
                "section": item.section_path,
                "question": item.prompt.question,
                "expected_answer": item.prompt.expected_answer,
                "rationale": item.prompt.rationale or "(none)",
            },
            build_prompts=build_prompts,
            parse_response=parse_evaluation,
            model=self.config.engine.model,
            mode=restricted_mode(self.run_dir),
            cancel=self.cancel,
        )
        answer, status, rationale = generator.generate()
        if status is None:
            status = compare_answers(item.prompt.expected_answer, answer, len(doc.story.acceptance_criteria))

        return ValidationResult(
            section_path=item.section_path,
            question=item.prompt.question,
            expected=item.prompt.expected_answer,
            actual=answer,
            status=status,
            rationale=rationale or item.prompt.rationale,
            docs=docs,
            action_if_fail=item.prompt.action_if_fail,
        )
