"""
Human-in-the-loop fix loop.

While the report has a FAIL: generate a fix prompt for the first failed
check (asking clarification questions when the AI needs them), let the user
apply, refine or exit, apply the fix as a new story version and evaluate
again. Termination is up to the user.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from bmad.checklist.evaluator import ChecklistEvaluator
from bmad.checklist.fix_applier import FixApplier
from bmad.checklist.fix_prompt import FixPromptGenerator, format_answers
from bmad.checklist.models import ClarifyQuestion, Report
from bmad.lib.console import APPLY, EXIT, REFINE, InputCollector
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.versions import VersionStore
from bmad.story.models import StoryDocument

logger = logging.getLogger(__name__)

COPY_QUESTION = "ALL CHECKS PASSED! Copy fixed story to original location?"


@dataclass
class FixLoopOutcome:
    report: Report
    doc: StoryDocument
    iterations: int
    exited: bool = False
    copied_to: Optional[Path] = None


class FixLoop:
    def __init__(
        self,
        evaluator: ChecklistEvaluator,
        fix_generator: FixPromptGenerator,
        applier: FixApplier,
        collector: InputCollector,
        show_report: Callable[[Report], None],
        max_clarification_rounds: Optional[int] = None,
    ):
        self.evaluator = evaluator
        self.fix_generator = fix_generator
        self.applier = applier
        self.collector = collector
        self.show_report = show_report
        self.max_clarification_rounds = max_clarification_rounds

    def run(
        self,
        doc: StoryDocument,
        store: VersionStore,
        report: Report,
        canonical_path: Optional[Path] = None,
    ) -> FixLoopOutcome:
        iteration = 0
        while not report.all_passed:
            iteration += 1
            index, failed = report.first_failure()
            logger.info(f"Fix iteration {iteration}: check #{index} {failed.section_path}")

            fix_prompt = self._agree_on_fix(doc, failed, index, iteration)
            if fix_prompt is None:
                logger.info("Fix loop exited by user")
                return FixLoopOutcome(report=report, doc=doc, iterations=iteration, exited=True)
            failed.fix_prompt = fix_prompt

            doc = self.applier.apply(store, fix_prompt, index, iteration)
            report = self.evaluator.evaluate(doc)
            self.show_report(report)

        outcome = FixLoopOutcome(report=report, doc=doc, iterations=iteration)
        if iteration and canonical_path is not None and self.collector.confirm(COPY_QUESTION):
            outcome.copied_to = self._copy_back(store, canonical_path)
        return outcome

    def _agree_on_fix(self, doc, failed, index: int, iteration: int) -> Optional[str]:
        """Loop over clarification and refinement until the user applies or exits."""
        asked: list[ClarifyQuestion] = []
        answers: dict[str, str] = {}
        feedback = ""
        previous_fix = ""
        rounds = 0
        generation = 0

        while True:
            result = self.fix_generator.generate(
                doc,
                failed,
                index,
                iteration,
                round_number=generation,
                answers=format_answers(asked, answers),
                feedback=feedback,
                previous_fix=previous_fix,
            )
            generation += 1

            if result.has_questions:
                rounds += 1
                if self.max_clarification_rounds is not None and rounds > self.max_clarification_rounds:
                    raise BmadError(
                        ErrorKind.AI,
                        f"Still asking for clarification after {self.max_clarification_rounds} round(s)",
                        stage="fix_loop",
                    )
                asked.extend(result.questions)
                answers.update(self.collector.ask_questions(result.questions))
                continue

            self.collector.show_fix_prompt(result.fix_prompt)
            choice = self.collector.ask_apply_refine_exit()
            if choice == APPLY:
                return result.fix_prompt
            if choice == REFINE:
                previous_fix = result.fix_prompt
                feedback = self.collector.ask_feedback()
                continue
            if choice == EXIT:
                return None

    def _copy_back(self, store: VersionStore, canonical_path: Path) -> Path:
        source = store.latest_path()
        try:
            canonical_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, canonical_path)
        except OSError as e:
            raise BmadError(ErrorKind.STORE, f"Cannot copy {source.name} to {canonical_path}") from e
        logger.info(f"Copied {source.name} to {canonical_path}")
        return canonical_path
