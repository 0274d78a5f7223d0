"""
PR triage: assess, implement and resolve every unresolved review thread.

Threads are processed in server order. A failure on one thread is logged
and recorded; the remaining threads still run.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from bmad.lib.cancel import CancelToken
from bmad.lib.config import Config
from bmad.lib.errors import BmadError, format_error
from bmad.lib.github import GitHubClient
from bmad.triage.fsm import ThreadFSM
from bmad.triage.heuristic import heuristic_generator
from bmad.triage.implementer import implementation_generator
from bmad.triage.models import HeuristicResult, ThreadContext, ThreadOutcome, TriageSummary

logger = logging.getLogger(__name__)

OUTDATED_MESSAGE = "This thread resolved as outdated."

Approver = Callable[[ThreadContext, HeuristicResult], bool]


class TriageOrchestrator:
    def __init__(
        self,
        config: Config,
        client,
        github: GitHubClient,
        run_dir: Path,
        approver: Approver,
        cancel: Optional[CancelToken] = None,
    ):
        self.config = config
        self.client = client
        self.github = github
        self.run_dir = run_dir
        self.approver = approver
        self.cancel = cancel

    def run(self, pr_number: Optional[int] = None) -> TriageSummary:
        if pr_number is None:
            pr_number = self.github.current_pr_number()
        logger.info(f"Triaging PR #{pr_number}")

        threads = self.github.fetch_threads(pr_number)
        summary = TriageSummary(pr_number=pr_number)
        for i, thread in enumerate(threads, 1):
            ctx = ThreadContext.from_thread(pr_number, thread)
            logger.info(f"[{i}/{len(threads)}] Thread {ctx.thread_id} at {ctx.location}")
            summary.outcomes.append(self.process_thread(ctx))

        logger.info(
            f"Triage complete: {summary.count('resolved')} resolved, "
            f"{summary.count('skipped')} skipped, {summary.count('failed')} failed"
        )
        return summary

    def process_thread(self, ctx: ThreadContext) -> ThreadOutcome:
        fsm = ThreadFSM(ctx.thread_id)
        outcome = ThreadOutcome(thread_id=ctx.thread_id, location=ctx.location, state=fsm.state)

        try:
            if ctx.outdated:
                self.github.resolve_thread(ctx.thread_id, OUTDATED_MESSAGE)
                fsm.resolve_outdated()
                outcome.message = OUTDATED_MESSAGE
            else:
                self._triage(ctx, fsm, outcome)
        except BmadError as e:
            if e.cancelled:
                raise
            logger.error(f"Thread {ctx.thread_id} failed: {format_error(e)}")
            fsm.fail()
            outcome.message = e.message

        outcome.state = fsm.state
        return outcome

    def _triage(self, ctx: ThreadContext, fsm: ThreadFSM, outcome: ThreadOutcome) -> None:
        model = self.config.engine.model
        assessment = heuristic_generator(
            self.client,
            self.run_dir,
            ctx,
            self.config.template("heuristic_system"),
            self.config.template("heuristic"),
            model,
            cancel=self.cancel,
        ).generate()
        fsm.analyze()
        outcome.score = assessment.score
        logger.info(f"Risk score {assessment.score}: {assessment.summary}")

        if assessment.score >= self.config.approval_threshold:
            fsm.request_approval()
            if not self.approver(ctx, assessment):
                logger.info(f"Skipping thread {ctx.thread_id} (not approved)")
                fsm.decline()
                outcome.message = "Declined by user"
                return

        summary = implementation_generator(
            self.client,
            self.run_dir,
            ctx,
            assessment,
            self.config.template("implement_system"),
            self.config.template("implement"),
            model,
            cancel=self.cancel,
        ).generate()
        fsm.implement()

        self.github.resolve_thread(ctx.thread_id, summary)
        fsm.resolve()
        outcome.message = summary
