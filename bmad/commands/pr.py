"""
bmad-cli pr triage - work through the unresolved review threads of the current PR.
"""

import logging

from rich.console import Console
from rich.table import Table

from bmad.commands.session import Session
from bmad.lib.console import InputCollector
from bmad.lib.github import GitHubClient
from bmad.triage.models import HeuristicResult, ThreadContext, TriageSummary
from bmad.triage.orchestrator import TriageOrchestrator

logger = logging.getLogger(__name__)

STATE_STYLES = {"resolved": "green", "skipped": "yellow", "failed": "bold red"}


def make_approver(collector: InputCollector):
    def approve(ctx: ThreadContext, assessment: HeuristicResult) -> bool:
        print()
        print(f"Thread {ctx.thread_id} at {ctx.location}")
        print(f"Risk score: {assessment.score}")
        print(f"Summary: {assessment.summary}")
        for action in assessment.proposed_actions:
            print(f"  - {action}")
        return collector.confirm("Proceed with the proposed change?", default=True)

    return approve


def build_summary_table(summary: TriageSummary) -> Table:
    table = Table(title=f"PR #{summary.pr_number} triage")
    table.add_column("Thread")
    table.add_column("Location")
    table.add_column("Score", justify="right")
    table.add_column("State")
    table.add_column("Message")
    for outcome in summary.outcomes:
        style = STATE_STYLES.get(outcome.state, "")
        table.add_row(
            outcome.thread_id,
            outcome.location,
            "" if outcome.score is None else str(outcome.score),
            f"[{style}]{outcome.state}[/{style}]" if style else outcome.state,
            outcome.message,
        )
    return table


def cmd_pr_triage(args, session: Session) -> int:
    """Per-thread failures are reported in the summary; the command still succeeds."""
    github = GitHubClient(cancel=session.cancel)
    orchestrator = TriageOrchestrator(
        session.config,
        session.client,
        github,
        session.run_dir.path,
        approver=make_approver(InputCollector()),
        cancel=session.cancel,
    )
    summary = orchestrator.run(pr_number=args.pr)
    if summary.outcomes:
        Console().print(build_summary_table(summary))
    else:
        print(f"No unresolved threads on PR #{summary.pr_number}")
    return 0
