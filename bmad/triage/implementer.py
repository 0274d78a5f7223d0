"""Applies the change a reviewer asked for, in full-access mode."""

import logging
from pathlib import Path
from typing import Optional

from bmad.agents.modes import FULL_ACCESS
from bmad.lib.cancel import CancelToken
from bmad.lib.parsing import first_line
from bmad.lib.prompts import render_prompt
from bmad.runner.generator import Generator
from bmad.triage.models import HeuristicResult, ThreadContext

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "Applied changes as requested"


def summarize(response: str) -> str:
    """First non-empty line of the response."""
    return first_line(response, DEFAULT_SUMMARY)


def implementation_generator(
    client,
    run_dir: Path,
    ctx: ThreadContext,
    assessment: HeuristicResult,
    system_template: Path,
    user_template: Path,
    model: str,
    cancel: Optional[CancelToken] = None,
) -> Generator[ThreadContext, str]:
    def build_prompts(data: ThreadContext) -> tuple[str, str]:
        fields = dict(
            ctx=data,
            transcript=data.transcript(),
            assessment=assessment,
            proposed_actions="\n".join(f"- {a}" for a in assessment.proposed_actions),
        )
        return render_prompt(system_template, **fields), render_prompt(user_template, **fields)

    return Generator(
        client,
        run_dir,
        ctx.artifact_id,
        "implement",
        load_data=lambda: ctx,
        build_prompts=build_prompts,
        parse_response=summarize,
        model=model,
        mode=FULL_ACCESS,
        cancel=cancel,
    )
