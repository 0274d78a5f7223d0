"""
Heuristic assessment of a review thread.

The model ends its reply with a block anchored at ``risk_score:``; only the
last such block is parsed, so reasoning before it is ignored.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from bmad.agents.modes import restricted_mode
from bmad.lib.cancel import CancelToken
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.parsing import (
    dedupe_by_key,
    extract_final_block,
    find_all_scalars,
    find_heading,
    find_scalar,
    parse_bool,
    parse_error,
    parse_items_block,
    parse_list_of_maps,
)
from bmad.lib.prompts import render_prompt
from bmad.runner.generator import Generator
from bmad.triage.models import REQUIRED_ITEMS, HeuristicResult, ThreadContext

logger = logging.getLogger(__name__)

RISK_SCORE_ANCHOR = re.compile(r"(?m)^[ \t]*risk_score[ \t]*:[ \t]*[0-9]+\b")
MIN_SCORE = 1
MAX_SCORE = 10


def parse_heuristic(text: str) -> HeuristicResult:
    """Parse the final ``risk_score:`` block of a reply."""
    block = extract_final_block(text, RISK_SCORE_ANCHOR)
    lines = block.splitlines()

    score = int(re.search(r"[0-9]+", lines[0].split(":", 1)[1]).group())
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise parse_error(f"risk_score {score} out of range [{MIN_SCORE}, {MAX_SCORE}]")

    body = lines[1:]
    summary = find_scalar(body, "summary")
    if not summary:
        raise parse_error("Missing required field 'summary'")

    actions = find_all_scalars(body, "preferred_option")
    if not actions:
        raise parse_error("Missing required field 'preferred_option'")

    heading = find_heading(body, "items")
    if heading is None:
        raise parse_error("Missing required block 'items'")
    raw_items = parse_items_block(body, heading)
    items = {}
    for key in REQUIRED_ITEMS:
        if key not in raw_items:
            raise parse_error(f"Missing required item '{key}'")
        items[key] = parse_bool(key, raw_items[key])
    extra = sorted(set(raw_items) - set(REQUIRED_ITEMS))
    if extra:
        logger.debug(f"Ignoring unknown items: {', '.join(extra)}")

    alternatives = []
    heading = find_heading(body, "alternatives")
    if heading is not None:
        alternatives = dedupe_by_key(parse_list_of_maps(body, heading), "option")

    return HeuristicResult(
        score=score,
        summary=summary,
        proposed_actions=actions,
        items=items,
        alternatives=alternatives,
    )


def validate_heuristic(result: HeuristicResult) -> None:
    """Semantic checks on a parsed result."""
    if not MIN_SCORE <= result.score <= MAX_SCORE:
        raise BmadError(
            ErrorKind.VALIDATION,
            f"risk_score {result.score} out of range",
            details={"predicate": "score_in_range", "path": "risk_score"},
        )
    if not result.summary.strip():
        raise BmadError(
            ErrorKind.VALIDATION,
            "summary is empty",
            details={"predicate": "summary_not_empty", "path": "summary"},
        )
    if not result.proposed_actions:
        raise BmadError(
            ErrorKind.VALIDATION,
            "no proposed actions",
            details={"predicate": "has_proposed_action", "path": "preferred_option"},
        )
    missing = [key for key in REQUIRED_ITEMS if key not in result.items]
    if missing:
        raise BmadError(
            ErrorKind.VALIDATION,
            f"missing items: {', '.join(missing)}",
            details={"predicate": "required_items", "path": f"items.{missing[0]}"},
        )


def heuristic_generator(
    client,
    run_dir: Path,
    ctx: ThreadContext,
    system_template: Path,
    user_template: Path,
    model: str,
    cancel: Optional[CancelToken] = None,
) -> Generator[ThreadContext, HeuristicResult]:
    def build_prompts(data: ThreadContext) -> tuple[str, str]:
        fields = dict(ctx=data, transcript=data.transcript())
        return render_prompt(system_template, **fields), render_prompt(user_template, **fields)

    return Generator(
        client,
        run_dir,
        ctx.artifact_id,
        "heuristic",
        load_data=lambda: ctx,
        build_prompts=build_prompts,
        parse_response=parse_heuristic,
        validate=validate_heuristic,
        model=model,
        mode=restricted_mode(run_dir),
        cancel=cancel,
    )
