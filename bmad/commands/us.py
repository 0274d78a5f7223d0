"""
bmad-cli us - user story commands: create, implement, checklist.
"""

import logging
from pathlib import Path
from typing import Optional

from bmad.checklist.evaluator import ChecklistEvaluator
from bmad.checklist.fix_applier import FixApplier
from bmad.checklist.fix_loop import FixLoop, FixLoopOutcome
from bmad.checklist.fix_prompt import FixPromptGenerator
from bmad.checklist.loader import load_checklist
from bmad.checklist.report import render_report
from bmad.commands.session import Session
from bmad.lib.console import InputCollector
from bmad.lib.versions import VersionStore
from bmad.story.epics import parse_story_number
from bmad.story.factory import StoryFactory, find_story_file, load_story_file
from bmad.story.generators import StoryContext
from bmad.story.implement import ImplementPipeline
from bmad.story.models import StoryDocument

logger = logging.getLogger(__name__)


def _story_context(session: Session) -> StoryContext:
    return StoryContext(
        config=session.config,
        client=session.client,
        run_dir=session.run_dir.path,
        docs=session.docs,
        cancel=session.cancel,
    )


def run_checklist(
    session: Session,
    doc: StoryDocument,
    store: VersionStore,
    canonical_path: Optional[Path],
    collector: Optional[InputCollector] = None,
) -> FixLoopOutcome:
    """Evaluate the checklist, then drive the fix loop while checks fail."""
    config = session.config
    run_dir = session.run_dir.path
    evaluator = ChecklistEvaluator(
        config, session.client, run_dir, load_checklist(config.checklist), session.docs, cancel=session.cancel
    )

    report = evaluator.evaluate(doc)
    render_report(report)

    loop = FixLoop(
        evaluator,
        FixPromptGenerator(config, session.client, run_dir, session.docs, cancel=session.cancel),
        FixApplier(config, session.client, run_dir, cancel=session.cancel),
        collector or InputCollector(),
        show_report=render_report,
        max_clarification_rounds=config.max_clarification_rounds,
    )
    return loop.run(doc, store, report, canonical_path)


def cmd_us_create(args, session: Session) -> int:
    parse_story_number(args.story)
    factory = StoryFactory(_story_context(session))
    doc, store = factory.create(args.story)
    path = factory.write(doc)
    print(f"Story {doc.story.id} written to {path}")

    if args.skip_checklist:
        return 0

    outcome = run_checklist(session, doc, store, canonical_path=path)
    if outcome.exited:
        print(f"Fix loop exited; latest version: {store.latest_path()}")
    return 0


def cmd_us_checklist(args, session: Session) -> int:
    parse_story_number(args.story)
    path = find_story_file(session.config.stories_dir, args.story)
    doc = load_story_file(path)

    store = VersionStore(session.run_dir.path, doc.story.id)
    store.save_initial(doc.to_dict())

    outcome = run_checklist(session, doc, store, canonical_path=path)
    if outcome.copied_to:
        print(f"Updated {outcome.copied_to}")
    return 0


def cmd_us_implement(args, session: Session) -> int:
    parse_story_number(args.story)
    path = find_story_file(session.config.stories_dir, args.story)
    doc = load_story_file(path)

    pipeline = ImplementPipeline(_story_context(session), doc, path, force=args.force)
    for summary in pipeline.run(args.steps):
        print(summary)
    print(f"Story {doc.story.id}: {len(args.steps)} step(s) completed")
    return 0
