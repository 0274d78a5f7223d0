#!/usr/bin/env python3
"""bmad-cli entrypoint."""

import argparse
import logging
import sys

from bmad import __version__
from bmad.commands import pr as cmd_pr_module
from bmad.commands import us as cmd_us_module
from bmad.commands.session import open_session
from bmad.lib.cancel import CancelToken, install_signal_handlers
from bmad.lib.errors import BmadError, format_error
from bmad.story.implement import STEPS, parse_steps

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def steps_arg(value: str) -> list[str]:
    try:
        return parse_steps(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bmad-cli", description="PR triage and user story authoring")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to bmad-cli.yaml (default: $BMAD_CONFIG or ./bmad-cli.yaml)")
    sub = parser.add_subparsers(dest="command", required=True)

    # bmad-cli pr
    p_pr = sub.add_parser("pr", help="Pull request commands")
    pr_sub = p_pr.add_subparsers(dest="pr_command", required=True)

    p_triage = pr_sub.add_parser("triage", help="Triage unresolved review threads on the current PR")
    p_triage.add_argument("--pr", type=int, help="PR number (default: PR of the current branch)")
    p_triage.set_defaults(func=cmd_pr_module.cmd_pr_triage)

    # bmad-cli us
    p_us = sub.add_parser("us", help="User story commands")
    us_sub = p_us.add_subparsers(dest="us_command", required=True)

    p_create = us_sub.add_parser("create", help="Generate a story document from its epic")
    p_create.add_argument("story", help="Story number, e.g. 3.1")
    p_create.add_argument("--skip-checklist", action="store_true", help="Do not run the checklist afterwards")
    p_create.set_defaults(func=cmd_us_module.cmd_us_create)

    p_implement = us_sub.add_parser("implement", help="Implement a story on its branch")
    p_implement.add_argument("story", help="Story number, e.g. 3.1")
    p_implement.add_argument("--force", action="store_true", help="Recreate the story branch from main")
    p_implement.add_argument(
        "--steps", type=steps_arg, default=list(STEPS),
        help=f"Comma-separated steps to run (default: all). One or more of: {', '.join(STEPS)}",
    )
    p_implement.set_defaults(func=cmd_us_module.cmd_us_implement)

    p_checklist = us_sub.add_parser("checklist", help="Validate an existing story and fix failures")
    p_checklist.add_argument("story", help="Story number, e.g. 3.1")
    p_checklist.set_defaults(func=cmd_us_module.cmd_us_checklist)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    cancel = CancelToken()
    install_signal_handlers(cancel)

    try:
        session = open_session(args.config, cancel)
        return args.func(args, session)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except BmadError as e:
        if e.cancelled:
            print("\nInterrupted", file=sys.stderr)
            return EXIT_INTERRUPTED
        logger.debug("Command failed", exc_info=True)
        print(format_error(e), file=sys.stderr)
        return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
