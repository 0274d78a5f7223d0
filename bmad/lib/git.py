"""Git helpers: current branch, dirty check and story-branch management."""

import logging
import re
from pathlib import Path
from typing import Optional

from bmad.lib.cancel import CancelToken
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.shell import CommandResult, check_command, run_command

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 60
BASE_BRANCH = "main"
BRANCH_PREFIX = "story/"


def slugify(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace/underscores/hyphens to '-'."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


def story_branch_name(story_id: str, title: str) -> str:
    return f"{BRANCH_PREFIX}{story_id}-{slugify(title)}"


def _git(args: list[str], cwd: Optional[Path], cancel: Optional[CancelToken]) -> CommandResult:
    return run_command(["git"] + args, cwd=cwd, timeout=GIT_TIMEOUT_SECONDS, cancel=cancel)


def _check_git(args: list[str], cwd: Optional[Path], cancel: Optional[CancelToken]) -> CommandResult:
    return check_command(["git"] + args, cwd=cwd, timeout=GIT_TIMEOUT_SECONDS, cancel=cancel)


def current_branch(cwd: Optional[Path] = None, cancel: Optional[CancelToken] = None) -> str:
    """Name of the checked-out branch; empty string on detached HEAD."""
    result = _check_git(["branch", "--show-current"], cwd, cancel)
    branch = result.stdout.strip()
    logger.debug(f"Current branch: {branch or '(detached)'}")
    return branch


def branch_exists(branch: str, cwd: Optional[Path] = None, cancel: Optional[CancelToken] = None) -> bool:
    return _git(["rev-parse", "--verify", "--quiet", branch], cwd, cancel).success


def remote_branch_exists(branch: str, cwd: Optional[Path] = None, cancel: Optional[CancelToken] = None) -> bool:
    result = _git(["ls-remote", "--heads", "origin", branch], cwd, cancel)
    return result.success and bool(result.stdout.strip())


def is_dirty(cwd: Optional[Path] = None, cancel: Optional[CancelToken] = None) -> bool:
    result = _check_git(["status", "--porcelain"], cwd, cancel)
    return bool(result.stdout.strip())


def ensure_story_branch(
    story_id: str,
    title: str,
    force: bool = False,
    cwd: Optional[Path] = None,
    cancel: Optional[CancelToken] = None,
) -> str:
    """
    Check out the branch for a story, creating it when needed.

    Order of checks: dirty tree (refuse), detached HEAD (refuse), force
    (recreate from main), already on it, local branch, remote branch, create.
    Returns the branch name.
    """
    branch = story_branch_name(story_id, title)

    if is_dirty(cwd, cancel):
        raise BmadError(
            ErrorKind.PLATFORM,
            "Working tree has uncommitted changes; commit or stash them first",
        )

    current = current_branch(cwd, cancel)
    if not current:
        raise BmadError(ErrorKind.PLATFORM, "HEAD is detached; check out a branch first")

    if force:
        logger.info(f"Recreating branch {branch} from {BASE_BRANCH}")
        if current != BASE_BRANCH:
            _check_git(["switch", BASE_BRANCH], cwd, cancel)
        if branch_exists(branch, cwd, cancel):
            _check_git(["branch", "-D", branch], cwd, cancel)
        _check_git(["switch", "-c", branch], cwd, cancel)
        return branch

    if current == branch:
        logger.info(f"Already on {branch}")
        return branch

    if branch_exists(branch, cwd, cancel):
        logger.info(f"Switching to existing branch {branch}")
        _check_git(["switch", branch], cwd, cancel)
    elif remote_branch_exists(branch, cwd, cancel):
        logger.info(f"Checking out remote branch {branch}")
        _check_git(["checkout", "-b", branch, f"origin/{branch}"], cwd, cancel)
    else:
        logger.info(f"Creating branch {branch}")
        _check_git(["switch", "-c", branch], cwd, cancel)
    return branch
