"""
GitHub integration helpers for PR triage.

Provides utilities for interacting with GitHub via the gh CLI: locating the
current branch's PR, listing unresolved review threads over GraphQL, and
replying to / resolving threads.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from bmad.lib import git
from bmad.lib.cancel import CancelToken
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.shell import check_command

logger = logging.getLogger(__name__)

# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30

THREADS_PAGE_SIZE = 100
COMMENTS_PAGE_SIZE = 50

THREADS_QUERY = """
query($owner: String!, $name: String!, $prNumber: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $prNumber) {
      reviewThreads(first: %d, after: $after) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          comments(first: %d) {
            nodes { path line body outdated url }
          }
        }
      }
    }
  }
}""" % (THREADS_PAGE_SIZE, COMMENTS_PAGE_SIZE)

RESOLVE_MUTATION = "mutation($tid:ID!){ resolveReviewThread(input:{threadId:$tid}){ thread { isResolved } } }"

REPLY_MUTATION = (
    "mutation($tid:ID!, $body:String!){ "
    "addPullRequestReviewThreadReply(input:{pullRequestReviewThreadId:$tid, body:$body})"
    "{ comment { id } } }"
)


@dataclass(frozen=True)
class ReviewComment:
    """One comment in a review thread."""
    file: str
    line: int
    body: str
    url: str
    outdated: bool


@dataclass(frozen=True)
class ReviewThread:
    """Unresolved review thread as returned by GitHub."""
    id: str
    comments: tuple[ReviewComment, ...]


class GitHubClient:
    """Thin wrapper over the gh CLI."""

    def __init__(self, cwd: Optional[Path] = None, cancel: Optional[CancelToken] = None):
        self.cwd = cwd
        self.cancel = cancel

    def _gh(self, args: list[str]) -> str:
        result = check_command(["gh"] + args, cwd=self.cwd, timeout=GH_TIMEOUT_SECONDS, cancel=self.cancel)
        return result.stdout

    def _graphql(self, query: str, variables: dict[str, object]) -> dict:
        args = ["api", "graphql", "-f", f"query={query}"]
        for key, value in variables.items():
            if value is None:
                continue
            # -F sends typed values (Int, Boolean); -f always sends strings
            flag = "-F" if isinstance(value, int) else "-f"
            args += [flag, f"{key}={value}"]
        output = self._gh(args)
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise BmadError(ErrorKind.PLATFORM, "Invalid JSON from gh api graphql") from e
        if data.get("errors"):
            messages = "; ".join(err.get("message", "") for err in data["errors"])
            raise BmadError(ErrorKind.PLATFORM, f"GraphQL error: {messages}", details={"errors": data["errors"]})
        return data

    def current_pr_number(self) -> int:
        """PR number for the current checkout, falling back to a branch lookup."""
        try:
            output = self._gh(["pr", "view", "--json", "number", "-q", ".number"])
            if output.strip():
                return int(output.strip())
        except BmadError as e:
            if e.cancelled:
                raise
            logger.debug(f"gh pr view failed, trying branch lookup: {e}")
        except ValueError:
            logger.debug("gh pr view returned a non-numeric PR number")

        branch = git.current_branch(self.cwd, self.cancel)
        output = self._gh(["pr", "list", "--head", branch, "--state", "open", "--json", "number", "-q", ".[].number"])
        numbers = [line.strip() for line in output.splitlines() if line.strip()]
        if not numbers:
            raise BmadError(ErrorKind.PLATFORM, f"No open pull request found for branch '{branch}'")
        if len(numbers) > 1:
            logger.warning(f"Multiple PRs for branch '{branch}', using #{numbers[0]}")
        return int(numbers[0])

    def repo_owner_and_name(self) -> tuple[str, str]:
        output = self._gh(["repo", "view", "--json", "owner,name", "-q", '.owner.login + " " + .name'])
        parts = output.split()
        if len(parts) != 2:
            raise BmadError(ErrorKind.PLATFORM, f"Unexpected gh repo view output: {output.strip()!r}")
        return parts[0], parts[1]

    def fetch_threads(self, pr_number: int) -> list[ReviewThread]:
        """Unresolved threads with at least one comment, in server order."""
        owner, name = self.repo_owner_and_name()
        threads: list[ReviewThread] = []
        after: Optional[str] = None

        while True:
            data = self._graphql(THREADS_QUERY, {"owner": owner, "name": name, "prNumber": pr_number, "after": after})
            try:
                review_threads = data["data"]["repository"]["pullRequest"]["reviewThreads"]
            except (KeyError, TypeError) as e:
                raise BmadError(ErrorKind.PLATFORM, f"Unexpected GraphQL response for PR #{pr_number}") from e

            for node in review_threads.get("nodes") or []:
                if node.get("isResolved"):
                    continue
                comments = tuple(
                    ReviewComment(
                        file=c.get("path") or "",
                        line=c.get("line") or 0,
                        body=c.get("body") or "",
                        url=c.get("url") or "",
                        outdated=bool(c.get("outdated")),
                    )
                    for c in (node.get("comments") or {}).get("nodes") or []
                )
                if comments:
                    threads.append(ReviewThread(id=node["id"], comments=comments))

            page_info = review_threads.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            after = page_info.get("endCursor")

        logger.info(f"Found {len(threads)} unresolved thread(s) on PR #{pr_number}")
        return threads

    def reply_to_thread(self, thread_id: str, body: str) -> None:
        self._graphql(REPLY_MUTATION, {"tid": thread_id, "body": body})

    def resolve_thread(self, thread_id: str, message: str) -> None:
        """Reply with ``message`` (when non-empty), then resolve."""
        if message:
            self.reply_to_thread(thread_id, message)
        self._graphql(RESOLVE_MUTATION, {"tid": thread_id})
        logger.info(f"Resolved thread {thread_id}")
