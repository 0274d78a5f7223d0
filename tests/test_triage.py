"""Tests for the PR triage orchestrator."""

import logging

import pytest

from bmad.lib.cancel import cancelled_error
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.github import ReviewComment, ReviewThread
from bmad.triage.models import REQUIRED_ITEMS
from bmad.triage.orchestrator import OUTDATED_MESSAGE, TriageOrchestrator

from conftest import FakeClient


def heuristic_reply(score):
    items = "\n".join(f"  {key}: false" for key in REQUIRED_ITEMS)
    return (
        f"risk_score: {score}\n"
        f'summary: "Change requested"\n'
        f'preferred_option: "Do the change"\n'
        f"items:\n{items}\n"
    )


def thread(tid, outdated=False):
    comment = ReviewComment(file="app.py", line=10, body=f"comment on {tid}", url="u", outdated=outdated)
    return ReviewThread(id=tid, comments=(comment,))


class FakeGitHub:
    def __init__(self, threads, pr_number=7):
        self.threads = threads
        self.pr_number = pr_number
        self.resolved = []

    def current_pr_number(self):
        return self.pr_number

    def fetch_threads(self, pr_number):
        return self.threads

    def resolve_thread(self, thread_id, message):
        self.resolved.append((thread_id, message))


@pytest.fixture
def make_orchestrator(config, run_dir):
    def make(client, github, approver=lambda ctx, assessment: True):
        return TriageOrchestrator(config, client, github, run_dir, approver=approver)
    return make


class TestTriageOrchestrator:

    def test_low_risk_thread_is_implemented_and_resolved(self, make_orchestrator):
        client = FakeClient([heuristic_reply(2), "Renamed x to total\nmore detail"])
        github = FakeGitHub([thread("T1")])
        approvals = []

        summary = make_orchestrator(client, github, lambda ctx, a: approvals.append(ctx) or True).run()

        assert summary.pr_number == 7
        assert [o.state for o in summary.outcomes] == ["resolved"]
        assert summary.outcomes[0].score == 2
        assert github.resolved == [("T1", "Renamed x to total")]
        assert approvals == []
        assert client.calls[1].mode.name == "full-access"

    def test_high_risk_asks_for_approval(self, make_orchestrator):
        client = FakeClient([heuristic_reply(8), "Refactored auth"])
        github = FakeGitHub([thread("T1")])
        approvals = []

        def approve(ctx, assessment):
            approvals.append((ctx.thread_id, assessment.score))
            return True

        summary = make_orchestrator(client, github, approve).run(pr_number=3)
        assert approvals == [("T1", 8)]
        assert summary.pr_number == 3
        assert summary.outcomes[0].state == "resolved"

    def test_threshold_is_inclusive(self, make_orchestrator, config):
        assert config.approval_threshold == 5
        client = FakeClient([heuristic_reply(5)])
        github = FakeGitHub([thread("T1")])
        summary = make_orchestrator(client, github, lambda ctx, a: False).run()
        assert summary.outcomes[0].state == "skipped"

    def test_declined_thread_is_skipped(self, make_orchestrator):
        client = FakeClient([heuristic_reply(9)])
        github = FakeGitHub([thread("T1")])
        summary = make_orchestrator(client, github, lambda ctx, a: False).run()
        assert summary.outcomes[0].state == "skipped"
        assert github.resolved == []
        assert len(client.calls) == 1

    def test_outdated_thread_resolved_without_ai(self, make_orchestrator):
        client = FakeClient()
        github = FakeGitHub([thread("T1", outdated=True)])
        summary = make_orchestrator(client, github).run()
        assert summary.outcomes[0].state == "resolved"
        assert github.resolved == [("T1", OUTDATED_MESSAGE)]
        assert client.calls == []

    def test_failure_is_isolated_to_its_thread(self, make_orchestrator, caplog):
        client = FakeClient([
            heuristic_reply(2), "Fixed one",
            BmadError(ErrorKind.AI, "claude timed out after 30s"),
            heuristic_reply(3), "Fixed three",
        ])
        github = FakeGitHub([thread("T1"), thread("T2"), thread("T3")])

        with caplog.at_level(logging.ERROR):
            summary = make_orchestrator(client, github).run()

        assert [o.state for o in summary.outcomes] == ["resolved", "failed", "resolved"]
        assert [tid for tid, _ in github.resolved] == ["T1", "T3"]
        assert summary.count("failed") == 1
        assert "Thread T2 failed" in caplog.text
        assert "heuristic/call_ai" in caplog.text

    def test_parse_failure_marks_thread_failed(self, make_orchestrator):
        client = FakeClient(["I am not sure what to do."])
        github = FakeGitHub([thread("T1")])
        summary = make_orchestrator(client, github).run()
        assert summary.outcomes[0].state == "failed"

    def test_cancellation_stops_the_run(self, make_orchestrator):
        client = FakeClient([cancelled_error("call_ai")])
        github = FakeGitHub([thread("T1"), thread("T2")])
        with pytest.raises(BmadError) as exc_info:
            make_orchestrator(client, github).run()
        assert exc_info.value.cancelled

    def test_no_threads(self, make_orchestrator):
        summary = make_orchestrator(FakeClient(), FakeGitHub([])).run()
        assert summary.outcomes == []
