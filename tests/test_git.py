"""Tests for bmad.lib.git."""

from unittest.mock import MagicMock, patch

import pytest

from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.git import current_branch, ensure_story_branch, slugify, story_branch_name


def ok(stdout=""):
    return MagicMock(returncode=0, stdout=stdout, stderr="")


def missing():
    return MagicMock(returncode=1, stdout="", stderr="")


def git_calls(mock_run):
    return [c[0][0][1:] for c in mock_run.call_args_list]


class TestBranchNames:

    @pytest.mark.parametrize("title,expected", [
        ("Pay by card", "pay-by-card"),
        ("User's  profile: edit!", "users-profile-edit"),
        ("snake_case -- title", "snake-case-title"),
    ])
    def test_slugify(self, title, expected):
        assert slugify(title) == expected

    def test_story_branch_name(self):
        assert story_branch_name("3.1", "Pay by card") == "story/3.1-pay-by-card"


class TestCurrentBranch:

    @patch("bmad.lib.shell.subprocess.run")
    def test_strips_output(self, mock_run):
        mock_run.return_value = ok("main\n")
        assert current_branch() == "main"
        assert mock_run.call_args[0][0] == ["git", "branch", "--show-current"]


class TestEnsureStoryBranch:

    BRANCH = "story/3.1-pay-by-card"

    @patch("bmad.lib.shell.subprocess.run")
    def test_dirty_tree_refused(self, mock_run):
        mock_run.return_value = ok(" M app.py\n")
        with pytest.raises(BmadError) as exc_info:
            ensure_story_branch("3.1", "Pay by card")
        assert exc_info.value.kind is ErrorKind.PLATFORM
        assert "uncommitted" in exc_info.value.message

    @patch("bmad.lib.shell.subprocess.run")
    def test_detached_head_refused(self, mock_run):
        mock_run.side_effect = [ok(""), ok("")]
        with pytest.raises(BmadError, match="detached"):
            ensure_story_branch("3.1", "Pay by card")

    @patch("bmad.lib.shell.subprocess.run")
    def test_already_on_branch(self, mock_run):
        mock_run.side_effect = [ok(""), ok(self.BRANCH + "\n")]
        assert ensure_story_branch("3.1", "Pay by card") == self.BRANCH
        assert mock_run.call_count == 2

    @patch("bmad.lib.shell.subprocess.run")
    def test_switches_to_local_branch(self, mock_run):
        mock_run.side_effect = [ok(""), ok("main\n"), ok("abc123\n"), ok("")]
        ensure_story_branch("3.1", "Pay by card")
        assert git_calls(mock_run)[-1] == ["switch", self.BRANCH]

    @patch("bmad.lib.shell.subprocess.run")
    def test_tracks_remote_branch(self, mock_run):
        mock_run.side_effect = [ok(""), ok("main\n"), missing(), ok("abc\trefs/heads/x\n"), ok("")]
        ensure_story_branch("3.1", "Pay by card")
        assert git_calls(mock_run)[-1] == ["checkout", "-b", self.BRANCH, f"origin/{self.BRANCH}"]

    @patch("bmad.lib.shell.subprocess.run")
    def test_creates_new_branch(self, mock_run):
        mock_run.side_effect = [ok(""), ok("main\n"), missing(), ok(""), ok("")]
        ensure_story_branch("3.1", "Pay by card")
        assert git_calls(mock_run)[-1] == ["switch", "-c", self.BRANCH]

    @patch("bmad.lib.shell.subprocess.run")
    def test_force_recreates_from_main(self, mock_run):
        mock_run.side_effect = [ok(""), ok(self.BRANCH + "\n"), ok(""), ok("abc\n"), ok(""), ok("")]
        ensure_story_branch("3.1", "Pay by card", force=True)
        assert git_calls(mock_run)[2:] == [
            ["switch", "main"],
            ["rev-parse", "--verify", "--quiet", self.BRANCH],
            ["branch", "-D", self.BRANCH],
            ["switch", "-c", self.BRANCH],
        ]
