"""Tests for bmad.lib.shell."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from bmad.lib.cancel import CancelToken
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.shell import check_command, run_command


class TestRunCommand:

    @patch("bmad.lib.shell.subprocess.run")
    def test_captures_output(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="out", stderr="")
        result = run_command(["echo", "out"], input="stdin text", timeout=5)
        assert result.success
        assert result.stdout == "out"
        kwargs = mock_run.call_args[1]
        assert kwargs["input"] == "stdin text"
        assert kwargs["timeout"] == 5
        assert kwargs["capture_output"] is True

    @patch("bmad.lib.shell.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="sleep", timeout=1)
        result = run_command(["sleep", "10"], timeout=1)
        assert result.timed_out
        assert not result.success
        assert result.returncode == -1

    @patch("bmad.lib.shell.subprocess.run")
    def test_missing_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError()
        result = run_command(["nope"])
        assert result.returncode == 127
        assert "nope: command not found" in result.stderr

    @patch("bmad.lib.shell.subprocess.run")
    def test_interrupt_cancels_token(self, mock_run):
        mock_run.side_effect = KeyboardInterrupt()
        token = CancelToken()
        with pytest.raises(BmadError) as exc_info:
            run_command(["claude"], cancel=token)
        assert exc_info.value.cancelled
        assert token.cancelled

    @patch("bmad.lib.shell.subprocess.run")
    def test_cancelled_token_skips_command(self, mock_run):
        token = CancelToken()
        token.cancel()
        with pytest.raises(BmadError):
            run_command(["git", "status"], cancel=token)
        mock_run.assert_not_called()


class TestCheckCommand:

    @patch("bmad.lib.shell.subprocess.run")
    def test_failure_is_platform_error(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="fatal: not a repo")
        with pytest.raises(BmadError) as exc_info:
            check_command(["git", "status"])
        err = exc_info.value
        assert err.kind is ErrorKind.PLATFORM
        assert err.details["returncode"] == 1
        assert err.details["stderr"] == "fatal: not a repo"
