"""Tests for the bmad-cli entrypoint and command wiring."""

import io

import pytest
from rich.console import Console

from bmad import cli
from bmad.commands import pr as pr_commands
from bmad.commands import us as us_commands
from bmad.commands.pr import build_summary_table
from bmad.lib.cancel import cancelled_error
from bmad.lib.errors import BmadError, ErrorKind
from bmad.story.implement import STEPS
from bmad.triage.models import ThreadOutcome, TriageSummary


@pytest.fixture(autouse=True)
def _no_signal_handlers(monkeypatch):
    monkeypatch.setattr(cli, "install_signal_handlers", lambda token: None)


class TestParser:

    def test_pr_triage(self):
        args = cli.build_parser().parse_args(["pr", "triage", "--pr", "12"])
        assert args.pr == 12
        assert args.func is pr_commands.cmd_pr_triage

    def test_pr_defaults_to_current_branch(self):
        args = cli.build_parser().parse_args(["pr", "triage"])
        assert args.pr is None

    def test_us_create(self):
        args = cli.build_parser().parse_args(["--config", "x.yaml", "us", "create", "3.1", "--skip-checklist"])
        assert args.config == "x.yaml"
        assert args.story == "3.1"
        assert args.skip_checklist
        assert args.func is us_commands.cmd_us_create

    def test_us_implement_force(self):
        args = cli.build_parser().parse_args(["us", "implement", "2.4", "--force"])
        assert args.force
        assert args.steps == list(STEPS)
        assert args.func is us_commands.cmd_us_implement

    def test_us_implement_steps(self):
        args = cli.build_parser().parse_args(["us", "implement", "2.4", "--steps", "implement_feature,generate_tests"])
        assert args.steps == ["generate_tests", "implement_feature"]

    def test_us_implement_unknown_step(self, capsys):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["us", "implement", "2.4", "--steps", "deploy"])
        assert "Unknown step(s): deploy" in capsys.readouterr().err

    def test_us_checklist(self):
        args = cli.build_parser().parse_args(["us", "checklist", "1.1"])
        assert args.func is us_commands.cmd_us_checklist

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:

    def test_missing_config(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("BMAD_CONFIG", raising=False)

        assert cli.main(["us", "checklist", "1.1"]) == cli.EXIT_ERROR
        assert "ERROR [main] config: Config file not found" in capsys.readouterr().err

    def test_command_error(self, monkeypatch, capsys):
        def failing(args, session):
            raise BmadError(ErrorKind.AI, "claude exited with code 2", stage="story_generator")

        monkeypatch.setattr(cli, "open_session", lambda path, cancel: object())
        monkeypatch.setattr(us_commands, "cmd_us_checklist", failing)

        assert cli.main(["us", "checklist", "1.1"]) == 1
        assert "ERROR [story_generator] ai: claude exited with code 2" in capsys.readouterr().err

    def test_cancelled(self, monkeypatch, capsys):
        def cancelled(args, session):
            raise cancelled_error("checklist")

        monkeypatch.setattr(cli, "open_session", lambda path, cancel: object())
        monkeypatch.setattr(pr_commands, "cmd_pr_triage", cancelled)

        assert cli.main(["pr", "triage"]) == cli.EXIT_INTERRUPTED
        assert "Interrupted" in capsys.readouterr().err

    def test_keyboard_interrupt(self, monkeypatch):
        def interrupted(args, session):
            raise KeyboardInterrupt

        monkeypatch.setattr(cli, "open_session", lambda path, cancel: object())
        monkeypatch.setattr(pr_commands, "cmd_pr_triage", interrupted)

        assert cli.main(["pr", "triage"]) == 130

    def test_success(self, monkeypatch):
        monkeypatch.setattr(cli, "open_session", lambda path, cancel: object())
        monkeypatch.setattr(pr_commands, "cmd_pr_triage", lambda args, session: 0)
        assert cli.main(["pr", "triage", "--pr", "3"]) == cli.EXIT_OK


class TestSummaryTable:

    def test_rows(self):
        summary = TriageSummary(pr_number=7, outcomes=[
            ThreadOutcome("T1", "app.py:3", "resolved", score=2, message="Renamed"),
            ThreadOutcome("T2", "", "failed", message="claude timed out"),
        ])
        out = io.StringIO()
        Console(file=out, width=120, color_system=None).print(build_summary_table(summary))
        text = out.getvalue()
        assert "PR #7 triage" in text
        assert "app.py:3" in text
        assert "claude timed out" in text
        assert "resolved" in text
