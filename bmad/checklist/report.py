"""Terminal rendering of checklist reports."""

from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from bmad.checklist.models import STATUS_ACCEPTABLE, STATUS_PASSED, Report, Status

STATUS_STYLES = {
    Status.PASS: "green",
    Status.WARN: "yellow",
    Status.FAIL: "bold red",
    Status.SKIP: "dim",
}

OVERALL_STYLES = {
    STATUS_PASSED: "bold green",
    STATUS_ACCEPTABLE: "bold yellow",
}

MAX_ANSWER_WIDTH = 60


def _truncate(text: str, width: int = MAX_ANSWER_WIDTH) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


def build_table(report: Report) -> Table:
    table = Table(title=f"Checklist: {report.story_id} {report.story_title}", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Section")
    table.add_column("Expected")
    table.add_column("Actual")
    table.add_column("Status")

    for i, result in enumerate(report.results, 1):
        table.add_row(
            str(i),
            result.section_path,
            _truncate(result.expected),
            _truncate(result.actual),
            Text(result.status.value, style=STATUS_STYLES[result.status]),
        )
    return table


def summary_text(report: Report) -> Text:
    text = Text()
    text.append(
        f"Total: {report.total_prompts}  Pass: {report.pass_count}  Warn: {report.warn_count}  "
        f"Fail: {report.fail_count}  Skipped: {report.skip_count}  "
        f"Pass rate: {report.pass_rate:.1f}%\n"
    )
    text.append("Overall: ")
    text.append(report.overall_status, style=OVERALL_STYLES.get(report.overall_status, "bold red"))
    return text


def render_report(report: Report, console: Optional[Console] = None) -> None:
    console = console or Console()
    console.print(build_table(report))
    console.print(summary_text(report))
    for i, result in enumerate(report.results, 1):
        if result.status is Status.FAIL and result.action_if_fail:
            console.print(Text(f"  #{i} {result.section_path}: {result.action_if_fail}", style="red"))
