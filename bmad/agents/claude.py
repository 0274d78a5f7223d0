"""
Claude Code CLI backend.

Runs ``claude -p --output-format stream-json`` with the user prompt on stdin
and returns the concatenated assistant text.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from bmad.agents.messages import Message, ResultMessage, collect_text, parse_message
from bmad.agents.modes import ExecutionMode
from bmad.lib.cancel import CancelToken
from bmad.lib.errors import BmadError, ErrorKind
from bmad.lib.shell import run_command

logger = logging.getLogger(__name__)

CLAUDE_COMMAND = "claude"
DEFAULT_TIMEOUT = 600
PERMISSION_MODE = "acceptEdits"


def build_command(system_prompt: str, model: str, mode: ExecutionMode) -> list[str]:
    cmd = [
        CLAUDE_COMMAND,
        "-p",
        "--output-format", "stream-json",
        "--verbose",
        "--model", model,
        "--permission-mode", PERMISSION_MODE,
    ]
    if system_prompt:
        cmd += ["--system-prompt", system_prompt]
    if mode.allowed_tools:
        cmd += ["--allowedTools", ",".join(mode.allowed_tools)]
    if mode.disallowed_tools:
        cmd += ["--disallowedTools", ",".join(mode.disallowed_tools)]
    return cmd


def parse_stream(output: str) -> list[Message]:
    """Parse newline-delimited stream-json output; non-JSON lines are skipped."""
    messages = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping non-JSON stream line: {line[:80]}")
            continue
        message = parse_message(data)
        if message is not None:
            messages.append(message)
    return messages


class ClaudeClient:
    """AI client backed by the claude CLI."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, cwd: Optional[Path] = None):
        self.timeout = timeout
        self.cwd = cwd

    def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        mode: ExecutionMode,
        cancel: Optional[CancelToken] = None,
    ) -> str:
        """Run one prompt and return the full text response."""
        cmd = build_command(system_prompt, model, mode)
        logger.info(f"Calling claude (model={model}, mode={mode.name})")

        result = run_command(cmd, cwd=self.cwd, input=user_prompt, timeout=self.timeout, cancel=cancel)

        if result.timed_out:
            raise BmadError(ErrorKind.AI, f"claude timed out after {self.timeout}s")
        if result.returncode == 127:
            raise BmadError(ErrorKind.AI, "claude CLI not found on PATH")

        messages = parse_stream(result.stdout)
        final = next((m for m in reversed(messages) if isinstance(m, ResultMessage)), None)

        if final is not None and final.is_error:
            raise BmadError(
                ErrorKind.AI,
                f"claude reported an error ({final.subtype})",
                details={"result": final.result, "stderr": result.stderr},
            )
        if result.returncode != 0:
            raise BmadError(
                ErrorKind.AI,
                f"claude exited with code {result.returncode}",
                details={"returncode": result.returncode, "stderr": result.stderr},
            )

        if final is not None:
            logger.debug(
                f"claude finished: turns={final.num_turns} duration_ms={final.duration_ms} "
                f"cost_usd={final.total_cost_usd}"
            )

        text = collect_text(messages)
        if not text and final is not None:
            text = final.result
        return text
