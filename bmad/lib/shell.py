"""External command runner with timeout and cancellation handling."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from bmad.lib.cancel import CancelToken, cancelled_error
from bmad.lib.errors import BmadError, ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60


@dataclass
class CommandResult:
    """Result of an external command."""
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return (self.stdout + self.stderr).strip()


def run_command(
    args: list[str],
    cwd: Optional[Path] = None,
    input: Optional[str] = None,
    timeout: Optional[int] = DEFAULT_TIMEOUT,
    env: Optional[dict] = None,
    cancel: Optional[CancelToken] = None,
) -> CommandResult:
    """
    Run a command, capturing stdout and stderr.

    A missing executable is reported as returncode 127. An interrupt while
    waiting kills the child (subprocess.run does this) and surfaces as a
    CANCELLED error.
    """
    if cancel is not None:
        cancel.raise_if_cancelled()

    logger.debug(f"Running: {' '.join(args)}")
    try:
        result = subprocess.run(
            args,
            cwd=str(cwd) if cwd else None,
            input=input,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(
            returncode=-1,
            stdout="",
            stderr=f"Command timed out after {timeout}s",
            timed_out=True,
        )
    except FileNotFoundError:
        return CommandResult(returncode=127, stdout="", stderr=f"{args[0]}: command not found")
    except KeyboardInterrupt:
        if cancel is not None:
            cancel.cancel()
        raise cancelled_error() from None

    return CommandResult(
        returncode=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
    )


def check_command(
    args: list[str],
    cwd: Optional[Path] = None,
    input: Optional[str] = None,
    timeout: Optional[int] = DEFAULT_TIMEOUT,
    cancel: Optional[CancelToken] = None,
) -> CommandResult:
    """Run a command and raise a PLATFORM error on non-zero exit."""
    result = run_command(args, cwd=cwd, input=input, timeout=timeout, cancel=cancel)
    if not result.success:
        raise BmadError(
            ErrorKind.PLATFORM,
            f"'{' '.join(args[:3])}' failed with exit code {result.returncode}",
            details={
                "returncode": result.returncode,
                "stdout": result.stdout,
                "stderr": result.stderr,
            },
        )
    return result
