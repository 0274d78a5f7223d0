"""
Cooperative cancellation.

A CancelToken is created once per CLI invocation. SIGINT and SIGHUP mark the
token and raise KeyboardInterrupt so that blocking reads and subprocess waits
return at once; pipelines check the token at every stage boundary.
"""

import logging
import signal
import threading

from bmad.lib.errors import BmadError, ErrorKind

logger = logging.getLogger(__name__)


class CancelToken:
    """Thread-safe cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str | None = None) -> None:
        if self._event.is_set():
            raise BmadError(ErrorKind.CANCELLED, "Operation cancelled", stage=stage)


def install_signal_handlers(token: CancelToken) -> None:
    """Route SIGINT/SIGHUP to ``token``."""

    def _handler(signum, frame):
        logger.debug(f"Received signal {signum}, cancelling")
        token.cancel()
        raise KeyboardInterrupt

    signal.signal(signal.SIGINT, _handler)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, _handler)


def cancelled_error(stage: str | None = None) -> BmadError:
    return BmadError(ErrorKind.CANCELLED, "Operation cancelled", stage=stage)
