"""AI backends. ``create_client`` is the single selection point."""

from bmad.agents.claude import ClaudeClient
from bmad.agents.modes import FULL_ACCESS, TEST_WRITER, ExecutionMode, edit_mode, restricted_mode
from bmad.lib.config import Config
from bmad.lib.errors import BmadError, ErrorKind

__all__ = [
    "ClaudeClient", "ExecutionMode", "FULL_ACCESS", "TEST_WRITER", "edit_mode", "restricted_mode", "create_client",
]

ENGINES = {
    "claude": lambda config: ClaudeClient(timeout=config.engine.timeout),
}


def create_client(config: Config):
    try:
        factory = ENGINES[config.engine.type]
    except KeyError:
        raise BmadError(
            ErrorKind.CONFIG,
            f"Unsupported engine type '{config.engine.type}' (available: {', '.join(sorted(ENGINES))})",
        ) from None
    return factory(config)
