"""
Message variants emitted by ``claude --output-format stream-json``.

Each line of the stream is one JSON object tagged by ``type``; assistant and
user messages carry a list of content blocks, each tagged by its own ``type``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Union

from bmad.lib.errors import BmadError, ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class TextBlock:
    text: str


@dataclass
class ThinkingBlock:
    thinking: str


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: dict = field(default_factory=dict)


@dataclass
class ToolResultBlock:
    tool_use_id: str
    content: Any = None
    is_error: bool = False


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class UserMessage:
    content: list[ContentBlock]


@dataclass
class AssistantMessage:
    content: list[ContentBlock]
    model: str = ""


@dataclass
class SystemMessage:
    subtype: str
    data: dict = field(default_factory=dict)


@dataclass
class ResultMessage:
    subtype: str
    is_error: bool
    result: str = ""
    session_id: str = ""
    num_turns: int = 0
    duration_ms: int = 0
    total_cost_usd: float = 0.0


Message = Union[UserMessage, AssistantMessage, SystemMessage, ResultMessage]


def parse_block(data: dict) -> ContentBlock | None:
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(text=data.get("text", ""))
    if block_type == "thinking":
        return ThinkingBlock(thinking=data.get("thinking", ""))
    if block_type == "tool_use":
        return ToolUseBlock(id=data.get("id", ""), name=data.get("name", ""), input=data.get("input") or {})
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=data.get("tool_use_id", ""),
            content=data.get("content"),
            is_error=bool(data.get("is_error")),
        )
    logger.debug(f"Ignoring unknown content block type: {block_type}")
    return None


def _blocks(message: dict) -> list[ContentBlock]:
    content = message.get("content")
    if isinstance(content, str):
        return [TextBlock(text=content)]
    blocks = [parse_block(b) for b in content or [] if isinstance(b, dict)]
    return [b for b in blocks if b is not None]


def parse_message(data: dict) -> Message | None:
    """Build the variant for one stream object; unknown types return None."""
    if not isinstance(data, dict):
        raise BmadError(ErrorKind.AI, f"Stream message is not an object: {data!r}")

    msg_type = data.get("type")
    if msg_type == "assistant":
        message = data.get("message") or {}
        return AssistantMessage(content=_blocks(message), model=message.get("model", ""))
    if msg_type == "user":
        return UserMessage(content=_blocks(data.get("message") or {}))
    if msg_type == "system":
        return SystemMessage(subtype=data.get("subtype", ""), data=data)
    if msg_type == "result":
        return ResultMessage(
            subtype=data.get("subtype", ""),
            is_error=bool(data.get("is_error")),
            result=data.get("result") or "",
            session_id=data.get("session_id", ""),
            num_turns=data.get("num_turns", 0),
            duration_ms=data.get("duration_ms", 0),
            total_cost_usd=data.get("total_cost_usd") or 0.0,
        )
    logger.debug(f"Ignoring unknown message type: {msg_type}")
    return None


def collect_text(messages: list[Message]) -> str:
    """Concatenate every text block of every assistant message."""
    parts = []
    for message in messages:
        if isinstance(message, AssistantMessage):
            parts.extend(block.text for block in message.content if isinstance(block, TextBlock))
    return "".join(parts)
