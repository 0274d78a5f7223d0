"""
Response parsing primitives.

Two families:
- final-block extraction: the reply ends with a structured block that starts
  at the LAST occurrence of an anchor; everything before it is preamble.
- side-channel extraction: the AI writes a YAML file under the run directory
  and we pull one top-level key out of it.
"""

import logging
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from bmad.lib.errors import BmadError, ErrorKind

logger = logging.getLogger(__name__)

EMPTY_KEY = "__empty__"

_QUOTE_CHARS = ('"', "'")


def parse_error(message: str) -> BmadError:
    return BmadError(ErrorKind.PARSE, message)


def strip_quotes(value: str) -> str:
    """Remove one matched pair of surrounding quotes."""
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTE_CHARS:
        return value[1:-1]
    return value


def split_key_value(line: str) -> Optional[tuple[str, str]]:
    """Split on the first ':' only. Returns None for lines without one."""
    if ":" not in line:
        return None
    key, value = line.split(":", 1)
    return key.strip(), strip_quotes(value.strip())


def parse_bool(key: str, value: str) -> bool:
    """Accept case-insensitive true/false only."""
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise parse_error(f"Invalid boolean for '{key}': {value!r} (expected true or false)")


def is_indented(line: str) -> bool:
    return line.startswith("  ") or line.startswith("\t")


def extract_final_block(text: str, anchor: re.Pattern) -> str:
    """
    Return text from the last match of ``anchor`` to end of input.

    The block is dedented by the anchor line's own indentation, so a block
    indented as a whole reads the same as a top-level one.
    """
    last = None
    for match in anchor.finditer(text):
        last = match
    if last is None:
        raise parse_error(f"Anchor '{anchor.pattern}' not found in response")
    block = text[last.start():]
    indent = block[:len(block) - len(block.lstrip(" \t"))]
    if not indent:
        return block
    return "\n".join(
        line[len(indent):] if line.startswith(indent) else line
        for line in block.split("\n")
    )


def find_scalar(lines: list[str], key: str) -> Optional[str]:
    """First top-level ``key: value`` line in ``lines``."""
    for line in lines:
        if is_indented(line):
            continue
        pair = split_key_value(line)
        if pair and pair[0] == key:
            return pair[1]
    return None


def find_all_scalars(lines: list[str], key: str) -> list[str]:
    values = []
    for line in lines:
        if is_indented(line):
            continue
        pair = split_key_value(line)
        if pair and pair[0] == key and pair[1]:
            values.append(pair[1])
    return values


def find_heading(lines: list[str], heading: str) -> Optional[int]:
    """Index of a top-level ``heading:`` line with no inline value."""
    for i, line in enumerate(lines):
        if is_indented(line):
            continue
        pair = split_key_value(line)
        if pair and pair[0] == heading and not pair[1]:
            return i
    return None


def parse_items_block(lines: list[str], start: int) -> dict[str, str]:
    """
    Parse ``key: value`` lines under a heading at ``start``.

    Stops at the first line that is empty, has no ':', or is not indented by
    at least two spaces or one tab.
    """
    items: dict[str, str] = {}
    for line in lines[start + 1:]:
        if not line.strip() or ":" not in line or not is_indented(line):
            break
        key, value = split_key_value(line)
        items[key] = value
    return items


def parse_list_of_maps(lines: list[str], start: int) -> list[dict[str, str]]:
    """
    Parse an indented list of maps under a heading at ``start``::

        alternatives:
          - option: merge
            reason: "fast"
    """
    maps: list[dict[str, str]] = []
    current: Optional[dict[str, str]] = None
    for line in lines[start + 1:]:
        if not line.strip() or not is_indented(line):
            break
        stripped = line.strip()
        if stripped.startswith("- ") or stripped == "-":
            current = {}
            maps.append(current)
            stripped = stripped[1:].strip()
            if not stripped:
                continue
        if current is None:
            break
        pair = split_key_value(stripped)
        if pair is None:
            break
        current[pair[0]] = pair[1]
    return maps


def dedupe_by_key(maps: list[dict[str, str]], key: str) -> list[dict[str, str]]:
    """Keep the first map per value of ``key``; empty values share one bucket."""
    seen = set()
    result = []
    for item in maps:
        bucket = item.get(key, "").strip() or EMPTY_KEY
        if bucket in seen:
            continue
        seen.add(bucket)
        result.append(item)
    return result


def extract_between_markers(text: str, start_marker: str, end_marker: str) -> Optional[str]:
    """Content between the last start marker and the following end marker."""
    start = text.rfind(start_marker)
    if start == -1:
        return None
    start += len(start_marker)
    end = text.find(end_marker, start)
    if end == -1:
        return None
    return text[start:end].strip("\n")


def read_side_channel(path: Path, key: str) -> Any:
    """Load ``path`` as YAML and return its top-level ``key``."""
    if not path.exists():
        raise parse_error(f"Expected output file was not written: {path.name}")
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise BmadError(ErrorKind.STORE, f"Cannot read {path}") from e
    except yaml.YAMLError as e:
        raise parse_error(f"Invalid YAML in {path.name}") from e
    if not isinstance(data, dict) or key not in data:
        raise parse_error(f"Key '{key}' not found in {path.name}")
    logger.debug(f"Read '{key}' from {path.name}")
    return data[key]


def first_line(text: str, default: str = "") -> str:
    """First non-empty line, stripped."""
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return default
