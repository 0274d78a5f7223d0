"""
Prompt builder for bmad-cli.

Loads prompt templates from the paths registered under ``templates:`` in
bmad-cli.yaml and interpolates variables.
Templates use Python str.format() syntax: {variable_name}, including
attribute and index access ({story.title}, {answers[q1]}).
Use {{ and }} for literal braces in LLM output (e.g., YAML examples).

HTML comments (<!-- ... -->) are stripped before rendering - use them for
documentation that shouldn't be sent to the LLM.

The reserved placeholder {reference_section} receives optional reference
documents; it renders empty when none are supplied.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

from bmad.lib.errors import BmadError, ErrorKind

logger = logging.getLogger(__name__)

__all__ = ["load_prompt", "render_prompt", "build_section", "build_reference_section", "clear_cache"]

# Pattern to strip HTML comments (including multiline)
_HTML_COMMENT_PATTERN = re.compile(r'<!--.*?-->\s*', re.DOTALL)

REFERENCE_PLACEHOLDER = "reference_section"


@lru_cache(maxsize=64)
def _read_template(path: Path) -> str:
    content = path.read_text()
    content = _HTML_COMMENT_PATTERN.sub('', content)
    return content.lstrip()


def load_prompt(path: Path) -> str:
    """
    Load a prompt template (cached).

    Raises:
        BmadError(TEMPLATE): If the template file doesn't exist or can't be read
    """
    path = Path(path)
    if not path.exists():
        raise BmadError(ErrorKind.TEMPLATE, f"Prompt template not found: {path}")

    logger.debug(f"Loading prompt template: {path}")
    try:
        return _read_template(path.resolve())
    except OSError as e:
        raise BmadError(ErrorKind.TEMPLATE, f"Cannot read prompt template {path}") from e


def render_prompt(path: Path, reference: Optional[str] = None, **kwargs) -> str:
    """
    Load and render a prompt template with variables.

    Args:
        path: Template file path from the template registry
        reference: Optional reference text injected under {reference_section}
        **kwargs: Variables to interpolate

    Raises:
        BmadError(TEMPLATE): missing variable, malformed placeholder or
            a failing attribute lookup

    Example:
        render_prompt(config.template("tasks"), story=story, docs=docs)
    """
    template = load_prompt(path)
    kwargs.setdefault(REFERENCE_PLACEHOLDER, build_section(reference, "## Reference"))

    try:
        return template.format(**kwargs)
    except KeyError as e:
        raise BmadError(
            ErrorKind.TEMPLATE,
            f"Missing required variable {e} in prompt '{Path(path).name}'. "
            f"Provided: {sorted(kwargs.keys())}",
        ) from e
    except (AttributeError, IndexError) as e:
        raise BmadError(ErrorKind.TEMPLATE, f"Failed to execute prompt '{Path(path).name}'") from e
    except ValueError as e:
        raise BmadError(ErrorKind.TEMPLATE, f"Malformed prompt template '{Path(path).name}'") from e


def build_section(
    content: str | None,
    header: str,
    empty_msg: str | None = None
) -> str:
    """
    Build a markdown section if content exists.

    Returns:
        Formatted section string. Empty string if content is None AND empty_msg is None.
    """
    if content:
        return f"{header}\n\n{content}\n"
    elif empty_msg is not None:
        return f"{header}\n\n{empty_msg}\n"
    else:
        return ""


def build_reference_section(docs: dict[str, str]) -> str | None:
    """Join named reference documents into one block, or None when empty."""
    parts = [build_section(text, f"### {name}") for name, text in docs.items() if text]
    return "\n".join(parts) if parts else None


def clear_cache():
    """Clear the prompt cache (useful for testing or hot-reload)."""
    _read_template.cache_clear()
