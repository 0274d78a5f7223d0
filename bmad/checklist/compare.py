"""
Derives a status by comparing an actual answer with the expected one.

Used when the evaluator's reply carries an answer but no explicit status.
"""

import re

from bmad.checklist.models import Status

PERCENT_WARN_MARGIN = 10

_NUMBER = re.compile(r"-?\d+")
_AT_LEAST = re.compile(r"^(?:>=|≥)\s*(\d+)")
_AT_MOST = re.compile(r"^(?:<=|≤)\s*(\d+)")
_RANGE = re.compile(r"^(\d+)\s*-\s*(\d+)$")
_PERCENT = re.compile(r"(\d+)\s*%")


def _first_int(text: str) -> int | None:
    match = _NUMBER.search(text)
    return int(match.group()) if match else None


def _is_ac_count(expected: str) -> bool:
    return "total" in expected and "ac" in expected


def compare_answers(expected: str, actual: str, ac_count: int) -> Status:
    expected = expected.strip().lower()
    actual = actual.strip().lower().rstrip(".")

    if _is_ac_count(expected):
        return Status.PASS if _first_int(actual) == ac_count else Status.FAIL

    percent = _PERCENT.search(expected)
    if percent:
        target = int(percent.group(1))
        value = _first_int(actual)
        if value is None:
            return Status.FAIL
        at_most = expected.startswith(("<=", "≤"))
        if (value <= target) if at_most else (value >= target):
            return Status.PASS
        gap = (value - target) if at_most else (target - value)
        return Status.WARN if gap <= PERCENT_WARN_MARGIN else Status.FAIL

    match = _AT_LEAST.match(expected)
    if match:
        value = _first_int(actual)
        return Status.PASS if value is not None and value >= int(match.group(1)) else Status.FAIL

    match = _AT_MOST.match(expected)
    if match:
        value = _first_int(actual)
        return Status.PASS if value is not None and value <= int(match.group(1)) else Status.FAIL

    match = _RANGE.match(expected)
    if match:
        low, high = int(match.group(1)), int(match.group(2))
        value = _first_int(actual)
        if value is None:
            return Status.FAIL
        if low <= value <= high:
            return Status.PASS
        if value in (low - 1, high + 1):
            return Status.WARN
        return Status.FAIL

    return Status.PASS if expected == actual else Status.FAIL
