"""
Terminal interaction for the human-in-the-loop steps.

All prompts go through one InputCollector so they are strictly interleaved.
``input_fn`` and ``output_fn`` are injectable for tests.
"""

import logging
from typing import Callable, Optional

from bmad.lib.cancel import cancelled_error

logger = logging.getLogger(__name__)

APPLY = "apply"
REFINE = "refine"
EXIT = "exit"


class InputCollector:
    """Reads answers from the terminal."""

    def __init__(
        self,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ):
        self._input = input_fn
        self._print = output_fn

    def _read(self, prompt: str) -> str:
        try:
            return self._input(prompt)
        except (EOFError, KeyboardInterrupt):
            raise cancelled_error("input") from None

    def ask_questions(self, questions: list) -> dict[str, str]:
        """
        Ask every clarification question, returning id -> answer.

        A number picks the matching option; 0 or anything else is kept as a
        free-text answer.
        """
        answers: dict[str, str] = {}
        self._print("")
        self._print("=" * 60)
        self._print("CLARIFICATION NEEDED")
        self._print("=" * 60)

        total = len(questions)
        for i, question in enumerate(questions, 1):
            self._print("")
            self._print(f"[{i}/{total}] {question.text}")
            if question.context:
                self._print(f"  Context: {question.context}")
            if question.options:
                for n, option in enumerate(question.options, 1):
                    self._print(f"  {n}) {option}")
                self._print("  0) Other (type your answer)")

            answer = ""
            while not answer:
                answer = self._read("Your answer (number or text): ").strip()
                if answer == "0":
                    answer = self._read("Your answer: ").strip()

            if answer.isdigit() and question.options:
                idx = int(answer) - 1
                if 0 <= idx < len(question.options):
                    answer = question.options[idx]
            answers[question.id] = answer
            logger.debug(f"Answer for {question.id}: {answer}")

        return answers

    def show_fix_prompt(self, fix_prompt: str) -> None:
        self._print("")
        self._print("-" * 60)
        self._print("PROPOSED FIX")
        self._print("-" * 60)
        self._print(fix_prompt)
        self._print("-" * 60)

    def ask_apply_refine_exit(self) -> str:
        """Return APPLY, REFINE or EXIT. Anything unrecognised exits."""
        self._print("")
        self._print("  [1] Apply fix")
        self._print("  [2] Refine fix with feedback")
        self._print("  [3] Exit")
        choice = self._read("Select [1-3]: ").strip().lower()
        if choice in ("1", "a", "apply"):
            return APPLY
        if choice in ("2", "r", "refine"):
            return REFINE
        return EXIT

    def ask_feedback(self) -> str:
        """Multi-line feedback, terminated by an empty line."""
        self._print("Enter feedback (empty line to finish):")
        lines = []
        while True:
            line = self._read("")
            if not line.strip():
                break
            lines.append(line.rstrip())
        return "\n".join(lines)

    def confirm(self, message: str, default: Optional[bool] = None) -> bool:
        """Yes/no question. Empty input returns ``default`` (or asks again)."""
        hint = "[Y/n]" if default is True else "[y/N]" if default is False else "(y/n)"
        while True:
            response = self._read(f"{message} {hint} ").strip().lower()
            if response in ("y", "yes"):
                return True
            if response in ("n", "no"):
                return False
            if not response and default is not None:
                return default
