"""Operator prompts consulted between iterations."""

from __future__ import annotations

import sys
from enum import Enum
from typing import TextIO

_CONTINUE_ANSWERS = {"y", "yes"}
_NO_SIGNAL_CONTINUE_ANSWERS = {"c", "continue"}


class GateAnswer(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"


class ConsoleGate:
    """Reads one line of operator input per question.

    Prompts go to stderr so they never mix into captured stdout. An empty
    answer (including end-of-input) means continue.
    """

    def __init__(self, stdin: TextIO | None = None, stderr: TextIO | None = None) -> None:
        self._stdin = stdin
        self._stderr = stderr

    @property
    def stdin(self) -> TextIO:
        return self._stdin or sys.stdin

    @property
    def stderr(self) -> TextIO:
        return self._stderr or sys.stderr

    def confirm_continue(self) -> GateAnswer:
        """Ask ``Continue? [Y/n]``."""
        return self._ask("Continue? [Y/n] ", _CONTINUE_ANSWERS)

    def confirm_on_no_signal(self, warning: str) -> GateAnswer:
        """Warn that no terminal marker was seen, then ask ``[C/s]``."""
        print(warning, file=self.stderr)
        return self._ask("Continue or stop? [C/s] ", _NO_SIGNAL_CONTINUE_ANSWERS)

    def _ask(self, question: str, affirmative: set[str]) -> GateAnswer:
        self.stderr.write(question)
        self.stderr.flush()
        answer = self.stdin.readline().strip().lower()
        if not answer or answer in affirmative:
            return GateAnswer.CONTINUE
        return GateAnswer.STOP
