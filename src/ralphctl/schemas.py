"""Pydantic models for the data that flows through the iteration engine."""

from __future__ import annotations

import datetime as dt
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Process runner output
# ---------------------------------------------------------------------------


class IterationOutcome(BaseModel):
    """Result of one agent subprocess invocation.

    A cancelled invocation is never reported as clean, whatever status the
    child actually exited with.
    """

    exited_cleanly: bool = False
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    was_cancelled: bool = False
    duration_seconds: float = 0.0

    @model_validator(mode="after")
    def _cancellation_is_never_clean(self) -> IterationOutcome:
        if self.was_cancelled:
            self.exited_cleanly = False
        return self


# ---------------------------------------------------------------------------
# Control signals
# ---------------------------------------------------------------------------


class LoopMode(str, Enum):
    """Which loop variant is running."""

    FORWARD = "forward"
    REVERSE = "reverse"


class SignalKind(str, Enum):
    """Control markers the agent can print on a line of its own."""

    DONE = "done"
    CONTINUE = "continue"
    BLOCKED = "blocked"
    FOUND = "found"
    INCONCLUSIVE = "inconclusive"
    NONE = "none"


_PARAMETERIZED_KINDS = {SignalKind.BLOCKED, SignalKind.FOUND, SignalKind.INCONCLUSIVE}


class ControlSignal(BaseModel):
    """A resolved control signal; ``text`` carries the marker parameter."""

    model_config = ConfigDict(frozen=True)

    kind: SignalKind = SignalKind.NONE
    text: str | None = None

    @model_validator(mode="after")
    def _text_matches_kind(self) -> ControlSignal:
        if self.kind in _PARAMETERIZED_KINDS and self.text is None:
            raise ValueError(f"{self.kind.value} signal requires text")
        if self.kind not in _PARAMETERIZED_KINDS and self.text is not None:
            raise ValueError(f"{self.kind.value} signal does not carry text")
        return self

    @classmethod
    def done(cls) -> ControlSignal:
        return cls(kind=SignalKind.DONE)

    @classmethod
    def proceed(cls) -> ControlSignal:
        return cls(kind=SignalKind.CONTINUE)

    @classmethod
    def blocked(cls, reason: str) -> ControlSignal:
        return cls(kind=SignalKind.BLOCKED, text=reason)

    @classmethod
    def found(cls, summary: str) -> ControlSignal:
        return cls(kind=SignalKind.FOUND, text=summary)

    @classmethod
    def inconclusive(cls, reason: str) -> ControlSignal:
        return cls(kind=SignalKind.INCONCLUSIVE, text=reason)

    @classmethod
    def none(cls) -> ControlSignal:
        return cls(kind=SignalKind.NONE)


# ---------------------------------------------------------------------------
# Loop outcome
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    """Process exit statuses exposed to the invoking shell."""

    SUCCESS = 0
    ERROR = 1
    MAX_ITERATIONS = 2
    BLOCKED = 3
    INCONCLUSIVE = 4
    INTERRUPTED = 130


class TerminalState(str, Enum):
    """Final state of one controller run."""

    COMPLETED = "completed"
    FOUND = "found"
    BLOCKED = "blocked"
    INCONCLUSIVE = "inconclusive"
    MAX_ITERATIONS = "max_iterations"
    USER_STOPPED = "user_stopped"
    INTERRUPTED = "interrupted"
    FATAL = "fatal"

    @property
    def exit_code(self) -> ExitCode:
        return _EXIT_CODES[self]


_EXIT_CODES: dict[TerminalState, ExitCode] = {
    TerminalState.COMPLETED: ExitCode.SUCCESS,
    TerminalState.FOUND: ExitCode.SUCCESS,
    TerminalState.USER_STOPPED: ExitCode.SUCCESS,
    TerminalState.FATAL: ExitCode.ERROR,
    TerminalState.MAX_ITERATIONS: ExitCode.MAX_ITERATIONS,
    TerminalState.BLOCKED: ExitCode.BLOCKED,
    TerminalState.INCONCLUSIVE: ExitCode.INCONCLUSIVE,
    TerminalState.INTERRUPTED: ExitCode.INTERRUPTED,
}


class LoopResult(BaseModel):
    """Summary of a finished controller run."""

    mode: LoopMode
    state: TerminalState
    iterations_run: int = 0
    iterations_completed: int = 0
    max_iterations: int = 1
    detail: str = ""
    agent_exit_code: int | None = None
    started_at: str = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc).isoformat())
    finished_at: str | None = None

    @property
    def exit_code(self) -> int:
        return int(self.state.exit_code)
