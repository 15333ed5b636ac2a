"""Iteration controller.

The :class:`IterationLoop` feeds the same prompt to a fresh agent process
once per iteration, logs each transcript, and decides from the control
markers in the agent's stdout whether to go round again. Iterations never
overlap; the only state shared with other threads is the cancellation
token.
"""

from __future__ import annotations

import datetime as dt
import logging
import sys
from collections.abc import Callable
from typing import TextIO

from ralphctl.agent_runner import AgentRunner
from ralphctl.agent_signals import DONE_MARKER, detect, missing_signal_warning
from ralphctl.cancellation import CancellationToken
from ralphctl.history_log import IterationLogWriter, format_iteration_header
from ralphctl.interaction import ConsoleGate, GateAnswer
from ralphctl.progress import TaskCount
from ralphctl.schemas import (
    ControlSignal,
    IterationOutcome,
    LoopMode,
    LoopResult,
    SignalKind,
    TerminalState,
)

logger = logging.getLogger(__name__)

PlanProgress = Callable[[], TaskCount | None]


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class IterationLoop:
    """Runs the bounded build or investigation loop.

    Parameters
    ----------
    prompt:
        Text fed to the agent's stdin on every iteration.
    mode:
        :attr:`LoopMode.FORWARD` (build until done) or
        :attr:`LoopMode.REVERSE` (investigate until answered).
    runner:
        The :class:`AgentRunner` spawning one agent process per iteration.
    log_writer:
        Receives every iteration's stdout transcript, interrupted ones
        included.
    gate:
        Asked before continuing in pause mode and when no marker is found.
    cancellation:
        Shared with the SIGINT handler; once set, the in-flight agent is
        terminated and no new iteration starts.
    plan_progress:
        Returns the plan's checkbox count for the interrupt summary
        (forward mode only); ``None`` from it means the plan is unreadable.
    """

    def __init__(
        self,
        prompt: str,
        *,
        runner: AgentRunner,
        log_writer: IterationLogWriter,
        mode: LoopMode = LoopMode.FORWARD,
        max_iterations: int = 50,
        pause: bool = False,
        gate: ConsoleGate | None = None,
        cancellation: CancellationToken | None = None,
        plan_progress: PlanProgress | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.prompt = prompt
        self.mode = mode
        self.runner = runner
        self.log_writer = log_writer
        self.max_iterations = max_iterations
        self.pause = pause
        self.gate = gate or ConsoleGate()
        self.cancellation = cancellation or CancellationToken()
        self.plan_progress = plan_progress
        self._stdout = stdout
        self._stderr = stderr

    @property
    def stdout(self) -> TextIO:
        return self._stdout or sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr or sys.stderr

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def run(self) -> LoopResult:
        """Iterate until a terminal state is reached and return it."""
        result = LoopResult(
            mode=self.mode,
            state=TerminalState.MAX_ITERATIONS,
            max_iterations=self.max_iterations,
        )
        logger.info(
            "Starting %s loop: agent=%s, max_iterations=%d, pause=%s",
            self.mode.value,
            self.runner.name,
            self.max_iterations,
            self.pause,
        )

        for iteration in range(1, self.max_iterations + 1):
            if self.cancellation.is_cancelled:
                self._interrupted(result)
                break

            result.iterations_run = iteration
            self._emit(format_iteration_header(iteration))
            outcome = self.runner.run(self.prompt, cancellation=self.cancellation)
            logger.info(
                "Iteration %d finished (exit=%s, cancelled=%s, %.1fs)",
                iteration,
                outcome.exit_code,
                outcome.was_cancelled,
                outcome.duration_seconds,
            )
            self.log_writer.append(iteration, outcome.stdout)

            if outcome.was_cancelled:
                self._interrupted(result)
                break

            result.iterations_completed = iteration

            if not outcome.exited_cleanly:
                self._fatal(result, outcome)
                break

            signal = detect(outcome.stdout, self.mode)
            if self._dispatch(result, signal):
                break
            if self.cancellation.is_cancelled:
                self._interrupted(result)
                break
        else:
            self._max_iterations_reached(result)

        result.finished_at = dt.datetime.now(dt.timezone.utc).isoformat()
        logger.info(
            "Loop finished: %s after %d iteration(s)", result.state.value, result.iterations_run
        )
        return result

    # ------------------------------------------------------------------
    # Signal dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, result: LoopResult, signal: ControlSignal) -> bool:
        """Apply *signal*; return True when the loop reached a terminal state."""
        kind = signal.kind
        if kind is SignalKind.BLOCKED:
            result.state = TerminalState.BLOCKED
            result.detail = signal.text or ""
            self._warn(f"blocked: {result.detail}")
            return True

        if kind is SignalKind.DONE and self.mode is LoopMode.FORWARD:
            result.state = TerminalState.COMPLETED
            self._emit("=== Loop complete ===")
            return True

        if kind is SignalKind.FOUND and self.mode is LoopMode.REVERSE:
            result.state = TerminalState.FOUND
            result.detail = signal.text or ""
            self._emit("=== Investigation complete ===")
            self._emit(f"Found: {result.detail}")
            return True

        if kind is SignalKind.INCONCLUSIVE and self.mode is LoopMode.REVERSE:
            result.state = TerminalState.INCONCLUSIVE
            result.detail = signal.text or ""
            self._warn("=== Investigation inconclusive ===")
            self._warn(result.detail)
            return True

        if kind is SignalKind.NONE and not self.pause:
            answer = self.gate.confirm_on_no_signal(missing_signal_warning(self.mode))
            if answer is GateAnswer.STOP:
                return self._user_stopped(result)

        if self.pause and self.gate.confirm_continue() is GateAnswer.STOP:
            return self._user_stopped(result)
        return False

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _user_stopped(self, result: LoopResult) -> bool:
        # Ctrl+C while the gate was waiting outranks the typed answer.
        if self.cancellation.is_cancelled:
            self._interrupted(result)
            return True
        result.state = TerminalState.USER_STOPPED
        self._emit("Stopped by user.")
        return True

    def _fatal(self, result: LoopResult, outcome: IterationOutcome) -> None:
        code = outcome.exit_code if outcome.exit_code is not None else -1
        result.state = TerminalState.FATAL
        result.agent_exit_code = code
        result.detail = f"{self.runner.name} exited with code {code}"
        self._warn(f"error: {result.detail}")

    def _interrupted(self, result: LoopResult) -> None:
        result.state = TerminalState.INTERRUPTED
        summary = f"Interrupted after {_plural(result.iterations_completed, 'iteration')}."
        if self.mode is LoopMode.FORWARD:
            count = self.plan_progress() if self.plan_progress is not None else None
            if count is None:
                summary += " task status unknown."
            else:
                summary += f" {count.completed}/{count.total} tasks complete."
        result.detail = summary
        self._warn(summary)

    def _max_iterations_reached(self, result: LoopResult) -> None:
        result.state = TerminalState.MAX_ITERATIONS
        if self.mode is LoopMode.REVERSE:
            goal = "finding an answer"
        else:
            goal = DONE_MARKER
        self._warn(f"warning: reached max iterations ({self.max_iterations}) without {goal}")

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _emit(self, line: str) -> None:
        print(line, file=self.stdout, flush=True)

    def _warn(self, line: str) -> None:
        print(line, file=self.stderr, flush=True)
