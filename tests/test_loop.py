"""Tests for the iteration controller."""

from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path

import pytest

from ralphctl.agent_runner import AgentRunner
from ralphctl.cancellation import CancellationToken
from ralphctl.history_log import IterationLogWriter
from ralphctl.interaction import GateAnswer
from ralphctl.loop import IterationLoop
from ralphctl.progress import TaskCount
from ralphctl.schemas import IterationOutcome, LoopMode, TerminalState


def _ok(stdout: str) -> IterationOutcome:
    return IterationOutcome(exited_cleanly=True, exit_code=0, stdout=stdout)


class _ScriptedRunner(AgentRunner):
    """Returns queued outcomes; the last one repeats once the queue is drained."""

    name = "fake-agent"

    def __init__(
        self,
        outcomes: list[IterationOutcome],
        on_run: Callable[[int], None] | None = None,
    ) -> None:
        self.outcomes = list(outcomes)
        self.prompts: list[str] = []
        self.tokens: list[CancellationToken | None] = []
        self.on_run = on_run

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def run(self, prompt: str, *, cancellation: CancellationToken | None = None) -> IterationOutcome:
        self.prompts.append(prompt)
        self.tokens.append(cancellation)
        if self.on_run is not None:
            self.on_run(self.calls)
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]


class _ScriptedGate:
    def __init__(
        self,
        answers: list[GateAnswer] | None = None,
        on_ask: Callable[[], None] | None = None,
    ) -> None:
        self.answers = list(answers or [])
        self.calls: list[str] = []
        self.on_ask = on_ask

    def _next(self) -> GateAnswer:
        if self.on_ask is not None:
            self.on_ask()
        return self.answers.pop(0) if self.answers else GateAnswer.CONTINUE

    def confirm_continue(self) -> GateAnswer:
        self.calls.append("continue")
        return self._next()

    def confirm_on_no_signal(self, warning: str) -> GateAnswer:
        self.calls.append(f"no_signal:{warning}")
        return self._next()


class _Harness:
    def __init__(self, tmp_path: Path) -> None:
        self.log_path = tmp_path / "ralph.log"
        self.out = io.StringIO()
        self.err = io.StringIO()
        self.token = CancellationToken()

    def loop(
        self,
        runner: AgentRunner,
        *,
        gate: _ScriptedGate | None = None,
        mode: LoopMode = LoopMode.FORWARD,
        max_iterations: int = 5,
        pause: bool = False,
        plan_progress: Callable[[], TaskCount | None] | None = None,
    ) -> IterationLoop:
        return IterationLoop(
            "PROMPT",
            runner=runner,
            log_writer=IterationLogWriter(self.log_path),
            mode=mode,
            max_iterations=max_iterations,
            pause=pause,
            gate=gate or _ScriptedGate(),  # type: ignore[arg-type]
            cancellation=self.token,
            plan_progress=plan_progress,
            stdout=self.out,
            stderr=self.err,
        )

    @property
    def log(self) -> str:
        return self.log_path.read_text(encoding="utf-8") if self.log_path.exists() else ""


@pytest.fixture
def harness(tmp_path: Path) -> _Harness:
    return _Harness(tmp_path)


class TestForward:
    def test_clean_completion_in_one_iteration(self, harness: _Harness):
        runner = _ScriptedRunner([_ok("Done.\n[[RALPH:DONE]]\n")])
        result = harness.loop(runner).run()

        assert result.state is TerminalState.COMPLETED
        assert result.exit_code == 0
        assert runner.calls == 1
        assert runner.prompts == ["PROMPT"]
        assert runner.tokens == [harness.token]
        assert "=== Iteration 1 starting ===" in harness.out.getvalue()
        assert "=== Loop complete ===" in harness.out.getvalue()
        assert "Done.\n[[RALPH:DONE]]\n--- end iteration 1 ---" in harness.log
        assert result.finished_at is not None

    def test_iteration_bound_is_exact(self, harness: _Harness):
        runner = _ScriptedRunner([_ok("[[RALPH:CONTINUE]]\n")])
        result = harness.loop(runner, max_iterations=4).run()

        assert runner.calls == 4
        assert result.state is TerminalState.MAX_ITERATIONS
        assert result.exit_code == 2
        assert result.iterations_run == 4
        assert "=== Iteration 4 starting ===" in harness.out.getvalue()
        assert "Iteration 5" not in harness.out.getvalue()
        assert harness.log.count("--- end iteration") == 4
        assert (
            "warning: reached max iterations (4) without [[RALPH:DONE]]"
            in harness.err.getvalue()
        )

    def test_blocked_reports_reason_on_stderr(self, harness: _Harness):
        runner = _ScriptedRunner([_ok("[[RALPH:BLOCKED:missing key]]")])
        result = harness.loop(runner).run()

        assert result.state is TerminalState.BLOCKED
        assert result.exit_code == 3
        assert result.detail == "missing key"
        assert "blocked: missing key" in harness.err.getvalue()

    def test_inline_mention_is_not_completion(self, harness: _Harness):
        gate = _ScriptedGate([GateAnswer.CONTINUE])
        runner = _ScriptedRunner([_ok("Explaining [[RALPH:DONE]] usage")])
        result = harness.loop(runner, gate=gate, max_iterations=1).run()

        assert result.state is TerminalState.MAX_ITERATIONS
        assert result.exit_code == 2
        assert len(gate.calls) == 1
        assert gate.calls[0].startswith("no_signal:warning: no [[RALPH:DONE]]")

    def test_continue_then_done(self, harness: _Harness):
        runner = _ScriptedRunner([_ok("[[RALPH:CONTINUE]]"), _ok("[[RALPH:DONE]]")])
        result = harness.loop(runner).run()

        assert result.state is TerminalState.COMPLETED
        assert result.iterations_completed == 2
        assert harness.log.index("end iteration 1") < harness.log.index("Iteration 2 starting")

    def test_reverse_only_signal_is_ignored_in_forward_mode(self, harness: _Harness):
        gate = _ScriptedGate([GateAnswer.STOP])
        runner = _ScriptedRunner([_ok("[[RALPH:FOUND:x]]")])
        result = harness.loop(runner, gate=gate).run()
        assert result.state is TerminalState.USER_STOPPED


class TestFatal:
    def test_non_zero_exit_is_fatal(self, harness: _Harness):
        runner = _ScriptedRunner(
            [IterationOutcome(exited_cleanly=False, exit_code=2, stdout="[[RALPH:DONE]]\n")]
        )
        result = harness.loop(runner).run()

        assert result.state is TerminalState.FATAL
        assert result.exit_code == 1
        assert result.agent_exit_code == 2
        assert "error: fake-agent exited with code 2" in harness.err.getvalue()
        assert "[[RALPH:DONE]]" in harness.log

    def test_signal_death_reports_minus_one(self, harness: _Harness):
        runner = _ScriptedRunner([IterationOutcome(exited_cleanly=False, exit_code=None)])
        result = harness.loop(runner).run()
        assert result.agent_exit_code == -1
        assert "exited with code -1" in harness.err.getvalue()


class TestInterrupted:
    def test_cancelled_outcome_interrupts_with_task_summary(self, harness: _Harness):
        runner = _ScriptedRunner(
            [
                _ok("[[RALPH:CONTINUE]]"),
                IterationOutcome(exit_code=0, stdout="partial\n", was_cancelled=True),
            ]
        )
        result = harness.loop(runner, plan_progress=lambda: TaskCount(3, 7)).run()

        assert result.state is TerminalState.INTERRUPTED
        assert result.exit_code == 130
        assert runner.calls == 2
        assert "Interrupted after 1 iteration. 3/7 tasks complete." in harness.err.getvalue()
        assert "partial\n--- end iteration 2 ---" in harness.log

    def test_cancellation_outranks_exit_code_and_markers(self, harness: _Harness):
        runner = _ScriptedRunner(
            [IterationOutcome(exit_code=1, stdout="[[RALPH:BLOCKED:x]]", was_cancelled=True)]
        )
        result = harness.loop(runner).run()
        assert result.state is TerminalState.INTERRUPTED
        assert "Interrupted after 0 iterations. task status unknown." in harness.err.getvalue()

    def test_unreadable_plan_reports_unknown(self, harness: _Harness):
        runner = _ScriptedRunner([IterationOutcome(was_cancelled=True)])
        harness.loop(runner, plan_progress=lambda: None).run()
        assert "task status unknown." in harness.err.getvalue()

    def test_reverse_summary_has_no_task_count(self, harness: _Harness):
        runner = _ScriptedRunner([IterationOutcome(was_cancelled=True)])
        result = harness.loop(runner, mode=LoopMode.REVERSE).run()
        assert result.exit_code == 130
        assert harness.err.getvalue().strip() == "Interrupted after 0 iterations."

    def test_token_set_between_iterations_stops_new_iterations(self, harness: _Harness):
        def _cancel_after_first(call: int) -> None:
            if call == 1:
                harness.token.cancel()

        runner = _ScriptedRunner([_ok("[[RALPH:CONTINUE]]")], on_run=_cancel_after_first)
        result = harness.loop(runner, plan_progress=lambda: TaskCount(0, 1)).run()

        assert runner.calls == 1
        assert result.state is TerminalState.INTERRUPTED
        assert "Interrupted after 1 iteration." in harness.err.getvalue()

    def test_token_set_during_last_iteration_is_interrupted(self, harness: _Harness):
        runner = _ScriptedRunner(
            [_ok("[[RALPH:CONTINUE]]")], on_run=lambda _call: harness.token.cancel()
        )
        result = harness.loop(runner, max_iterations=1).run()

        assert result.state is TerminalState.INTERRUPTED
        assert result.exit_code == 130
        assert "reached max iterations" not in harness.err.getvalue()

    def test_token_set_while_gate_waits_outranks_stop_answer(self, harness: _Harness):
        gate = _ScriptedGate([GateAnswer.STOP], on_ask=harness.token.cancel)
        runner = _ScriptedRunner([_ok("no markers")])
        result = harness.loop(runner, gate=gate).run()

        assert result.state is TerminalState.INTERRUPTED
        assert result.exit_code == 130
        assert "Stopped by user." not in harness.out.getvalue()

    def test_token_set_while_pause_gate_waits_outranks_stop_answer(self, harness: _Harness):
        gate = _ScriptedGate([GateAnswer.STOP], on_ask=harness.token.cancel)
        runner = _ScriptedRunner([_ok("[[RALPH:CONTINUE]]")])
        result = harness.loop(runner, gate=gate, pause=True).run()
        assert result.exit_code == 130


class TestGate:
    def test_no_signal_stop_answer_stops(self, harness: _Harness):
        gate = _ScriptedGate([GateAnswer.STOP])
        runner = _ScriptedRunner([_ok("no markers here")])
        result = harness.loop(runner, gate=gate).run()

        assert result.state is TerminalState.USER_STOPPED
        assert result.exit_code == 0
        assert runner.calls == 1
        assert "Stopped by user." in harness.out.getvalue()

    def test_no_signal_continue_answer_proceeds(self, harness: _Harness):
        gate = _ScriptedGate([GateAnswer.CONTINUE])
        runner = _ScriptedRunner([_ok("nothing"), _ok("[[RALPH:DONE]]")])
        result = harness.loop(runner, gate=gate).run()

        assert result.state is TerminalState.COMPLETED
        assert gate.calls[0].startswith("no_signal:")

    def test_pause_mode_asks_after_continue(self, harness: _Harness):
        gate = _ScriptedGate([GateAnswer.CONTINUE, GateAnswer.STOP])
        runner = _ScriptedRunner([_ok("[[RALPH:CONTINUE]]")])
        result = harness.loop(runner, gate=gate, pause=True).run()

        assert result.state is TerminalState.USER_STOPPED
        assert runner.calls == 2
        assert gate.calls == ["continue", "continue"]

    def test_pause_mode_no_signal_skips_no_signal_prompt(self, harness: _Harness):
        gate = _ScriptedGate([GateAnswer.STOP])
        runner = _ScriptedRunner([_ok("nothing")])
        result = harness.loop(runner, gate=gate, pause=True).run()

        assert result.state is TerminalState.USER_STOPPED
        assert gate.calls == ["continue"]

    def test_continue_without_pause_never_asks(self, harness: _Harness):
        gate = _ScriptedGate()
        runner = _ScriptedRunner([_ok("[[RALPH:CONTINUE]]")])
        harness.loop(runner, gate=gate, max_iterations=3).run()
        assert gate.calls == []

    def test_terminal_signals_skip_pause_prompt(self, harness: _Harness):
        gate = _ScriptedGate()
        runner = _ScriptedRunner([_ok("[[RALPH:DONE]]")])
        harness.loop(runner, gate=gate, pause=True).run()
        assert gate.calls == []


class TestReverse:
    def test_found(self, harness: _Harness):
        runner = _ScriptedRunner([_ok("[[RALPH:FOUND:race in cache]]\n")])
        result = harness.loop(runner, mode=LoopMode.REVERSE).run()

        assert result.state is TerminalState.FOUND
        assert result.exit_code == 0
        assert result.detail == "race in cache"
        out = harness.out.getvalue()
        assert "=== Investigation complete ===" in out
        assert "Found: race in cache" in out

    def test_inconclusive(self, harness: _Harness):
        runner = _ScriptedRunner([_ok("[[RALPH:INCONCLUSIVE:no logs]]\n")])
        result = harness.loop(runner, mode=LoopMode.REVERSE).run()

        assert result.state is TerminalState.INCONCLUSIVE
        assert result.exit_code == 4
        err = harness.err.getvalue()
        assert "=== Investigation inconclusive ===" in err
        assert "no logs" in err

    def test_priority_conflict_resolves_to_blocked(self, harness: _Harness):
        transcript = (
            "[[RALPH:CONTINUE]]\n[[RALPH:FOUND:a]]\n[[RALPH:INCONCLUSIVE:b]]\n[[RALPH:BLOCKED:c]]\n"
        )
        result = harness.loop(_ScriptedRunner([_ok(transcript)]), mode=LoopMode.REVERSE).run()
        assert result.state is TerminalState.BLOCKED
        assert result.exit_code == 3
        assert "blocked: c" in harness.err.getvalue()

    def test_max_iterations_warning(self, harness: _Harness):
        runner = _ScriptedRunner([_ok("[[RALPH:CONTINUE]]")])
        result = harness.loop(runner, mode=LoopMode.REVERSE, max_iterations=2).run()

        assert result.exit_code == 2
        assert (
            "warning: reached max iterations (2) without finding an answer"
            in harness.err.getvalue()
        )

    def test_done_is_not_terminal_in_reverse(self, harness: _Harness):
        gate = _ScriptedGate([GateAnswer.STOP])
        runner = _ScriptedRunner([_ok("[[RALPH:DONE]]")])
        result = harness.loop(runner, gate=gate, mode=LoopMode.REVERSE).run()

        assert result.state is TerminalState.USER_STOPPED
        assert "FOUND" in gate.calls[0]


def test_rejects_zero_bound(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        IterationLoop(
            "p",
            runner=_ScriptedRunner([_ok("")]),
            log_writer=IterationLogWriter(tmp_path / "ralph.log"),
            max_iterations=0,
        )


def test_log_errors_propagate(tmp_path: Path) -> None:
    log_dir = tmp_path / "ralph.log"
    log_dir.mkdir()
    loop = IterationLoop(
        "p",
        runner=_ScriptedRunner([_ok("[[RALPH:DONE]]")]),
        log_writer=IterationLogWriter(log_dir),
        stdout=io.StringIO(),
        stderr=io.StringIO(),
    )
    with pytest.raises(OSError):
        loop.run()
