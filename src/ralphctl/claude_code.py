"""Interface to Anthropic Claude Code CLI (``claude``)."""

from __future__ import annotations

import hashlib
import logging
import sys
from pathlib import Path
from typing import TextIO

from ralphctl.agent_runner import AgentRunner, register_agent
from ralphctl.cancellation import CancellationToken
from ralphctl.runner_common import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    execute_streaming_command,
    resolve_binary,
)
from ralphctl.schemas import IterationOutcome

logger = logging.getLogger(__name__)


class ClaudeCodeRunner(AgentRunner):
    """Spawn ``claude -p`` with the prompt piped on stdin.

    Plain-text print mode is used so the agent's own output, including the
    control markers, is streamed to the terminal as it is produced::

        claude -p --dangerously-skip-permissions [--model MODEL] < PROMPT

    Parameters
    ----------
    claude_binary:
        Path or name of the Claude Code CLI binary.
    model:
        Override the model Claude Code uses (``--model``). Leave blank
        for the default.
    cwd:
        Working directory for the child; defaults to the current one.
    poll_interval:
        Seconds between cancellation checks while the child runs.
    stdout_sink / stderr_sink:
        Where the child's output is echoed; resolved to ``sys.stdout`` /
        ``sys.stderr`` at call time when omitted.
    """

    name = "claude"

    def __init__(
        self,
        claude_binary: str = "claude",
        model: str = "",
        *,
        cwd: str | Path | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        stdout_sink: TextIO | None = None,
        stderr_sink: TextIO | None = None,
    ) -> None:
        self.claude_binary = (claude_binary or "").strip() or "claude"
        self.model = (model or "").strip()
        self.cwd = Path(cwd) if cwd is not None else None
        self.poll_interval = poll_interval
        self.stdout_sink = stdout_sink
        self.stderr_sink = stderr_sink

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        prompt: str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> IterationOutcome:
        """Execute a single Claude Code invocation and return its outcome."""
        cmd = self._build_command()
        logger.info(
            "Running Claude Code CLI (model=%s, prompt_len=%s, prompt_sha256=%s)",
            self.model or "<default>",
            len(prompt),
            hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16],
        )
        return execute_streaming_command(
            cmd=cmd,
            stdin_text=prompt,
            process_name=self.claude_binary,
            cwd=self.cwd,
            cancellation=cancellation,
            stdout_sink=self.stdout_sink or sys.stdout,
            stderr_sink=self.stderr_sink or sys.stderr,
            poll_interval=self.poll_interval,
        )

    # ------------------------------------------------------------------
    # Command building
    # ------------------------------------------------------------------

    def _build_command(self) -> list[str]:
        cmd = [resolve_binary(self.claude_binary), "-p", "--dangerously-skip-permissions"]
        if self.model:
            cmd.extend(["--model", self.model])
        return cmd


# ── Register with the agent registry ─────────────────────────────
register_agent("claude", ClaudeCodeRunner)
