"""Shared helpers for spawning an agent CLI and capturing its output."""

from __future__ import annotations

import io
import logging
import os
import shutil
import subprocess
import threading
import time
from contextlib import suppress
from pathlib import Path
from typing import IO, TextIO

from ralphctl.cancellation import CancellationToken
from ralphctl.schemas import IterationOutcome

logger = logging.getLogger(__name__)
if os.name != "nt":  # pragma: no cover - platform-specific import
    import signal

DEFAULT_POLL_INTERVAL_SECONDS = 0.1
_TERMINATE_GRACE_SECONDS = 5.0


class AgentNotFoundError(FileNotFoundError):
    """Raised when the agent executable cannot be located or spawned."""

    def __init__(self, binary: str) -> None:
        super().__init__(f"{binary} not found in PATH")
        self.binary = binary


def _streaming_process_isolation_kwargs() -> dict[str, object]:
    """Return subprocess kwargs that put the child in its own process group.

    The terminal's Ctrl+C then reaches only this process; the cancellation
    watcher forwards termination to the whole child group itself.
    """
    if os.name == "nt":
        flags = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
        return {"creationflags": flags} if flags else {}
    return {"start_new_session": True}


def resolve_binary(name: str) -> str:
    """Resolve a binary name to a full executable path when possible."""
    expanded = os.path.expandvars(os.path.expanduser(str(name or "").strip()))
    if len(expanded) >= 2 and expanded[0] == expanded[-1] and expanded[0] in {"'", '"'}:
        # Accept copy/paste paths wrapped in shell quotes.
        expanded = expanded[1:-1].strip()
    if not expanded:
        return ""
    resolved = shutil.which(expanded)
    if resolved:
        return resolved
    return expanded


def binary_exists(binary: str) -> bool:
    """Return ``True`` when an executable exists for *binary*."""
    binary = os.path.expandvars(os.path.expanduser(str(binary or "").strip()))
    if not binary:
        return False
    try:
        candidate = Path(binary)
        if candidate.is_file():
            return os.access(candidate, os.X_OK)
    except OSError:
        pass
    return shutil.which(binary) is not None


def stream_and_capture(stream: IO[str] | None, sink: TextIO) -> str:
    """Echo *stream* to *sink* line by line and return everything read."""
    if stream is None:
        return ""
    captured: list[str] = []
    for line in stream:
        text = line.rstrip("\r\n")
        with suppress(OSError, ValueError):
            sink.write(text + "\n")
            sink.flush()
        captured.append(text + "\n")
    return "".join(captured)


def _text_reader(pipe: IO[bytes] | None) -> IO[str] | None:
    """Decode *pipe* as UTF-8 with lines ending only at ``\\n``.

    A lone ``\\r`` (spinner or progress redraws) stays inside its line.
    """
    if pipe is None:
        return None
    return io.TextIOWrapper(pipe, encoding="utf-8", errors="replace", newline="\n")


def _feed_stdin(stream: IO[bytes] | None, text: str, *, process_name: str) -> None:
    """Write the whole prompt then close stdin; a closed pipe is not an error."""
    if stream is None:
        return
    try:
        stream.write(text.encode("utf-8"))
        stream.flush()
    except BrokenPipeError:
        logger.debug("%s exited before reading its whole prompt", process_name)
    finally:
        with suppress(BrokenPipeError):
            stream.close()


def _watch_cancellation(
    proc: subprocess.Popen[bytes],
    token: CancellationToken,
    child_done: threading.Event,
    *,
    process_name: str,
    poll_interval: float,
) -> None:
    """Terminate *proc* once *token* fires, unless the child finished first."""
    while not child_done.is_set():
        if token.wait(poll_interval):
            if not child_done.is_set():
                logger.info("Cancellation requested; terminating %s", process_name)
                _terminate_process_with_fallback(
                    proc, process_name=process_name, reason="cancellation"
                )
            return


def execute_streaming_command(
    *,
    cmd: list[str],
    stdin_text: str,
    process_name: str,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    cancellation: CancellationToken | None = None,
    stdout_sink: TextIO,
    stderr_sink: TextIO,
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
) -> IterationOutcome:
    """Run *cmd*, feed it *stdin_text*, and echo-and-capture both output pipes.

    Both pipes are drained on their own threads so heavy output on one can
    never stall the other. All helper threads are joined before returning.
    """
    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
            **_streaming_process_isolation_kwargs(),
        )
    except FileNotFoundError as exc:
        raise AgentNotFoundError(process_name) from exc
    logger.debug("Spawned %s (pid=%s)", process_name, proc.pid)

    captured: dict[str, str] = {"stdout": "", "stderr": ""}
    stdout_reader = _text_reader(proc.stdout)
    stderr_reader = _text_reader(proc.stderr)

    def _pump(name: str, stream: IO[str] | None, sink: TextIO) -> None:
        captured[name] = stream_and_capture(stream, sink)

    stdout_thread = threading.Thread(
        target=_pump, args=("stdout", stdout_reader, stdout_sink), daemon=True
    )
    stderr_thread = threading.Thread(
        target=_pump, args=("stderr", stderr_reader, stderr_sink), daemon=True
    )
    stdout_thread.start()
    stderr_thread.start()

    child_done = threading.Event()
    watcher: threading.Thread | None = None
    if cancellation is not None:
        watcher = threading.Thread(
            target=_watch_cancellation,
            args=(proc, cancellation, child_done),
            kwargs={"process_name": process_name, "poll_interval": poll_interval},
            daemon=True,
        )
        watcher.start()

    try:
        _feed_stdin(proc.stdin, stdin_text, process_name=process_name)
        returncode = proc.wait()
    finally:
        child_done.set()
        if watcher is not None:
            watcher.join()
        stdout_thread.join()
        stderr_thread.join()
        for stream in (stdout_reader, stderr_reader):
            if stream is not None and not stream.closed:
                stream.close()

    was_cancelled = cancellation is not None and cancellation.is_cancelled
    exit_code = returncode if returncode >= 0 else None
    logger.debug(
        "%s exited (returncode=%s, cancelled=%s)", process_name, returncode, was_cancelled
    )
    return IterationOutcome(
        exited_cleanly=returncode == 0 and not was_cancelled,
        exit_code=exit_code,
        stdout=captured["stdout"],
        stderr=captured["stderr"],
        was_cancelled=was_cancelled,
        duration_seconds=time.monotonic() - start,
    )


def _terminate_process_with_fallback(
    proc: subprocess.Popen[bytes],
    *,
    process_name: str,
    reason: str,
    terminate_timeout_seconds: float = _TERMINATE_GRACE_SECONDS,
) -> None:
    """Request graceful terminate first, then force-kill if still alive."""
    if proc.poll() is not None:
        return

    _terminate_process(proc)
    try:
        proc.wait(timeout=max(0.1, float(terminate_timeout_seconds)))
        return
    except subprocess.TimeoutExpired:
        logger.warning(
            "%s did not exit after terminate during %s; forcing kill.",
            process_name,
            reason,
        )

    _kill_process(proc)


def _terminate_process(proc: subprocess.Popen[bytes]) -> None:
    """Best-effort graceful termination for a child process (and its group)."""
    if os.name != "nt":
        _signal_process_group(proc, signal.SIGTERM)
    with suppress(OSError):
        proc.terminate()


def _kill_process(proc: subprocess.Popen[bytes]) -> None:
    """Best-effort force kill for a child process (and its group)."""
    if os.name != "nt":
        _signal_process_group(proc, signal.SIGKILL)
    with suppress(OSError):
        proc.kill()


def _signal_process_group(proc: subprocess.Popen[bytes], sig: int) -> None:
    """Deliver *sig* to the child's process group on POSIX."""
    pid = int(getattr(proc, "pid", 0) or 0)
    if pid <= 0:
        return
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(os.getpgid(pid), sig)
