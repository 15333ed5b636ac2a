"""Control markers the agent prints to steer the iteration loop.

A marker only counts when it is the sole content of a line (surrounding
whitespace aside). Mentions inside prose, quotes or backticks are ignored
so an agent can talk about the protocol without tripping it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from ralphctl.schemas import ControlSignal, LoopMode, SignalKind

logger = logging.getLogger(__name__)

DONE_MARKER = "[[RALPH:DONE]]"
CONTINUE_MARKER = "[[RALPH:CONTINUE]]"
BLOCKED_PREFIX = "[[RALPH:BLOCKED:"
FOUND_PREFIX = "[[RALPH:FOUND:"
INCONCLUSIVE_PREFIX = "[[RALPH:INCONCLUSIVE:"
MARKER_SUFFIX = "]]"

_SIMPLE_MARKERS: dict[str, SignalKind] = {
    DONE_MARKER: SignalKind.DONE,
    CONTINUE_MARKER: SignalKind.CONTINUE,
}


def _marker_lines(transcript: str) -> Iterator[str]:
    """Yield each line trimmed of surrounding whitespace (``\\r`` included)."""
    for line in (transcript or "").split("\n"):
        yield line.strip()


def _parameter(line: str, prefix: str) -> str | None:
    """Return the text of a ``<prefix><text>]]`` line, else ``None``."""
    if not line.startswith(prefix):
        return None
    rest = line[len(prefix) :]
    if not rest.endswith(MARKER_SUFFIX):
        return None
    return rest[: -len(MARKER_SUFFIX)]


def _first_parameter(transcript: str, prefix: str) -> str | None:
    for line in _marker_lines(transcript):
        value = _parameter(line, prefix)
        if value is not None:
            return value
    return None


def detect_blocked_signal(transcript: str) -> str | None:
    """Return the reason of the first ``[[RALPH:BLOCKED:...]]`` line."""
    return _first_parameter(transcript, BLOCKED_PREFIX)


def detect_found_signal(transcript: str) -> str | None:
    """Return the summary of the first ``[[RALPH:FOUND:...]]`` line."""
    return _first_parameter(transcript, FOUND_PREFIX)


def detect_inconclusive_signal(transcript: str) -> str | None:
    """Return the reason of the first ``[[RALPH:INCONCLUSIVE:...]]`` line."""
    return _first_parameter(transcript, INCONCLUSIVE_PREFIX)


def detect_loop_signal(transcript: str) -> ControlSignal:
    """Resolve DONE/CONTINUE by first occurrence in document order."""
    for line in _marker_lines(transcript):
        kind = _SIMPLE_MARKERS.get(line)
        if kind is not None:
            return ControlSignal(kind=kind)
    return ControlSignal.none()


def detect_forward_signal(transcript: str) -> ControlSignal:
    """Build-loop resolution: BLOCKED anywhere wins, then DONE/CONTINUE."""
    reason = detect_blocked_signal(transcript)
    if reason is not None:
        return ControlSignal.blocked(reason)
    return detect_loop_signal(transcript)


def detect_reverse_signal(transcript: str) -> ControlSignal:
    """Investigation-loop resolution by fixed type priority.

    BLOCKED, then FOUND, then INCONCLUSIVE, then CONTINUE, regardless of
    where each appears in the transcript.
    """
    reason = detect_blocked_signal(transcript)
    if reason is not None:
        return ControlSignal.blocked(reason)
    summary = detect_found_signal(transcript)
    if summary is not None:
        return ControlSignal.found(summary)
    reason = detect_inconclusive_signal(transcript)
    if reason is not None:
        return ControlSignal.inconclusive(reason)
    if any(line == CONTINUE_MARKER for line in _marker_lines(transcript)):
        return ControlSignal.proceed()
    return ControlSignal.none()


def detect(transcript: str, mode: LoopMode) -> ControlSignal:
    """Resolve the control signal of *transcript* under *mode*'s policy."""
    if mode is LoopMode.REVERSE:
        signal = detect_reverse_signal(transcript)
    else:
        signal = detect_forward_signal(transcript)
    logger.debug("Resolved %s signal: %s", mode.value, signal.kind.value)
    return signal


def missing_signal_warning(mode: LoopMode) -> str:
    """Return the warning shown when no terminal marker was printed."""
    if mode is LoopMode.REVERSE:
        return (
            "warning: no [[RALPH:FOUND:...]], [[RALPH:INCONCLUSIVE:...]] or "
            "[[RALPH:BLOCKED:...]] signal detected"
        )
    return f"warning: no {DONE_MARKER} or {BLOCKED_PREFIX}...{MARKER_SUFFIX} signal detected"
