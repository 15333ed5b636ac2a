"""Append-only transcript log (``ralph.log``).

Each iteration becomes one record: a header with the iteration number and a
UTC timestamp, the agent's full stdout, and a closing delimiter. Earlier
records are never rewritten.
"""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def format_iteration_header(iteration: int) -> str:
    """Return ``=== Iteration N starting ===``."""
    return f"=== Iteration {iteration} starting ==="


def format_iteration_footer(iteration: int) -> str:
    return f"--- end iteration {iteration} ---"


class IterationLogWriter:
    """Appends one record per iteration to a shared log file.

    I/O errors propagate to the caller; a lost transcript is fatal.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def append(self, iteration: int, transcript: str) -> None:
        if iteration < 1:
            raise ValueError("iteration index is 1-based")
        stamp = dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")
        body = transcript if transcript.endswith("\n") or not transcript else transcript + "\n"
        entry = (
            f"{format_iteration_header(iteration)} [{stamp}]\n"
            f"{body}"
            f"{format_iteration_footer(iteration)}\n\n"
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(entry)
            f.flush()
        logger.debug("Logged iteration %d (%d chars) to %s", iteration, len(transcript), self.path)
