"""Checkbox progress for ``IMPLEMENTATION_PLAN.md``."""

from __future__ import annotations

import re
from dataclasses import dataclass

_CHECKBOX_RE = re.compile(r"^\s*-\s*\[([ xX])\]", re.MULTILINE)
_BAR_WIDTH = 12


@dataclass(frozen=True, slots=True)
class TaskCount:
    """Completed and total markdown checkboxes."""

    completed: int
    total: int

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        return int(self.completed / self.total * 100 + 0.5)

    def render_progress_bar(self) -> str:
        """Return e.g. ``[███████░░░░░] 60% (12/20 tasks)``."""
        filled = 0 if self.total == 0 else (self.completed * _BAR_WIDTH) // self.total
        bar = "█" * filled + "░" * (_BAR_WIDTH - filled)
        return f"[{bar}] {self.percentage}% ({self.completed}/{self.total} tasks)"


def count_checkboxes(content: str) -> TaskCount:
    """Count ``- [ ]`` and ``- [x]`` items at line start (flat, no nesting)."""
    completed = 0
    total = 0
    for match in _CHECKBOX_RE.finditer(content or ""):
        total += 1
        if match.group(1) in {"x", "X"}:
            completed += 1
    return TaskCount(completed=completed, total=total)
