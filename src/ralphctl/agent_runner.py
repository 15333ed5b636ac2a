"""Abstract base class for coding-agent runners.

The iteration loop only talks to this interface, so any agent CLI that
reads a prompt on stdin and prints control markers on stdout can drive it.
"""

from __future__ import annotations

import abc

from ralphctl.cancellation import CancellationToken
from ralphctl.schemas import IterationOutcome


class AgentRunner(abc.ABC):
    """Common interface for coding-agent CLI wrappers.

    Subclasses must implement :meth:`run`, which performs exactly one
    subprocess invocation and returns its :class:`IterationOutcome`.
    """

    #: Executable label used in user-facing messages (e.g. "claude").
    name: str = "base"

    @abc.abstractmethod
    def run(
        self,
        prompt: str,
        *,
        cancellation: CancellationToken | None = None,
    ) -> IterationOutcome:
        """Execute a single agent invocation and return its outcome.

        Parameters
        ----------
        prompt:
            Full prompt text written to the agent's standard input.
        cancellation:
            Shared token; once set, the in-flight subprocess is terminated
            and the outcome is marked cancelled.
        """


# ── Registry ──────────────────────────────────────────────────────

_REGISTRY: dict[str, type[AgentRunner]] = {}


def register_agent(key: str, cls: type[AgentRunner]) -> None:
    """Register an agent runner class under a lookup key."""
    normalized_key = (key or "").strip()
    if not normalized_key:
        raise ValueError("Agent key must be a non-empty string")
    if not isinstance(cls, type) or not issubclass(cls, AgentRunner):
        raise TypeError("Registered agent must be an AgentRunner subclass")

    existing = _REGISTRY.get(normalized_key)
    if existing is not None and existing is not cls:
        raise ValueError(
            f"Agent '{normalized_key}' is already registered with {existing.__name__}"
        )

    _REGISTRY[normalized_key] = cls


def get_agent_class(key: str) -> type[AgentRunner]:
    """Look up a registered agent runner class by key."""
    normalized_key = (key or "").strip()
    if normalized_key not in _REGISTRY:
        available = ", ".join(list_agents()) or "(none)"
        raise KeyError(f"Unknown agent '{normalized_key}'. Available: {available}")
    return _REGISTRY[normalized_key]


def list_agents() -> list[str]:
    """Return all registered agent keys."""
    return sorted(_REGISTRY)
