"""Loop configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field, field_validator

from ralphctl.runner_common import DEFAULT_POLL_INTERVAL_SECONDS

FORWARD_DEFAULT_MAX_ITERATIONS = 50
REVERSE_DEFAULT_MAX_ITERATIONS = 100

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}

_ENV_FIELDS = {
    "RALPHCTL_AGENT": "agent",
    "RALPHCTL_CLAUDE_BIN": "claude_binary",
    "RALPHCTL_MODEL": "model",
    "RALPHCTL_MAX_ITERATIONS": "max_iterations",
    "RALPHCTL_PAUSE": "pause",
    "RALPHCTL_LOG_FILE": "log_file",
    "RALPHCTL_POLL_INTERVAL": "poll_interval_seconds",
}


def parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"expected a boolean, got {raw!r}")


class LoopSettings(BaseModel):
    """Settings for one ``run`` or ``reverse`` invocation.

    Values come from ``RALPHCTL_*`` environment variables (see
    :meth:`from_env`) and are then overridden by command-line flags.
    """

    agent: str = "claude"
    claude_binary: str = "claude"
    model: str = ""  # empty = agent default
    max_iterations: int = Field(default=FORWARD_DEFAULT_MAX_ITERATIONS, ge=1)
    pause: bool = False
    log_file: str = "ralph.log"
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0)

    @field_validator("agent", "claude_binary", "log_file")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("model")
    @classmethod
    def _strip_model(cls, value: str) -> str:
        return value.strip()

    @field_validator("pause", mode="before")
    @classmethod
    def _coerce_pause(cls, value: object) -> object:
        if isinstance(value, str):
            return parse_bool(value)
        return value

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        default_max_iterations: int | None = None,
        **overrides: object,
    ) -> LoopSettings:
        """Build settings from ``RALPHCTL_*`` variables.

        Keyword *overrides* whose value is not ``None`` take precedence over
        the environment. *default_max_iterations* replaces the model default
        when neither the environment nor an override sets a bound.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        if default_max_iterations is not None:
            values["max_iterations"] = default_max_iterations
        for var, field in _ENV_FIELDS.items():
            raw = env.get(var)
            if raw is not None and raw.strip():
                values[field] = raw.strip()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
