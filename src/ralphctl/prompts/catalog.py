"""Bundled prompt and workspace templates.

Loads ``templates.yaml`` (next to this module). An extra YAML file can be
merged on top, e.g. a project-specific override.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_BUILTIN_YAML = Path(__file__).resolve().parent / "templates.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping; malformed or unreadable overrides yield ``{}``."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to load %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (override wins)."""
    merged = dict(base)
    for k, v in override.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


class PromptCatalog:
    """Serves the templates used by ``init`` and ``reverse``.

    Usage::

        catalog = PromptCatalog()
        prompt = catalog.reverse_prompt()
        files = catalog.workspace_templates()
    """

    def __init__(self, extra_path: Path | None = None) -> None:
        self._data = _load_yaml(_BUILTIN_YAML)
        if extra_path is not None and extra_path.exists():
            extra = _load_yaml(extra_path)
            if extra:
                self._data = _deep_merge(self._data, extra)
                logger.info("Loaded extra templates from %s", extra_path)

    def _section(self, name: str) -> dict[str, Any]:
        section = self._data.get(name)
        return section if isinstance(section, dict) else {}

    def reverse_prompt(self) -> str:
        """Return the investigation-loop prompt."""
        return str(self._section("reverse").get("prompt") or "").strip() + "\n"

    def question_template(self) -> str:
        """Return the blank ``QUESTION.md`` scaffold."""
        return str(self._section("reverse").get("question_template") or "").strip() + "\n"

    def workspace_templates(self) -> dict[str, str]:
        """Return ``{file name: content}`` for the build-loop scaffold files."""
        files = self._section("forward").get("files")
        if not isinstance(files, dict):
            return {}
        return {str(name): str(body).strip() + "\n" for name, body in files.items()}
