"""Files a ralph loop reads and writes in its working directory."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ralphctl.progress import TaskCount, count_checkboxes
from ralphctl.prompts import PromptCatalog

logger = logging.getLogger(__name__)


class WorkspaceError(RuntimeError):
    """A required workspace file is missing, empty or would be clobbered."""


@dataclass(frozen=True)
class WorkspaceLayout:
    """Names of the loop files, resolved against ``root``."""

    root: Path = Path(".")
    spec_file: str = "SPEC.md"
    plan_file: str = "IMPLEMENTATION_PLAN.md"
    prompt_file: str = "PROMPT.md"
    log_file: str = "ralph.log"
    question_file: str = "QUESTION.md"
    reverse_prompt_file: str = "REVERSE_PROMPT.md"

    def path(self, name: str) -> Path:
        return Path(self.root) / name

    @property
    def log_path(self) -> Path:
        return self.path(self.log_file)

    @property
    def plan_path(self) -> Path:
        return self.path(self.plan_file)

    @property
    def question_path(self) -> Path:
        return self.path(self.question_file)

    @property
    def required_files(self) -> tuple[str, ...]:
        return (self.prompt_file, self.spec_file, self.plan_file)

    # ------------------------------------------------------------------
    # Build loop
    # ------------------------------------------------------------------

    def validate_required_files(self) -> None:
        missing = [name for name in self.required_files if not self.path(name).exists()]
        if missing:
            raise WorkspaceError(f"missing required files: {', '.join(missing)}")

    def read_prompt(self) -> str:
        """Return ``PROMPT.md``; raise :class:`WorkspaceError` when absent or blank."""
        path = self.path(self.prompt_file)
        if not path.exists():
            raise WorkspaceError(f"{self.prompt_file} not found")
        content = path.read_text(encoding="utf-8")
        if not content.strip():
            raise WorkspaceError(f"{self.prompt_file} is empty")
        return content

    def plan_progress(self) -> TaskCount | None:
        """Count plan checkboxes, or ``None`` when the plan cannot be read."""
        try:
            content = self.plan_path.read_text(encoding="utf-8")
        except OSError:
            return None
        return count_checkboxes(content)

    def init_files(self, catalog: PromptCatalog, *, force: bool = False) -> list[Path]:
        """Write the build-loop scaffold files and return their paths.

        Existing files are left alone unless *force* is set, in which case
        every scaffold file is rewritten.
        """
        templates = catalog.workspace_templates()
        targets = {self.path(name): body for name, body in templates.items()}
        existing = sorted(p.name for p in targets if p.exists())
        if existing and not force:
            raise WorkspaceError(
                f"files already exist: {', '.join(existing)}. Use --force to overwrite"
            )
        Path(self.root).mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        for path, body in targets.items():
            path.write_text(body, encoding="utf-8")
            written.append(path)
            logger.info("Wrote %s", path)
        return written

    # ------------------------------------------------------------------
    # Investigation loop
    # ------------------------------------------------------------------

    def write_question(self, question: str) -> Path:
        """Replace ``QUESTION.md`` with *question*."""
        path = self.question_path
        path.write_text(f"# Investigation Question\n\n{question.strip()}\n", encoding="utf-8")
        return path

    def create_question_template(self, catalog: PromptCatalog) -> Path:
        path = self.question_path
        path.write_text(catalog.question_template(), encoding="utf-8")
        return path

    def resolve_reverse_prompt(self, catalog: PromptCatalog) -> str:
        """Return ``REVERSE_PROMPT.md``, writing the bundled one if absent.

        A blank file is treated as absent and replaced.
        """
        path = self.path(self.reverse_prompt_file)
        if path.exists():
            content = path.read_text(encoding="utf-8")
            if content.strip():
                return content
        content = catalog.reverse_prompt()
        path.write_text(content, encoding="utf-8")
        logger.info("Wrote bundled investigation prompt to %s", path)
        return content
