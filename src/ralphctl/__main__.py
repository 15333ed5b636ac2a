"""CLI entrypoint for ralphctl."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from ralphctl.agent_runner import AgentRunner, get_agent_class
from ralphctl.cancellation import CancellationToken, interrupt_handler
from ralphctl.claude_code import ClaudeCodeRunner
from ralphctl.config import (
    FORWARD_DEFAULT_MAX_ITERATIONS,
    REVERSE_DEFAULT_MAX_ITERATIONS,
    LoopSettings,
)
from ralphctl.history_log import IterationLogWriter
from ralphctl.loop import IterationLoop
from ralphctl.progress import count_checkboxes
from ralphctl.prompts import PromptCatalog
from ralphctl.runner_common import AgentNotFoundError, binary_exists
from ralphctl.schemas import ExitCode, LoopMode
from ralphctl.workspace import WorkspaceError, WorkspaceLayout

logger = logging.getLogger(__name__)


def _load_dotenv() -> None:
    """Load .env from cwd or its parent."""
    for dir_ in (Path.cwd(), Path.cwd().parent):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            logger.debug("Loaded environment from %s", env_file)
            return


def _add_loop_arguments(p: argparse.ArgumentParser, default_bound: int) -> None:
    p.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help=f"Maximum loop iterations (default: {default_bound}).",
    )
    p.add_argument(
        "--pause",
        action="store_true",
        default=None,
        help="Ask for confirmation before every new iteration.",
    )
    p.add_argument(
        "--model",
        type=str,
        default=None,
        help="Model passed to the agent CLI (default: agent's own default).",
    )


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser for all supported commands."""
    p = argparse.ArgumentParser(
        prog="ralphctl",
        description="ralphctl - run an AI coding agent in a loop until the work is done.",
    )
    p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging.",
    )
    p.add_argument(
        "--templates",
        type=Path,
        default=None,
        metavar="FILE",
        help="YAML file whose templates override the bundled ones (init, reverse).",
    )
    sub = p.add_subparsers(dest="command")

    run_p = sub.add_parser(
        "run",
        help="Build loop: work through IMPLEMENTATION_PLAN.md until done or blocked.",
    )
    _add_loop_arguments(run_p, FORWARD_DEFAULT_MAX_ITERATIONS)

    reverse_p = sub.add_parser(
        "reverse",
        help="Investigation loop: answer QUESTION.md without changing code.",
    )
    reverse_p.add_argument(
        "question",
        nargs="?",
        default=None,
        help="Question to investigate (written to QUESTION.md).",
    )
    _add_loop_arguments(reverse_p, REVERSE_DEFAULT_MAX_ITERATIONS)

    sub.add_parser("status", help="Show IMPLEMENTATION_PLAN.md progress.")

    init_p = sub.add_parser("init", help="Write SPEC.md, IMPLEMENTATION_PLAN.md and PROMPT.md.")
    init_p.add_argument(
        "--force",
        action="store_true",
        help="Overwrite existing files.",
    )
    return p


def _settings_from_args(args: argparse.Namespace, default_bound: int) -> LoopSettings:
    return LoopSettings.from_env(
        default_max_iterations=default_bound,
        max_iterations=args.max_iterations,
        pause=args.pause,
        model=args.model,
    )


def _build_runner(settings: LoopSettings, layout: WorkspaceLayout) -> AgentRunner:
    try:
        cls = get_agent_class(settings.agent)
    except KeyError as exc:
        raise ValueError(exc.args[0]) from exc
    if issubclass(cls, ClaudeCodeRunner):
        return cls(
            settings.claude_binary,
            settings.model,
            cwd=layout.root,
            poll_interval=settings.poll_interval_seconds,
        )
    return cls()


def _run_loop(
    prompt: str,
    mode: LoopMode,
    settings: LoopSettings,
    layout: WorkspaceLayout,
    runner: AgentRunner,
) -> int:
    token = CancellationToken()
    layout = replace(layout, log_file=settings.log_file)
    loop = IterationLoop(
        prompt,
        runner=runner,
        log_writer=IterationLogWriter(layout.log_path),
        mode=mode,
        max_iterations=settings.max_iterations,
        pause=settings.pause,
        cancellation=token,
        plan_progress=layout.plan_progress if mode is LoopMode.FORWARD else None,
    )
    with interrupt_handler(token):
        result = loop.run()
    logger.debug("Loop result: %s", result.model_dump_json())
    return result.exit_code


def _run_forward(args: argparse.Namespace, layout: WorkspaceLayout) -> int:
    layout.validate_required_files()
    prompt = layout.read_prompt()
    settings = _settings_from_args(args, FORWARD_DEFAULT_MAX_ITERATIONS)
    runner = _build_runner(settings, layout)
    return _run_loop(prompt, LoopMode.FORWARD, settings, layout, runner)


def _prompt_catalog(args: argparse.Namespace) -> PromptCatalog:
    if args.templates is not None and not args.templates.is_file():
        raise WorkspaceError(f"{args.templates} not found")
    return PromptCatalog(extra_path=args.templates)


def _run_reverse(args: argparse.Namespace, layout: WorkspaceLayout) -> int:
    catalog = _prompt_catalog(args)
    question = (args.question or "").strip()
    if question:
        layout.write_question(question)
    elif not layout.question_path.exists():
        layout.create_question_template(catalog)
        print(
            f"Created {layout.question_file}. Edit it with your investigation question, "
            "then run 'ralphctl reverse' again.",
            file=sys.stderr,
        )
        return int(ExitCode.ERROR)

    settings = _settings_from_args(args, REVERSE_DEFAULT_MAX_ITERATIONS)
    runner = _build_runner(settings, layout)
    if isinstance(runner, ClaudeCodeRunner) and not binary_exists(runner.claude_binary):
        raise AgentNotFoundError(runner.claude_binary)

    prompt = layout.resolve_reverse_prompt(catalog)
    return _run_loop(prompt, LoopMode.REVERSE, settings, layout, runner)


def _show_status(layout: WorkspaceLayout) -> int:
    if not layout.plan_path.exists():
        raise WorkspaceError(f"{layout.plan_file} not found")
    count = count_checkboxes(layout.plan_path.read_text(encoding="utf-8"))
    print(count.render_progress_bar())
    return int(ExitCode.SUCCESS)


def _init_workspace(args: argparse.Namespace, layout: WorkspaceLayout) -> int:
    layout.init_files(_prompt_catalog(args), force=args.force)
    print("Initialized ralph loop files.")
    print()
    print("Next steps:")
    print("  1. Edit SPEC.md and IMPLEMENTATION_PLAN.md to describe your project")
    print("  2. Run 'ralphctl run' to start the autonomous development loop")
    return int(ExitCode.SUCCESS)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the requested command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    # -- Logging setup (early, for all commands) -----------------------------
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    if args.command is None:
        parser.print_help(sys.stderr)
        return int(ExitCode.ERROR)

    _load_dotenv()
    layout = WorkspaceLayout(Path.cwd())
    try:
        if args.command == "run":
            return _run_forward(args, layout)
        if args.command == "reverse":
            return _run_reverse(args, layout)
        if args.command == "status":
            return _show_status(layout)
        return _init_workspace(args, layout)
    except AgentNotFoundError as exc:
        print(f"error: {exc}", file=sys.stderr)
    except WorkspaceError as exc:
        print(f"error: {exc}", file=sys.stderr)
    except ValidationError as exc:
        print(f"error: invalid configuration: {exc}", file=sys.stderr)
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
    return int(ExitCode.ERROR)


if __name__ == "__main__":
    raise SystemExit(main())
