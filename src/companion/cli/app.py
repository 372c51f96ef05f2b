"""Command-line interface for companion."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from pathlib import Path

from companion import __version__
from companion.config import Config, load_config
from companion.config.paths import get_project_dir
from companion.errors import CompanionError, SessionNotFoundError
from companion.logging import get_logger, setup_logging
from companion.session.factory import create_controller
from companion.session.models import Mode

log = get_logger("cli")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="companion",
        description="Terminal coding assistant with ASK, PLAN, CODE and AUTO modes",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "project",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    parser.add_argument(
        "--log",
        help="Write logs to this file",
    )
    parser.add_argument(
        "--model",
        help="Model identifier (overrides llm.model)",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in Mode],
        help="Initial mode (overrides agent.default_mode)",
    )
    parser.add_argument(
        "--resume",
        metavar="SESSION_ID",
        help="Resume a saved session",
    )
    parser.add_argument(
        "--no-mcp",
        action="store_true",
        help="Do not start external tool servers",
    )
    return parser


def apply_arguments(config: Config, parsed: argparse.Namespace) -> Config:
    """Fold command-line overrides into the loaded configuration."""
    if parsed.verbose:
        config.logging.verbose = parsed.verbose
    if parsed.log:
        config.logging.file = parsed.log
    if parsed.model:
        config.llm.model = parsed.model
    if parsed.mode:
        config.agent.default_mode = parsed.mode
    return config


async def run(project_root: Path, config: Config, parsed: argparse.Namespace) -> int:
    from companion.cli.repl import InteractiveRepl, console, open_in_editor

    controller = create_controller(
        project_root,
        config,
        memory_editor=open_in_editor,
        external_tools=not parsed.no_mcp,
    )
    await controller.start()

    if parsed.resume:
        try:
            controller.resume(parsed.resume)
        except SessionNotFoundError as e:
            console.print(f"[red]{e}[/red]")
            await controller.close()
            return 1

    history_file = get_project_dir(project_root) / "history"
    history_file.parent.mkdir(parents=True, exist_ok=True)
    repl = InteractiveRepl(controller, history_file=history_file)
    try:
        await repl.run()
    finally:
        await controller.close()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(argv)

    project_root = parsed.project.resolve()
    if not project_root.is_dir():
        parser.error(f"not a directory: {project_root}")

    config = apply_arguments(load_config(project_root=project_root), parsed)
    setup_logging(config.logging, get_project_dir(project_root))
    log.info("Starting companion in %s", project_root)

    try:
        return asyncio.run(run(project_root, config, parsed))
    except CompanionError as e:
        log.error("%s", e)
        print(f"companion: {e}")
        return 1
    except KeyboardInterrupt:
        return 130
