from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console

from loculus.cli.commands import (
    ask_cmd,
    collections_cmd,
    docs_cmd,
    doctor_cmd,
    init_cmd,
    search_cmd,
    web_cmd,
)
from loculus.cli.context import CLIContext
from loculus.core.config import load_paths, load_settings
from loculus.core.errors import LoculusError
from loculus.core.logging import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loculus",
        description="Loculus on-device RAG engine",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path.cwd(),
        help="Project root to use for .loculus data (default: current working directory)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)

    subparsers = parser.add_subparsers(dest="command", required=True)
    init_cmd.register(subparsers)
    collections_cmd.register(subparsers)
    docs_cmd.register(subparsers)
    search_cmd.register(subparsers)
    ask_cmd.register(subparsers)
    doctor_cmd.register(subparsers)
    web_cmd.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    console = Console()

    ctx = CLIContext(paths=load_paths(args.project_root), settings=load_settings(), console=console)

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2

    try:
        return handler(args, ctx)
    except LoculusError as exc:
        logger.error(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
