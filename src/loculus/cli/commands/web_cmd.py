from __future__ import annotations

import argparse

from loculus.cli.context import CLIContext
from loculus.core.errors import ConfigurationError
from loculus.web.app import create_app


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("web", help="Serve the HTTP API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise ConfigurationError("uvicorn is required for web mode. Install project dependencies.") from exc

    app = create_app(ctx.paths, ctx.settings)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0
