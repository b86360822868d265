from __future__ import annotations

import argparse

from rich.table import Table

from loculus.application.services.project_service import ProjectService
from loculus.cli.context import CLIContext


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("search", help="Retrieve the chunks most similar to a query")
    parser.add_argument("collection_id")
    parser.add_argument("--query", required=True)
    parser.add_argument("--top-k", type=int, default=5)
    parser.add_argument("--min-relevance", type=float, default=0.0)
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    project_service = ProjectService(ctx.paths, ctx.settings)
    project_service.require_initialized()
    hits = project_service.build_collection_service().search(
        args.query,
        args.collection_id,
        top_k=args.top_k,
        min_relevance=args.min_relevance,
    )

    table = Table(title=f"Search Hits ({len(hits)})")
    table.add_column("Score", justify="right")
    table.add_column("Document")
    table.add_column("Chunk", justify="right")
    table.add_column("Text", overflow="fold")
    for hit in hits:
        table.add_row(
            f"{hit.relevance_score:.4f}",
            hit.document_title,
            str(hit.chunk_index),
            hit.content,
        )
    ctx.console.print(table)
    return 0
