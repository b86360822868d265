from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from loculus.application.services.project_service import ProjectService
from loculus.cli.context import CLIContext
from loculus.domain.models.query import CompleteEvent, QueryConfig, SourceChunk, SourcesEvent, TokenEvent


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("ask", help="Answer a question from a collection")
    parser.add_argument("collection_id")
    parser.add_argument("question")
    parser.add_argument("--top-k", type=int, default=5)
    parser.add_argument("--min-relevance", type=float, default=0.0)
    parser.add_argument("--max-tokens", type=int, default=1024)
    parser.add_argument("--temperature", type=float, default=0.7)
    parser.add_argument("--system-prompt")
    parser.add_argument("--no-citations", action="store_true", help="Omit numbered source markers from the context")
    parser.add_argument("--stream", action="store_true", help="Print tokens as they are generated")
    parser.set_defaults(handler=run)


def _sources_table(sources: list[SourceChunk]) -> Table:
    table = Table(title="Sources")
    table.add_column("#", justify="right")
    table.add_column("Document")
    table.add_column("Relevance", justify="right")
    table.add_column("Excerpt", overflow="fold")
    for number, source in enumerate(sources, start=1):
        excerpt = source.content if len(source.content) <= 160 else source.content[:157] + "..."
        table.add_row(str(number), source.document_title, f"{source.relevance_score:.3f}", excerpt)
    return table


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    project_service = ProjectService(ctx.paths, ctx.settings)
    project_service.require_initialized()
    service = project_service.build_query_service()
    config = QueryConfig(
        top_k=args.top_k,
        min_relevance=args.min_relevance,
        system_prompt=args.system_prompt,
        max_tokens=args.max_tokens,
        temperature=args.temperature,
        include_citations=not args.no_citations,
    )

    if not args.stream:
        result = service.query(args.question, args.collection_id, config)
        ctx.console.print(Panel(result.answer, title="Answer"))
        ctx.console.print(_sources_table(result.sources))
        ctx.console.print(
            f"confidence={result.confidence:.3f} retrieved={result.retrieved_count} "
            f"time={result.processing_time_ms}ms"
        )
        return 0

    sources: list[SourceChunk] = []
    for event in service.query_streaming(args.question, args.collection_id, config):
        if isinstance(event, SourcesEvent):
            sources = event.sources
        elif isinstance(event, TokenEvent):
            ctx.console.print(event.text, end="", markup=False, highlight=False)
        elif isinstance(event, CompleteEvent):
            ctx.console.print()
            ctx.console.print(_sources_table(sources))
            ctx.console.print(
                f"confidence={event.confidence:.3f} retrieved={event.retrieved_count} "
                f"time={event.processing_time_ms}ms"
            )
    return 0
