from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from loculus.application.services.collection_service import CollectionService
from loculus.application.services.project_service import ProjectService
from loculus.cli.context import CLIContext


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("collections", help="Create, inspect and delete collections")
    collection_subparsers = parser.add_subparsers(dest="collections_command", required=True)

    create = collection_subparsers.add_parser("create", help="Create a collection")
    create.add_argument("name")
    create.add_argument("--description")
    create.set_defaults(handler=run_create)

    list_parser = collection_subparsers.add_parser("list", help="List collections")
    list_parser.set_defaults(handler=run_list)

    show = collection_subparsers.add_parser("show", help="Show one collection and its documents")
    show.add_argument("collection_id")
    show.set_defaults(handler=run_show)

    stats = collection_subparsers.add_parser("stats", help="Show indexing statistics for a collection")
    stats.add_argument("collection_id")
    stats.set_defaults(handler=run_stats)

    delete = collection_subparsers.add_parser("delete", help="Delete a collection with its documents and vectors")
    delete.add_argument("collection_id")
    delete.set_defaults(handler=run_delete)


def _service(ctx: CLIContext) -> CollectionService:
    project_service = ProjectService(ctx.paths, ctx.settings)
    project_service.require_initialized()
    return project_service.build_collection_service()


def run_create(args: argparse.Namespace, ctx: CLIContext) -> int:
    collection = _service(ctx).create_collection(args.name, args.description)
    ctx.console.print(f"[green]Created collection[/green] {collection.name} ({collection.id})")
    return 0


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    collections = _service(ctx).get_collections()

    table = Table(title=f"Collections ({len(collections)})")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Documents", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Updated")
    table.add_column("Description", overflow="fold")
    for collection in collections:
        table.add_row(
            collection.id,
            collection.name,
            str(collection.document_count),
            str(collection.total_chunks),
            collection.updated_at,
            collection.description or "",
        )
    ctx.console.print(table)
    return 0


def run_show(args: argparse.Namespace, ctx: CLIContext) -> int:
    service = _service(ctx)
    collection = service.require_collection(args.collection_id)
    documents = service.get_documents(collection.id)

    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"ID: {collection.id}",
                    f"Description: {collection.description or '-'}",
                    f"Created: {collection.created_at}",
                    f"Updated: {collection.updated_at}",
                    f"Documents: {collection.document_count}",
                    f"Chunks: {collection.total_chunks}",
                ]
            ),
            title=collection.name,
        )
    )

    table = Table(title="Documents")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Indexed")
    table.add_column("Error", overflow="fold")
    for doc in documents:
        table.add_row(
            doc.id,
            doc.title,
            doc.status.value,
            str(doc.chunk_count),
            doc.indexed_at or "",
            doc.error_message or "",
        )
    ctx.console.print(table)
    return 0


def run_stats(args: argparse.Namespace, ctx: CLIContext) -> int:
    stats = _service(ctx).get_collection_stats(args.collection_id)
    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"Documents: {stats.document_count}",
                    f"Indexed: {stats.indexed_documents}",
                    f"Pending: {stats.pending_documents}",
                    f"Errors: {stats.error_documents}",
                    f"Chunks: {stats.total_chunks}",
                    f"Fully indexed: {'yes' if stats.is_fully_indexed else 'no'}",
                ]
            ),
            title=f"Collection {stats.collection_id}",
        )
    )
    return 0


def run_delete(args: argparse.Namespace, ctx: CLIContext) -> int:
    _service(ctx).delete_collection(args.collection_id)
    ctx.console.print(f"[green]Deleted collection[/green] {args.collection_id}")
    return 0
