from __future__ import annotations

import argparse
from pathlib import Path

from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from loculus.application.services.collection_service import CollectionService
from loculus.application.services.project_service import ProjectService
from loculus.cli.context import CLIContext
from loculus.core.files import read_text_file
from loculus.core.hashing import compute_file_digest
from loculus.domain.models.indexing import IndexingProgress


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("docs", help="Index, list and remove documents")
    docs_subparsers = parser.add_subparsers(dest="docs_command", required=True)

    add = docs_subparsers.add_parser("add", help="Index a document into a collection")
    add.add_argument("collection_id")
    source = add.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", type=Path, help="UTF-8 text file to index")
    source.add_argument("--text", help="Inline document text")
    add.add_argument("--title", help="Document title (defaults to the file name)")
    add.set_defaults(handler=run_add)

    list_parser = docs_subparsers.add_parser("list", help="List documents in a collection")
    list_parser.add_argument("collection_id")
    list_parser.set_defaults(handler=run_list)

    remove = docs_subparsers.add_parser("remove", help="Remove a document and its vectors")
    remove.add_argument("collection_id")
    remove.add_argument("document_id")
    remove.set_defaults(handler=run_remove)


def _service(ctx: CLIContext) -> CollectionService:
    project_service = ProjectService(ctx.paths, ctx.settings)
    project_service.require_initialized()
    return project_service.build_collection_service()


def run_add(args: argparse.Namespace, ctx: CLIContext) -> int:
    service = _service(ctx)
    metadata: dict[str, str] = {}
    if args.file is not None:
        content = read_text_file(args.file)
        title = args.title or args.file.name
        metadata["source_path"] = str(args.file.expanduser().resolve())
        metadata["source_sha256"] = compute_file_digest(args.file.expanduser())
    else:
        content = args.text
        title = args.title or "Untitled"

    with Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=ctx.console,
        transient=True,
    ) as progress:
        task = progress.add_task("chunking", total=None)

        def on_progress(update: IndexingProgress) -> None:
            progress.update(
                task,
                description=update.phase.value,
                completed=update.current_chunk,
                total=update.total_chunks or None,
            )

        document = service.index_document(
            args.collection_id,
            title,
            content,
            metadata=metadata or None,
            progress_callback=on_progress,
        )

    ctx.console.print(
        f"[green]Indexed[/green] {document.title} ({document.id}) into {document.chunk_count} chunks"
    )
    return 0


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    service = _service(ctx)
    service.require_collection(args.collection_id)
    documents = service.get_documents(args.collection_id)

    table = Table(title=f"Documents ({len(documents)})")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Error", overflow="fold")
    for doc in documents:
        table.add_row(doc.id, doc.title, doc.status.value, str(doc.chunk_count), doc.error_message or "")
    ctx.console.print(table)
    return 0


def run_remove(args: argparse.Namespace, ctx: CLIContext) -> int:
    _service(ctx).remove_document(args.collection_id, args.document_id)
    ctx.console.print(f"[green]Removed document[/green] {args.document_id}")
    return 0
