from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from loculus.core.errors import (
    CollectionNotFoundError,
    EmptyContentError,
    IndexingCancelledError,
    IndexingFailedError,
    LoculusError,
)
from loculus.core.ids import deterministic_uuid
from loculus.core.time import now_utc_iso
from loculus.domain.models.chunk import Chunk
from loculus.domain.models.collection import Collection, CollectionStats, Document, DocumentStatus
from loculus.domain.models.indexing import IndexingPhase, IndexingProgress
from loculus.domain.models.query import SourceChunk
from loculus.domain.models.vector import StoredVector
from loculus.infrastructure.vector.chunking import DocumentChunker
from loculus.infrastructure.vector.embeddings import EmbeddingEngine
from loculus.infrastructure.vector.store import VectorStore

logger = logging.getLogger(__name__)

UNKNOWN_DOCUMENT_TITLE = "Unknown"

ProgressCallback = Callable[[IndexingProgress], None]
CancellationCheck = Callable[[], bool]


class _Cancelled(Exception):
    pass


class CollectionService:
    """Collections, document indexing and retrieval over one vector store."""

    def __init__(
        self,
        *,
        store: VectorStore,
        chunker: DocumentChunker,
        embedder: EmbeddingEngine,
        embed_workers: int = 1,
    ) -> None:
        self.store = store
        self.chunker = chunker
        self.embedder = embedder
        self.embed_workers = max(1, embed_workers)

    def create_collection(self, name: str, description: str | None = None) -> Collection:
        collection = self.store.create_collection(name, description)
        logger.info("Created collection %s (%s)", collection.name, collection.id)
        return collection

    def get_collections(self) -> list[Collection]:
        return self.store.get_collections()

    def get_collection(self, collection_id: str) -> Collection | None:
        return self.store.get_collection(collection_id)

    def require_collection(self, collection_id: str) -> Collection:
        collection = self.store.get_collection(collection_id)
        if collection is None:
            raise CollectionNotFoundError(collection_id)
        return collection

    def delete_collection(self, collection_id: str) -> None:
        self.store.delete_collection(collection_id)
        logger.info("Deleted collection %s", collection_id)

    def get_documents(self, collection_id: str) -> list[Document]:
        return self.store.get_documents(collection_id)

    def get_document(self, document_id: str) -> Document | None:
        return self.store.get_document(document_id)

    def remove_document(self, collection_id: str, document_id: str) -> None:
        self.store.delete_document(collection_id, document_id)
        logger.info("Removed document %s from collection %s", document_id, collection_id)

    def get_collection_stats(self, collection_id: str) -> CollectionStats:
        return self.store.get_collection_stats(collection_id)

    def index_document(
        self,
        collection_id: str,
        title: str,
        content: str,
        *,
        metadata: dict[str, str] | None = None,
        progress_callback: ProgressCallback | None = None,
        cancellation_check: CancellationCheck | None = None,
    ) -> Document:
        """Chunk, embed and store one document.

        The document row moves PENDING -> INDEXING -> INDEXED. Any failure after
        the row exists marks it ERROR with the message, reports a FAILED phase
        and raises IndexingFailedError; nothing is retried.
        """
        if not content or not content.strip():
            raise EmptyContentError("Document content is empty")
        self.require_collection(collection_id)

        document = self.store.add_document(collection_id, title, metadata=metadata)
        current_chunk = 0
        total_chunks = 0

        def emit(phase: IndexingPhase) -> None:
            if progress_callback is None:
                return
            progress_callback(
                IndexingProgress(
                    document_id=document.id,
                    current_chunk=current_chunk,
                    total_chunks=total_chunks,
                    phase=phase,
                )
            )

        def on_embedded(done: int) -> None:
            nonlocal current_chunk
            current_chunk = done
            emit(IndexingPhase.EMBEDDING)

        def ensure_not_cancelled(context: str) -> None:
            if cancellation_check is not None and cancellation_check():
                raise _Cancelled(f"Indexing cancelled {context}")

        try:
            ensure_not_cancelled("before indexing started")
            self.store.update_document_status(document.id, DocumentStatus.INDEXING)

            ensure_not_cancelled("before chunking")
            emit(IndexingPhase.CHUNKING)
            chunks = self.chunker.chunk(content, metadata)
            if not chunks:
                raise IndexingFailedError(document.id, "Chunking produced no chunks")
            total_chunks = len(chunks)
            stats = self.chunker.get_chunking_stats(chunks)
            logger.debug(
                "Chunked document %s: %d chunks, sizes %d..%d (avg %d)",
                document.id,
                stats.count,
                stats.min_size,
                stats.max_size,
                stats.avg_size,
            )

            vectors = self._embed_chunks(
                collection_id,
                document.id,
                chunks,
                on_chunk=on_embedded,
                ensure_not_cancelled=ensure_not_cancelled,
            )

            ensure_not_cancelled("before storing vectors")
            emit(IndexingPhase.STORING)
            self.store.commit_document(document.id, vectors)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            if isinstance(exc, IndexingFailedError):
                message = exc.message
            self._mark_failed(document.id, message)
            emit(IndexingPhase.FAILED)
            if isinstance(exc, _Cancelled):
                logger.info("Indexing of document %s cancelled", document.id)
                raise IndexingCancelledError(document.id, message) from exc
            logger.warning("Indexing of document %s failed: %s", document.id, message)
            if isinstance(exc, IndexingFailedError):
                raise
            raise IndexingFailedError(document.id, message) from exc
        except BaseException as exc:
            # Interrupts propagate unchanged but must not leave the row in INDEXING.
            self._mark_failed(document.id, f"Indexing interrupted: {exc.__class__.__name__}")
            emit(IndexingPhase.FAILED)
            logger.warning("Indexing of document %s interrupted by %s", document.id, exc.__class__.__name__)
            raise

        emit(IndexingPhase.COMPLETE)
        logger.info("Indexed document %s (%s) into %d chunks", document.id, title, len(vectors))
        indexed = self.store.get_document(document.id)
        return indexed if indexed is not None else document

    def search(
        self,
        query: str,
        collection_id: str,
        top_k: int = 5,
        min_relevance: float = 0.0,
    ) -> list[SourceChunk]:
        self.require_collection(collection_id)
        query_embedding = self.embedder.embed(query)
        results = self.store.search(
            query_embedding.vector,
            collection_id,
            top_k=top_k,
            min_similarity=min_relevance,
        )

        titles: dict[str, str] = {}
        out: list[SourceChunk] = []
        for result in results:
            doc_id = result.vector.document_id
            if doc_id not in titles:
                titles[doc_id] = self.store.get_document_title(doc_id) or UNKNOWN_DOCUMENT_TITLE
            out.append(
                SourceChunk(
                    document_id=doc_id,
                    document_title=titles[doc_id],
                    content=result.vector.content,
                    relevance_score=result.similarity,
                    chunk_index=result.vector.chunk_index,
                )
            )
        logger.debug("Search in %s returned %d chunks", collection_id, len(out))
        return out

    def _embed_chunks(
        self,
        collection_id: str,
        document_id: str,
        chunks: list[Chunk],
        *,
        on_chunk: Callable[[int], None],
        ensure_not_cancelled: Callable[[str], None],
    ) -> list[StoredVector]:
        vectors: list[StoredVector] = []

        def to_stored(chunk: Chunk, vector: list[float]) -> StoredVector:
            return StoredVector(
                id=deterministic_uuid(f"{document_id}:{chunk.id}"),
                collection_id=collection_id,
                document_id=document_id,
                chunk_index=chunk.index,
                content=chunk.content,
                vector=vector,
                metadata=chunk.metadata,
                created_at=now_utc_iso(),
            )

        if self.embed_workers == 1 or len(chunks) == 1:
            for chunk in chunks:
                ensure_not_cancelled(f"at chunk {chunk.index + 1}/{len(chunks)}")
                vectors.append(to_stored(chunk, self.embedder.embed(chunk.content).vector))
                on_chunk(len(vectors))
            return vectors

        with ThreadPoolExecutor(max_workers=self.embed_workers) as pool:
            futures = [pool.submit(self.embedder.embed, chunk.content) for chunk in chunks]
            try:
                # Results are consumed in chunk order so progress stays monotonic.
                for chunk, future in zip(chunks, futures):
                    ensure_not_cancelled(f"at chunk {chunk.index + 1}/{len(chunks)}")
                    vectors.append(to_stored(chunk, future.result().vector))
                    on_chunk(len(vectors))
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return vectors

    def _mark_failed(self, document_id: str, message: str) -> None:
        try:
            self.store.update_document_status(document_id, DocumentStatus.ERROR, error_message=message)
        except LoculusError as exc:
            # Status is already terminal.
            logger.warning("Could not mark document %s as failed: %s", document_id, exc)
