from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

import numpy as np

from loculus.core.errors import (
    CollectionNotFoundError,
    ConfigurationError,
    DocumentNotFoundError,
    StorageError,
    ValidationError,
    VectorDimensionMismatchError,
)
from loculus.core.ids import new_uuid
from loculus.core.time import now_utc_iso
from loculus.domain.models.collection import (
    ALLOWED_STATUS_TRANSITIONS,
    Collection,
    CollectionStats,
    Document,
    DocumentStatus,
)
from loculus.domain.models.vector import StoredVector, VectorSearchResult
from loculus.infrastructure.db.sqlite import initialize_schema, read_connection, transaction
from loculus.infrastructure.vector.similarity import cosine_scores, pack_vector, rank_descending, unpack_array

logger = logging.getLogger(__name__)

DIMENSION_SETTING_KEY = "vector_dimension"

_COLLECTION_SELECT = """
    SELECT
        c.id,
        c.name,
        c.description,
        c.created_at,
        c.updated_at,
        (SELECT COUNT(*) FROM documents d WHERE d.collection_id = c.id) AS document_count,
        (SELECT COUNT(*) FROM vectors v WHERE v.collection_id = c.id) AS total_chunks
    FROM collections c
"""

_DOCUMENT_COLUMNS = """
    id, collection_id, title, status, chunk_count, indexed_at, error_message, metadata_json, created_at
"""


def _dump_metadata(metadata: dict[str, str] | None) -> str | None:
    if not metadata:
        return None
    return json.dumps(metadata, sort_keys=True, ensure_ascii=False)


def _load_metadata(raw: str | None) -> dict[str, str] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    return {str(k): str(v) for k, v in parsed.items()} if isinstance(parsed, dict) else None


def _row_to_collection(row: sqlite3.Row) -> Collection:
    return Collection(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        document_count=int(row["document_count"]),
        total_chunks=int(row["total_chunks"]),
    )


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        collection_id=row["collection_id"],
        title=row["title"],
        status=DocumentStatus(row["status"]),
        chunk_count=int(row["chunk_count"]),
        indexed_at=row["indexed_at"],
        error_message=row["error_message"],
        metadata=_load_metadata(row["metadata_json"]),
        created_at=row["created_at"],
    )


class VectorStore:
    """SQLite-backed store for collections, documents and their chunk vectors.

    Every mutation runs in its own transaction. Vector dimension is fixed per
    database: it is recorded on first initialization and checked on every
    write and search.
    """

    def __init__(self, db_path: Path, *, dimension: int = 384) -> None:
        if dimension <= 0:
            raise ValidationError(f"Vector dimension must be positive, got {dimension}")
        self.db_path = db_path
        self.dimension = dimension

    def initialize(self) -> None:
        initialize_schema(self.db_path)
        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM store_settings WHERE key = ?",
                (DIMENSION_SETTING_KEY,),
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO store_settings (key, value) VALUES (?, ?)",
                    (DIMENSION_SETTING_KEY, str(self.dimension)),
                )
                return
        recorded = int(row["value"])
        if recorded != self.dimension:
            raise ConfigurationError(
                f"Vector store at {self.db_path} holds {recorded}-dimensional vectors; "
                f"configured dimension is {self.dimension}."
            )

    def recorded_dimension(self) -> int | None:
        with read_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM store_settings WHERE key = ?",
                (DIMENSION_SETTING_KEY,),
            ).fetchone()
        return int(row["value"]) if row is not None else None

    # Collections

    def create_collection(
        self,
        name: str,
        description: str | None = None,
        *,
        collection_id: str | None = None,
    ) -> Collection:
        name = name.strip()
        if not name:
            raise ValidationError("Collection name must not be empty")
        now = now_utc_iso()
        collection = Collection(
            id=collection_id or new_uuid(),
            name=name,
            description=description,
            created_at=now,
            updated_at=now,
        )
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO collections (id, name, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (collection.id, collection.name, collection.description, now, now),
            )
        return collection

    def get_collections(self) -> list[Collection]:
        with read_connection(self.db_path) as conn:
            rows = conn.execute(_COLLECTION_SELECT + " ORDER BY c.created_at DESC, c.rowid DESC").fetchall()
        return [_row_to_collection(row) for row in rows]

    def get_collection(self, collection_id: str) -> Collection | None:
        with read_connection(self.db_path) as conn:
            row = conn.execute(_COLLECTION_SELECT + " WHERE c.id = ?", (collection_id,)).fetchone()
        return _row_to_collection(row) if row is not None else None

    def delete_collection(self, collection_id: str) -> None:
        with self._write() as conn:
            cur = conn.execute("DELETE FROM collections WHERE id = ?", (collection_id,))
            if cur.rowcount == 0:
                raise CollectionNotFoundError(collection_id)

    def get_collection_stats(self, collection_id: str) -> CollectionStats:
        # One statement so document and vector counts come from the same snapshot.
        with read_connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM documents d WHERE d.collection_id = c.id) AS document_count,
                    (SELECT COUNT(*) FROM documents d
                        WHERE d.collection_id = c.id AND d.status = 'indexed') AS indexed,
                    (SELECT COUNT(*) FROM documents d
                        WHERE d.collection_id = c.id AND d.status IN ('pending', 'indexing')) AS pending,
                    (SELECT COUNT(*) FROM documents d
                        WHERE d.collection_id = c.id AND d.status = 'error') AS errored,
                    (SELECT COUNT(*) FROM vectors v WHERE v.collection_id = c.id) AS total_chunks
                FROM collections c
                WHERE c.id = ?
                """,
                (collection_id,),
            ).fetchone()
        if row is None:
            raise CollectionNotFoundError(collection_id)
        return CollectionStats(
            collection_id=collection_id,
            document_count=int(row["document_count"]),
            total_chunks=int(row["total_chunks"]),
            indexed_documents=int(row["indexed"]),
            pending_documents=int(row["pending"]),
            error_documents=int(row["errored"]),
        )

    # Documents

    def add_document(
        self,
        collection_id: str,
        title: str,
        *,
        metadata: dict[str, str] | None = None,
        document_id: str | None = None,
    ) -> Document:
        now = now_utc_iso()
        document = Document(
            id=document_id or new_uuid(),
            collection_id=collection_id,
            title=title,
            status=DocumentStatus.PENDING,
            chunk_count=0,
            indexed_at=None,
            error_message=None,
            metadata=dict(metadata) if metadata else None,
            created_at=now,
        )
        with self._write() as conn:
            exists = conn.execute("SELECT 1 FROM collections WHERE id = ?", (collection_id,)).fetchone()
            if exists is None:
                raise CollectionNotFoundError(collection_id)
            conn.execute(
                f"""
                INSERT INTO documents ({_DOCUMENT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id,
                    document.collection_id,
                    document.title,
                    document.status.value,
                    document.chunk_count,
                    document.indexed_at,
                    document.error_message,
                    _dump_metadata(document.metadata),
                    document.created_at,
                ),
            )
            self._touch_collection(conn, collection_id, now)
        return document

    def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        *,
        chunk_count: int | None = None,
        error_message: str | None = None,
    ) -> None:
        with self._write() as conn:
            self._transition(conn, document_id, status, chunk_count=chunk_count, error_message=error_message)

    def get_documents(self, collection_id: str) -> list[Document]:
        with read_connection(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE collection_id = ? ORDER BY rowid",
                (collection_id,),
            ).fetchall()
        return [_row_to_document(row) for row in rows]

    def get_document(self, document_id: str) -> Document | None:
        with read_connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
                (document_id,),
            ).fetchone()
        return _row_to_document(row) if row is not None else None

    def get_document_title(self, document_id: str) -> str | None:
        with read_connection(self.db_path) as conn:
            row = conn.execute("SELECT title FROM documents WHERE id = ?", (document_id,)).fetchone()
        return row["title"] if row is not None else None

    def delete_document(self, collection_id: str, document_id: str) -> None:
        with self._write() as conn:
            cur = conn.execute(
                "DELETE FROM documents WHERE id = ? AND collection_id = ?",
                (document_id, collection_id),
            )
            if cur.rowcount == 0:
                raise DocumentNotFoundError(document_id)
            self._touch_collection(conn, collection_id, now_utc_iso())

    # Vectors

    def store_vector(self, vector: StoredVector) -> None:
        self.store_vectors([vector])

    def store_vectors(self, vectors: Sequence[StoredVector]) -> int:
        """Insert a batch atomically: every row is written or none is."""
        if not vectors:
            return 0
        for item in vectors:
            self._check_dimension(item.vector)
        with self._write() as conn:
            self._insert_vectors(conn, vectors)
        return len(vectors)

    def commit_document(self, document_id: str, vectors: Sequence[StoredVector]) -> None:
        """Write a document's vectors and mark it indexed in one transaction."""
        for item in vectors:
            self._check_dimension(item.vector)
            if item.document_id != document_id:
                raise ValidationError(f"Vector {item.id} belongs to document {item.document_id}, not {document_id}")
        with self._write() as conn:
            self._insert_vectors(conn, vectors)
            self._transition(conn, document_id, DocumentStatus.INDEXED, chunk_count=len(vectors))

    def count_vectors(self, collection_id: str | None = None) -> int:
        with read_connection(self.db_path) as conn:
            if collection_id is None:
                row = conn.execute("SELECT COUNT(*) AS c FROM vectors").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS c FROM vectors WHERE collection_id = ?",
                    (collection_id,),
                ).fetchone()
        return int(row["c"])

    def search(
        self,
        query_vector: Sequence[float],
        collection_id: str,
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[VectorSearchResult]:
        self._check_dimension(query_vector)
        if top_k <= 0:
            return []

        rows: list[sqlite3.Row] = []
        arrays: list[np.ndarray] = []
        with read_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                SELECT id, collection_id, document_id, chunk_index, content, vector, metadata_json, created_at
                FROM vectors
                WHERE collection_id = ?
                ORDER BY rowid
                """,
                (collection_id,),
            )
            for row in cursor:
                try:
                    values = unpack_array(row["vector"])
                except ValidationError as exc:
                    logger.warning("Skipping unreadable vector %s: %s", row["id"], exc)
                    continue
                if values.shape[0] != self.dimension:
                    logger.warning(
                        "Skipping vector %s with dimension %d (expected %d)",
                        row["id"],
                        values.shape[0],
                        self.dimension,
                    )
                    continue
                rows.append(row)
                arrays.append(values)

        if not rows:
            return []

        matrix = np.vstack(arrays)
        scores = cosine_scores(query_vector, matrix)

        results: list[VectorSearchResult] = []
        for idx in rank_descending(scores):
            score = float(scores[idx])
            if score < min_similarity:
                continue
            row = rows[idx]
            results.append(
                VectorSearchResult(
                    vector=StoredVector(
                        id=row["id"],
                        collection_id=row["collection_id"],
                        document_id=row["document_id"],
                        chunk_index=int(row["chunk_index"]),
                        content=row["content"],
                        vector=matrix[idx].tolist(),
                        metadata=_load_metadata(row["metadata_json"]),
                        created_at=row["created_at"],
                    ),
                    similarity=score,
                )
            )
            if len(results) == top_k:
                break
        return results

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise VectorDimensionMismatchError(expected=self.dimension, got=len(vector))

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        try:
            with transaction(self.db_path) as conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    @staticmethod
    def _insert_vectors(conn: sqlite3.Connection, vectors: Sequence[StoredVector]) -> None:
        conn.executemany(
            """
            INSERT INTO vectors (
                id,
                collection_id,
                document_id,
                chunk_index,
                content,
                vector,
                metadata_json,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    item.id,
                    item.collection_id,
                    item.document_id,
                    item.chunk_index,
                    item.content,
                    pack_vector(item.vector),
                    _dump_metadata(item.metadata),
                    item.created_at,
                )
                for item in vectors
            ],
        )

    @staticmethod
    def _touch_collection(conn: sqlite3.Connection, collection_id: str, now: str) -> None:
        conn.execute("UPDATE collections SET updated_at = ? WHERE id = ?", (now, collection_id))

    @staticmethod
    def _transition(
        conn: sqlite3.Connection,
        document_id: str,
        status: DocumentStatus,
        *,
        chunk_count: int | None = None,
        error_message: str | None = None,
    ) -> None:
        row = conn.execute("SELECT status FROM documents WHERE id = ?", (document_id,)).fetchone()
        if row is None:
            raise DocumentNotFoundError(document_id)
        current = DocumentStatus(row["status"])
        if status not in ALLOWED_STATUS_TRANSITIONS[current]:
            raise ValidationError(
                f"Invalid status transition for document {document_id}: {current.value} -> {status.value}"
            )
        conn.execute(
            """
            UPDATE documents
            SET status = ?,
                chunk_count = COALESCE(?, chunk_count),
                indexed_at = CASE WHEN ? = 'indexed' THEN ? ELSE indexed_at END,
                error_message = ?
            WHERE id = ?
            """,
            (
                status.value,
                chunk_count,
                status.value,
                now_utc_iso(),
                error_message if status == DocumentStatus.ERROR else None,
                document_id,
            ),
        )

