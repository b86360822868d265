from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DocumentStatus(str, Enum):
    PENDING = "pending"
    INDEXING = "indexing"
    INDEXED = "indexed"
    ERROR = "error"


ALLOWED_STATUS_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.INDEXING, DocumentStatus.ERROR}),
    DocumentStatus.INDEXING: frozenset({DocumentStatus.INDEXED, DocumentStatus.ERROR}),
    DocumentStatus.INDEXED: frozenset(),
    DocumentStatus.ERROR: frozenset(),
}


@dataclass(slots=True)
class Collection:
    id: str
    name: str
    description: str | None
    created_at: str
    updated_at: str
    document_count: int = 0
    total_chunks: int = 0


@dataclass(slots=True)
class Document:
    id: str
    collection_id: str
    title: str
    status: DocumentStatus
    chunk_count: int
    indexed_at: str | None
    error_message: str | None
    metadata: dict[str, str] | None
    created_at: str


@dataclass(slots=True)
class CollectionStats:
    collection_id: str
    document_count: int
    total_chunks: int
    indexed_documents: int
    pending_documents: int
    error_documents: int

    @property
    def is_fully_indexed(self) -> bool:
        return self.indexed_documents == self.document_count and self.pending_documents == 0
