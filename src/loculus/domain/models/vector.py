from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class StoredVector:
    id: str
    collection_id: str
    document_id: str
    chunk_index: int
    content: str
    vector: list[float]
    metadata: dict[str, str] | None
    created_at: str


@dataclass(slots=True)
class VectorSearchResult:
    vector: StoredVector
    similarity: float


@dataclass(slots=True)
class Embedding:
    text: str
    vector: list[float]
    language: str

    @property
    def dimension(self) -> int:
        return len(self.vector)
