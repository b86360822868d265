from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class IndexingPhase(str, Enum):
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(slots=True)
class IndexingProgress:
    document_id: str
    current_chunk: int
    total_chunks: int
    phase: IndexingPhase

    @property
    def percent_complete(self) -> float:
        if self.total_chunks <= 0:
            return 0.0
        return self.current_chunk / self.total_chunks * 100.0
