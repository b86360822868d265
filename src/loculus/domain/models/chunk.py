from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class Chunk:
    id: str
    content: str
    index: int
    start_offset: int
    end_offset: int
    metadata: dict[str, str] | None = None


@dataclass(slots=True)
class ChunkingStats:
    count: int
    min_size: int
    max_size: int
    avg_size: int
    total_size: int
