from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar

DEFAULT_SYSTEM_PROMPT = """You are a helpful AI assistant that answers questions based on the provided context.

Instructions:
- Only use information from the provided context to answer the question
- If the context doesn't contain enough information, say so
- Be concise and direct in your answers
- If relevant, mention which document the information comes from
- Do not make up information that isn't in the context"""


@dataclass(slots=True)
class SourceChunk:
    document_id: str
    document_title: str
    content: str
    relevance_score: float
    chunk_index: int


@dataclass(slots=True)
class QueryConfig:
    top_k: int = 5
    min_relevance: float = 0.0
    system_prompt: str | None = None
    max_tokens: int = 1024
    temperature: float = 0.7
    include_citations: bool = True


@dataclass(slots=True)
class QueryResult:
    answer: str
    sources: list[SourceChunk]
    processing_time_ms: int
    confidence: float
    retrieved_count: int


@dataclass(slots=True)
class SourcesEvent:
    kind: ClassVar[str] = "sources"
    sources: list[SourceChunk] = field(default_factory=list)


@dataclass(slots=True)
class TokenEvent:
    kind: ClassVar[str] = "token"
    text: str = ""


@dataclass(slots=True)
class CompleteEvent:
    kind: ClassVar[str] = "complete"
    answer: str = ""
    processing_time_ms: int = 0
    confidence: float = 0.0
    retrieved_count: int = 0


StreamEvent = SourcesEvent | TokenEvent | CompleteEvent
