from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator

from loculus.application.services.collection_service import CollectionService
from loculus.core.errors import (
    GenerationFailedError,
    InferenceEngineNotReadyError,
    NoRelevantChunksError,
    QueryCancelledError,
)
from loculus.core.time import elapsed_ms
from loculus.domain.models.query import (
    DEFAULT_SYSTEM_PROMPT,
    CompleteEvent,
    QueryConfig,
    QueryResult,
    SourceChunk,
    SourcesEvent,
    StreamEvent,
    TokenEvent,
)
from loculus.infrastructure.generation.base import GenerationConfig, Generator

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "Based on the following documents:\n\n"


def build_context(sources: list[SourceChunk], *, include_citations: bool = True) -> str:
    parts = [CONTEXT_HEADER]
    for number, source in enumerate(sources, start=1):
        if include_citations:
            parts.append(f'[{number}] From "{source.document_title}":\n')
        parts.append(source.content)
        parts.append("\n\n")
    return "".join(parts)


def build_prompt(query: str, context: str, system_prompt: str | None = None) -> str:
    system = system_prompt or DEFAULT_SYSTEM_PROMPT
    return f"{system}\n\nContext:\n{context}\n\nQuestion: {query}\n\nAnswer:"


def mean_relevance(sources: list[SourceChunk]) -> float:
    if not sources:
        return 0.0
    return sum(s.relevance_score for s in sources) / len(sources)


def _ensure_not_cancelled(cancellation_check: Callable[[], bool] | None, context: str) -> None:
    if cancellation_check is not None and cancellation_check():
        raise QueryCancelledError(f"Query cancelled {context}")


class QueryService:
    """Answer questions from a collection with a pluggable text generator."""

    def __init__(self, collection_service: CollectionService, generator: Generator | None = None) -> None:
        self.collection_service = collection_service
        self.generator = generator

    def set_generator(self, generator: Generator | None) -> None:
        self.generator = generator

    def query(
        self,
        query: str,
        collection_id: str,
        config: QueryConfig | None = None,
        *,
        cancellation_check: Callable[[], bool] | None = None,
    ) -> QueryResult:
        config = config or QueryConfig()
        started = time.perf_counter()

        sources = self._retrieve(query, collection_id, config)
        _ensure_not_cancelled(cancellation_check, "after retrieval")
        generator = self._ready_generator()
        prompt = build_prompt(
            query,
            build_context(sources, include_citations=config.include_citations),
            config.system_prompt,
        )

        try:
            answer = generator.generate(prompt, self._generation_config(config))
        except Exception as exc:
            logger.warning("Generation failed for collection %s: %s", collection_id, exc)
            raise GenerationFailedError(f"Text generation failed: {exc}") from exc

        result = QueryResult(
            answer=answer.strip(),
            sources=sources,
            processing_time_ms=elapsed_ms(started),
            confidence=mean_relevance(sources),
            retrieved_count=len(sources),
        )
        logger.info(
            "Answered query over %d chunks in %dms (confidence %.3f)",
            result.retrieved_count,
            result.processing_time_ms,
            result.confidence,
        )
        return result

    def query_streaming(
        self,
        query: str,
        collection_id: str,
        config: QueryConfig | None = None,
        *,
        cancellation_check: Callable[[], bool] | None = None,
    ) -> Iterator[StreamEvent]:
        """Yield Sources, then one Token per generator delta, then Complete.

        Failures end the stream by raising; tokens already yielded stay with
        the consumer.
        """
        config = config or QueryConfig()
        started = time.perf_counter()

        sources = self._retrieve(query, collection_id, config)
        generator = self._ready_generator()
        prompt = build_prompt(
            query,
            build_context(sources, include_citations=config.include_citations),
            config.system_prompt,
        )

        yield SourcesEvent(sources=sources)
        _ensure_not_cancelled(cancellation_check, "before generation")

        answer_parts: list[str] = []
        deltas: Iterator[str] | None = None
        try:
            try:
                deltas = iter(generator.generate_streaming(prompt, self._generation_config(config)))
                for delta in deltas:
                    _ensure_not_cancelled(cancellation_check, f"after {len(answer_parts)} tokens")
                    answer_parts.append(delta)
                    yield TokenEvent(text=delta)
            except QueryCancelledError:
                raise
            except Exception as exc:
                logger.warning("Streaming generation failed after %d tokens: %s", len(answer_parts), exc)
                raise GenerationFailedError(f"Text generation failed: {exc}") from exc
        finally:
            close = getattr(deltas, "close", None)
            if callable(close):
                close()

        yield CompleteEvent(
            answer="".join(answer_parts).strip(),
            processing_time_ms=elapsed_ms(started),
            confidence=mean_relevance(sources),
            retrieved_count=len(sources),
        )

    def _retrieve(self, query: str, collection_id: str, config: QueryConfig) -> list[SourceChunk]:
        sources = self.collection_service.search(
            query,
            collection_id,
            top_k=config.top_k,
            min_relevance=config.min_relevance,
        )
        if not sources:
            raise NoRelevantChunksError(f"No relevant chunks found in collection {collection_id}")
        return sources

    def _ready_generator(self) -> Generator:
        if self.generator is None or not self.generator.is_ready():
            raise InferenceEngineNotReadyError("No text generator is attached or it is not ready")
        return self.generator

    @staticmethod
    def _generation_config(config: QueryConfig) -> GenerationConfig:
        return GenerationConfig(temperature=config.temperature, max_tokens=config.max_tokens)
