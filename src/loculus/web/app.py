from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from loculus.application.services.health_service import HealthService
from loculus.application.services.project_service import ProjectService
from loculus.core.config import AppPaths, RagSettings
from loculus.core.errors import (
    EmbeddingFailedError,
    GenerationFailedError,
    IndexingFailedError,
    InferenceEngineNotReadyError,
    LoculusError,
    NoRelevantChunksError,
    NotFoundError,
    ValidationError,
)
from loculus.domain.models.query import QueryConfig, StreamEvent
from loculus.infrastructure.generation.base import Generator

logger = logging.getLogger(__name__)


class CollectionCreateRequest(BaseModel):
    name: str
    description: str | None = None


class DocumentAddRequest(BaseModel):
    title: str
    content: str
    metadata: dict[str, str] | None = None


class SearchRequest(BaseModel):
    query: str
    top_k: int = Field(default=5, ge=1, le=100)
    min_relevance: float = 0.0


class QueryRequest(BaseModel):
    query: str
    top_k: int = Field(default=5, ge=1, le=100)
    min_relevance: float = 0.0
    system_prompt: str | None = None
    max_tokens: int = Field(default=1024, ge=1)
    temperature: float = Field(default=0.7, ge=0.0)
    include_citations: bool = True

    def to_config(self) -> QueryConfig:
        return QueryConfig(
            top_k=self.top_k,
            min_relevance=self.min_relevance,
            system_prompt=self.system_prompt,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            include_citations=self.include_citations,
        )


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return _jsonable(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


def _status_for(exc: LoculusError) -> int:
    if isinstance(exc, (NotFoundError, NoRelevantChunksError)):
        return 404
    if isinstance(exc, InferenceEngineNotReadyError):
        return 503
    if isinstance(exc, GenerationFailedError):
        return 502
    if isinstance(exc, (ValidationError, EmbeddingFailedError, IndexingFailedError)):
        return 400
    return 500


def _http_error(exc: LoculusError) -> HTTPException:
    return HTTPException(status_code=_status_for(exc), detail=str(exc))


def _sse_event(event: str, payload: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=True)}\n\n"


def _event_payload(event: StreamEvent) -> dict[str, Any]:
    payload = _jsonable(event)
    return payload if isinstance(payload, dict) else {}


def create_app(
    paths: AppPaths,
    settings: RagSettings | None = None,
    generator: Generator | None = None,
) -> FastAPI:
    app = FastAPI(title="Loculus", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    project_service = ProjectService(paths, settings)
    project_service.init_project()
    collection_service = project_service.build_collection_service()
    query_service = project_service.build_query_service(collection_service, generator)

    @app.get("/api/health")
    def api_health() -> dict[str, Any]:
        report = HealthService(collection_service.store).run_doctor()
        return {"ok": report.ok, "report": _jsonable(report)}

    @app.post("/api/collections")
    def api_create_collection(req: CollectionCreateRequest) -> dict[str, Any]:
        try:
            collection = collection_service.create_collection(req.name, req.description)
        except LoculusError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "collection": _jsonable(collection)}

    @app.get("/api/collections")
    def api_list_collections() -> dict[str, Any]:
        collections = collection_service.get_collections()
        return {"ok": True, "count": len(collections), "collections": _jsonable(collections)}

    @app.get("/api/collections/{collection_id}")
    def api_get_collection(collection_id: str) -> dict[str, Any]:
        try:
            collection = collection_service.require_collection(collection_id)
        except LoculusError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "collection": _jsonable(collection)}

    @app.delete("/api/collections/{collection_id}")
    def api_delete_collection(collection_id: str) -> dict[str, Any]:
        try:
            collection_service.delete_collection(collection_id)
        except LoculusError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "deleted": collection_id}

    @app.get("/api/collections/{collection_id}/stats")
    def api_collection_stats(collection_id: str) -> dict[str, Any]:
        try:
            stats = collection_service.get_collection_stats(collection_id)
        except LoculusError as exc:
            raise _http_error(exc) from exc
        payload = _jsonable(stats)
        payload["is_fully_indexed"] = stats.is_fully_indexed
        return {"ok": True, "stats": payload}

    @app.post("/api/collections/{collection_id}/documents")
    def api_add_document(collection_id: str, req: DocumentAddRequest) -> dict[str, Any]:
        try:
            document = collection_service.index_document(
                collection_id,
                req.title,
                req.content,
                metadata=req.metadata,
            )
        except LoculusError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "document": _jsonable(document)}

    @app.get("/api/collections/{collection_id}/documents")
    def api_list_documents(collection_id: str) -> dict[str, Any]:
        try:
            collection_service.require_collection(collection_id)
        except LoculusError as exc:
            raise _http_error(exc) from exc
        documents = collection_service.get_documents(collection_id)
        return {"ok": True, "count": len(documents), "documents": _jsonable(documents)}

    @app.delete("/api/collections/{collection_id}/documents/{document_id}")
    def api_remove_document(collection_id: str, document_id: str) -> dict[str, Any]:
        try:
            collection_service.remove_document(collection_id, document_id)
        except LoculusError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "deleted": document_id}

    @app.post("/api/collections/{collection_id}/search")
    def api_search(collection_id: str, req: SearchRequest) -> dict[str, Any]:
        try:
            hits = collection_service.search(
                req.query,
                collection_id,
                top_k=req.top_k,
                min_relevance=req.min_relevance,
            )
        except LoculusError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "count": len(hits), "hits": _jsonable(hits)}

    @app.post("/api/collections/{collection_id}/query")
    def api_query(collection_id: str, req: QueryRequest) -> dict[str, Any]:
        try:
            result = query_service.query(req.query, collection_id, req.to_config())
        except LoculusError as exc:
            raise _http_error(exc) from exc
        return {"ok": True, "result": _jsonable(result)}

    @app.post("/api/collections/{collection_id}/query/stream")
    def api_query_stream(collection_id: str, req: QueryRequest) -> StreamingResponse:
        events = query_service.query_streaming(req.query, collection_id, req.to_config())

        def iterator() -> Iterator[str]:
            try:
                for event in events:
                    yield _sse_event(event.kind, _event_payload(event))
            except LoculusError as exc:
                logger.warning("Query stream for %s ended with error: %s", collection_id, exc)
                yield _sse_event(
                    "error",
                    {"error": str(exc), "type": exc.__class__.__name__, "status": _status_for(exc)},
                )
            finally:
                events.close()

        return StreamingResponse(
            iterator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return app
