import json
from collections.abc import Iterator
from pathlib import Path

from fastapi.testclient import TestClient

from loculus.core.config import AppPaths, RagSettings
from loculus.infrastructure.generation.base import GenerationConfig
from loculus.web.app import create_app


class _FakeGenerator:
    def __init__(self, *, ready: bool = True, fail_streaming: bool = False) -> None:
        self.ready = ready
        self.fail_streaming = fail_streaming

    def is_ready(self) -> bool:
        return self.ready

    def generate(self, prompt: str, config: GenerationConfig) -> str:
        return "Panels convert sunlight."

    def generate_streaming(self, prompt: str, config: GenerationConfig) -> Iterator[str]:
        yield "Panels "
        if self.fail_streaming:
            raise RuntimeError("backend went away")
        yield "convert sunlight."


def _paths(tmp_path: Path) -> AppPaths:
    project_root = tmp_path / "proj"
    project_root.mkdir(parents=True, exist_ok=True)
    return AppPaths(
        project_root=project_root,
        loculus_dir=project_root / ".loculus",
        db_path=project_root / ".loculus" / "loculus.db",
    )


def _settings() -> RagSettings:
    return RagSettings(embedding_dim=64, chunk_size=200, chunk_overlap=20, min_chunk_size=40)


def _parse_sse(text: str) -> list[tuple[str, dict]]:
    events = []
    for block in text.strip().split("\n\n"):
        lines = block.splitlines()
        name = lines[0].removeprefix("event: ")
        data = json.loads(lines[1].removeprefix("data: "))
        events.append((name, data))
    return events


def _client_with_document(tmp_path: Path, generator: _FakeGenerator | None) -> tuple[TestClient, str]:
    client = TestClient(create_app(_paths(tmp_path), _settings(), generator))
    r = client.post("/api/collections", json={"name": "Energy", "description": "Power notes"})
    assert r.status_code == 200
    collection_id = r.json()["collection"]["id"]
    r = client.post(
        f"/api/collections/{collection_id}/documents",
        json={
            "title": "Solar guide",
            "content": "Solar panels convert sunlight into electricity using photovoltaic cells. "
            "Battery storage keeps the harvested energy available after sunset.",
            "metadata": {"source": "handbook"},
        },
    )
    assert r.status_code == 200
    return client, collection_id


def test_web_app_end_to_end_smoke(tmp_path: Path) -> None:
    client, collection_id = _client_with_document(tmp_path, _FakeGenerator())

    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True

    r = client.get("/api/collections")
    assert r.json()["count"] == 1
    assert r.json()["collections"][0]["document_count"] == 1

    r = client.get(f"/api/collections/{collection_id}/documents")
    documents = r.json()["documents"]
    assert documents[0]["status"] == "indexed"
    assert documents[0]["metadata"] == {"source": "handbook"}

    r = client.get(f"/api/collections/{collection_id}/stats")
    stats = r.json()["stats"]
    assert stats["indexed_documents"] == 1
    assert stats["is_fully_indexed"] is True

    r = client.post(f"/api/collections/{collection_id}/search", json={"query": "battery storage", "top_k": 3})
    assert r.status_code == 200
    hits = r.json()["hits"]
    assert hits and hits[0]["document_title"] == "Solar guide"

    r = client.post(f"/api/collections/{collection_id}/query", json={"query": "How do solar panels convert sunlight?"})
    assert r.status_code == 200
    result = r.json()["result"]
    assert result["answer"] == "Panels convert sunlight."
    assert result["retrieved_count"] == len(result["sources"])

    r = client.post(f"/api/collections/{collection_id}/query/stream", json={"query": "How do solar panels convert sunlight?"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    events = _parse_sse(r.text)
    assert [name for name, _ in events] == ["sources", "token", "token", "complete"]
    assert events[-1][1]["answer"] == "Panels convert sunlight."

    document_id = documents[0]["id"]
    r = client.delete(f"/api/collections/{collection_id}/documents/{document_id}")
    assert r.status_code == 200
    r = client.delete(f"/api/collections/{collection_id}")
    assert r.status_code == 200
    assert client.get(f"/api/collections/{collection_id}").status_code == 404


def test_web_app_maps_errors_to_status_codes(tmp_path: Path) -> None:
    client, collection_id = _client_with_document(tmp_path, None)

    assert client.get("/api/collections/missing").status_code == 404
    assert client.post("/api/collections/missing/search", json={"query": "x"}).status_code == 404

    r = client.post(f"/api/collections/{collection_id}/documents", json={"title": "Blank", "content": "  "})
    assert r.status_code == 400

    r = client.post(f"/api/collections/{collection_id}/query", json={"query": "How do solar panels convert sunlight?"})
    assert r.status_code == 503

    r = client.post(f"/api/collections/{collection_id}/search", json={"query": "x", "top_k": 0})
    assert r.status_code == 422


def test_web_stream_reports_error_event(tmp_path: Path) -> None:
    client, collection_id = _client_with_document(tmp_path, _FakeGenerator(fail_streaming=True))

    r = client.post(f"/api/collections/{collection_id}/query/stream", json={"query": "How do solar panels convert sunlight?"})
    assert r.status_code == 200
    events = _parse_sse(r.text)
    assert [name for name, _ in events] == ["sources", "token", "error"]
    assert events[-1][1]["type"] == "GenerationFailedError"
    assert events[-1][1]["status"] == 502
