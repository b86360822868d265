from pathlib import Path

from loculus.application.services.health_service import HealthService
from loculus.domain.models.collection import DocumentStatus
from loculus.domain.models.vector import StoredVector
from loculus.infrastructure.db.sqlite import transaction
from loculus.infrastructure.vector.store import VectorStore


def _store(tmp_path: Path) -> VectorStore:
    store = VectorStore(tmp_path / "loculus.db", dimension=2)
    store.initialize()
    return store


def _indexed_document(store: VectorStore) -> str:
    collection = store.create_collection("C")
    document = store.add_document(collection.id, "Doc")
    store.update_document_status(document.id, DocumentStatus.INDEXING)
    store.commit_document(
        document.id,
        [
            StoredVector(
                id="v1",
                collection_id=collection.id,
                document_id=document.id,
                chunk_index=0,
                content="hello",
                vector=[1.0, 0.0],
                metadata=None,
                created_at="2026-01-01T00:00:00Z",
            )
        ],
    )
    return document.id


def test_doctor_passes_for_basic_clean_state(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _indexed_document(store)

    report = HealthService(store).run_doctor()
    assert report.ok is True
    assert report.checks_run == 4
    assert report.db_runtime["journal_mode"] == "wal"
    assert report.db_runtime["foreign_keys"] is True
    assert report.db_runtime["vector_dimension"] == 2
    assert int(report.db_runtime["busy_timeout_ms"]) >= 30_000
    assert report.issues == []


def test_doctor_warns_about_documents_stuck_indexing(tmp_path: Path) -> None:
    store = _store(tmp_path)
    collection = store.create_collection("C")
    document = store.add_document(collection.id, "Stuck")
    store.update_document_status(document.id, DocumentStatus.INDEXING)

    report = HealthService(store).run_doctor()
    assert report.ok is True
    assert [(i.check, i.level) for i in report.issues] == [("stale_indexing", "warning")]


def test_doctor_flags_vector_count_mismatch(tmp_path: Path) -> None:
    store = _store(tmp_path)
    document_id = _indexed_document(store)
    with transaction(store.db_path) as conn:
        conn.execute("UPDATE documents SET chunk_count = 3 WHERE id = ?", (document_id,))

    report = HealthService(store).run_doctor()
    assert report.ok is False
    assert [i.check for i in report.issues] == ["vector_counts"]


def test_doctor_flags_dimension_mismatch(tmp_path: Path) -> None:
    _store(tmp_path)

    report = HealthService(VectorStore(tmp_path / "loculus.db", dimension=8)).run_doctor()
    assert report.ok is False
    assert any(i.check == "vector_dimension" and i.level == "error" for i in report.issues)
