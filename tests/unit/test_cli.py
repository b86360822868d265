from __future__ import annotations

from pathlib import Path

import pytest

from loculus.cli.main import build_parser, main
from loculus.infrastructure.vector.store import VectorStore


@pytest.fixture(autouse=True)
def _small_store(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOCULUS_HOME", raising=False)
    monkeypatch.delenv("LOCULUS_OLLAMA_MODEL", raising=False)
    monkeypatch.setenv("LOCULUS_EMBEDDING_BACKEND", "hashing")
    monkeypatch.setenv("LOCULUS_EMBEDDING_DIM", "64")
    monkeypatch.setenv("LOCULUS_CHUNK_SIZE", "200")
    monkeypatch.setenv("LOCULUS_CHUNK_OVERLAP", "20")
    monkeypatch.setenv("LOCULUS_MIN_CHUNK_SIZE", "40")


def _run(tmp_path: Path, *argv: str) -> int:
    return main(["--project-root", str(tmp_path), *argv])


def _store(tmp_path: Path) -> VectorStore:
    return VectorStore(tmp_path / ".loculus" / "loculus.db", dimension=64)


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_commands_fail_before_init(tmp_path: Path) -> None:
    assert _run(tmp_path, "collections", "list") == 1
    assert _run(tmp_path, "doctor") == 1


def test_init_index_search_and_doctor(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(tmp_path, "init") == 0
    assert (tmp_path / ".loculus" / "loculus.db").exists()

    assert _run(tmp_path, "collections", "create", "Energy", "--description", "Power notes") == 0
    collection = _store(tmp_path).get_collections()[0]
    assert collection.name == "Energy"

    source = tmp_path / "solar.txt"
    source.write_text(
        "Solar panels convert sunlight into electricity using photovoltaic cells. "
        "Battery storage keeps the harvested energy available after sunset.",
        encoding="utf-8",
    )
    assert _run(tmp_path, "docs", "add", collection.id, "--file", str(source)) == 0
    assert _run(tmp_path, "docs", "add", collection.id, "--text", "Wind turbines spin.", "--title", "Wind") == 0

    documents = _store(tmp_path).get_documents(collection.id)
    assert [d.title for d in documents] == ["solar.txt", "Wind"]
    assert documents[0].metadata is not None
    assert documents[0].metadata["source_path"] == str(source.resolve())
    assert len(documents[0].metadata["source_sha256"]) == 64

    capsys.readouterr()
    assert _run(tmp_path, "search", collection.id, "--query", "battery storage") == 0
    assert "solar.txt" in capsys.readouterr().out

    assert _run(tmp_path, "collections", "stats", collection.id) == 0
    assert _run(tmp_path, "doctor") == 0
    assert "PASS" in capsys.readouterr().out

    # No generator is configured.
    assert _run(tmp_path, "ask", collection.id, "What do panels do?") == 1

    assert _run(tmp_path, "docs", "remove", collection.id, documents[1].id) == 0
    assert _run(tmp_path, "collections", "delete", collection.id) == 0
    assert _store(tmp_path).get_collections() == []


def test_docs_add_rejects_missing_file(tmp_path: Path) -> None:
    assert _run(tmp_path, "init") == 0
    assert _run(tmp_path, "collections", "create", "Energy") == 0
    collection = _store(tmp_path).get_collections()[0]

    assert _run(tmp_path, "docs", "add", collection.id, "--file", str(tmp_path / "nope.txt")) == 1
    assert _store(tmp_path).get_documents(collection.id) == []
