from __future__ import annotations

from pathlib import Path

import pytest

from loculus.core.config import RagSettings, load_paths, load_settings


def test_load_paths_defaults_under_project_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOCULUS_HOME", raising=False)
    paths = load_paths(tmp_path)
    assert paths.project_root == tmp_path.resolve()
    assert paths.loculus_dir == tmp_path.resolve() / ".loculus"
    assert paths.db_path == paths.loculus_dir / "loculus.db"


def test_loculus_home_overrides_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCULUS_HOME", str(tmp_path / "data"))
    paths = load_paths(tmp_path / "proj")
    assert paths.loculus_dir == (tmp_path / "data").resolve()


def test_load_settings_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCULUS_EMBEDDING_BACKEND", "Sentence-Transformers")
    monkeypatch.setenv("LOCULUS_EMBEDDING_DIM", "768")
    monkeypatch.setenv("LOCULUS_EMBEDDING_LANGUAGE", "DE")
    monkeypatch.setenv("LOCULUS_SENTENCE_MODEL", "org/german-model")
    monkeypatch.setenv("LOCULUS_CHUNK_OVERLAP", "0")
    monkeypatch.setenv("LOCULUS_EMBED_WORKERS", "4")
    monkeypatch.setenv("LOCULUS_OLLAMA_MODEL", "llama3.2")

    settings = load_settings()

    assert settings.embedding_backend == "sentence-transformers"
    assert settings.embedding_dim == 768
    assert settings.embedding_language == "de"
    assert settings.sentence_models["de"] == "org/german-model"
    assert settings.chunk_overlap == 0
    assert settings.embed_workers == 4
    assert settings.ollama_model == "llama3.2"


def test_invalid_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCULUS_EMBEDDING_BACKEND", "word2vec")
    monkeypatch.setenv("LOCULUS_EMBEDDING_DIM", "zero")
    monkeypatch.setenv("LOCULUS_CHUNK_SIZE", "-5")
    monkeypatch.setenv("LOCULUS_OLLAMA_MODEL", "   ")

    settings = load_settings()
    defaults = RagSettings()

    assert settings.embedding_backend == defaults.embedding_backend
    assert settings.embedding_dim == defaults.embedding_dim
    assert settings.chunk_size == defaults.chunk_size
    assert settings.ollama_model is None
