from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class AppPaths:
    project_root: Path
    loculus_dir: Path
    db_path: Path


DEFAULT_LOCULUS_DIRNAME = ".loculus"

EMBEDDING_BACKENDS = ("hashing", "sentence-transformers")

DEFAULT_SENTENCE_MODELS = {
    "en": "sentence-transformers/all-MiniLM-L6-v2",
}


@dataclass(frozen=True)
class RagSettings:
    embedding_backend: str = "hashing"
    embedding_dim: int = 384
    embedding_language: str = "en"
    embedding_device: str = "auto"
    sentence_models: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SENTENCE_MODELS))
    hashing_languages: tuple[str, ...] = ("en", "de", "es", "fr", "it", "nl", "pt")
    chunk_size: int = 512
    chunk_overlap: int = 50
    min_chunk_size: int = 100
    embed_workers: int = 1
    ollama_model: str | None = None
    ollama_host: str | None = None


def load_paths(project_root: Path | None = None) -> AppPaths:
    root = (project_root or Path.cwd()).expanduser().resolve()

    loculus_home_raw = os.getenv("LOCULUS_HOME")
    if loculus_home_raw:
        loculus_dir = Path(loculus_home_raw).expanduser().resolve()
    else:
        loculus_dir = root / DEFAULT_LOCULUS_DIRNAME

    return AppPaths(
        project_root=root,
        loculus_dir=loculus_dir,
        db_path=loculus_dir / "loculus.db",
    )


def _read_int_env(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _read_str_env(name: str, default: str | None) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip()
    return value or default


def load_settings() -> RagSettings:
    defaults = RagSettings()

    backend = (_read_str_env("LOCULUS_EMBEDDING_BACKEND", defaults.embedding_backend) or "").lower()
    if backend not in EMBEDDING_BACKENDS:
        backend = defaults.embedding_backend

    language = (_read_str_env("LOCULUS_EMBEDDING_LANGUAGE", defaults.embedding_language) or "en").lower()

    sentence_models = dict(defaults.sentence_models)
    sentence_model = _read_str_env("LOCULUS_SENTENCE_MODEL", None)
    if sentence_model:
        sentence_models[language] = sentence_model

    return RagSettings(
        embedding_backend=backend,
        embedding_dim=_read_int_env("LOCULUS_EMBEDDING_DIM", defaults.embedding_dim),
        embedding_language=language,
        embedding_device=_read_str_env("LOCULUS_EMBEDDING_DEVICE", defaults.embedding_device) or "auto",
        sentence_models=sentence_models,
        chunk_size=_read_int_env("LOCULUS_CHUNK_SIZE", defaults.chunk_size),
        chunk_overlap=_read_int_env("LOCULUS_CHUNK_OVERLAP", defaults.chunk_overlap, minimum=0),
        min_chunk_size=_read_int_env("LOCULUS_MIN_CHUNK_SIZE", defaults.min_chunk_size, minimum=0),
        embed_workers=_read_int_env("LOCULUS_EMBED_WORKERS", defaults.embed_workers),
        ollama_model=_read_str_env("LOCULUS_OLLAMA_MODEL", defaults.ollama_model),
        ollama_host=_read_str_env("LOCULUS_OLLAMA_HOST", defaults.ollama_host),
    )
