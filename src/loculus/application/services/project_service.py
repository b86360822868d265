from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loculus.application.services.collection_service import CollectionService
from loculus.application.services.query_service import QueryService
from loculus.core.config import AppPaths, RagSettings, load_settings
from loculus.core.errors import ProjectNotInitializedError
from loculus.core.files import ensure_directory
from loculus.infrastructure.generation.base import Generator
from loculus.infrastructure.generation.ollama_generator import OllamaGenerator
from loculus.infrastructure.vector.chunking import ChunkingConfig, DocumentChunker
from loculus.infrastructure.vector.embeddings import (
    EmbeddingConfig,
    EmbeddingEngine,
    build_default_registry,
)
from loculus.infrastructure.vector.store import VectorStore


@dataclass(slots=True)
class InitResult:
    paths_created: list[Path]
    db_path: Path
    dimension: int


class ProjectService:
    def __init__(self, paths: AppPaths, settings: RagSettings | None = None) -> None:
        self.paths = paths
        self.settings = settings or load_settings()

    def init_project(self) -> InitResult:
        paths_created: list[Path] = []

        if not self.paths.loculus_dir.exists():
            paths_created.append(self.paths.loculus_dir)
        ensure_directory(self.paths.loculus_dir)

        self.build_store().initialize()

        return InitResult(
            paths_created=paths_created,
            db_path=self.paths.db_path,
            dimension=self.settings.embedding_dim,
        )

    def is_initialized(self) -> bool:
        return self.paths.db_path.exists()

    def require_initialized(self, *, apply_schema: bool = True) -> None:
        if not self.is_initialized():
            raise ProjectNotInitializedError(
                f"Project is not initialized. Run 'loculus init' first in {self.paths.project_root}"
            )
        if apply_schema:
            self.init_project()

    def build_store(self) -> VectorStore:
        return VectorStore(self.paths.db_path, dimension=self.settings.embedding_dim)

    def build_chunker(self) -> DocumentChunker:
        return DocumentChunker(
            ChunkingConfig(
                target_chunk_size=self.settings.chunk_size,
                chunk_overlap=self.settings.chunk_overlap,
                min_chunk_size=self.settings.min_chunk_size,
            )
        )

    def build_embedder(self) -> EmbeddingEngine:
        return EmbeddingEngine(
            build_default_registry(self.settings),
            EmbeddingConfig(
                language=self.settings.embedding_language,
                dimension=self.settings.embedding_dim,
            ),
        )

    def build_collection_service(self) -> CollectionService:
        return CollectionService(
            store=self.build_store(),
            chunker=self.build_chunker(),
            embedder=self.build_embedder(),
            embed_workers=self.settings.embed_workers,
        )

    def build_generator(self) -> Generator | None:
        if not self.settings.ollama_model:
            return None
        return OllamaGenerator(self.settings.ollama_model, host=self.settings.ollama_host)

    def build_query_service(
        self,
        collection_service: CollectionService | None = None,
        generator: Generator | None = None,
    ) -> QueryService:
        return QueryService(
            collection_service or self.build_collection_service(),
            generator if generator is not None else self.build_generator(),
        )
