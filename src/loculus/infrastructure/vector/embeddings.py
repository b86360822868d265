from __future__ import annotations

import hashlib
import logging
import os
import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np
from langdetect import DetectorFactory, LangDetectException, detect

from loculus.core.config import RagSettings
from loculus.core.errors import (
    BatchTooLargeError,
    ConfigurationError,
    EmbeddingFailedError,
    TextTooLongError,
    VectorDimensionMismatchError,
)
from loculus.domain.models.vector import Embedding
from loculus.infrastructure.vector import similarity

logger = logging.getLogger(__name__)

# langdetect is probabilistic unless seeded.
DetectorFactory.seed = 0

_RE_WORD = re.compile(r"\w+", re.UNICODE)


class SentenceModel(Protocol):
    """Optionally also provides embed_many(texts) for batched encoding."""

    def embed(self, text: str) -> list[float] | None: ...


class WordModel(Protocol):
    def vector(self, token: str) -> list[float] | None: ...


@dataclass(slots=True)
class EmbeddingConfig:
    language: str = "en"
    auto_detect_language: bool = True
    max_text_length: int = 10_000
    max_batch_size: int = 100
    dimension: int = 384


@dataclass(slots=True)
class SentenceTransformerConfig:
    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    device: str = "auto"
    batch_size: int = 32


class SentenceTransformerModel:
    """Sentence-level model backed by sentence-transformers, loaded on first use."""

    def __init__(self, config: SentenceTransformerConfig | None = None, *, dimension: int | None = None) -> None:
        self.config = config or SentenceTransformerConfig()
        self.expected_dimension = dimension
        self._model = None

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def embed(self, text: str) -> list[float] | None:
        vectors = self.embed_many([text])
        return vectors[0] if vectors else None

    def embed_many(self, texts: Sequence[str]) -> list[list[float] | None]:
        if not texts:
            return []
        self._load_model()
        matrix = self._model.encode(
            list(texts),
            batch_size=self.config.batch_size,
            normalize_embeddings=True,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        out: list[list[float] | None] = []
        for row in np.asarray(matrix, dtype=np.float64):
            values = row.tolist()
            out.append(values or None)
        return out

    def _load_model(self) -> None:
        if self._model is not None:
            return
        try:
            import torch
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:  # pragma: no cover - dependency guard
            raise ConfigurationError(
                "Sentence embedding dependencies are missing. Install with "
                "`pip install -e '.[vector]'` or set LOCULUS_EMBEDDING_BACKEND=hashing."
            ) from exc

        # Keep CPU thread counts bounded when running on large machines.
        if "OMP_NUM_THREADS" not in os.environ:
            os.environ["OMP_NUM_THREADS"] = "8"

        device = self._resolve_device(torch)
        logger.info("Loading sentence model %s on %s", self.config.model_name, device)
        model = SentenceTransformer(self.config.model_name, device=device)
        dim = model.get_sentence_embedding_dimension()
        if self.expected_dimension is not None and dim and int(dim) != self.expected_dimension:
            raise ConfigurationError(
                f"Sentence model {self.config.model_name} produces {dim}-dimensional vectors, "
                f"but the store is configured for {self.expected_dimension}. Set LOCULUS_EMBEDDING_DIM={dim}."
            )
        self._model = model

    def _resolve_device(self, torch_module) -> str:
        configured = (self.config.device or "auto").strip().lower()
        if configured and configured != "auto":
            return configured

        if bool(getattr(torch_module.backends, "mps", None)) and torch_module.backends.mps.is_available():
            return "mps"
        if torch_module.cuda.is_available():
            return "cuda"
        return "cpu"


class HashingWordModel:
    """Deterministic word vectors from feature hashing.

    Each token hashes its whole form plus its character trigrams into signed
    buckets, so related spellings share components. Vectors are unit length.
    Tokens without any alphanumeric character have no vector.
    """

    def __init__(self, dimension: int = 384, *, ngram: int = 3) -> None:
        self.dimension = dimension
        self.ngram = ngram

    def vector(self, token: str) -> list[float] | None:
        token = token.strip().lower()
        if not token or not any(ch.isalnum() for ch in token):
            return None

        features: Counter[str] = Counter()
        features[f"w:{token}"] += 2
        padded = f"<{token}>"
        if len(padded) > self.ngram:
            for i in range(len(padded) - self.ngram + 1):
                features[f"c:{padded[i:i + self.ngram]}"] += 1

        out = [0.0] * self.dimension
        for feature, weight in features.items():
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            out[bucket] += sign * float(weight)
        return similarity.normalize(out)


@dataclass(slots=True)
class EmbeddingModelRegistry:
    """Per-language sentence and word models."""

    sentence_models: dict[str, SentenceModel] = field(default_factory=dict)
    word_models: dict[str, WordModel] = field(default_factory=dict)

    def sentence_model(self, language: str) -> SentenceModel | None:
        return self.sentence_models.get(language)

    def word_model(self, language: str) -> WordModel | None:
        return self.word_models.get(language)

    def has_model(self, language: str) -> bool:
        return language in self.sentence_models or language in self.word_models

    def languages(self) -> list[str]:
        return sorted(set(self.sentence_models) | set(self.word_models))


def build_default_registry(settings: RagSettings) -> EmbeddingModelRegistry:
    registry = EmbeddingModelRegistry()
    hashing = HashingWordModel(dimension=settings.embedding_dim)
    if settings.embedding_backend == "sentence-transformers":
        for language, model_name in settings.sentence_models.items():
            registry.sentence_models[language] = SentenceTransformerModel(
                SentenceTransformerConfig(model_name=model_name, device=settings.embedding_device),
                dimension=settings.embedding_dim,
            )
        registry.word_models[settings.embedding_language] = hashing
    else:
        for language in settings.hashing_languages:
            registry.word_models[language] = hashing
        registry.word_models.setdefault(settings.embedding_language, hashing)
    return registry


class EmbeddingEngine:
    def __init__(
        self,
        registry: EmbeddingModelRegistry,
        config: EmbeddingConfig | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or EmbeddingConfig()

    @property
    def embedding_dimension(self) -> int:
        return self.config.dimension

    def supported_languages(self) -> list[str]:
        return self.registry.languages()

    def is_embedding_available(self, language: str | None = None) -> bool:
        return self.registry.has_model(_primary_subtag(language or self.config.language))

    def detect_language(self, text: str) -> str:
        default = self.config.language
        if not self.config.auto_detect_language:
            return default
        try:
            detected = _primary_subtag(detect(text))
        except LangDetectException:
            return default
        if not self.registry.has_model(detected):
            return default
        return detected

    def embed(self, text: str) -> Embedding:
        self._check_length(text)
        return self._embed_in_language(text, self.detect_language(text))

    def embed_batch(self, texts: Sequence[str]) -> list[Embedding]:
        """Embed texts in order; texts routed to a batching sentence model share one encode call."""
        if len(texts) > self.config.max_batch_size:
            raise BatchTooLargeError(len(texts), self.config.max_batch_size)
        for text in texts:
            self._check_length(text)

        languages = [self.detect_language(text) for text in texts]
        batched: dict[str, list[int]] = {}
        for idx, language in enumerate(languages):
            if callable(getattr(self.registry.sentence_model(language), "embed_many", None)):
                batched.setdefault(language, []).append(idx)

        out: list[Embedding | None] = [None] * len(texts)
        for language, indexes in batched.items():
            model = self.registry.sentence_model(language)
            vectors = model.embed_many([texts[i] for i in indexes])
            for idx, vector in zip(indexes, vectors):
                if vector:
                    out[idx] = Embedding(text=texts[idx], vector=vector, language=language)

        return [
            embedding if embedding is not None else self._embed_in_language(texts[idx], languages[idx])
            for idx, embedding in enumerate(out)
        ]

    def cosine_similarity(self, v1: Sequence[float], v2: Sequence[float]) -> float:
        return similarity.cosine_similarity(v1, v2)

    def find_similar(
        self,
        query: Sequence[float],
        candidates: Sequence[Sequence[float]],
        top_k: int = 5,
    ) -> list[tuple[int, float]]:
        """Return (candidate index, similarity) pairs, best first; ties keep candidate order."""
        if top_k <= 0 or len(candidates) == 0:
            return []
        for candidate in candidates:
            if len(candidate) != len(query):
                raise VectorDimensionMismatchError(expected=len(query), got=len(candidate))
        scores = similarity.cosine_scores(query, np.asarray(candidates, dtype=np.float64))
        return [(int(idx), float(scores[idx])) for idx in similarity.rank_descending(scores)[:top_k]]

    def normalize(self, vector: Sequence[float]) -> list[float]:
        return similarity.normalize(vector)

    def average_vectors(self, vectors: Sequence[Sequence[float]]) -> list[float]:
        return similarity.average_vectors(vectors)

    def euclidean_distance(self, v1: Sequence[float], v2: Sequence[float]) -> float:
        return similarity.euclidean_distance(v1, v2)

    def _check_length(self, text: str) -> None:
        if len(text) > self.config.max_text_length:
            raise TextTooLongError(len(text), self.config.max_text_length)

    def _embed_in_language(self, text: str, language: str) -> Embedding:
        sentence_model = self.registry.sentence_model(language)
        if sentence_model is not None:
            vector = sentence_model.embed(text)
            if vector:
                return Embedding(text=text, vector=vector, language=language)
            logger.debug("Sentence model for %s returned no vector; averaging word vectors", language)

        word_model = self.registry.word_model(language)
        if word_model is None:
            raise EmbeddingFailedError(f"No embedding model available for language '{language}'")

        vector = self._average_word_vectors(text, word_model)
        if vector is None:
            raise EmbeddingFailedError(f"No word vectors found for text in language '{language}'")
        return Embedding(text=text, vector=vector, language=language)

    def _average_word_vectors(self, text: str, word_model: WordModel) -> list[float] | None:
        vectors: list[list[float]] = []
        for token in _RE_WORD.findall(text.lower()):
            vec = word_model.vector(token)
            if vec is not None:
                vectors.append(vec)
        if vectors:
            return similarity.average_vectors(vectors)
        return word_model.vector(text.strip().lower())


def _primary_subtag(language: str) -> str:
    return language.strip().lower().replace("_", "-").split("-", 1)[0]
