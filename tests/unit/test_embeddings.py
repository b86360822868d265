from __future__ import annotations

import pytest

from loculus.core.config import RagSettings
from loculus.core.errors import (
    BatchTooLargeError,
    EmbeddingFailedError,
    TextTooLongError,
    VectorDimensionMismatchError,
)
from loculus.infrastructure.vector.embeddings import (
    EmbeddingConfig,
    EmbeddingEngine,
    EmbeddingModelRegistry,
    HashingWordModel,
    SentenceTransformerModel,
    build_default_registry,
)


class _FakeSentenceModel:
    def __init__(self, vector: list[float] | None) -> None:
        self.vector = vector
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float] | None:
        self.calls.append(text)
        return self.vector


class _FakeWordModel:
    def __init__(self, table: dict[str, list[float]]) -> None:
        self.table = table

    def vector(self, token: str) -> list[float] | None:
        return self.table.get(token)


def _engine(registry: EmbeddingModelRegistry, **overrides: object) -> EmbeddingEngine:
    config = EmbeddingConfig(auto_detect_language=False, dimension=2)
    for key, value in overrides.items():
        setattr(config, key, value)
    return EmbeddingEngine(registry, config)


def test_sentence_model_is_preferred() -> None:
    sentence = _FakeSentenceModel([0.5, 0.5])
    registry = EmbeddingModelRegistry(
        sentence_models={"en": sentence},
        word_models={"en": _FakeWordModel({"hello": [1.0, 0.0]})},
    )

    embedding = _engine(registry).embed("hello")

    assert embedding.vector == [0.5, 0.5]
    assert embedding.language == "en"
    assert embedding.dimension == 2
    assert sentence.calls == ["hello"]


def test_word_vectors_are_averaged_and_unknown_tokens_skipped() -> None:
    registry = EmbeddingModelRegistry(
        word_models={"en": _FakeWordModel({"red": [1.0, 0.0], "blue": [0.0, 1.0]})},
    )

    embedding = _engine(registry).embed("Red, BLUE and mauve")

    assert embedding.vector == pytest.approx([0.5, 0.5])


def test_whole_text_is_tried_when_no_token_has_a_vector() -> None:
    registry = EmbeddingModelRegistry(word_models={"en": _FakeWordModel({"new york": [0.2, 0.8]})})

    assert _engine(registry).embed("New York").vector == [0.2, 0.8]


def test_embedding_fails_without_any_vector() -> None:
    registry = EmbeddingModelRegistry(word_models={"en": _FakeWordModel({})})
    with pytest.raises(EmbeddingFailedError):
        _engine(registry).embed("nothing known")


def test_embedding_fails_without_models_for_language() -> None:
    registry = EmbeddingModelRegistry(word_models={"fr": _FakeWordModel({"bonjour": [1.0, 0.0]})})
    with pytest.raises(EmbeddingFailedError):
        _engine(registry).embed("bonjour")


def test_text_length_and_batch_limits() -> None:
    registry = EmbeddingModelRegistry(word_models={"en": HashingWordModel(dimension=2)})
    engine = _engine(registry, max_text_length=10, max_batch_size=2)

    with pytest.raises(TextTooLongError) as too_long:
        engine.embed("x" * 11)
    assert too_long.value.length == 11
    assert too_long.value.max_length == 10

    with pytest.raises(BatchTooLargeError) as too_many:
        engine.embed_batch(["a", "b", "c"])
    assert too_many.value.count == 3

    batch = engine.embed_batch(["alpha", "beta"])
    assert [e.text for e in batch] == ["alpha", "beta"]


def test_detected_language_selects_its_model() -> None:
    registry = EmbeddingModelRegistry(
        sentence_models={"en": _FakeSentenceModel([1.0, 0.0]), "de": _FakeSentenceModel([0.0, 1.0])},
    )
    engine = EmbeddingEngine(registry, EmbeddingConfig(language="en", auto_detect_language=True, dimension=2))

    german = engine.embed("Die Katze sitzt auf der Matte und schläft den ganzen Nachmittag in der Sonne.")

    assert german.language == "de"
    assert german.vector == [0.0, 1.0]


def test_detected_language_without_model_falls_back_to_default() -> None:
    registry = EmbeddingModelRegistry(sentence_models={"en": _FakeSentenceModel([1.0, 0.0])})
    engine = EmbeddingEngine(registry, EmbeddingConfig(language="en", auto_detect_language=True, dimension=2))

    result = engine.embed("Die Katze sitzt auf der Matte und schläft den ganzen Nachmittag in der Sonne.")

    assert result.language == "en"


def test_find_similar_orders_by_score_and_keeps_ties_stable() -> None:
    engine = _engine(EmbeddingModelRegistry())
    candidates = [[0.0, 1.0], [1.0, 0.0], [2.0, 0.0], [1.0, 1.0]]

    ranked = engine.find_similar([1.0, 0.0], candidates, top_k=3)

    assert [idx for idx, _ in ranked] == [1, 2, 3]
    assert ranked[0][1] == pytest.approx(1.0)


def test_hashing_word_model_is_deterministic_unit_length() -> None:
    model = HashingWordModel(dimension=64)
    first = model.vector("Retrieval")
    second = model.vector("retrieval")

    assert first is not None
    assert first == second
    assert len(first) == 64
    assert sum(x * x for x in first) == pytest.approx(1.0)
    assert model.vector("---") is None
    assert model.vector("") is None


def test_hashing_model_scores_related_text_higher() -> None:
    registry = EmbeddingModelRegistry(word_models={"en": HashingWordModel(dimension=256)})
    engine = EmbeddingEngine(registry, EmbeddingConfig(auto_detect_language=False, dimension=256))

    query = engine.embed("solar panel efficiency").vector
    related = engine.embed("efficiency of solar panels").vector
    unrelated = engine.embed("medieval castle architecture").vector

    assert engine.cosine_similarity(query, related) > engine.cosine_similarity(query, unrelated)


def test_default_registry_backends() -> None:
    hashing = build_default_registry(RagSettings(embedding_backend="hashing", embedding_dim=32))
    assert "en" in hashing.languages()
    assert hashing.sentence_model("en") is None
    assert isinstance(hashing.word_model("en"), HashingWordModel)

    sentence = build_default_registry(RagSettings(embedding_backend="sentence-transformers", embedding_dim=384))
    assert isinstance(sentence.sentence_model("en"), SentenceTransformerModel)
    assert isinstance(sentence.word_model("en"), HashingWordModel)


class _FakeBatchSentenceModel:
    def __init__(self) -> None:
        self.batches: list[list[str]] = []
        self.single_calls: list[str] = []

    def embed(self, text: str) -> list[float] | None:
        self.single_calls.append(text)
        return None

    def embed_many(self, texts: list[str]) -> list[list[float] | None]:
        self.batches.append(list(texts))
        return [[float(len(t)), 1.0] if t != "skip" else None for t in texts]


def test_embed_batch_uses_one_encode_call_for_sentence_model() -> None:
    model = _FakeBatchSentenceModel()
    registry = EmbeddingModelRegistry(
        sentence_models={"en": model},
        word_models={"en": _FakeWordModel({"skip": [0.0, 1.0]})},
    )

    batch = _engine(registry).embed_batch(["one", "three", "skip"])

    assert model.batches == [["one", "three", "skip"]]
    assert model.single_calls == ["skip"]
    assert [e.vector for e in batch[:2]] == [[3.0, 1.0], [5.0, 1.0]]
    # A text the sentence model cannot embed falls back to word vectors.
    assert batch[2].vector == pytest.approx([0.0, 1.0])


def test_find_similar_rejects_mismatched_candidates() -> None:
    engine = _engine(EmbeddingModelRegistry())
    with pytest.raises(VectorDimensionMismatchError):
        engine.find_similar([1.0, 0.0], [[1.0, 0.0], [1.0]])
    assert engine.find_similar([1.0, 0.0], []) == []
