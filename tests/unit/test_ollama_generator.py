from __future__ import annotations

from loculus.infrastructure.generation.base import GenerationConfig, Generator
from loculus.infrastructure.generation.ollama_generator import OllamaGenerator


class _FakeOllamaClient:
    def __init__(self, models: list[str] | None = None, *, offline: bool = False) -> None:
        self.models = models or []
        self.offline = offline
        self.calls: list[dict] = []

    def list(self) -> dict:
        if self.offline:
            raise ConnectionError("connection refused")
        return {"models": [{"model": name} for name in self.models]}

    def generate(self, **kwargs):
        self.calls.append(kwargs)
        if kwargs["stream"]:
            return iter([{"response": "Hel"}, {"response": ""}, {"response": "lo", "done": True}])
        return {"response": "Hello"}


def test_generator_protocol() -> None:
    assert isinstance(OllamaGenerator("llama3", client=_FakeOllamaClient()), Generator)


def test_is_ready_matches_model_names() -> None:
    client = _FakeOllamaClient(["llama3:latest", "mistral:7b"])

    assert OllamaGenerator("llama3", client=client).is_ready() is True
    assert OllamaGenerator("mistral:7b", client=client).is_ready() is True
    assert OllamaGenerator("mistral", client=client).is_ready() is False
    assert OllamaGenerator("phi3", client=client).is_ready() is False


def test_is_ready_false_when_server_unreachable() -> None:
    assert OllamaGenerator("llama3", client=_FakeOllamaClient(offline=True)).is_ready() is False


def test_generate_passes_options() -> None:
    client = _FakeOllamaClient()
    generator = OllamaGenerator("llama3", client=client)

    answer = generator.generate("prompt", GenerationConfig(temperature=0.1, max_tokens=32))

    assert answer == "Hello"
    assert client.calls[0]["model"] == "llama3"
    assert client.calls[0]["options"] == {"temperature": 0.1, "num_predict": 32}
    assert client.calls[0]["stream"] is False


def test_generate_streaming_skips_empty_parts() -> None:
    client = _FakeOllamaClient()
    generator = OllamaGenerator("llama3", client=client)

    assert list(generator.generate_streaming("prompt", GenerationConfig())) == ["Hel", "lo"]
    assert client.calls[0]["stream"] is True
