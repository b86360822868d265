from __future__ import annotations

import logging
from collections.abc import Iterator

from loculus.core.errors import ConfigurationError
from loculus.infrastructure.generation.base import GenerationConfig

logger = logging.getLogger(__name__)


class OllamaGenerator:
    """Generator backed by a local Ollama server."""

    def __init__(self, model: str, *, host: str | None = None, client=None) -> None:
        self.model = model
        self.host = host
        self._client = client

    def is_ready(self) -> bool:
        try:
            listing = self._get_client().list()
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.warning("Ollama server unavailable: %s", exc)
            return False
        return any(self._matches(name) for name in _model_names(listing))

    def generate(self, prompt: str, config: GenerationConfig) -> str:
        response = self._get_client().generate(
            model=self.model,
            prompt=prompt,
            options=self._options(config),
            stream=False,
        )
        return str(_field(response, "response") or "")

    def generate_streaming(self, prompt: str, config: GenerationConfig) -> Iterator[str]:
        stream = self._get_client().generate(
            model=self.model,
            prompt=prompt,
            options=self._options(config),
            stream=True,
        )
        for part in stream:
            text = _field(part, "response")
            if text:
                yield str(text)

    def _options(self, config: GenerationConfig) -> dict[str, object]:
        return {"temperature": config.temperature, "num_predict": config.max_tokens}

    def _matches(self, name: str) -> bool:
        if name == self.model:
            return True
        # "llama3" matches the server's "llama3:latest".
        return ":" not in self.model and name == f"{self.model}:latest"

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            import ollama
        except ImportError as exc:  # pragma: no cover - dependency guard
            raise ConfigurationError(
                "The Ollama client is missing. Install with `pip install -e '.[ollama]'`."
            ) from exc
        self._client = ollama.Client(host=self.host) if self.host else ollama.Client()
        return self._client


def _field(payload, name: str):
    if isinstance(payload, dict):
        return payload.get(name)
    return getattr(payload, name, None)


def _model_names(listing) -> list[str]:
    models = _field(listing, "models") or []
    names: list[str] = []
    for item in models:
        name = _field(item, "model") or _field(item, "name")
        if name:
            names.append(str(name))
    return names
