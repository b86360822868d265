from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(slots=True)
class GenerationConfig:
    temperature: float = 0.7
    max_tokens: int = 1024


@runtime_checkable
class Generator(Protocol):
    """Text-generation backend used to answer grounded queries."""

    def is_ready(self) -> bool: ...

    def generate(self, prompt: str, config: GenerationConfig) -> str: ...

    def generate_streaming(self, prompt: str, config: GenerationConfig) -> Iterator[str]: ...
