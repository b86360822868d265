from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import ClassVar

from loculus.core.errors import ValidationError
from loculus.core.hashing import compute_text_digest
from loculus.core.ids import deterministic_uuid
from loculus.domain.models.chunk import Chunk, ChunkingStats

DEFAULT_CHUNKING_VERSION = "sentence-window-v1"

_TERMINATORS = ".!?。！？"
_RE_SENTENCE = re.compile(rf"[^{_TERMINATORS}\n]+(?:[{_TERMINATORS}]+|$)", re.MULTILINE)


@dataclass(frozen=True)
class ChunkingConfig:
    target_chunk_size: int = 512
    chunk_overlap: int = 50
    respect_sentences: bool = True
    min_chunk_size: int = 100

    DEFAULT: ClassVar[ChunkingConfig]
    LONG_DOCUMENT: ClassVar[ChunkingConfig]

    def __post_init__(self) -> None:
        if self.target_chunk_size <= 0:
            raise ValidationError(f"target_chunk_size must be positive, got {self.target_chunk_size}")
        if self.chunk_overlap < 0:
            raise ValidationError(f"chunk_overlap must be non-negative, got {self.chunk_overlap}")
        if self.min_chunk_size < 0:
            raise ValidationError(f"min_chunk_size must be non-negative, got {self.min_chunk_size}")

    @property
    def stride(self) -> int:
        return max(1, self.target_chunk_size - self.chunk_overlap)


ChunkingConfig.DEFAULT = ChunkingConfig()
ChunkingConfig.LONG_DOCUMENT = ChunkingConfig(
    target_chunk_size=1024,
    chunk_overlap=100,
    respect_sentences=True,
    min_chunk_size=200,
)


def _trimmed_span(text: str, start: int, end: int) -> tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


class DocumentChunker:
    """Split document text into overlapping, size-bounded chunks.

    Sentence mode packs whole sentences into windows of at most
    ``target_chunk_size`` characters and seeds each new window with the last
    ``chunk_overlap`` characters of the previous one. Without detectable
    sentences (or with ``respect_sentences=False``) a fixed sliding window is
    used instead. In both modes a short trailing window is folded into the
    chunk before it.
    """

    def __init__(
        self,
        config: ChunkingConfig | None = None,
        *,
        chunking_version: str = DEFAULT_CHUNKING_VERSION,
    ) -> None:
        self.config = config or ChunkingConfig.DEFAULT
        self.chunking_version = chunking_version

    def chunk(self, text: str, metadata: dict[str, str] | None = None) -> list[Chunk]:
        if not text or not text.strip():
            return []

        windows: list[tuple[int, int]] = []
        if self.config.respect_sentences:
            spans = self._sentence_spans(text)
            if spans:
                windows = self._sentence_windows(spans)
        if not windows:
            windows = self._character_windows(len(text))

        windows = self._merge_short_tail(text, windows)

        text_digest = compute_text_digest(text)
        chunks: list[Chunk] = []
        for start, end in windows:
            start, end = _trimmed_span(text, start, end)
            if start >= end:
                continue
            chunks.append(
                self._build_chunk(
                    text_digest=text_digest,
                    index=len(chunks),
                    start_offset=start,
                    end_offset=end,
                    content=text[start:end],
                    metadata=metadata,
                )
            )
        return chunks

    def estimate_chunk_count(self, text: str) -> int:
        if not text:
            return 0
        return max(1, math.ceil(len(text) / self.config.stride))

    @staticmethod
    def get_chunking_stats(chunks: list[Chunk]) -> ChunkingStats:
        if not chunks:
            return ChunkingStats(count=0, min_size=0, max_size=0, avg_size=0, total_size=0)
        sizes = [len(c.content) for c in chunks]
        total = sum(sizes)
        return ChunkingStats(
            count=len(sizes),
            min_size=min(sizes),
            max_size=max(sizes),
            avg_size=total // len(sizes),
            total_size=total,
        )

    def _sentence_spans(self, text: str) -> list[tuple[int, int]]:
        target = self.config.target_chunk_size
        spans: list[tuple[int, int]] = []
        for match in _RE_SENTENCE.finditer(text):
            start, end = _trimmed_span(text, match.start(), match.end())
            if start >= end:
                continue
            # Oversized sentences are cut into target-sized pieces up front.
            cursor = start
            while end - cursor > target:
                spans.append((cursor, cursor + target))
                cursor += target
            spans.append((cursor, end))
        if spans:
            # Stray punctuation before the first or after the last sentence still belongs to a chunk.
            spans[0] = (0, spans[0][1])
            spans[-1] = (spans[-1][0], len(text))
        return spans

    def _sentence_windows(self, spans: list[tuple[int, int]]) -> list[tuple[int, int]]:
        target = self.config.target_chunk_size
        overlap = self.config.chunk_overlap

        windows: list[tuple[int, int]] = []
        window_start = spans[0][0]
        window_end: int | None = None
        for _, sent_end in spans:
            if window_end is not None and sent_end - window_start > target:
                windows.append((window_start, window_end))
                window_start = max(window_start, window_end - overlap)
            window_end = sent_end
        if window_end is not None:
            windows.append((window_start, window_end))
        return windows

    def _character_windows(self, text_len: int) -> list[tuple[int, int]]:
        target = self.config.target_chunk_size
        step = self.config.stride
        windows: list[tuple[int, int]] = []
        start = 0
        while start < text_len:
            end = min(start + target, text_len)
            windows.append((start, end))
            if end >= text_len:
                break
            start += step
        return windows

    def _merge_short_tail(self, text: str, windows: list[tuple[int, int]]) -> list[tuple[int, int]]:
        kept = [w for w in windows if text[w[0]:w[1]].strip()]
        if len(kept) < 2:
            return kept
        tail_start, tail_end = kept[-1]
        if len(text[tail_start:tail_end].strip()) >= self.config.min_chunk_size:
            return kept
        prev_start, _ = kept[-2]
        return kept[:-2] + [(prev_start, tail_end)]

    def _build_chunk(
        self,
        *,
        text_digest: str,
        index: int,
        start_offset: int,
        end_offset: int,
        content: str,
        metadata: dict[str, str] | None,
    ) -> Chunk:
        identity = {
            "chunking_version": self.chunking_version,
            "document_digest": text_digest,
            "index": index,
            "start_offset": start_offset,
            "end_offset": end_offset,
            "content_digest": compute_text_digest(content),
        }
        raw_id = compute_text_digest(json.dumps(identity, sort_keys=True))
        return Chunk(
            id=deterministic_uuid(raw_id),
            content=content,
            index=index,
            start_offset=start_offset,
            end_offset=end_offset,
            metadata=dict(metadata) if metadata else None,
        )
