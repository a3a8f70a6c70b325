"""Module interfaces and data contracts for the pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable


class UnitTag(Enum):
    PARAGRAPH_END = "paragraph_end"
    CHAPTER_END = "chapter_end"


@dataclass(frozen=True)
class BookMetadata:
    title: str
    author: str | None = None
    language: str | None = None


@dataclass(frozen=True)
class Chapter:
    index: int
    title: str
    text: str


@dataclass(frozen=True)
class EpubBook:
    metadata: BookMetadata
    chapters: Sequence[Chapter]


@dataclass(frozen=True)
class SynthesisUnit:
    index: int
    text: str
    tag: UnitTag | None = None


@dataclass(frozen=True)
class SynthesisParams:
    engine: str
    voice: str | None = None
    speed: float = 1.0
    pitch: float = 1.0
    sample_rate: int = 22050
    channels: int = 1
    sample_width: int = 2

    @property
    def frame_size(self) -> int:
        return self.channels * self.sample_width


@dataclass(frozen=True)
class EngineStats:
    name: str
    successes: int
    failures: int


@runtime_checkable
class EpubReader(Protocol):
    def read(self, path: Path) -> EpubBook:  # pragma: no cover - interface
        ...


@runtime_checkable
class TextCleaner(Protocol):
    def clean(self, text: str) -> str:  # pragma: no cover - interface
        ...


@runtime_checkable
class TextSegmenter(Protocol):
    def segment(self, text: str, start_index: int = 0) -> Sequence[SynthesisUnit]:  # pragma: no cover
        ...


@runtime_checkable
class TtsEngine(Protocol):
    name: str

    def probe(self, params: SynthesisParams) -> bool:  # pragma: no cover - interface
        ...

    def synthesize(self, text: str, params: SynthesisParams) -> bytes:  # pragma: no cover - interface
        ...


@runtime_checkable
class AudioCache(Protocol):
    def get(self, key: str) -> bytes | None:  # pragma: no cover - interface
        ...

    def put(self, key: str, data: bytes) -> bool:  # pragma: no cover - interface
        ...

    def __len__(self) -> int:  # pragma: no cover - interface
        ...


@runtime_checkable
class AudioEncoder(Protocol):
    def encode(
        self,
        buffers: Sequence[bytes],
        out_path: Path,
        quality: float,
        params: SynthesisParams,
    ) -> Path:  # pragma: no cover - interface
        ...


@runtime_checkable
class ProgressSink(Protocol):
    def on_progress(self, completed: int, total: int) -> None:  # pragma: no cover - interface
        ...

    def on_done(self, artifact_path: Path) -> None:  # pragma: no cover - interface
        ...

    def on_failed(self, reason: str) -> None:  # pragma: no cover - interface
        ...
