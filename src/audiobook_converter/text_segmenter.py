"""Text segmentation into bounded synthesis units."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .interfaces import SynthesisUnit, UnitTag

_LOGGER = logging.getLogger(__name__)

_PARAGRAPH_SPLIT_RE = re.compile(r"\n[ \t]*\n")
_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_END_RE = re.compile(r"([.!?]+[\"')\]]*)(?=\s|$)")


@dataclass(frozen=True)
class BasicTextSegmenter:
    """Segment text into synthesis units bounded by ``max_chars``.

    Sentences are packed greedily into units. Paragraph breaks end a unit
    once it holds at least ``min_chars``; shorter paragraphs are merged with
    the next one when the result still fits. A sentence longer than the
    limit is split at the last whitespace before it, so a unit only exceeds
    ``max_chars`` when it is a single word.
    """

    max_chars: int = 1000
    min_chars: int = 200

    def __post_init__(self) -> None:
        if self.max_chars <= 0:
            raise ValueError("max_chars must be positive")
        if self.min_chars < 0:
            raise ValueError("min_chars cannot be negative")
        if self.min_chars > self.max_chars:
            raise ValueError("min_chars cannot exceed max_chars")

    def segment(self, text: str, start_index: int = 0) -> list[SynthesisUnit]:
        if not text or not text.strip():
            return []

        units: list[SynthesisUnit] = []
        current = ""
        current_tag: UnitTag | None = None

        def flush() -> None:
            nonlocal current, current_tag
            chunk = current.strip()
            if chunk:
                units.append(SynthesisUnit(index=start_index + len(units), text=chunk, tag=current_tag))
            current = ""
            current_tag = None

        def append_piece(piece: str) -> None:
            nonlocal current, current_tag
            if not current:
                current = piece
                return
            candidate = f"{current} {piece}"
            if len(candidate) <= self.max_chars:
                current = candidate
                current_tag = None
                return
            flush()
            current = piece

        for paragraph in _split_paragraphs(text):
            for sentence in _split_sentences(paragraph):
                if len(sentence) > self.max_chars:
                    for piece in _split_long_sentence(sentence, self.max_chars):
                        append_piece(piece)
                    continue
                append_piece(sentence)

            current_tag = UnitTag.PARAGRAPH_END
            if len(current) >= self.min_chars:
                flush()

        if current:
            current_tag = UnitTag.PARAGRAPH_END
            flush()

        _LOGGER.debug("Segmented text into %d unit(s)", len(units))
        return units


def segment(text: str, max_unit_chars: int, *, min_chars: int = 0, start_index: int = 0) -> list[SynthesisUnit]:
    """Split cleaned text into ordered synthesis units."""
    segmenter = BasicTextSegmenter(max_chars=max_unit_chars, min_chars=min(min_chars, max_unit_chars))
    return segmenter.segment(text, start_index=start_index)


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _split_paragraphs(text: str) -> list[str]:
    paragraphs: list[str] = []
    for paragraph in _PARAGRAPH_SPLIT_RE.split(text):
        paragraph = normalize_whitespace(paragraph)
        if paragraph:
            paragraphs.append(paragraph)
    return paragraphs


def _split_sentences(text: str) -> list[str]:
    parts = _SENTENCE_END_RE.split(text)
    sentences: list[str] = []
    buffer = ""
    for part in parts:
        if not part:
            continue
        buffer += part
        if _SENTENCE_END_RE.fullmatch(part):
            sentence = buffer.strip()
            if sentence:
                sentences.append(sentence)
            buffer = ""

    if buffer.strip():
        sentences.append(buffer.strip())
    return sentences


def _split_long_sentence(sentence: str, limit: int) -> list[str]:
    pieces: list[str] = []
    current = ""
    for word in sentence.split():
        if not current:
            current = word
            continue
        candidate = f"{current} {word}"
        if len(candidate) <= limit:
            current = candidate
            continue
        pieces.append(current)
        current = word

    if current:
        pieces.append(current)
    return pieces
