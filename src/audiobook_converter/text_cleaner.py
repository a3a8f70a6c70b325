"""Text cleaning and normalization for EPUB content."""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Final

_LOGGER = logging.getLogger(__name__)

# Control characters to remove (excluding newline \n and tab \t)
_CONTROL_CHARS_PATTERN: Final = re.compile(r"[\x00-\x08\x0b\x0c\x0d\x0e-\x1f\x7f-\x9f]")

# Citation pattern: [1], [Chapter X], [Note 123], etc.
_CITATION_PATTERN: Final = re.compile(r"\[[^\]]*\d[^\]]*\]")

_HTML_ENTITY_PATTERN: Final = re.compile(r"&[a-zA-Z0-9#]+;")
_PAGE_MARKER_PATTERN: Final = re.compile(r"\b[Pp]age\s+\d+\b")
_QUOTE_PATTERN: Final = re.compile(r"[“”‘’`]")
_DASH_PATTERN: Final = re.compile(r"[–—]")
_ELLIPSIS_PATTERN: Final = re.compile(r"\.{3,}")
_SPACE_BEFORE_PUNCT_PATTERN: Final = re.compile(r"[ \t]+([,.!?;:])")
_HYPHENATION_PATTERN: Final = re.compile(r"(\w+)-[ \t]*\n[ \t]*(\w+)")
_SENTENCE_SPACING_PATTERN: Final = re.compile(r"([.!?])([A-Z])")

_WHITESPACE_PATTERN: Final = re.compile(r"[ \t]+")
_MULTIPLE_NEWLINE_PATTERN: Final = re.compile(r"\n[ \t]*\n+")
_SINGLE_NEWLINE_PATTERN: Final = re.compile(r"(?<!\n)\n(?!\n)")

_ABBREVIATIONS: Final = (
    ("Mr.", "Mister"),
    ("Mrs.", "Missus"),
    ("Dr.", "Doctor"),
    ("Prof.", "Professor"),
    ("St.", "Saint"),
    ("vs.", "versus"),
    ("etc.", "etcetera"),
    ("i.e.", "that is"),
    ("e.g.", "for example"),
)
_ABBREVIATION_PATTERNS: Final = tuple(
    (re.compile(rf"(?<!\w){re.escape(abbrev)}"), expansion) for abbrev, expansion in _ABBREVIATIONS
)


class BasicTextCleaner:
    """Text cleaner for EPUB content.

    Always applied:
    - Unicode NFC normalization
    - Control characters and HTML entities removed
    - Curly quotes and long dashes normalized
    - Page markers ("Page 12") dropped
    - Whitespace collapsed, paragraph breaks preserved

    Aggressive mode additionally rejoins words hyphenated across line
    breaks, expands common abbreviations so speech engines read them as
    words, and restores the space after sentence-ending punctuation.
    """

    def __init__(
        self,
        normalize_unicode: bool = True,
        remove_citations: bool = False,
        preserve_paragraph_breaks: bool = True,
        aggressive: bool = True,
    ) -> None:
        self.normalize_unicode = normalize_unicode
        self.remove_citations = remove_citations
        self.preserve_paragraph_breaks = preserve_paragraph_breaks
        self.aggressive = aggressive
        _LOGGER.debug(
            "Initialized BasicTextCleaner: normalize_unicode=%s, remove_citations=%s, "
            "preserve_paragraph_breaks=%s, aggressive=%s",
            normalize_unicode,
            remove_citations,
            preserve_paragraph_breaks,
            aggressive,
        )

    def clean(self, text: str) -> str:
        """Clean and normalize text content.

        Args:
            text: Raw chapter text from the EPUB reader.

        Returns:
            Cleaned text with paragraphs separated by a blank line.
        """
        if not text:
            return ""

        if self.normalize_unicode:
            text = unicodedata.normalize("NFC", text)

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = _CONTROL_CHARS_PATTERN.sub(" ", text)
        text = _HTML_ENTITY_PATTERN.sub(" ", text)

        if self.remove_citations:
            text = _CITATION_PATTERN.sub("", text)

        if self.aggressive:
            text = _HYPHENATION_PATTERN.sub(r"\1\2", text)

        text = _PAGE_MARKER_PATTERN.sub("", text)
        text = _QUOTE_PATTERN.sub('"', text)
        text = _DASH_PATTERN.sub("-", text)
        text = _ELLIPSIS_PATTERN.sub("...", text)

        if self.aggressive:
            for pattern, expansion in _ABBREVIATION_PATTERNS:
                text = pattern.sub(expansion, text)
            text = _SENTENCE_SPACING_PATTERN.sub(r"\1 \2", text)

        if self.preserve_paragraph_breaks:
            text = _MULTIPLE_NEWLINE_PATTERN.sub("\n\n", text)
            text = _SINGLE_NEWLINE_PATTERN.sub(" ", text)
        else:
            text = text.replace("\n", " ")

        text = _WHITESPACE_PATTERN.sub(" ", text)
        text = _SPACE_BEFORE_PUNCT_PATTERN.sub(r"\1", text)
        text = "\n\n".join(line.strip() for line in text.split("\n\n"))

        return text.strip()
