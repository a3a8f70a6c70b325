"""EPUB reader built on ebooklib (spine and TOC) and BeautifulSoup (text)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import logging
from pathlib import Path
import posixpath
from urllib.parse import unquote
import zipfile

from bs4 import BeautifulSoup
from ebooklib import ITEM_DOCUMENT, epub

from .errors import InputError
from .interfaces import BookMetadata, Chapter, EpubBook, EpubReader

_LOGGER = logging.getLogger(__name__)

_DROP_TAGS = ["script", "style", "noscript", "header", "footer", "nav", "svg"]
_BLOCK_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote", "pre", "dt", "dd", "figcaption"]
_HEADING_TAGS = ["h1", "h2", "h3"]


@dataclass(frozen=True)
class EbooklibEpubReader(EpubReader):
    """Read EPUB files and emit ordered chapters based on the spine.

    Block elements become paragraphs separated by blank lines so the text
    cleaner and the segmenter can keep paragraph boundaries.
    """

    skip_non_linear: bool = True

    def read(self, path: Path) -> EpubBook:
        if not path.is_file():
            raise InputError(f"EPUB not found: {path}")
        try:
            book = epub.read_epub(str(path))
        except (OSError, zipfile.BadZipFile, KeyError, epub.EpubException) as exc:
            raise InputError(f"Cannot read EPUB {path.name}: {exc}") from exc

        toc_map, toc_basename_map = _build_toc_maps(book.toc)
        metadata = _extract_metadata(book, fallback_title=path.stem)
        chapters = _extract_chapters(
            book,
            toc_map=toc_map,
            toc_basename_map=toc_basename_map,
            skip_non_linear=self.skip_non_linear,
        )
        if not chapters:
            raise InputError(f"{path.name} contains no readable text.")
        _LOGGER.debug("Read %d chapter(s) from %s", len(chapters), path)
        return EpubBook(metadata=metadata, chapters=chapters)


def _extract_metadata(book: epub.EpubBook, fallback_title: str) -> BookMetadata:
    title = _first_metadata(book, "title") or fallback_title
    author = _first_metadata(book, "creator")
    language = _first_metadata(book, "language")
    return BookMetadata(title=title, author=author, language=language)


def _first_metadata(book: epub.EpubBook, name: str) -> str | None:
    values = book.get_metadata("DC", name)
    if not values:
        return None
    value = values[0][0]
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _build_toc_maps(toc: Iterable[object]) -> tuple[dict[str, str], dict[str, str]]:
    toc_map: dict[str, str] = {}
    toc_basename_map: dict[str, str] = {}
    basename_counts: dict[str, int] = {}

    for title, href in _walk_toc(toc):
        normalized_title = _normalize_title(title)
        normalized_href = _normalize_href(href)
        if not normalized_title or not normalized_href:
            continue

        if normalized_href not in toc_map:
            toc_map[normalized_href] = normalized_title

        basename = posixpath.basename(normalized_href)
        if basename:
            basename_counts[basename] = basename_counts.get(basename, 0) + 1
            if basename not in toc_basename_map:
                toc_basename_map[basename] = normalized_title

    for basename, count in basename_counts.items():
        if count > 1:
            toc_basename_map.pop(basename, None)

    return toc_map, toc_basename_map


def _walk_toc(items: Iterable[object]) -> Iterable[tuple[str | None, str | None]]:
    for item in items or []:
        if isinstance(item, tuple) and len(item) == 2:
            section, children = item
            entry = _toc_entry(section)
            if entry:
                yield entry
            if _is_iterable_collection(children):
                yield from _walk_toc(children)
            continue

        entry = _toc_entry(item)
        if entry:
            yield entry
            continue

        if _is_iterable_collection(item):
            yield from _walk_toc(item)


def _toc_entry(item: object) -> tuple[str | None, str | None] | None:
    title = getattr(item, "title", None)
    href = getattr(item, "href", None)
    if title is None and href is None:
        return None
    return title, href


def _is_iterable_collection(value: object) -> bool:
    return isinstance(value, Iterable) and not isinstance(value, (str, bytes))


def _normalize_title(title: str | None) -> str | None:
    if title is None:
        return None
    cleaned = str(title).strip()
    return cleaned or None


def _normalize_href(href: str | None) -> str:
    if not href:
        return ""
    base = href.split("#", 1)[0]
    if not base:
        return ""
    base = unquote(base)
    base = base.replace("\\", "/")
    base = posixpath.normpath(base)
    while base.startswith("./"):
        base = base[2:]
    if base.startswith("/"):
        base = base[1:]
    return base


def _extract_chapters(
    book: epub.EpubBook,
    toc_map: dict[str, str],
    toc_basename_map: dict[str, str],
    skip_non_linear: bool,
) -> list[Chapter]:
    chapters: list[Chapter] = []
    index = 0

    for item_id, linear in book.spine:
        if skip_non_linear and _is_non_linear(linear):
            continue

        item = book.get_item_with_id(item_id)
        if item is None:
            _LOGGER.debug("Spine item %s not found in manifest", item_id)
            continue

        if item.get_type() != ITEM_DOCUMENT:
            continue

        href = _get_item_href(item)
        html_title, text = _extract_title_and_text(item.get_content())
        title = _resolve_title(
            href=href,
            toc_map=toc_map,
            toc_basename_map=toc_basename_map,
            html_title=html_title,
            index=index,
        )

        cleaned_text = text.strip()
        if not cleaned_text:
            _LOGGER.debug("Skipping empty spine document: %s", href or item_id)
            continue

        chapters.append(Chapter(index=index, title=title, text=cleaned_text))
        index += 1

    return chapters


def _is_non_linear(linear: object) -> bool:
    if linear is None:
        return False
    if isinstance(linear, str):
        return linear.strip().lower() == "no"
    return not bool(linear)


def _get_item_href(item: object) -> str:
    if hasattr(item, "get_name"):
        try:
            return str(item.get_name())
        except (AttributeError, TypeError, OSError):  # pragma: no cover
            return ""
    return str(getattr(item, "file_name", "")) or str(getattr(item, "href", ""))


def _resolve_title(
    href: str,
    toc_map: dict[str, str],
    toc_basename_map: dict[str, str],
    html_title: str | None,
    index: int,
) -> str:
    normalized_href = _normalize_href(href)
    if normalized_href:
        if normalized_href in toc_map:
            return toc_map[normalized_href]
        basename = posixpath.basename(normalized_href)
        if basename in toc_basename_map:
            return toc_basename_map[basename]

    if html_title:
        return html_title.strip()

    if normalized_href:
        stem = posixpath.splitext(posixpath.basename(normalized_href))[0]
        if stem:
            return stem.replace("_", " ").replace("-", " ").strip()

    return f"Chapter {index + 1}"


def _extract_title_and_text(content: bytes | str) -> tuple[str | None, str]:
    soup = BeautifulSoup(content, "html.parser")
    for tag in soup(_DROP_TAGS):
        tag.decompose()

    title = None
    heading = soup.find(_HEADING_TAGS)
    if heading is not None:
        title = _collapse(heading.get_text(separator=" ")) or None
    if title is None and soup.title and soup.title.string:
        title = soup.title.string.strip() or None

    root = soup.body if soup.body else soup
    paragraphs: list[str] = []
    for element in root.find_all(_BLOCK_TAGS):
        # Nested blocks are covered by their outermost ancestor.
        if element.find_parent(_BLOCK_TAGS) is not None:
            continue
        text = _collapse(element.get_text(separator=" "))
        if text:
            paragraphs.append(text)

    if not paragraphs:
        lines = (line.strip() for line in root.get_text(separator="\n").splitlines())
        paragraphs = [line for line in lines if line]
    return title, "\n\n".join(paragraphs)


def _collapse(text: str) -> str:
    return " ".join(text.split())
