"""Tests for text_cleaner module."""

from __future__ import annotations

import pytest

from audiobook_converter.text_cleaner import BasicTextCleaner


@pytest.fixture
def cleaner() -> BasicTextCleaner:
    return BasicTextCleaner()


class TestBasicCleaning:
    def test_empty_input(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("") == ""

    def test_unicode_normalized_to_nfc(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("Café") == "Café"

    def test_control_characters_removed(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("Hello\x00World") == "Hello World"

    def test_html_entities_removed(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("Tom &amp; Jerry") == "Tom Jerry"

    def test_quotes_and_dashes_normalized(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("“Hi,” she said — ‘ok’") == '"Hi," she said - "ok"'

    def test_ellipsis_collapsed(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("Wait..... what") == "Wait... what"

    def test_page_markers_dropped(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("End of text. Page 12 Next part.") == "End of text. Next part."


class TestParagraphs:
    def test_paragraph_breaks_preserved(self, cleaner: BasicTextCleaner) -> None:
        text = "Line one\nstill one.\n\n\nPara two."
        assert cleaner.clean(text) == "Line one still one.\n\nPara two."

    def test_paragraph_breaks_flattened_when_disabled(self) -> None:
        cleaner = BasicTextCleaner(preserve_paragraph_breaks=False)
        assert cleaner.clean("Line one\nstill one.\n\n\nPara two.") == "Line one still one. Para two."

    def test_hyphenated_line_breaks_rejoined(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("It was extra-\nordinary.") == "It was extraordinary."


class TestAggressiveMode:
    def test_abbreviations_expanded(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("Mr. Smith met Dr. Jones.") == "Mister Smith met Doctor Jones."
        assert cleaner.clean("Cats, i.e. felines.") == "Cats, that is felines."

    def test_abbreviations_kept_when_not_aggressive(self) -> None:
        cleaner = BasicTextCleaner(aggressive=False)
        assert cleaner.clean("Mr. Smith met Dr. Jones.") == "Mr. Smith met Dr. Jones."

    def test_missing_sentence_space_restored(self, cleaner: BasicTextCleaner) -> None:
        assert cleaner.clean("One.Two") == "One. Two"


class TestCitations:
    def test_citations_kept_by_default(self, cleaner: BasicTextCleaner) -> None:
        assert "[1]" in cleaner.clean("Fact [1] stated.")

    def test_citations_removed_when_enabled(self) -> None:
        cleaner = BasicTextCleaner(remove_citations=True)
        assert cleaner.clean("Fact [1] stated [Note 2].") == "Fact stated."
