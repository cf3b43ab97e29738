"""
Tests for text normalization and tolerant title matching.
"""

import pytest

from text_normalizer import fuzzy_match, normalize_text


class TestNormalizeText:
    """Test canonicalization of lines and titles."""

    def test_collapses_whitespace(self):
        """Runs of whitespace become single spaces."""
        assert normalize_text("  The   Long\tRoad  ") == "The Long Road"

    def test_straightens_quotes(self):
        """Curly quotes and apostrophes become straight ones."""
        assert normalize_text("“Hello” it’s") == '"Hello" it\'s'

    def test_removes_backslashes(self):
        """Escaping backslashes from JSON configs are dropped."""
        assert normalize_text('A \\"quoted\\" title') == 'A "quoted" title'

    def test_strips_trailing_page_number(self):
        """A trailing TOC page reference is removed."""
        assert normalize_text("The Long Road Home 25") == "The Long Road Home"
        assert normalize_text("Preface ix") == "Preface"


class TestFuzzyMatch:
    """Test title matching against PDF lines."""

    @pytest.mark.parametrize("title", [
        "Beginnings",
        "The Long Road Home",
        "“Quoted” Title",
        "Chapter 7",
        "x",
    ])
    def test_matches_itself(self, title):
        """Any non-empty title matches itself."""
        assert fuzzy_match(title, title)

    def test_prefix_match(self):
        """A line starting with the title matches."""
        assert fuzzy_match("The Long Road Home and Other Stories", "The Long Road Home")

    def test_long_title_contained(self):
        """Titles over ten characters match anywhere in the line."""
        assert fuzzy_match("Part One: The Long Road Home", "The Long Road Home")

    def test_short_title_not_contained(self):
        """Short titles must match exactly or by prefix."""
        assert not fuzzy_match("A Tale of Fire", "Fire")

    def test_lost_leading_characters(self):
        """A drop-cap rendered separately loses up to three leading characters."""
        assert fuzzy_match("e Long Road Home", "The Long Road Home")

    def test_empty_title_never_matches(self):
        """An empty title matches nothing."""
        assert not fuzzy_match("Anything", "")
        assert not fuzzy_match("", "   ")

    def test_unrelated_line(self):
        """Different text does not match."""
        assert not fuzzy_match("Winston Smith slipped through the doors", "The Long Road Home")
