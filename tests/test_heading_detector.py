"""
Tests for heading classification and page boilerplate cleanup.
"""

from book_common import HEADING_CLOSE, HEADING_OPEN, LINE_BREAK_MARKER
from heading_detector import (
    clean_chapter_heading,
    clean_page_numbers,
    ends_with_abbreviation,
    is_likely_heading,
    preserve_headings_in_page_text,
    strip_heading_markers,
)


class TestEndsWithAbbreviation:
    """Test abbreviation detection at the end of text."""

    def test_known_abbreviations(self):
        """Common abbreviations are recognized case-insensitively."""
        assert ends_with_abbreviation("Dr.")
        assert ends_with_abbreviation("troops from the U.S.")
        assert ends_with_abbreviation("apples, pears, ETC.")

    def test_requires_word_boundary(self):
        """A word merely ending in an abbreviation's letters is not one."""
        assert not ends_with_abbreviation("He sold the items.")

    def test_plain_sentence(self):
        """An ordinary sentence end is not an abbreviation."""
        assert not ends_with_abbreviation("Dr. Smith went home.")


class TestIsLikelyHeading:
    """Test single-line heading classification."""

    def test_all_caps(self):
        """All-caps lines are headings."""
        assert is_likely_heading("CHAPTER ONE")

    def test_colon_suffix(self):
        """Lines ending in a colon are headings."""
        assert is_likely_heading("Introduction:")

    def test_sentence_punctuation(self):
        """Lines ending like sentences are not headings."""
        assert not is_likely_heading("The Road Was Long.")

    def test_lowercase_start(self):
        """Lines starting lowercase are not headings."""
        assert not is_likely_heading("the road")

    def test_short_title_before_capitalized_line(self):
        """A short title-like line is a heading when the next line starts a paragraph."""
        assert is_likely_heading("Preface", "It was a cold morning.")
        assert not is_likely_heading("Preface")

    def test_previous_line_mid_sentence(self):
        """A line continuing an unfinished sentence is not a heading."""
        assert not is_likely_heading("Washington", "It was late.", "He traveled all the way to")

    def test_previous_line_complete(self):
        """A previous line ending in a period does not block a heading."""
        assert is_likely_heading("SMITH", None, "The report was signed by Dr.")

    def test_chemical_formula_fragment(self):
        """Split formulas like "CO 2" are not headings."""
        assert not is_likely_heading("CO 2", "The gas")

    def test_index_entry(self):
        """Index entries with page ranges are not headings."""
        assert not is_likely_heading("Agriculture 12-15", "Beans")

    def test_too_many_words(self):
        """Long lines are not headings."""
        line = "One Two Three Four Five Six Seven Eight Nine Ten Eleven"
        assert not is_likely_heading(line.upper())


class TestPreserveHeadings:
    """Test heading marking in structured page text."""

    def test_marks_heading_line(self):
        """Heading lines are wrapped in markers and the page is flattened."""
        page = LINE_BREAK_MARKER.join(["Part One", "The story begins here with a long line."])
        result = preserve_headings_in_page_text(page)
        assert result == f"{HEADING_OPEN}Part One{HEADING_CLOSE} The story begins here with a long line."

    def test_last_line_uses_next_page(self):
        """The page's last line is judged against the next page's first line."""
        page = LINE_BREAK_MARKER.join(["The war was finally over.", "Epilogue"])
        alone = preserve_headings_in_page_text(page)
        with_next = preserve_headings_in_page_text(page, "After the war ended.")
        assert HEADING_OPEN not in alone
        assert f"{HEADING_OPEN}Epilogue{HEADING_CLOSE}" in with_next

    def test_strip_heading_markers(self):
        """Markers can be removed again for plain text."""
        marked = f"{HEADING_OPEN}Part One{HEADING_CLOSE} Text."
        assert strip_heading_markers(marked) == "Part One Text."


class TestCleanPageNumbers:
    """Test running page number removal."""

    def test_book_page_is_pdf_page_minus_one(self):
        """The leading book page number (PDF page - 1) is removed."""
        assert clean_page_numbers("41 The text continues here.", 42) == "The text continues here."

    def test_other_numbers_kept(self):
        """A leading number that is not the book page stays."""
        assert clean_page_numbers("1984 was a long year.", 42) == "1984 was a long year."

    def test_front_matter_roman(self):
        """Front-matter roman page labels are removed before prose."""
        assert clean_page_numbers("iv The preface text", 5) == "The preface text"

    def test_without_page_number(self):
        """Without a page number the text is unchanged."""
        assert clean_page_numbers("41 Text", None) == "41 Text"


class TestCleanChapterHeading:
    """Test chapter title removal from the first chunk."""

    def test_removes_title(self):
        """The title is removed case-insensitively."""
        text = "THE LONG ROAD HOME It was a cold morning in the valley."
        assert clean_chapter_heading(text, "The Long Road Home") == "It was a cold morning in the valley."

    def test_repairs_split_drop_cap(self):
        """A drop-cap split from its word is rejoined."""
        text = "The Long Road Home I n the beginning there was only the road."
        result = clean_chapter_heading(text, "The Long Road Home")
        assert result == "In the beginning there was only the road."

    def test_keeps_text_when_too_little_remains(self):
        """Nothing is removed when ten characters or fewer would remain."""
        text = "The Long Road Home Yes."
        assert clean_chapter_heading(text, "The Long Road Home") == text

    def test_title_far_from_start(self):
        """A title mentioned deep in the text is left alone."""
        text = "x" * 250 + " The Long Road Home and more words follow here."
        assert clean_chapter_heading(text, "The Long Road Home") == text
