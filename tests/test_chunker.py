"""
Tests for sentence-aware chunking and cross-page sentence repair.
"""

from dataclasses import FrozenInstanceError

import pytest

from book_common import HEADING_CLOSE, HEADING_OPEN
from chunker import (
    ChunkType,
    chunk_text,
    header_chunk,
    image_chunk,
    merge_small_chunks,
    merge_split_sentences,
    reindex,
    should_merge_sentence,
    split_sentences,
    text_chunk,
)


def heading(text):
    return f"{HEADING_OPEN}{text}{HEADING_CLOSE}"


class TestSplitSentences:
    """Test sentence splitting."""

    def test_abbreviation_before_lowercase(self):
        """An abbreviation followed by a lowercase word does not end a sentence."""
        assert split_sentences("They reached the U.S. coast at dawn. Then they rested.") == [
            ("They reached the U.S. coast at dawn.", False),
            ("Then they rested.", False),
        ]

    def test_heading_spans(self):
        """Heading-marked spans come out in place, flagged."""
        text = f"Before it. {heading('Part Two')} After it."
        assert split_sentences(text) == [
            ("Before it.", False),
            ("Part Two", True),
            ("After it.", False),
        ]


class TestChunkText:
    """Test chunk boundaries."""

    def test_title_abbreviation_single_chunk(self):
        """Dr. does not split the text; the short result stays one chunk."""
        chunks = chunk_text("Dr. Smith arrived. He was late.", 5, 15)
        assert len(chunks) == 1
        assert chunks[0].text == "Dr. Smith arrived. He was late."
        assert chunks[0].type == ChunkType.TEXT

    def test_headers_standalone(self):
        """Headings become their own header chunks."""
        text = f"{heading('Part One')} It was a dark and stormy night in the old town."
        chunks = chunk_text(text, 5, 15, page_number=7)

        assert [c.type for c in chunks] == [ChunkType.HEADER, ChunkType.TEXT]
        assert chunks[0].text == "Part One"
        assert all(c.page_number == 7 for c in chunks)

    def test_respects_max_words(self):
        """A sentence that would overflow max_words starts a new chunk."""
        text = " ".join(["One two three four five six seven eight."] * 3)
        chunks = chunk_text(text, 5, 15)

        assert len(chunks) == 3
        assert all(c.word_count <= 15 for c in chunks)

    def test_empty_text(self):
        """Empty text yields no chunks."""
        assert chunk_text("") == []


class TestMergeSmallChunks:
    """Test the small-chunk post-pass."""

    def test_merges_into_following(self):
        """A very small chunk folds into the next one."""
        chunks = [text_chunk("Short one."), text_chunk("This chunk has exactly eight words in it.")]
        merged = merge_small_chunks(chunks, 15)

        assert len(merged) == 1
        assert merged[0].text == "Short one. This chunk has exactly eight words in it."

    def test_merges_into_previous(self):
        """With no following chunk, a small chunk joins the previous one."""
        chunks = [
            text_chunk("This chunk has a full twelve words in it, more or less."),
            text_chunk("Short one."),
        ]
        merged = merge_small_chunks(chunks, 15)

        assert len(merged) == 1
        assert merged[0].text.endswith("Short one.")

    def test_never_across_headers(self):
        """Headers block merging in both directions."""
        chunks = [text_chunk("Tiny."), header_chunk("Heading"), text_chunk("Also tiny.")]
        merged = merge_small_chunks(chunks, 15)

        assert [c.text for c in merged] == ["Tiny.", "Heading", "Also tiny."]

    def test_header_count_invariant(self):
        """The number of header chunks is unchanged by merging."""
        chunks = [
            header_chunk("One"),
            text_chunk("a b."),
            text_chunk("c d e."),
            header_chunk("Two"),
            text_chunk("f."),
            header_chunk("Three"),
            text_chunk("g h i j k l m n o p q r."),
            text_chunk("s t."),
        ]
        merged = merge_small_chunks(chunks, 15)
        repaired = merge_split_sentences(merged)

        assert sum(c.is_header for c in merged) == 3
        assert sum(c.is_header for c in repaired) == 3


class TestShouldMergeSentence:
    """Test the cross-page boundary rule."""

    def test_unterminated_then_lowercase(self):
        """An open sentence continued in lowercase merges."""
        assert should_merge_sentence(text_chunk("He walked to the"), text_chunk("store and bought milk."))

    def test_abbreviation_then_lowercase(self):
        """An abbreviation-like period continued in lowercase merges."""
        assert should_merge_sentence(text_chunk("Troops from the U.S."), text_chunk("became involved."))

    def test_complete_sentence(self):
        """A finished sentence does not merge even before lowercase."""
        assert not should_merge_sentence(text_chunk("He left."), text_chunk("she stayed."))

    def test_uppercase_start(self):
        """A new capitalized sentence does not merge."""
        assert not should_merge_sentence(text_chunk("He walked to the"), text_chunk("The next day came."))

    def test_headers_never_merge(self):
        """Header chunks never take part."""
        assert not should_merge_sentence(header_chunk("Part One"), text_chunk("continued text."))
        assert not should_merge_sentence(text_chunk("He walked to the"), header_chunk("store"))


class TestMergeSplitSentences:
    """Test cross-page sentence repair."""

    def test_us_abbreviation_across_pages(self):
        """A sentence ending "the U.S." continued on the next page becomes one chunk on the first page."""
        chunks = [
            text_chunk("Troops from the U.S.", 10),
            text_chunk("became involved in the war.", 11),
        ]
        merged = merge_split_sentences(chunks)

        assert len(merged) == 1
        assert merged[0].text == "Troops from the U.S. became involved in the war."
        assert merged[0].page_number == 10
        assert merged[0].index == 0

    def test_remainder_stays_on_second_page(self):
        """Text after the completed sentence becomes a new chunk on its own page."""
        chunks = [
            text_chunk("He walked to the", 10),
            text_chunk("store. Then he went home quietly.", 11),
        ]
        merged = merge_split_sentences(chunks)

        assert [(c.text, c.page_number, c.index) for c in merged] == [
            ("He walked to the store.", 10, 0),
            ("Then he went home quietly.", 11, 1),
        ]

    def test_non_consecutive_pages(self):
        """Chunks two pages apart are left alone."""
        chunks = [text_chunk("He walked to the", 10), text_chunk("store and home.", 12)]
        assert len(merge_split_sentences(chunks)) == 2


class TestChunkValues:
    """Test chunk serialization and re-indexing."""

    def test_reindex_contiguous(self):
        """Indices become 0..n-1 in list order."""
        chunks = reindex([text_chunk("a"), header_chunk("b"), text_chunk("c")])
        assert [c.index for c in chunks] == [0, 1, 2]

    def test_chunks_immutable(self):
        """Chunks cannot be changed in place."""
        chunk = text_chunk("a")
        with pytest.raises(FrozenInstanceError):
            chunk.text = "b"

    def test_text_fields(self):
        """Text chunks serialize text and word count only."""
        assert text_chunk("Two words", 3).to_dict() == {
            'index': 0, 'type': 'text', 'pageNumber': 3, 'text': 'Two words', 'wordCount': 2,
        }

    def test_image_fields(self):
        """Image chunks serialize name and alt text only."""
        d = image_chunk("page-003-image-1.jpg", "Figure 1 (Page 3)", 3).to_dict()
        assert d == {
            'index': 0, 'type': 'image', 'pageNumber': 3,
            'imageName': 'page-003-image-1.jpg', 'imageAlt': 'Figure 1 (Page 3)',
        }
