"""
Shared fixtures for parser tests.

`make_source` builds an in-memory layout source with the same interface as
pdf_source.PDFSource, so detection and link code can be tested without PDFs.
"""

import pytest

from pdf_source import (
    DocumentInfo, TextItem, combine_items_preserving_structure, coordinate_bounds,
    group_items_into_lines,
)

LINE_HEIGHT = 12
LINE_SPACING = 20
LEFT_MARGIN = 72
TOP_MARGIN = 100
CHAR_WIDTH = 6


def items_for_lines(lines):
    """One text item per line, stacked down the page."""
    return [
        TextItem(
            text=line,
            x=LEFT_MARGIN,
            y=TOP_MARGIN + i * LINE_SPACING,
            width=len(line) * CHAR_WIDTH,
            height=LINE_HEIGHT,
        )
        for i, line in enumerate(lines)
    ]


class FakeSource:
    """Layout source over {page_number: [line, ...]}."""

    def __init__(self, pages, outline=None, links=None, image_counts=None, info=None):
        self.pages = pages
        self._outline = outline or []
        self._links = links or {}
        self._image_counts = image_counts or {}
        self._info = info or DocumentInfo()

    @property
    def page_count(self):
        return max(self.pages) if self.pages else 0

    def page_items(self, page_number):
        return items_for_lines(self.pages.get(page_number, []))

    def page_text(self, page_number):
        return '\n'.join(group_items_into_lines(self.page_items(page_number)))

    def structured_page_text(self, page_number):
        return combine_items_preserving_structure(self.page_items(page_number))

    def page_bounds(self, page_number):
        return coordinate_bounds(self.page_items(page_number))

    def outline(self):
        return self._outline

    def info(self):
        return self._info

    def links(self, page_number):
        return self._links.get(page_number, [])

    def image_counts(self):
        return dict(self._image_counts)


@pytest.fixture
def make_source():
    """Factory for FakeSource instances."""
    return FakeSource


@pytest.fixture
def book_pages():
    """A small book: contents page, two chapters, two pages each."""
    return {
        1: ["The Sample Book", "A Novel"],
        2: ["Contents", "1. Beginnings 3", "2. The Middle Years 5"],
        3: [
            "Beginnings",
            "It was a bright cold day in April and the clocks were striking thirteen.",
            "Winston Smith slipped quickly through the glass doors of the mansion.",
        ],
        4: [
            "The hallway smelt of boiled cabbage and old rag mats at one end.",
            "A coloured poster too large for indoor display had been tacked to the wall.",
        ],
        5: [
            "The Middle Years",
            "Outside, even through the shut window pane, the world looked cold.",
            "Down in the street little eddies of wind were whirling dust and paper.",
        ],
        6: [
            "The sun was shining and the sky was a harsh blue over the city.",
            "There seemed to be no colour in anything except the posters on the walls.",
        ],
    }
