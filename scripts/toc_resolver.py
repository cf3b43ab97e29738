#!/usr/bin/env python3
"""
Table-of-contents resolution.

Produces chapter candidates (number, title, starting page) from the PDF
bookmark tree when one exists, otherwise from a printed contents page found
in the first pages of the book.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple, Union

from book_common import roman_to_int
from pdf_source import group_items_into_lines

logger = logging.getLogger(__name__)

ChapterNumber = Union[int, str, None]

TOC_SCAN_PAGES = 20
TOC_PAGE_TOKENS = ('contents', 'table of contents', 'index')
EXCLUDED_BOOKMARK_TITLES = {'contents', 'table of contents'}


class TocSource(Enum):
    """Where chapter candidates came from."""
    BOOKMARKS = "bookmarks"
    TEXT_PARSING = "text_parsing"
    NONE = "none"


@dataclass
class ChapterCandidate:
    """A possible chapter start taken from the table of contents."""
    chapter_number: ChapterNumber
    chapter_title: str
    starting_page: Optional[int]
    original_title: str = ""

    @property
    def is_numbered(self) -> bool:
        return isinstance(self.chapter_number, int) and not isinstance(self.chapter_number, bool) \
            and self.chapter_number >= 0

    @property
    def is_epilogue(self) -> bool:
        return isinstance(self.chapter_number, str) and 'epilogue' in self.chapter_number.lower()

    def to_dict(self) -> Dict:
        return {
            'chapterNumber': self.chapter_number,
            'chapterTitle': self.chapter_title,
            'startingPage': self.starting_page,
        }


@dataclass
class TocResult:
    """Resolved table of contents."""
    source: TocSource
    chapters: List[ChapterCandidate] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {'source': self.source.value, 'chapters': [c.to_dict() for c in self.chapters]}


class BookmarkClassifier:
    """
    Classify bookmark titles into chapter numbers.

    Patterns are tried in order; the first match decides.
    """

    WORD_TO_NUM = {
        'one': 1, 'two': 2, 'three': 3, 'four': 4, 'five': 5,
        'six': 6, 'seven': 7, 'eight': 8, 'nine': 9, 'ten': 10,
        'eleven': 11, 'twelve': 12, 'thirteen': 13, 'fourteen': 14, 'fifteen': 15,
        'sixteen': 16, 'seventeen': 17, 'eighteen': 18, 'nineteen': 19, 'twenty': 20,
    }

    # "1. Title" or "1 Title"
    NUMBERED_RE = re.compile(r'^(\d+)\.?\s+(.+)$')
    # "Chapter Two: Title", "Chapter 3", "Chapter Twelve"
    WORD_NUMBERED_RE = re.compile(
        r'^Chapter\s+(\d+|' + '|'.join(WORD_TO_NUM) + r')\b\s*[:.]?\s*(.*)$',
        re.IGNORECASE,
    )
    # "Chapter IV: Title" or "IV. Title"
    ROMAN_CHAPTER_RE = re.compile(r'^(?i:chapter)\s+([IVXLC]+)\b\s*[:.]?\s*(.*)$')
    ROMAN_PREFIX_RE = re.compile(r'^([IVXLC]+)\.\s+(.+)$')
    APPENDIX_RE = re.compile(r'^Appendix\s+([A-Z0-9]+)', re.IGNORECASE)

    @classmethod
    def classify(cls, title: str) -> Tuple[ChapterNumber, str]:
        """
        Derive (chapter_number, chapter_title) from a bookmark title.

        Numbered titles lose their numeral; word-numbered and special titles
        keep the full text. Back matter and unrecognized titles get no number.
        """
        title = title.strip()

        match = cls.NUMBERED_RE.match(title)
        if match:
            return int(match.group(1)), match.group(2).strip()

        match = cls.WORD_NUMBERED_RE.match(title)
        if match:
            token = match.group(1).lower()
            number = int(token) if token.isdigit() else cls.WORD_TO_NUM[token]
            return number, title

        match = cls.ROMAN_CHAPTER_RE.match(title) or cls.ROMAN_PREFIX_RE.match(title)
        if match:
            number = roman_to_int(match.group(1))
            if number:
                return number, match.group(2).strip() or title

        lower = title.lower()
        if 'introduction' in lower:
            return 0, title

        match = cls.APPENDIX_RE.match(title)
        if match:
            return f"Appendix {match.group(1)}", title

        if 'epilogue' in lower:
            return 'Epilogue', title

        return None, title


class TocLineParser:
    """Parse printed table-of-contents lines into candidates."""

    SKIP_PATTERNS: List[Pattern] = [
        re.compile(r'^contents?$', re.IGNORECASE),
        re.compile(r'^table of contents$', re.IGNORECASE),
        re.compile(r'^page$', re.IGNORECASE),
        re.compile(r'^chapter$', re.IGNORECASE),
    ]

    # (pattern, has_number_group): the page label is always the last group
    LINE_PATTERNS: List[Tuple[Pattern, bool]] = [
        # "1. Title 25" or "1 Title 25"
        (re.compile(r'^(\d+)\.?\s+(.+?)\s+(\d+)$'), True),
        # "Introduction: Title ix"
        (re.compile(r'^(Introduction[:\s]*.*?)\s+([ivx]+|\d+)$', re.IGNORECASE), False),
        # "Appendix A: Title 302"
        (re.compile(r'^(Appendix\s+[A-Z][:\s]*.*?)\s+(\d+)$', re.IGNORECASE), False),
        # "Acknowledgments 293"
        (re.compile(r'^([A-Za-z\s]+)\s+(\d+)$'), False),
    ]

    APPENDIX_LETTER_RE = re.compile(r'appendix\s+([A-Z])', re.IGNORECASE)

    @classmethod
    def parse(cls, line: str) -> Optional[ChapterCandidate]:
        """Parse one line; returns None for non-entries."""
        text = line.strip()
        if not text or any(p.match(text) for p in cls.SKIP_PATTERNS):
            return None

        for pattern, has_number in cls.LINE_PATTERNS:
            match = pattern.match(text)
            if not match:
                continue

            page = cls._page_from_label(match.groups()[-1])
            if page is None:
                return None

            if has_number:
                return ChapterCandidate(
                    chapter_number=int(match.group(1)),
                    chapter_title=match.group(2).strip(),
                    starting_page=page,
                    original_title=text,
                )

            title = match.group(1).strip()
            number: ChapterNumber = None
            if 'introduction' in title.lower():
                number = 0
            else:
                appendix = cls.APPENDIX_LETTER_RE.search(title)
                if appendix:
                    number = f"Appendix {appendix.group(1)}"
            return ChapterCandidate(number, title, page, original_title=text)

        return None

    @staticmethod
    def _page_from_label(label: str) -> Optional[int]:
        if label.isdigit():
            return int(label)
        return roman_to_int(label) or None


class TocResolver:
    """
    Resolve chapter candidates from a layout source.

    The source must provide `outline()`, `page_count` and `page_items(n)`
    (see pdf_source.PDFSource).
    """

    def __init__(self, diagnostics: Optional[logging.Logger] = None):
        self.log = diagnostics or logger

    def resolve(self, source) -> TocResult:
        """
        Build the table of contents for a document.

        Returns:
            TocResult from bookmarks when an outline exists, else from parsed
            contents pages, else an empty result with source NONE.
        """
        outline = source.outline()
        if outline:
            candidates = self.from_outline(outline)
            self.log.info(f"TOC from bookmarks: {len(candidates)} entries")
            return TocResult(TocSource.BOOKMARKS, candidates)

        candidates = self.from_contents_pages(source)
        if candidates:
            self.log.info(f"TOC from contents pages: {len(candidates)} entries")
            return TocResult(TocSource.TEXT_PARSING, candidates)

        self.log.info("No table of contents found")
        return TocResult(TocSource.NONE, [])

    def from_outline(self, outline) -> List[ChapterCandidate]:
        """Classify flattened bookmarks, dropping "Contents" and unresolvable pages."""
        candidates = []
        for entry in outline:
            title = entry.title.strip()
            if not title or title.lower() in EXCLUDED_BOOKMARK_TITLES:
                continue
            if entry.page is None:
                self.log.debug(f"Dropping bookmark with unresolvable page: {title}")
                continue
            number, chapter_title = BookmarkClassifier.classify(title)
            candidates.append(ChapterCandidate(number, chapter_title, entry.page, original_title=title))
        return candidates

    def from_contents_pages(self, source) -> List[ChapterCandidate]:
        """Parse printed contents pages among the first TOC_SCAN_PAGES pages."""
        candidates = []
        for page_number in range(1, min(TOC_SCAN_PAGES, source.page_count) + 1):
            try:
                lines = group_items_into_lines(source.page_items(page_number))
            except Exception as e:
                self.log.debug(f"Skipping page {page_number} during TOC scan: {e}")
                continue

            page_text = ' '.join(lines).lower()
            if not any(token in page_text for token in TOC_PAGE_TOKENS):
                continue

            found = [c for c in (TocLineParser.parse(line) for line in lines) if c]
            self.log.debug(f"Contents page {page_number}: {len(found)} entries")
            candidates.extend(found)
        return candidates
