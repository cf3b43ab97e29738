#!/usr/bin/env python3
"""
Chapter Boundary Detection

Chapters are detected by an ordered cascade of strategies; the first one that
returns chapters wins:

1. TOC - page ranges from table-of-contents candidates, per-page text rebuilt
   from positioned items (page-based chapters)
2. Explicit names - fuzzy search for configured chapter titles in the full
   text, best occurrence per title (line-based chapters)
3. Patterns - regex heading detection over the full text (line-based)
4. Full text - one synthesized chapter so a document is never rejected

Each strategy is a pure function of the detection input and the config; the
only side effect is logging to the injected diagnostics logger.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from book_common import (
    LINE_BREAK_MARKER, is_metadata_line, is_page_number, PAGE_LABEL_RE,
)
from book_config import BookConfig
from heading_detector import (
    clean_page_numbers, preserve_headings_in_page_text, strip_heading_markers,
)
from pdf_source import Bounds
from text_normalizer import fuzzy_match
from toc_resolver import ChapterCandidate, ChapterNumber, TocResult

logger = logging.getLogger(__name__)

# Page-based detection
MIN_PAGE_TEXT_LENGTH = 50
NEXT_PAGE_CONTEXT_LINES = 3
MIN_CONTENT_SENTENCE_LENGTH = 20

# Explicit-name occurrence scoring
OCCURRENCE_SCORE_WINDOW = 100
SUBSTANTIAL_LINE_LENGTH = 20
MIN_OCCURRENCE_CONTENT_LINES = 1
MIN_BODY_LINE_LENGTH = 10

# Pattern detection
FRONT_MATTER_CONTENT_LENGTH = 100
MIN_HEADING_LENGTH = 5
MAX_HEADING_LENGTH = 50
MIN_CHAPTER_CONTENT_LENGTH = 200
MIN_CHAPTER_LINE_LENGTH = 20
IMPLICIT_CHAPTER_LINE_LENGTH = 50

# Full-text fallback
FULL_TEXT_LINE_LENGTH = 50
FULL_TEXT_TITLE = "Full Text"

BIBLIOGRAPHY_RE = re.compile(r"\(\w+,|\d{4}\)|press|oxford|university|journal", re.IGNORECASE)
EXPLICIT_CHAPTER_RE = re.compile(
    r"^chapter\s+(\d+|one|two|three|four|five|six|seven|eight|nine|ten)\s*:?\s*", re.IGNORECASE
)
NUMBERED_CHAPTER_RE = re.compile(r"^(\d+)\.\s+([A-Za-z][a-zA-Z\s]{8,40})$")
FULL_TEXT_METADATA_RE = re.compile(
    r"^(isbn|copyright|typeset|printed|published|all rights|first published)", re.IGNORECASE
)
SENTENCE_SPLIT_RE = re.compile(r"[.!?]+\s+")


@dataclass
class SourceLine:
    """One trimmed, non-empty line of document text."""
    text: str
    page_number: Optional[int] = None


@dataclass
class PageText:
    """Cleaned, heading-marked text of one page inside a chapter."""
    page_number: int
    text: str
    bounds: Optional[Bounds] = None


@dataclass
class Chapter:
    """A detected chapter with either page data or flat content lines."""
    chapter_number: ChapterNumber
    title: str
    content: List[str] = field(default_factory=list)
    pages: List[PageText] = field(default_factory=list)
    starting_page: Optional[int] = None
    ending_page: Optional[int] = None

    @property
    def has_pages(self) -> bool:
        return bool(self.pages)

    def to_dict(self) -> Dict:
        return {
            'chapterNumber': self.chapter_number,
            'title': self.title,
            'contentLines': len(self.content),
            'pages': [p.page_number for p in self.pages],
            'startingPage': self.starting_page,
            'endingPage': self.ending_page,
        }


@dataclass
class DetectionInput:
    """
    Everything the strategies look at.

    `page_text` returns structured page text (LINE_BREAK separated) and is
    None when no page data is available.
    """
    lines: List[SourceLine]
    page_count: int
    toc: TocResult
    page_text: Optional[Callable[[int], str]] = None
    page_bounds: Optional[Callable[[int], Optional[Bounds]]] = None

    @classmethod
    def from_source(cls, source, toc: TocResult,
                    diagnostics: Optional[logging.Logger] = None) -> "DetectionInput":
        """Collect full-text lines (with their pages) from a layout source."""
        log = diagnostics or logger
        lines = []
        for page_number in range(1, source.page_count + 1):
            try:
                text = source.page_text(page_number)
            except Exception as e:
                log.warning(f"Could not read text of page {page_number}: {e}")
                continue
            for raw in text.split('\n'):
                line = raw.strip()
                if line:
                    lines.append(SourceLine(line, page_number))

        return cls(
            lines=lines,
            page_count=source.page_count,
            toc=toc,
            page_text=source.structured_page_text,
            page_bounds=source.page_bounds,
        )

    @property
    def line_texts(self) -> List[str]:
        return [line.text for line in self.lines]


@dataclass
class DetectionResult:
    """Chapters plus the name of the strategy that produced them."""
    strategy: str
    chapters: List[Chapter]


def _page_range(lines: List[SourceLine], start: int, end: int):
    """First and last known page among lines[start:end]."""
    pages = [line.page_number for line in lines[start:end] if line.page_number is not None]
    if not pages:
        return None, None
    return min(pages), max(pages)


class DetectionStrategy(ABC):
    """One step of the detection cascade."""

    name: str = "base"

    def __init__(self, diagnostics: Optional[logging.Logger] = None):
        self.log = diagnostics or logger

    @abstractmethod
    def detect(self, doc: DetectionInput, config: BookConfig) -> Optional[List[Chapter]]:
        """Return chapters, or None when this strategy does not apply."""


class TocStrategy(DetectionStrategy):
    """Chapters from table-of-contents page ranges."""

    name = "toc"

    def detect(self, doc: DetectionInput, config: BookConfig) -> Optional[List[Chapter]]:
        if not doc.toc.chapters or doc.page_text is None:
            return None

        candidates = self.content_candidates(doc.toc.chapters, config)
        if not candidates:
            self.log.info("TOC has no content chapters")
            return None

        chapters = []
        for i, candidate in enumerate(candidates):
            start = candidate.starting_page
            if start > doc.page_count:
                self.log.debug(f"TOC entry '{candidate.chapter_title}' starts past the last page")
                continue
            end = candidates[i + 1].starting_page - 1 if i + 1 < len(candidates) else doc.page_count
            end = min(end, doc.page_count)

            pages = self.collect_pages(doc, start, end)
            if not pages:
                self.log.debug(f"Omitting '{candidate.chapter_title}': no substantial pages in {start}-{end}")
                continue

            number = len(chapters) + 1 if config.has_chapter_names else candidate.chapter_number
            chapters.append(Chapter(
                chapter_number=number,
                title=candidate.chapter_title,
                content=self.content_lines(pages),
                pages=pages,
                starting_page=start,
                ending_page=end,
            ))

        return chapters or None

    @staticmethod
    def content_candidates(candidates: List[ChapterCandidate],
                           config: BookConfig) -> List[ChapterCandidate]:
        """
        Keep candidates that look like chapter content, ordered by page.

        A candidate needs a starting page and either a chapter number >= 0,
        an epilogue marker, or a title matching a configured chapter name.
        """
        def is_content(candidate: ChapterCandidate) -> bool:
            if not candidate.starting_page:
                return False
            if candidate.is_numbered or candidate.is_epilogue:
                return True
            title = candidate.chapter_title
            return any(
                title == name or name in title or title in name
                for name in config.chapter_names
            )

        kept = [c for c in candidates if is_content(c)]
        return sorted(kept, key=lambda c: c.starting_page)

    def collect_pages(self, doc: DetectionInput, start: int, end: int) -> List[PageText]:
        """Clean each page in [start, end]; keep those with substantial text."""
        pages = []
        for page_number in range(start, end + 1):
            try:
                structured = doc.page_text(page_number)
                next_context = ''
                if page_number < end:
                    next_lines = doc.page_text(page_number + 1).split(LINE_BREAK_MARKER)
                    next_context = LINE_BREAK_MARKER.join(next_lines[:NEXT_PAGE_CONTEXT_LINES])

                text = preserve_headings_in_page_text(structured, next_context)
                text = clean_page_numbers(text, page_number)
                bounds = doc.page_bounds(page_number) if doc.page_bounds else None
            except Exception as e:
                self.log.warning(f"Skipping page {page_number}: {e}")
                continue

            if len(text) > MIN_PAGE_TEXT_LENGTH:
                pages.append(PageText(page_number, text, bounds))
        return pages

    @staticmethod
    def content_lines(pages: List[PageText]) -> List[str]:
        """Sentence-ish content lines of a page-based chapter."""
        combined = re.sub(r"\s+", ' ', ' '.join(strip_heading_markers(p.text) for p in pages)).strip()
        lines = []
        for piece in SENTENCE_SPLIT_RE.split(combined):
            piece = piece.strip()
            if len(piece) > MIN_CONTENT_SENTENCE_LENGTH:
                lines.append(piece if piece.endswith('.') else piece + '.')
        return lines


class ExplicitNameStrategy(DetectionStrategy):
    """Chapters located by fuzzy-matching configured chapter names."""

    name = "explicit_names"

    def detect(self, doc: DetectionInput, config: BookConfig) -> Optional[List[Chapter]]:
        if not config.has_chapter_names:
            return None

        lines = doc.line_texts
        occurrences = self.find_occurrences(lines, config.chapter_names)
        winners = []
        for title in config.chapter_names:
            best = self.best_occurrence(lines, occurrences.get(title, []), config.chapter_names)
            if best is None:
                self.log.debug(f"Rejected all occurrences of '{title}': insufficient content")
                continue
            winners.append((best, title))

        winners.sort(key=lambda w: w[0])

        chapters = []
        for i, (start_line, title) in enumerate(winners):
            end_line = winners[i + 1][0] if i + 1 < len(winners) else len(lines)
            body = [
                line for line in lines[start_line + 1:end_line]
                if len(line) > MIN_BODY_LINE_LENGTH and not is_page_number(line) and not is_metadata_line(line)
            ]
            if not body:
                self.log.debug(f"Skipped chapter '{title}': no valid content lines")
                continue

            first_page, last_page = _page_range(doc.lines, start_line, end_line)
            chapters.append(Chapter(
                chapter_number=len(chapters) + 1,
                title=title,
                content=body,
                starting_page=first_page,
                ending_page=last_page,
            ))
            self.log.debug(f"Chapter '{title}' at line {start_line}: {len(body)} content lines")

        return chapters or None

    @staticmethod
    def find_occurrences(lines: List[str], names: List[str]) -> Dict[str, List[int]]:
        """
        Line indexes where each name occurs.

        Both single lines and two-line concatenations are checked, since
        titles are often split across a line break.
        """
        occurrences: Dict[str, List[int]] = {}
        for i, line in enumerate(lines):
            title = next((n for n in names if fuzzy_match(line, n)), None)
            if title:
                occurrences.setdefault(title, []).append(i)

            if i + 1 < len(lines):
                combined = f"{line} {lines[i + 1]}"
                title = next((n for n in names if fuzzy_match(combined, n)), None)
                if title and i not in occurrences.get(title, []):
                    occurrences.setdefault(title, []).append(i)
        return occurrences

    @staticmethod
    def score_occurrence(lines: List[str], index: int, names: List[str]) -> int:
        """Count substantial lines after an occurrence, up to the next chapter name."""
        score = 0
        for line in lines[index + 1:index + OCCURRENCE_SCORE_WINDOW]:
            if any(fuzzy_match(line, n) for n in names):
                break
            if len(line) > SUBSTANTIAL_LINE_LENGTH and not is_page_number(line):
                score += 1
        return score

    @classmethod
    def best_occurrence(cls, lines: List[str], indexes: List[int], names: List[str]) -> Optional[int]:
        """The occurrence with the most trailing content; ties keep the first."""
        best_index = None
        best_score = MIN_OCCURRENCE_CONTENT_LINES - 1
        for index in indexes:
            score = cls.score_occurrence(lines, index, names)
            if score > best_score:
                best_index, best_score = index, score
        return best_index


class PatternStrategy(DetectionStrategy):
    """Chapters opened by lines matching configured heading patterns."""

    name = "patterns"

    @staticmethod
    def is_chapter_heading(line: str, config: BookConfig) -> bool:
        """A heading-pattern match that is not page furniture or a reference."""
        if not config.matches_heading_pattern(line):
            return False
        if is_page_number(line) or PAGE_LABEL_RE.match(line) or is_metadata_line(line):
            return False
        if len(line) < MIN_HEADING_LENGTH or len(line) > MAX_HEADING_LENGTH:
            return False
        if ',' in line or ';' in line or line.endswith(('of', 'the', 'and')):
            return False
        return not BIBLIOGRAPHY_RE.search(line)

    @staticmethod
    def chapter_title(line: str, number: int) -> str:
        """Strip "Chapter N:" or "N." prefixes from a heading line."""
        match = EXPLICIT_CHAPTER_RE.match(line)
        if match:
            return line[match.end():].strip() or f"Chapter {number}"
        match = NUMBERED_CHAPTER_RE.match(line)
        if match:
            return match.group(2).strip()
        return line

    def detect(self, doc: DetectionInput, config: BookConfig) -> Optional[List[Chapter]]:
        if config.has_chapter_names:
            return None

        chapters: List[Chapter] = []
        current: Optional[Chapter] = None
        current_lines: List[int] = []
        content_started = not config.skip_front_matter

        def commit():
            if current is None or not current.content:
                return
            if len(' '.join(current.content)) <= MIN_CHAPTER_CONTENT_LENGTH:
                self.log.debug(f"Dropping '{current.title}': content below threshold")
                return
            first_page, last_page = _page_range(
                [doc.lines[i] for i in current_lines], 0, len(current_lines)
            )
            current.chapter_number = len(chapters) + 1
            current.starting_page, current.ending_page = first_page, last_page
            chapters.append(current)

        for index, source_line in enumerate(doc.lines):
            line = source_line.text

            if not content_started:
                if len(line) > FRONT_MATTER_CONTENT_LENGTH or config.matches_heading_pattern(line):
                    content_started = True
                else:
                    continue

            if config.matches_exclude_pattern(line):
                self.log.debug(f"Stopping at back matter: '{line}'")
                break

            if self.is_chapter_heading(line, config):
                commit()
                number = len(chapters) + 1
                current = Chapter(chapter_number=number, title=self.chapter_title(line, number))
                current_lines = [index]
            elif current is not None:
                if len(line) > MIN_CHAPTER_LINE_LENGTH and not is_metadata_line(line) \
                        and not is_page_number(line) and not PAGE_LABEL_RE.match(line):
                    current.content.append(line)
                    current_lines.append(index)
            elif len(line) > IMPLICIT_CHAPTER_LINE_LENGTH:
                current = Chapter(chapter_number=1, title="Chapter 1", content=[line])
                current_lines = [index]

        commit()
        return chapters or None


class FullTextStrategy(DetectionStrategy):
    """Single synthesized chapter from all substantial lines."""

    name = "full_text"

    def detect(self, doc: DetectionInput, config: BookConfig) -> Optional[List[Chapter]]:
        selected = [
            line for line in doc.lines
            if len(line.text) > FULL_TEXT_LINE_LENGTH
            and not FULL_TEXT_METADATA_RE.match(line.text)
            and not is_page_number(line.text)
        ]
        if not selected:
            return None

        self.log.warning("No chapters detected, creating a single Full Text chapter")
        first_page, last_page = _page_range(selected, 0, len(selected))
        return [Chapter(
            chapter_number=1,
            title=FULL_TEXT_TITLE,
            content=[line.text for line in selected],
            starting_page=first_page,
            ending_page=last_page,
        )]


class ChapterDetector:
    """
    Run the detection cascade.

    Example:
        detector = ChapterDetector()
        result = detector.detect(DetectionInput.from_source(source, toc), config)
    """

    def __init__(self, strategies: Optional[List[DetectionStrategy]] = None,
                 diagnostics: Optional[logging.Logger] = None):
        self.log = diagnostics or logger
        self.strategies = strategies or [
            TocStrategy(diagnostics),
            ExplicitNameStrategy(diagnostics),
            PatternStrategy(diagnostics),
            FullTextStrategy(diagnostics),
        ]

    def detect(self, doc: DetectionInput, config: BookConfig) -> DetectionResult:
        for strategy in self.strategies:
            chapters = strategy.detect(doc, config)
            if chapters:
                self.log.info(f"Detected {len(chapters)} chapters using {strategy.name}")
                return DetectionResult(strategy.name, chapters)
            self.log.debug(f"Strategy {strategy.name} found no chapters")

        self.log.warning("No chapters detected and no text for a fallback chapter")
        return DetectionResult("none", [])
