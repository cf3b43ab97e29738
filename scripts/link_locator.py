#!/usr/bin/env python3
"""
Internal link location, resolution and validation.

Links are read from page annotations, given visible text by intersecting the
annotation rectangle with the page's text items, and resolved to a target
chunk on the destination page. Resolution tiers, in order:

1. coordinate - destination point inside a chunk's estimated bounds (±50pt),
   nearest chunk center first
2. pattern - the link's search pattern matched against chunk text
3. text - literal link text contained in chunk text
4. fallback - first chunk on the destination page
"""

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from chunker import Chunk
from pdf_source import Bounds, LinkAnnotation, TextItem

logger = logging.getLogger(__name__)

DEFAULT_ITEM_HEIGHT = 12
COORDINATE_TOLERANCE = 50
MIN_DESTINATION_TEXT = 50
SHORT_LINK_TEXT = 3
FALLBACK_LINK_TEXT = "Link"
FOOTNOTE_MARK_RE = re.compile(r"^[0-9a-zA-Z*†‡§]+$")


class NavigationType(Enum):
    """How a reader should find the link destination."""
    COORDINATE = "coordinate"
    PATTERN = "pattern"
    TEXT_SEARCH = "text-search"


class LinkIssue(Enum):
    """Validation flags attached to links."""
    DESTINATION_PAGE_NOT_FOUND = "DESTINATION_PAGE_NOT_FOUND"
    DESTINATION_PAGE_EMPTY = "DESTINATION_PAGE_EMPTY"
    DESTINATION_PAGE_MINIMAL_CONTENT = "DESTINATION_PAGE_MINIMAL_CONTENT"
    EMPTY_LINK_TEXT = "EMPTY_LINK_TEXT"
    SELF_REFERENCING_LINK = "SELF_REFERENCING_LINK"


@dataclass
class ChunkTarget:
    """Where a link lands in the assembled book."""
    chapter_number: object
    chunk_index: int
    page_number: Optional[int]
    method: str

    def to_dict(self) -> Dict:
        return {
            'chapterNumber': self.chapter_number,
            'chunkIndex': self.chunk_index,
            'pageNumber': self.page_number,
            'method': self.method,
        }


@dataclass
class LinkRecord:
    """An internal link with its resolved target."""
    source_page: int
    text: str
    destination_page: int
    destination_coordinates: Optional[Dict] = None
    navigation_type: NavigationType = NavigationType.TEXT_SEARCH
    search_pattern: Optional[str] = None
    target_chunk: Optional[ChunkTarget] = None
    issues: List[LinkIssue] = field(default_factory=list)

    @property
    def destination_point(self) -> Optional[Tuple[float, float]]:
        if not self.destination_coordinates:
            return None
        return self.destination_coordinates['x'], self.destination_coordinates['y']

    def to_dict(self) -> Dict:
        d = {
            'sourcePage': self.source_page,
            'text': self.text,
            'destinationPage': self.destination_page,
            'navigationType': self.navigation_type.value,
            'searchPattern': self.search_pattern,
            'targetChunk': self.target_chunk.to_dict() if self.target_chunk else None,
            'issues': [issue.value for issue in self.issues],
        }
        if self.destination_coordinates:
            d['destinationCoordinates'] = self.destination_coordinates
        return d


@dataclass
class ChunkBox:
    """Estimated position of a chunk on its page."""
    chapter_number: object
    chunk: Chunk
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2

    def contains(self, x: float, y: float, tolerance: float = COORDINATE_TOLERANCE) -> bool:
        return (self.min_x - tolerance <= x <= self.max_x + tolerance
                and self.min_y - tolerance <= y <= self.max_y + tolerance)


def link_text_for_rect(rect: Tuple[float, float, float, float], items: List[TextItem]) -> str:
    """
    Text of the items overlapping a link rectangle, or "Link".

    Items are joined in extraction order with single spaces; word-level
    backends emit one item per word.
    """
    x0, y0, x1, y1 = rect
    overlapping = []
    for item in items:
        height = item.height or DEFAULT_ITEM_HEIGHT
        top = item.y - height
        if item.x < x1 and item.x + (item.width or 0) > x0 and top < y1 and item.y > y0:
            overlapping.append(item.text)
    return re.sub(r"\s+", " ", " ".join(overlapping)).strip() or FALLBACK_LINK_TEXT


def navigation_type_for(text: str, coordinates: Optional[Dict]) -> NavigationType:
    if coordinates:
        return NavigationType.COORDINATE
    stripped = text.strip() if text else ''
    if stripped and len(stripped) <= SHORT_LINK_TEXT and FOOTNOTE_MARK_RE.match(stripped):
        return NavigationType.PATTERN
    return NavigationType.TEXT_SEARCH


def search_pattern_for(text: str) -> Optional[str]:
    """
    Regex locating the link target in destination text.

    Short texts (footnote marks) must start a line and be followed by
    whitespace or punctuation; longer texts match literally.
    """
    if not text or not text.strip():
        return None
    clean = text.strip()
    if len(clean) <= SHORT_LINK_TEXT:
        return rf"^\s*{re.escape(clean)}[\s.):]"
    return re.escape(clean)


def build_link(annotation: LinkAnnotation, items: List[TextItem]) -> Optional[LinkRecord]:
    """Turn a link annotation into a record; None if its page is unresolved."""
    if annotation.destination_page is None:
        return None
    text = link_text_for_rect(annotation.rect, items)
    coordinates = None
    if annotation.destination_point is not None:
        x, y = annotation.destination_point
        coordinates = {'x': x, 'y': y, 'zoom': annotation.zoom or 0}
    return LinkRecord(
        source_page=annotation.source_page,
        text=text,
        destination_page=annotation.destination_page,
        destination_coordinates=coordinates,
        navigation_type=navigation_type_for(text, coordinates),
        search_pattern=search_pattern_for(text),
    )


def estimate_chunk_boxes(chunks: List[Tuple[object, Chunk]], bounds: Optional[Bounds]) -> List[ChunkBox]:
    """Split a page's text bounds into equal horizontal bands, one per chunk."""
    if not chunks or bounds is None:
        return []
    band = (bounds.max_y - bounds.min_y) / len(chunks)
    return [
        ChunkBox(
            chapter_number=chapter_number,
            chunk=chunk,
            min_x=bounds.min_x,
            max_x=bounds.max_x,
            min_y=bounds.min_y + i * band,
            max_y=bounds.min_y + (i + 1) * band,
        )
        for i, (chapter_number, chunk) in enumerate(chunks)
    ]


class LinkLocator:
    """Extract, resolve and validate internal links."""

    def __init__(self, diagnostics: Optional[logging.Logger] = None):
        self.log = diagnostics or logger

    def extract(self, source) -> List[LinkRecord]:
        """Read internal links from every page of a layout source."""
        links = []
        for page_number in range(1, source.page_count + 1):
            try:
                annotations = source.links(page_number)
                if not annotations:
                    continue
                items = source.page_items(page_number)
            except Exception as e:
                self.log.warning(f"Could not read links on page {page_number}: {e}")
                continue

            for annotation in annotations:
                link = build_link(annotation, items)
                if link is None:
                    self.log.debug(f"Dropping link on page {page_number}: unresolved destination")
                    continue
                links.append(link)

        self.log.info(f"Found {len(links)} internal links")
        return links

    def resolve(self, links: List[LinkRecord], chapters: Iterable[Tuple[object, List[Chunk]]],
                page_bounds=None) -> List[LinkRecord]:
        """
        Attach a target chunk to each link.

        Args:
            links: Extracted links
            chapters: (chapter_number, chunks) pairs of the assembled book
            page_bounds: Optional callable page_number -> Bounds for
                coordinate matching

        Returns:
            The same links with `target_chunk` set where the destination page
            holds chunks. Text chunks are preferred; an image-only page
            resolves to its first image.
        """
        by_page: Dict[int, List[Tuple[object, Chunk]]] = {}
        for chapter_number, chunks in chapters:
            for chunk in chunks:
                if chunk.page_number is not None:
                    by_page.setdefault(chunk.page_number, []).append((chapter_number, chunk))

        resolved = 0
        for link in links:
            on_page = by_page.get(link.destination_page, [])
            candidates = [c for c in on_page if not c[1].image_name] or on_page
            if not candidates:
                self.log.debug(f"No chunks on page {link.destination_page} for link '{link.text}'")
                continue
            bounds = page_bounds(link.destination_page) if page_bounds else None
            link.target_chunk = self._resolve_one(link, candidates, bounds)
            resolved += 1

        self.log.info(f"Resolved {resolved}/{len(links)} links to target chunks")
        return links

    def _resolve_one(self, link: LinkRecord, candidates: List[Tuple[object, Chunk]],
                     bounds: Optional[Bounds]) -> ChunkTarget:
        point = link.destination_point
        if point is not None:
            boxes = [b for b in estimate_chunk_boxes(candidates, bounds) if b.contains(*point)]
            if boxes:
                best = min(boxes, key=lambda b: math.dist(point, b.center))
                return self._target(best.chapter_number, best.chunk, "coordinate")

        if link.search_pattern:
            pattern = re.compile(link.search_pattern, re.IGNORECASE)
            for chapter_number, chunk in candidates:
                if pattern.search(chunk.text):
                    return self._target(chapter_number, chunk, "pattern")

        for chapter_number, chunk in candidates:
            if link.text and link.text in chunk.text:
                return self._target(chapter_number, chunk, "text")

        chapter_number, chunk = candidates[0]
        return self._target(chapter_number, chunk, "fallback")

    @staticmethod
    def _target(chapter_number, chunk: Chunk, method: str) -> ChunkTarget:
        return ChunkTarget(chapter_number, chunk.index, chunk.page_number, method)

    def validate(self, links: List[LinkRecord], page_texts: Dict[int, str]) -> List[LinkRecord]:
        """
        Flag questionable destinations.

        Args:
            links: Links to check
            page_texts: Text per page of the assembled book

        Returns:
            The same links with `issues` filled in
        """
        for link in links:
            issues = []
            if link.destination_page not in page_texts:
                issues.append(LinkIssue.DESTINATION_PAGE_NOT_FOUND)
            else:
                text = page_texts[link.destination_page]
                if not text.strip():
                    issues.append(LinkIssue.DESTINATION_PAGE_EMPTY)
                if len(text) < MIN_DESTINATION_TEXT:
                    issues.append(LinkIssue.DESTINATION_PAGE_MINIMAL_CONTENT)
            if not link.text or not link.text.strip():
                issues.append(LinkIssue.EMPTY_LINK_TEXT)
            if link.source_page == link.destination_page:
                issues.append(LinkIssue.SELF_REFERENCING_LINK)
            link.issues = issues

        invalid = sum(1 for link in links if LinkIssue.DESTINATION_PAGE_NOT_FOUND in link.issues)
        self.log.info(f"Validated links: {len(links) - invalid} valid, {invalid} with missing destination")
        return links
