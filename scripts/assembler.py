#!/usr/bin/env python3
"""
Chunk-to-Chapter Assembly

Turns detected chapters, image records and links into the final book
document. Three paths produce a chapter's chunk list:

- page-based: chunk each page, strip the chapter heading from the first
  chunk, repair sentences broken by page turns, then emit each page's text
  followed by its images
- flat: chunk the chapter's content lines and spread page numbers across its
  page range
- proportional: chunk the whole document, start each chapter at its title
  chunk and split the chunks of chapters without one evenly (only when
  configured)

Every path ends with a re-indexing pass so chunk indices are contiguous.
"""

import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from book_common import utc_now_iso
from book_config import BookConfig
from chapter_detector import Chapter, PageText
from chunker import Chunk, chunk_text, image_chunk, merge_split_sentences, reindex
from heading_detector import clean_chapter_heading
from image_locator import PLACEHOLDER_SUFFIX, ImageRecord
from link_locator import LinkRecord
from pdf_source import DocumentInfo
from toc_resolver import ChapterNumber

logger = logging.getLogger(__name__)

LANGUAGE = "en-US"
UNKNOWN_AUTHOR = "Unknown Author"


@dataclass
class AssembledChapter:
    """A chapter with its final, ordered chunk list."""
    chapter_number: ChapterNumber
    title: str
    chunks: List[Chunk] = field(default_factory=list)
    starting_page: Optional[int] = None
    ending_page: Optional[int] = None

    @property
    def word_count(self) -> int:
        return sum(chunk.word_count for chunk in self.chunks if chunk.is_text)

    @property
    def image_count(self) -> int:
        """Extracted images only; placeholder slots are not counted."""
        return sum(1 for chunk in self.chunks
                   if chunk.image_name and not chunk.image_name.endswith(PLACEHOLDER_SUFFIX))

    @property
    def page_range(self) -> Optional[str]:
        if self.starting_page is None or self.ending_page is None:
            return None
        return f"{self.starting_page}-{self.ending_page}"

    def to_dict(self) -> Dict:
        d = {
            'chapterNumber': self.chapter_number,
            'title': self.title,
            'wordCount': self.word_count,
        }
        if self.starting_page is not None:
            d['startingPage'] = self.starting_page
        if self.ending_page is not None:
            d['endingPage'] = self.ending_page
        d['content'] = {'chunks': [chunk.to_dict() for chunk in self.chunks]}
        return d


def title_case(title: str) -> str:
    """Capitalize every word; `__` separates title from subtitle."""
    parts = []
    for part in title.split('__'):
        words = [w for w in re.split(r"[-_\s]+", part) if w]
        parts.append(' '.join(w[0].upper() + w[1:].lower() for w in words))
    return ': '.join(p for p in parts if p)


def extract_book_metadata(info: DocumentInfo, filename: str, config: BookConfig,
                          page_count: int = 0) -> Dict:
    """
    Book-level metadata.

    Title comes from config, else the PDF info title, else the file name.
    Titles not taken from config are title-cased. Author falls back from
    config to info author to info creator.
    """
    overrides = config.metadata
    if overrides.title:
        title = overrides.title
    else:
        title = title_case(info.title or Path(filename).stem)

    author = overrides.author or info.author or info.creator or UNKNOWN_AUTHOR

    return {
        'title': title,
        'author': author,
        'description': overrides.description or f"Book parsed from PDF: {filename}",
        'language': LANGUAGE,
        'isPublic': True,
        'pageCount': page_count,
        'filename': filename,
    }


def assign_images(chapters: List[Chapter], images: List[ImageRecord],
                  log: Optional[logging.Logger] = None) -> Dict[int, List[ImageRecord]]:
    """
    Map chapter position -> images whose page falls in its range.

    An image on a page shared by two chapters goes to the first one.
    """
    log = log or logger
    assigned: Dict[int, List[ImageRecord]] = defaultdict(list)
    for image in images:
        owner = next(
            (i for i, c in enumerate(chapters)
             if c.starting_page is not None and c.ending_page is not None
             and c.starting_page <= image.page_number <= c.ending_page),
            None,
        )
        if owner is None:
            log.debug(f"Image {image.image_name} on page {image.page_number} is outside every chapter")
            continue
        assigned[owner].append(image)
    return assigned


def _image_chunks(images: List[ImageRecord]) -> List[Chunk]:
    return [image_chunk(i.image_name, i.image_alt, i.page_number) for i in images]


def estimate_page_numbers(chunks: List[Chunk], starting_page: Optional[int],
                          ending_page: Optional[int]) -> List[Chunk]:
    """Spread chunks evenly over a page range, earliest pages first."""
    if not chunks or starting_page is None or ending_page is None:
        return chunks
    page_span = ending_page - starting_page + 1
    per_page = max(1, math.ceil(len(chunks) / page_span))
    return [
        replace(chunk, page_number=min(starting_page + i // per_page, ending_page))
        for i, chunk in enumerate(chunks)
    ]


def insert_images_by_page(chunks: List[Chunk], images: List[ImageRecord]) -> List[Chunk]:
    """Place each image after the last chunk whose page is not past the image's page."""
    result = list(chunks)
    for image in sorted(images, key=lambda i: i.page_number):
        position = 0
        for i, chunk in enumerate(result):
            if chunk.page_number is not None and chunk.page_number <= image.page_number:
                position = i + 1
        result.insert(position, image_chunk(image.image_name, image.image_alt, image.page_number))
    return result


def split_evenly(total: int, parts: int) -> List[Tuple[int, int]]:
    """(start, end) slices of `total` items over `parts`; earliest parts take the remainder."""
    if parts <= 0:
        return []
    base, remainder = divmod(total, parts)
    slices = []
    start = 0
    for i in range(parts):
        size = base + (1 if i < remainder else 0)
        slices.append((start, start + size))
        start += size
    return slices


def find_chapter_anchors(chunks: List[Chunk], chapters: List[Chapter],
                         log: Optional[logging.Logger] = None) -> List[Optional[int]]:
    """
    Index of the chunk each chapter starts at, or None when its title is not found.

    A header chunk equal to the title (ignoring case) wins over a chunk that
    merely contains it; the earliest of either kind is taken and later
    occurrences are references. An anchor at or after a later chapter's
    anchor is a bibliography or index mention and is dropped.
    """
    log = log or logger
    anchors: List[Optional[int]] = []
    for chapter in chapters:
        title = chapter.title.strip().casefold()
        if not title:
            anchors.append(None)
            continue
        headers = [i for i, c in enumerate(chunks) if c.is_header and c.text.strip().casefold() == title]
        mentions = [i for i, c in enumerate(chunks) if not c.image_name and title in c.text.casefold()]
        hits = headers or mentions
        if len(hits) > 1:
            log.debug(f"Chapter '{chapter.title}' found at chunk {hits[0]}; later hits {hits[1:]} are references")
        anchors.append(hits[0] if hits else None)

    later_start = None
    for position in range(len(anchors) - 1, -1, -1):
        anchor = anchors[position]
        if anchor is None:
            continue
        if later_start is not None and anchor >= later_start:
            log.debug(f"Chapter '{chapters[position].title}' at chunk {anchor} follows a later chapter; ignoring it")
            anchors[position] = None
        else:
            later_start = anchor
    return anchors


def anchored_slices(anchors: List[Optional[int]], total: int) -> List[Tuple[int, int]]:
    """
    (start, end) chunk slices per chapter from its anchor.

    Unanchored chapters before the first anchor share the chunks ahead of it;
    unanchored chapters after an anchored one share that chapter's region up
    to the next anchor. Shares are even, earliest chapters taking the
    remainder. Without any anchor the whole list is split evenly.
    """
    kept = [position for position, anchor in enumerate(anchors) if anchor is not None]
    if not kept:
        return split_evenly(total, len(anchors))

    slices: List[Tuple[int, int]] = []
    first = kept[0]
    slices.extend(split_evenly(anchors[first], first))

    bounds = kept + [len(anchors)]
    for group_start, group_end in zip(bounds, bounds[1:]):
        region_start = anchors[group_start]
        region_end = anchors[group_end] if group_end < len(anchors) else total
        region = split_evenly(region_end - region_start, group_end - group_start)
        slices.extend((region_start + start, region_start + end) for start, end in region)
    return slices


class ChapterAssembler:
    """
    Build final chapter chunk lists.

    Example:
        assembler = ChapterAssembler(config)
        chapters = assembler.assemble(detected, images)
    """

    def __init__(self, config: BookConfig, diagnostics: Optional[logging.Logger] = None):
        self.config = config
        self.log = diagnostics or logger

    def chunk_page(self, page: PageText) -> List[Chunk]:
        return chunk_text(page.text, self.config.min_words, self.config.max_words, page.page_number)

    def assemble(self, chapters: List[Chapter], images: List[ImageRecord],
                 document_pages: Optional[List[PageText]] = None) -> List[AssembledChapter]:
        """
        Assemble every chapter.

        Args:
            chapters: Detected chapters in reading order
            images: Image records for the whole document
            document_pages: Cleaned text of every page, used by the
                proportional mode

        Returns:
            Assembled chapters with re-indexed chunks
        """
        if self.config.assembly_mode == "proportional":
            if document_pages:
                return self.assemble_proportional(chapters, document_pages, images)
            self.log.warning("Proportional assembly needs page text; using per-chapter assembly")

        assigned = assign_images(chapters, images, self.log)
        assembled = []
        for position, chapter in enumerate(chapters):
            chapter_images = assigned.get(position, [])
            if chapter.has_pages:
                result = self.assemble_from_pages(chapter, chapter_images)
            else:
                result = self.assemble_from_content(chapter, chapter_images)
            self.log.info(
                f"Chapter {chapter.chapter_number}: '{chapter.title}' - "
                f"{len(result.chunks)} chunks, {result.word_count} words"
            )
            assembled.append(result)
        return assembled

    def assemble_from_pages(self, chapter: Chapter, images: List[ImageRecord]) -> AssembledChapter:
        """Page-based path: text chunks per page, then that page's images."""
        text_chunks: List[Chunk] = []
        for i, page in enumerate(chapter.pages):
            page_chunks = self.chunk_page(page)
            if i == 0 and page_chunks and page_chunks[0].is_text:
                first = page_chunks[0]
                page_chunks[0] = replace(first, text=clean_chapter_heading(first.text, chapter.title))
            text_chunks.extend(page_chunks)

        text_chunks = merge_split_sentences(text_chunks)

        by_page: Dict[int, List[Chunk]] = defaultdict(list)
        for chunk in text_chunks:
            by_page[chunk.page_number].append(chunk)
        images_by_page: Dict[int, List[ImageRecord]] = defaultdict(list)
        for image in images:
            images_by_page[image.page_number].append(image)

        ordered: List[Chunk] = []
        for page_number in sorted(set(by_page) | set(images_by_page)):
            ordered.extend(by_page.get(page_number, []))
            ordered.extend(_image_chunks(images_by_page.get(page_number, [])))

        return AssembledChapter(
            chapter_number=chapter.chapter_number,
            title=chapter.title,
            chunks=reindex(ordered),
            starting_page=chapter.starting_page,
            ending_page=chapter.ending_page,
        )

    def assemble_from_content(self, chapter: Chapter, images: List[ImageRecord]) -> AssembledChapter:
        """Flat path: chunk content lines, estimate pages, slot images in by page."""
        chunks = chunk_text(' '.join(chapter.content), self.config.min_words, self.config.max_words)
        chunks = estimate_page_numbers(chunks, chapter.starting_page, chapter.ending_page)
        chunks = insert_images_by_page(chunks, images)
        return AssembledChapter(
            chapter_number=chapter.chapter_number,
            title=chapter.title,
            chunks=reindex(chunks),
            starting_page=chapter.starting_page,
            ending_page=chapter.ending_page,
        )

    def assemble_proportional(self, chapters: List[Chapter], document_pages: List[PageText],
                              images: List[ImageRecord]) -> List[AssembledChapter]:
        """Chunk the whole document and cut it at each chapter's title, spreading the rest evenly."""
        images_by_page: Dict[int, List[ImageRecord]] = defaultdict(list)
        for image in images:
            images_by_page[image.page_number].append(image)

        all_chunks: List[Chunk] = []
        for page in sorted(document_pages, key=lambda p: p.page_number):
            all_chunks.extend(self.chunk_page(page))
            all_chunks.extend(_image_chunks(images_by_page.pop(page.page_number, [])))
        all_chunks = merge_split_sentences(all_chunks)

        anchors = find_chapter_anchors(all_chunks, chapters, self.log)
        found = sum(1 for anchor in anchors if anchor is not None)
        if found < len(chapters):
            self.log.warning(
                f"Proportional assembly: {len(chapters) - found} of {len(chapters)} chapter titles not found; "
                f"their boundaries are approximate"
            )
        slices = anchored_slices(anchors, len(all_chunks))

        assembled = []
        for chapter, (start, end) in zip(chapters, slices):
            chunks = reindex(all_chunks[start:end])
            pages = [c.page_number for c in chunks if c.page_number is not None]
            assembled.append(AssembledChapter(
                chapter_number=chapter.chapter_number,
                title=chapter.title,
                chunks=chunks,
                starting_page=min(pages) if pages else None,
                ending_page=max(pages) if pages else None,
            ))
        return assembled


@dataclass
class BookDocument:
    """The parser's output document."""
    book: Dict
    chapters: List[AssembledChapter]
    links: List[LinkRecord] = field(default_factory=list)
    images: List[ImageRecord] = field(default_factory=list)
    images_folder_path: Optional[str] = None
    toc_source: str = "none"
    detection_strategy: str = "none"
    parsing_date: str = field(default_factory=utc_now_iso)

    @property
    def total_words(self) -> int:
        return sum(chapter.word_count for chapter in self.chapters)

    @property
    def total_images(self) -> int:
        return sum(chapter.image_count for chapter in self.chapters)

    @property
    def cover_image(self) -> Optional[str]:
        return next((image.image_name for image in self.images if not image.placeholder), None)

    def page_texts(self) -> Dict[int, str]:
        """Text carried by each page across all chapters; image-only pages map to ''."""
        texts: Dict[int, List[str]] = defaultdict(list)
        for chapter in self.chapters:
            for chunk in chapter.chunks:
                if chunk.page_number is None:
                    continue
                parts = texts[chunk.page_number]
                if not chunk.image_name:
                    parts.append(chunk.text)
        return {page: ' '.join(parts) for page, parts in texts.items()}

    def to_dict(self) -> Dict:
        total_chapters = len(self.chapters)
        total_words = self.total_words
        total_images = self.total_images
        book = dict(self.book)
        book.update({
            'totalChapters': total_chapters,
            'totalWords': total_words,
            'coverImage': self.cover_image,
        })
        return {
            'book': book,
            'chapters': [chapter.to_dict() for chapter in self.chapters],
            'links': [link.to_dict() for link in self.links],
            'metadata': {
                'totalChapters': total_chapters,
                'totalWords': total_words,
                'avgWordsPerChapter': round(total_words / total_chapters) if total_chapters else 0,
                'hasImages': total_images > 0,
                'totalImages': total_images,
                'imagesFolderPath': self.images_folder_path,
                'tocSource': self.toc_source,
                'detectionStrategy': self.detection_strategy,
                'parsingDate': self.parsing_date,
            },
        }


def generate_parser_summary(document: BookDocument) -> Dict:
    """Processing summary written next to the output document."""
    link_counts: Dict[object, int] = defaultdict(int)
    for link in document.links:
        if link.target_chunk is not None:
            link_counts[link.target_chunk.chapter_number] += 1

    return {
        'book': {
            'title': document.book.get('title'),
            'author': document.book.get('author'),
            'pageCount': document.book.get('pageCount'),
            'filename': document.book.get('filename'),
        },
        'processing': {
            'timestamp': document.parsing_date,
            'totalChapters': len(document.chapters),
            'totalChunks': sum(len(c.chunks) for c in document.chapters),
            'totalWords': document.total_words,
            'totalImages': document.total_images,
            'totalLinks': len(document.links),
        },
        'chapters': [
            {
                'number': chapter.chapter_number,
                'title': chapter.title,
                'wordCount': chapter.word_count,
                'chunkCount': len(chapter.chunks),
                'pageRange': chapter.page_range,
                'imageCount': chapter.image_count,
                'linkCount': link_counts.get(chapter.chapter_number, 0),
            }
            for chapter in document.chapters
        ],
    }
