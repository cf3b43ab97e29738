#!/usr/bin/env python3
"""
Page-aware semantic chunking.

Splits chapter text into short, sentence-respecting units for playback.
Heading-marked spans become standalone header chunks that are never merged.
Chunks are immutable; the only change after creation is re-indexing, which
produces copies.
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from book_common import HEADING_CLOSE, HEADING_OPEN, count_words, split_words
from heading_detector import ends_with_abbreviation, is_likely_heading

DEFAULT_MIN_WORDS = 5
DEFAULT_MAX_WORDS = 15
SMALL_CHUNK_WORDS = 10
VERY_SMALL_CHUNK_WORDS = 5
VERY_SMALL_SLACK = 5

HEADING_SPAN_RE = re.compile(re.escape(HEADING_OPEN) + r"(.*?)" + re.escape(HEADING_CLOSE))
SENTENCE_END_RE = re.compile(r"[.!?]+$")
SHORT_WORD_PERIOD_RE = re.compile(r"\b(\w{1,3})\.$")


class ChunkType(Enum):
    """Kinds of content units."""
    TEXT = "text"
    HEADER = "header"
    IMAGE = "image"


@dataclass(frozen=True)
class Chunk:
    """One ordered content unit of a chapter."""
    type: ChunkType
    page_number: Optional[int] = None
    text: str = ""
    index: int = 0
    image_name: Optional[str] = None
    image_alt: Optional[str] = None

    @property
    def word_count(self) -> int:
        return count_words(self.text) if self.type != ChunkType.IMAGE else 0

    @property
    def is_header(self) -> bool:
        return self.type == ChunkType.HEADER

    @property
    def is_text(self) -> bool:
        return self.type == ChunkType.TEXT

    def to_dict(self) -> Dict:
        """Serialize with only the fields this chunk's type implies."""
        d = {'index': self.index, 'type': self.type.value, 'pageNumber': self.page_number}
        if self.type == ChunkType.IMAGE:
            d['imageName'] = self.image_name
            d['imageAlt'] = self.image_alt
        else:
            d['text'] = self.text
            d['wordCount'] = self.word_count
        return d


def text_chunk(text: str, page_number: Optional[int] = None) -> Chunk:
    return Chunk(type=ChunkType.TEXT, page_number=page_number, text=text)


def header_chunk(text: str, page_number: Optional[int] = None) -> Chunk:
    return Chunk(type=ChunkType.HEADER, page_number=page_number, text=text)


def image_chunk(image_name: str, image_alt: str, page_number: Optional[int]) -> Chunk:
    return Chunk(type=ChunkType.IMAGE, page_number=page_number,
                 image_name=image_name, image_alt=image_alt)


def reindex(chunks: List[Chunk]) -> List[Chunk]:
    """Assign contiguous zero-based indices in list order."""
    return [replace(chunk, index=i) for i, chunk in enumerate(chunks)]


def _is_sentence_end(word: str, sentence: str, next_word: Optional[str]) -> bool:
    """
    Whether `word` closes `sentence`.

    A known abbreviation followed by a lowercase word does not end the
    sentence ("the U.S. government").
    """
    if not SENTENCE_END_RE.search(word):
        return False
    next_is_lower = bool(next_word) and bool(re.match(r"^[a-z]", next_word))
    return not (ends_with_abbreviation(sentence) and next_is_lower)


def split_sentences(text: str) -> List[Tuple[str, bool]]:
    """
    Split text into (sentence, is_heading) pairs.

    Heading-marked spans come out as single heading entries in place.
    """
    pieces: List[Tuple[str, bool]] = []
    position = 0
    for match in HEADING_SPAN_RE.finditer(text):
        pieces.extend((s, False) for s in _split_plain_sentences(text[position:match.start()]))
        heading = match.group(1).strip()
        if heading:
            pieces.append((heading, True))
        position = match.end()
    pieces.extend((s, False) for s in _split_plain_sentences(text[position:]))
    return pieces


def _split_plain_sentences(text: str) -> List[str]:
    words = split_words(text)
    sentences = []
    current: List[str] = []
    for i, word in enumerate(words):
        current.append(word)
        next_word = words[i + 1] if i + 1 < len(words) else None
        if _is_sentence_end(word, ' '.join(current), next_word):
            sentences.append(' '.join(current))
            current = []
    if current:
        sentences.append(' '.join(current))
    return sentences


def chunk_text(text: str, min_words: int = DEFAULT_MIN_WORDS, max_words: int = DEFAULT_MAX_WORDS,
               page_number: Optional[int] = None) -> List[Chunk]:
    """
    Split text into bounded, sentence-respecting chunks.

    Args:
        text: Chapter or page text, possibly with HEADING markers
        min_words: A chunk is emitted as soon as it reaches this many words
        max_words: A sentence that would push a chunk past this starts a new one
        page_number: Page recorded on every produced chunk

    Returns:
        Text and header chunks in reading order (indices all zero; callers
        re-index the final list)
    """
    chunks: List[Chunk] = []
    current: List[str] = []
    current_words = 0

    def flush():
        nonlocal current, current_words
        if current:
            chunks.append(text_chunk(' '.join(current), page_number))
        current, current_words = [], 0

    for sentence, is_heading in split_sentences(text):
        if is_heading:
            flush()
            chunks.append(header_chunk(sentence, page_number))
            continue

        sentence_words = count_words(sentence)
        if current and current_words + sentence_words > max_words:
            flush()

        current.append(sentence)
        current_words += sentence_words

        if current_words >= min_words:
            flush()

    flush()
    return merge_small_chunks(chunks, max_words)


def merge_small_chunks(chunks: List[Chunk], max_words: int = DEFAULT_MAX_WORDS) -> List[Chunk]:
    """
    Fold chunks under SMALL_CHUNK_WORDS words into a neighbour.

    The following chunk is preferred, then the preceding one, as long as the
    result stays within max_words (plus slack for very small chunks). A very
    small chunk that fits neither is merged regardless of size. Headers are
    never merged in or out.
    """
    merged: List[Chunk] = []
    i = 0
    while i < len(chunks):
        chunk = chunks[i]
        if chunk.is_header or chunk.word_count >= SMALL_CHUNK_WORDS:
            merged.append(chunk)
            i += 1
            continue

        very_small = chunk.word_count <= VERY_SMALL_CHUNK_WORDS
        limit = max_words + VERY_SMALL_SLACK if very_small else max_words
        following = chunks[i + 1] if i + 1 < len(chunks) else None
        previous = merged[-1] if merged else None
        can_take_following = following is not None and not following.is_header
        can_join_previous = previous is not None and previous.is_text

        if can_take_following and chunk.word_count + following.word_count <= limit:
            merged.append(_join(chunk, following))
            i += 2
        elif can_join_previous and previous.word_count + chunk.word_count <= limit:
            merged[-1] = _join(previous, chunk)
            i += 1
        elif very_small and can_take_following:
            merged.append(_join(chunk, following))
            i += 2
        elif very_small and can_join_previous:
            merged[-1] = _join(previous, chunk)
            i += 1
        else:
            merged.append(chunk)
            i += 1
    return merged


def _join(first: Chunk, second: Chunk) -> Chunk:
    return replace(first, text=f"{first.text} {second.text}")


def should_merge_sentence(first: Chunk, second: Chunk) -> bool:
    """
    Whether `second` continues a sentence left open at the end of `first`.

    True when first does not end in terminal punctuation and second starts
    lowercase, or when first ends in an abbreviation-like period ("U.S.")
    and second starts lowercase. Headers and heading-like seconds never merge.
    """
    if not (first.is_text and second.is_text):
        return False

    first_text = first.text.strip()
    second_text = second.text.strip()
    if not first_text or not second_text:
        return False

    if is_likely_heading(second_text, None, first_text):
        return False

    starts_lower = bool(re.match(r"[a-z]", second_text[0]))
    if not starts_lower:
        return False

    if not re.search(r"[.!?;:]$", first_text):
        return True

    if first_text.endswith('.'):
        return bool(SHORT_WORD_PERIOD_RE.search(first_text)) or ends_with_abbreviation(first_text)

    return False


def _sentence_completing_prefix(text: str) -> Tuple[str, str]:
    """Split text after its first sentence end: (prefix, remainder)."""
    words = split_words(text)
    for i, word in enumerate(words):
        next_word = words[i + 1] if i + 1 < len(words) else None
        if _is_sentence_end(word, ' '.join(words[:i + 1]), next_word):
            return ' '.join(words[:i + 1]), ' '.join(words[i + 1:])
    return ' '.join(words), ''


def merge_split_sentences(chunks: List[Chunk]) -> List[Chunk]:
    """
    Repair sentences broken by a page turn.

    For adjacent text chunks on consecutive pages where the sentence runs on,
    the completing prefix of the second chunk is appended to the first (which
    keeps its page number) and any remainder becomes a new chunk on the
    second chunk's page.

    Returns:
        Re-indexed chunk list
    """
    result: List[Chunk] = []
    for chunk in chunks:
        previous = result[-1] if result else None
        if (previous is not None
                and previous.page_number is not None and chunk.page_number is not None
                and chunk.page_number == previous.page_number + 1
                and should_merge_sentence(previous, chunk)):
            prefix, remainder = _sentence_completing_prefix(chunk.text)
            result[-1] = replace(previous, text=f"{previous.text} {prefix}")
            if remainder:
                result.append(replace(chunk, text=remainder))
            continue
        result.append(chunk)
    return reindex(result)
