#!/usr/bin/env python3
"""
Text normalization and tolerant title matching.

PDF extraction mangles titles in predictable ways: curly quotes, stray
backslashes from JSON configs, trailing page numbers picked up from TOC
leaders, and leading characters dropped when a drop-cap is rendered as a
separate glyph. `fuzzy_match` absorbs all of these and errs toward recall.
"""

import re

CURLY_DOUBLE_QUOTES = re.compile(r"[“”″‶]")
CURLY_SINGLE_QUOTES = re.compile(r"[‘’]")
TRAILING_PAGE_REF = re.compile(r"\s+(ix|xi{1,3}|[0-9]+)\s*$", re.IGNORECASE)

# Titles at or below these lengths only match exactly / by prefix
MIN_CONTAINED_TITLE_LENGTH = 10
MIN_PARTIAL_TITLE_LENGTH = 8
MAX_SKIPPED_LEADING_CHARS = 3


def normalize_text(text: str) -> str:
    """
    Canonicalize a line or title for comparison.

    Collapses whitespace, straightens quotes and apostrophes, removes
    backslashes and drops a trailing standalone page number or short roman
    numeral.
    """
    text = re.sub(r"\s+", " ", text)
    text = CURLY_DOUBLE_QUOTES.sub('"', text)
    text = CURLY_SINGLE_QUOTES.sub("'", text)
    text = text.replace("\\", "")
    text = TRAILING_PAGE_REF.sub("", text)
    return text.strip()


def fuzzy_match(line: str, title: str) -> bool:
    """
    Check whether a PDF line is an occurrence of a chapter title.

    Args:
        line: Raw line from the PDF text
        title: Configured or detected chapter title

    Returns:
        True if the normalized line equals, starts with or (for long titles)
        contains the normalized title, or matches it with up to three leading
        characters lost.
    """
    normalized_line = normalize_text(line)
    normalized_title = normalize_text(title)

    if not normalized_title:
        return False

    if normalized_line == normalized_title:
        return True

    if normalized_line.startswith(normalized_title):
        return True

    if len(normalized_title) > MIN_CONTAINED_TITLE_LENGTH and normalized_title in normalized_line:
        return True

    if len(normalized_title) > MIN_CONTAINED_TITLE_LENGTH:
        for skip in range(1, MAX_SKIPPED_LEADING_CHARS + 1):
            partial = normalized_title[skip:]
            if len(partial) <= MIN_PARTIAL_TITLE_LENGTH:
                break
            if normalized_line == partial or normalized_line.startswith(partial):
                return True

    return False
