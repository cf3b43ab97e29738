#!/usr/bin/env python3
"""
Heading detection and page boilerplate cleanup.

Works on page text rebuilt from positioned text items: lines are joined with
LINE_BREAK markers, headings are wrapped in HEADING markers so the chunker can
emit them as standalone header chunks, and leading page numbers are stripped.
"""

import re
from typing import List, Optional

from book_common import HEADING_CLOSE, HEADING_OPEN, LINE_BREAK_MARKER

# Abbreviations that end in a period without ending a sentence
COMMON_ABBREVIATIONS = [
    'Ph.D', 'M.D', 'Ph.D.', 'M.D.', 'B.A', 'B.A.', 'M.A', 'M.A.',
    'B.S', 'B.S.', 'M.S', 'M.S.', 'U.S', 'U.S.', 'U.K', 'U.K.',
    'Dr', 'Dr.', 'Mr', 'Mr.', 'Mrs', 'Mrs.', 'Ms', 'Ms.',
    'Prof', 'Prof.', 'vs', 'vs.', 'etc', 'etc.', 'i.e', 'i.e.',
    'e.g', 'e.g.', 'Inc', 'Inc.', 'Co', 'Co.', 'Corp', 'Corp.',
    'Ltd', 'Ltd.', 'St', 'St.', 'Ave', 'Ave.', 'Blvd', 'Blvd.',
]

# Abbreviations that may precede a heading on the previous line
HEADING_SAFE_ABBREVIATIONS = ['Dr', 'Mr', 'Mrs', 'Ms', 'Prof', 'etc', 'vs', 'cf']

ABBREVIATION_RE = re.compile(
    r"(?<![A-Za-z])(?:" + "|".join(
        re.escape(a) for a in sorted(set(COMMON_ABBREVIATIONS), key=len, reverse=True)
    ) + r")$",
    re.IGNORECASE,
)

INDEX_ENTRY_RE = re.compile(r"\b\d+[-–]\d+|\b\d+n\d+|\b\d+,\s*\d+|\s\d+$")
INDEX_SUBENTRY_RE = re.compile(r"^[A-Z]\)\s")
ORDINAL_PREFIX_RE = re.compile(r"^\d+\.?\s+")
CHEMICAL_SYMBOL_RE = re.compile(r"^[A-Z][a-z]?$")

FRONT_MATTER_PAGE_LIMIT = 20
FRONT_MATTER_ROMANS = [
    'i', 'ii', 'iii', 'iv', 'v', 'vi', 'vii', 'viii',
    'ix', 'x', 'xi', 'xii', 'xiii', 'xiv', 'xv',
]
PROSE_START_RE = re.compile(r"^(the|and|or|but|in|on|at|to|for|of|with|by)", re.IGNORECASE)

HEADING_SEARCH_WINDOW = 200
MIN_TEXT_AFTER_HEADING = 10


def ends_with_abbreviation(text: str) -> bool:
    """Check if text ends with a known abbreviation (case-insensitive)."""
    return bool(ABBREVIATION_RE.search(text.strip()))


def is_likely_heading(text: str, next_text: Optional[str] = None,
                      previous_text: Optional[str] = None) -> bool:
    """
    Classify a single line as a heading.

    Args:
        text: The candidate line
        next_text: The following line (or the next page's first line)
        previous_text: The preceding line, used to reject mid-sentence breaks

    Returns:
        True if the line reads as a heading in context
    """
    trimmed = text.strip()
    words = trimmed.split()

    if len(trimmed) < 3 or '@' in trimmed:
        return False

    if len(words) > 10 or re.search(r"[.!?;)@]$", trimmed) or not re.match(r"^[A-Z]", trimmed):
        return False

    # A heading cannot follow text that stops mid-sentence
    if previous_text and previous_text.strip():
        prev = previous_text.strip()
        if not re.search(r"[.!?;\d]$", prev):
            prev_lower = prev.lower()
            if not any(prev_lower.endswith(a.lower() + '.') for a in HEADING_SAFE_ABBREVIATIONS):
                return False

    if len(words) >= 2:
        first, second = words[0], words[1]
        # Split chemical formulas and subscripts: "C on", "Ca and", "CO 2"
        if len(first) <= 2 and CHEMICAL_SYMBOL_RE.match(first):
            if re.match(r"^[a-z]", second) or second.isdigit():
                return False

    if len(words) > 1 and len(words[0]) == 1 and words[0].isupper() and re.match(r"^[a-z]", words[1]):
        return False

    if INDEX_ENTRY_RE.search(trimmed) or INDEX_SUBENTRY_RE.match(trimmed):
        return False

    if trimmed == trimmed.upper() or trimmed.endswith(':') or ORDINAL_PREFIX_RE.match(trimmed):
        return True

    return len(words) <= 6 and bool(next_text) and bool(re.match(r"^[A-Z0-9]", next_text.strip()))


def split_structured_lines(page_text: str) -> List[str]:
    if not page_text:
        return []
    return page_text.split(LINE_BREAK_MARKER)


def preserve_headings_in_page_text(page_text: str, next_page_text: str = '') -> str:
    """
    Wrap heading lines in HEADING markers and flatten the page to one string.

    The last line of the page is judged against the next page's first line,
    since a page break often falls between a heading and its first paragraph.
    """
    lines = split_structured_lines(page_text)
    next_page_lines = split_structured_lines(next_page_text)
    processed = []

    for i, raw_line in enumerate(lines):
        line = raw_line.strip()
        if not line:
            continue

        next_line = lines[i + 1] if i + 1 < len(lines) else None
        previous_line = lines[i - 1] if i > 0 else None
        if i == len(lines) - 1 and next_page_lines:
            next_line = next_page_lines[0].strip()

        if is_likely_heading(line, next_line, previous_line):
            processed.append(f"{HEADING_OPEN}{line}{HEADING_CLOSE}")
        else:
            processed.append(line)

    return ' '.join(processed)


def clean_page_numbers(text: str, page_number: Optional[int] = None) -> str:
    """
    Strip a running page number from the start of page text.

    Book page numbers are assumed to trail the PDF page index by one. On
    front-matter pages a leading roman numeral is also removed when the rest
    still reads as prose.
    """
    if not page_number:
        return text

    book_page_number = page_number - 1
    if book_page_number >= 1:
        text = re.sub(rf"^\s*{book_page_number}\s+", '', text, count=1)

    if page_number <= FRONT_MATTER_PAGE_LIMIT:
        for roman in FRONT_MATTER_ROMANS:
            roman_re = re.compile(rf"^\s*{roman}\s+", re.IGNORECASE)
            if roman_re.match(text):
                remainder = roman_re.sub('', text, count=1)
                if re.match(r"^[A-Z]", remainder) or PROSE_START_RE.match(remainder):
                    text = remainder
                    break

    return text


def clean_chapter_heading(text: str, title: str) -> str:
    """
    Remove the chapter title from the start of chapter text.

    Args:
        text: Text of the chapter's first chunk or page
        title: Chapter title

    Returns:
        Text with the title span removed, or the original text when the title
        is not found near the start or too little would remain.
    """
    normalized_title = re.sub(r"[:?]", '', title).upper()
    if not normalized_title:
        return text

    position = text.upper().find(normalized_title)
    if position == -1 or position >= HEADING_SEARCH_WINDOW:
        return text

    combined = (text[:position] + text[position + len(normalized_title):]).strip()
    if len(combined) <= MIN_TEXT_AFTER_HEADING:
        return text

    # "I n the beginning" -> "In the beginning"
    return re.sub(r"^([A-Za-z])\s+([a-z])", r"\1\2", combined, count=1).strip()


def strip_heading_markers(text: str) -> str:
    return text.replace(HEADING_OPEN, '').replace(HEADING_CLOSE, '')
