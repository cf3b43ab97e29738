#!/usr/bin/env python3
"""Shared helpers for the book structure parser."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List

# Markers threaded through page text between the cleaner and the chunker
LINE_BREAK_MARKER = " ⟨⟨LINE_BREAK⟩⟩ "
HEADING_OPEN = "⟨⟨HEADING⟩⟩"
HEADING_CLOSE = "⟨⟨/HEADING⟩⟩"

PAGE_NUMBER_RE = re.compile(r"^\d+$")
PAGE_LABEL_RE = re.compile(r"^page\s+\d+$", re.IGNORECASE)
METADATA_LINE_RE = re.compile(
    r"^(isbn|copyright|typeset|printed|published|all rights|first published|volume)",
    re.IGNORECASE,
)

ROMAN_VALUES = {"i": 1, "v": 5, "x": 10, "l": 50, "c": 100, "d": 500, "m": 1000}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_json(path: Path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def folder_name(title: str) -> str:
    """Images folder name for a book: every non-alphanumeric becomes a dash."""
    return re.sub(r"[^a-zA-Z0-9]", "-", title)


def split_words(text: str) -> List[str]:
    return [w for w in text.split() if w]


def count_words(text: str) -> int:
    return len(split_words(text))


def is_page_number(line: str) -> bool:
    return bool(PAGE_NUMBER_RE.match(line))


def is_metadata_line(line: str) -> bool:
    return bool(METADATA_LINE_RE.match(line))


def roman_to_int(value: str) -> int:
    """Convert a roman numeral (any case) to an integer. Returns 0 if invalid."""
    total = 0
    previous = 0
    for char in reversed(value.lower()):
        current = ROMAN_VALUES.get(char)
        if current is None:
            return 0
        if current < previous:
            total -= current
        else:
            total += current
            previous = current
    return total
