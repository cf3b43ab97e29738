#!/usr/bin/env python3
"""
Per-book parser configuration.

A book folder may carry a `config.json` with explicit chapter names, heading
patterns and metadata overrides. Keys use the camelCase spelling of the JSON
file; missing keys fall back to DEFAULT_CONFIG. Unknown keys (such as the
legacy `chapterNumbering`) are ignored.
"""

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Union

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "chapterNames": [],
    "chapterPatterns": [
        r"^chapter\s+(\d+|one|two|three|four|five|six|seven|eight|nine|ten)\b",
        r"^(\d+)\.\s+([A-Za-z][a-zA-Z\s]{8,40})$",
        r"^(introduction|conclusion|epilogue|prologue|preface|foreword|afterword)$",
        r"^[A-Z\s]{5,30}$",
    ],
    "excludePatterns": [
        r"^(appendix|bibliography|index|notes|references|acknowledgements|about the author|glossary)$",
    ],
    "skipFrontMatter": True,
    "metadata": {"title": None, "author": None, "description": None},
    "minWords": 5,
    "maxWords": 15,
    "assemblyMode": "auto",
    "extractImages": True,
    "extractLinks": True,
    "backend": "auto",
}

ASSEMBLY_MODES = ("auto", "proportional")
BACKEND_NAMES = ("auto", "pymupdf", "pdfplumber")


@dataclass
class BookMetadataOverrides:
    """Metadata values that take precedence over the PDF info dictionary."""
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None


@dataclass
class BookConfig:
    """Resolved configuration for one book."""
    chapter_names: List[str] = field(default_factory=list)
    chapter_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_CONFIG["chapterPatterns"]))
    exclude_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_CONFIG["excludePatterns"]))
    skip_front_matter: bool = True
    metadata: BookMetadataOverrides = field(default_factory=BookMetadataOverrides)
    min_words: int = 5
    max_words: int = 15
    assembly_mode: str = "auto"
    extract_images: bool = True
    extract_links: bool = True
    backend: str = "auto"

    def __post_init__(self):
        self.compiled_chapter_patterns: List[Pattern] = [
            _compile(p, "chapterPatterns") for p in self.chapter_patterns
        ]
        self.compiled_exclude_pattern: Optional[Pattern] = (
            _compile("|".join(self.exclude_patterns), "excludePatterns")
            if self.exclude_patterns else None
        )
        if self.assembly_mode not in ASSEMBLY_MODES:
            raise ValueError(f"assemblyMode must be one of {ASSEMBLY_MODES}, got {self.assembly_mode!r}")
        if self.backend not in BACKEND_NAMES:
            raise ValueError(f"backend must be one of {BACKEND_NAMES}, got {self.backend!r}")
        if self.min_words < 1 or self.max_words < self.min_words:
            raise ValueError(f"Invalid word bounds: minWords={self.min_words}, maxWords={self.max_words}")

    @property
    def has_chapter_names(self) -> bool:
        return bool(self.chapter_names)

    def matches_heading_pattern(self, line: str) -> bool:
        return any(p.search(line) for p in self.compiled_chapter_patterns)

    def matches_exclude_pattern(self, line: str) -> bool:
        return bool(self.compiled_exclude_pattern and self.compiled_exclude_pattern.search(line))

    @classmethod
    def from_dict(cls, data: Dict) -> "BookConfig":
        """Build a config from a camelCase dict merged over the defaults."""
        merged = copy.deepcopy(DEFAULT_CONFIG)
        merged.update({k: v for k, v in data.items() if k != "metadata"})
        merged["metadata"].update(data.get("metadata") or {})

        return cls(
            chapter_names=list(merged["chapterNames"] or []),
            chapter_patterns=list(merged["chapterPatterns"] or []),
            exclude_patterns=list(merged["excludePatterns"] or []),
            skip_front_matter=bool(merged["skipFrontMatter"]),
            metadata=BookMetadataOverrides(
                title=merged["metadata"].get("title"),
                author=merged["metadata"].get("author"),
                description=merged["metadata"].get("description"),
            ),
            min_words=int(merged["minWords"]),
            max_words=int(merged["maxWords"]),
            assembly_mode=merged["assemblyMode"],
            extract_images=bool(merged["extractImages"]),
            extract_links=bool(merged["extractLinks"]),
            backend=merged["backend"],
        )


def _compile(pattern: str, key: str) -> Pattern:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ValueError(f"Invalid regex in {key}: {pattern!r} ({e})") from e


def load_config(config_path: Optional[Union[str, Path]] = None) -> BookConfig:
    """
    Load a book config.

    Args:
        config_path: Path to config.json, or None for defaults

    Returns:
        BookConfig merged over the defaults

    Raises:
        FileNotFoundError: If a path is given but does not exist
        ValueError: If the file is not valid JSON or holds invalid values
    """
    if config_path is None:
        logger.debug("No config given, using defaults")
        return BookConfig.from_dict({})

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config {path} must hold a JSON object")

    config = BookConfig.from_dict(data)
    logger.info(f"Loaded config: {path.name} "
                f"({len(config.chapter_names)} chapter names, "
                f"{len(config.chapter_patterns)} patterns)")
    return config
