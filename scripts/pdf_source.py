#!/usr/bin/env python3
"""
PDF Layout Source

Thin access layer over the PDF layout engine. Everything above this module
works with plain dataclasses (positioned text items, outline entries, link
annotations, per-page image counts) and never touches a PDF library directly.

Backends (in order of preference):
1. PyMuPDF (fitz) - text spans with baselines, outline, links, image draws
2. pdfplumber + PyPDF2 - word geometry from pdfplumber, outline, link
   annotations and document info from PyPDF2

Coordinates use a top-left origin in PDF points for both backends.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from book_common import LINE_BREAK_MARKER

logger = logging.getLogger(__name__)

# Items whose baselines differ by at most this many points share a line
LINE_Y_TOLERANCE = 5


class Backend(Enum):
    """Available layout backends."""
    PYMUPDF = "pymupdf"
    PDFPLUMBER = "pdfplumber"
    AUTO = "auto"


@dataclass
class TextItem:
    """A run of text with its position on the page."""
    text: str
    x: float
    y: float
    width: float
    height: float

    @property
    def x1(self) -> float:
        return self.x + self.width


@dataclass
class OutlineEntry:
    """One flattened bookmark. `page` is 1-based, None when unresolvable."""
    level: int
    title: str
    page: Optional[int]


@dataclass
class LinkAnnotation:
    """An internal link annotation on a page."""
    source_page: int
    rect: Tuple[float, float, float, float]
    destination_page: Optional[int]
    destination_point: Optional[Tuple[float, float]] = None
    zoom: Optional[float] = None


@dataclass
class DocumentInfo:
    """Document information dictionary values that the parser uses."""
    title: Optional[str] = None
    author: Optional[str] = None
    creator: Optional[str] = None


@dataclass
class Bounds:
    """Bounding box of a page's text."""
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    def to_dict(self) -> Dict:
        return {'minX': self.min_x, 'maxX': self.max_x, 'minY': self.min_y, 'maxY': self.max_y}


class DependencyChecker:
    """Check and report on available layout libraries."""

    _cache: Dict[str, bool] = {}

    @classmethod
    def check(cls, library: str) -> bool:
        """Check if a library is available."""
        if library in cls._cache:
            return cls._cache[library]

        available = False
        try:
            if library == "pymupdf":
                import fitz  # noqa: F401
                available = True
            elif library == "pdfplumber":
                import pdfplumber  # noqa: F401
                available = True
            elif library == "pypdf2":
                from PyPDF2 import PdfReader  # noqa: F401
                available = True
            elif library == "pillow":
                from PIL import Image  # noqa: F401
                available = True
        except ImportError:
            available = False

        cls._cache[library] = available
        return available

    @classmethod
    def check_all(cls) -> Dict[str, bool]:
        """Check all dependencies and return status."""
        return {name: cls.check(name) for name in ("pymupdf", "pdfplumber", "pypdf2", "pillow")}

    @classmethod
    def get_available_backends(cls) -> List[Backend]:
        """Get list of usable layout backends."""
        backends = []
        if cls.check("pymupdf"):
            backends.append(Backend.PYMUPDF)
        if cls.check("pdfplumber") and cls.check("pypdf2"):
            backends.append(Backend.PDFPLUMBER)
        return backends


def _as_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def group_items_into_lines(items: List[TextItem],
                           tolerance: float = LINE_Y_TOLERANCE) -> List[str]:
    """
    Group text items into lines by vertical position.

    Items are consumed in reading order; a new line starts whenever the
    rounded baseline moves by more than `tolerance` points.
    """
    lines = []
    current: List[str] = []
    last_y = None

    for item in items:
        y = round(item.y)
        if last_y is not None and abs(y - last_y) > tolerance and current:
            lines.append(' '.join(current).strip())
            current = []
        if item.text.strip():
            current.append(item.text)
        last_y = y

    if current:
        lines.append(' '.join(current).strip())

    return [line for line in lines if line]


def combine_items_preserving_structure(items: List[TextItem]) -> str:
    """Join page items into one string with LINE_BREAK markers between lines."""
    return LINE_BREAK_MARKER.join(group_items_into_lines(items)).strip()


def coordinate_bounds(items: List[TextItem]) -> Optional[Bounds]:
    """Bounding box of all non-empty items, or None for an empty page."""
    items = [item for item in items if item.text.strip()]
    if not items:
        return None
    return Bounds(
        min_x=min(item.x for item in items),
        max_x=max(item.x1 for item in items),
        min_y=min(item.y - item.height for item in items),
        max_y=max(item.y for item in items),
    )


class BaseLayoutBackend(ABC):
    """Abstract base class for layout backends."""

    backend_name: str = "base"

    @property
    @abstractmethod
    def page_count(self) -> int:
        """Number of pages in the open document."""

    @abstractmethod
    def page_items(self, page_number: int) -> List[TextItem]:
        """Positioned text runs on a 1-based page, in reading order."""

    @abstractmethod
    def page_text(self, page_number: int) -> str:
        """Plain text of a 1-based page."""

    @abstractmethod
    def outline(self) -> List[OutlineEntry]:
        """Flattened bookmark tree in document order."""

    @abstractmethod
    def image_count(self, page_number: int) -> int:
        """Number of image draws on a 1-based page."""

    @abstractmethod
    def links(self, page_number: int) -> List[LinkAnnotation]:
        """Internal link annotations on a 1-based page."""

    @abstractmethod
    def info(self) -> DocumentInfo:
        """Document information dictionary."""

    def close(self):
        pass


class PyMuPDFBackend(BaseLayoutBackend):
    """Layout access using PyMuPDF (fitz)."""

    backend_name = "pymupdf"

    def __init__(self, pdf_path: str):
        if not DependencyChecker.check("pymupdf"):
            raise ImportError("PyMuPDF not available")
        import fitz
        self.fitz = fitz
        self.doc = fitz.open(pdf_path)

    @property
    def page_count(self) -> int:
        return self.doc.page_count

    def page_items(self, page_number: int) -> List[TextItem]:
        page = self.doc[page_number - 1]
        items = []
        for block in page.get_text("dict")["blocks"]:
            if block.get("type") != 0:
                continue
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    x0, y0, x1, y1 = span["bbox"]
                    items.append(TextItem(
                        text=span["text"],
                        x=x0,
                        y=span.get("origin", (x0, y1))[1],
                        width=x1 - x0,
                        height=(y1 - y0) or span.get("size", 12),
                    ))
        return items

    def page_text(self, page_number: int) -> str:
        return self.doc[page_number - 1].get_text("text")

    def outline(self) -> List[OutlineEntry]:
        entries = []
        for level, title, page in self.doc.get_toc(simple=True):
            entries.append(OutlineEntry(level=level, title=title, page=page if page > 0 else None))
        return entries

    def image_count(self, page_number: int) -> int:
        return len(self.doc[page_number - 1].get_image_info())

    def links(self, page_number: int) -> List[LinkAnnotation]:
        page = self.doc[page_number - 1]
        annotations = []
        for link in page.get_links():
            if link.get("kind") not in (self.fitz.LINK_GOTO, self.fitz.LINK_NAMED):
                continue
            if link.get("uri"):
                continue
            target = link.get("page", -1)
            point = link.get("to")
            rect = link["from"]
            annotations.append(LinkAnnotation(
                source_page=page_number,
                rect=(rect.x0, rect.y0, rect.x1, rect.y1),
                destination_page=target + 1 if isinstance(target, int) and target >= 0 else None,
                destination_point=(point.x, point.y) if point is not None else None,
                zoom=link.get("zoom") or None,
            ))
        return annotations

    def info(self) -> DocumentInfo:
        metadata = self.doc.metadata or {}
        return DocumentInfo(
            title=metadata.get("title") or None,
            author=metadata.get("author") or None,
            creator=metadata.get("creator") or None,
        )

    def close(self):
        self.doc.close()


class PdfPlumberBackend(BaseLayoutBackend):
    """Layout access using pdfplumber for geometry and PyPDF2 for structure."""

    backend_name = "pdfplumber"

    def __init__(self, pdf_path: str):
        if not DependencyChecker.check("pdfplumber"):
            raise ImportError("pdfplumber not available")
        if not DependencyChecker.check("pypdf2"):
            raise ImportError("PyPDF2 not available")
        import pdfplumber
        from PyPDF2 import PdfReader

        self.pdf = pdfplumber.open(pdf_path)
        self.reader = PdfReader(pdf_path)
        if self.reader.is_encrypted:
            self.reader.decrypt('')
        self._page_index = {
            page.indirect_reference.idnum: i
            for i, page in enumerate(self.reader.pages)
            if page.indirect_reference is not None
        }

    @property
    def page_count(self) -> int:
        return len(self.pdf.pages)

    def page_items(self, page_number: int) -> List[TextItem]:
        page = self.pdf.pages[page_number - 1]
        return [
            TextItem(
                text=word["text"],
                x=word["x0"],
                y=word["bottom"],
                width=word["x1"] - word["x0"],
                height=word["bottom"] - word["top"],
            )
            for word in page.extract_words(use_text_flow=True)
        ]

    def page_text(self, page_number: int) -> str:
        return self.pdf.pages[page_number - 1].extract_text() or ""

    def outline(self) -> List[OutlineEntry]:
        entries: List[OutlineEntry] = []
        self._flatten_outline(self.reader.outline, 1, entries)
        return entries

    def _flatten_outline(self, nodes, level: int, entries: List[OutlineEntry]):
        for node in nodes:
            if isinstance(node, list):
                self._flatten_outline(node, level + 1, entries)
                continue
            try:
                page = self.reader.get_destination_page_number(node) + 1
            except Exception as e:
                logger.debug(f"Unresolvable bookmark '{node.title}': {e}")
                page = None
            entries.append(OutlineEntry(level=level, title=str(node.title), page=page))

    def image_count(self, page_number: int) -> int:
        return len(self.pdf.pages[page_number - 1].images)

    def links(self, page_number: int) -> List[LinkAnnotation]:
        page = self.reader.pages[page_number - 1]
        page_height = float(page.mediabox.height)
        annotations = []

        for ref in page.get("/Annots") or []:
            annot = ref.get_object()
            if annot.get("/Subtype") != "/Link":
                continue
            action = annot.get("/A")
            action = action.get_object() if action is not None else None
            if action is not None and "/URI" in action:
                continue
            dest = annot.get("/Dest")
            if dest is None and action is not None and action.get("/S") == "/GoTo":
                dest = action.get("/D")
            if dest is None:
                continue

            target_page, point, zoom = self._resolve_destination(dest.get_object() if hasattr(dest, "get_object") else dest)
            x0, y0, x1, y1 = (float(v) for v in annot["/Rect"])
            annotations.append(LinkAnnotation(
                source_page=page_number,
                rect=(min(x0, x1), page_height - max(y0, y1), max(x0, x1), page_height - min(y0, y1)),
                destination_page=target_page,
                destination_point=point,
                zoom=zoom,
            ))
        return annotations

    def _resolve_destination(self, dest):
        """Resolve a named or explicit destination to (page, point, zoom)."""
        if isinstance(dest, str):
            named = self.reader.named_destinations.get(str(dest))
            if named is None:
                return None, None, None
            try:
                page_index = self.reader.get_destination_page_number(named)
            except Exception:
                return None, None, None
            top = _as_float(named.get("/Top"))
            point = None
            if top is not None:
                height = float(self.reader.pages[page_index].mediabox.height)
                point = (_as_float(named.get("/Left")) or 0.0, height - top)
            return page_index + 1, point, None

        if not dest:
            return None, None, None
        page_ref = dest[0]
        page_index = self._page_index.get(getattr(page_ref, "idnum", None))
        if page_index is None and isinstance(page_ref, int):
            page_index = page_ref
        if page_index is None:
            return None, None, None

        point = None
        zoom = None
        if len(dest) >= 5 and dest[1] == "/XYZ":
            top = _as_float(dest[3])
            if top is not None:
                height = float(self.reader.pages[page_index].mediabox.height)
                point = (_as_float(dest[2]) or 0.0, height - top)
            zoom = _as_float(dest[4]) or None
        return page_index + 1, point, zoom

    def info(self) -> DocumentInfo:
        metadata = self.reader.metadata
        if metadata is None:
            return DocumentInfo()
        return DocumentInfo(
            title=metadata.title or None,
            author=metadata.author or None,
            creator=metadata.creator or None,
        )

    def close(self):
        self.pdf.close()


class PDFSource:
    """
    Open PDF document with backend selection and per-page caching.

    Use as a context manager:

        with PDFSource("book.pdf") as source:
            items = source.page_items(1)
    """

    BACKENDS = {
        Backend.PYMUPDF: PyMuPDFBackend,
        Backend.PDFPLUMBER: PdfPlumberBackend,
    }

    def __init__(self, pdf_path: str, backend: Backend = Backend.AUTO,
                 diagnostics: Optional[logging.Logger] = None):
        """
        Open a PDF for layout access.

        Args:
            pdf_path: Path to the PDF file
            backend: Backend to use (AUTO prefers PyMuPDF)
            diagnostics: Logger receiving progress and fallback messages
        """
        self.log = diagnostics or logger
        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")

        self.pdf_path = pdf_path
        self.backend = self._open_backend(pdf_path, backend)
        self._items_cache: Dict[int, List[TextItem]] = {}
        self.log.info(f"Opened {os.path.basename(pdf_path)}: "
                      f"{self.page_count} pages via {self.backend.backend_name}")

    def _open_backend(self, pdf_path: str, backend: Backend) -> BaseLayoutBackend:
        available = DependencyChecker.get_available_backends()
        if not available:
            raise RuntimeError("No PDF layout backend available. Install: pip install pymupdf")

        if backend != Backend.AUTO:
            if backend not in available:
                raise ValueError(f"Requested backend {backend.value} not available")
            return self.BACKENDS[backend](pdf_path)

        last_error = None
        for candidate in available:
            try:
                return self.BACKENDS[candidate](pdf_path)
            except Exception as e:
                self.log.warning(f"Failed to open with {candidate.value}: {e}")
                last_error = e
        raise RuntimeError(f"Could not open {pdf_path}: {last_error}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.backend.close()

    @property
    def page_count(self) -> int:
        return self.backend.page_count

    def page_items(self, page_number: int) -> List[TextItem]:
        if page_number not in self._items_cache:
            self._items_cache[page_number] = self.backend.page_items(page_number)
        return self._items_cache[page_number]

    def page_text(self, page_number: int) -> str:
        return self.backend.page_text(page_number)

    def structured_page_text(self, page_number: int) -> str:
        """Page text with LINE_BREAK markers between visual lines."""
        return combine_items_preserving_structure(self.page_items(page_number))

    def page_lines(self, page_number: int) -> List[str]:
        return group_items_into_lines(self.page_items(page_number))

    def page_bounds(self, page_number: int) -> Optional[Bounds]:
        return coordinate_bounds(self.page_items(page_number))

    def outline(self) -> List[OutlineEntry]:
        return self.backend.outline()

    def info(self) -> DocumentInfo:
        return self.backend.info()

    def links(self, page_number: int) -> List[LinkAnnotation]:
        return self.backend.links(page_number)

    def image_counts(self) -> Dict[int, int]:
        """Image draw counts keyed by 1-based page, pages without images omitted."""
        counts = {}
        for page_number in range(1, self.page_count + 1):
            try:
                count = self.backend.image_count(page_number)
            except Exception as e:
                self.log.warning(f"Could not count images on page {page_number}: {e}")
                continue
            if count > 0:
                counts[page_number] = count
        return counts
