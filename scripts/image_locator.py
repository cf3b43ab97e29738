#!/usr/bin/env python3
"""
Image location and correlation.

Two independent signals are reconciled:
- per-page image-draw counts from the layout engine (where images are)
- a flat, ordered file list from poppler's `pdfimages -all` (the rasters)

Files are consumed in document order: page 1's N images take the first N
files, and so on. Detected slots left without a file become placeholder
records so no image silently disappears.
"""

import logging
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

PDFIMAGES_BINARY = "pdfimages"
EXTRACTED_FILE_RE = re.compile(r"^image.*\.(jpg|jpeg|png|ppm|pbm)$", re.IGNORECASE)
EXTRACTED_NAME_RE = re.compile(r"^page-\d{3}-image-\d+\.jpg$")
JPEG_QUALITY = 90
PLACEHOLDER_SUFFIX = ".placeholder"


@dataclass
class ImageRecord:
    """An image slot on a page, extracted or placeholder."""
    page_number: int
    image_name: str
    image_alt: str
    placeholder: bool = False
    original_name: Optional[str] = None

    def to_dict(self) -> Dict:
        d = {
            'pageNumber': self.page_number,
            'imageName': self.image_name,
            'imageAlt': self.image_alt,
        }
        if self.placeholder:
            d['placeholder'] = True
        else:
            d['originalName'] = self.original_name
            d['extracted'] = True
        return d


def extracted_image_name(page_number: int, page_index: int) -> str:
    return f"page-{page_number:03d}-image-{page_index}.jpg"


def placeholder_image_name(page_number: int, page_index: int) -> str:
    return f"page-{page_number}-image-{page_index}{PLACEHOLDER_SUFFIX}"


def _natural_key(name: str):
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", name)]


def reconcile_images(page_counts: Dict[int, int], files: List[str],
                     detection_only: bool = False) -> List[ImageRecord]:
    """
    Assign extracted files to detected image slots in document order.

    Args:
        page_counts: Image draws per 1-based page
        files: Extracted file names in extraction order
        detection_only: The extraction tool failed; every slot is a placeholder

    Returns:
        One record per detected slot, ordered by page then position
    """
    records = []
    remaining = iter([] if detection_only else files)
    figure = 0
    suffix = "Detection only" if detection_only else "Not extracted"

    for page_number in sorted(page_counts):
        for page_index in range(1, page_counts[page_number] + 1):
            figure += 1
            alt = f"Figure {figure} (Page {page_number})"
            file_name = next(remaining, None)
            if file_name is not None:
                records.append(ImageRecord(
                    page_number=page_number,
                    image_name=extracted_image_name(page_number, page_index),
                    image_alt=alt,
                    original_name=file_name,
                ))
            else:
                records.append(ImageRecord(
                    page_number=page_number,
                    image_name=placeholder_image_name(page_number, page_index),
                    image_alt=f"{alt} - {suffix}",
                    placeholder=True,
                ))
    return records


def export_image(source: Path, destination: Path) -> None:
    """Write an extracted raster as JPEG; copy the raw file if Pillow can't read it."""
    from PIL import Image, UnidentifiedImageError

    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        with Image.open(source) as img:
            img.convert("RGB").save(destination, "JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning(f"Could not convert {source.name} to JPEG ({e}), copying raw file")
        shutil.copyfile(source, destination)


class BulkImageExtractor:
    """Runs `pdfimages -all` into a working directory."""

    def __init__(self, binary: str = PDFIMAGES_BINARY):
        self.binary = binary

    def extract(self, pdf_path: str, work_dir: Path) -> List[Path]:
        """
        Extract every raster of the document into work_dir.

        Raises:
            OSError: If the binary is missing
            subprocess.CalledProcessError: If extraction fails
        """
        subprocess.run(
            [self.binary, "-all", str(pdf_path), str(work_dir / "image")],
            check=True,
            capture_output=True,
        )
        files = [p for p in work_dir.iterdir() if EXTRACTED_FILE_RE.match(p.name)]
        return sorted(files, key=lambda p: _natural_key(p.name))


class ImageLocator:
    """Locate images per page and export extracted rasters."""

    def __init__(self, extractor: Optional[BulkImageExtractor] = None,
                 diagnostics: Optional[logging.Logger] = None):
        self.extractor = extractor or BulkImageExtractor()
        self.log = diagnostics or logger

    def locate(self, pdf_path: str, page_counts: Dict[int, int],
               images_dir: Optional[Path] = None) -> List[ImageRecord]:
        """
        Build image records for a document.

        Args:
            pdf_path: Path to the PDF
            page_counts: Image draws per page (see PDFSource.image_counts)
            images_dir: Where to write extracted JPEGs; None skips writing

        Returns:
            Image records in document order
        """
        total_detected = sum(page_counts.values())
        if total_detected == 0:
            self.log.info("No images detected")
            return []

        with tempfile.TemporaryDirectory(prefix="pdfimages-") as tmp:
            work_dir = Path(tmp)
            try:
                files = self.extractor.extract(pdf_path, work_dir)
            except (OSError, subprocess.CalledProcessError) as e:
                self.log.warning(f"Bulk image extraction failed ({e}), recording placeholders only")
                return reconcile_images(page_counts, [], detection_only=True)

            if len(files) == total_detected:
                self.log.info(f"Extracted {len(files)} images, matching detected count")
            else:
                self.log.warning(
                    f"Detected {total_detected} images but extracted {len(files)} files; "
                    f"assigning in document order"
                )

            records = reconcile_images(page_counts, [f.name for f in files])
            if images_dir is not None:
                for record in records:
                    if not record.placeholder:
                        export_image(work_dir / record.original_name, images_dir / record.image_name)

        placeholders = sum(1 for r in records if r.placeholder)
        self.log.info(f"Images: {len(records) - placeholders} extracted, {placeholders} placeholders")
        return records
