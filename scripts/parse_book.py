#!/usr/bin/env python3
"""
PDF Book Structure Parser

Recovers chapters, headings and a page-correlated sequence of text, header
and image chunks from PDF e-books, and writes one JSON document per book.

Pipeline:
- table of contents from bookmarks or a printed contents page
- chapter detection (TOC, configured names, heading patterns, full text)
- page cleanup and heading marking
- sentence-aware chunking with cross-page sentence repair
- image and internal link correlation
- assembly into output.json plus a summary.json

Usage:
    python parse_book.py book.pdf -c config.json -o output.json
    python parse_book.py --batch books/ --resume
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import Dict, List, Optional

from assembler import (
    BookDocument, ChapterAssembler, extract_book_metadata, generate_parser_summary,
)
from book_common import folder_name, write_json
from book_config import BookConfig, load_config
from chapter_detector import ChapterDetector, DetectionInput, TocStrategy
from image_locator import BulkImageExtractor, ImageLocator
from link_locator import LinkLocator
from pdf_source import Backend, DependencyChecker, PDFSource
from toc_resolver import TocResolver

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "output.json"
SUMMARY_FILENAME = "summary.json"
CONFIG_FILENAME = "config.json"
PREFERRED_PDF_NAME = "book.pdf"
DEBUG_DIRNAME = "debug"
IMAGES_DIRNAME = "images"


def find_pdf_file(book_dir: Path) -> Optional[Path]:
    """The book's PDF: `book.pdf` if present, else the first PDF by name."""
    preferred = book_dir / PREFERRED_PDF_NAME
    if preferred.exists():
        return preferred
    pdfs = sorted(p for p in book_dir.iterdir() if p.suffix.lower() == ".pdf")
    return pdfs[0] if pdfs else None


def find_config_file(book_dir: Path) -> Optional[Path]:
    config_path = book_dir / CONFIG_FILENAME
    return config_path if config_path.exists() else None


class BookParser:
    """
    Runs the full pipeline for one book.

    Example:
        parser = BookParser()
        stats = parser.parse_to_file("book.pdf", "config.json", "output.json")
    """

    def __init__(self, extract_images: bool = True, extract_links: bool = True,
                 backend: Optional[str] = None, debug: bool = False,
                 image_extractor: Optional[BulkImageExtractor] = None,
                 diagnostics: Optional[logging.Logger] = None):
        """
        Args:
            extract_images: Allow image extraction (config may still disable it)
            extract_links: Allow link extraction (config may still disable it)
            backend: Layout backend overriding the config ("auto", "pymupdf",
                "pdfplumber")
            debug: Write per-stage JSON snapshots next to the PDF
            image_extractor: Bulk raster extractor (defaults to pdfimages)
            diagnostics: Logger for every pipeline stage
        """
        self.extract_images = extract_images
        self.extract_links = extract_links
        self.backend = backend
        self.debug = debug
        self.image_extractor = image_extractor
        self.log = diagnostics or logger

    def _snapshot(self, debug_dir: Optional[Path], name: str, payload) -> None:
        if debug_dir is None:
            return
        write_json(debug_dir / f"{name}.json", payload)
        self.log.debug(f"Wrote debug snapshot {name}.json")

    def parse(self, pdf_path: Path, config: BookConfig) -> BookDocument:
        """
        Parse one PDF into a book document.

        Raises:
            FileNotFoundError: If the PDF does not exist
            RuntimeError: If no layout backend can open it
        """
        pdf_path = Path(pdf_path)
        book_dir = pdf_path.parent
        debug_dir = book_dir / DEBUG_DIRNAME if self.debug else None
        backend = Backend(self.backend or config.backend)

        with PDFSource(str(pdf_path), backend, diagnostics=self.log) as source:
            metadata = extract_book_metadata(source.info(), pdf_path.name, config, source.page_count)
            self.log.info(f"Title: {metadata['title']} | Author: {metadata['author']}")

            # Table of contents
            toc = TocResolver(self.log).resolve(source)
            self._snapshot(debug_dir, "01-toc", toc.to_dict())

            # Chapters
            detection_input = DetectionInput.from_source(source, toc, self.log)
            detection = ChapterDetector(diagnostics=self.log).detect(detection_input, config)
            self._snapshot(debug_dir, "02-chapters", {
                'strategy': detection.strategy,
                'chapters': [c.to_dict() for c in detection.chapters],
            })

            # Images
            images = []
            images_folder_path = None
            if self.extract_images and config.extract_images:
                name = folder_name(metadata['title'])
                locator = ImageLocator(self.image_extractor, self.log)
                images = locator.locate(str(pdf_path), source.image_counts(), book_dir / IMAGES_DIRNAME / name)
                if images:
                    images_folder_path = f"./{IMAGES_DIRNAME}/{name}"
                self._snapshot(debug_dir, "03-images", [i.to_dict() for i in images])

            # Assembly
            document_pages = None
            if config.assembly_mode == "proportional":
                document_pages = TocStrategy(self.log).collect_pages(detection_input, 1, source.page_count)
            chapters = ChapterAssembler(config, self.log).assemble(detection.chapters, images, document_pages)

            document = BookDocument(
                book=metadata,
                chapters=chapters,
                images=images,
                images_folder_path=images_folder_path,
                toc_source=toc.source.value,
                detection_strategy=detection.strategy,
            )

            # Links
            if self.extract_links and config.extract_links:
                locator = LinkLocator(self.log)
                links = locator.extract(source)
                locator.resolve(links, [(c.chapter_number, c.chunks) for c in chapters], source.page_bounds)
                locator.validate(links, document.page_texts())
                document.links = links
                self._snapshot(debug_dir, "04-links", [link.to_dict() for link in links])

        return document

    def parse_to_file(self, pdf_path: Path, config_path: Optional[Path] = None,
                      output_path: Optional[Path] = None) -> Dict:
        """
        Parse a PDF and write output.json and summary.json.

        Returns:
            Stats dict with 'success' and 'error'; failures are logged, not raised
        """
        pdf_path = Path(pdf_path)
        output_path = Path(output_path) if output_path else pdf_path.parent / OUTPUT_FILENAME
        stats = {
            'pdf_path': str(pdf_path),
            'output_path': str(output_path),
            'chapters': 0,
            'words': 0,
            'images': 0,
            'links': 0,
            'success': False,
            'error': None,
        }

        try:
            self.log.info(f"\n{'='*80}")
            self.log.info(f"Parsing: {pdf_path.name}")
            self.log.info(f"{'='*80}")

            config = load_config(config_path)
            document = self.parse(pdf_path, config)

            write_json(output_path, document.to_dict())
            write_json(output_path.parent / SUMMARY_FILENAME, generate_parser_summary(document))

            stats.update({
                'chapters': len(document.chapters),
                'words': document.total_words,
                'images': document.total_images,
                'links': len(document.links),
                'success': True,
            })
            self.log.info(
                f"Parsed {pdf_path.name}: {stats['chapters']} chapters, "
                f"{stats['words']} words, {stats['images']} images, {stats['links']} links"
            )
            self.log.info(f"Output: {output_path}")

        except Exception as e:
            self.log.error(f"Error processing {pdf_path}: {e}")
            stats['error'] = str(e)
            stats['success'] = False

        return stats


def process_batch(batch_dir: Path, parser: BookParser, resume: bool = False) -> List[Dict]:
    """
    Parse every book folder under batch_dir, sequentially.

    Each sub-folder holding a PDF is one book; its optional config.json is
    used and output.json/summary.json are written beside the PDF.
    """
    batch_dir = Path(batch_dir)
    if not batch_dir.is_dir():
        logger.error(f"Batch directory not found or not a directory: {batch_dir}")
        return []

    book_dirs = []
    for sub in sorted(p for p in batch_dir.iterdir() if p.is_dir()):
        pdf = find_pdf_file(sub)
        if pdf is None:
            logger.debug(f"Skipping {sub.name}: no PDF")
            continue
        book_dirs.append((sub, pdf))

    total = len(book_dirs)
    logger.info(f"\n{'='*80}")
    logger.info(f"Found {total} book folder(s) in {batch_dir}")
    if resume:
        logger.info("RESUME MODE - Skipping already parsed books")
    logger.info(f"{'='*80}\n")

    all_stats = []
    skipped = 0
    for idx, (book_dir, pdf) in enumerate(book_dirs, 1):
        output_path = book_dir / OUTPUT_FILENAME
        if resume and output_path.exists():
            logger.info(f"[{idx}/{total}] Skipping {book_dir.name} (already parsed)")
            skipped += 1
            continue

        logger.info(f"[{idx}/{total}] {book_dir.name}")
        all_stats.append(parser.parse_to_file(pdf, find_config_file(book_dir), output_path))

    success_count = sum(1 for s in all_stats if s['success'])
    logger.info(f"\n{'='*80}")
    logger.info("SUMMARY REPORT")
    logger.info(f"{'='*80}")
    logger.info(f"Book folders found: {total}")
    logger.info(f"Successfully parsed: {success_count}")
    if skipped:
        logger.info(f"Skipped (already parsed): {skipped}")
    logger.info(f"Failed: {len(all_stats) - success_count}")

    failed = [s for s in all_stats if not s['success']]
    if failed:
        logger.warning("Failed books:")
        for stats in failed:
            logger.warning(f"  - {stats['pdf_path']}: {stats['error']}")

    return all_stats


def main():
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description='PDF Book Structure Parser',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Parse one book (output.json and summary.json next to the PDF)
  python parse_book.py books/dune/book.pdf

  # Parse with a config and an explicit output path
  python parse_book.py book.pdf -c config.json -o parsed.json

  # Parse every book folder, skipping ones already parsed
  python parse_book.py --batch books/ --resume

  # Text only, with per-stage debug snapshots
  python parse_book.py book.pdf --no-images --no-links --debug

  # Force the pdfplumber backend
  python parse_book.py book.pdf --backend pdfplumber
        """
    )

    parser.add_argument('input', nargs='?', help='PDF file to parse')
    parser.add_argument('-c', '--config', help='Book config JSON (default: config.json beside the PDF)')
    parser.add_argument('-o', '--output', help='Output JSON path (default: output.json beside the PDF)')
    parser.add_argument('--batch', metavar='DIR',
                        help='Parse every book folder under DIR')
    parser.add_argument('--resume', action='store_true',
                        help='In batch mode, skip folders that already have output.json')
    parser.add_argument('--no-images', action='store_true',
                        help='Skip image extraction')
    parser.add_argument('--no-links', action='store_true',
                        help='Skip internal link extraction')
    parser.add_argument('--backend', choices=[b.value for b in Backend],
                        help='PDF layout backend (default: from config, else auto)')
    parser.add_argument('--debug', action='store_true',
                        help='Write per-stage JSON snapshots to a debug/ folder')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose logging')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not DependencyChecker.get_available_backends():
        logger.error("No PDF layout library available!")
        logger.info("Install with: pip install pymupdf pdfplumber PyPDF2")
        sys.exit(1)

    book_parser = BookParser(
        extract_images=not args.no_images,
        extract_links=not args.no_links,
        backend=args.backend,
        debug=args.debug,
    )

    if args.batch:
        all_stats = process_batch(Path(args.batch), book_parser, resume=args.resume)
        sys.exit(0 if all(s['success'] for s in all_stats) else 1)

    if not args.input:
        parser.print_help()
        sys.exit(1)

    pdf_path = Path(args.input)
    config_path = Path(args.config) if args.config else find_config_file(pdf_path.parent)
    stats = book_parser.parse_to_file(pdf_path, config_path, Path(args.output) if args.output else None)

    if stats['success']:
        logger.info(f"\n{'='*80}")
        logger.info("Parsing completed successfully!")
        logger.info(f"{'='*80}")
        sys.exit(0)
    else:
        logger.error("Parsing failed!")
        sys.exit(1)


if __name__ == "__main__":
    main()
