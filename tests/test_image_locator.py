"""
Tests for image detection/extraction reconciliation.

The pdfimages subprocess is never run; extraction is replaced by fakes or a
monkeypatched subprocess.run.
"""

import subprocess

import pytest

import image_locator
from image_locator import (
    EXTRACTED_NAME_RE,
    BulkImageExtractor,
    ImageLocator,
    extracted_image_name,
    placeholder_image_name,
    reconcile_images,
)


class FakeExtractor:
    """Writes the given raster files into the work directory."""

    def __init__(self, count, write_png=False):
        self.count = count
        self.write_png = write_png
        self.calls = 0

    def extract(self, pdf_path, work_dir):
        self.calls += 1
        paths = []
        for i in range(self.count):
            path = work_dir / f"image-{i:03d}.png"
            if self.write_png:
                from PIL import Image
                Image.new("RGB", (4, 4), (200, 30, 30)).save(path)
            else:
                path.write_bytes(b"not really an image")
            paths.append(path)
        return paths


class FailingExtractor:
    def extract(self, pdf_path, work_dir):
        raise FileNotFoundError("pdfimages")


class TestNames:
    """Test image naming."""

    def test_extracted_name_format(self):
        """Extracted names use a zero-padded page and a 1-based index."""
        assert extracted_image_name(5, 1) == "page-005-image-1.jpg"
        assert EXTRACTED_NAME_RE.match(extracted_image_name(123, 12))

    def test_placeholder_name_format(self):
        """Placeholder names are distinct from extracted names."""
        name = placeholder_image_name(6, 2)
        assert name == "page-6-image-2.placeholder"
        assert not EXTRACTED_NAME_RE.match(name)


class TestReconcileImages:
    """Test document-order assignment of files to detected slots."""

    def test_exact_match(self):
        """Equal counts assign every slot a file."""
        records = reconcile_images({2: 1, 4: 2}, ["a.png", "b.png", "c.png"])

        assert [r.image_name for r in records] == [
            "page-002-image-1.jpg", "page-004-image-1.jpg", "page-004-image-2.jpg",
        ]
        assert [r.original_name for r in records] == ["a.png", "b.png", "c.png"]
        assert [r.image_alt for r in records] == [
            "Figure 1 (Page 2)", "Figure 2 (Page 4)", "Figure 3 (Page 4)",
        ]
        assert not any(r.placeholder for r in records)

    def test_missing_file_becomes_placeholder(self):
        """Five detected slots and four files leave one placeholder on the last page."""
        records = reconcile_images({5: 3, 6: 2}, ["1.png", "2.png", "3.png", "4.png"])
        placeholders = [r for r in records if r.placeholder]

        assert len(records) == 5
        assert len(placeholders) == 1
        assert placeholders[0].page_number == 6
        assert placeholders[0].image_name == "page-6-image-2.placeholder"
        assert placeholders[0].image_alt == "Figure 5 (Page 6) - Not extracted"

    def test_extra_files_ignored(self):
        """Surplus files are not assigned."""
        records = reconcile_images({1: 1}, ["a.png", "b.png"])
        assert [r.original_name for r in records] == ["a.png"]

    def test_detection_only(self):
        """A failed extraction makes every slot a placeholder."""
        records = reconcile_images({1: 2}, ["ignored.png"], detection_only=True)
        assert all(r.placeholder for r in records)
        assert records[0].image_alt.endswith("Detection only")

    def test_non_placeholder_names_match_pattern(self):
        """Every extracted record name matches the extracted-name pattern."""
        records = reconcile_images({1: 2, 10: 1, 100: 3}, [f"{i}.png" for i in range(5)])
        for record in records:
            if not record.placeholder:
                assert EXTRACTED_NAME_RE.match(record.image_name)


class TestBulkImageExtractor:
    """Test the pdfimages wrapper."""

    def test_runs_pdfimages_and_sorts_naturally(self, monkeypatch, tmp_path):
        """Output files are collected in natural order; other files are ignored."""
        calls = []

        def fake_run(cmd, check, capture_output):
            calls.append(cmd)
            for name in ["image-010.png", "image-002.png", "image-001.jpg", "notes.txt"]:
                (tmp_path / name).write_bytes(b"x")
            return subprocess.CompletedProcess(cmd, 0)

        monkeypatch.setattr(image_locator.subprocess, "run", fake_run)
        files = BulkImageExtractor().extract("book.pdf", tmp_path)

        assert calls == [["pdfimages", "-all", "book.pdf", str(tmp_path / "image")]]
        assert [f.name for f in files] == ["image-001.jpg", "image-002.png", "image-010.png"]

    def test_failure_propagates(self, monkeypatch, tmp_path):
        """A failing subprocess raises CalledProcessError."""
        def fake_run(cmd, check, capture_output):
            raise subprocess.CalledProcessError(1, cmd)

        monkeypatch.setattr(image_locator.subprocess, "run", fake_run)
        with pytest.raises(subprocess.CalledProcessError):
            BulkImageExtractor().extract("book.pdf", tmp_path)


class TestImageLocator:
    """Test end-to-end image location."""

    def test_no_images_skips_extraction(self):
        """Documents without detected images never run the extractor."""
        extractor = FakeExtractor(3)
        assert ImageLocator(extractor).locate("book.pdf", {}) == []
        assert extractor.calls == 0

    def test_exports_jpegs(self, tmp_path):
        """Extracted rasters are written as JPEG under their record names."""
        pytest.importorskip("PIL")
        images_dir = tmp_path / "images"
        records = ImageLocator(FakeExtractor(2, write_png=True)).locate(
            "book.pdf", {3: 2}, images_dir
        )

        assert [r.image_name for r in records] == ["page-003-image-1.jpg", "page-003-image-2.jpg"]
        for record in records:
            written = images_dir / record.image_name
            assert written.exists()
            assert written.read_bytes()[:2] == b"\xff\xd8"

    def test_unreadable_raster_copied(self, tmp_path):
        """Files Pillow cannot read are copied as-is."""
        pytest.importorskip("PIL")
        images_dir = tmp_path / "images"
        ImageLocator(FakeExtractor(1)).locate("book.pdf", {1: 1}, images_dir)
        assert (images_dir / "page-001-image-1.jpg").read_bytes() == b"not really an image"

    def test_extractor_failure_gives_placeholders(self):
        """A missing pdfimages binary degrades to detection-only placeholders."""
        records = ImageLocator(FailingExtractor()).locate("book.pdf", {2: 1, 3: 1})

        assert len(records) == 2
        assert all(r.placeholder for r in records)
        assert records[1].image_name == "page-3-image-1.placeholder"

    def test_count_mismatch(self):
        """Fewer files than slots are assigned in order with placeholders after."""
        records = ImageLocator(FakeExtractor(4)).locate("book.pdf", {5: 3, 6: 2})
        assert [r.placeholder for r in records] == [False, False, False, False, True]
