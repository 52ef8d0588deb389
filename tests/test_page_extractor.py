"""Unit tests for page extraction and rasterizers."""

import time

import fitz  # PyMuPDF
import pytest

from app.config import Settings
from app.exceptions import (
    BufferExceededException,
    ConversionFailedException,
    NoPagesExtractedException,
    ValidationException,
)
from app.services.page_extractor import (
    PageExtractor,
    PdftoppmRasterizer,
    PyMuPDFRasterizer,
    build_rasterizer,
)
from conftest import PDF_BYTES, PNG_BYTES, FakeRasterizer


@pytest.fixture
def pdf_upload(tmp_path):
    path = tmp_path / "1700000000000-abcd1234-report.pdf"
    path.write_bytes(PDF_BYTES)
    return path


def fake_pdftoppm(tmp_path, body):
    path = tmp_path / "fake-pdftoppm"
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(0o755)
    return str(path)


class TestPageExtractor:
    """Tests for PageExtractor.extract."""

    def test_image_is_single_page(self, tmp_path):
        image = tmp_path / "photo.png"
        image.write_bytes(PNG_BYTES)
        rasterizer = FakeRasterizer()

        pages = PageExtractor(rasterizer).extract(image, ".png")

        assert pages == [image]
        assert rasterizer.calls == []

    def test_pdf_pages_returned_in_page_order(self, pdf_upload):
        rasterizer = FakeRasterizer(pages=12)

        pages = PageExtractor(rasterizer).extract(pdf_upload, ".pdf")

        assert len(pages) == 12
        assert [p.name[-6:-4] for p in pages] == [f"{n:02d}" for n in range(1, 13)]
        assert all(p.name.startswith(f"{pdf_upload.name}-page-") for p in pages)

    def test_output_prefix_next_to_upload(self, pdf_upload):
        rasterizer = FakeRasterizer(pages=1)
        PageExtractor(rasterizer).extract(pdf_upload, ".pdf")
        pdf_path, prefix = rasterizer.calls[0]
        assert pdf_path == pdf_upload
        assert prefix == pdf_upload.parent / f"{pdf_upload.name}-page"

    def test_ignores_pages_of_other_uploads(self, pdf_upload):
        other = pdf_upload.parent / "1700000000001-ffff0000-other.pdf-page-1.png"
        other.write_bytes(PNG_BYTES)

        pages = PageExtractor(FakeRasterizer(pages=2)).extract(pdf_upload, ".pdf")

        assert other not in pages
        assert len(pages) == 2

    def test_no_pages_raises(self, pdf_upload):
        with pytest.raises(NoPagesExtractedException) as exc_info:
            PageExtractor(FakeRasterizer(pages=0)).extract(pdf_upload, ".pdf")
        assert exc_info.value.message == "No pages could be extracted from the PDF file"
        assert exc_info.value.status_code == 400

    def test_conversion_failure_removes_partial_pages(self, pdf_upload):
        rasterizer = FakeRasterizer(
            pages=3, error=ConversionFailedException("PDF processing failed.", "boom")
        )

        with pytest.raises(ConversionFailedException):
            PageExtractor(rasterizer).extract(pdf_upload, ".pdf")

        assert rasterizer.written
        assert not any(p.exists() for p in rasterizer.written)


class TestPdftoppmRasterizer:
    """Tests for the pdftoppm-backed rasterizer, using shell scripts as the binary."""

    def test_invokes_pdftoppm_without_shell(self, tmp_path):
        executable = fake_pdftoppm(
            tmp_path, 'printf "%s\\n" "$@" > "$(dirname "$0")/args.txt"'
        )

        PdftoppmRasterizer(executable=executable).rasterize(
            tmp_path / "a b.pdf", tmp_path / "a b.pdf-page"
        )

        assert (tmp_path / "args.txt").read_text().splitlines() == [
            "-png",
            str(tmp_path / "a b.pdf"),
            str(tmp_path / "a b.pdf-page"),
        ]

    def test_nonzero_exit_raises_with_diagnostic(self, tmp_path):
        executable = fake_pdftoppm(
            tmp_path, "echo \"Syntax Error: Couldn't read xref table\" >&2\nexit 1"
        )

        with pytest.raises(ConversionFailedException) as exc_info:
            PdftoppmRasterizer(executable=executable).rasterize(
                tmp_path / "x.pdf", tmp_path / "x.pdf-page"
            )

        exc = exc_info.value
        assert exc.message.startswith("PDF processing failed.")
        assert "password-protected" in exc.message
        assert "Couldn't read xref table" in exc.details

    def test_missing_binary_raises(self, tmp_path):
        with pytest.raises(ConversionFailedException) as exc_info:
            PdftoppmRasterizer(executable=str(tmp_path / "missing-pdftoppm")).rasterize(
                tmp_path / "x.pdf", tmp_path / "x.pdf-page"
            )
        assert "not found" in exc_info.value.details

    def test_unexecutable_binary_raises(self, mocker, tmp_path):
        mocker.patch(
            "app.services.page_extractor.subprocess.Popen",
            side_effect=PermissionError(13, "Permission denied"),
        )
        with pytest.raises(ConversionFailedException) as exc_info:
            PdftoppmRasterizer().rasterize(tmp_path / "x.pdf", tmp_path / "x.pdf-page")
        assert exc_info.value.status_code == 400
        assert "Permission denied" in exc_info.value.details

    def test_timeout_raises(self, tmp_path):
        executable = fake_pdftoppm(tmp_path, "exec sleep 5")
        with pytest.raises(ConversionFailedException) as exc_info:
            PdftoppmRasterizer(executable=executable, timeout_sec=0.5).rasterize(
                tmp_path / "x.pdf", tmp_path / "x.pdf-page"
            )
        assert "timed out" in exc_info.value.details

    def test_output_over_buffer_kills_process(self, tmp_path):
        executable = fake_pdftoppm(
            tmp_path, "head -c 4096 /dev/zero >&2\nexec sleep 30"
        )
        rasterizer = PdftoppmRasterizer(
            executable=executable, max_buffer_bytes=1024, timeout_sec=30
        )

        started = time.monotonic()
        with pytest.raises(BufferExceededException) as exc_info:
            rasterizer.rasterize(tmp_path / "x.pdf", tmp_path / "x.pdf-page")

        assert time.monotonic() - started < 10
        assert isinstance(exc_info.value, ConversionFailedException)
        assert "buffer limit" in exc_info.value.details

    def test_success_is_silent(self, tmp_path):
        executable = fake_pdftoppm(tmp_path, "echo 'page written' >&2\nexit 0")
        assert (
            PdftoppmRasterizer(executable=executable).rasterize(
                tmp_path / "x.pdf", tmp_path / "x.pdf-page"
            )
            is None
        )


class TestPyMuPDFRasterizer:
    """Tests for the PyMuPDF-backed rasterizer."""

    def test_renders_every_page(self, tmp_path):
        pdf_path = tmp_path / "three.pdf"
        doc = fitz.open()
        for _ in range(3):
            doc.new_page(width=200, height=200)
        doc.save(pdf_path)
        doc.close()

        prefix = tmp_path / "three.pdf-page"
        PyMuPDFRasterizer(dpi=36).rasterize(pdf_path, prefix)

        pages = PageExtractor.collect_pages(prefix)
        assert [p.name for p in pages] == [
            "three.pdf-page-1.png",
            "three.pdf-page-2.png",
            "three.pdf-page-3.png",
        ]
        assert all(p.read_bytes().startswith(b"\x89PNG") for p in pages)

    def test_corrupt_pdf_is_rejected(self, tmp_path):
        pdf_path = tmp_path / "broken.pdf"
        pdf_path.write_bytes(b"%PDF-1.4\nthis is not really a pdf")

        # MuPDF either refuses the file or repairs it into zero pages.
        with pytest.raises(ValidationException):
            PageExtractor(PyMuPDFRasterizer()).extract(pdf_path, ".pdf")


class TestBuildRasterizer:
    def test_default_is_pdftoppm(self):
        rasterizer = build_rasterizer(Settings(_env_file=None, pdftoppm_path="/opt/pdftoppm"))
        assert isinstance(rasterizer, PdftoppmRasterizer)
        assert rasterizer.executable == "/opt/pdftoppm"

    def test_pymupdf_selected(self):
        rasterizer = build_rasterizer(
            Settings(_env_file=None, pdf_rasterizer="pymupdf", pdf_dpi=200)
        )
        assert isinstance(rasterizer, PyMuPDFRasterizer)
        assert rasterizer.dpi == 200
