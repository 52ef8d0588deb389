"""Page extraction: turn an upload into an ordered list of page images."""
import logging
import subprocess
import threading
from pathlib import Path
from typing import List, Protocol

import fitz  # PyMuPDF

from app.exceptions import (
    BufferExceededException,
    ConversionFailedException,
    NoPagesExtractedException,
)
from app.utils.file_utils import cleanup_temp_files, is_pdf

logger = logging.getLogger(__name__)

CONVERSION_FAILED_MESSAGE = (
    "PDF processing failed. The PDF file may be corrupted, password-protected, "
    "or in an unsupported format."
)
PAGE_PREFIX_SUFFIX = "-page"
READ_CHUNK_BYTES = 64 * 1024


class Rasterizer(Protocol):
    """Renders every page of a PDF to ``<output_prefix>-<N>.png``.

    Page numbers are zero padded to a common width so that sorting the file
    names lexicographically yields page order.
    """

    def rasterize(self, pdf_path: Path, output_prefix: Path) -> None:
        ...


class PdftoppmRasterizer:
    """Rasterizer backed by the poppler ``pdftoppm`` command.

    pdftoppm writes its pages to files, so stdout is discarded. Diagnostics
    on stderr are read while the process runs; once they pass
    ``max_buffer_bytes`` the process is killed.
    """

    def __init__(
        self,
        executable: str = "pdftoppm",
        max_buffer_bytes: int = 20 * 1024 * 1024,
        timeout_sec: float = 300.0,
    ):
        self.executable = executable
        self.max_buffer_bytes = max_buffer_bytes
        self.timeout_sec = timeout_sec

    def _read_stderr(
        self,
        proc: subprocess.Popen,
        captured: bytearray,
        overflowed: threading.Event,
    ) -> None:
        for chunk in iter(lambda: proc.stderr.read1(READ_CHUNK_BYTES), b""):
            if len(captured) + len(chunk) > self.max_buffer_bytes:
                overflowed.set()
                proc.kill()
                return
            captured.extend(chunk)

    def rasterize(self, pdf_path: Path, output_prefix: Path) -> None:
        cmd = [self.executable, "-png", str(pdf_path), str(output_prefix)]
        logger.debug(f"Running rasterizer: {' '.join(cmd)}")

        try:
            proc = subprocess.Popen(
                cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE
            )
        except OSError as e:
            if isinstance(e, FileNotFoundError):
                details = f"Rasterizer not found: {self.executable}"
            else:
                details = f"Could not run rasterizer {self.executable}: {e}"
            raise ConversionFailedException(
                CONVERSION_FAILED_MESSAGE, details=details
            ) from e

        captured = bytearray()
        overflowed = threading.Event()
        reader = threading.Thread(
            target=self._read_stderr, args=(proc, captured, overflowed), daemon=True
        )
        reader.start()
        try:
            returncode = proc.wait(timeout=self.timeout_sec)
        except subprocess.TimeoutExpired as e:
            proc.kill()
            proc.wait()
            raise ConversionFailedException(
                CONVERSION_FAILED_MESSAGE,
                details=f"Command timed out after {self.timeout_sec:g}s: {' '.join(cmd)}",
            ) from e
        finally:
            reader.join()
            proc.stderr.close()

        if overflowed.is_set():
            raise BufferExceededException(
                CONVERSION_FAILED_MESSAGE,
                details=(
                    f"Rasterizer output exceeded buffer limit "
                    f"({self.max_buffer_bytes} bytes)"
                ),
            )

        if returncode != 0:
            stderr = bytes(captured).decode("utf-8", errors="replace").strip()
            details = f"Command failed: {' '.join(cmd)}"
            if stderr:
                details = f"{details}\n{stderr}"
            raise ConversionFailedException(CONVERSION_FAILED_MESSAGE, details=details)


class PyMuPDFRasterizer:
    """In-process rasterizer using PyMuPDF, for hosts without poppler."""

    def __init__(self, dpi: int = 150):
        self.dpi = dpi

    def rasterize(self, pdf_path: Path, output_prefix: Path) -> None:
        try:
            doc = fitz.open(pdf_path)
        except Exception as e:
            raise ConversionFailedException(
                CONVERSION_FAILED_MESSAGE, details=str(e)
            ) from e

        try:
            if doc.needs_pass:
                raise ConversionFailedException(
                    CONVERSION_FAILED_MESSAGE, details="Document is password-protected"
                )
            width = len(str(doc.page_count))
            for page_index in range(doc.page_count):
                page = doc.load_page(page_index)
                pix = page.get_pixmap(dpi=self.dpi)
                image_path = Path(
                    f"{output_prefix}-{page_index + 1:0{width}d}.png"
                )
                image_path.write_bytes(pix.tobytes("png"))
        except ConversionFailedException:
            raise
        except Exception as e:
            raise ConversionFailedException(
                CONVERSION_FAILED_MESSAGE, details=str(e)
            ) from e
        finally:
            doc.close()


class PageExtractor:
    """Produces the ordered page images for a validated upload."""

    def __init__(self, rasterizer: Rasterizer):
        self.rasterizer = rasterizer

    @staticmethod
    def output_prefix(file_path: Path) -> Path:
        return file_path.with_name(file_path.name + PAGE_PREFIX_SUFFIX)

    @staticmethod
    def collect_pages(output_prefix: Path) -> List[Path]:
        """Return rasterized pages for a prefix, sorted into page order."""
        # Plain prefix match; upload names may contain glob metacharacters.
        start = f"{output_prefix.name}-"
        pages = [
            p
            for p in output_prefix.parent.iterdir()
            if p.name.startswith(start) and p.name.endswith(".png")
        ]
        return sorted(pages, key=lambda p: p.name)

    def extract(self, file_path: Path, ext: str) -> List[Path]:
        """
        Return the page images for an upload.

        Args:
            file_path: Path to the validated upload
            ext: Lower-cased extension of the upload

        Returns:
            Image paths in page order. For images this is ``[file_path]``.

        Raises:
            ConversionFailedException: If the rasterizer fails
            NoPagesExtractedException: If no page images were produced
        """
        if not is_pdf(ext):
            return [file_path]

        prefix = self.output_prefix(file_path)
        try:
            self.rasterizer.rasterize(file_path, prefix)
        except ConversionFailedException:
            cleanup_temp_files(self.collect_pages(prefix))
            raise

        pages = self.collect_pages(prefix)
        if not pages:
            raise NoPagesExtractedException()

        logger.info(f"Extracted {len(pages)} page(s) from {file_path.name}")
        return pages


def build_rasterizer(settings) -> Rasterizer:
    """Create the rasterizer selected in settings."""
    if settings.pdf_rasterizer == "pymupdf":
        return PyMuPDFRasterizer(dpi=settings.pdf_dpi)
    return PdftoppmRasterizer(
        executable=settings.pdftoppm_path,
        max_buffer_bytes=settings.rasterizer_max_buffer_bytes,
        timeout_sec=settings.rasterizer_timeout_sec,
    )
