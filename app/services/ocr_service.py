"""OCR service for extracting text from page images using Tesseract."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import pytesseract
from PIL import Image

from app.exceptions import OCRException

logger = logging.getLogger(__name__)

# LSTM engine, fully automatic page segmentation.
OCR_ENGINE_MODE = 1
PAGE_SEGMENTATION_MODE = 3

PAGE_HEADER_TEMPLATE = "--- Page {number} ---"


class OCREngine(Protocol):
    def recognize(self, image_path: Path, lang: str) -> str:
        ...


class TesseractEngine:
    """OCR engine that shells out to the tesseract binary via pytesseract."""

    def __init__(
        self,
        tesseract_cmd: Optional[str] = None,
        oem: int = OCR_ENGINE_MODE,
        psm: int = PAGE_SEGMENTATION_MODE,
    ):
        self.tesseract_cmd = tesseract_cmd
        self.oem = oem
        self.psm = psm
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    @property
    def config(self) -> str:
        return f"--oem {self.oem} --psm {self.psm}"

    def recognize(self, image_path: Path, lang: str) -> str:
        with Image.open(image_path) as image:
            return pytesseract.image_to_string(image, lang=lang, config=self.config)

    def version(self) -> str:
        return str(pytesseract.get_tesseract_version())


@dataclass
class OcrResult:
    """Recognized text for each page, in page order."""

    pages: List[str] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def text(self) -> str:
        return "".join(
            f"{PAGE_HEADER_TEMPLATE.format(number=number)}\n{page_text}\n\n"
            for number, page_text in enumerate(self.pages, start=1)
        )


class OCRService:
    """Service for OCR text extraction from page images."""

    def __init__(self, engine: OCREngine, max_workers: int = 1):
        """
        Initialize OCR service.

        Args:
            engine: OCR engine used for every page
            max_workers: Pages recognized concurrently; 1 keeps it sequential
        """
        self.engine = engine
        self.max_workers = max_workers

    def recognize_page(self, image_path: Path, lang: str) -> str:
        """
        Run OCR on a single page image.

        Raises:
            OCRException: If the engine fails for this page
        """
        if not image_path.exists():
            raise OCRException(details=f"Image file not found: {image_path.name}")
        try:
            return self.engine.recognize(image_path, lang)
        except Exception as e:
            logger.error(
                f"OCR failed for {image_path.name} (lang={lang})",
                exc_info=True,
                extra={"error_type": type(e).__name__},
            )
            raise OCRException(details=str(e) or type(e).__name__) from e

    def recognize_pages(self, pages: Sequence[Path], lang: str) -> OcrResult:
        """
        Recognize every page and keep the results in page order.

        Args:
            pages: Page images in page order
            lang: Tesseract language code (e.g. ``eng``, ``ind``, ``eng+ind``)

        Returns:
            OcrResult with one text block per page

        Raises:
            OCRException: If any page fails; no partial result is returned
        """
        start_time = time.time()

        if self.max_workers > 1 and len(pages) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                texts = list(pool.map(lambda p: self.recognize_page(p, lang), pages))
        else:
            texts = [self.recognize_page(page, lang) for page in pages]

        result = OcrResult(pages=texts)
        processing_time = (time.time() - start_time) * 1000
        logger.info(
            f"OCR completed. Pages: {result.page_count}, "
            f"Text length: {len(result.text)} chars, Time: {processing_time:.2f}ms"
        )
        return result
