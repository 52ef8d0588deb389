"""Request pipeline: validate, extract pages, OCR, analyze, clean up."""
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from app.services.analysis_service import (
    UNEXPECTED_EXPLANATION,
    UNEXPECTED_SUMMARY,
    AnalysisResult,
    AnalysisService,
)
from app.services.ocr_service import OCRService
from app.services.page_extractor import PageExtractor
from app.utils.file_utils import (
    cleanup_temp_file,
    cleanup_temp_files,
    validate_extension,
    validate_signature,
)

logger = logging.getLogger(__name__)


class PipelineState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    PAGES_EXTRACTED = "pages_extracted"
    RECOGNIZED = "recognized"
    ANALYZED = "analyzed"
    RESPONDED = "responded"
    ERRORED = "errored"


@dataclass
class PipelineResult:
    text: str
    analysis: Optional[AnalysisResult]
    pages: int


class DocumentPipeline:
    """Runs one upload through every stage and always removes its files."""

    def __init__(
        self,
        page_extractor: PageExtractor,
        ocr_service: OCRService,
        analysis_service: AnalysisService,
    ):
        self.page_extractor = page_extractor
        self.ocr_service = ocr_service
        self.analysis_service = analysis_service

    def process(self, upload_path: Path, filename: Optional[str], lang: str) -> PipelineResult:
        """
        Process a saved upload.

        The upload and every page image derived from it are deleted before
        this returns or raises.

        Args:
            upload_path: Path of the saved upload
            filename: Original filename declared by the client
            lang: OCR language code

        Returns:
            PipelineResult with text, analysis and page count

        Raises:
            ValidationException: For rejected uploads and failed extraction
            OCRException: If recognition fails
        """
        state = PipelineState.RECEIVED
        pages: List[Path] = []
        try:
            ext = validate_extension(filename)
            validate_signature(upload_path, ext)
            state = self._advance(state, PipelineState.VALIDATED)

            pages = self.page_extractor.extract(upload_path, ext)
            state = self._advance(state, PipelineState.PAGES_EXTRACTED)

            ocr_result = self.ocr_service.recognize_pages(pages, lang)
            state = self._advance(state, PipelineState.RECOGNIZED)

            analysis = self._analyze(ocr_result.text)
            state = self._advance(state, PipelineState.ANALYZED)

            result = PipelineResult(
                text=ocr_result.text,
                analysis=analysis,
                pages=ocr_result.page_count,
            )
            state = self._advance(state, PipelineState.RESPONDED)
            return result
        except Exception:
            logger.info(f"Pipeline for {upload_path.name} failed in state {state.value}")
            self._advance(state, PipelineState.ERRORED)
            raise
        finally:
            cleanup_temp_files(pages)
            cleanup_temp_file(upload_path)

    def _analyze(self, text: str) -> Optional[AnalysisResult]:
        try:
            return self.analysis_service.analyze(text)
        except Exception as e:
            logger.error(f"AI analysis failed: {e}", exc_info=True)
            return AnalysisResult(
                explanation=UNEXPECTED_EXPLANATION, summary=UNEXPECTED_SUMMARY
            )

    @staticmethod
    def _advance(current: PipelineState, new: PipelineState) -> PipelineState:
        logger.debug(f"Pipeline state {current.value} -> {new.value}")
        return new
