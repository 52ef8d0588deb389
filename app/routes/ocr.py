"""Upload and ping route endpoints."""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile as StarletteUploadFile

from app.config import Settings
from app.exceptions import DocumentAnalyzerException, NoFileException, OCRException
from app.models.ocr_models import (
    AnalysisPayload,
    ErrorResponse,
    PingResponse,
    UploadMetadata,
    UploadResponse,
)
from app.services.pipeline import DocumentPipeline
from app.utils.file_utils import cleanup_temp_file, save_upload_file

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ocr"])


def utc_timestamp() -> str:
    """Current UTC time as ISO 8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_pipeline(request: Request) -> DocumentPipeline:
    return request.app.state.pipeline


@router.get("/ping", response_model=PingResponse)
async def ping():
    """Liveness probe."""
    return PingResponse(message="OCR Backend is running!", timestamp=utc_timestamp())


@router.post(
    "/api/upload",
    response_model=UploadResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def upload_document(
    request: Request,
    file: Union[UploadFile, str, None] = File(None),
    lang: Optional[str] = Form(None),
    settings: Settings = Depends(get_app_settings),
    pipeline: DocumentPipeline = Depends(get_pipeline),
):
    """
    Recognize text in an uploaded image or PDF and analyze it.

    Args:
        request: FastAPI Request object
        file: Image (JPG, PNG, GIF, BMP, TIFF) or PDF file
        lang: Tesseract language code, defaults to ``eng``

    Returns:
        UploadResponse with text, analysis and metadata
    """
    upload_path: Path | None = None
    try:
        # A plain text field named "file" is not an upload.
        if not isinstance(file, StarletteUploadFile):
            raise NoFileException()

        language = (lang or "").strip() or settings.default_language
        logger.info(
            f"Upload received: filename={file.filename}, "
            f"content_type={file.content_type}, lang={language}"
        )

        upload_path = save_upload_file(
            file, settings.upload_dir, settings.max_file_size_bytes
        )
        file_size = upload_path.stat().st_size

        result = await run_in_threadpool(
            pipeline.process, upload_path, file.filename, language
        )

        analysis = None
        if result.analysis is not None:
            analysis = AnalysisPayload(
                explanation=result.analysis.explanation,
                summary=result.analysis.summary,
            )

        return UploadResponse(
            text=result.text,
            analysis=analysis,
            metadata=UploadMetadata(
                filename=file.filename or "",
                file_size=file_size,
                language=language,
                pages=result.pages,
                timestamp=utc_timestamp(),
            ),
        )

    except DocumentAnalyzerException:
        raise
    except Exception as e:
        logger.error(f"OCR processing failed: {str(e)}", exc_info=True)
        raise OCRException(details=str(e) or type(e).__name__) from e
    finally:
        # The pipeline removes the upload itself; this covers failures before it ran.
        cleanup_temp_file(upload_path)
