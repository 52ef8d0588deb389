"""FastAPI application entry point."""

import logging
import shutil
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import Settings, get_settings
from app.exceptions import DocumentAnalyzerException
from app.middleware import (
    RequestIDMiddleware,
    UnhandledErrorMiddleware,
    UploadSizeLimitMiddleware,
    unexpected_error_response,
)
from app.routes import ocr
from app.services.analysis_service import AnalysisService
from app.services.ocr_service import OCRService, TesseractEngine
from app.services.page_extractor import PageExtractor, build_rasterizer
from app.services.pipeline import DocumentPipeline
from app.utils.error_utils import get_safe_error_detail
from app.utils.file_utils import get_free_space_gb

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_pipeline(settings: Settings) -> DocumentPipeline:
    """Wire the pipeline's collaborators from settings."""
    return DocumentPipeline(
        page_extractor=PageExtractor(build_rasterizer(settings)),
        ocr_service=OCRService(
            TesseractEngine(tesseract_cmd=settings.tesseract_cmd),
            max_workers=settings.ocr_max_workers,
        ),
        analysis_service=AnalysisService(
            api_url=settings.llama_api_url,
            model=settings.llama_model,
            timeout_sec=settings.llama_timeout_sec,
        ),
    )


def error_body(message: str, details: Optional[str] = None) -> dict:
    body = {"error": message}
    if details:
        body["details"] = details
    return body


def create_app(
    settings: Optional[Settings] = None, pipeline: Optional[DocumentPipeline] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration (loaded from the environment if not provided)
        pipeline: Pre-built pipeline (built from settings if not provided)

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = get_settings()
    if pipeline is None:
        pipeline = build_pipeline(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        upload_dir = settings.ensure_upload_dir()
        logger.info("Starting OCR Backend...")
        logger.info(f"Environment: {settings.environment}")
        logger.info(f"Upload directory: {upload_dir.resolve()}")
        logger.info(f"PDF rasterizer: {settings.pdf_rasterizer}")
        logger.info(f"Llama API URL: {settings.llama_api_url}")
        logger.info(f"Llama Model: {settings.llama_model}")
        yield
        logger.info("Shutting down OCR Backend...")
        pipeline.analysis_service.close()

    app = FastAPI(
        title="OCR Backend",
        description="Extracts text from images and PDFs and summarizes it with a local LLM",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline

    app.add_middleware(
        UnhandledErrorMiddleware, is_production=settings.is_production
    )
    app.add_middleware(
        UploadSizeLimitMiddleware, max_body_bytes=settings.max_file_size_bytes
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list(),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(DocumentAnalyzerException)
    async def custom_exception_handler(
        request: Request, exc: DocumentAnalyzerException
    ):
        """Handle custom application exceptions."""
        request_id = getattr(request.state, "request_id", "unknown")
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"Application error [{request_id}]: {exc.message}",
            extra={"request_id": request_id, "details": exc.details},
        )
        details = get_safe_error_detail(exc.details, settings.is_production)
        return JSONResponse(
            status_code=exc.status_code, content=error_body(exc.message, details)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """Handle Pydantic validation errors."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning(
            f"Validation error [{request_id}]: {exc.errors()}",
            extra={"request_id": request_id},
        )
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            content=error_body("Request validation failed", details),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle exceptions raised outside the middleware stack."""
        return unexpected_error_response(request, exc, settings.is_production)

    app.include_router(ocr.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.info(
            f"Request [{request_id}]: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
            },
        )

        response = await call_next(request)

        logger.info(
            f"Response [{request_id}]: {response.status_code}",
            extra={"request_id": request_id, "status_code": response.status_code},
        )

        return response

    # Outermost, so request ids exist before log_requests runs.
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    async def health_check():
        """
        Report whether the external collaborators are usable.

        Returns:
            Health status with checks for:
            - Tesseract binary
            - PDF rasterizer
            - Inference service
            - Upload directory disk space
        """
        checks = {}
        overall_status = "healthy"
        current = app.state.pipeline

        engine = current.ocr_service.engine
        try:
            version = engine.version() if hasattr(engine, "version") else "unknown"
            checks["tesseract"] = f"ok ({version})"
        except Exception as e:
            checks["tesseract"] = f"error: {str(e)[:50]}"
            overall_status = "degraded"
            logger.warning(f"Tesseract health check failed: {e}")

        if settings.pdf_rasterizer == "pdftoppm":
            if shutil.which(settings.pdftoppm_path):
                checks["rasterizer"] = "ok"
            else:
                checks["rasterizer"] = "error: pdftoppm not found"
                overall_status = "degraded"
        else:
            checks["rasterizer"] = "ok (pymupdf)"

        if await run_in_threadpool(current.analysis_service.check_available):
            checks["inference"] = "ok"
        else:
            checks["inference"] = "unreachable"
            overall_status = "degraded"

        try:
            free_gb = get_free_space_gb(settings.ensure_upload_dir())
            if free_gb > 1:
                checks["disk_space"] = "ok"
            else:
                checks["disk_space"] = "warning"
                overall_status = "degraded"
        except OSError:
            checks["disk_space"] = "unknown"

        return {
            "status": overall_status,
            "version": VERSION,
            "service": "doc-ocr-analyzer",
            "checks": checks,
        }

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "OCR Backend",
            "version": VERSION,
            "docs": "/docs",
        }

    return app


configure_logging(get_settings())
app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=_settings.host,
        port=_settings.port,
        log_level=_settings.log_level.lower(),
    )
