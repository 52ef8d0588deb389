"""Pytest configuration and shared fixtures."""
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.services.analysis_service import AnalysisService
from app.services.ocr_service import OCRService
from app.services.page_extractor import PageExtractor
from app.services.pipeline import DocumentPipeline

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x02\x00\x00\x00\x90wS\xde"
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01"
GIF_BYTES = b"GIF89a\x01\x00\x01\x00\x00\x00\x00"
BMP_BYTES = b"BM\x3a\x00\x00\x00\x00\x00\x00\x00"
PDF_BYTES = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
trailer
<< /Size 4 /Root 1 0 R >>
%%EOF"""

SAMPLE_COMPLETION = """Penjelasan: Dokumen ini adalah faktur pembelian.
Ringkasan:
- Nomor faktur 2024-001
- Total Rp 1.500.000
- Jatuh tempo 30 hari"""


class FakeRasterizer:
    """Writes ``pages`` placeholder PNGs using the pdftoppm naming scheme."""

    def __init__(self, pages: int = 1, error: Optional[Exception] = None):
        self.pages = pages
        self.error = error
        self.calls: List[tuple] = []
        self.written: List[Path] = []

    def rasterize(self, pdf_path: Path, output_prefix: Path) -> None:
        self.calls.append((pdf_path, output_prefix))
        width = len(str(self.pages)) if self.pages else 1
        for number in range(1, self.pages + 1):
            page = Path(f"{output_prefix}-{number:0{width}d}.png")
            page.write_bytes(PNG_BYTES)
            self.written.append(page)
        if self.error is not None:
            raise self.error


class FakeOCREngine:
    """Returns canned text per page and records every call."""

    def __init__(
        self,
        text: str = "Recognized text",
        per_page: Optional[Callable[[int], str]] = None,
        error: Optional[Exception] = None,
    ):
        self.text = text
        self.per_page = per_page
        self.error = error
        self.calls: List[tuple] = []

    def recognize(self, image_path: Path, lang: str) -> str:
        self.calls.append((image_path, lang))
        if self.error is not None:
            raise self.error
        if self.per_page is not None:
            return self.per_page(len(self.calls))
        return self.text


class InferenceStub:
    """httpx.MockTransport handler standing in for the inference service."""

    def __init__(self, completion: str = SAMPLE_COMPLETION, status_code: int = 200):
        self.completion = completion
        self.status_code = status_code
        self.error: Optional[Exception] = None
        self.requests: List[Dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.error is not None:
            raise self.error
        if request.method == "GET":
            return httpx.Response(200, json={"models": []})
        self.requests.append(json.loads(request.content))
        return httpx.Response(self.status_code, json={"response": self.completion})


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a per-test upload directory."""
    return Settings(
        _env_file=None,
        upload_dir=tmp_path / "uploads",
        llama_api_url="http://llm.test/api/generate",
        llama_model="test-model",
    )


@pytest.fixture
def upload_dir(test_settings):
    return test_settings.ensure_upload_dir()


@pytest.fixture
def rasterizer():
    return FakeRasterizer(pages=1)


@pytest.fixture
def ocr_engine():
    return FakeOCREngine(text="Invoice number 2024-001 total 1500")


@pytest.fixture
def inference():
    return InferenceStub()


@pytest.fixture
def analysis_service(test_settings, inference):
    return AnalysisService(
        api_url=test_settings.llama_api_url,
        model=test_settings.llama_model,
        http_client=httpx.Client(transport=httpx.MockTransport(inference)),
    )


@pytest.fixture
def pipeline(rasterizer, ocr_engine, analysis_service):
    return DocumentPipeline(
        page_extractor=PageExtractor(rasterizer),
        ocr_service=OCRService(ocr_engine),
        analysis_service=analysis_service,
    )


@pytest.fixture
def client(test_settings, pipeline):
    """Create a test client for an app wired with fake collaborators."""
    return TestClient(create_app(settings=test_settings, pipeline=pipeline))


def list_uploads(upload_dir: Path) -> List[str]:
    return sorted(p.name for p in upload_dir.iterdir()) if upload_dir.exists() else []
