"""Analysis service: explanation and summary of OCR text from a local LLM."""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

import httpx

from app.exceptions import AnalysisUnavailableException

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 10
MAX_TEXT_LENGTH = 2000
ELLIPSIS = "..."

SAMPLING_OPTIONS = {
    "temperature": 0.3,
    "top_p": 0.9,
    "max_tokens": 500,
    "num_predict": 500,
}

PROMPT_TEMPLATE = """Analisis teks berikut dari hasil OCR. Berikan penjelasan singkat dan ringkasan dalam bahasa Indonesia:

Teks:
\"\"\"
{text}
\"\"\"

Jawab dalam format:
Penjelasan: [penjelasan singkat tentang isi dokumen]
Ringkasan:
- [poin 1]
- [poin 2]
- [poin 3]"""

EXPLANATION_RE = re.compile(r"Penjelasan:\s*(.*?)(?=Ringkasan:|$)", re.IGNORECASE | re.DOTALL)
SUMMARY_RE = re.compile(r"Ringkasan:\s*(.*)", re.IGNORECASE | re.DOTALL)
PAGE_HEADER_RE = re.compile(r"^--- Page \d+ ---$", re.MULTILINE)

# Fallback strings
DEFAULT_EXPLANATION = "Dokumen berhasil dianalisis"
EMPTY_EXPLANATION = "Tidak dapat menganalisis dokumen"
EMPTY_SUMMARY = "Response kosong dari AI"
FAILED_EXPLANATION = "Gagal menganalisis dokumen dengan AI"
SERVICE_NOT_RUNNING = "Ollama service tidak berjalan"
SERVICE_TOO_SLOW = "AI membutuhkan waktu terlalu lama, coba dengan teks yang lebih pendek"
SERVICE_UNAVAILABLE = "Layanan AI tidak tersedia saat ini"
UNEXPECTED_EXPLANATION = "AI analysis error"
UNEXPECTED_SUMMARY = "Terjadi kesalahan saat menganalisis dokumen dengan AI"


@dataclass(frozen=True)
class AnalysisResult:
    explanation: str
    summary: str


def has_enough_text(text: str) -> bool:
    """True when the recognized content, without page headers, is long enough."""
    content = PAGE_HEADER_RE.sub("", text or "").strip()
    return len(content) >= MIN_TEXT_LENGTH


def truncate_text(text: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    if len(text) > max_length:
        return text[:max_length] + ELLIPSIS
    return text


def build_prompt(text: str) -> str:
    return PROMPT_TEMPLATE.format(text=truncate_text(text))


def parse_completion(raw: str) -> AnalysisResult:
    """
    Split a free-text completion into explanation and summary.

    A missing label is not an error: the explanation falls back to a fixed
    string and the summary falls back to the whole completion.
    """
    full = raw.strip()
    explanation_match = EXPLANATION_RE.search(full)
    summary_match = SUMMARY_RE.search(full)
    return AnalysisResult(
        explanation=explanation_match.group(1).strip() if explanation_match else DEFAULT_EXPLANATION,
        summary=summary_match.group(1).strip() if summary_match else full,
    )


def fallback_result(summary: str) -> AnalysisResult:
    return AnalysisResult(explanation=FAILED_EXPLANATION, summary=summary)


class AnalysisService:
    """Best-effort document analysis through an Ollama-compatible endpoint."""

    def __init__(
        self,
        api_url: str,
        model: str,
        timeout_sec: float = 60.0,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Initialize analysis service.

        Args:
            api_url: Full URL of the generate endpoint
            model: Model identifier
            timeout_sec: Seconds to wait for the completion
            http_client: httpx client instance (creates new one if not provided)
        """
        self.api_url = api_url
        self.model = model
        self.timeout_sec = timeout_sec
        self.client = http_client or httpx.Client()

    def analyze(self, text: str) -> Optional[AnalysisResult]:
        """
        Explain and summarize OCR text.

        Returns None for text too short to analyze. Never raises: inference
        failures come back as a fallback AnalysisResult.
        """
        if not has_enough_text(text):
            logger.info("Text too short for AI analysis")
            return None

        logger.info(
            f"Sending {len(text)} characters to {self.model} for analysis..."
        )
        try:
            raw = self._request_completion(build_prompt(text))
        except AnalysisUnavailableException as e:
            logger.warning(f"AI analysis unavailable: {e.message} ({e.details})")
            return fallback_result(e.summary)

        if not raw or not raw.strip():
            return AnalysisResult(explanation=EMPTY_EXPLANATION, summary=EMPTY_SUMMARY)

        logger.info("Received response from inference service")
        return parse_completion(raw)

    def _request_completion(self, prompt: str) -> Optional[str]:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": dict(SAMPLING_OPTIONS),
        }
        try:
            response = self.client.post(
                self.api_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_sec,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.ConnectError as e:
            raise AnalysisUnavailableException(
                "Inference service refused the connection", SERVICE_NOT_RUNNING, str(e)
            ) from e
        except (httpx.TimeoutException, httpx.ReadError, httpx.RemoteProtocolError) as e:
            raise AnalysisUnavailableException(
                "Inference service timed out or reset the connection",
                SERVICE_TOO_SLOW,
                str(e) or type(e).__name__,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise AnalysisUnavailableException(
                "Inference service unavailable", SERVICE_UNAVAILABLE, str(e)
            ) from e

        if not isinstance(data, dict):
            return None
        completion = data.get("response")
        return completion if isinstance(completion, str) else None

    def check_available(self, timeout_sec: float = 5.0) -> bool:
        """Ping the service's model listing; used by the health check."""
        parts = urlsplit(self.api_url)
        tags_url = f"{parts.scheme}://{parts.netloc}/api/tags"
        try:
            response = self.client.get(tags_url, timeout=timeout_sec)
        except httpx.HTTPError as e:
            logger.warning(f"Inference service health check failed: {e}")
            return False
        return response.status_code == 200

    def close(self) -> None:
        self.client.close()
