"""Custom exception classes."""

from typing import Optional


class DocumentAnalyzerException(Exception):
    """Base exception for the application."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        """
        Initialize exception.

        Args:
            message: Human-readable error message returned as ``error``
            details: Diagnostic from the failing tool, returned as ``details``
        """
        self.message = message
        self.details = details
        super().__init__(self.message)


class ValidationException(DocumentAnalyzerException):
    """Exception raised when an upload is rejected before OCR runs."""

    status_code = 400


class NoFileException(ValidationException):
    """No file part was sent with the request."""

    def __init__(self, message: str = "No file uploaded", details: Optional[str] = None):
        super().__init__(message, details)


class UnsupportedTypeException(ValidationException):
    """File extension is not in the allow-list."""

    pass


class InvalidContentException(ValidationException):
    """File extension is allowed but the leading bytes do not match."""

    pass


class ConversionFailedException(ValidationException):
    """PDF rasterization failed (corrupted, encrypted or unsupported PDF)."""

    pass


class BufferExceededException(ConversionFailedException):
    """Rasterizer produced more output than the configured buffer allows."""

    pass


class NoPagesExtractedException(ValidationException):
    """Rasterization succeeded but produced no page images."""

    def __init__(
        self,
        message: str = "No pages could be extracted from the PDF file",
        details: Optional[str] = None,
    ):
        super().__init__(message, details)


class FileTooLargeException(DocumentAnalyzerException):
    """Upload exceeds the configured size limit."""

    status_code = 413


class OCRException(DocumentAnalyzerException):
    """Exception raised during OCR processing."""

    def __init__(
        self, message: str = "OCR processing failed", details: Optional[str] = None
    ):
        super().__init__(message, details)


class AnalysisUnavailableException(DocumentAnalyzerException):
    """Inference call failed; always converted to a fallback result."""

    def __init__(self, message: str, summary: str, details: Optional[str] = None):
        super().__init__(message, details)
        self.summary = summary
