"""Pydantic models for the upload and ping endpoints."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AnalysisPayload(BaseModel):
    """Explanation and summary produced by the language model."""

    model_config = ConfigDict(populate_by_name=True)

    explanation: str = Field(
        ..., alias="penjelasan", description="Short explanation of the document"
    )
    summary: str = Field(
        ..., alias="ringkasan", description="Bulleted summary of the document"
    )


class UploadMetadata(BaseModel):
    """Metadata about the processed upload."""

    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(..., description="Original filename")
    file_size: int = Field(..., alias="fileSize", ge=0, description="Upload size in bytes")
    language: str = Field(..., description="OCR language code")
    pages: int = Field(..., ge=0, description="Number of pages recognized")
    timestamp: str = Field(..., description="Completion time (ISO 8601)")


class UploadResponse(BaseModel):
    """Response model for the upload endpoint."""

    text: str = Field(..., description="Recognized text with page headers")
    analysis: Optional[AnalysisPayload] = Field(
        None, description="AI analysis, null when the text is too short"
    )
    metadata: UploadMetadata

    model_config = {
        "json_schema_extra": {
            "example": {
                "text": "--- Page 1 ---\nInvoice 2024-001\n\n",
                "analysis": {
                    "penjelasan": "Dokumen ini adalah faktur.",
                    "ringkasan": "- Nomor faktur 2024-001",
                },
                "metadata": {
                    "filename": "invoice.png",
                    "fileSize": 48213,
                    "language": "eng",
                    "pages": 1,
                    "timestamp": "2024-05-01T10:00:00.000Z",
                },
            }
        }
    }


class PingResponse(BaseModel):
    message: str
    timestamp: str


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
    details: Optional[str] = None
