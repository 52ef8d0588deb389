"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    environment: str = Field(
        default="development", description="Environment (development/production)"
    )

    # Inference service (Ollama compatible)
    llama_api_url: str = Field(
        default="http://localhost:11434/api/generate",
        description="Generate endpoint of the local inference service",
    )
    llama_model: str = Field(
        default="llama3.2:3b",
        description="Model identifier sent with every analysis request",
    )
    llama_timeout_sec: float = Field(
        default=60.0,
        gt=0,
        description="Seconds to wait for the inference service before giving up",
    )

    # Uploads
    upload_dir: Path = Field(
        default=Path("./uploads"),
        description="Directory for temporary uploads and page images",
    )
    max_file_size_mb: int = Field(
        default=50, ge=1, description="Maximum upload size in MB"
    )

    # PDF rasterization
    pdf_rasterizer: Literal["pdftoppm", "pymupdf"] = Field(
        default="pdftoppm",
        description="Backend used to turn PDF pages into images",
    )
    pdftoppm_path: str = Field(
        default="pdftoppm", description="pdftoppm executable"
    )
    rasterizer_max_buffer_bytes: int = Field(
        default=20 * 1024 * 1024,
        ge=1,
        description="Maximum combined stdout/stderr accepted from the rasterizer",
    )
    rasterizer_timeout_sec: float = Field(
        default=300.0, gt=0, description="Rasterizer process timeout in seconds"
    )
    pdf_dpi: int = Field(
        default=150, ge=36, le=600, description="Render resolution for PyMuPDF"
    )

    # OCR
    tesseract_cmd: Optional[str] = Field(
        default=None,
        description="Path to the tesseract binary (pytesseract default when unset)",
    )
    default_language: str = Field(
        default="eng", description="OCR language used when none is requested"
    )
    ocr_max_workers: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Pages recognized concurrently (1 = sequential)",
    )

    # Security
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def cors_origin_list(self) -> List[str]:
        origins = [
            origin.strip() for origin in self.cors_origins.split(",") if origin.strip()
        ]
        return origins or ["*"]

    def ensure_upload_dir(self) -> Path:
        """Create the upload directory if needed and return it."""
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        return self.upload_dir


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings loaded from the environment."""
    return Settings()
