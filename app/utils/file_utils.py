"""File handling utilities."""
import logging
import shutil
import time
import uuid
from pathlib import Path
from typing import Iterable

from fastapi import UploadFile

from app.exceptions import (
    FileTooLargeException,
    InvalidContentException,
    UnsupportedTypeException,
)

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff")
PDF_EXTENSION = ".pdf"
ALLOWED_EXTENSIONS = ALLOWED_IMAGE_EXTENSIONS + (PDF_EXTENSION,)

PDF_SIGNATURE = b"%PDF"
IMAGE_SIGNATURES = (
    b"\xff\xd8\xff",  # JPEG
    b"\x89PNG",  # PNG
    b"GIF",  # GIF
    b"BM",  # BMP
)
SIGNATURE_READ_BYTES = 8

COPY_CHUNK_SIZE = 1024 * 1024


def get_extension(filename: str | None) -> str:
    """Return the lower-cased extension of a declared filename ('' if none)."""
    if not filename:
        return ""
    return Path(filename).suffix.lower()


def is_pdf(ext: str) -> bool:
    return ext == PDF_EXTENSION


def validate_extension(filename: str | None) -> str:
    """
    Check the declared filename against the extension allow-list.

    Only the name is inspected; file content is never read here.

    Args:
        filename: Original filename sent by the client

    Returns:
        The lower-cased extension, including the leading dot

    Raises:
        UnsupportedTypeException: If the extension is not allowed
    """
    ext = get_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        shown = ext or "(none)"
        raise UnsupportedTypeException(
            f"File type {shown} not supported. Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
        )
    return ext


def read_signature(path: Path, size: int = SIGNATURE_READ_BYTES) -> bytes:
    with path.open("rb") as fh:
        return fh.read(size)


def validate_signature(path: Path, ext: str) -> None:
    """
    Confirm the leading bytes of a file match its declared extension.

    Args:
        path: Path to the saved upload
        ext: Extension returned by validate_extension

    Raises:
        InvalidContentException: If the magic number does not match
    """
    family = "PDF" if is_pdf(ext) else "image"
    try:
        header = read_signature(path)
    except OSError as e:
        raise InvalidContentException(f"File is not a valid {family}: {e}") from e

    if is_pdf(ext):
        if not header.startswith(PDF_SIGNATURE):
            raise InvalidContentException(
                "File is not a valid PDF: Invalid PDF file format"
            )
        return

    if not any(header.startswith(sig) for sig in IMAGE_SIGNATURES):
        raise InvalidContentException(
            "File is not a valid image: Invalid image file format"
        )


def make_upload_name(filename: str | None) -> str:
    """
    Build a collision-free name for an upload.

    Directory components of the client's filename are dropped.
    """
    original = Path(filename).name if filename else ""
    original = original.replace(" ", "_") or "upload"
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{original}"


def save_upload_file(upload: UploadFile, upload_dir: Path, max_size_bytes: int) -> Path:
    """
    Stream an uploaded file into the upload directory.

    Args:
        upload: FastAPI UploadFile object
        upload_dir: Destination directory (created if missing)
        max_size_bytes: Largest accepted upload

    Returns:
        Path to the saved file

    Raises:
        FileTooLargeException: If the upload exceeds max_size_bytes
    """
    upload_dir.mkdir(parents=True, exist_ok=True)
    dest = upload_dir / make_upload_name(upload.filename)

    written = 0
    try:
        with dest.open("wb") as out:
            while True:
                chunk = upload.file.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_size_bytes:
                    raise FileTooLargeException(
                        "File too large",
                        details=(
                            f"Upload exceeds maximum allowed size "
                            f"({max_size_bytes / (1024 * 1024):.0f} MB)"
                        ),
                    )
                out.write(chunk)
    except BaseException:
        cleanup_temp_file(dest)
        raise

    logger.debug(f"Saved upload {upload.filename!r} to {dest} ({written} bytes)")
    return dest


def cleanup_temp_file(path: Path | None) -> None:
    """
    Delete a temporary file.

    Missing files are ignored so the call is safe to repeat.

    Args:
        path: Path to the file to delete
    """
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not delete temporary file {path}: {e}")


def cleanup_temp_files(paths: Iterable[Path]) -> None:
    for path in paths:
        cleanup_temp_file(path)


def get_free_space_gb(path: Path) -> float:
    """Free disk space, in gigabytes, on the filesystem holding path."""
    _, _, free = shutil.disk_usage(path)
    return free / (1024**3)
