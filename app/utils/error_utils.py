"""Utilities for error handling and sanitization."""

import re
from typing import Optional

GENERIC_ERROR_MESSAGE = "An internal error occurred. Please try again later."

# (pattern, replacement, flags)
REDACTION_PATTERNS = [
    (r"(https?://)[^\s:@/]+:[^\s@/]+@", r"\1***:***@", 0),  # credentials in URLs
    (r"api[_-]?key[=:]\s*[a-zA-Z0-9_-]+", "api_key=***", re.IGNORECASE),
    (r"password[=:]\s*[^\s]+", "password=***", re.IGNORECASE),
    (r"token[=:]\s*[a-zA-Z0-9_-]+", "token=***", re.IGNORECASE),
    (r"secret[=:]\s*[^\s]+", "secret=***", re.IGNORECASE),
]

# Absolute filesystem paths (uploads, page images, tessdata, source files)
PATH_PATTERN = r"(?<![\w:/])/(?:[\w.\-]+/)+[\w.\-]+"


def sanitize_error_message(error_message: str, is_production: bool = False) -> str:
    """
    Sanitize error messages to prevent exposing sensitive information.

    Args:
        error_message: Original error message
        is_production: Whether running in production mode

    Returns:
        Sanitized error message safe to return to clients
    """
    if not is_production:
        return error_message

    sanitized = error_message
    for pattern, replacement, flags in REDACTION_PATTERNS:
        sanitized = re.sub(pattern, replacement, sanitized, flags=flags)

    sanitized = re.sub(PATH_PATTERN, "***", sanitized)

    if sanitized != error_message and len(sanitized.strip()) < 10:
        return GENERIC_ERROR_MESSAGE

    return sanitized


def get_safe_error_detail(
    error: Exception | str | None, is_production: bool = False
) -> Optional[str]:
    """
    Get a safe error detail message for client responses.

    Args:
        error: The exception (or captured diagnostic) that occurred
        is_production: Whether running in production mode

    Returns:
        Safe error message for clients, or None when there is nothing to report
    """
    if error is None:
        return None
    error_str = str(error)
    described = error_str
    if isinstance(error, Exception):
        described = f"{type(error).__name__}: {error_str}"
    sanitized = sanitize_error_message(error_str, is_production)

    if is_production:
        technical_indicators = [
            "traceback",
            'file "',
            "attributeerror",
            "typeerror",
            "keyerror",
        ]
        if any(indicator in described.lower() for indicator in technical_indicators):
            return GENERIC_ERROR_MESSAGE

    return sanitized
