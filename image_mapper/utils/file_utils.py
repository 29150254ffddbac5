"""Upload handling utilities for the Excel Image Mapper."""

import logging
import os
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from werkzeug.datastructures import FileStorage

from .exceptions import FileProcessingError, ValidationError

logger = logging.getLogger(__name__)


def validate_file_extension(filename: str, allowed_extensions: List[str]) -> bool:
    """Validate file extension against allowed list."""
    if not filename:
        return False

    extension = Path(filename).suffix.lower().lstrip(".")
    return extension in [ext.lower().lstrip(".") for ext in allowed_extensions]


def validate_file_size(
    file_obj: Union[BinaryIO, FileStorage], max_size_mb: int
) -> bool:
    """Validate file size against maximum allowed size."""
    if hasattr(file_obj, "seek") and hasattr(file_obj, "tell"):
        current_pos = file_obj.tell()
        file_obj.seek(0, os.SEEK_END)
        file_size = file_obj.tell()
        file_obj.seek(current_pos)
    elif getattr(file_obj, "content_length", None):
        file_size = file_obj.content_length
    else:
        return True  # Can't determine size, allow it

    return file_size <= max_size_mb * 1024 * 1024


def read_uploaded_file(
    file_obj: Union[BinaryIO, FileStorage],
    allowed_extensions: Optional[List[str]] = None,
    max_size_mb: Optional[int] = None,
    field_name: str = "file",
) -> bytes:
    """Validate an uploaded file and return its content."""
    filename = getattr(file_obj, "filename", None) or ""

    if allowed_extensions and not validate_file_extension(filename, allowed_extensions):
        raise ValidationError(
            f"Invalid {field_name} '{filename}'. Allowed: {', '.join(allowed_extensions)}"
        )

    stream = getattr(file_obj, "stream", file_obj)
    if max_size_mb and not validate_file_size(stream, max_size_mb):
        raise ValidationError(
            f"{field_name} exceeds maximum allowed size of {max_size_mb}MB"
        )

    try:
        content = file_obj.read()
    except OSError as e:
        raise FileProcessingError(f"Failed to read uploaded {field_name}: {e}")

    logger.info(f"Received {field_name} '{filename}' ({len(content)} bytes)")
    return content


def base_name_of(filename: str, default: str) -> str:
    """Filename without directory or extension, for naming output files."""
    stem = Path(filename or "").stem.strip()
    return stem or default
