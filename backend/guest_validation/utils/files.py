import logging
from pathlib import PurePath
from typing import Iterable, Optional

from guest_validation.core.config import settings
from guest_validation.core.errors import FileTooLarge, InvalidFileType
from guest_validation.services.spreadsheet_parser import FileKind, detect_kind

logger = logging.getLogger(__name__)

def validate_upload(
    filename: Optional[str],
    size: int,
    max_size_mb: Optional[int] = None,
    allowed_extensions: Optional[Iterable[str]] = None,
) -> FileKind:
    """
    Validate an uploaded guest list before it is parsed.
    Returns the detected FileKind, raises InvalidFileType or FileTooLarge.
    """
    if max_size_mb is None:
        max_size_mb = settings.MAX_UPLOAD_SIZE_MB
    if allowed_extensions is None:
        allowed_extensions = settings.ALLOWED_UPLOAD_EXTENSIONS

    # Check extension
    suffix = PurePath(filename or "").suffix.lower()
    allowed = {ext.lower() for ext in allowed_extensions}
    if suffix not in allowed:
        logger.warning(f"Rejected upload {filename!r}: extension not allowed")
        raise InvalidFileType(f"Only {', '.join(sorted(allowed))} files are allowed")

    # Check size
    if size > max_size_mb * 1024 * 1024:
        size_mb = size / (1024 * 1024)
        logger.warning(f"Rejected upload {filename!r}: {size_mb:.2f}MB")
        raise FileTooLarge(f"File too large: {size_mb:.2f}MB (max {max_size_mb}MB)")

    return detect_kind(filename)
