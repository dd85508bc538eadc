"""
Error taxonomy for the guest pipeline.

Every failure the pipeline can surface to staff is one of these classes.
Services raise them; API routes catch them and turn them into
HTTPException responses (or error frames on the live WebSocket).
"""
from typing import Optional


class GuestValidationError(Exception):
    """Base class. `code` is stable, `message` is shown to the user."""

    code = "guest_validation_error"
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, cause: Optional[BaseException] = None):
        self.message = message or self.default_message
        self.cause = cause
        super().__init__(self.message)


# ------------------------------------------------------------------------------
# Upload pre-checks
# ------------------------------------------------------------------------------
class InvalidFileType(GuestValidationError):
    code = "invalid_file_type"
    status_code = 400
    default_message = "Only CSV, XLS and XLSX files are allowed"


class FileTooLarge(GuestValidationError):
    code = "file_too_large"
    status_code = 413
    default_message = "File is too large"


# ------------------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------------------
class ParseError(GuestValidationError):
    code = "parse_error"
    status_code = 422


class EmptyWorkbook(ParseError):
    code = "empty_workbook"
    default_message = "The workbook does not contain any worksheet"


class InsufficientRows(ParseError):
    code = "insufficient_rows"
    default_message = "The file must contain a header row and at least one data row"


class NoHeadersDetected(ParseError):
    code = "no_headers_detected"
    default_message = "Could not detect the columns of the file"


class NoValidDataRows(ParseError):
    code = "no_valid_data_rows"
    default_message = "No valid data rows were found"


class ParseFailure(ParseError):
    code = "parse_failure"
    default_message = "The file could not be read"


# ------------------------------------------------------------------------------
# Store
# ------------------------------------------------------------------------------
class PersistenceFailed(GuestValidationError):
    code = "persistence_failed"
    status_code = 500
    default_message = "Guests could not be saved to the database"


class LoadFailed(GuestValidationError):
    code = "load_failed"
    status_code = 500
    default_message = "Guests could not be loaded from the database"


class UpdateFailed(GuestValidationError):
    code = "update_failed"
    status_code = 500
    default_message = "Guest status could not be updated"


class RecordNotFound(UpdateFailed):
    code = "record_not_found"
    status_code = 404
    default_message = "Guest not found"
