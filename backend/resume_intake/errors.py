"""
Error taxonomy for resume intake.

Callers branch on the exception class (or on ``ParseError.kind``), never on
the message text. Messages are written for end users.
"""
from enum import Enum
from typing import Optional


class IntakeError(Exception):
    """Base exception for all intake errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(IntakeError):
    """File rejected before any I/O."""


class BatchRejectedError(ValidationError):
    """A whole batch was refused (e.g. it would exceed the file count limit)."""


class UploadStateError(IntakeError):
    """Operation is not allowed from the file's current status."""


class ParseErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CORRUPTED = "corrupted"
    PASSWORD_PROTECTED = "password_protected"
    UNSUPPORTED_FORMAT = "unsupported_format"
    SIZE = "size"


class ParseError(IntakeError):
    kind: Optional[ParseErrorKind] = None


class ParseTimeoutError(ParseError):
    kind = ParseErrorKind.TIMEOUT


class ParseCorruptedError(ParseError):
    kind = ParseErrorKind.CORRUPTED


class ParsePasswordProtectedError(ParseError):
    kind = ParseErrorKind.PASSWORD_PROTECTED


class ParseUnsupportedFormatError(ParseError):
    kind = ParseErrorKind.UNSUPPORTED_FORMAT


class ParseSizeError(ParseError):
    kind = ParseErrorKind.SIZE


class AnalysisError(IntakeError):
    """Remote analysis failed or returned an unsuccessful payload."""


class TransportError(IntakeError):
    """Upload failed with a non-2xx response or a network error."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[dict] = None):
        self.status_code = status_code
        super().__init__(message, details)


GENERIC_PARSE_MESSAGE = "Failed to process the file. Please try again."

_PARSE_MESSAGES = {
    ParseErrorKind.TIMEOUT: "File processing timed out. Please try with a smaller file.",
    ParseErrorKind.CORRUPTED: "The file appears to be corrupted. Please try with a different file.",
    ParseErrorKind.PASSWORD_PROTECTED: (
        "Password-protected files are not supported. Please remove the password and try again."
    ),
    ParseErrorKind.UNSUPPORTED_FORMAT: "This file format is not supported. Please upload a PDF or DOCX file.",
    ParseErrorKind.SIZE: "File is too large. Please use a smaller file.",
}


def user_message_for(kind: Optional[ParseErrorKind], max_file_mb: Optional[int] = None) -> str:
    if kind is ParseErrorKind.SIZE and max_file_mb:
        return f"File is too large. Please use a file smaller than {max_file_mb}MB."
    return _PARSE_MESSAGES.get(kind, GENERIC_PARSE_MESSAGE)
