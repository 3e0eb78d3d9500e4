"""Pre-flight checks for selected files. Pure functions, no I/O."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from resume_intake.core import settings
from resume_intake.errors import ValidationError
from resume_intake.models import IncomingFile

# Magic bytes per extension
MIME_SIGNATURES = {
    ".pdf": b"%PDF",
    ".docx": b"PK\x03\x04",
    ".doc": b"\xd0\xcf\x11\xe0",
}


@dataclass(frozen=True)
class ValidationRules:
    max_size_bytes: int
    allowed_mime_types: Sequence[str] = field(default_factory=tuple)
    allowed_extensions: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: Optional[str] = None


DEFAULT_RULES = ValidationRules(
    max_size_bytes=settings.max_file_bytes,
    allowed_mime_types=tuple(settings.ALLOWED_MIME_TYPES),
    allowed_extensions=tuple(settings.ALLOWED_EXTENSIONS),
)


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = 0
    while i < len(units) - 1 and num_bytes >= 1024 ** (i + 1):
        i += 1
    value = round(num_bytes / (1024 ** i), 2)
    return f"{value:g} {units[i]}"


def _compact_size(num_bytes: int) -> str:
    # "10MB" rather than "10 MB" in limit messages
    return format_file_size(num_bytes).replace(" ", "")


def _mime_allowed(mime_type: str, allowed: Sequence[str]) -> bool:
    mt = (mime_type or "").strip().lower()
    if not mt:
        return False
    for a in allowed:
        a = a.lower()
        if a.endswith("/*"):
            if mt.startswith(a[:-1]):
                return True
        elif mt == a:
            return True
    return False


def validate(file: IncomingFile, rules: ValidationRules = DEFAULT_RULES) -> ValidationResult:
    if file.size == 0:
        return ValidationResult(False, "The selected file appears to be empty.")

    if file.size > rules.max_size_bytes:
        return ValidationResult(
            False, f"File size must be less than {_compact_size(rules.max_size_bytes)}."
        )

    ext = file.extension
    allowed_exts = {e.lower() for e in rules.allowed_extensions}
    if not _mime_allowed(file.mime_type, rules.allowed_mime_types) and ext not in allowed_exts:
        supported = ", ".join(sorted(e.lstrip(".").upper() for e in allowed_exts)) or "none"
        return ValidationResult(
            False, f"Unsupported file type. Please upload one of: {supported}."
        )

    return ValidationResult(True)


def validate_or_raise(file: IncomingFile, rules: ValidationRules = DEFAULT_RULES) -> None:
    result = validate(file, rules)
    if not result.ok:
        raise ValidationError(result.reason, {"file_name": file.name, "file_size": file.size})


def sniff_mismatch(file: IncomingFile) -> bool:
    """
    True when the file claims an extension with a known signature but its
    leading bytes say otherwise (e.g. a renamed image posing as a PDF).
    """
    expected = MIME_SIGNATURES.get(file.extension)
    if expected is None:
        return False
    return not file.data.startswith(expected)
