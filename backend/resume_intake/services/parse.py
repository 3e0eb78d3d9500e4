from __future__ import annotations

import asyncio
import logging
import math
import mimetypes
import re
import threading
import time
import zipfile
from io import BytesIO
from typing import Callable, Optional, Tuple

import fitz  # pymupdf
from docx import Document
from docx.opc.exceptions import PackageNotFoundError

from resume_intake.core import settings
from resume_intake.errors import (
    ParseError,
    ParseCorruptedError,
    ParsePasswordProtectedError,
    ParseSizeError,
    ParseTimeoutError,
    ParseUnsupportedFormatError,
)
from resume_intake.models import FileMetadata, IncomingFile, ParsedFile, Stage
from resume_intake.services.validator import MIME_SIGNATURES, format_file_size, sniff_mismatch

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Stage, int, str], None]
Extractor = Callable[[bytes, ProgressCallback], Tuple[str, Optional[int]]]

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME = "application/msword"
TEXT_MIME = "text/plain"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


class _Abandoned(Exception):
    """Raised inside the worker thread once the caller stopped waiting."""


class _ProgressRelay:
    """
    Forwards progress from the extraction thread to the caller's callback on
    the event loop. Drops anything that would move the percentage backwards
    and everything after close().
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, callback: Optional[ProgressCallback]):
        self._loop = loop
        self._callback = callback
        self._last = 0
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    def emit(self, stage: Stage, percent: int, message: str) -> None:
        """Thread-side entry point."""
        if self.closed:
            raise _Abandoned()
        self._loop.call_soon_threadsafe(self.deliver, stage, percent, message)

    def deliver(self, stage: Stage, percent: int, message: str) -> None:
        if self.closed or self._callback is None:
            return
        percent = max(0, min(100, int(percent)))
        if percent < self._last:
            return
        self._last = percent
        self._callback(stage, percent, message)


def _clean_text(t: str) -> str:
    t = t.replace("\x00", " ")
    t = _CONTROL_CHARS.sub("", t)
    t = re.sub(r"[ \t]+", " ", t)
    t = re.sub(r"\n{3,}", "\n\n", t)
    return t.strip()


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def extract_text_from_pdf(data: bytes, report: ProgressCallback) -> Tuple[str, Optional[int]]:
    report(Stage.EXTRACTING, 10, "Loading PDF document...")
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise ParseCorruptedError("This PDF file appears to be corrupted or invalid.") from e

    with doc:
        if doc.needs_pass:
            raise ParsePasswordProtectedError(
                "This PDF is password-protected. Please remove the password and try again."
            )
        page_count = doc.page_count
        if page_count == 0:
            raise ParseCorruptedError("This PDF appears to be empty or corrupted.")

        report(Stage.EXTRACTING, 30, "Parsing PDF structure...")
        chunks = []
        for num, page in enumerate(doc, start=1):
            report(
                Stage.EXTRACTING,
                30 + round(num / page_count * 60),
                f"Extracting text from page {num} of {page_count}...",
            )
            chunks.append(page.get_text("text"))

    return "\n".join(chunks), page_count


def extract_text_from_docx(data: bytes, report: ProgressCallback) -> Tuple[str, Optional[int]]:
    report(Stage.EXTRACTING, 20, "Loading DOCX document...")
    try:
        doc = Document(BytesIO(data))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise ParseCorruptedError(
            "Failed to parse DOCX file. The file may be corrupted or in an unsupported format."
        ) from e

    report(Stage.EXTRACTING, 50, "Extracting text content...")
    parts = [p.text for p in doc.paragraphs]
    # include tables (basic)
    for table in doc.tables:
        for row in table.rows:
            parts.append(" | ".join(cell.text.strip() for cell in row.cells))
    report(Stage.EXTRACTING, 90, "Text content extracted")
    return "\n".join(parts), None


def extract_text_from_plain(data: bytes, report: ProgressCallback) -> Tuple[str, Optional[int]]:
    report(Stage.EXTRACTING, 50, "Reading text file...")
    return data.decode("utf-8", errors="replace"), None


def _pick_extractor(file: IncomingFile) -> Extractor:
    mime = (file.mime_type or "").lower()
    ext = file.extension

    if mime == PDF_MIME or ext == ".pdf":
        return extract_text_from_pdf
    if mime == DOCX_MIME or ext == ".docx":
        return extract_text_from_docx
    if mime == DOC_MIME or ext == ".doc":
        raise ParseUnsupportedFormatError(
            "Legacy .doc files are not supported. Please convert the file to DOCX or PDF."
        )
    if mime == TEXT_MIME or ext == ".txt":
        return extract_text_from_plain
    raise ParseUnsupportedFormatError("Unsupported file type. Please upload a PDF or DOCX file.")


def _check_signature(file: IncomingFile) -> None:
    if not sniff_mismatch(file):
        return
    # Encrypted OOXML documents are wrapped in an OLE container
    if file.extension == ".docx" and file.data.startswith(MIME_SIGNATURES[".doc"]):
        raise ParsePasswordProtectedError(
            "This document is password-protected. Please remove the password and try again."
        )
    raise ParseCorruptedError(
        f"File content does not match {file.extension} format. "
        "File may be corrupted or have the wrong extension."
    )


def _run_extraction(extractor: Extractor, data: bytes, relay: _ProgressRelay) -> Tuple[str, Optional[int]]:
    result = extractor(data, relay.emit)
    if relay.closed:
        raise _Abandoned()
    return result


async def parse_file(
    file: IncomingFile,
    on_progress: Optional[ProgressCallback] = None,
    max_file_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> ParsedFile:
    """
    Extract plain text and metadata from a PDF, DOCX or plain-text resume.

    Progress is reported as (stage, percent, message) in the order
    uploading -> extracting -> processing -> complete. The extraction runs in
    a worker thread; if it does not finish within ``timeout`` seconds a
    ParseTimeoutError is raised and whatever the thread produces later is
    discarded.

    Raises:
        ParseError subclass describing why extraction failed.
    """
    max_file_size = settings.max_file_bytes if max_file_size is None else max_file_size
    timeout = settings.PARSE_TIMEOUT_SECONDS if timeout is None else timeout

    loop = asyncio.get_running_loop()
    relay = _ProgressRelay(loop, on_progress)
    started = time.perf_counter()

    relay.deliver(Stage.UPLOADING, 5, "Starting file processing...")
    try:
        extractor = _pick_extractor(file)
        if file.size > max_file_size:
            raise ParseSizeError(
                f"File exceeds the {format_file_size(max_file_size)} processing limit.",
                {"file_size": file.size, "max_file_size": max_file_size},
            )
        _check_signature(file)

        raw_text, page_count = await asyncio.wait_for(
            asyncio.to_thread(_run_extraction, extractor, file.data, relay),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        relay.close()
        logger.warning(f"Extraction timed out after {timeout}s: {file.name}")
        raise ParseTimeoutError(
            "File parsing timed out. Please try with a smaller file.", {"timeout": timeout}
        ) from None
    except ParseError:
        relay.close()
        raise
    except Exception as e:
        relay.close()
        logger.exception(f"Unexpected extraction failure for {file.name}")
        raise ParseCorruptedError("An unexpected error occurred while parsing the file.") from e

    relay.deliver(Stage.PROCESSING, 95, "Finalizing text extraction...")
    text = _clean_text(raw_text)
    if not text:
        relay.close()
        raise ParseCorruptedError(
            "No text content could be extracted from this file. "
            "It may be an image-based PDF or corrupted."
        )

    metadata = FileMetadata(
        file_name=file.name,
        file_size=file.size,
        mime_type=file.mime_type or mimetypes.guess_type(file.name)[0] or "",
        page_count=page_count,
        word_count=count_words(text),
        character_count=len(text),
        extraction_time_ms=math.ceil((time.perf_counter() - started) * 1000),
    )

    relay.deliver(Stage.COMPLETE, 100, "File processing complete!")
    relay.close()

    logger.info(
        f"Extracted {metadata.character_count} characters ({metadata.word_count} words) "
        f"from {file.name} in {metadata.extraction_time_ms}ms"
    )
    return ParsedFile(text=text, metadata=metadata)
