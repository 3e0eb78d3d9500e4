from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

from resume_intake.errors import BatchRejectedError, TransportError, UploadStateError
from resume_intake.models import (
    FileCategory,
    FileStatus,
    IncomingFile,
    UploadedFile,
    UploadStats,
)
from resume_intake.services.transport import HttpUploadTransport
from resume_intake.services.validator import ValidationRules, validate

logger = logging.getLogger(__name__)

Files = Tuple[UploadedFile, ...]


@dataclass(frozen=True)
class UploadPolicy:
    max_size: int
    allowed_types: Sequence[str]
    max_files: int
    min_files: int = 0
    allow_duplicates: bool = False

    def rules(self) -> ValidationRules:
        return ValidationRules(
            max_size_bytes=self.max_size,
            allowed_mime_types=tuple(t for t in self.allowed_types if "/" in t),
            allowed_extensions=tuple(t.lower() for t in self.allowed_types if t.startswith(".")),
        )


@dataclass(frozen=True)
class AddFilesResult:
    added: Files = ()
    errors: Tuple[str, ...] = ()


def file_category(mime_type: str) -> FileCategory:
    t = (mime_type or "").lower()
    if t.startswith("image/"):
        return FileCategory.IMAGE
    if t.startswith("video/"):
        return FileCategory.VIDEO
    if t.startswith("audio/"):
        return FileCategory.AUDIO
    if "pdf" in t or "document" in t or "text" in t or "msword" in t:
        return FileCategory.DOCUMENT
    if "zip" in t or "rar" in t or "tar" in t:
        return FileCategory.ARCHIVE
    return FileCategory.OTHER


class MultiFileUploader:
    """
    Tracks a set of files, each uploaded independently.

    ``files`` is an immutable tuple replaced on every change; entries are
    updated by id. Each upload attempt gets a number, and progress or
    results from an attempt that is no longer current (file removed,
    cancelled or retried) are ignored.
    """

    def __init__(
        self,
        policy: UploadPolicy,
        transport: Optional[HttpUploadTransport] = None,
        auto_upload: bool = True,
        on_files_change: Optional[Callable[[Files], None]] = None,
        on_upload_complete: Optional[Callable[[Files], None]] = None,
        on_upload_error: Optional[Callable[[str, UploadedFile], None]] = None,
        initial_files: Iterable[UploadedFile] = (),
    ):
        self.policy = policy
        self.transport = transport
        self.auto_upload = auto_upload
        self.on_files_change = on_files_change
        self.on_upload_complete = on_upload_complete
        self.on_upload_error = on_upload_error
        self._files: Files = tuple(initial_files)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._attempts: Dict[str, int] = {}

    @property
    def files(self) -> Files:
        return self._files

    @property
    def stats(self) -> UploadStats:
        return UploadStats(
            total=len(self._files),
            completed=sum(1 for f in self._files if f.status is FileStatus.SUCCESS),
            uploading=sum(1 for f in self._files if f.status is FileStatus.UPLOADING),
            failed=sum(1 for f in self._files if f.status is FileStatus.ERROR),
        )

    def get(self, file_id: str) -> Optional[UploadedFile]:
        return next((f for f in self._files if f.id == file_id), None)

    def _set(self, files: Files) -> None:
        self._files = files
        if self.on_files_change:
            self.on_files_change(files)

    def _update(self, file_id: str, **changes) -> bool:
        if self.get(file_id) is None:
            return False
        self._set(tuple(replace(f, **changes) if f.id == file_id else f for f in self._files))
        return True

    # selection

    def add_files(self, files: Sequence[IncomingFile]) -> AddFilesResult:
        """
        Validate and add a batch.

        Raises:
            BatchRejectedError: the batch would exceed ``max_files``; nothing is added.
            UploadStateError: automatic upload is on but no event loop is running; nothing is added.
        """
        if len(self._files) + len(files) > self.policy.max_files:
            raise BatchRejectedError(
                f"Maximum {self.policy.max_files} files allowed",
                {"current": len(self._files), "requested": len(files)},
            )

        if self.auto_upload and self.transport is not None:
            self._require_loop()

        rules = self.policy.rules()
        accepted = []
        errors = []
        for file in files:
            verdict = validate(file, rules)
            if not verdict.ok:
                errors.append(f"{file.name}: {verdict.reason}")
                continue
            if not self.policy.allow_duplicates and self._is_duplicate(file, accepted):
                errors.append(f"{file.name}: Duplicate file detected")
                continue
            accepted.append(
                UploadedFile(
                    id=uuid.uuid4().hex,
                    file=file,
                    name=file.name,
                    size=file.size,
                    mime_type=file.mime_type,
                    category=file_category(file.mime_type),
                )
            )

        if errors:
            logger.warning(f"File validation errors: {errors}")
        if accepted:
            self._set(self._files + tuple(accepted))
            if self.auto_upload and self.transport is not None:
                for f in accepted:
                    self.start_upload(f.id)

        return AddFilesResult(added=tuple(accepted), errors=tuple(errors))

    def _is_duplicate(self, file: IncomingFile, pending: Sequence[UploadedFile]) -> bool:
        return any(f.name == file.name and f.size == file.size for f in (*self._files, *pending))

    def check_min_files(self) -> Optional[str]:
        if len(self._files) < self.policy.min_files:
            return f"At least {self.policy.min_files} files required"
        return None

    def remove_file(self, file_id: str) -> bool:
        """Remove in any status; an in-flight upload is aborted."""
        if self.get(file_id) is None:
            return False
        self._abort(file_id)
        self._set(tuple(f for f in self._files if f.id != file_id))
        return True

    # uploads

    def start_upload(self, file_id: str) -> None:
        f = self.get(file_id)
        if f is None:
            raise UploadStateError(f"Unknown file: {file_id}")
        if f.status is not FileStatus.PENDING:
            raise UploadStateError(f"Cannot start upload from status {f.status.value}")
        self._launch(file_id)

    def retry_upload(self, file_id: str) -> None:
        f = self.get(file_id)
        if f is None:
            raise UploadStateError(f"Unknown file: {file_id}")
        if f.status is not FileStatus.ERROR:
            raise UploadStateError(f"Only failed uploads can be retried (status is {f.status.value})")
        self._launch(file_id)

    def cancel_upload(self, file_id: str) -> bool:
        f = self.get(file_id)
        if f is None or f.status is not FileStatus.UPLOADING:
            return False
        self._abort(file_id)
        return self._update(file_id, status=FileStatus.CANCELLED)

    async def wait(self) -> None:
        """Wait until no upload is in flight."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError as e:
            raise UploadStateError("Uploads must be started from a running event loop") from e

    def _launch(self, file_id: str) -> None:
        if self.transport is None:
            raise UploadStateError("No upload transport configured")
        loop = self._require_loop()
        self._abort(file_id)
        attempt = self._attempts.get(file_id, 0) + 1
        self._attempts[file_id] = attempt
        self._update(file_id, status=FileStatus.UPLOADING, progress=0, error=None)
        task = loop.create_task(self._run(file_id, attempt))
        self._tasks[file_id] = task

    def _abort(self, file_id: str) -> None:
        # bumping the attempt makes any late callback from the old task stale
        self._attempts[file_id] = self._attempts.get(file_id, 0) + 1
        task = self._tasks.pop(file_id, None)
        if task is not None and not task.done():
            task.cancel()

    def _is_current(self, file_id: str, attempt: int) -> bool:
        f = self.get(file_id)
        return f is not None and f.status is FileStatus.UPLOADING and self._attempts.get(file_id) == attempt

    async def _run(self, file_id: str, attempt: int) -> None:
        uploaded = self.get(file_id)

        def on_progress(sent: int, total: int) -> None:
            if total <= 0 or not self._is_current(file_id, attempt):
                return
            percent = min(100, round(sent / total * 100))
            if percent > self.get(file_id).progress:
                self._update(file_id, progress=percent)

        try:
            body = await self.transport.send(uploaded.file, on_progress)
        except TransportError as e:
            self._fail(file_id, attempt, e.message)
            return
        except Exception:
            logger.exception(f"Unexpected upload failure for {uploaded.name!r}")
            self._fail(file_id, attempt, "Upload failed")
            return

        if not self._is_current(file_id, attempt):
            return
        self._update(
            file_id,
            status=FileStatus.SUCCESS,
            progress=100,
            remote_url=body.get("url"),
            thumbnail_url=body.get("thumbnail_url") or body.get("thumbnailUrl"),
            metadata={k: v for k, v in body.items() if k not in ("url", "thumbnail_url", "thumbnailUrl")} or None,
            uploaded_at=datetime.now(timezone.utc),
        )
        logger.info(f"Uploaded {uploaded.name!r} -> {body.get('url')}")
        self._check_all_done()

    def _fail(self, file_id: str, attempt: int, message: str) -> None:
        if not self._is_current(file_id, attempt):
            return
        self._update(file_id, status=FileStatus.ERROR, error=message)
        if self.on_upload_error:
            self.on_upload_error(message, self.get(file_id))

    def _check_all_done(self) -> None:
        if not self.on_upload_complete or not self._files:
            return
        if all(f.status is FileStatus.SUCCESS for f in self._files):
            self.on_upload_complete(self._files)
