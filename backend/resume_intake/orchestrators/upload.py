from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Sequence

from resume_intake.core import settings
from resume_intake.errors import ParseError, user_message_for, GENERIC_PARSE_MESSAGE
from resume_intake.models import (
    FileMetadata,
    IncomingFile,
    ParsedFile,
    Phase,
    Stage,
    UploadState,
)
from resume_intake.services.parse import parse_file
from resume_intake.services.validator import DEFAULT_RULES, ValidationRules, validate

logger = logging.getLogger(__name__)

Parser = Callable[..., Awaitable[ParsedFile]]


class UploadOrchestrator:
    """
    Owns the "selected file -> extracted text" lifecycle for one upload
    widget / session.

    Every selection, drop or clear bumps ``generation``; an extraction
    remembers the generation it started under and its progress and result
    are dropped if that no longer matches.
    """

    def __init__(
        self,
        rules: ValidationRules = DEFAULT_RULES,
        timeout: Optional[float] = None,
        on_change: Optional[Callable[[UploadState], None]] = None,
        parser: Parser = parse_file,
    ):
        self.rules = rules
        self.timeout = settings.PARSE_TIMEOUT_SECONDS if timeout is None else timeout
        self.on_change = on_change
        self._parser = parser
        self._generation = 0
        self.state = UploadState()

    @property
    def generation(self) -> int:
        return self._generation

    def _notify(self) -> None:
        if self.on_change:
            self.on_change(self.state)

    # selection

    def select(self, file: IncomingFile) -> bool:
        """Picker selection. Returns True when the file was accepted."""
        self._generation += 1
        self.state = UploadState(selected_file=file, phase=Phase.SELECTED)
        self._notify()

        self.state.phase = Phase.VALIDATING
        verdict = validate(file, self.rules)
        if not verdict.ok:
            logger.info(f"Rejected {file.name!r}: {verdict.reason}")
            self.state = UploadState(error=verdict.reason, stage=Stage.ERROR, phase=Phase.REJECTED)
            self._notify()
            return False

        self.state.phase = Phase.READY
        self.state.metadata = FileMetadata(
            file_name=file.name,
            file_size=file.size,
            mime_type=file.mime_type,
        )
        self._notify()
        return True

    def drop(self, files: Sequence[IncomingFile]) -> bool:
        self.state.is_drag_active = False
        if not files:
            self._notify()
            return False
        return self.select(files[0])

    def drag_enter(self) -> None:
        self.state.is_drag_active = True
        self._notify()

    def drag_leave(self) -> None:
        self.state.is_drag_active = False
        self._notify()

    def clear(self) -> None:
        self._generation += 1
        self.state = UploadState()
        self._notify()

    # extraction

    async def extract(self) -> bool:
        """
        Run text extraction for the selected file.

        Allowed from READY, or from FAILED as a retry. Returns True when the
        outcome (success or failure) was applied to the state, False when the
        call was refused or its result went stale.
        """
        if self.state.selected_file is None or self.state.phase not in (Phase.READY, Phase.FAILED):
            return False

        self._generation += 1
        generation = self._generation
        file = self.state.selected_file

        self.state.phase = Phase.EXTRACTING
        self.state.is_uploading = True
        self.state.error = None
        self.state.extracted_text = None
        self.state.progress = 0
        self.state.stage = Stage.UPLOADING
        self._notify()

        def on_progress(stage: Stage, percent: int, message: str) -> None:
            if generation != self._generation or percent < self.state.progress:
                return
            self.state.progress = percent
            # complete is set together with the text below
            if stage is not Stage.COMPLETE:
                self.state.stage = stage
            self._notify()

        try:
            parsed = await self._parser(
                file,
                on_progress=on_progress,
                max_file_size=self.rules.max_size_bytes,
                timeout=self.timeout,
            )
        except ParseError as e:
            if generation != self._generation:
                return False
            logger.warning(f"Extraction failed for {file.name!r} ({e.kind}): {e.message}")
            self._fail(user_message_for(e.kind, self.rules.max_size_bytes // (1024 * 1024)))
            return True
        except Exception:
            if generation != self._generation:
                return False
            logger.exception(f"Unexpected extraction failure for {file.name!r}")
            self._fail(GENERIC_PARSE_MESSAGE)
            return True

        if generation != self._generation:
            logger.debug(f"Discarding stale extraction result for {file.name!r}")
            return False

        self.state.is_uploading = False
        self.state.extracted_text = parsed.text
        self.state.metadata = parsed.metadata
        self.state.progress = 100
        self.state.stage = Stage.COMPLETE
        self.state.phase = Phase.EXTRACTED
        self._notify()
        return True

    async def process(self, file: IncomingFile) -> bool:
        """Select and, if accepted, extract straight away."""
        if not self.select(file):
            return False
        return await self.extract()

    def _fail(self, message: str) -> None:
        self.state.is_uploading = False
        self.state.error = message
        self.state.stage = Stage.ERROR
        self.state.phase = Phase.FAILED
        self._notify()
