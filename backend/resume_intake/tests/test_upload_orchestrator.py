import asyncio
import time

import pytest

from resume_intake.errors import GENERIC_PARSE_MESSAGE, ParseErrorKind, user_message_for
from resume_intake.models import FileMetadata, IncomingFile, ParsedFile, Phase, Stage, UploadState
from resume_intake.orchestrators.upload import UploadOrchestrator
from resume_intake.services import parse

PDF = "application/pdf"


def test_rejected_selection():
    orch = UploadOrchestrator()
    assert orch.select(IncomingFile("resume.pdf", b"", PDF)) is False
    assert orch.state.phase is Phase.REJECTED
    assert orch.state.stage is Stage.ERROR
    assert "empty" in orch.state.error
    assert orch.state.selected_file is None


def test_accepted_selection_is_ready(resume_pdf):
    orch = UploadOrchestrator()
    assert orch.select(IncomingFile("resume.pdf", resume_pdf, PDF))
    assert orch.state.phase is Phase.READY
    assert orch.state.error is None
    assert orch.state.metadata.file_size == len(resume_pdf)


def test_clear_is_idempotent(resume_pdf):
    orch = UploadOrchestrator()
    orch.select(IncomingFile("resume.pdf", resume_pdf, PDF))
    orch.clear()
    first = orch.state
    orch.clear()
    assert orch.state == first == UploadState()
    assert orch.state.phase is Phase.IDLE


def test_drag_and_drop(resume_pdf):
    orch = UploadOrchestrator()
    orch.drag_enter()
    assert orch.state.is_drag_active
    orch.drag_leave()
    assert not orch.state.is_drag_active

    orch.drag_enter()
    assert orch.drop([]) is False
    assert not orch.state.is_drag_active

    assert orch.drop([IncomingFile("resume.pdf", resume_pdf, PDF), IncomingFile("other.pdf", b"x", PDF)])
    assert orch.state.selected_file.name == "resume.pdf"


@pytest.mark.anyio
async def test_extract_refused_without_selection():
    assert await UploadOrchestrator().extract() is False


@pytest.mark.anyio
async def test_process_extracts_text(resume_pdf):
    changes = []
    orch = UploadOrchestrator(on_change=lambda s: changes.append((s.stage, s.progress)))

    assert await orch.process(IncomingFile("resume.pdf", resume_pdf, PDF))

    state = orch.state
    assert state.phase is Phase.EXTRACTED
    assert state.stage is Stage.COMPLETE
    assert state.progress == 100
    assert not state.is_uploading
    assert "Jane Doe" in state.extracted_text
    assert state.metadata.page_count == 1

    progress = [p for _, p in changes]
    assert progress == sorted(progress)
    assert (Stage.EXTRACTING, 10) in changes


@pytest.mark.anyio
async def test_timeout_gets_timeout_message(monkeypatch, resume_pdf):
    def slow_extract(data, report):
        time.sleep(0.3)
        return "text", 1

    monkeypatch.setattr(parse, "extract_text_from_pdf", slow_extract)
    orch = UploadOrchestrator(timeout=0.05)

    await orch.process(IncomingFile("resume.pdf", resume_pdf, PDF))

    assert orch.state.phase is Phase.FAILED
    assert orch.state.stage is Stage.ERROR
    assert orch.state.error == user_message_for(ParseErrorKind.TIMEOUT)
    assert orch.state.error != GENERIC_PARSE_MESSAGE
    assert "timed out" in orch.state.error


@pytest.mark.anyio
async def test_password_protected_message(make_pdf):
    orch = UploadOrchestrator()
    await orch.process(IncomingFile("resume.pdf", make_pdf(["x"], password="pw"), PDF))
    assert orch.state.phase is Phase.FAILED
    assert "remove the password" in orch.state.error


@pytest.mark.anyio
async def test_unexpected_error_gets_generic_message(resume_pdf):
    async def broken_parser(file, **kwargs):
        raise RuntimeError("boom")

    orch = UploadOrchestrator(parser=broken_parser)
    await orch.process(IncomingFile("resume.pdf", resume_pdf, PDF))
    assert orch.state.error == GENERIC_PARSE_MESSAGE


@pytest.mark.anyio
async def test_retry_after_failure(resume_pdf):
    calls = []

    async def flaky_parser(file, on_progress=None, **kwargs):
        calls.append(file.name)
        if len(calls) == 1:
            raise RuntimeError("first attempt fails")
        return ParsedFile("hello world", FileMetadata(file.name, file.size, file.mime_type, word_count=2))

    orch = UploadOrchestrator(parser=flaky_parser)
    await orch.process(IncomingFile("resume.pdf", resume_pdf, PDF))
    assert orch.state.phase is Phase.FAILED

    assert await orch.extract()
    assert orch.state.phase is Phase.EXTRACTED
    assert orch.state.error is None
    assert orch.state.extracted_text == "hello world"


@pytest.mark.anyio
async def test_stale_extraction_is_discarded(resume_pdf):
    release = asyncio.Event()

    async def gated_parser(file, on_progress=None, **kwargs):
        await release.wait()
        on_progress(Stage.EXTRACTING, 60, "late")
        return ParsedFile("stale text", FileMetadata(file.name, file.size, file.mime_type))

    orch = UploadOrchestrator(parser=gated_parser)
    orch.select(IncomingFile("first.pdf", resume_pdf, PDF))
    task = asyncio.create_task(orch.extract())
    await asyncio.sleep(0)
    assert orch.state.phase is Phase.EXTRACTING

    orch.select(IncomingFile("second.pdf", resume_pdf, PDF))
    release.set()

    assert await task is False
    assert orch.state.selected_file.name == "second.pdf"
    assert orch.state.phase is Phase.READY
    assert orch.state.extracted_text is None
    assert orch.state.progress == 0


@pytest.mark.anyio
async def test_clear_during_extraction(resume_pdf):
    release = asyncio.Event()

    async def gated_parser(file, **kwargs):
        await release.wait()
        return ParsedFile("text", FileMetadata(file.name, file.size, file.mime_type))

    orch = UploadOrchestrator(parser=gated_parser)
    orch.select(IncomingFile("resume.pdf", resume_pdf, PDF))
    task = asyncio.create_task(orch.extract())
    await asyncio.sleep(0)

    orch.clear()
    release.set()

    assert await task is False
    assert orch.state == UploadState()
