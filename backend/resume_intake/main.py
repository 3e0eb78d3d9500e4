import time
import uuid
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Set

from fastapi import Body, FastAPI, UploadFile, File, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from resume_intake.core import (
    settings,
    AnalysisStartResponse,
    AnalysisStateResponse,
    AnalyzeRequest,
    AnalyzeResponse,
    ExtractResponse,
    FileMetadataOut,
    HandoffResponse,
    StatusResponse,
    StoredFileResponse,
    TargetJobIn,
    TextResponse,
)
from resume_intake.errors import (
    AnalysisError,
    IntakeError,
    ParseError,
    TransportError,
    UploadStateError,
    ValidationError,
)
from resume_intake.handoff import ANALYSIS_RESULT_KEY, TARGET_JOB_KEY, HandoffStore
from resume_intake.log import setup_logging
from resume_intake.models import IncomingFile, StoredFile, TargetJobInfo
from resume_intake.orchestrators.analysis import (
    AnalysisClient,
    AnalysisOrchestrator,
    HttpAnalysisClient,
    can_start_analysis,
)
from resume_intake.orchestrators.upload import UploadOrchestrator
from resume_intake.services.analyzer import analyze_resume
from resume_intake.services.report_pdf import build_pdf

setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(settings.UPLOAD_DIR)
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT] if settings.is_prod else [],
)

rate_limit = limiter.limit(settings.RATE_LIMIT) if settings.is_prod else (lambda fn: fn)

app = FastAPI(title="Resume Intake", version="0.1.0")
app.state.limiter = limiter
# tests swap in a client bound to the ASGI app
app.state.analysis_client = None
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass
class Session:
    session_id: str
    upload: UploadOrchestrator
    handoff: HandoffStore
    analysis: AnalysisOrchestrator
    analysis_task: Optional[asyncio.Task] = None
    tasks: Set[asyncio.Task] = field(default_factory=set)
    last_used: float = field(default_factory=time.monotonic)

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def expired(self, now: float) -> bool:
        return now - self.last_used > settings.SESSION_TTL_SECONDS

    def close(self) -> None:
        for task in list(self.tasks):
            task.cancel()
        self.upload.clear()
        self.handoff.clear()


sessions: Dict[str, Session] = {}
stored_files: Dict[str, StoredFile] = {}


def get_analysis_client() -> AnalysisClient:
    return app.state.analysis_client or HttpAnalysisClient()


def prune_sessions() -> None:
    now = time.monotonic()
    for session_id in [sid for sid, s in sessions.items() if s.expired(now)]:
        sessions.pop(session_id).close()
        logger.info(f"Session {session_id} expired")


def new_session() -> Session:
    prune_sessions()
    handoff = HandoffStore()
    session = Session(
        session_id=str(uuid.uuid4()),
        upload=UploadOrchestrator(),
        handoff=handoff,
        analysis=AnalysisOrchestrator(get_analysis_client(), handoff),
    )
    sessions[session.session_id] = session
    return session


def get_session(session_id: str) -> Session:
    prune_sessions()
    session = sessions.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    session.last_used = time.monotonic()
    return session


_ERROR_STATUS = [
    (ValidationError, 400),
    (ParseError, 422),
    (UploadStateError, 409),
    (AnalysisError, 502),
    (TransportError, 502),
]


@app.exception_handler(IntakeError)
def intake_error_handler(request: Request, exc: IntakeError):
    status_code = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 400)
    return JSONResponse(
        status_code=status_code,
        content={"status": False, "message": exc.message, "details": exc.details},
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"status": False, "message": f"Rate limit exceeded: {settings.RATE_LIMIT} per IP."},
    )


async def run_extraction(session: Session):
    applied = await session.upload.extract()
    state = session.upload.state
    if applied and state.error:
        logger.warning(f"Session {session.session_id}: extraction failed: {state.error}")


async def run_analysis(session: Session, resume_text: str, target_job: TargetJobInfo):
    try:
        await session.analysis.analyze(resume_text, target_job)
    except AnalysisError as e:
        # already recorded on session.analysis.state
        logger.warning(f"Session {session.session_id}: analysis failed: {e.message}")


@app.get("/", tags=["default"])
def root():
    return {"status": "ok", "service": "Resume Intake", "docs": "/docs"}


@app.get("/health", tags=["default"])
def health():
    return {"ok": True, "env": settings.ENV, "rate_limit_enabled": settings.is_prod}


# upload + extraction

@app.post("/api/extract", response_model=ExtractResponse, tags=["upload"])
@rate_limit
async def extract(request: Request, resume: UploadFile = File(...)):
    contents = await resume.read()
    await resume.close()

    incoming = IncomingFile(
        name=resume.filename or "",
        data=contents,
        mime_type=resume.content_type or "",
    )

    session = new_session()
    if not session.upload.select(incoming):
        sessions.pop(session.session_id, None)
        raise HTTPException(status_code=400, detail=session.upload.state.error)

    session.spawn(run_extraction(session))
    return ExtractResponse(status=True, session_id=session.session_id)


@app.get("/api/status/{session_id}", response_model=StatusResponse, tags=["upload"])
async def status(session_id: str):
    state = get_session(session_id).upload.state
    return StatusResponse(
        status=True,
        session_id=session_id,
        phase=state.phase.value,
        stage=state.stage.value,
        progress=state.progress,
        is_uploading=state.is_uploading,
        error=state.error,
        has_text=bool(state.extracted_text),
        metadata=FileMetadataOut(**asdict(state.metadata)) if state.metadata else None,
    )


@app.get("/api/text/{session_id}", response_model=TextResponse, tags=["upload"])
async def text(session_id: str):
    state = get_session(session_id).upload.state
    if not state.extracted_text:
        raise HTTPException(status_code=404, detail="Extracted text not available")
    return TextResponse(status=True, session_id=session_id, text=state.extracted_text)


@app.delete("/api/sessions/{session_id}", tags=["upload"])
async def delete_session(session_id: str):
    session = get_session(session_id)
    session.close()
    sessions.pop(session_id, None)
    return {"status": True, "session_id": session_id}


# analysis

@app.post(
    "/api/sessions/{session_id}/analyze",
    response_model=AnalysisStartResponse,
    status_code=202,
    tags=["analysis"],
)
async def start_analysis(session_id: str, body: TargetJobIn):
    session = get_session(session_id)
    resume_text = session.upload.state.extracted_text
    target_job = TargetJobInfo(**body.model_dump())

    if not can_start_analysis(resume_text, target_job):
        raise HTTPException(
            status_code=400,
            detail="Upload a resume and enter a target job title before analyzing.",
        )

    if session.analysis.state.is_loading or (session.analysis_task and not session.analysis_task.done()):
        return AnalysisStartResponse(status=True, session_id=session_id, started=False)

    session.analysis_task = session.spawn(run_analysis(session, resume_text, target_job))
    return AnalysisStartResponse(status=True, session_id=session_id, started=True)


@app.get("/api/sessions/{session_id}/analysis", response_model=AnalysisStateResponse, tags=["analysis"])
async def analysis_state(session_id: str):
    state = get_session(session_id).analysis.state
    return AnalysisStateResponse(
        status=True,
        session_id=session_id,
        is_loading=state.is_loading,
        progress=state.progress,
        stage=state.stage.value,
        message=state.message,
    )


@app.get("/api/results/{session_id}", response_model=HandoffResponse, tags=["analysis"])
async def results(session_id: str):
    session = get_session(session_id)
    result = session.handoff.take(ANALYSIS_RESULT_KEY)
    if result is None:
        raise HTTPException(status_code=404, detail="Result not found")
    target_job = session.handoff.take(TARGET_JOB_KEY)
    return HandoffResponse(
        status=True,
        session_id=session_id,
        result=result,
        target_job=TargetJobIn(**target_job.to_dict()) if target_job else None,
    )


@app.post("/api/analyze", response_model=AnalyzeResponse, tags=["analysis"])
@rate_limit
def analyze(request: Request, body: AnalyzeRequest):
    target_job = TargetJobInfo(**body.target_job.model_dump())
    try:
        data = analyze_resume(body.resume_text, target_job)
    except AnalysisError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return AnalyzeResponse(status=True, data=data)


@app.post("/api/export", tags=["analysis"])
def export(result: Dict[str, Any] = Body(...)):
    if not result.get("scores"):
        raise HTTPException(status_code=400, detail="Analysis result is missing scores")

    pdf_bytes = build_pdf(result)

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": 'attachment; filename="resume_analysis_report.pdf"'},
    )


# file storage for the multi-file uploader

@app.post("/api/files", response_model=StoredFileResponse, tags=["files"])
async def store_file(request: Request, file: UploadFile = File(...)):
    contents = await file.read()
    await file.close()

    if not contents:
        raise ValidationError("The selected file appears to be empty.", {"file_name": file.filename})
    if len(contents) > settings.max_file_bytes:
        raise ValidationError(
            f"File size must be less than {settings.MAX_FILE_MB}MB.",
            {"file_name": file.filename, "file_size": len(contents)},
        )

    file_id = uuid.uuid4().hex
    name = file.filename or file_id
    path = UPLOAD_DIR / f"{file_id}{Path(name).suffix.lower()}"
    path.write_bytes(contents)

    stored = StoredFile(
        file_id=file_id,
        name=name,
        mime_type=file.content_type or "application/octet-stream",
        size=len(contents),
        path=path,
    )
    stored_files[file_id] = stored
    logger.info(f"Stored {name!r} ({stored.size} bytes) as {file_id}")

    return StoredFileResponse(
        id=file_id,
        url=str(request.url_for("get_file", file_id=file_id)),
        name=stored.name,
        size=stored.size,
        mime_type=stored.mime_type,
    )


@app.get("/api/files/{file_id}", tags=["files"])
def get_file(file_id: str):
    stored = stored_files.get(file_id)
    if not stored or not stored.path.exists():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(stored.path, media_type=stored.mime_type, filename=stored.name)
