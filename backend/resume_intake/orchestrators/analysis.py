from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from resume_intake.core import settings
from resume_intake.errors import AnalysisError
from resume_intake.handoff import ANALYSIS_RESULT_KEY, TARGET_JOB_KEY, HandoffStore
from resume_intake.models import AnalysisLoadingState, AnalysisStage, TargetJobInfo

logger = logging.getLogger(__name__)

AnalysisResult = Dict[str, Any]
AnalysisProgress = Callable[[AnalysisStage, int, str], None]


class AnalysisClient(Protocol):
    async def analyze(self, resume_text: str, target_job: TargetJobInfo) -> AnalysisResult:
        ...


class HttpAnalysisClient:
    """Calls the remote analysis capability over HTTP."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.ANALYSIS_SERVICE_URL).rstrip("/")
        self.timeout = settings.ANALYSIS_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = client

    async def _post(self, url: str, payload: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, json=payload, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=payload)

    async def analyze(self, resume_text: str, target_job: TargetJobInfo) -> AnalysisResult:
        payload = {"resume_text": resume_text, "target_job": target_job.to_dict()}
        try:
            response = await self._post(f"{self.base_url}/api/analyze", payload)
        except httpx.HTTPError as e:
            logger.error(f"Analysis service request failed: {e}")
            raise AnalysisError("Could not reach the analysis service. Please try again.") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            detail = body.get("detail") if isinstance(body, dict) else None
            if not isinstance(detail, str):
                detail = f"Analysis failed with status {response.status_code}"
            logger.error(f"Analysis service error: {response.status_code} - {detail}")
            raise AnalysisError(detail, {"status_code": response.status_code})

        if not isinstance(body, dict) or not body.get("status"):
            message = body.get("message") if isinstance(body, dict) else None
            raise AnalysisError(message or "Analysis failed")

        return body.get("data") or {}


def can_start_analysis(extracted_text: Optional[str], target_job: TargetJobInfo) -> bool:
    return bool(extracted_text) and bool((target_job.title or "").strip())


class AnalysisOrchestrator:
    """
    Owns the "extracted text + target job -> analysis result" lifecycle.

    One analysis at a time: calling analyze() while one is loading does
    nothing. On success the result and the target job are put into the
    session's hand-off slots for the results view to take.
    """

    def __init__(
        self,
        client: AnalysisClient,
        handoff: HandoffStore,
        on_complete: Optional[Callable[[AnalysisResult], None]] = None,
    ):
        self.client = client
        self.handoff = handoff
        self.on_complete = on_complete
        self.state = AnalysisLoadingState()

    def _report(
        self,
        stage: AnalysisStage,
        progress: int,
        message: str,
        on_progress: Optional[AnalysisProgress],
        is_loading: bool = True,
    ) -> None:
        self.state = AnalysisLoadingState(
            is_loading=is_loading, progress=progress, stage=stage, message=message
        )
        if on_progress:
            on_progress(stage, progress, message)

    async def analyze(
        self,
        resume_text: str,
        target_job: TargetJobInfo,
        on_progress: Optional[AnalysisProgress] = None,
    ) -> Optional[AnalysisResult]:
        if self.state.is_loading:
            logger.info("Analysis already in progress; ignoring request")
            return None

        try:
            self._report(AnalysisStage.PARSING, 10, "Preparing resume for analysis...", on_progress)
            self._report(AnalysisStage.ANALYZING, 40, "Analyzing resume against the target job...", on_progress)
            result = await self.client.analyze(resume_text, target_job)
        except AnalysisError as e:
            self._report(AnalysisStage.ERROR, self.state.progress, e.message, on_progress, is_loading=False)
            raise
        except asyncio.CancelledError:
            self.state.is_loading = False
            raise
        except Exception as e:
            logger.exception("Analysis failed unexpectedly")
            message = "Failed to analyze resume"
            self._report(AnalysisStage.ERROR, self.state.progress, message, on_progress, is_loading=False)
            raise AnalysisError(message) from e

        self.handoff.put(ANALYSIS_RESULT_KEY, result)
        self.handoff.put(TARGET_JOB_KEY, target_job)
        self._report(AnalysisStage.COMPLETE, 100, "Analysis complete!", on_progress, is_loading=False)

        if self.on_complete:
            self.on_complete(result)
        return result
