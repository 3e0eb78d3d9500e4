import asyncio
import json

import httpx
import pytest

from resume_intake.errors import AnalysisError
from resume_intake.handoff import ANALYSIS_RESULT_KEY, TARGET_JOB_KEY, HandoffSlot, HandoffStore
from resume_intake.models import AnalysisStage, TargetJobInfo
from resume_intake.orchestrators.analysis import (
    AnalysisOrchestrator,
    HttpAnalysisClient,
    can_start_analysis,
)


class FakeClient:
    def __init__(self, result=None, error=None, gate=None):
        self.result = result if result is not None else {"scores": {"total": 80}}
        self.error = error
        self.gate = gate
        self.calls = []

    async def analyze(self, resume_text, target_job):
        self.calls.append((resume_text, target_job))
        if self.gate:
            await self.gate.wait()
        if self.error:
            raise self.error
        return self.result


JOB = TargetJobInfo(title="Backend Engineer", keywords="python, aws")


def test_handoff_slot_is_one_shot():
    slot = HandoffSlot("result")
    assert slot.take() is None
    slot.put({"a": 1})
    assert not slot.is_empty
    assert slot.take() == {"a": 1}
    assert slot.take() is None
    assert slot.is_empty


def test_handoff_put_overwrites():
    store = HandoffStore()
    store.put("k", 1)
    store.put("k", 2)
    assert store.take("k") == 2
    assert store.take("k") is None


def test_handoff_clear():
    store = HandoffStore()
    store.put("a", 1)
    store.put("b", 2)
    store.clear()
    assert store.take("a") is None
    assert store.take("b") is None


def test_can_start_analysis():
    assert can_start_analysis("text", JOB)
    assert not can_start_analysis("text", TargetJobInfo(title="   "))
    assert not can_start_analysis("", JOB)
    assert not can_start_analysis(None, JOB)


def test_keyword_list():
    assert TargetJobInfo(keywords=" Python, ,AWS ").keyword_list() == ["python", "aws"]
    assert TargetJobInfo().keyword_list() == []


@pytest.mark.anyio
async def test_success_puts_result_in_handoff():
    handoff = HandoffStore()
    completed = []
    client = FakeClient()
    orch = AnalysisOrchestrator(client, handoff, on_complete=completed.append)
    stages = []

    result = await orch.analyze("resume text", JOB, on_progress=lambda s, p, m: stages.append((s, p)))

    assert result == {"scores": {"total": 80}}
    assert completed == [result]
    assert stages == [
        (AnalysisStage.PARSING, 10),
        (AnalysisStage.ANALYZING, 40),
        (AnalysisStage.COMPLETE, 100),
    ]
    assert not orch.state.is_loading
    assert handoff.take(ANALYSIS_RESULT_KEY) == result
    assert handoff.take(TARGET_JOB_KEY) is JOB
    assert handoff.take(ANALYSIS_RESULT_KEY) is None


@pytest.mark.anyio
async def test_second_call_while_loading_is_ignored():
    gate = asyncio.Event()
    client = FakeClient(gate=gate)
    orch = AnalysisOrchestrator(client, HandoffStore())

    first = asyncio.create_task(orch.analyze("resume text", JOB))
    await asyncio.sleep(0)
    assert orch.state.is_loading

    assert await orch.analyze("resume text", JOB) is None
    gate.set()
    assert await first is not None
    assert len(client.calls) == 1


@pytest.mark.anyio
async def test_error_message_is_kept_verbatim():
    handoff = HandoffStore()
    orch = AnalysisOrchestrator(FakeClient(error=AnalysisError("Quota exceeded for today")), handoff)

    with pytest.raises(AnalysisError):
        await orch.analyze("resume text", JOB)

    assert orch.state.stage is AnalysisStage.ERROR
    assert orch.state.message == "Quota exceeded for today"
    assert not orch.state.is_loading
    assert handoff.take(ANALYSIS_RESULT_KEY) is None


@pytest.mark.anyio
async def test_unexpected_error_is_wrapped():
    orch = AnalysisOrchestrator(FakeClient(error=KeyError("data")), HandoffStore())
    with pytest.raises(AnalysisError) as exc:
        await orch.analyze("resume text", JOB)
    assert exc.value.message == "Failed to analyze resume"
    assert orch.state.message == "Failed to analyze resume"


@pytest.mark.anyio
async def test_can_analyze_again_after_error():
    client = FakeClient(error=AnalysisError("temporarily down"))
    orch = AnalysisOrchestrator(client, HandoffStore())
    with pytest.raises(AnalysisError):
        await orch.analyze("resume text", JOB)

    client.error = None
    assert await orch.analyze("resume text", JOB) is not None
    assert orch.state.stage is AnalysisStage.COMPLETE


@pytest.mark.anyio
async def test_failing_progress_callback_does_not_lock_analysis():
    client = FakeClient()
    orch = AnalysisOrchestrator(client, HandoffStore())
    raised = []

    def flaky_progress(stage, progress, message):
        if not raised:
            raised.append(stage)
            raise RuntimeError("display went away")

    with pytest.raises(AnalysisError):
        await orch.analyze("resume text", JOB, on_progress=flaky_progress)
    assert not orch.state.is_loading
    assert orch.state.stage is AnalysisStage.ERROR
    assert client.calls == []

    assert await orch.analyze("resume text", JOB) is not None
    assert len(client.calls) == 1
    assert orch.state.stage is AnalysisStage.COMPLETE


def _http_client(handler):
    return HttpAnalysisClient(
        base_url="http://analysis",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.anyio
async def test_http_client_sends_payload_and_returns_data():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.read()
        return httpx.Response(200, json={"status": True, "data": {"scores": {"total": 55}}})

    data = await _http_client(handler).analyze("resume text", JOB)

    assert data == {"scores": {"total": 55}}
    assert seen["url"] == "http://analysis/api/analyze"
    body = json.loads(seen["body"])
    assert body["resume_text"] == "resume text"
    assert body["target_job"]["title"] == "Backend Engineer"
    assert body["target_job"]["keywords"] == "python, aws"


@pytest.mark.anyio
async def test_http_client_uses_error_detail():
    client = _http_client(lambda r: httpx.Response(400, json={"detail": "Target job title is required"}))
    with pytest.raises(AnalysisError) as exc:
        await client.analyze("resume text", JOB)
    assert exc.value.message == "Target job title is required"
    assert exc.value.details["status_code"] == 400


@pytest.mark.anyio
async def test_http_client_status_false():
    client = _http_client(lambda r: httpx.Response(200, json={"status": False, "message": "Model unavailable"}))
    with pytest.raises(AnalysisError) as exc:
        await client.analyze("resume text", JOB)
    assert exc.value.message == "Model unavailable"


@pytest.mark.anyio
async def test_http_client_non_json_error():
    client = _http_client(lambda r: httpx.Response(503, text="upstream down"))
    with pytest.raises(AnalysisError) as exc:
        await client.analyze("resume text", JOB)
    assert exc.value.message == "Analysis failed with status 503"


@pytest.mark.anyio
async def test_http_client_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(AnalysisError) as exc:
        await _http_client(handler).analyze("resume text", JOB)
    assert "Could not reach" in exc.value.message
