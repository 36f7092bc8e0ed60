from __future__ import annotations

import json

import httpx
import pytest

from services.dispatch.resilience import RetryPolicy
from services.dispatch.severity import (
    FALLBACK_RECOMMENDATIONS,
    GeminiSeverityScorer,
    fallback_assessment,
    score_symptoms,
    severity_description,
)
from shared.http.errors import UpstreamDegradedError
from shared.models.emergency import Priority

NO_WAIT = RetryPolicy(attempts=2, initial_delay=0.0, max_delay=0.0)


def _gemini_reply(verdict: dict | str) -> dict:
    text = verdict if isinstance(verdict, str) else json.dumps(verdict)
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _scorer(handler, **overrides) -> GeminiSeverityScorer:
    options = {
        "api_key": "test-key",
        "model": "gemini-test",
        "base_url": "https://generativelanguage.test/v1beta",
        "http_client": httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        "retry_policy": NO_WAIT,
    }
    options.update(overrides)
    return GeminiSeverityScorer(**options)


VERDICT = {
    "severityScore": 87.6,
    "priority": "critical",
    "assessment": "Possible myocardial infarction.",
    "recommendedDepartment": "Cardiology",
    "recommendations": ["Chew aspirin", "Stay seated"],
    "shouldTransport": True,
}


@pytest.mark.anyio("asyncio")
async def test_scorer_parses_model_verdict() -> None:
    seen: dict[str, httpx.Request] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json=_gemini_reply(VERDICT))

    assessment = await _scorer(handler).score("crushing chest pain")

    assert assessment.severity_score == 88
    assert assessment.priority is Priority.CRITICAL
    assert assessment.recommended_department == "Cardiology"
    request = seen["request"]
    assert request.url.path.endswith("/models/gemini-test:generateContent")
    assert request.url.params["key"] == "test-key"
    assert "crushing chest pain" in request.content.decode()


@pytest.mark.anyio("asyncio")
async def test_scorer_accepts_fenced_json() -> None:
    fenced = "```json\n" + json.dumps(VERDICT) + "\n```"

    assessment = await _scorer(lambda request: httpx.Response(200, json=_gemini_reply(fenced))).score("pain")

    assert assessment.priority is Priority.CRITICAL


@pytest.mark.anyio("asyncio")
async def test_server_errors_are_retried() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(503, text="overloaded")
        return httpx.Response(200, json=_gemini_reply(VERDICT))

    assessment = await _scorer(handler).score("pain")

    assert calls["count"] == 2
    assert assessment.severity_score == 88


@pytest.mark.anyio("asyncio")
async def test_unknown_model_disables_the_scorer() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(404, text="models/gemini-test is not found for API version v1beta")

    scorer = _scorer(handler)

    with pytest.raises(UpstreamDegradedError) as excinfo:
        await scorer.score("pain")
    assert excinfo.value.reason == "disabled"
    assert scorer.disabled is True

    fallback = await score_symptoms(scorer, "pain")
    assert fallback == fallback_assessment("disabled")
    assert calls["count"] == 1


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    "body",
    [
        {"candidates": []},
        _gemini_reply("not json at all"),
        _gemini_reply({"severityScore": 40, "priority": "urgent", "shouldTransport": True}),
    ],
)
async def test_malformed_replies_degrade_to_fallback(body) -> None:
    scorer = _scorer(lambda request: httpx.Response(200, json=body))

    assessment = await score_symptoms(scorer, "dizziness")

    assert assessment.severity_score == 50
    assert assessment.priority is Priority.MEDIUM
    assert assessment.recommendations == list(FALLBACK_RECOMMENDATIONS)
    assert assessment.should_transport is True


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("symptoms", [None, "", "   "])
async def test_missing_symptoms_use_fallback_without_calling_out(symptoms) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be called
        raise AssertionError("scorer should not be called")

    assessment = await score_symptoms(_scorer(handler), symptoms)

    assert assessment.assessment.startswith("Symptoms not provided")


@pytest.mark.anyio("asyncio")
async def test_unconfigured_scorer_falls_back() -> None:
    assert (await score_symptoms(None, "pain")).severity_score == 50

    scorer = _scorer(lambda request: httpx.Response(200, json=_gemini_reply(VERDICT)), api_key=None)
    assessment = await score_symptoms(scorer, "pain")
    assert assessment == fallback_assessment("not_configured")


@pytest.mark.parametrize(
    ("score", "prefix"),
    [(95, "Critical"), (80, "Critical"), (60, "High"), (40, "Medium"), (10, "Low")],
)
def test_severity_description_bands(score, prefix) -> None:
    assert severity_description(score).startswith(prefix)
