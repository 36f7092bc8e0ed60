"""Best-effort symptom severity scoring through a Gemini-compatible API."""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx
from pydantic import Field, ValidationError

from shared.config.settings import SeveritySettings
from shared.http.errors import UpstreamDegradedError
from shared.models.base import CamelModel
from shared.models.emergency import Priority, SeverityAssessment
from shared.observability.logger import get_logger

from .resilience import RetryPolicy, call_async_with_retry, raise_for_retryable_status

__all__ = [
    "FALLBACK_RECOMMENDATIONS",
    "GeminiSeverityScorer",
    "SeverityScorer",
    "fallback_assessment",
    "score_symptoms",
    "severity_description",
]

logger = get_logger(__name__)

UPSTREAM = "severity-scorer"

FALLBACK_RECOMMENDATIONS = ("Contact medical professional", "Monitor vital signs", "Stay calm")

_FALLBACK_TEXT = {
    "empty": "Symptoms not provided. Please consult with medical staff.",
    "not_configured": "AI analysis is not configured. Please consult with medical staff.",
    "disabled": "AI analysis is temporarily unavailable. Please consult with medical staff.",
    "failed": "Unable to analyze symptoms. Please consult with medical staff.",
}

_PROMPT = """You are a medical triage AI for an emergency response system.

Analyze the following patient symptoms and provide a JSON response with:
1. severityScore: A number from 0-100 (0=no emergency, 100=life-threatening)
2. priority: One of "critical", "high", "medium", or "low"
3. assessment: A brief medical assessment (1-2 sentences)
4. recommendedDepartment: Suggested hospital department (e.g., ICU, ER, Cardiology)
5. recommendations: Array of 2-3 immediate recommendations for the patient
6. shouldTransport: Boolean indicating if immediate transport is needed

Patient Symptoms: "{symptoms}"

Return ONLY valid JSON, no additional text."""


class SeverityScorer(Protocol):
    """Maps free-text symptoms to a severity assessment.

    Implementations raise :class:`UpstreamDegradedError` when they cannot
    answer; :func:`score_symptoms` turns that into the fixed fallback.
    """

    async def score(self, symptoms: str) -> SeverityAssessment:  # pragma: no cover - interface definition
        ...


class _ScorerVerdict(CamelModel):
    severity_score: float
    priority: Priority
    assessment: str = ""
    recommended_department: str = "Emergency"
    recommendations: list[str] = Field(default_factory=list)
    should_transport: bool

    def to_assessment(self) -> SeverityAssessment:
        score = int(round(min(100.0, max(0.0, self.severity_score))))
        return SeverityAssessment(
            severity_score=score,
            priority=self.priority,
            assessment=self.assessment or severity_description(score),
            recommended_department=self.recommended_department or "Emergency",
            recommendations=list(self.recommendations),
            should_transport=self.should_transport,
        )


def fallback_assessment(reason: str = "failed") -> SeverityAssessment:
    """The deterministic assessment used whenever scoring is unavailable."""

    return SeverityAssessment(
        severity_score=50,
        priority=Priority.MEDIUM,
        assessment=_FALLBACK_TEXT.get(reason, _FALLBACK_TEXT["failed"]),
        recommended_department="Emergency",
        recommendations=list(FALLBACK_RECOMMENDATIONS),
        should_transport=True,
    )


def severity_description(score: int) -> str:
    if score >= 80:
        return "Critical - Immediate emergency intervention required"
    if score >= 60:
        return "High - Urgent medical attention needed"
    if score >= 40:
        return "Medium - Prompt medical evaluation recommended"
    return "Low - Medical evaluation advised"


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    return cleaned.strip()


def _extract_text(payload: Any) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as exc:
        raise UpstreamDegradedError(UPSTREAM, reason="malformed_response") from exc
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


class GeminiSeverityScorer:
    """Calls ``models/{model}:generateContent`` and validates the JSON verdict.

    A reply saying the model "is not found" disables the scorer for the rest
    of the process lifetime, since retrying cannot fix a bad model name.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str],
        model: str,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._retry_policy = retry_policy or RetryPolicy()
        self.disabled = False

    @classmethod
    def from_settings(
        cls, settings: SeveritySettings, *, http_client: httpx.AsyncClient | None = None
    ) -> "GeminiSeverityScorer":
        return cls(
            api_key=settings.api_key,
            model=settings.model,
            base_url=settings.base_url,
            http_client=http_client,
            timeout=settings.timeout_seconds,
            retry_policy=RetryPolicy(attempts=settings.retry_attempts),
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _generate(self, symptoms: str) -> httpx.Response:
        response = await self._client.post(
            f"{self._base_url}/models/{self._model}:generateContent",
            params={"key": self._api_key},
            json={
                "contents": [{"parts": [{"text": _PROMPT.format(symptoms=symptoms)}]}],
                "generationConfig": {"responseMimeType": "application/json"},
            },
        )
        raise_for_retryable_status(response)
        return response

    async def score(self, symptoms: str) -> SeverityAssessment:
        if not self.configured:
            raise UpstreamDegradedError(UPSTREAM, reason="not_configured")
        if self.disabled:
            raise UpstreamDegradedError(UPSTREAM, reason="disabled")

        try:
            response = await call_async_with_retry(
                self._generate, symptoms, policy=self._retry_policy, upstream=UPSTREAM
            )
        except Exception as exc:
            raise UpstreamDegradedError(UPSTREAM, reason="unreachable", detail=str(exc)) from exc

        if response.status_code >= 400:
            if "is not found" in response.text.lower():
                self.disabled = True
                logger.warning("severity_scorer_disabled", model=self._model, status_code=response.status_code)
                raise UpstreamDegradedError(UPSTREAM, reason="disabled")
            raise UpstreamDegradedError(UPSTREAM, reason=f"http_{response.status_code}")

        try:
            text = _extract_text(response.json())
            verdict = _ScorerVerdict.model_validate_json(_strip_code_fence(text))
        except (ValueError, ValidationError) as exc:
            raise UpstreamDegradedError(UPSTREAM, reason="malformed_response") from exc
        return verdict.to_assessment()


async def score_symptoms(scorer: SeverityScorer | None, symptoms: str | None) -> SeverityAssessment:
    """Score ``symptoms``; never raises, degrading to :func:`fallback_assessment`."""

    if not symptoms or not symptoms.strip():
        return fallback_assessment("empty")
    if scorer is None:
        return fallback_assessment("not_configured")

    try:
        return await scorer.score(symptoms.strip())
    except UpstreamDegradedError as exc:
        reason = exc.reason or "failed"
        if reason not in ("not_configured", "disabled"):
            logger.warning("severity_scoring_degraded", reason=reason, detail=exc.detail)
        return fallback_assessment(reason)
    except Exception as exc:  # noqa: BLE001 - scoring must never block dispatch
        logger.exception("severity_scoring_failed", error=str(exc))
        return fallback_assessment("failed")

