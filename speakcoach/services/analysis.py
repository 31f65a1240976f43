"""
Speech analysis providers.

A provider turns an audio reference into a transcript, three 0-100 scores
(pronunciation, fluency, accuracy) and a list of feedback items. Any error or
malformed answer surfaces as AnalysisFailure; partial results are never returned.

Implementations:
- HttpAnalysisProvider : remote analysis service (POST {ANALYSIS_URL}/analyze)
- MockAnalysisProvider : simulated results for development and demos
- RetryingAnalysisProvider : exponential backoff around another provider

Environment variables (see speakcoach.config):
- ANALYSIS_PROVIDER : "mock" (default) or "http"
- ANALYSIS_URL / ANALYSIS_TIMEOUT : remote service location and timeout
- ANALYSIS_MAX_ATTEMPTS / ANALYSIS_RETRY_BASE_DELAY : retry policy
"""
import asyncio
import logging
import random
from abc import ABC, abstractmethod

import httpx
from pydantic import BaseModel, Field, ValidationError

from speakcoach.config import settings
from speakcoach.errors import AnalysisFailure

logger = logging.getLogger(__name__)

# Status codes worth another attempt
_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class FeedbackItem(BaseModel):
    """One feedback entry as returned by a provider."""
    category: str = Field(default="General", min_length=1, max_length=50)
    content: str = Field(min_length=1)
    detailed_analysis: str | None = None
    severity: int | None = Field(default=None, ge=1, le=5)
    word_position: int | None = Field(default=None, ge=0)
    suggestion: str | None = None


class AnalysisResult(BaseModel):
    """Complete analysis of one recording."""
    transcript: str
    pronunciation_score: float = Field(ge=0, le=100, allow_inf_nan=False)
    fluency_score: float = Field(ge=0, le=100, allow_inf_nan=False)
    accuracy_score: float = Field(ge=0, le=100, allow_inf_nan=False)
    feedback_items: list[FeedbackItem] = Field(default_factory=list)


class AnalysisProvider(ABC):
    """Pluggable speech analysis capability."""

    @abstractmethod
    async def analyze(self, audio_url: str) -> AnalysisResult:
        """
        Analyse the audio behind `audio_url`.

        Raises:
            AnalysisFailure: the provider failed or answered with an unusable result
        """

    async def close(self) -> None:
        """Release network resources (no-op by default)."""
        return None


class HttpAnalysisProvider(AnalysisProvider):
    """Calls a remote analysis service over HTTP."""

    def __init__(self, base_url: str, timeout: float = 60.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def analyze(self, audio_url: str) -> AnalysisResult:
        client = self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/analyze",
                json={"audio_url": audio_url},
            )
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            raise AnalysisFailure(f"Analysis service unreachable: {e}", retryable=True) from e

        if response.status_code != 200:
            raise AnalysisFailure(
                f"Analysis service returned {response.status_code} for {audio_url}",
                retryable=response.status_code in _RETRYABLE_STATUS,
            )

        try:
            return AnalysisResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AnalysisFailure(f"Unusable analysis result for {audio_url}: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_MOCK_TRANSCRIPTS = [
    "Hello, how are you today? I am practicing my English speaking skills.",
    "Good morning. This is a test recording for pronunciation practice.",
    "Thank you very much for this opportunity to improve my English.",
    "I would like to schedule a meeting to discuss the project details.",
    "The weather is beautiful today. I think I'll go for a walk in the park.",
]

_MOCK_FEEDBACK = [
    FeedbackItem(
        category="Pronunciation",
        content="The 'th' sound needs improvement",
        detailed_analysis="Focus on placing your tongue between your teeth for clearer 'th' sounds",
        severity=2,
        word_position=3,
        suggestion="Practice words: think, thank, the, this",
    ),
    FeedbackItem(
        category="Fluency",
        content="Good speaking pace",
        detailed_analysis="Your speaking rhythm is natural and easy to understand",
        severity=1,
        suggestion="Keep maintaining this comfortable pace",
    ),
    FeedbackItem(
        category="Grammar",
        content="Excellent sentence structure",
        detailed_analysis="Correct use of present tense and word order",
        severity=1,
        suggestion="Continue using complete sentences",
    ),
]


class MockAnalysisProvider(AnalysisProvider):
    """
    Simulated analysis: random scores in [70, 95], a canned transcript and
    1-3 feedback items. Pass `seed` for reproducible output.
    """

    def __init__(self, delay: float = 1.0, seed: int | None = None):
        self.delay = delay
        self._random = random.Random(seed)

    def _score(self) -> float:
        return round(70 + self._random.random() * 25, 2)

    async def analyze(self, audio_url: str) -> AnalysisResult:
        if self.delay > 0:
            await asyncio.sleep(self.delay)

        count = self._random.randint(1, len(_MOCK_FEEDBACK))
        return AnalysisResult(
            transcript=self._random.choice(_MOCK_TRANSCRIPTS),
            pronunciation_score=self._score(),
            fluency_score=self._score(),
            accuracy_score=self._score(),
            feedback_items=[item.model_copy() for item in _MOCK_FEEDBACK[:count]],
        )


class RetryingAnalysisProvider(AnalysisProvider):
    """
    Retries retryable AnalysisFailures of the wrapped provider with exponential
    backoff (base_delay, 2*base_delay, ...). Non-retryable failures and the last
    attempt's failure propagate unchanged.
    """

    def __init__(self, inner: AnalysisProvider, max_attempts: int = 3, base_delay: float = 1.0):
        self.inner = inner
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay

    async def analyze(self, audio_url: str) -> AnalysisResult:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.inner.analyze(audio_url)
            except AnalysisFailure as e:
                if not e.retryable or attempt == self.max_attempts:
                    logger.warning(
                        "Analysis of %s failed after %d attempt(s): %s",
                        audio_url, attempt, e,
                    )
                    raise
                backoff = self.base_delay * (2 ** (attempt - 1))
                logger.info(
                    "Analysis attempt %d/%d for %s failed: %s, retrying in %.1fs",
                    attempt, self.max_attempts, audio_url, e, backoff,
                )
                await asyncio.sleep(backoff)
        raise AssertionError("unreachable")

    async def close(self) -> None:
        await self.inner.close()


def build_analysis_provider() -> AnalysisProvider:
    """Provider configured by settings, wrapped with the retry policy."""
    if settings.analysis_provider == "http":
        inner: AnalysisProvider = HttpAnalysisProvider(
            settings.analysis_url,
            timeout=settings.analysis_timeout,
        )
    elif settings.analysis_provider == "mock":
        inner = MockAnalysisProvider(delay=settings.mock_analysis_delay)
    else:
        raise ValueError(f"Unknown analysis provider: {settings.analysis_provider!r}")

    return RetryingAnalysisProvider(
        inner,
        max_attempts=settings.analysis_max_attempts,
        base_delay=settings.analysis_retry_base_delay,
    )
