"""Tests for the metered analysis boundary and its retry helpers."""

import asyncio
from types import SimpleNamespace

import pytest

from conftest import FakeMeteredBackend, FakeStorage
from voicedesc.errors import BudgetExceededError, ExternalServiceError
from voicedesc.models.media import AnalysisResponse
from voicedesc.services.cache.lru import LRUCache
from voicedesc.services.cache.response_cache import ResponseCache
from voicedesc.services.cache.semantic import SemanticIndex
from voicedesc.services.cost.optimizer import CostOptimizer
from voicedesc.services.llm.claude import ClaudeVisionBackend
from voicedesc.services.llm.metered import MeteredAnalyzer
from voicedesc.services.retry import backoff_delay, call_with_timeout, retry_async

SONNET = "claude-sonnet-4-20250514"
PROMPT = "Describe this frame for a blind viewer, including people, actions and any visible text."


def _make_analyzer(backend, **kwargs) -> MeteredAnalyzer:
    semantic = kwargs.pop("semantic", None)
    optimizer = CostOptimizer(ResponseCache(LRUCache(), semantic=semantic), default_model=SONNET)
    kwargs.setdefault("base_delay", 0.0)
    kwargs.setdefault("max_delay", 0.0)
    return MeteredAnalyzer(backend, optimizer, model=SONNET, **kwargs)


class _FlakyBackend:
    def __init__(self, failures: int, retryable: bool = True) -> None:
        self.failures = failures
        self.retryable = retryable
        self.calls = 0

    async def analyze(self, ref: str, prompt: str, model: str) -> AnalysisResponse:
        self.calls += 1
        if self.calls <= self.failures:
            raise ExternalServiceError("rate limited", service="llm", retryable=self.retryable)
        return AnalysisResponse(text="ok", prompt_tokens=10, completion_tokens=5, model=model)


class TestRetry:
    def test_backoff_is_exponential_and_capped(self) -> None:
        assert backoff_delay(1, 1.0, 10.0) == 1.0
        assert backoff_delay(2, 1.0, 10.0) == 2.0
        assert backoff_delay(3, 1.0, 10.0) == 4.0
        assert backoff_delay(6, 1.0, 10.0) == 10.0

    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self) -> None:
        delays: list[float] = []

        async def _sleep(delay: float) -> None:
            delays.append(delay)

        backend = _FlakyBackend(failures=2)
        result = await retry_async(lambda: backend.analyze("r", "p", "m"), base_delay=1.0, sleep=_sleep)
        assert result.text == "ok"
        assert backend.calls == 3
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        backend = _FlakyBackend(failures=5)
        with pytest.raises(ExternalServiceError):
            await retry_async(lambda: backend.analyze("r", "p", "m"), max_attempts=3, base_delay=0.0)
        assert backend.calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self) -> None:
        backend = _FlakyBackend(failures=1, retryable=False)
        with pytest.raises(ExternalServiceError):
            await retry_async(lambda: backend.analyze("r", "p", "m"), base_delay=0.0)
        assert backend.calls == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_retryable_error(self) -> None:
        with pytest.raises(ExternalServiceError) as exc_info:
            await call_with_timeout(asyncio.sleep(1), 0.01, "segmentation")
        assert exc_info.value.code == "TIMEOUT"
        assert exc_info.value.retryable
        assert exc_info.value.service == "segmentation"


class TestMeteredAnalyzer:
    @pytest.mark.asyncio
    async def test_repeated_call_hits_cache(self) -> None:
        backend = FakeMeteredBackend()
        analyzer = _make_analyzer(backend)

        first = await analyzer.analyze("chunks/a.jpg", PROMPT, fingerprint="fp-a")
        second = await analyzer.analyze("chunks/a.jpg", PROMPT, fingerprint="fp-a")

        assert len(backend.calls) == 1
        assert not first.cached
        assert second.cached
        assert second.text == first.text
        assert second.cost == 0.0
        assert first.cost == pytest.approx(0.4 * 0.003 + 0.2 * 0.015)

    @pytest.mark.asyncio
    async def test_fingerprint_separates_content(self) -> None:
        backend = FakeMeteredBackend()
        analyzer = _make_analyzer(backend)
        await analyzer.analyze("chunks/a.jpg", PROMPT, fingerprint="fp-a")
        await analyzer.analyze("chunks/a.jpg", PROMPT, fingerprint="fp-b")
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_usage_is_tracked(self) -> None:
        analyzer = _make_analyzer(FakeMeteredBackend())
        await analyzer.analyze("chunks/a.jpg", PROMPT)
        ledger = analyzer.optimizer.ledger
        assert len(ledger) == 1
        assert ledger[0].total_tokens == 600
        assert analyzer.backend_calls == 1

    @pytest.mark.asyncio
    async def test_retryable_failure_is_retried(self) -> None:
        backend = _FlakyBackend(failures=2)
        analyzer = _make_analyzer(backend, max_attempts=3)
        response = await analyzer.analyze("chunks/a.jpg", PROMPT)
        assert response.text == "ok"
        assert backend.calls == 3

    @pytest.mark.asyncio
    async def test_unexpected_backend_error_is_wrapped(self) -> None:
        backend = FakeMeteredBackend(crash_refs={"chunks/a.jpg"})
        analyzer = _make_analyzer(backend, max_attempts=3)
        with pytest.raises(ExternalServiceError) as excinfo:
            await analyzer.analyze("chunks/a.jpg", PROMPT)
        assert excinfo.value.service == "llm"
        assert not excinfo.value.retryable
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_budget_exhaustion(self) -> None:
        analyzer = _make_analyzer(FakeMeteredBackend(), budget=0.001)
        await analyzer.analyze("chunks/a.jpg", PROMPT, fingerprint="one")
        with pytest.raises(BudgetExceededError):
            await analyzer.analyze("chunks/b.jpg", PROMPT, fingerprint="two")

    @pytest.mark.asyncio
    async def test_cached_response_ignores_budget(self) -> None:
        analyzer = _make_analyzer(FakeMeteredBackend(), budget=0.001)
        await analyzer.analyze("chunks/a.jpg", PROMPT, fingerprint="one")
        response = await analyzer.analyze("chunks/a.jpg", PROMPT, fingerprint="one")
        assert response.cached

    @pytest.mark.asyncio
    async def test_downgrade_changes_model(self) -> None:
        backend = FakeMeteredBackend()
        analyzer = _make_analyzer(backend, allow_downgrade=True)
        response = await analyzer.analyze("chunks/a.jpg", "describe")
        assert backend.calls[0][2] == "claude-3-5-haiku-20241022"
        assert response.model == "claude-3-5-haiku-20241022"

    @pytest.mark.asyncio
    async def test_compression_applied_before_call(self) -> None:
        backend = FakeMeteredBackend()
        analyzer = _make_analyzer(backend, compression_level="low")
        await analyzer.analyze("chunks/a.jpg", "describe    the\n\nframe")
        assert backend.calls[0][1] == "describe the frame"

    @pytest.mark.asyncio
    async def test_semantic_hit_across_fingerprints(self) -> None:
        backend = FakeMeteredBackend()
        analyzer = _make_analyzer(backend, semantic=SemanticIndex(), use_semantic=True)
        await analyzer.analyze("chunks/a.jpg", PROMPT, fingerprint="one")
        response = await analyzer.analyze("chunks/b.jpg", PROMPT, fingerprint="two")
        assert response.cached
        assert len(backend.calls) == 1


class _FakeMessages:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.kwargs: dict = {}

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.response


def _make_claude(storage: FakeStorage, messages: _FakeMessages) -> ClaudeVisionBackend:
    backend = ClaudeVisionBackend(storage, api_key="test-key")
    backend._client = SimpleNamespace(messages=messages)
    return backend


class TestClaudeVisionBackend:
    @pytest.mark.asyncio
    async def test_sends_image_block_and_reports_usage(self) -> None:
        storage = FakeStorage()
        await storage.put("chunks/a.jpg", b"\xff\xd8jpeg")
        response = SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"description": "A dog."}')],
            usage=SimpleNamespace(input_tokens=1200, output_tokens=80),
            model=SONNET,
        )
        messages = _FakeMessages(response=response)

        result = await _make_claude(storage, messages).analyze("chunks/a.jpg", PROMPT, SONNET)

        assert result.text == '{"description": "A dog."}'
        assert result.prompt_tokens == 1200
        assert result.completion_tokens == 80
        content = messages.kwargs["messages"][0]["content"]
        assert content[0]["source"]["media_type"] == "image/jpeg"
        assert content[1] == {"type": "text", "text": PROMPT}

    @pytest.mark.asyncio
    async def test_unsupported_extension(self) -> None:
        storage = FakeStorage()
        await storage.put("clips/a.mp4", b"video")
        with pytest.raises(ExternalServiceError):
            await _make_claude(storage, _FakeMessages()).analyze("clips/a.mp4", PROMPT, SONNET)

    @pytest.mark.asyncio
    async def test_unavailable_without_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        backend = ClaudeVisionBackend(FakeStorage())
        assert not backend.is_available
        with pytest.raises(ExternalServiceError):
            await backend.analyze("chunks/a.jpg", PROMPT, SONNET)
