"""Metered analysis boundary: every call to the token-metered backend goes through here."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from voicedesc.config import Settings
from voicedesc.errors import (
    BudgetExceededError,
    ExternalServiceError,
    ResourceExhaustionError,
    VoiceDescError,
)
from voicedesc.models.cost import OptimizationOptions, TokenUsage
from voicedesc.services.cache.keys import make_cache_key
from voicedesc.services.cost.optimizer import CostOptimizer, estimate_tokens
from voicedesc.services.cost.rate_limit import TokenBucket
from voicedesc.services.interfaces import IMeteredAnalysisBackend
from voicedesc.services.retry import call_with_timeout, retry_async

logger = logging.getLogger(__name__)


class MeteredResponse(BaseModel):
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model: str
    cached: bool = False
    cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class MeteredAnalyzer:
    """Cache check, pacing, timeout and retry around the metered backend.

    Order per call: optional prompt optimization, cache lookup, budget
    check, rate limiting, backend call, ledger entry, cache store.
    """

    def __init__(
        self,
        backend: IMeteredAnalysisBackend,
        optimizer: CostOptimizer,
        *,
        model: str = "claude-sonnet-4-20250514",
        request_bucket: TokenBucket | None = None,
        token_bucket: TokenBucket | None = None,
        timeout: float = 300.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        compression_level: str | None = None,
        allow_downgrade: bool = False,
        use_semantic: bool = False,
        budget: float | None = None,
        expected_completion_tokens: int = 1024,
    ) -> None:
        self.backend = backend
        self.optimizer = optimizer
        self.model = model
        self.request_bucket = request_bucket
        self.token_bucket = token_bucket
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.compression_level = compression_level
        self.allow_downgrade = allow_downgrade
        self.use_semantic = use_semantic
        self.budget = budget
        self.expected_completion_tokens = expected_completion_tokens
        self.spent = 0.0
        self.backend_calls = 0

    @classmethod
    def from_settings(
        cls,
        backend: IMeteredAnalysisBackend,
        optimizer: CostOptimizer,
        settings: Settings,
    ) -> MeteredAnalyzer:
        return cls(
            backend,
            optimizer,
            model=settings.llm_model,
            request_bucket=TokenBucket(settings.llm_requests_per_minute),
            token_bucket=TokenBucket(settings.llm_tokens_per_minute),
            timeout=settings.external_call_timeout_seconds,
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            compression_level=settings.prompt_compression,
            allow_downgrade=settings.allow_model_downgrade,
            use_semantic=settings.cache_semantic_enabled,
            budget=settings.llm_budget_usd,
            expected_completion_tokens=settings.llm_max_tokens,
        )

    async def analyze(
        self,
        ref: str,
        prompt: str,
        model: str | None = None,
        fingerprint: str | None = None,
        use_semantic: bool | None = None,
    ) -> MeteredResponse:
        """Analyze the content at ``ref``.

        Args:
            ref: Storage reference of the image or chunk.
            prompt: Analysis prompt.
            model: Model id; defaults to the configured model.
            fingerprint: Content fingerprint for the cache key; defaults to ``ref``.
            use_semantic: Override the configured semantic-lookup setting.

        Raises:
            BudgetExceededError: If the configured spend limit is used up.
            ExternalServiceError: If the backend keeps failing.
        """
        model = model or self.model
        if self.compression_level or self.allow_downgrade:
            optimized = self.optimizer.optimize(
                prompt,
                model,
                OptimizationOptions(
                    compression_level=self.compression_level,
                    allow_downgrade=self.allow_downgrade,
                ),
            )
            prompt = optimized.optimized_prompt
            model = optimized.recommended_model

        key = make_cache_key(model, prompt, fingerprint or ref)
        semantic = self.use_semantic if use_semantic is None else use_semantic
        lookup = await self.optimizer.check_cache(key, prompt=prompt, use_semantic=semantic)
        if lookup is not None:
            return MeteredResponse(**lookup.entry.value, cached=True, cost=0.0)

        if self.budget is not None and self.spent >= self.budget:
            raise BudgetExceededError(
                f"LLM budget of ${self.budget:.2f} exhausted",
                details={"spent": self.spent, "budget": self.budget},
            )

        if self.request_bucket is not None:
            await self.request_bucket.acquire()
        if self.token_bucket is not None:
            await self.token_bucket.acquire(estimate_tokens(prompt) + self.expected_completion_tokens)

        async def _call():
            self.backend_calls += 1
            try:
                return await call_with_timeout(
                    self.backend.analyze(ref, prompt, model), self.timeout, service="llm"
                )
            except VoiceDescError:
                raise
            except Exception as e:
                raise ExternalServiceError(f"llm failed: {e}", service="llm") from e

        response = await retry_async(
            _call,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )

        used_model = response.model or model
        self.optimizer.track_usage(
            TokenUsage(
                prompt_tokens=response.prompt_tokens,
                completion_tokens=response.completion_tokens,
                model=used_model,
            )
        )
        cost = self.optimizer.estimate_cost(
            response.prompt_tokens, response.completion_tokens, used_model
        ).cost
        self.spent += cost

        value = {
            "text": response.text,
            "prompt_tokens": response.prompt_tokens,
            "completion_tokens": response.completion_tokens,
            "model": used_model,
        }
        try:
            await self.optimizer.store(key, value, response.total_tokens, prompt=prompt)
        except ResourceExhaustionError as e:
            logger.warning("Response not cached: %s", e.message)

        return MeteredResponse(**value, cost=cost)
