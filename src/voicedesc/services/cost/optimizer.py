"""Cost optimization for the token-metered backend.

Wraps the response cache with pricing, prompt compression, model
downgrade, budget-aware batching and a bounded token-usage ledger.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any

from voicedesc.errors import ValidationError
from voicedesc.models.cost import (
    BatchOptions,
    BatchOutcome,
    BatchRequest,
    CacheEntry,
    CacheLookup,
    CostAnalytics,
    CostEstimate,
    ModelCostSummary,
    OptimizationOptions,
    OptimizationResult,
    TokenUsage,
)
from voicedesc.services.cache.keys import make_cache_key
from voicedesc.services.cache.response_cache import ResponseCache
from voicedesc.services.cost.pricing import ModelPricingTable

logger = logging.getLogger(__name__)

BatchProcessor = Callable[[list[BatchRequest]], Awaitable[Sequence[Any]]]

_WHITESPACE = re.compile(r"\s+")
_DUPLICATE_WORD = re.compile(r"\b(\w+)\s+\1\b", re.IGNORECASE)
_LIST_PUNCTUATION = re.compile(r"\s*[,;]\s*")
_STOP_WORDS = re.compile(
    r"\b(the|a|an|is|are|was|were|been|be|have|has|had|do|does|did)\b", re.IGNORECASE
)
_SPECIAL_CHARS = re.compile(r"[^\w\s.!?]")
_CAMEL_CASE = re.compile(r"\b[A-Z][a-z]+[A-Z]\w*\b")
_NUMBERS = re.compile(r"\d+")
_SENTENCE_PUNCTUATION = re.compile(r"[.!?;:]")

COMPRESSION_LEVELS = ("low", "medium", "high")
DOWNGRADE_COMPLEXITY_THRESHOLD = 0.5
HIGH_USAGE_TOKENS = 1000
TOP_MODELS = 5


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / 4)


def compress_prompt(prompt: str, level: str) -> str:
    """Shrink a prompt.

    ``low`` collapses whitespace, ``medium`` also drops immediately repeated
    words and normalizes list punctuation, ``high`` also strips stop words
    and special characters.
    """
    if level == "low":
        return _WHITESPACE.sub(" ", prompt).strip()
    if level == "medium":
        compressed = _WHITESPACE.sub(" ", prompt)
        compressed = _DUPLICATE_WORD.sub(r"\1", compressed)
        compressed = _LIST_PUNCTUATION.sub(", ", compressed)
        return compressed.strip()
    if level == "high":
        compressed = _WHITESPACE.sub(" ", prompt)
        compressed = _STOP_WORDS.sub("", compressed)
        compressed = _DUPLICATE_WORD.sub(r"\1", compressed)
        compressed = _SPECIAL_CHARS.sub("", compressed)
        return _WHITESPACE.sub(" ", compressed).strip()
    raise ValidationError(f"Unknown compression level: {level}")


def prompt_complexity(prompt: str) -> float:
    """Average of five normalized complexity signals, roughly 0..1."""
    factors = [
        min(len(prompt) / 1000, 1.0),
        len(set(prompt.lower().split())) / 100,
        len(_CAMEL_CASE.findall(prompt)) / 10,
        len(_NUMBERS.findall(prompt)) / 20,
        len(_SENTENCE_PUNCTUATION.findall(prompt)) / 50,
    ]
    return sum(factors) / len(factors)


def truncate_to_token_limit(text: str, max_tokens: int) -> str:
    """Cut ``text`` to about ``max_tokens``, preferring a sentence end."""
    if estimate_tokens(text) <= max_tokens:
        return text
    target = max_tokens * 4
    truncated = text[:target]
    last_period = truncated.rfind(".")
    if last_period > target * 0.8:
        truncated = truncated[: last_period + 1]
    return truncated


class CostOptimizer:
    """Cost-aware front for every call to the metered backend."""

    def __init__(
        self,
        cache: ResponseCache,
        pricing: ModelPricingTable | None = None,
        default_model: str = "claude-sonnet-4-20250514",
        ledger_size: int = 1000,
    ) -> None:
        self.cache = cache
        self.pricing = pricing or ModelPricingTable()
        self.default_model = default_model
        self._ledger: deque[TokenUsage] = deque(maxlen=ledger_size)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @property
    def cache_hit_rate(self) -> float:
        return self.cache.hit_rate

    async def check_cache(
        self,
        key: str,
        prompt: str | None = None,
        use_semantic: bool = False,
    ) -> CacheLookup | None:
        return await self.cache.lookup(key, prompt=prompt, use_semantic=use_semantic)

    async def store(
        self,
        key: str,
        response: Any,
        token_cost: int,
        prompt: str | None = None,
    ) -> CacheEntry:
        return await self.cache.store(key, response, token_cost, prompt=prompt)

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def estimate_cost(self, prompt_tokens: int, completion_tokens: int, model: str) -> CostEstimate:
        tokens = prompt_tokens + completion_tokens
        cost = self.pricing.cost(model, prompt_tokens, completion_tokens)
        if cost is None:
            logger.warning("Unknown model for cost estimation: %s", model)
            return CostEstimate(tokens=tokens, known_model=False)
        hit_rate = self.cache_hit_rate
        return CostEstimate(
            tokens=tokens,
            cost=cost,
            cache_savings_estimate=cost * hit_rate,
            cache_hit_rate=hit_rate,
        )

    def optimize(
        self,
        prompt: str,
        model: str,
        options: OptimizationOptions | None = None,
    ) -> OptimizationResult:
        """Compress, possibly downgrade, then truncate a prompt."""
        options = options or OptimizationOptions()
        optimized = prompt
        recommended = model
        savings = 0.0

        if options.compression_level:
            optimized = compress_prompt(prompt, options.compression_level)
            pricing = self.pricing.get(model)
            if pricing is not None:
                saved_tokens = estimate_tokens(prompt) - estimate_tokens(optimized)
                savings += saved_tokens / 1000 * pricing.input_cost_per_1k

        if options.allow_downgrade and prompt_complexity(optimized) < DOWNGRADE_COMPLEXITY_THRESHOLD:
            cheaper = self.pricing.downgrade_for(model)
            if cheaper is not None:
                original = self.pricing.get(model)
                replacement = self.pricing.get(cheaper)
                recommended = cheaper
                savings += (
                    estimate_tokens(optimized)
                    / 1000
                    * (original.input_cost_per_1k - replacement.input_cost_per_1k)
                )
                logger.debug("Downgrading %s to %s for a simple prompt", model, cheaper)

        if options.max_tokens:
            optimized = truncate_to_token_limit(optimized, options.max_tokens)

        return OptimizationResult(
            optimized_prompt=optimized,
            recommended_model=recommended,
            estimated_savings=savings,
        )

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    async def batch(
        self,
        requests: list[BatchRequest],
        processor: BatchProcessor,
        options: BatchOptions | None = None,
    ) -> BatchOutcome:
        """Process requests through ``processor`` within an optional budget.

        Requests answered from the cache cost nothing. The rest are ordered
        by priority (highest first, arrival order on ties) and accepted as a
        prefix while their estimated cost fits the remaining budget; the
        first request that does not fit and every request after it are
        skipped.
        """
        options = options or BatchOptions()
        outcome = BatchOutcome()

        pending: list[BatchRequest] = []
        for request in requests:
            key = make_cache_key(request.model or self.default_model, request.prompt, request.fingerprint)
            lookup = await self.check_cache(key)
            if lookup is not None:
                outcome.results[request.id] = lookup.entry.value
                outcome.cached.append(request.id)
            else:
                pending.append(request)

        ordered = sorted(pending, key=lambda r: -r.priority)
        accepted: list[BatchRequest] = []
        spent = 0.0
        for index, request in enumerate(ordered):
            if options.budget is not None and spent + request.estimated_cost > options.budget:
                outcome.skipped = [r.id for r in ordered[index:]]
                logger.warning(
                    "Budget %.4f reached; skipping %d request(s)", options.budget, len(outcome.skipped)
                )
                break
            accepted.append(request)
            spent += request.estimated_cost

        batches = [
            accepted[i : i + options.batch_size] for i in range(0, len(accepted), options.batch_size)
        ]
        for wave_start in range(0, len(batches), options.max_concurrent):
            wave = batches[wave_start : wave_start + options.max_concurrent]
            wave_results = await asyncio.gather(*(self._run_batch(b, processor) for b in wave))
            for batch_results in wave_results:
                outcome.results.update(batch_results)
            if options.delay_seconds and wave_start + options.max_concurrent < len(batches):
                await asyncio.sleep(options.delay_seconds)

        outcome.processed = [r.id for r in accepted]
        outcome.total_cost = spent
        logger.info(
            "Batch complete: %d cached, %d processed, %d skipped, cost %.4f",
            len(outcome.cached),
            len(outcome.processed),
            len(outcome.skipped),
            outcome.total_cost,
        )
        return outcome

    @staticmethod
    async def _run_batch(batch: list[BatchRequest], processor: BatchProcessor) -> dict[str, Any]:
        results = await processor(batch)
        if len(results) != len(batch):
            raise ValidationError(
                f"Batch processor returned {len(results)} results for {len(batch)} requests"
            )
        return {request.id: result for request, result in zip(batch, results)}

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    @property
    def ledger(self) -> list[TokenUsage]:
        return list(self._ledger)

    def track_usage(self, usage: TokenUsage) -> None:
        self._ledger.append(usage)
        if usage.total_tokens > HIGH_USAGE_TOKENS:
            logger.warning("High token usage: %d tokens on %s", usage.total_tokens, usage.model)

    def analytics(self, start: datetime | None = None, end: datetime | None = None) -> CostAnalytics:
        usage = [
            u
            for u in self._ledger
            if (start is None or u.timestamp >= start) and (end is None or u.timestamp <= end)
        ]
        total_tokens = sum(u.total_tokens for u in usage)

        per_model: dict[str, ModelCostSummary] = {}
        for u in usage:
            cost = self.pricing.cost(u.model, u.prompt_tokens, u.completion_tokens)
            if cost is None:
                continue
            summary = per_model.setdefault(u.model, ModelCostSummary(model=u.model))
            summary.tokens += u.total_tokens
            summary.cost += cost

        total_cost = sum(s.cost for s in per_model.values())
        hit_rate = self.cache_hit_rate
        return CostAnalytics(
            total_tokens=total_tokens,
            total_cost=total_cost,
            average_tokens_per_request=total_tokens / len(usage) if usage else 0.0,
            cache_hit_rate=hit_rate,
            estimated_savings=total_cost * hit_rate,
            top_models=sorted(per_model.values(), key=lambda s: s.cost, reverse=True)[:TOP_MODELS],
        )
