"""Cost, cache and token-accounting models."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModelPricing(BaseModel):
    """Static per-model pricing and limits."""

    model_config = ConfigDict(frozen=True)

    model: str
    input_cost_per_1k: float = Field(..., ge=0.0)
    output_cost_per_1k: float = Field(..., ge=0.0)
    context_window: int = Field(..., gt=0)
    rate_limit: int = Field(..., gt=0, description="Requests per minute")


class TokenUsage(BaseModel):
    """Immutable ledger entry for one metered backend call."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(..., ge=0)
    completion_tokens: int = Field(..., ge=0)
    model: str
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class CacheEntry(BaseModel):
    """Memoized backend response."""

    key: str
    value: Any
    token_cost: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
    last_accessed_at: datetime = Field(default_factory=_utcnow)
    hit_count: int = Field(default=0, ge=0)
    content_hash: str = ""


class CacheLookup(BaseModel):
    """A cache hit and the tier that served it."""

    entry: CacheEntry
    tier: str = Field(..., description="memory, persistent or semantic")
    similarity: float | None = None


class CostEstimate(BaseModel):
    tokens: int = 0
    cost: float = 0.0
    cache_savings_estimate: float = 0.0
    cache_hit_rate: float = 0.0
    known_model: bool = True


class OptimizationOptions(BaseModel):
    max_tokens: int | None = Field(None, gt=0)
    allow_downgrade: bool = False
    compression_level: str | None = Field(None, description="low, medium or high")


class OptimizationResult(BaseModel):
    optimized_prompt: str
    recommended_model: str
    estimated_savings: float = 0.0


class BatchRequest(BaseModel):
    """One unit of work offered to budget-aware batching."""

    id: str
    prompt: str
    fingerprint: str = ""
    model: str = ""
    estimated_cost: float = Field(default=0.0, ge=0.0)
    priority: int = 0


class BatchOptions(BaseModel):
    budget: float | None = Field(None, ge=0.0)
    batch_size: int = Field(default=5, gt=0)
    max_concurrent: int = Field(default=3, gt=0)
    delay_seconds: float = Field(default=0.0, ge=0.0)


class BatchOutcome(BaseModel):
    """Results of a batch keyed by request id, plus the budget report."""

    results: dict[str, Any] = Field(default_factory=dict)
    processed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    cached: list[str] = Field(default_factory=list)
    total_cost: float = 0.0


class ModelCostSummary(BaseModel):
    model: str
    tokens: int = 0
    cost: float = 0.0


class CostAnalytics(BaseModel):
    total_tokens: int = 0
    total_cost: float = 0.0
    average_tokens_per_request: float = 0.0
    cache_hit_rate: float = 0.0
    estimated_savings: float = 0.0
    top_models: list[ModelCostSummary] = Field(default_factory=list)
