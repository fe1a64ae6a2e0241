"""Static model pricing table."""

from __future__ import annotations

from voicedesc.models.cost import ModelPricing

DEFAULT_PRICING: tuple[ModelPricing, ...] = (
    ModelPricing(
        model="claude-opus-4-20250514",
        input_cost_per_1k=0.015,
        output_cost_per_1k=0.075,
        context_window=200000,
        rate_limit=50,
    ),
    ModelPricing(
        model="claude-sonnet-4-20250514",
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.015,
        context_window=200000,
        rate_limit=50,
    ),
    ModelPricing(
        model="claude-3-5-haiku-20241022",
        input_cost_per_1k=0.0008,
        output_cost_per_1k=0.004,
        context_window=200000,
        rate_limit=50,
    ),
    ModelPricing(
        model="gpt-4-vision-preview",
        input_cost_per_1k=0.01,
        output_cost_per_1k=0.03,
        context_window=128000,
        rate_limit=100,
    ),
    ModelPricing(
        model="gpt-4-turbo-preview",
        input_cost_per_1k=0.01,
        output_cost_per_1k=0.03,
        context_window=128000,
        rate_limit=100,
    ),
    ModelPricing(
        model="gpt-4o",
        input_cost_per_1k=0.005,
        output_cost_per_1k=0.015,
        context_window=128000,
        rate_limit=1000,
    ),
    ModelPricing(
        model="gpt-4o-mini",
        input_cost_per_1k=0.00015,
        output_cost_per_1k=0.0006,
        context_window=128000,
        rate_limit=2000,
    ),
)

# Cheaper model of the same family used for simple prompts.
DEFAULT_DOWNGRADES: dict[str, str] = {
    "claude-opus-4-20250514": "claude-sonnet-4-20250514",
    "claude-sonnet-4-20250514": "claude-3-5-haiku-20241022",
    "gpt-4-vision-preview": "gpt-4o-mini",
    "gpt-4-turbo-preview": "gpt-4o-mini",
    "gpt-4o": "gpt-4o-mini",
}


class ModelPricingTable:
    """Read-only lookup of pricing by model id."""

    def __init__(
        self,
        pricing: tuple[ModelPricing, ...] | list[ModelPricing] = DEFAULT_PRICING,
        downgrades: dict[str, str] | None = None,
    ) -> None:
        self._pricing = {p.model: p for p in pricing}
        self._downgrades = dict(DEFAULT_DOWNGRADES if downgrades is None else downgrades)

    def __contains__(self, model: str) -> bool:
        return model in self._pricing

    def get(self, model: str) -> ModelPricing | None:
        return self._pricing.get(model)

    def models(self) -> list[str]:
        return list(self._pricing)

    def downgrade_for(self, model: str) -> str | None:
        """Cheaper sibling of ``model``, if one is priced."""
        target = self._downgrades.get(model)
        if target is None or target not in self._pricing:
            return None
        return target

    def cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float | None:
        """USD cost of a call, or None for an unknown model."""
        pricing = self._pricing.get(model)
        if pricing is None:
            return None
        return (
            prompt_tokens / 1000 * pricing.input_cost_per_1k
            + completion_tokens / 1000 * pricing.output_cost_per_1k
        )
