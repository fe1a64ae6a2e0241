"""Pricing, rate limiting and cost optimization."""

from voicedesc.services.cost.optimizer import CostOptimizer
from voicedesc.services.cost.pricing import ModelPricingTable
from voicedesc.services.cost.rate_limit import TokenBucket

__all__ = ["CostOptimizer", "ModelPricingTable", "TokenBucket"]
