"""
Unit tests for cost estimation.

Tests cost accuracy, rounding behavior, and monotonicity.
"""

from decimal import Decimal

import pytest

from llm_swarm.core.pricing import DEFAULT_PRICING, ModelPricing, estimate_cost
from llm_swarm.core.token_counter import TokenUsage


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(input_tokens=100, output_tokens=50)
        assert usage.total_tokens == 150

    def test_addition(self):
        total = TokenUsage(10, 20) + TokenUsage(1, 2)
        assert total == TokenUsage(11, 22)

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError, match="input_tokens"):
            TokenUsage(input_tokens=-1, output_tokens=0)
        with pytest.raises(ValueError, match="output_tokens"):
            TokenUsage(input_tokens=0, output_tokens=-5)

    def test_to_dict(self):
        assert TokenUsage(3, 4).to_dict() == {"input_tokens": 3, "output_tokens": 4}


class TestEstimateCost:
    """Test cost calculation accuracy and rounding."""

    def test_default_pricing(self):
        """Verify MiniMax M2.5 list price."""
        assert DEFAULT_PRICING.input_per_million == Decimal("0.15")
        assert DEFAULT_PRICING.output_per_million == Decimal("1.20")

    def test_zero_usage_costs_nothing(self):
        assert estimate_cost(TokenUsage.zero()) == 0

    def test_one_million_each(self):
        """1M input + 1M output = $0.15 + $1.20."""
        cost = estimate_cost(TokenUsage(input_tokens=1_000_000, output_tokens=1_000_000))
        assert cost == 1.35

    def test_typical_request(self):
        # 1000 * 0.15e-6 + 500 * 1.2e-6 = 0.00015 + 0.0006
        cost = estimate_cost(TokenUsage(input_tokens=1000, output_tokens=500))
        assert cost == 0.00075

    def test_rounds_to_six_places(self):
        # 1.35e-6 -> 0.000001
        assert estimate_cost(TokenUsage(input_tokens=1, output_tokens=1)) == 0.000001

    def test_rounds_half_away_from_zero(self):
        # 30 * 0.15e-6 = 4.5e-6 exactly; half-even would give 0.000004
        assert estimate_cost(TokenUsage(input_tokens=30, output_tokens=0)) == 0.000005

    def test_custom_pricing(self):
        pricing = ModelPricing(
            input_per_million=Decimal("1"),
            output_per_million=Decimal("2")
        )
        cost = estimate_cost(TokenUsage(input_tokens=500_000, output_tokens=250_000), pricing)
        assert cost == 1.0

    def test_negative_pricing_rejected(self):
        with pytest.raises(ValueError, match="input_per_million"):
            ModelPricing(input_per_million=Decimal("-1"), output_per_million=Decimal("1"))

    @pytest.mark.parametrize("base", [0, 7, 999, 123_456])
    def test_monotonic_in_each_count(self, base):
        """More tokens never cost less."""
        for step in (1, 13, 10_000):
            assert estimate_cost(TokenUsage(base + step, base)) >= estimate_cost(TokenUsage(base, base))
            assert estimate_cost(TokenUsage(base, base + step)) >= estimate_cost(TokenUsage(base, base))

    def test_summed_vs_individual_diverge_only_by_rounding(self):
        """Estimating a sum and summing estimates differ by at most rounding."""
        usages = [TokenUsage(i * 7 + 1, i * 3 + 2) for i in range(50)]
        total = TokenUsage.zero()
        for usage in usages:
            total = total + usage

        summed_first = estimate_cost(total)
        estimated_first = sum(estimate_cost(u) for u in usages)
        assert abs(summed_first - estimated_first) <= 0.0000005 * (len(usages) + 1)
