"""Tests for cost estimation."""

import pytest

from short_render.pricing import (
    Pricing,
    RenderCosts,
    estimate_render_costs,
    format_cost,
    render_cost,
    voiceover_cost,
)


class TestPricing:
    """Tests for pricing constants."""

    def test_rates(self):
        assert Pricing.SHOTSTACK_PER_MINUTE == 0.40
        assert Pricing.ELEVENLABS_PER_1K_CHARS == 0.018


class TestRenderCost:
    """Tests for per-call costs."""

    def test_sandbox_is_free(self):
        assert render_cost(60, production=False) == 0.0
        assert voiceover_cost(5000, production=False) == 0.0

    def test_production_render(self):
        assert render_cost(30, production=True) == pytest.approx(0.20)

    def test_production_voiceover(self):
        assert voiceover_cost(2000, production=True) == pytest.approx(0.036)


class TestEstimateRenderCosts:
    """Tests for the combined estimate."""

    def test_estimate(self):
        costs = estimate_render_costs(60, 1000, production=True)

        assert costs.shotstack_cost == pytest.approx(0.40)
        assert costs.elevenlabs_cost == pytest.approx(0.018)
        assert costs.total_cost == pytest.approx(0.418)

    def test_to_dict(self):
        costs = RenderCosts(shotstack_cost=0.1, elevenlabs_cost=0.05)

        assert costs.to_dict() == {
            "shotstack_cost": 0.1,
            "elevenlabs_cost": 0.05,
            "total_cost": 0.15,
        }


class TestFormatCost:
    """Tests for cost formatting."""

    def test_small_amount(self):
        assert format_cost(0.0012) == "$0.0012"

    def test_medium_amount(self):
        assert format_cost(0.125) == "$0.125"

    def test_large_amount(self):
        assert format_cost(12.5) == "$12.50"
