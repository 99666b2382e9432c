"""Cost estimation for render and voiceover calls.

Sandbox renders and voiceovers are free; production ones are billed per
rendered minute and per thousand narrated characters respectively.
"""

from __future__ import annotations

from dataclasses import dataclass


# Pricing constants (USD per unit)
class Pricing:
    """API pricing constants."""

    # Shotstack production render (per output minute)
    SHOTSTACK_PER_MINUTE = 0.40

    # ElevenLabs voiceover via Shotstack (per 1000 characters)
    ELEVENLABS_PER_1K_CHARS = 0.018


@dataclass(frozen=True)
class RenderCosts:
    """Cost breakdown for one rendered video."""

    shotstack_cost: float
    elevenlabs_cost: float

    @property
    def total_cost(self) -> float:
        return self.shotstack_cost + self.elevenlabs_cost

    def to_dict(self) -> dict:
        return {
            "shotstack_cost": round(self.shotstack_cost, 6),
            "elevenlabs_cost": round(self.elevenlabs_cost, 6),
            "total_cost": round(self.total_cost, 6),
        }


def render_cost(duration_seconds: float, production: bool) -> float:
    """Cost of rendering a video of the given length."""
    if not production:
        return 0.0
    return (duration_seconds / 60) * Pricing.SHOTSTACK_PER_MINUTE


def voiceover_cost(characters: int, production: bool) -> float:
    """Cost of synthesising narration of the given length."""
    if not production:
        return 0.0
    return (characters / 1000) * Pricing.ELEVENLABS_PER_1K_CHARS


def estimate_render_costs(
    duration_seconds: float,
    text_length: int,
    production: bool,
) -> RenderCosts:
    """Estimate what one video will cost.

    Args:
        duration_seconds: Output video length
        text_length: Narration length in characters (0 for no voiceover)
        production: Whether production (billed) endpoints are used

    Returns:
        RenderCosts breakdown
    """
    return RenderCosts(
        shotstack_cost=render_cost(duration_seconds, production),
        elevenlabs_cost=voiceover_cost(text_length, production),
    )


def format_cost(amount: float) -> str:
    """Format a cost amount for display.

    Args:
        amount: Cost in USD

    Returns:
        Formatted string
    """
    if amount < 0.01:
        return f"${amount:.4f}"
    if amount < 1.00:
        return f"${amount:.3f}"
    return f"${amount:.2f}"
