"""Duration normalization and cost calculation.

Pure functions, no I/O. Billing rates keep their provider's native unit
(per minute or per second) and are never converted into one another.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

# Average conversational speaking rate used when a provider reports no duration
SPEAKING_RATE_WORDS_PER_MINUTE = 150
DEFAULT_BITRATE_KBPS = 128


@dataclass(frozen=True)
class BillingRate:
    """A provider price in its own billing unit."""

    amount: float
    unit: Literal["minute", "second"]

    def cost_for(self, duration_seconds: float) -> float:
        if self.unit == "second":
            return duration_seconds * self.amount
        return (duration_seconds / 60) * self.amount

    @property
    def price_per_minute(self) -> float:
        """Display-only per-minute price."""
        if self.unit == "second":
            return self.amount * 60
        return self.amount


@dataclass(frozen=True)
class CostBreakdown:
    """Actual cost of a finished transcription."""

    duration_seconds: float
    duration_minutes: float
    cost: float
    rounded_cost: float
    formatted_cost: str
    rate: BillingRate


@dataclass(frozen=True)
class CostEstimate:
    """Up-front cost estimate derived from file size alone."""

    estimated_duration_seconds: float
    estimated_duration_minutes: float
    estimated_cost: float
    formatted_cost: str
    price_per_minute: float
    file_size_mb: float
    note: str


def format_cost(cost: float) -> str:
    return f"${cost:.4f}"


def count_words(text: str | None) -> int:
    return len(text.split()) if text else 0


def estimate_duration_from_text(text: str | None) -> int:
    """Estimate spoken duration in whole seconds from a transcript.

    Rounds up and never returns less than one second.
    """
    words = count_words(text)
    return max(1, math.ceil(words / SPEAKING_RATE_WORDS_PER_MINUTE * 60))


def calculate_cost(duration_seconds: float, rate: BillingRate) -> CostBreakdown:
    """Compute the cost of a transcription from its audio duration."""
    cost = rate.cost_for(duration_seconds)
    return CostBreakdown(
        duration_seconds=duration_seconds,
        duration_minutes=round(duration_seconds / 60, 2),
        cost=cost,
        rounded_cost=round(cost, 4),
        formatted_cost=format_cost(cost),
        rate=rate,
    )


def estimate_cost(
    file_size_bytes: int | None,
    rate: BillingRate,
    bitrate_kbps: float = DEFAULT_BITRATE_KBPS,
) -> CostEstimate:
    """Estimate duration and cost from file size before any network call.

    duration = size * 8 / (bitrate_kbps * 1000). This is a display figure and
    is independent of the cost computed from the provider-reported duration.
    """
    if not file_size_bytes or file_size_bytes <= 0:
        return CostEstimate(
            estimated_duration_seconds=0,
            estimated_duration_minutes=0,
            estimated_cost=0,
            formatted_cost="$0.00",
            price_per_minute=rate.price_per_minute,
            file_size_mb=0,
            note="No file size provided",
        )

    duration_seconds = file_size_bytes * 8 / (bitrate_kbps * 1000)
    cost = rate.cost_for(duration_seconds)

    logger.debug(
        "Estimated %.2f min for %d bytes at %g kbps: %s",
        duration_seconds / 60,
        file_size_bytes,
        bitrate_kbps,
        format_cost(cost),
    )

    return CostEstimate(
        estimated_duration_seconds=duration_seconds,
        estimated_duration_minutes=round(duration_seconds / 60, 2),
        estimated_cost=cost,
        formatted_cost=format_cost(cost),
        price_per_minute=rate.price_per_minute,
        file_size_mb=round(file_size_bytes / (1024 * 1024), 2),
        note=f"Estimated based on {bitrate_kbps:g} kbps bitrate",
    )
