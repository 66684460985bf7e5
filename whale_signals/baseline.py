"""
Cross-outcome volume baseline used for z-score normalization.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from .aggregator import OutcomeAggregate
from .stats import mean, population_std_dev

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketBaseline:
    """Mean and population standard deviation of total and ranked volume."""

    mean_volume: float = 0.0
    std_dev_volume: float = 0.0
    mean_ranked_volume: float = 0.0
    std_dev_ranked_volume: float = 0.0
    sample_size: int = 0


def calculate_market_baseline(
    volumes: list[float],
    ranked_volumes: list[float],
) -> MarketBaseline:
    """
    Compute the baseline from parallel volume series.

    Args:
        volumes: Total volume per outcome.
        ranked_volumes: Ranked-wallet volume per outcome.

    Returns:
        MarketBaseline; all zeros when the series are empty.
    """
    return MarketBaseline(
        mean_volume=mean(volumes),
        std_dev_volume=population_std_dev(volumes),
        mean_ranked_volume=mean(ranked_volumes),
        std_dev_ranked_volume=population_std_dev(ranked_volumes),
        sample_size=len(volumes),
    )


def baseline_from_aggregates(aggregates: Iterable[OutcomeAggregate]) -> MarketBaseline:
    """Baseline over the aggregates that are not resolved or expired."""
    active = [agg for agg in aggregates if not agg.is_resolved]
    baseline = calculate_market_baseline(
        [agg.total_volume for agg in active],
        [agg.ranked_volume for agg in active],
    )
    logger.debug(
        f"Baseline over {baseline.sample_size} active outcomes: "
        f"volume mean={baseline.mean_volume:.2f} std={baseline.std_dev_volume:.2f}, "
        f"ranked mean={baseline.mean_ranked_volume:.2f} std={baseline.std_dev_ranked_volume:.2f}"
    )
    return baseline
