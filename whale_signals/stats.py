"""
Statistical helpers for the signal engine.

Pure functions only: clamping, population statistics, z-scores, exponential
time decay, rank weighting, Herfindahl-Hirschman concentration and positional
percentile ranks. None of them return NaN or infinity for empty or degenerate
input.
"""

import math
import statistics
from datetime import datetime
from typing import Iterable, Optional, Sequence

# Rank decay rate. 0.15 gives #1 roughly 17x the weight of #20.
RANK_DECAY_RATE = 0.15

# Ranks beyond this contribute nothing.
MAX_RANK = 200

# Leaderboard tiers: (name, inclusive upper rank bound, weight)
TIERS = (
    ("elite", 10, 1.0),
    ("gold", 30, 0.6),
    ("silver", 100, 0.3),
    ("bronze", 200, 0.1),
)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a value into [low, high]."""
    return min(high, max(low, value))


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0 for an empty sequence."""
    if not values:
        return 0.0
    return float(statistics.mean(values))


def population_std_dev(values: Sequence[float]) -> float:
    """
    Population standard deviation, 0 for an empty sequence.

    Computed exactly, so identical values give exactly 0 even when their float
    sum does not round cleanly.
    """
    if not values:
        return 0.0
    return float(statistics.pstdev(values))


def z_score(observed: float, avg: float, std_dev: float) -> float:
    """
    Number of standard deviations `observed` lies from `avg`.

    A zero (or negative) standard deviation yields 0 rather than a division
    error: with no spread there is nothing unusual to report.
    """
    if std_dev <= 0:
        return 0.0
    return (observed - avg) / std_dev


def sigmoid(x: float) -> float:
    """Logistic function mapping the real line onto (0, 1)."""
    if x < -700:
        return 0.0
    return 1.0 / (1.0 + math.exp(-x))


def time_decay_weight(trade_time: datetime, now: datetime, constant_hours: float) -> float:
    """
    Exponential recency weight for a trade.

    weight = exp(-hours_elapsed / constant_hours). Exactly 1.0 for a trade at
    `now`; trades stamped after `now` are treated as current.

    Args:
        trade_time: When the trade happened.
        now: Reference time of the pass.
        constant_hours: Decay time constant in hours.

    Returns:
        Weight in (0, 1].

    Raises:
        ValueError: If constant_hours is not positive.
    """
    if constant_hours <= 0:
        raise ValueError(f"Decay constant must be positive, got {constant_hours}")
    hours_ago = (now - trade_time).total_seconds() / 3600
    weight = math.exp(-max(0.0, hours_ago) / constant_hours)
    # exp underflows to 0.0 for very old trades; keep the weight strictly positive
    return max(weight, 5e-324)


def rank_weight(rank: int) -> float:
    """
    Weight of a leaderboard rank in [0, 1].

    Rank 1 weighs 1.0 and the weight decays exponentially; ranks below 1 or
    beyond MAX_RANK weigh 0.
    """
    if rank < 1 or rank > MAX_RANK:
        return 0.0
    return math.exp(-RANK_DECAY_RATE * (rank - 1))


def tier_for_rank(rank: int) -> Optional[str]:
    """Tier name for a rank, or None outside the tiered range."""
    if rank < 1:
        return None
    for name, upper, _ in TIERS:
        if rank <= upper:
            return name
    return None


def tier_weight(rank: int) -> float:
    """Tier weight for a rank (elite 1.0 ... bronze 0.1, else 0)."""
    if rank < 1:
        return 0.0
    for _, upper, weight in TIERS:
        if rank <= upper:
            return weight
    return 0.0


def herfindahl_index(volumes: Iterable[float]) -> float:
    """
    Herfindahl-Hirschman Index of a set of volumes.

    HHI = sum of squared shares. 1.0 when one participant holds everything,
    1/N for N equal participants, 0 when there is no volume at all.
    """
    positive = [v for v in volumes if v > 0]
    total = sum(positive)
    if total <= 0:
        return 0.0
    return sum((v / total) ** 2 for v in positive)


def percentile_ranks(scores: Sequence[float]) -> list[float]:
    """
    Positional percentile rank of each score, in input order.

    Scores are sorted ascending (stable, so equal scores keep their input
    order) and the score at sorted position i receives 100 * i / (N - 1).
    Equal scores therefore get distinct, adjacent percentiles.

    Args:
        scores: Raw scores for the batch.

    Returns:
        Percentiles in [0, 100], parallel to `scores`. A single score gets
        100; an empty input gives an empty list.
    """
    n = len(scores)
    if n == 0:
        return []
    if n == 1:
        return [100.0]

    order = sorted(range(n), key=lambda idx: scores[idx])
    percentiles = [0.0] * n
    for position, idx in enumerate(order):
        percentiles[idx] = 100.0 * position / (n - 1)
    return percentiles
