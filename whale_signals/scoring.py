"""
Composite Signal Calculator for Whale Signals.

Scores one outcome aggregate against the market baseline. Six sub-metrics are
computed and each is normalized into a [0, 1] factor:

- Volume: z-score of the outcome's total volume against the batch baseline.
- Rank: volume-weighted leaderboard quality of the ranked wallets involved.
- Concentration: Herfindahl-Hirschman Index of ranked-wallet volume shares.
  Moderate concentration (a handful of wallets) scores best.
- Recency: share of ranked volume that survives exponential time decay.
- Direction: how one-sided the ranked buy/sell volume split is.
- Alignment: share of ranked wallets on the dominant side, boosted by the
  tier-weighted number of wallets agreeing.

The composite score is a fixed weighted sum of the factors. The legacy
0-100 confidence score from the older insights formula is computed alongside
it for consumers that still rank by it.
"""

import logging
import math
from typing import Optional

from .aggregator import OutcomeAggregate, WalletRankInfo
from .baseline import MarketBaseline
from .models import RankedWalletEntry, SignalFactors, SignalResult, TierBreakdown
from .stats import (
    clamp,
    herfindahl_index,
    rank_weight,
    sigmoid,
    tier_for_rank,
    tier_weight,
    z_score,
)

logger = logging.getLogger(__name__)

FACTOR_NAMES = ("volume", "rank", "concentration", "recency", "direction", "alignment")
LEGACY_NAMES = ("support", "whale_volume", "volume", "rank", "skew")

DEFAULT_WEIGHTS = {
    "volume": 0.15,
    "rank": 0.28,
    "concentration": 0.12,
    "recency": 0.12,
    "direction": 0.08,
    "alignment": 0.25,
}

DEFAULT_LEGACY_WEIGHTS = {
    "support": 0.32,
    "whale_volume": 0.25,
    "volume": 0.18,
    "rank": 0.15,
    "skew": 0.10,
}

# Rank-weighted score at which the rank factor saturates
RANK_SCORE_SATURATION = 0.5

# Legacy formula: best rank at or beyond this earns no bonus
LEGACY_RANK_HORIZON = 20

WEIGHT_TOLERANCE = 1e-6


class ConfigurationError(ValueError):
    """Raised when scoring configuration is internally inconsistent."""


def validate_weights(weights: dict[str, float], names: tuple[str, ...], label: str) -> dict[str, float]:
    """
    Check a weight table and return a copy of it.

    Raises:
        ConfigurationError: On missing or unknown names, negative weights,
            or weights that do not sum to 1.0.
    """
    missing = set(names) - set(weights)
    unknown = set(weights) - set(names)
    if missing or unknown:
        raise ConfigurationError(
            f"{label} weights must name exactly {sorted(names)}; "
            f"missing={sorted(missing)} unknown={sorted(unknown)}"
        )
    if any(w < 0 for w in weights.values()):
        raise ConfigurationError(f"{label} weights must be non-negative: {weights}")

    total = sum(weights.values())
    if total <= 0:
        raise ConfigurationError(f"{label} weights sum to {total}; nothing would be scored")
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise ConfigurationError(f"{label} weights must sum to 1.0, got {total:.6f}")
    return {name: float(weights[name]) for name in names}


def concentration_factor(hhi: float) -> float:
    """Peak at HHI 0.5; penalize both dispersed and single-wallet activity."""
    if hhi > 0.5:
        return clamp(1.0 - (hhi - 0.5) * 2)
    return clamp(hhi * 2)


def direction_conviction(buy_volume: float, sell_volume: float) -> float:
    """
    One-sidedness of a buy/sell split: max(buy, sell) / (buy + sell).

    Returns 0.5 when there is no volume on either side.
    """
    total = buy_volume + sell_volume
    if total <= 0:
        return 0.5
    return max(buy_volume, sell_volume) / total


def rank_weighted_score(
    wallet_volumes: dict[str, float],
    wallet_ranks: dict[str, int],
) -> float:
    """Volume-weighted mean rank weight of the contributing wallets, in [0, 1]."""
    total = sum(v for v in wallet_volumes.values() if v > 0)
    if total <= 0:
        return 0.0
    weighted = 0.0
    for wallet, volume in wallet_volumes.items():
        rank = wallet_ranks.get(wallet)
        if rank is None or volume <= 0:
            continue
        weighted += volume * rank_weight(rank)
    return weighted / total


def legacy_confidence(aggregate: OutcomeAggregate, weights: dict[str, float]) -> int:
    """
    Original 0-100 confidence formula.

    Blends ranked-wallet trade support, ranked share of volume, raw volume
    (log scaled, saturating near $100k), a best-rank bonus and buy/sell skew.
    """
    total = aggregate.total_volume
    volume_score = clamp(math.log10(max(total, 0.0) + 1) / 5)
    whale_share = clamp(aggregate.ranked_volume / total) if total > 0 else 0.0
    support = clamp(aggregate.ranked_support)
    skew = clamp(abs(aggregate.buy_volume - aggregate.sell_volume) / total) if total > 0 else 0.0
    rank_bonus = (
        clamp((LEGACY_RANK_HORIZON + 1 - aggregate.best_rank) / LEGACY_RANK_HORIZON)
        if aggregate.best_rank
        else 0.0
    )

    weighted = (
        support * weights["support"]
        + whale_share * weights["whale_volume"]
        + volume_score * weights["volume"]
        + rank_bonus * weights["rank"]
        + skew * weights["skew"]
    )
    return round(clamp(weighted) * 100)


class CompositeSignalCalculator:
    """
    Turns an OutcomeAggregate into a SignalResult.

    The percentile is left at 0; it depends on the whole batch and is attached
    by the engine once every outcome has been scored.
    """

    def __init__(
        self,
        weights: Optional[dict[str, float]] = None,
        legacy_weights: Optional[dict[str, float]] = None,
        zscore_threshold: float = 2.0,
        hhi_threshold: float = 0.35,
    ):
        """
        Initialize the calculator.

        Args:
            weights: Composite factor weights. Defaults to DEFAULT_WEIGHTS.
            legacy_weights: Legacy confidence weights. Defaults to DEFAULT_LEGACY_WEIGHTS.
            zscore_threshold: Volume z-score above which activity is unusual.
            hhi_threshold: HHI above which ranked activity is concentrated.

        Raises:
            ConfigurationError: If either weight table is invalid.
        """
        self.weights = validate_weights(weights or DEFAULT_WEIGHTS, FACTOR_NAMES, "Composite")
        self.legacy_weights = validate_weights(
            legacy_weights or DEFAULT_LEGACY_WEIGHTS, LEGACY_NAMES, "Legacy"
        )
        self.zscore_threshold = zscore_threshold
        self.hhi_threshold = hhi_threshold

    def composite(self, factors: SignalFactors) -> float:
        """Weighted sum of the factors, clamped to [0, 1]."""
        return clamp(sum(getattr(factors, name) * self.weights[name] for name in FACTOR_NAMES))

    def score(
        self,
        aggregate: OutcomeAggregate,
        baseline: MarketBaseline,
        wallet_best_rank: Optional[dict[str, WalletRankInfo]] = None,
    ) -> SignalResult:
        """
        Score one outcome.

        Args:
            aggregate: Finalized aggregate for the outcome.
            baseline: Batch baseline over active outcomes.
            wallet_best_rank: Ranked wallets for the pass. When omitted the
                aggregate's own roster supplies the ranks.

        Returns:
            SignalResult with percentile 0.
        """
        if wallet_best_rank is not None:
            wallet_ranks = {
                wallet: wallet_best_rank[wallet].rank
                for wallet in aggregate.wallet_volumes
                if wallet in wallet_best_rank
            }
        else:
            wallet_ranks = {info.address: info.rank for info in aggregate.top_ranks}

        # 1. Volume anomaly
        volume_z = z_score(aggregate.total_volume, baseline.mean_volume, baseline.std_dev_volume)
        ranked_volume_z = z_score(
            aggregate.ranked_volume, baseline.mean_ranked_volume, baseline.std_dev_ranked_volume
        )
        volume_factor = clamp(sigmoid(volume_z - 1) * 2 - 0.5)

        # 2. Rank quality
        rank_score = rank_weighted_score(aggregate.wallet_volumes, wallet_ranks)
        rank_factor = clamp(rank_score / RANK_SCORE_SATURATION)

        # 3. Concentration
        hhi = herfindahl_index(aggregate.wallet_volumes.values())

        # 4. Recency
        recency_factor = (
            clamp(aggregate.time_decayed_ranked_volume / aggregate.ranked_volume)
            if aggregate.ranked_volume > 0
            else 0.0
        )

        # 5. Direction
        conviction = direction_conviction(aggregate.ranked_buy_volume, aggregate.ranked_sell_volume)
        direction_factor = clamp((conviction - 0.5) * 2)

        # 6. Alignment
        dominant = (
            aggregate.buy_wallets
            if aggregate.ranked_buy_volume >= aggregate.ranked_sell_volume
            else aggregate.sell_wallets
        )
        distinct = aggregate.buy_wallets | aggregate.sell_wallets
        alignment_ratio = len(dominant) / len(distinct) if distinct else 0.0
        weighted_dominant = sum(tier_weight(wallet_ranks.get(w, 0)) for w in dominant)
        cluster_boost = clamp(math.log2(weighted_dominant + 1) / math.log2(5))
        alignment_factor = clamp(0.4 * alignment_ratio + 0.6 * cluster_boost)

        factors = SignalFactors(
            volume=volume_factor,
            rank=rank_factor,
            concentration=concentration_factor(hhi),
            recency=recency_factor,
            direction=direction_factor,
            alignment=alignment_factor,
        )

        tiers = TierBreakdown()
        roster = []
        for info in aggregate.top_ranks:
            tier = tier_for_rank(info.rank)
            if tier is not None:
                setattr(tiers, tier, getattr(tiers, tier) + 1)
            roster.append(
                RankedWalletEntry(
                    address=info.address,
                    rank=info.rank,
                    account_name=info.account_name,
                    total_pnl=info.total_pnl,
                    tier=tier,
                )
            )

        result = SignalResult(
            id=aggregate.key,
            condition_id=aggregate.condition_id,
            event_title=aggregate.event_title,
            event_slug=aggregate.event_slug,
            outcome=aggregate.outcome,
            market_question=aggregate.market_question,
            latest_price=aggregate.latest_price,
            latest_trade_at=aggregate.latest_trade_at,
            is_resolved=aggregate.is_resolved,
            total_volume=aggregate.total_volume,
            trade_count=aggregate.trade_count,
            buy_volume=aggregate.buy_volume,
            sell_volume=aggregate.sell_volume,
            buy_sell_skew=aggregate.buy_sell_skew,
            ranked_volume=aggregate.ranked_volume,
            ranked_trade_count=aggregate.ranked_trade_count,
            ranked_buy_volume=aggregate.ranked_buy_volume,
            ranked_sell_volume=aggregate.ranked_sell_volume,
            ranked_support=aggregate.ranked_support,
            top_wallet_count=aggregate.top_wallet_count,
            top_ranks=roster,
            best_rank=aggregate.best_rank,
            tier_breakdown=tiers,
            stance=aggregate.stance,
            volume_z_score=volume_z,
            ranked_volume_z_score=ranked_volume_z,
            hhi_concentration=hhi,
            rank_weighted_score=rank_score,
            time_decayed_volume=aggregate.time_decayed_ranked_volume,
            direction_conviction=conviction,
            alignment_contribution=alignment_ratio,
            signal_factors=factors,
            composite_score=self.composite(factors),
            legacy_confidence=legacy_confidence(aggregate, self.legacy_weights),
            is_unusual_activity=volume_z > self.zscore_threshold,
            is_concentrated=hhi > self.hhi_threshold,
        )

        logger.debug(
            f"Scored {aggregate.key}: composite={result.composite_score:.3f} "
            f"factors={factors.total():.3f} legacy={result.legacy_confidence} "
            f"z={volume_z:.2f} hhi={hhi:.3f}"
        )
        return result
