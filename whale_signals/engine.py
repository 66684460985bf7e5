"""
Signal Engine Module for Whale Signals.

Runs one full computation pass over a trade window:

1. Merge leaderboard snapshots into a best-rank lookup.
2. Fold trades into per-outcome aggregates.
3. Compute the volume baseline over outcomes that have not expired.
4. Score every active outcome with ranked-wallet participation.
5. Rank the batch by percentile of the summed signal factors.

Each pass owns its aggregation state; nothing is shared between passes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .aggregator import WalletRankInfo, aggregate_trades, build_wallet_best_rank
from .baseline import baseline_from_aggregates
from .config import Settings
from .models import (
    BatchSummary,
    LeaderboardSnapshot,
    RankedTrade,
    SignalReport,
    SignalResult,
    Trade,
)
from .scoring import (
    DEFAULT_LEGACY_WEIGHTS,
    DEFAULT_WEIGHTS,
    FACTOR_NAMES,
    LEGACY_NAMES,
    CompositeSignalCalculator,
    ConfigurationError,
    validate_weights,
)
from .stats import percentile_ranks, tier_for_rank
from .utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

# Drill-down limits
DEFAULT_TRADES_LIMIT = 200
MAX_TRADES_LIMIT = 500


@dataclass
class SignalConfig:
    """Configuration for a signal pass: window, thresholds and weights."""

    WINDOW_HOURS: float = 24.0
    MAX_TRADES: int = 4000
    EXPIRY_GRACE_MINUTES: float = 5.0
    DECAY_CONSTANT_HOURS: float = 10.0
    UNUSUAL_ZSCORE_THRESHOLD: float = 2.0
    CONCENTRATED_HHI_THRESHOLD: float = 0.35
    MAX_WALLET_RANK: int = 200
    TOP_PICKS: int = 3

    # Composite weights (must sum to 1.0)
    WEIGHTS: dict = None
    # Legacy confidence weights (must sum to 1.0)
    LEGACY_WEIGHTS: dict = None

    def __post_init__(self):
        if self.WEIGHTS is None:
            self.WEIGHTS = dict(DEFAULT_WEIGHTS)
        if self.LEGACY_WEIGHTS is None:
            self.LEGACY_WEIGHTS = dict(DEFAULT_LEGACY_WEIGHTS)

        validate_weights(self.WEIGHTS, FACTOR_NAMES, "Composite")
        validate_weights(self.LEGACY_WEIGHTS, LEGACY_NAMES, "Legacy")
        if self.DECAY_CONSTANT_HOURS <= 0:
            raise ConfigurationError(
                f"DECAY_CONSTANT_HOURS must be positive, got {self.DECAY_CONSTANT_HOURS}"
            )
        if self.WINDOW_HOURS <= 0:
            raise ConfigurationError(f"WINDOW_HOURS must be positive, got {self.WINDOW_HOURS}")
        if self.EXPIRY_GRACE_MINUTES < 0:
            raise ConfigurationError(
                f"EXPIRY_GRACE_MINUTES must not be negative, got {self.EXPIRY_GRACE_MINUTES}"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SignalConfig":
        """Build a config from application settings."""
        return cls(
            WINDOW_HOURS=settings.window_hours,
            MAX_TRADES=settings.max_trades,
            EXPIRY_GRACE_MINUTES=settings.expiry_grace_minutes,
            DECAY_CONSTANT_HOURS=settings.decay_constant_hours,
            UNUSUAL_ZSCORE_THRESHOLD=settings.unusual_zscore_threshold,
            CONCENTRATED_HHI_THRESHOLD=settings.concentrated_hhi_threshold,
            MAX_WALLET_RANK=settings.max_wallet_rank,
            TOP_PICKS=settings.top_picks,
            WEIGHTS=settings.composite_weights,
            LEGACY_WEIGHTS=settings.legacy_weights,
        )


class SignalEngine:
    """
    Aggregates a trade window and ranks outcomes by ranked-wallet signal strength.
    """

    def __init__(self, config: Optional[SignalConfig] = None):
        """
        Initialize the signal engine.

        Args:
            config: Signal configuration. Defaults to SignalConfig().
        """
        self.config = config or SignalConfig()
        self.calculator = CompositeSignalCalculator(
            weights=self.config.WEIGHTS,
            legacy_weights=self.config.LEGACY_WEIGHTS,
            zscore_threshold=self.config.UNUSUAL_ZSCORE_THRESHOLD,
            hhi_threshold=self.config.CONCENTRATED_HHI_THRESHOLD,
        )

    def window_start(self, now: datetime) -> datetime:
        """Earliest trade timestamp included in a pass at `now`."""
        return now - timedelta(hours=self.config.WINDOW_HOURS)

    def select_window(self, trades: Iterable[Trade], now: datetime) -> list[Trade]:
        """
        Keep trades inside the trailing window, newest MAX_TRADES at most.

        Args:
            trades: Candidate trades in any order.
            now: Reference time of the pass.

        Returns:
            Trades with timestamp >= window start, newest first.
        """
        since = self.window_start(now)
        window = [t for t in trades if t.timestamp >= since]
        window.sort(
            key=lambda t: (t.timestamp, t.id or "", t.wallet_address, t.trade_value),
            reverse=True,
        )
        if self.config.MAX_TRADES and len(window) > self.config.MAX_TRADES:
            logger.info(
                f"Trade window truncated from {len(window)} to newest {self.config.MAX_TRADES} trades"
            )
            window = window[: self.config.MAX_TRADES]
        return window

    def wallet_ranks(self, snapshots: Iterable[LeaderboardSnapshot]) -> dict[str, WalletRankInfo]:
        """Best rank per wallet across snapshots, within MAX_WALLET_RANK."""
        return build_wallet_best_rank(snapshots, max_rank=self.config.MAX_WALLET_RANK)

    def run(
        self,
        trades: Iterable[Trade],
        snapshots: Iterable[LeaderboardSnapshot],
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> SignalReport:
        """
        Run one full pass and return the ranked report.

        Args:
            trades: Trades from the loader, any order.
            snapshots: Leaderboard snapshots, any number of periods.
            now: Reference time. Defaults to the current UTC time.
            limit: Return at most this many signals.

        Returns:
            SignalReport with signals ordered best percentile first.
        """
        now = ensure_utc(now) if now is not None else utc_now()
        snapshots = list(snapshots)
        since = self.window_start(now)

        window = self.select_window(trades, now)
        wallet_best_rank = self.wallet_ranks(snapshots)

        aggregates = aggregate_trades(
            window,
            wallet_best_rank,
            now,
            decay_constant_hours=self.config.DECAY_CONSTANT_HOURS,
            expiry_grace=timedelta(minutes=self.config.EXPIRY_GRACE_MINUTES),
        )
        baseline = baseline_from_aggregates(aggregates.values())

        # Key order keeps percentile positions reproducible for equal scores
        eligible = [
            aggregates[key]
            for key in sorted(aggregates)
            if not aggregates[key].is_resolved and aggregates[key].has_ranked_activity
        ]
        scored = [self.calculator.score(agg, baseline, wallet_best_rank) for agg in eligible]
        signals = self.rank(scored)
        if limit is not None:
            signals = signals[: max(limit, 0)]

        summary = self.summarize(window, aggregates, wallet_best_rank)
        logger.info(
            f"Signal pass: {summary.trade_count} trades, {len(wallet_best_rank)} ranked wallets, "
            f"{summary.unique_outcomes} outcomes ({summary.expired_outcomes} expired), "
            f"{len(signals)} signals"
        )

        return SignalReport(
            generated_at=now,
            since=since,
            periods=[s.period for s in snapshots],
            summary=summary,
            signals=signals,
            top_picks=signals[: self.config.TOP_PICKS],
        )

    @staticmethod
    def rank(scored: list[SignalResult]) -> list[SignalResult]:
        """
        Attach batch percentiles and sort best first.

        The percentile basis is the sum of the unweighted signal factors, not
        the weighted composite, so the two orderings can differ.
        """
        percentiles = percentile_ranks([s.signal_factors.total() for s in scored])
        ranked = [
            signal.model_copy(update={"confidence_percentile": pct})
            for signal, pct in zip(scored, percentiles)
        ]
        ranked.sort(key=lambda s: (-s.confidence_percentile, -s.composite_score, s.id))
        return ranked

    @staticmethod
    def summarize(
        window: list[Trade],
        aggregates: dict,
        wallet_best_rank: dict[str, WalletRankInfo],
    ) -> BatchSummary:
        """Batch totals over every folded trade, expired outcomes included."""
        total_volume = 0.0
        ranked_volume = 0.0
        ranked_trades = 0
        for trade in window:
            total_volume += trade.trade_value
            if trade.wallet_address in wallet_best_rank:
                ranked_volume += trade.trade_value
                ranked_trades += 1

        return BatchSummary(
            total_volume=total_volume,
            trade_count=len(window),
            unique_outcomes=len(aggregates),
            expired_outcomes=sum(1 for agg in aggregates.values() if agg.is_resolved),
            ranked_volume_share=ranked_volume / total_volume if total_volume > 0 else 0.0,
            ranked_trade_share=ranked_trades / len(window) if window else 0.0,
        )

    def outcome_trades(
        self,
        trades: Iterable[Trade],
        snapshots: Iterable[LeaderboardSnapshot],
        condition_id: Optional[str] = None,
        outcome: Optional[str] = None,
        limit: int = DEFAULT_TRADES_LIMIT,
        now: Optional[datetime] = None,
    ) -> list[RankedTrade]:
        """
        Ranked-wallet trades behind one outcome, newest first.

        Args:
            trades: Trades from the loader.
            snapshots: Leaderboard snapshots.
            condition_id: Market condition id to match.
            outcome: Outcome label to match (case-insensitive).
            limit: Maximum trades returned, clamped to [1, MAX_TRADES_LIMIT].
            now: Reference time for the trailing window.

        Returns:
            Annotated ranked-wallet trades.

        Raises:
            ValueError: If neither condition_id nor outcome is given.
        """
        if not condition_id and not outcome:
            raise ValueError("condition_id or outcome is required")

        now = ensure_utc(now) if now is not None else utc_now()
        limit = min(max(limit, 1), MAX_TRADES_LIMIT)
        wallet_best_rank = self.wallet_ranks(snapshots)
        since = self.window_start(now)

        matched = []
        for trade in trades:
            if trade.timestamp < since:
                continue
            if condition_id and trade.condition_id != condition_id:
                continue
            if outcome and (trade.outcome or "").lower() != outcome.lower():
                continue
            info = wallet_best_rank.get(trade.wallet_address)
            if info is None:
                continue
            matched.append(
                RankedTrade(
                    trade=trade,
                    rank=info.rank,
                    account_name=info.account_name,
                    tier=tier_for_rank(info.rank),
                )
            )

        matched.sort(key=lambda rt: rt.trade.timestamp, reverse=True)
        return matched[:limit]
