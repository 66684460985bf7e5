"""
Outcome aggregation for Whale Signals.

Folds a window of trades into one aggregate per (market, outcome) pair:
- Groups trades by outcome key (condition id or event title, plus outcome label)
- Accumulates total, buy and sell volume, and the latest traded price
- Tracks ranked-wallet participation: per-wallet volume, time-decayed volume,
  buyer and seller sets, and the roster of ranked wallets involved
- Flags outcomes whose market has resolved or closed beyond the grace window

The fold happens on a mutable AggregationState owned by a single pass.
AggregationState.finalize() produces the immutable OutcomeAggregate that the
scoring stage consumes.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .models import LeaderboardSnapshot, Trade
from .stats import time_decay_weight

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
UNKNOWN_MARKET = "Unknown Market"


@dataclass(frozen=True)
class WalletRankInfo:
    """Best known leaderboard standing of a wallet for one pass."""

    address: str
    rank: int
    account_name: Optional[str] = None
    total_pnl: float = 0.0


def build_wallet_best_rank(
    snapshots: Iterable[LeaderboardSnapshot],
    max_rank: Optional[int] = None,
) -> dict[str, WalletRankInfo]:
    """
    Merge leaderboard snapshots into a wallet -> best rank lookup.

    The lowest rank seen for a wallet across all snapshots wins. Among equal
    ranks the first observation is kept, so display fields come from the
    earliest snapshot reporting that rank.

    Args:
        snapshots: Leaderboard snapshots in priority order.
        max_rank: Drop wallets whose best rank is worse than this.

    Returns:
        Mapping of lower-cased wallet address to WalletRankInfo.
    """
    best: dict[str, WalletRankInfo] = {}
    for snapshot in snapshots:
        for wallet in snapshot.wallets:
            if not wallet.wallet_address:
                continue
            current = best.get(wallet.wallet_address)
            if current is None or wallet.rank < current.rank:
                best[wallet.wallet_address] = WalletRankInfo(
                    address=wallet.wallet_address,
                    rank=wallet.rank,
                    account_name=wallet.account_name,
                    total_pnl=wallet.total_pnl,
                )

    if max_rank is not None:
        best = {addr: info for addr, info in best.items() if info.rank <= max_rank}
    return best


def outcome_key(trade: Trade) -> str:
    """Grouping key: "<condition id | event title | unknown>::<outcome | unknown>"."""
    market = trade.condition_id or trade.event_title or UNKNOWN
    return f"{market}::{trade.outcome or UNKNOWN}"


def is_expired(
    resolution_time: Optional[datetime],
    close_time: Optional[datetime],
    now: datetime,
    grace: timedelta,
) -> bool:
    """
    Whether a market ended more than `grace` before `now`.

    The resolution time is preferred; the close time is used only when no
    resolution time is known. Markets with neither never expire.
    """
    reference = resolution_time if resolution_time is not None else close_time
    if reference is None:
        return False
    return reference < now - grace


@dataclass(frozen=True)
class OutcomeAggregate:
    """Finalized, read-only statistics for one outcome."""

    key: str
    condition_id: Optional[str]
    event_title: str
    event_slug: Optional[str]
    outcome: Optional[str]
    market_question: Optional[str]
    close_time: Optional[datetime]
    resolution_time: Optional[datetime]
    is_resolved: bool

    latest_price: float
    latest_trade_at: Optional[datetime]

    total_volume: float
    trade_count: int
    buy_volume: float
    sell_volume: float

    ranked_volume: float
    ranked_trade_count: int
    ranked_buy_volume: float
    ranked_sell_volume: float
    time_decayed_ranked_volume: float
    wallet_volumes: dict[str, float]
    buy_wallets: frozenset[str]
    sell_wallets: frozenset[str]
    top_ranks: tuple[WalletRankInfo, ...]

    # Derived at finalize
    buy_sell_skew: float
    top_wallet_count: int
    best_rank: Optional[int]
    stance: str
    ranked_support: float

    @property
    def has_ranked_activity(self) -> bool:
        """True if at least one ranked-wallet trade was folded in."""
        return self.ranked_trade_count > 0


@dataclass
class AggregationState:
    """Mutable accumulator for one outcome during the fold phase."""

    key: str
    condition_id: Optional[str] = None
    event_title: Optional[str] = None
    event_slug: Optional[str] = None
    outcome: Optional[str] = None
    market_question: Optional[str] = None
    close_time: Optional[datetime] = None
    resolution_time: Optional[datetime] = None
    is_resolved: bool = False

    latest_price: float = 0.0
    latest_trade_at: Optional[datetime] = None

    total_volume: float = 0.0
    trade_count: int = 0
    buy_volume: float = 0.0
    sell_volume: float = 0.0

    ranked_volume: float = 0.0
    ranked_trade_count: int = 0
    ranked_buy_volume: float = 0.0
    ranked_sell_volume: float = 0.0
    time_decayed_ranked_volume: float = 0.0
    wallet_volumes: dict[str, float] = field(default_factory=dict)
    buy_wallets: set[str] = field(default_factory=set)
    sell_wallets: set[str] = field(default_factory=set)
    ranked_wallets: dict[str, WalletRankInfo] = field(default_factory=dict)

    @classmethod
    def seed(cls, key: str, trade: Trade) -> "AggregationState":
        """Create the state for an outcome from the first trade seen for it."""
        return cls(
            key=key,
            condition_id=trade.condition_id,
            event_title=trade.event_title,
            event_slug=trade.event_slug,
            outcome=trade.outcome,
            market_question=trade.question,
            close_time=trade.close_time,
            resolution_time=trade.resolution_time,
            latest_price=trade.price,
        )

    def fold(
        self,
        trade: Trade,
        rank_info: Optional[WalletRankInfo],
        decay_weight: float,
        expired: bool,
    ) -> None:
        """
        Accumulate one trade.

        Args:
            trade: The trade to fold in.
            rank_info: Leaderboard standing of the trade's wallet, if ranked.
            decay_weight: Recency weight of the trade for this pass.
            expired: Whether this trade's market timestamps are past the grace window.
        """
        value = trade.trade_value
        self.total_volume += value
        self.trade_count += 1

        if trade.side == "BUY":
            self.buy_volume += value
        elif trade.side == "SELL":
            self.sell_volume += value

        # (timestamp, price) ordering keeps equal timestamps order-independent
        if self.latest_trade_at is None or (trade.timestamp, trade.price) > (
            self.latest_trade_at,
            self.latest_price,
        ):
            self.latest_trade_at = trade.timestamp
            self.latest_price = trade.price

        if expired:
            self.is_resolved = True

        self.condition_id = self.condition_id or trade.condition_id
        self.event_title = self.event_title or trade.event_title
        self.event_slug = self.event_slug or trade.event_slug
        self.market_question = self.market_question or trade.question
        if self.resolution_time is None:
            self.resolution_time = trade.resolution_time
        if self.close_time is None:
            self.close_time = trade.close_time

        if rank_info is None:
            return

        wallet = rank_info.address
        self.ranked_volume += value
        self.ranked_trade_count += 1
        self.wallet_volumes[wallet] = self.wallet_volumes.get(wallet, 0.0) + value
        self.time_decayed_ranked_volume += value * decay_weight

        if trade.side == "BUY":
            self.buy_wallets.add(wallet)
            self.ranked_buy_volume += value
        elif trade.side == "SELL":
            self.sell_wallets.add(wallet)
            self.ranked_sell_volume += value

        if wallet not in self.ranked_wallets:
            self.ranked_wallets[wallet] = rank_info

    def finalize(self) -> OutcomeAggregate:
        """Compute derived fields and freeze the aggregate."""
        side_total = self.buy_volume + self.sell_volume
        buy_sell_skew = self.buy_volume / side_total if side_total > 0 else 0.5

        top_ranks = tuple(
            sorted(self.ranked_wallets.values(), key=lambda info: (info.rank, info.address))
        )
        best_rank = top_ranks[0].rank if top_ranks else None

        return OutcomeAggregate(
            key=self.key,
            condition_id=self.condition_id,
            event_title=self.event_title or self.condition_id or UNKNOWN_MARKET,
            event_slug=self.event_slug,
            outcome=self.outcome,
            market_question=self.market_question,
            close_time=self.close_time,
            resolution_time=self.resolution_time,
            is_resolved=self.is_resolved,
            latest_price=self.latest_price,
            latest_trade_at=self.latest_trade_at,
            total_volume=self.total_volume,
            trade_count=self.trade_count,
            buy_volume=self.buy_volume,
            sell_volume=self.sell_volume,
            ranked_volume=self.ranked_volume,
            ranked_trade_count=self.ranked_trade_count,
            ranked_buy_volume=self.ranked_buy_volume,
            ranked_sell_volume=self.ranked_sell_volume,
            time_decayed_ranked_volume=self.time_decayed_ranked_volume,
            wallet_volumes=dict(self.wallet_volumes),
            buy_wallets=frozenset(self.buy_wallets),
            sell_wallets=frozenset(self.sell_wallets),
            top_ranks=top_ranks,
            buy_sell_skew=buy_sell_skew,
            top_wallet_count=len(self.buy_wallets | self.sell_wallets),
            best_rank=best_rank,
            stance="bullish" if self.buy_volume >= self.sell_volume else "bearish",
            ranked_support=(
                self.ranked_trade_count / self.trade_count if self.trade_count > 0 else 0.0
            ),
        )


class OutcomeAggregator:
    """
    Groups trades by outcome and accumulates per-outcome statistics.

    One instance serves one pass: create it, add() every trade, then call
    finalize() once.
    """

    def __init__(
        self,
        wallet_best_rank: dict[str, WalletRankInfo],
        now: datetime,
        decay_constant_hours: float = 10.0,
        expiry_grace: timedelta = timedelta(minutes=5),
    ):
        """
        Initialize the aggregator.

        Args:
            wallet_best_rank: Ranked wallets for this pass.
            now: Reference time for decay and expiry.
            decay_constant_hours: Time constant of the recency decay.
            expiry_grace: How long after resolution an outcome stays active.
        """
        self.wallet_best_rank = wallet_best_rank
        self.now = now
        self.decay_constant_hours = decay_constant_hours
        self.expiry_grace = expiry_grace
        self._states: dict[str, AggregationState] = {}

    def add(self, trade: Trade) -> None:
        """Fold a single trade into its outcome's state."""
        key = outcome_key(trade)
        state = self._states.get(key)
        if state is None:
            state = AggregationState.seed(key, trade)
            self._states[key] = state

        rank_info = self.wallet_best_rank.get(trade.wallet_address)
        decay = (
            time_decay_weight(trade.timestamp, self.now, self.decay_constant_hours)
            if rank_info is not None
            else 1.0
        )
        expired = is_expired(trade.resolution_time, trade.close_time, self.now, self.expiry_grace)
        state.fold(trade, rank_info, decay, expired)

    def finalize(self) -> dict[str, OutcomeAggregate]:
        """Finalize every outcome state into an OutcomeAggregate."""
        aggregates = {key: state.finalize() for key, state in self._states.items()}
        logger.debug(f"Finalized {len(aggregates)} outcome aggregates")
        return aggregates


def aggregate_trades(
    trades: Iterable[Trade],
    wallet_best_rank: dict[str, WalletRankInfo],
    now: datetime,
    decay_constant_hours: float = 10.0,
    expiry_grace: timedelta = timedelta(minutes=5),
) -> dict[str, OutcomeAggregate]:
    """
    Fold trades into finalized per-outcome aggregates.

    Args:
        trades: Trades in any order.
        wallet_best_rank: Ranked wallets for this pass.
        now: Reference time for decay and expiry.
        decay_constant_hours: Time constant of the recency decay.
        expiry_grace: How long after resolution an outcome stays active.

    Returns:
        Mapping of outcome key to OutcomeAggregate.
    """
    aggregator = OutcomeAggregator(
        wallet_best_rank,
        now,
        decay_constant_hours=decay_constant_hours,
        expiry_grace=expiry_grace,
    )
    for trade in trades:
        aggregator.add(trade)
    return aggregator.finalize()
