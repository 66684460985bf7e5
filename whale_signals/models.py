"""
Pydantic models for Whale Signals data structures.

Input models (Trade, RankedWallet, LeaderboardSnapshot) accept the camelCase
field names used by the trade store and the Polymarket Data API. Output models
(SignalResult, SignalReport) are what the engine hands to its consumers.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import normalize_address, parse_timestamp, safe_float


class Trade(BaseModel):
    """A single trade on a market outcome. Read-only for one pass."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: Optional[str] = None
    timestamp: datetime
    condition_id: Optional[str] = Field(default=None, alias="conditionId")
    event_title: Optional[str] = Field(default=None, alias="eventTitle")
    event_slug: Optional[str] = Field(default=None, alias="eventSlug")
    outcome: Optional[str] = None
    question: Optional[str] = None
    side: str = ""
    price: float = 0.0
    trade_value: float = Field(default=0.0, alias="tradeValue")
    wallet_address: str = Field(default="", alias="walletAddress")
    close_time: Optional[datetime] = Field(default=None, alias="closeTime")
    resolution_time: Optional[datetime] = Field(default=None, alias="resolutionTime")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_required_timestamp(cls, value):
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f"Unparseable trade timestamp: {value!r}")
        return parsed

    @field_validator("close_time", "resolution_time", mode="before")
    @classmethod
    def _parse_optional_timestamp(cls, value):
        return parse_timestamp(value)

    @field_validator("condition_id", "event_title", "event_slug", "outcome", "question", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("side", mode="before")
    @classmethod
    def _normalize_side(cls, value):
        return str(value).strip().upper() if value else ""

    @field_validator("price", "trade_value", mode="before")
    @classmethod
    def _coerce_number(cls, value):
        return safe_float(value)

    @field_validator("wallet_address", mode="before")
    @classmethod
    def _normalize_wallet(cls, value):
        return normalize_address(value)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value) if value is not None else None


class RankedWallet(BaseModel):
    """A wallet with a known leaderboard position."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    wallet_address: str = Field(alias="walletAddress")
    rank: int = Field(ge=1)
    account_name: Optional[str] = Field(default=None, alias="accountName")
    total_pnl: float = Field(default=0.0, alias="totalPnl")

    @field_validator("wallet_address", mode="before")
    @classmethod
    def _normalize_wallet(cls, value):
        address = normalize_address(value)
        if not address:
            raise ValueError("Ranked wallet needs an address")
        return address

    @field_validator("total_pnl", mode="before")
    @classmethod
    def _coerce_pnl(cls, value):
        return safe_float(value)


class LeaderboardSnapshot(BaseModel):
    """One leaderboard period as observed at a point in time."""

    model_config = ConfigDict(populate_by_name=True)

    period: str = "Daily"
    snapshot_at: Optional[datetime] = Field(default=None, alias="snapshotAt")
    wallets: list[RankedWallet] = []

    @field_validator("snapshot_at", mode="before")
    @classmethod
    def _parse_snapshot_at(cls, value):
        return parse_timestamp(value)


class RankedWalletEntry(BaseModel):
    """Roster entry for a ranked wallet that traded an outcome."""

    address: str
    rank: int
    account_name: Optional[str] = None
    total_pnl: float = 0.0
    tier: Optional[str] = None


class TierBreakdown(BaseModel):
    """Count of contributing ranked wallets per leaderboard tier."""

    elite: int = 0
    gold: int = 0
    silver: int = 0
    bronze: int = 0


class SignalFactors(BaseModel):
    """Unweighted normalized sub-scores, each in [0, 1]."""

    volume: float = 0.0
    rank: float = 0.0
    concentration: float = 0.0
    recency: float = 0.0
    direction: float = 0.0
    alignment: float = 0.0

    def total(self) -> float:
        """Sum of all factors; the basis for percentile ranking."""
        return (
            self.volume
            + self.rank
            + self.concentration
            + self.recency
            + self.direction
            + self.alignment
        )


class SignalResult(BaseModel):
    """Scored signal for one (market, outcome) pair."""

    # Identity
    id: str
    condition_id: Optional[str] = None
    event_title: str
    event_slug: Optional[str] = None
    outcome: Optional[str] = None
    market_question: Optional[str] = None

    # Aggregate fields
    latest_price: float
    latest_trade_at: Optional[datetime] = None
    is_resolved: bool = False
    total_volume: float
    trade_count: int
    buy_volume: float
    sell_volume: float
    buy_sell_skew: float
    ranked_volume: float
    ranked_trade_count: int
    ranked_buy_volume: float
    ranked_sell_volume: float
    ranked_support: float
    top_wallet_count: int
    top_ranks: list[RankedWalletEntry] = []
    best_rank: Optional[int] = None
    tier_breakdown: TierBreakdown = TierBreakdown()
    stance: Literal["bullish", "bearish"]

    # Sub-metrics
    volume_z_score: float
    ranked_volume_z_score: float
    hhi_concentration: float
    rank_weighted_score: float
    time_decayed_volume: float
    direction_conviction: float
    alignment_contribution: float

    # Composite scores
    signal_factors: SignalFactors
    composite_score: float = Field(ge=0, le=1)
    legacy_confidence: int = Field(ge=0, le=100)
    confidence_percentile: float = Field(default=0.0, ge=0, le=100)

    # Flags
    is_unusual_activity: bool
    is_concentrated: bool


class BatchSummary(BaseModel):
    """Totals over every trade folded in the pass, expired outcomes included."""

    total_volume: float = 0.0
    trade_count: int = 0
    unique_outcomes: int = 0
    expired_outcomes: int = 0
    ranked_volume_share: float = 0.0
    ranked_trade_share: float = 0.0


class SignalReport(BaseModel):
    """Result of one engine pass."""

    generated_at: datetime
    since: datetime
    periods: list[str] = []
    summary: BatchSummary = BatchSummary()
    signals: list[SignalResult] = []
    top_picks: list[SignalResult] = []


class RankedTrade(BaseModel):
    """A ranked-wallet trade annotated with the wallet's leaderboard standing."""

    trade: Trade
    rank: int
    account_name: Optional[str] = None
    tier: Optional[str] = None
