"""
Tests for the composite signal calculator.
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from whale_signals.aggregator import WalletRankInfo, aggregate_trades
from whale_signals.baseline import MarketBaseline
from whale_signals.models import SignalFactors, Trade
from whale_signals.scoring import (
    DEFAULT_LEGACY_WEIGHTS,
    DEFAULT_WEIGHTS,
    FACTOR_NAMES,
    CompositeSignalCalculator,
    ConfigurationError,
    concentration_factor,
    direction_conviction,
    legacy_confidence,
    rank_weighted_score,
    validate_weights,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _trade(wallet, value, side="BUY", minutes_ago=0):
    return {
        "timestamp": NOW - timedelta(minutes=minutes_ago),
        "conditionId": "cond-1",
        "eventTitle": "Test Event",
        "outcome": "Yes",
        "side": side,
        "price": 0.5,
        "tradeValue": value,
        "walletAddress": wallet,
    }


def _aggregate(records, ranks):
    trades = [Trade.model_validate(r) for r in records]
    return aggregate_trades(trades, ranks, NOW)["cond-1::Yes"]


@pytest.fixture
def calculator():
    """Calculator with default weights and thresholds."""
    return CompositeSignalCalculator()


@pytest.fixture
def whale():
    """A single rank-1 wallet."""
    return {"0xwhale": WalletRankInfo(address="0xwhale", rank=1, account_name="whale")}


class TestValidateWeights:
    """Tests for weight validation."""

    def test_defaults_are_valid(self):
        assert validate_weights(DEFAULT_WEIGHTS, FACTOR_NAMES, "Composite") == DEFAULT_WEIGHTS

    def test_rejects_bad_sum(self):
        weights = dict(DEFAULT_WEIGHTS, volume=0.5)
        with pytest.raises(ConfigurationError):
            validate_weights(weights, FACTOR_NAMES, "Composite")

    def test_rejects_missing_factor(self):
        weights = {k: v for k, v in DEFAULT_WEIGHTS.items() if k != "alignment"}
        with pytest.raises(ConfigurationError):
            validate_weights(weights, FACTOR_NAMES, "Composite")

    def test_rejects_negative(self):
        weights = dict(DEFAULT_WEIGHTS, volume=-0.15, rank=0.58)
        with pytest.raises(ConfigurationError):
            validate_weights(weights, FACTOR_NAMES, "Composite")

    def test_rejects_all_zero(self):
        with pytest.raises(ConfigurationError):
            validate_weights({name: 0.0 for name in FACTOR_NAMES}, FACTOR_NAMES, "Composite")

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            CompositeSignalCalculator(weights=dict(DEFAULT_WEIGHTS, extra=0.0))


class TestFactorHelpers:
    """Tests for the factor normalization helpers."""

    @pytest.mark.parametrize(
        "hhi,expected",
        [(0.0, 0.0), (0.125, 0.25), (0.5, 1.0), (0.75, 0.5), (1.0, 0.0)],
    )
    def test_concentration_factor(self, hhi, expected):
        assert concentration_factor(hhi) == pytest.approx(expected)

    def test_direction_conviction(self):
        assert direction_conviction(300, 100) == 0.75
        assert direction_conviction(0, 50) == 1.0
        assert direction_conviction(0, 0) == 0.5

    def test_rank_weighted_score(self):
        score = rank_weighted_score({"a": 100.0, "b": 100.0}, {"a": 1, "b": 201})
        assert score == pytest.approx(0.5)
        assert rank_weighted_score({}, {}) == 0.0


class TestLegacyConfidence:
    """Tests for the legacy 0-100 confidence formula."""

    def test_single_whale(self, whale):
        agg = _aggregate([_trade("0xwhale", 1000)], whale)
        expected = 0.32 + 0.25 + 0.18 * math.log10(1001) / 5 + 0.15 + 0.10
        assert legacy_confidence(agg, DEFAULT_LEGACY_WEIGHTS) == round(expected * 100)

    def test_rank_bonus_fades_with_rank(self):
        records = [_trade("0xa", 1000)]
        near = _aggregate(records, {"0xa": WalletRankInfo(address="0xa", rank=2)})
        far = _aggregate(records, {"0xa": WalletRankInfo(address="0xa", rank=40)})
        assert legacy_confidence(near, DEFAULT_LEGACY_WEIGHTS) > legacy_confidence(
            far, DEFAULT_LEGACY_WEIGHTS
        )

    def test_bounds(self, whale):
        agg = _aggregate([_trade("0xwhale", 1), _trade("0xnobody", 10_000_000, side="SELL")], whale)
        assert 0 <= legacy_confidence(agg, DEFAULT_LEGACY_WEIGHTS) <= 100


class TestCompositeSignalCalculator:
    """Tests for CompositeSignalCalculator.score."""

    def test_single_whale_signal(self, calculator, whale):
        agg = _aggregate([_trade("0xwhale", 1000)], whale)
        result = calculator.score(agg, MarketBaseline(), whale)

        assert result.id == "cond-1::Yes"
        assert result.hhi_concentration == 1.0
        assert result.is_concentrated
        assert result.rank_weighted_score == 1.0
        assert result.volume_z_score == 0.0
        assert not result.is_unusual_activity
        assert result.direction_conviction == 1.0
        assert result.alignment_contribution == 1.0
        assert result.confidence_percentile == 0.0

        factors = result.signal_factors
        assert factors.rank == 1.0
        assert factors.concentration == 0.0
        assert factors.recency == pytest.approx(1.0)
        assert factors.direction == 1.0
        assert factors.alignment == pytest.approx(0.4 + 0.6 * math.log2(2) / math.log2(5))
        assert factors.volume == pytest.approx(2 / (1 + math.exp(1)) - 0.5)

        assert result.tier_breakdown.elite == 1
        assert result.top_ranks[0].address == "0xwhale"
        assert result.top_ranks[0].tier == "elite"
        assert result.best_rank == 1
        assert result.stance == "bullish"

    def test_unusual_activity_flag(self, calculator, whale):
        agg = _aggregate([_trade("0xwhale", 1000)], whale)
        baseline = MarketBaseline(mean_volume=100.0, std_dev_volume=100.0)
        result = calculator.score(agg, baseline, whale)
        assert result.volume_z_score == pytest.approx(9.0)
        assert result.is_unusual_activity
        assert result.signal_factors.volume == pytest.approx(1.0, abs=1e-3)

    def test_dispersed_wallets_not_concentrated(self, calculator):
        ranks = {f"0x{i}": WalletRankInfo(address=f"0x{i}", rank=50 + i) for i in range(8)}
        agg = _aggregate([_trade(f"0x{i}", 100) for i in range(8)], ranks)
        result = calculator.score(agg, MarketBaseline(), ranks)
        assert result.hhi_concentration == pytest.approx(0.125)
        assert not result.is_concentrated
        assert result.tier_breakdown.silver == 8

    def test_split_direction(self, calculator):
        ranks = {
            "0xa": WalletRankInfo(address="0xa", rank=1),
            "0xb": WalletRankInfo(address="0xb", rank=2),
        }
        agg = _aggregate([_trade("0xa", 500, "BUY"), _trade("0xb", 500, "SELL")], ranks)
        result = calculator.score(agg, MarketBaseline(), ranks)
        assert result.direction_conviction == 0.5
        assert result.signal_factors.direction == 0.0
        # Tie goes to the buy side
        assert result.alignment_contribution == 0.5

    def test_stale_trades_lower_recency(self, calculator, whale):
        fresh = calculator.score(_aggregate([_trade("0xwhale", 1000)], whale), MarketBaseline(), whale)
        stale = calculator.score(
            _aggregate([_trade("0xwhale", 1000, minutes_ago=20 * 60)], whale), MarketBaseline(), whale
        )
        assert stale.signal_factors.recency == pytest.approx(math.exp(-2))
        assert stale.signal_factors.recency < fresh.signal_factors.recency

    def test_roster_from_aggregate_when_ranks_omitted(self, calculator, whale):
        agg = _aggregate([_trade("0xwhale", 1000)], whale)
        assert calculator.score(agg, MarketBaseline()).rank_weighted_score == 1.0

    def test_scores_within_bounds(self, calculator):
        ranks = {
            "0xa": WalletRankInfo(address="0xa", rank=3),
            "0xb": WalletRankInfo(address="0xb", rank=90),
        }
        agg = _aggregate(
            [
                _trade("0xa", 200, "BUY", 30),
                _trade("0xb", 50, "SELL", 400),
                _trade("0xc", 9000, "BUY", 10),
            ],
            ranks,
        )
        result = calculator.score(agg, MarketBaseline(mean_volume=500, std_dev_volume=300), ranks)
        assert 0.0 <= result.composite_score <= 1.0
        assert 0 <= result.legacy_confidence <= 100
        for name in FACTOR_NAMES:
            assert 0.0 <= getattr(result.signal_factors, name) <= 1.0


class TestCompositeOrdering:
    """The weighted composite and the unweighted factor sum rank differently."""

    def test_composite_and_factor_sum_diverge(self, calculator):
        aligned = SignalFactors(alignment=1.0)
        directional = SignalFactors(direction=1.0, recency=1.0)

        assert calculator.composite(aligned) == pytest.approx(0.25)
        assert calculator.composite(directional) == pytest.approx(0.20)
        assert aligned.total() < directional.total()

    def test_composite_is_clamped(self, calculator):
        maxed = SignalFactors(**{name: 1.0 for name in FACTOR_NAMES})
        assert calculator.composite(maxed) == pytest.approx(1.0)
        assert calculator.composite(SignalFactors()) == 0.0
