"""
Tests for the signal engine module.
"""

import random
from datetime import datetime, timedelta, timezone

import pytest

from whale_signals.config import Settings
from whale_signals.engine import MAX_TRADES_LIMIT, SignalConfig, SignalEngine
from whale_signals.models import LeaderboardSnapshot, RankedWallet, SignalFactors, Trade
from whale_signals.scoring import ConfigurationError, DEFAULT_WEIGHTS

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _trade(wallet, value, condition_id="cond-a", outcome="Yes", side="BUY",
           minutes_ago=10, price=0.5, **kwargs):
    """Helper: build a trade relative to NOW."""
    return Trade(
        timestamp=NOW - timedelta(minutes=minutes_ago),
        condition_id=condition_id,
        event_title=f"Event {condition_id}",
        outcome=outcome,
        side=side,
        price=price,
        trade_value=value,
        wallet_address=wallet,
        **kwargs,
    )


def _leaderboard(*entries, period="Daily"):
    """Helper: snapshot from (address, rank) pairs."""
    return LeaderboardSnapshot(
        period=period,
        wallets=[RankedWallet(wallet_address=a, rank=r) for a, r in entries],
    )


@pytest.fixture
def engine():
    """Engine with default configuration."""
    return SignalEngine(SignalConfig())


@pytest.fixture
def snapshots():
    """One elite wallet and eight silver-tier wallets ranked 50-57."""
    entries = [("0xwhale", 1)] + [(f"0xsilver{i}", 50 + i) for i in range(8)]
    return [_leaderboard(*entries)]


@pytest.fixture
def market_trades():
    """
    Outcome A: one rank-1 wallet.
    Outcome B: eight wallets ranked 50-57, same total volume.
    """
    trades = [_trade("0xwhale", 1000, condition_id="cond-a")]
    trades += [_trade(f"0xsilver{i}", 125, condition_id="cond-b") for i in range(8)]
    return trades


class TestSignalConfig:
    """Tests for SignalConfig."""

    def test_defaults(self):
        config = SignalConfig()
        assert config.WINDOW_HOURS == 24.0
        assert config.MAX_TRADES == 4000
        assert config.DECAY_CONSTANT_HOURS == 10.0
        assert config.WEIGHTS == DEFAULT_WEIGHTS

    def test_invalid_weights_rejected(self):
        with pytest.raises(ConfigurationError):
            SignalConfig(WEIGHTS=dict(DEFAULT_WEIGHTS, rank=0.9))

    def test_invalid_decay_constant_rejected(self):
        with pytest.raises(ConfigurationError):
            SignalConfig(DECAY_CONSTANT_HOURS=0)

    def test_invalid_window_rejected(self):
        with pytest.raises(ConfigurationError):
            SignalConfig(WINDOW_HOURS=-1)

    def test_from_settings(self):
        config = SignalConfig.from_settings(Settings(window_hours=6, top_picks=5))
        assert config.WINDOW_HOURS == 6
        assert config.TOP_PICKS == 5
        assert config.WEIGHTS == pytest.approx(DEFAULT_WEIGHTS)

    def test_from_settings_with_bad_weights(self):
        with pytest.raises(ConfigurationError):
            SignalConfig.from_settings(Settings(weight_volume=0.9))


class TestSignalEngineRun:
    """End-to-end pass tests."""

    def test_elite_wallet_outranks_dispersed_mid_ranks(self, engine, market_trades, snapshots):
        report = engine.run(market_trades, snapshots, now=NOW)
        ids = [s.id for s in report.signals]
        assert ids == ["cond-a::Yes", "cond-b::Yes"]

        a, b = report.signals
        assert a.hhi_concentration == 1.0
        assert a.is_concentrated
        assert a.rank_weighted_score == 1.0
        assert b.hhi_concentration == pytest.approx(0.125)
        assert not b.is_concentrated
        assert b.rank_weighted_score < 0.01
        assert a.composite_score > b.composite_score
        assert a.confidence_percentile == 100.0
        assert b.confidence_percentile == 0.0

    def test_expired_outcome_excluded_from_output_and_baseline(
        self, engine, market_trades, snapshots
    ):
        expired = _trade(
            "0xwhale",
            5_000_000,
            condition_id="cond-x",
            resolution_time=NOW - timedelta(minutes=10),
        )
        report = engine.run(market_trades + [expired], snapshots, now=NOW)

        assert "cond-x::Yes" not in [s.id for s in report.signals]
        assert report.summary.expired_outcomes == 1
        assert report.summary.unique_outcomes == 3
        # Remaining active outcomes have equal volume, so no spread
        assert all(s.volume_z_score == 0.0 for s in report.signals)

    def test_outcome_inside_grace_still_active(self, engine, snapshots):
        trade = _trade("0xwhale", 100, resolution_time=NOW - timedelta(minutes=3))
        report = engine.run([trade], snapshots, now=NOW)
        assert [s.id for s in report.signals] == ["cond-a::Yes"]

    def test_unranked_outcome_excluded(self, engine, market_trades, snapshots):
        whale_free = _trade("0xnobody", 10_000_000, condition_id="cond-big")
        report = engine.run(market_trades + [whale_free], snapshots, now=NOW)
        assert "cond-big::Yes" not in [s.id for s in report.signals]
        assert len(report.signals) == 2

    def test_equal_float_volumes_have_zero_z_score(self, engine, snapshots):
        trades = [_trade("0xwhale", 0.1, condition_id=f"cond-{i}") for i in range(3)]
        report = engine.run(trades, snapshots, now=NOW)
        assert len(report.signals) == 3
        assert [s.volume_z_score for s in report.signals] == [0.0, 0.0, 0.0]
        assert [s.ranked_volume_z_score for s in report.signals] == [0.0, 0.0, 0.0]
        assert not any(s.is_unusual_activity for s in report.signals)

    def test_empty_input(self, engine):
        report = engine.run([], [], now=NOW)
        assert report.signals == []
        assert report.top_picks == []
        assert report.summary.trade_count == 0
        assert report.summary.ranked_volume_share == 0.0

    def test_no_snapshots_means_no_signals(self, engine, market_trades):
        report = engine.run(market_trades, [], now=NOW)
        assert report.signals == []
        assert report.summary.trade_count == 9

    def test_single_signal_is_top_percentile(self, engine, snapshots):
        report = engine.run([_trade("0xwhale", 100)], snapshots, now=NOW)
        assert len(report.signals) == 1
        assert report.signals[0].confidence_percentile == 100.0

    def test_window_excludes_old_trades(self, engine, snapshots):
        old = _trade("0xwhale", 100, condition_id="cond-old", minutes_ago=25 * 60)
        fresh = _trade("0xwhale", 100, condition_id="cond-new", minutes_ago=60)
        report = engine.run([old, fresh], snapshots, now=NOW)
        assert [s.id for s in report.signals] == ["cond-new::Yes"]
        assert report.since == NOW - timedelta(hours=24)
        assert report.generated_at == NOW

    def test_max_trades_keeps_newest(self, snapshots):
        engine = SignalEngine(SignalConfig(MAX_TRADES=2))
        trades = [
            _trade("0xwhale", 100, condition_id=f"cond-{m}", minutes_ago=m)
            for m in (50, 10, 30, 40)
        ]
        window = engine.select_window(trades, NOW)
        assert [t.condition_id for t in window] == ["cond-10", "cond-30"]

    def test_max_trades_cut_ignores_input_order_on_equal_timestamps(self, snapshots):
        engine = SignalEngine(SignalConfig(MAX_TRADES=2))
        trades = [
            _trade("0xwhale", 100, condition_id=f"cond-{tx}", minutes_ago=10, id=tx)
            for tx in ("0xa1", "0xb2", "0xc3", "0xd4")
        ]
        forward = engine.select_window(trades, NOW)
        backward = engine.select_window(list(reversed(trades)), NOW)
        assert [t.id for t in forward] == [t.id for t in backward] == ["0xd4", "0xc3"]

    def test_limit_and_top_picks(self, snapshots):
        engine = SignalEngine(SignalConfig(TOP_PICKS=2))
        trades = [
            _trade("0xwhale", 100 * (i + 1), condition_id=f"cond-{i}") for i in range(5)
        ]
        report = engine.run(trades, snapshots, now=NOW)
        assert len(report.signals) == 5
        assert [s.id for s in report.top_picks] == [s.id for s in report.signals[:2]]

        limited = engine.run(trades, snapshots, now=NOW, limit=3)
        assert len(limited.signals) == 3

    def test_sorted_by_percentile(self, engine, snapshots):
        rng = random.Random(5)
        trades = [
            _trade(rng.choice(["0xwhale", "0xsilver1", "0xsilver2"]), rng.randint(10, 5000),
                   condition_id=f"cond-{i % 7}", side=rng.choice(["BUY", "SELL"]),
                   minutes_ago=rng.randint(0, 1400))
            for i in range(60)
        ]
        report = engine.run(trades, snapshots, now=NOW)
        percentiles = [s.confidence_percentile for s in report.signals]
        assert percentiles == sorted(percentiles, reverse=True)
        for s in report.signals:
            assert 0 <= s.confidence_percentile <= 100
            assert 0 <= s.composite_score <= 1
            assert 0 <= s.legacy_confidence <= 100

    def test_deterministic_under_shuffle(self, engine, snapshots):
        rng = random.Random(11)
        trades = [
            _trade(rng.choice(["0xwhale", "0xsilver0", "0xsilver5", "0xnobody"]), rng.randint(10, 900),
                   condition_id=f"cond-{i % 4}", outcome=rng.choice(["Yes", "No"]),
                   side=rng.choice(["BUY", "SELL"]), minutes_ago=rng.randint(0, 1200))
            for i in range(40)
        ]
        expected = engine.run(trades, snapshots, now=NOW)
        for _ in range(3):
            shuffled = list(trades)
            rng.shuffle(shuffled)
            report = engine.run(shuffled, snapshots, now=NOW)
            assert [s.id for s in report.signals] == [s.id for s in expected.signals]
            assert [s.confidence_percentile for s in report.signals] == [
                s.confidence_percentile for s in expected.signals
            ]

    def test_summary(self, engine, market_trades, snapshots):
        unranked = _trade("0xnobody", 2000, condition_id="cond-c")
        report = engine.run(market_trades + [unranked], snapshots, now=NOW)
        summary = report.summary
        assert summary.trade_count == 10
        assert summary.total_volume == 4000
        assert summary.unique_outcomes == 3
        assert summary.ranked_volume_share == pytest.approx(0.5)
        assert summary.ranked_trade_share == pytest.approx(0.9)
        assert report.periods == ["Daily"]


class TestRanking:
    """Tests for percentile ranking of a scored batch."""

    def test_percentile_uses_factor_sum_not_composite(self, engine, snapshots):
        base = engine.run([_trade("0xwhale", 100)], snapshots, now=NOW).signals[0]
        aligned = base.model_copy(update={
            "id": "aligned",
            "signal_factors": SignalFactors(alignment=1.0),
            "composite_score": 0.25,
        })
        directional = base.model_copy(update={
            "id": "directional",
            "signal_factors": SignalFactors(direction=1.0, recency=1.0),
            "composite_score": 0.20,
        })

        ranked = SignalEngine.rank([aligned, directional])
        assert [s.id for s in ranked] == ["directional", "aligned"]
        assert ranked[0].composite_score < ranked[1].composite_score
        assert ranked[0].confidence_percentile == 100.0

    def test_equal_factor_sums_get_distinct_percentiles(self, engine, snapshots):
        base = engine.run([_trade("0xwhale", 100)], snapshots, now=NOW).signals[0]
        first = base.model_copy(update={"id": "first"})
        second = base.model_copy(update={"id": "second"})
        ranked = SignalEngine.rank([first, second])
        assert [(s.id, s.confidence_percentile) for s in ranked] == [
            ("second", 100.0),
            ("first", 0.0),
        ]

    def test_legacy_confidence_can_disagree(self, engine):
        """Legacy confidence favors ranked share; the composite favors rank quality."""
        snapshots = [_leaderboard(("0xwhale", 1), ("0xgold", 25))]
        trades = [
            _trade("0xwhale", 100, condition_id="cond-x"),
            _trade("0xcrowd", 900, condition_id="cond-x"),
            _trade("0xgold", 1000, condition_id="cond-y"),
        ]
        report = engine.run(trades, snapshots, now=NOW)
        x, y = report.signals

        assert (x.id, y.id) == ("cond-x::Yes", "cond-y::Yes")
        assert x.composite_score > y.composite_score
        assert x.legacy_confidence < y.legacy_confidence

    def test_rank_empty(self):
        assert SignalEngine.rank([]) == []


class TestOutcomeTrades:
    """Tests for the outcome drill-down."""

    @pytest.fixture
    def trades(self):
        return [
            _trade("0xwhale", 100, minutes_ago=30),
            _trade("0xsilver0", 200, minutes_ago=5),
            _trade("0xnobody", 900, minutes_ago=1),
            _trade("0xwhale", 50, outcome="No", minutes_ago=2),
            _trade("0xwhale", 75, condition_id="cond-b", minutes_ago=3),
            _trade("0xwhale", 80, minutes_ago=30 * 60),
        ]

    def test_requires_an_identifier(self, engine, trades, snapshots):
        with pytest.raises(ValueError):
            engine.outcome_trades(trades, snapshots, now=NOW)

    def test_by_condition_id(self, engine, trades, snapshots):
        result = engine.outcome_trades(trades, snapshots, condition_id="cond-a", now=NOW)
        assert [rt.trade.wallet_address for rt in result] == ["0xwhale", "0xsilver0", "0xwhale"]
        assert [rt.trade.outcome for rt in result] == ["No", "Yes", "Yes"]
        assert result[0].rank == 1
        assert result[0].tier == "elite"
        assert result[1].tier == "silver"

    def test_outcome_match_is_case_insensitive(self, engine, trades, snapshots):
        result = engine.outcome_trades(
            trades, snapshots, condition_id="cond-a", outcome="yes", now=NOW
        )
        assert [rt.trade.trade_value for rt in result] == [200, 100]

    def test_outcome_only(self, engine, trades, snapshots):
        result = engine.outcome_trades(trades, snapshots, outcome="YES", now=NOW)
        assert [rt.trade.trade_value for rt in result] == [75, 200, 100]

    def test_limit_clamped(self, engine, trades, snapshots):
        assert len(engine.outcome_trades(trades, snapshots, condition_id="cond-a", limit=0, now=NOW)) == 1

        many = [_trade("0xwhale", 1, minutes_ago=i % 600) for i in range(MAX_TRADES_LIMIT + 50)]
        result = engine.outcome_trades(many, snapshots, condition_id="cond-a", limit=10_000, now=NOW)
        assert len(result) == MAX_TRADES_LIMIT
