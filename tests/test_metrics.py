"""Tests for rolling-window metrics and the composite score."""

import math
from datetime import timedelta

import pytest

from walletledger.config import ScoreWeights, Settings
from walletledger.domain.lot_matcher import LotMatcher
from walletledger.domain.metrics import MetricsCalculator
from walletledger.domain.models import RollingWindowStats
from walletledger.domain.windows import TimeWindow


def _metrics(trades, now, settings=None):
    result = LotMatcher.process_trades("W1", trades)
    return MetricsCalculator.calculate_metrics(
        "W1", trades, result.closed_lots, now=now, settings=settings
    )


def test_single_round_trip_metrics(make_trade, now):
    """Buy 100 @ 0.01, sell 100 @ 0.015 ten minutes later, observed a day later."""
    trades = [
        make_trade("buy", 100, 0.01, minutes=0),
        make_trade("sell", 100, 0.015, minutes=10),
    ]
    metrics = _metrics(trades, now)

    stats = metrics.window("30d")
    assert stats.closed_trades == 1
    assert stats.wins == 1
    assert stats.losses == 0
    assert stats.win_rate == 1.0
    assert stats.realized_pnl == pytest.approx(0.5)
    assert stats.realized_pnl_percent == pytest.approx(50)
    assert stats.avg_hold_minutes == pytest.approx(10)
    assert stats.max_drawdown == 0.0
    assert stats.valuation_breakdown["on_chain"] == 1

    assert metrics.trade_count == 2
    assert metrics.closed_lot_count == 1
    assert 0 < metrics.score <= 100
    assert set(metrics.windows) == {"7d", "30d", "90d", "all"}


def test_empty_wallet_scores_zero(now):
    metrics = MetricsCalculator.calculate_metrics("W1", [], [], now=now)

    assert metrics.is_empty
    assert metrics.score == 0.0
    for stats in metrics.windows.values():
        assert stats.closed_trades == 0
        assert stats.realized_pnl == 0.0
        assert stats.win_rate is None
    assert all(score == 0.0 for score in metrics.window_scores.values())


def test_void_only_wallet_is_empty(make_trade, now):
    trades = [make_trade("void", 10, 1.0), make_trade("void", 5, 1.0, minutes=1)]
    metrics = _metrics(trades, now)

    assert metrics.is_empty
    assert metrics.void_count == 2
    assert metrics.score == 0.0


def test_pre_history_only_wallet(make_trade, now):
    trades = [make_trade("sell", 10, 2.0, minutes=0)]
    metrics = _metrics(trades, now)

    stats = metrics.window("all")
    assert stats.closed_trades == 1
    assert stats.pre_history_count == 1
    assert stats.pre_history_pnl == pytest.approx(20)
    assert stats.realized_pnl == pytest.approx(20)
    assert stats.win_rate == 1.0
    assert stats.wins == 1
    assert stats.realized_pnl_percent is None
    assert stats.avg_hold_minutes is None
    assert 0.0 <= metrics.score <= 100.0


def test_max_drawdown_peak_to_trough():
    assert MetricsCalculator.max_drawdown([5, -3, -4, 10]) == pytest.approx(7)
    assert MetricsCalculator.max_drawdown([]) == 0.0
    assert MetricsCalculator.max_drawdown([1, 2, 3]) == 0.0
    # losing from the start counts against the zero baseline
    assert MetricsCalculator.max_drawdown([-2, -1]) == pytest.approx(3)


def test_window_drawdown_follows_exit_order(make_lot, now):
    lots = [
        make_lot(5, now - timedelta(hours=4)),
        make_lot(-3, now - timedelta(hours=3)),
        make_lot(-4, now - timedelta(hours=2)),
        make_lot(10, now - timedelta(hours=1)),
    ]
    stats = MetricsCalculator.compute_window_stats(
        list(reversed(lots)), TimeWindow("7d", 7), now
    )
    assert stats.max_drawdown == pytest.approx(7)
    # percent curve: +50, -30, -40, +100 (cost 10 each)
    assert stats.max_drawdown_percent == pytest.approx(70)


def test_window_bounds_and_future_exclusion(make_lot, now):
    lots = [
        make_lot(1, now - timedelta(days=2)),
        make_lot(2, now - timedelta(days=10)),
        make_lot(4, now - timedelta(days=40)),
        make_lot(8, now - timedelta(days=7)),  # exactly on the boundary
        make_lot(100, now + timedelta(hours=1)),
    ]

    week = MetricsCalculator.compute_window_stats(lots, TimeWindow("7d", 7), now)
    month = MetricsCalculator.compute_window_stats(lots, TimeWindow("30d", 30), now)
    everything = MetricsCalculator.compute_window_stats(lots, TimeWindow("all", None), now)

    assert week.closed_trades == 2
    assert week.realized_pnl == pytest.approx(9)
    assert month.closed_trades == 3
    assert everything.closed_trades == 4
    assert everything.realized_pnl == pytest.approx(15)


def test_all_window_pnl_is_sum_of_every_lot(make_trade, now):
    trades = [
        make_trade("buy", 10, 1.0, minutes=0, asset_id="A"),
        make_trade("sell", 4, 1.5, minutes=5, asset_id="A"),
        make_trade("sell", 8, 0.8, minutes=6, asset_id="A"),
        make_trade("buy", 3, 2.0, minutes=7, asset_id="B"),
        make_trade("sell", 3, 1.0, minutes=8, asset_id="B"),
    ]
    result = LotMatcher.process_trades("W1", trades)
    metrics = MetricsCalculator.calculate_metrics("W1", trades, result.closed_lots, now=now)

    total = sum(lot.realized_pnl for lot in result.closed_lots)
    assert metrics.window("all").realized_pnl == pytest.approx(total)
    assert metrics.window("all").closed_trades == len(result.closed_lots)


def test_win_rate_counts_every_closed_lot(make_lot, now):
    lots = [
        make_lot(2, now - timedelta(hours=3)),
        make_lot(-1, now - timedelta(hours=2)),
        make_lot(50, now - timedelta(hours=1), pre_history=True),
    ]
    stats = MetricsCalculator.compute_window_stats(lots, TimeWindow("7d", 7), now)

    assert stats.closed_trades == 3
    assert stats.wins == 2
    assert stats.losses == 1
    assert stats.win_rate == pytest.approx(2 / 3)
    assert stats.realized_pnl_percent == pytest.approx(5)  # (2 - 1) / 20
    assert stats.avg_rr == pytest.approx(2.0)
    assert stats.pre_history_count == 1


def test_pre_history_win_counts_toward_win_rate(make_trade, now):
    trades = [
        make_trade("sell", 5, 2.0, minutes=0),
        make_trade("buy", 10, 1.0, minutes=10),
        make_trade("sell", 10, 0.5, minutes=20),
    ]
    stats = _metrics(trades, now).window("30d")

    assert stats.closed_trades == 2
    assert stats.win_rate == pytest.approx(0.5)
    assert stats.avg_rr is None


@pytest.mark.parametrize(
    "win_rate,pnl_percent,avg_pnl,trades,drawdown",
    [
        (1.0, 1e9, 1e9, 10**6, 0.0),
        (0.0, -1e9, -1e9, 1, 1e9),
        (float("nan"), float("nan"), float("nan"), 5, float("nan")),
        (1.0, float("inf"), float("-inf"), 5, float("inf")),
        (None, None, None, 1, 0.0),
    ],
)
def test_score_is_bounded(win_rate, pnl_percent, avg_pnl, trades, drawdown):
    stats = RollingWindowStats(
        label="30d",
        days=30,
        closed_trades=trades,
        win_rate=win_rate,
        realized_pnl_percent=pnl_percent,
        avg_pnl_percent=avg_pnl,
        max_drawdown_percent=drawdown,
    )
    score = MetricsCalculator.compute_score(stats, stats)
    assert not math.isnan(score)
    assert 0.0 <= score <= 100.0


def test_perfect_wallet_scores_hundred():
    stats = RollingWindowStats(
        label="30d",
        days=30,
        closed_trades=200,
        win_rate=1.0,
        realized_pnl_percent=80.0,
        avg_pnl_percent=90.0,
        max_drawdown_percent=0.0,
    )
    assert MetricsCalculator.compute_score(stats, stats) == pytest.approx(100.0)


def test_score_is_monotonic_in_win_rate():
    def stats(win_rate):
        return RollingWindowStats(
            label="30d",
            days=30,
            closed_trades=10,
            win_rate=win_rate,
            realized_pnl_percent=10.0,
            avg_pnl_percent=5.0,
            max_drawdown_percent=20.0,
        )

    scores = [
        MetricsCalculator.compute_score(stats(w), stats(w)) for w in (0.0, 0.25, 0.5, 0.75, 1.0)
    ]
    assert scores == sorted(scores)
    assert scores[0] < scores[-1]


def test_drawdown_credit_requires_recent_trades():
    recent = RollingWindowStats(label="30d", days=30)
    overall = RollingWindowStats(label="all", days=None, closed_trades=10)
    score = MetricsCalculator.compute_score(recent, overall, ScoreWeights())
    # experience only: 10 trades of 100 at weight 10
    assert score == pytest.approx(1.0)


def test_score_window_is_configurable(make_trade, now):
    trades = [
        make_trade("buy", 10, 1.0, minutes=0),
        make_trade("sell", 10, 2.0, minutes=10),
    ]
    settings = Settings(windows=[("1d", 1), ("all", None)], score_window="1d")
    metrics = _metrics(trades, now + timedelta(days=5), settings)

    assert set(metrics.windows) == {"1d", "all"}
    assert metrics.window("1d").closed_trades == 0
    # only avg pnl (capped) and experience of the all-time window contribute
    assert metrics.score == pytest.approx(20.1)
    assert metrics.window_scores["all"] > metrics.window_scores["1d"]


def test_asset_stats(make_lot, now):
    lots = [
        make_lot(2, now, asset_id="A"),
        make_lot(-1, now, asset_id="A"),
        make_lot(3, now, asset_id="B"),
    ]
    df = MetricsCalculator.get_asset_stats(lots)

    assert list(df["asset_id"]) == ["A", "B"]
    assert list(df["count"]) == [2, 1]
    assert list(df["wins"]) == [1, 1]
    assert df.loc[0, "realized_pnl"] == pytest.approx(1)
    assert df.loc[0, "win_rate"] == pytest.approx(0.5)


def test_advanced_stats(make_lot, now):
    lots = [
        make_lot(2, now - timedelta(hours=5)),
        make_lot(3, now - timedelta(hours=4)),
        make_lot(-1, now - timedelta(hours=3)),
        make_lot(-4, now - timedelta(hours=2)),
        make_lot(-2, now - timedelta(hours=1)),
        make_lot(9, now - timedelta(minutes=30), pre_history=True),
    ]
    stats = MetricsCalculator.compute_advanced_stats(lots)

    assert stats.profit_factor == pytest.approx(5 / 7)
    assert stats.largest_win == pytest.approx(3)
    assert stats.largest_loss == pytest.approx(-4)
    assert stats.avg_win_percent == pytest.approx(25)
    assert stats.max_win_streak == 2
    assert stats.max_loss_streak == 3
    assert len(stats.assets) == 1
    assert stats.assets[0].closed_trades == 5


def test_equity_curve_groups_by_exit_day(make_lot, t0):
    lots = [
        make_lot(5, t0),
        make_lot(-2, t0 + timedelta(hours=1)),
        make_lot(-6, t0 + timedelta(days=1)),
        make_lot(4, t0 + timedelta(days=2)),
    ]
    df = MetricsCalculator.get_equity_curve(lots)

    assert list(df["date"]) == ["2025-01-01", "2025-01-02", "2025-01-03"]
    assert list(df["daily_pnl"]) == pytest.approx([3, -6, 4])
    assert list(df["cumulative_pnl"]) == pytest.approx([3, -3, 1])
    assert list(df["drawdown"]) == pytest.approx([0, -6, -2])


def test_equity_curve_empty():
    df = MetricsCalculator.get_equity_curve([])
    assert df.empty
    assert list(df.columns) == ["date", "daily_pnl", "cumulative_pnl", "drawdown"]
