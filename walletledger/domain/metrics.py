# walletledger/domain/metrics.py
"""Rolling-window statistics, composite score and equity reports."""

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd
import pytz

from walletledger.config import ScoreWeights, Settings
from walletledger.domain.models import (
    AdvancedStats,
    AssetStats,
    ClosedLot,
    RollingWindowStats,
    Trade,
    TradeSide,
    WalletMetrics,
    to_utc,
)
from walletledger.domain.provenance import VALUATION_KINDS
from walletledger.domain.windows import TimeWindow, build_windows, clamp, mean, safe_div

logger = logging.getLogger(__name__)


def _exit_order(lot: ClosedLot):
    return (lot.exit_time, lot.asset_id, lot.sequence)


class MetricsCalculator:
    """Calculate window stats, the composite score and equity curve."""

    @staticmethod
    def calculate_metrics(
        wallet_id: str,
        trades: Iterable[Trade],
        closed_lots: Iterable[ClosedLot],
        now: Optional[datetime] = None,
        settings: Optional[Settings] = None,
    ) -> WalletMetrics:
        """
        Compute every configured window plus the composite score.

        A wallet without non-void trades yields empty windows and the score
        floor (0); it is not an error.
        """
        settings = settings or Settings()
        now = to_utc(now or datetime.now(pytz.UTC))
        windows = build_windows(settings.windows)

        trades = list(trades)
        void_count = sum(1 for t in trades if t.side == TradeSide.VOID)
        trade_count = len(trades) - void_count
        lots = sorted(closed_lots, key=_exit_order) if trade_count else []

        metrics = WalletMetrics(
            wallet_id=wallet_id,
            computed_at=now,
            trade_count=trade_count,
            void_count=void_count,
            closed_lot_count=len(lots),
        )

        for window in windows:
            metrics.windows[window.label] = MetricsCalculator.compute_window_stats(
                lots, window, now
            )

        overall = MetricsCalculator._overall(metrics.windows, windows)
        recent = metrics.windows.get(settings.score_window, overall)

        metrics.score = MetricsCalculator.compute_score(recent, overall, settings.weights)
        metrics.window_scores = {
            label: MetricsCalculator.compute_score(stats, stats, settings.weights)
            for label, stats in metrics.windows.items()
        }
        metrics.advanced = MetricsCalculator.compute_advanced_stats(
            [lot for lot in lots if to_utc(lot.exit_time) <= now]
        )

        logger.info(
            "Metrics for %s: %d trades, %d closed lots, score %.2f",
            wallet_id, trade_count, len(lots), metrics.score,
        )
        return metrics

    @staticmethod
    def _overall(
        stats: Dict[str, RollingWindowStats], windows: List[TimeWindow]
    ) -> RollingWindowStats:
        """The unbounded window, or the widest configured one."""
        unbounded = [w for w in windows if w.days is None]
        if unbounded:
            return stats[unbounded[0].label]
        widest = max(windows, key=lambda w: w.days)
        return stats[widest.label]

    @staticmethod
    def compute_window_stats(
        closed_lots: Iterable[ClosedLot],
        window: TimeWindow,
        now: datetime,
    ) -> RollingWindowStats:
        """Aggregate closed lots whose exit lies in [now - window, now]."""
        stats = RollingWindowStats(
            label=window.label,
            days=window.days,
            valuation_breakdown={kind: 0 for kind in VALUATION_KINDS},
        )
        lots = sorted(
            (lot for lot in closed_lots if window.contains(lot.exit_time, now)),
            key=_exit_order,
        )
        if not lots:
            return stats

        known = [lot for lot in lots if lot.cost_known]
        pre_history = [lot for lot in lots if lot.is_pre_history]
        # counts include pre-history lots; only percent figures need a known cost
        wins = [lot for lot in lots if lot.realized_pnl > 0]
        losses = [lot for lot in lots if lot.realized_pnl < 0]

        stats.closed_trades = len(lots)
        stats.wins = len(wins)
        stats.losses = len(losses)
        stats.realized_pnl = sum(lot.realized_pnl for lot in lots)

        known_pnl = sum(lot.realized_pnl for lot in known)
        known_cost = sum(lot.cost_basis for lot in known)
        pct = safe_div(known_pnl, known_cost)
        stats.realized_pnl_percent = pct * 100 if pct is not None else None

        stats.win_rate = safe_div(len(wins), len(lots))
        stats.avg_hold_minutes = mean([lot.hold_minutes for lot in known])
        stats.avg_pnl_percent = mean(
            [lot.realized_pnl_percent for lot in known if lot.realized_pnl_percent is not None]
        )

        avg_win = mean([lot.realized_pnl_percent for lot in wins if lot.realized_pnl_percent is not None])
        avg_loss = mean([lot.realized_pnl_percent for lot in losses if lot.realized_pnl_percent is not None])
        if avg_win is not None and avg_loss:
            stats.avg_rr = avg_win / abs(avg_loss)

        stats.max_drawdown = MetricsCalculator.max_drawdown(
            [lot.realized_pnl for lot in lots]
        )
        stats.max_drawdown_percent = MetricsCalculator.max_drawdown(
            [lot.realized_pnl_percent for lot in known if lot.realized_pnl_percent is not None]
        )

        stats.pre_history_count = len(pre_history)
        stats.pre_history_pnl = sum(lot.realized_pnl for lot in pre_history)
        stats.valuation_breakdown.update(Counter(lot.valuation for lot in lots))
        return stats

    @staticmethod
    def max_drawdown(pnls: List[float]) -> float:
        """Largest peak-to-trough decline of the cumulative PnL curve (starts at 0)."""
        cumulative = 0.0
        peak = 0.0
        worst = 0.0
        for pnl in pnls:
            cumulative += pnl
            peak = max(peak, cumulative)
            worst = max(worst, peak - cumulative)
        return worst

    @staticmethod
    def compute_score(
        recent: RollingWindowStats,
        overall: RollingWindowStats,
        weights: Optional[ScoreWeights] = None,
    ) -> float:
        """
        Composite score in [0, 100].

        Components are clamped to [0, 1] before weighting, so one extreme
        value can neither dominate nor push the score out of range. Drawdown
        control only earns credit when the recent window has closed trades.
        """
        weights = weights or ScoreWeights()
        if recent.closed_trades == 0 and overall.closed_trades == 0:
            return 0.0

        win_rate = clamp(recent.win_rate if recent.win_rate is not None else 0.0, 0.0, 1.0)
        recent_pnl = clamp(
            (recent.realized_pnl_percent or 0.0) / weights.pnl_cap_percent, 0.0, 1.0
        )
        avg_pnl = clamp(
            (overall.avg_pnl_percent or 0.0) / weights.pnl_cap_percent, 0.0, 1.0
        )
        experience = clamp(
            overall.closed_trades / weights.experience_cap_trades, 0.0, 1.0
        )
        if recent.closed_trades > 0:
            drawdown = 1.0 - clamp(
                recent.max_drawdown_percent / weights.drawdown_cap_percent, 0.0, 1.0
            )
        else:
            drawdown = 0.0

        score = (
            weights.win_rate * win_rate
            + weights.recent_pnl * recent_pnl
            + weights.avg_pnl * avg_pnl
            + weights.experience * experience
            + weights.drawdown * drawdown
        )
        return round(clamp(score * 100.0 / weights.total, 0.0, 100.0), 4)

    @staticmethod
    def compute_advanced_stats(closed_lots: List[ClosedLot]) -> AdvancedStats:
        """Profit factor, extremes, streaks and per-asset breakdown."""
        known = sorted((lot for lot in closed_lots if lot.cost_known), key=_exit_order)
        stats = AdvancedStats()
        if not known:
            return stats

        wins = [lot for lot in known if lot.realized_pnl > 0]
        losses = [lot for lot in known if lot.realized_pnl < 0]

        gross_wins = sum(lot.realized_pnl for lot in wins)
        gross_losses = sum(abs(lot.realized_pnl) for lot in losses)
        stats.profit_factor = safe_div(gross_wins, gross_losses)
        stats.largest_win = max((lot.realized_pnl for lot in wins), default=None)
        stats.largest_loss = min((lot.realized_pnl for lot in losses), default=None)
        stats.avg_win_percent = mean([lot.realized_pnl_percent for lot in wins])
        stats.avg_loss_percent = mean([lot.realized_pnl_percent for lot in losses])

        win_streak = loss_streak = 0
        for lot in known:
            if lot.realized_pnl > 0:
                win_streak += 1
                loss_streak = 0
            else:
                loss_streak += 1
                win_streak = 0
            stats.max_win_streak = max(stats.max_win_streak, win_streak)
            stats.max_loss_streak = max(stats.max_loss_streak, loss_streak)

        df = MetricsCalculator.get_asset_stats(known)
        stats.assets = [
            AssetStats(
                asset_id=row.asset_id,
                closed_trades=int(row.count),
                wins=int(row.wins),
                realized_pnl=float(row.realized_pnl),
                win_rate=float(row.win_rate),
            )
            for row in df.itertuples(index=False)
        ]
        return stats

    @staticmethod
    def get_asset_stats(closed_lots: Iterable[ClosedLot]) -> pd.DataFrame:
        """Performance by asset."""
        rows = [
            {
                "asset_id": lot.asset_id,
                "pnl": lot.realized_pnl,
                "is_win": 1 if lot.realized_pnl > 0 else 0,
            }
            for lot in closed_lots
        ]
        if not rows:
            return pd.DataFrame(columns=["asset_id", "count", "wins", "realized_pnl", "win_rate"])

        df = pd.DataFrame(rows)
        return (
            df.groupby("asset_id", as_index=False)
            .agg(
                count=("pnl", "count"),
                wins=("is_win", "sum"),
                realized_pnl=("pnl", "sum"),
                win_rate=("is_win", "mean"),
            )
            .sort_values("asset_id")
            .reset_index(drop=True)
        )

    @staticmethod
    def get_equity_curve(
        closed_lots: Iterable[ClosedLot],
        report_timezone: str = "UTC",
    ) -> pd.DataFrame:
        """
        Build equity curve from realized PnL per exit day.

        Returns DataFrame with columns: date, daily_pnl, cumulative_pnl, drawdown
        """
        tz = pytz.timezone(report_timezone)

        by_day: Dict[str, float] = {}
        for lot in sorted(closed_lots, key=_exit_order):
            day = to_utc(lot.exit_time).astimezone(tz).strftime("%Y-%m-%d")
            by_day[day] = by_day.get(day, 0.0) + lot.realized_pnl

        if not by_day:
            return pd.DataFrame(columns=["date", "daily_pnl", "cumulative_pnl", "drawdown"])

        rows = []
        cumulative = 0.0
        peak = 0.0
        for day in sorted(by_day):
            cumulative += by_day[day]
            peak = max(peak, cumulative)
            drawdown = cumulative - peak if peak > 0 else 0.0
            rows.append(
                {
                    "date": day,
                    "daily_pnl": by_day[day],
                    "cumulative_pnl": cumulative,
                    "drawdown": drawdown,
                }
            )
        return pd.DataFrame(rows)
