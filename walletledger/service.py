# walletledger/service.py
"""
Per-wallet ledger pass: match trades, persist closed lots and open positions,
recompute metrics and append a score snapshot. A pass is persisted in full
or not at all.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Set

import pandas as pd
import pytz
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from walletledger.config import Settings
from walletledger.db.repository import LedgerRepository
from walletledger.domain.lot_matcher import LotMatcher
from walletledger.domain.metrics import MetricsCalculator
from walletledger.domain.models import ClosedLot, OpenPosition, WalletMetrics, to_utc
from walletledger.errors import (
    ConcurrencyConflict,
    DependencyError,
    InsufficientHistoryWarning,
    LedgerError,
    ValidationError,
)
from walletledger.pricing import CachedPriceOracle, PriceOracle, revalue_trades

logger = logging.getLogger(__name__)


class WalletLocks:
    """In-process single-writer guard: one pass per wallet at a time."""

    def __init__(self):
        self._guard = threading.Lock()
        self._held: Set[str] = set()

    @contextmanager
    def hold(self, wallet_id: str):
        with self._guard:
            if wallet_id in self._held:
                raise ConcurrencyConflict(wallet_id)
            self._held.add(wallet_id)
        try:
            yield
        finally:
            with self._guard:
                self._held.discard(wallet_id)

    def is_held(self, wallet_id: str) -> bool:
        with self._guard:
            return wallet_id in self._held


@dataclass
class WalletPassResult:
    wallet_id: str
    closed_lots: List[ClosedLot] = field(default_factory=list)
    open_positions: List[OpenPosition] = field(default_factory=list)
    metrics: Optional[WalletMetrics] = None
    rejected: List[ValidationError] = field(default_factory=list)
    warnings: List[InsufficientHistoryWarning] = field(default_factory=list)
    resumed_assets: List[str] = field(default_factory=list)


class LedgerService:
    """Runs wallet passes and serves the produced read interface."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        price_oracle: Optional[PriceOracle] = None,
        locks: Optional[WalletLocks] = None,
    ):
        self.settings = settings or Settings.from_env()
        if price_oracle is not None and not isinstance(price_oracle, CachedPriceOracle):
            price_oracle = CachedPriceOracle(price_oracle, self.settings.price_ttl_seconds)
        self.price_oracle = price_oracle
        self.locks = locks or WalletLocks()

    def process_wallet(
        self,
        session: Session,
        wallet_id: str,
        asset_id: Optional[str] = None,
        tracking_start_time: Optional[datetime] = None,
        incremental: bool = False,
        now: Optional[datetime] = None,
    ) -> WalletPassResult:
        """
        Rebuild the ledger of one wallet and commit it.

        Args:
            session: SQLModel session (committed on success, rolled back on failure)
            wallet_id: Wallet to process
            asset_id: Only rebuild this asset; lots of other assets are kept
            tracking_start_time: Ignore trades before this instant
            incremental: Resume assets from their open-position snapshots
            now: Reference time for the rolling windows

        Raises:
            ConcurrencyConflict: a pass for this wallet is already running
            DependencyError: price oracle or store failed; nothing persisted

        Any other exception also rolls the pass back and propagates unchanged.
        """
        with self.locks.hold(wallet_id):
            try:
                result = self._process(
                    session, wallet_id, asset_id, tracking_start_time, incremental, now
                )
                session.commit()
            except LedgerError:
                session.rollback()
                raise
            except SQLAlchemyError as e:
                session.rollback()
                raise DependencyError(f"Store failed for wallet {wallet_id}: {e}") from e
            except Exception:
                session.rollback()
                raise

        logger.info(
            "Processed wallet %s: %d closed lots, %d open positions, %d rejected, score %.2f",
            wallet_id,
            len(result.closed_lots),
            len(result.open_positions),
            len(result.rejected),
            result.metrics.score,
        )
        return result

    def _process(
        self,
        session: Session,
        wallet_id: str,
        asset_id: Optional[str],
        tracking_start_time: Optional[datetime],
        incremental: bool,
        now: Optional[datetime],
    ) -> WalletPassResult:
        now = to_utc(now or datetime.now(pytz.UTC))

        trades = LedgerRepository.list_trades(session, wallet_id)
        trades = revalue_trades(trades, self.price_oracle)
        if tracking_start_time is not None:
            cutoff = to_utc(tracking_start_time)
            trades = [t for t in trades if t.timestamp is None or t.timestamp >= cutoff]

        stored_positions = LedgerRepository.list_open_positions(session, wallet_id)
        match = LotMatcher.process_trades(
            wallet_id,
            trades,
            asset_id=asset_id,
            open_positions=stored_positions if incremental else None,
        )

        # Lots outside this pass's scope and lots of resumed assets stay as they are
        resumed = set(match.resumed_assets)
        kept = [
            lot
            for lot in LedgerRepository.get_closed_lots(session, wallet_id)
            if (asset_id is not None and lot.asset_id != asset_id) or lot.asset_id in resumed
        ]
        closed_lots = sorted(
            kept + match.closed_lots,
            key=lambda lot: (lot.exit_time, lot.asset_id, lot.sequence),
        )
        LedgerRepository.replace_closed_lots(session, wallet_id, closed_lots)

        open_assets = {p.asset_id for p in match.open_positions}
        if asset_id is None and not open_assets:
            LedgerRepository.delete_open_positions(session, wallet_id)
        else:
            stale = [
                p.asset_id
                for p in stored_positions
                if (asset_id is None or p.asset_id == asset_id) and p.asset_id not in open_assets
            ]
            LedgerRepository.delete_open_positions(session, wallet_id, stale)
            LedgerRepository.upsert_open_positions(session, wallet_id, match.open_positions)

        metrics = MetricsCalculator.calculate_metrics(
            wallet_id, trades, closed_lots, now=now, settings=self.settings
        )
        LedgerRepository.append_score_snapshot(session, metrics)

        return WalletPassResult(
            wallet_id=wallet_id,
            closed_lots=closed_lots,
            open_positions=match.open_positions,
            metrics=metrics,
            rejected=match.rejected,
            warnings=match.warnings,
            resumed_assets=match.resumed_assets,
        )

    # ---- read interface ----------------------------------------------

    @staticmethod
    def get_metrics(
        session: Session, wallet_id: str, window: Optional[str] = None
    ) -> Optional[WalletMetrics]:
        """
        Latest score snapshot, optionally narrowed to one window.
        None means the wallet has not been processed yet.
        """
        metrics = LedgerRepository.get_latest_snapshot(session, wallet_id)
        if metrics is None or window is None:
            return metrics
        if window not in metrics.windows:
            raise KeyError(f"Unknown window {window!r}; have {sorted(metrics.windows)}")
        return replace(
            metrics,
            windows={window: metrics.windows[window]},
            window_scores={window: metrics.window_scores.get(window, 0.0)},
        )

    @staticmethod
    def get_closed_lots(
        session: Session,
        wallet_id: str,
        asset_id: Optional[str] = None,
        from_date: Optional[datetime] = None,
    ) -> List[ClosedLot]:
        return LedgerRepository.get_closed_lots(session, wallet_id, asset_id, from_date)

    def get_equity_curve(
        self, session: Session, wallet_id: str, report_timezone: Optional[str] = None
    ) -> pd.DataFrame:
        lots = LedgerRepository.get_closed_lots(session, wallet_id)
        return MetricsCalculator.get_equity_curve(
            lots, report_timezone or self.settings.report_timezone
        )
