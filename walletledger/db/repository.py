# walletledger/db/repository.py
"""
Persistence for the trade log and derived ledger state.

Nothing here commits: the caller owns the transaction so that a wallet pass
is persisted completely or not at all.
"""

from collections import deque
from datetime import datetime
from typing import Iterable, List, Optional

import pytz
from sqlmodel import Session, delete, select

from walletledger.db.models import (
    ClosedLotRecord,
    OpenPositionRecord,
    TradeRecord,
    WalletScoreSnapshot,
)
from walletledger.domain.models import (
    AdvancedStats,
    ClosedLot,
    OpenLot,
    OpenPosition,
    RollingWindowStats,
    Trade,
    TradeSide,
    WalletMetrics,
    to_utc,
)


def _utc(ts: Optional[datetime]) -> Optional[datetime]:
    return to_utc(ts) if ts is not None else None


class LedgerRepository:
    """Reads and writes ledger rows for one session."""

    # ---- trade log ---------------------------------------------------

    @staticmethod
    def list_trades(
        session: Session,
        wallet_id: str,
        asset_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[Trade]:
        """Trades ordered by time, soft-deleted rows excluded, void rows included."""
        stmt = select(TradeRecord).where(
            TradeRecord.wallet_id == wallet_id,
            TradeRecord.is_deleted == False,  # noqa: E712
        )
        if asset_id is not None:
            stmt = stmt.where(TradeRecord.asset_id == asset_id)
        if since is not None:
            stmt = stmt.where(TradeRecord.ts_utc >= _utc(since))
        stmt = stmt.order_by(TradeRecord.ts_utc, TradeRecord.ingest_seq, TradeRecord.id)

        return [LedgerRepository.to_trade(r) for r in session.exec(stmt).all()]

    @staticmethod
    def to_trade(record: TradeRecord) -> Trade:
        try:
            side = TradeSide.parse(record.side)
        except ValueError:
            # kept raw so matching rejects it with a ValidationError
            side = record.side
        return Trade(
            id=record.id,
            wallet_id=record.wallet_id,
            asset_id=record.asset_id,
            side=side,
            quantity=record.quantity,
            price=record.price,
            timestamp=_utc(record.ts_utc),
            base_amount=record.base_amount,
            venue=record.venue,
            metadata=dict(record.meta or {}),
            ingest_seq=record.ingest_seq,
            signature=record.signature,
        )

    # ---- closed lots -------------------------------------------------

    @staticmethod
    def replace_closed_lots(session: Session, wallet_id: str, lots: Iterable[ClosedLot]) -> int:
        """Delete every closed lot of the wallet and insert `lots`."""
        session.exec(delete(ClosedLotRecord).where(ClosedLotRecord.wallet_id == wallet_id))
        count = 0
        for lot in lots:
            session.add(
                ClosedLotRecord(
                    wallet_id=lot.wallet_id,
                    asset_id=lot.asset_id,
                    sequence=lot.sequence,
                    quantity=lot.quantity,
                    entry_price=lot.entry_price,
                    entry_time=lot.entry_time,
                    exit_price=lot.exit_price,
                    exit_time=lot.exit_time,
                    cost_basis=lot.cost_basis,
                    proceeds=lot.proceeds,
                    realized_pnl=lot.realized_pnl,
                    realized_pnl_percent=lot.realized_pnl_percent,
                    hold_minutes=lot.hold_minutes,
                    buy_trade_id=lot.buy_trade_id,
                    sell_trade_id=lot.sell_trade_id,
                    is_pre_history=lot.is_pre_history,
                    cycle=lot.cycle,
                    valuation=lot.valuation,
                    dca_entry_count=lot.dca_entry_count,
                    dca_time_span_minutes=lot.dca_time_span_minutes,
                    reentry_time_minutes=lot.reentry_time_minutes,
                    reentry_price_change_percent=lot.reentry_price_change_percent,
                    previous_cycle_pnl=lot.previous_cycle_pnl,
                    entry_hour=lot.entry_hour,
                    entry_weekday=lot.entry_weekday,
                    exit_hour=lot.exit_hour,
                    exit_weekday=lot.exit_weekday,
                )
            )
            count += 1
        session.flush()
        return count

    @staticmethod
    def get_closed_lots(
        session: Session,
        wallet_id: str,
        asset_id: Optional[str] = None,
        from_date: Optional[datetime] = None,
    ) -> List[ClosedLot]:
        stmt = select(ClosedLotRecord).where(ClosedLotRecord.wallet_id == wallet_id)
        if asset_id is not None:
            stmt = stmt.where(ClosedLotRecord.asset_id == asset_id)
        if from_date is not None:
            stmt = stmt.where(ClosedLotRecord.exit_time >= _utc(from_date))
        stmt = stmt.order_by(
            ClosedLotRecord.exit_time, ClosedLotRecord.asset_id, ClosedLotRecord.sequence
        )

        return [
            ClosedLot(
                wallet_id=r.wallet_id,
                asset_id=r.asset_id,
                sequence=r.sequence,
                quantity=r.quantity,
                entry_price=r.entry_price,
                entry_time=_utc(r.entry_time),
                exit_price=r.exit_price,
                exit_time=_utc(r.exit_time),
                cost_basis=r.cost_basis,
                proceeds=r.proceeds,
                realized_pnl=r.realized_pnl,
                realized_pnl_percent=r.realized_pnl_percent,
                hold_minutes=r.hold_minutes,
                buy_trade_id=r.buy_trade_id,
                sell_trade_id=r.sell_trade_id,
                is_pre_history=r.is_pre_history,
                cycle=r.cycle,
                valuation=r.valuation,
                dca_entry_count=r.dca_entry_count,
                dca_time_span_minutes=r.dca_time_span_minutes,
                reentry_time_minutes=r.reentry_time_minutes,
                reentry_price_change_percent=r.reentry_price_change_percent,
                previous_cycle_pnl=r.previous_cycle_pnl,
                entry_hour=r.entry_hour,
                entry_weekday=r.entry_weekday,
                exit_hour=r.exit_hour,
                exit_weekday=r.exit_weekday,
            )
            for r in session.exec(stmt).all()
        ]

    # ---- open positions ----------------------------------------------

    @staticmethod
    def upsert_open_positions(
        session: Session, wallet_id: str, positions: Iterable[OpenPosition]
    ) -> int:
        count = 0
        for position in positions:
            record = session.exec(
                select(OpenPositionRecord).where(
                    OpenPositionRecord.wallet_id == wallet_id,
                    OpenPositionRecord.asset_id == position.asset_id,
                )
            ).first()
            if record is None:
                record = OpenPositionRecord(
                    wallet_id=wallet_id,
                    asset_id=position.asset_id,
                    quantity=0.0,
                    cost_basis=0.0,
                    average_price=0.0,
                )

            record.quantity = position.quantity
            record.cost_basis = position.cost_basis
            record.average_price = position.average_price
            record.first_entry_time = position.first_entry_time
            record.last_trade_id = position.last_trade_id
            record.last_trade_time = position.last_trade_time
            record.next_sequence = position.next_sequence
            record.next_lot_sequence = position.next_lot_sequence
            record.cycle = position.cycle
            record.buy_count = position.buy_count
            record.sell_count = position.sell_count
            record.fingerprint = position.fingerprint
            record.cycle_pnl = position.cycle_pnl
            record.cycle_entry_time = position.cycle_entry_time
            record.cycle_entry_price = position.cycle_entry_price
            record.last_exit_time = position.last_exit_time
            record.last_exit_price = position.last_exit_price
            record.last_cycle_pnl = position.last_cycle_pnl
            record.lots = [lot.to_dict() for lot in position.lots]
            record.updated_at = datetime.now(pytz.UTC)
            session.add(record)
            count += 1
        session.flush()
        return count

    @staticmethod
    def delete_open_positions(
        session: Session, wallet_id: str, asset_ids: Optional[Iterable[str]] = None
    ) -> None:
        """Delete all positions of the wallet, or only those of `asset_ids`."""
        stmt = delete(OpenPositionRecord).where(OpenPositionRecord.wallet_id == wallet_id)
        if asset_ids is not None:
            asset_ids = list(asset_ids)
            if not asset_ids:
                return
            stmt = stmt.where(OpenPositionRecord.asset_id.in_(asset_ids))
        session.exec(stmt)
        session.flush()

    @staticmethod
    def list_open_positions(session: Session, wallet_id: str) -> List[OpenPosition]:
        records = session.exec(
            select(OpenPositionRecord)
            .where(OpenPositionRecord.wallet_id == wallet_id)
            .order_by(OpenPositionRecord.asset_id)
        ).all()
        return [
            OpenPosition(
                wallet_id=r.wallet_id,
                asset_id=r.asset_id,
                lots=deque(OpenLot.from_dict(d) for d in (r.lots or [])),
                last_trade_id=r.last_trade_id,
                last_trade_time=_utc(r.last_trade_time),
                next_sequence=r.next_sequence,
                next_lot_sequence=r.next_lot_sequence,
                cycle=r.cycle,
                buy_count=r.buy_count,
                sell_count=r.sell_count,
                fingerprint=r.fingerprint or "",
                cycle_pnl=r.cycle_pnl,
                cycle_entry_time=_utc(r.cycle_entry_time),
                cycle_entry_price=r.cycle_entry_price,
                last_exit_time=_utc(r.last_exit_time),
                last_exit_price=r.last_exit_price,
                last_cycle_pnl=r.last_cycle_pnl,
            )
            for r in records
        ]

    # ---- score snapshots ---------------------------------------------

    @staticmethod
    def append_score_snapshot(session: Session, metrics: WalletMetrics) -> WalletScoreSnapshot:
        record = WalletScoreSnapshot(
            wallet_id=metrics.wallet_id,
            computed_at=metrics.computed_at,
            score=metrics.score,
            trade_count=metrics.trade_count,
            void_count=metrics.void_count,
            closed_lot_count=metrics.closed_lot_count,
            window_scores=dict(metrics.window_scores),
            windows={label: s.to_dict() for label, s in metrics.windows.items()},
            advanced=metrics.advanced.to_dict(),
        )
        session.add(record)
        session.flush()
        return record

    @staticmethod
    def get_latest_snapshot(session: Session, wallet_id: str) -> Optional[WalletMetrics]:
        record = session.exec(
            select(WalletScoreSnapshot)
            .where(WalletScoreSnapshot.wallet_id == wallet_id)
            .order_by(WalletScoreSnapshot.computed_at.desc(), WalletScoreSnapshot.id)
        ).first()
        if record is None:
            return None
        return LedgerRepository.to_metrics(record)

    @staticmethod
    def list_score_history(session: Session, wallet_id: str) -> List[WalletScoreSnapshot]:
        return list(
            session.exec(
                select(WalletScoreSnapshot)
                .where(WalletScoreSnapshot.wallet_id == wallet_id)
                .order_by(WalletScoreSnapshot.computed_at)
            ).all()
        )

    @staticmethod
    def to_metrics(record: WalletScoreSnapshot) -> WalletMetrics:
        return WalletMetrics(
            wallet_id=record.wallet_id,
            computed_at=_utc(record.computed_at),
            windows={
                label: RollingWindowStats.from_dict(data)
                for label, data in (record.windows or {}).items()
            },
            score=record.score,
            window_scores=dict(record.window_scores or {}),
            trade_count=record.trade_count,
            void_count=record.void_count,
            closed_lot_count=record.closed_lot_count,
            advanced=AdvancedStats.from_dict(record.advanced or {}),
        )
