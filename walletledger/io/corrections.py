# walletledger/io/corrections.py
"""
Trade-log corrections.

Data cleaning happens here, never inside matching: each change edits the
trade row and writes a TradeCorrection audit row. Callers rebuild the
affected wallet afterwards.
"""

import logging
from typing import List, Optional

from sqlmodel import Session, select

from walletledger.db.models import TradeCorrection, TradeRecord
from walletledger.domain.models import TradeSide

logger = logging.getLogger(__name__)


def _fmt(value) -> Optional[str]:
    return None if value is None else str(value)


class TradeCorrector:
    """Applies audited edits to the trade log."""

    @staticmethod
    def reclassify_as_void(session: Session, trade_id: str, reason: str) -> str:
        """
        Turn a trade into a void (e.g. a liquidity add/remove misread as a swap).

        Returns:
            wallet id whose ledger must be rebuilt
        """
        record = TradeCorrector._get(session, trade_id)
        TradeCorrector._change(session, record, "side", TradeSide.VOID.value, reason)
        session.commit()
        logger.info("Trade %s reclassified as void: %s", trade_id, reason)
        return record.wallet_id

    @staticmethod
    def correct_amounts(
        session: Session,
        trade_id: str,
        reason: str,
        quantity: Optional[float] = None,
        price: Optional[float] = None,
        base_amount: Optional[float] = None,
    ) -> str:
        """Overwrite quantity / price / base amount; only given fields change."""
        record = TradeCorrector._get(session, trade_id)
        for name, value in (("quantity", quantity), ("price", price), ("base_amount", base_amount)):
            if value is not None:
                TradeCorrector._change(session, record, name, value, reason)
        session.commit()
        return record.wallet_id

    @staticmethod
    def history(session: Session, trade_id: str) -> List[TradeCorrection]:
        return list(
            session.exec(
                select(TradeCorrection)
                .where(TradeCorrection.trade_id == trade_id)
                .order_by(TradeCorrection.created_at)
            ).all()
        )

    @staticmethod
    def _get(session: Session, trade_id: str) -> TradeRecord:
        record = session.get(TradeRecord, trade_id)
        if record is None:
            raise KeyError(f"Trade {trade_id} not found")
        return record

    @staticmethod
    def _change(session: Session, record: TradeRecord, name: str, value, reason: str) -> None:
        old = getattr(record, name)
        if old == value:
            return
        session.add(
            TradeCorrection(
                trade_id=record.id,
                wallet_id=record.wallet_id,
                field_name=name,
                old_value=_fmt(old),
                new_value=_fmt(value),
                reason=reason,
            )
        )
        setattr(record, name, value)
        session.add(record)
