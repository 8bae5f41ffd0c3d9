# walletledger/io/importer.py
"""Idempotent import of normalized trades."""

from typing import List, Tuple

from sqlmodel import Session, func, select

from walletledger.db.models import TradeRecord
from walletledger.domain.models import Trade, to_utc


class TradeImporter:
    """Handles idempotent import of trades into the trade log."""

    @staticmethod
    def import_trades(
        session: Session,
        trades: List[Trade],
    ) -> Tuple[int, int, List[str]]:
        """
        Import trades into database.

        Idempotent rules:
        - Skip if a trade with the same transaction signature already exists.
        - Skip duplicates within the same batch.
        - Trades without a signature fall back to their id as the key.

        Returns:
            (total, newly_inserted, warnings)
        """
        warnings: List[str] = []
        newly_inserted = 0

        rows = session.exec(select(TradeRecord.signature)).all()
        existing = {r[0] if isinstance(r, tuple) else r for r in rows}
        existing.discard(None)
        existing_ids = set(session.exec(select(TradeRecord.id)).all())

        next_seq = (session.exec(select(func.max(TradeRecord.ingest_seq))).one() or 0) + 1
        seen_in_batch = set()

        for trade in trades:
            key = (trade.signature or trade.id or "").strip()
            if not key:
                warnings.append(f"Skipped trade with missing signature: {trade.asset_id}")
                continue
            if trade.timestamp is None:
                warnings.append(f"Skipped trade with missing timestamp: {trade.asset_id} {key}")
                continue

            if key in seen_in_batch:
                warnings.append(f"Skipped duplicate in batch: {trade.asset_id} {key}")
                continue
            seen_in_batch.add(key)

            if key in existing or trade.id in existing_ids:
                warnings.append(f"Skipped duplicate in DB: {trade.asset_id} {key}")
                continue

            session.add(
                TradeRecord(
                    id=trade.id,
                    wallet_id=trade.wallet_id,
                    asset_id=trade.asset_id,
                    signature=key,
                    side=str(trade.side.value if hasattr(trade.side, "value") else trade.side),
                    quantity=trade.quantity,
                    price=trade.price,
                    base_amount=trade.base_amount,
                    ts_utc=to_utc(trade.timestamp),
                    venue=trade.venue,
                    meta=dict(trade.metadata),
                    ingest_seq=trade.ingest_seq or next_seq,
                )
            )
            next_seq += 1
            newly_inserted += 1

            existing.add(key)
            existing_ids.add(trade.id)

        if newly_inserted:
            session.commit()

        return len(trades), newly_inserted, warnings
