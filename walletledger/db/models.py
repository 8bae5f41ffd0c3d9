# walletledger/db/models.py
"""
SQLModel definitions for the wallet ledger.
Designed for SQLite locally, PostgreSQL in production.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz
from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(pytz.UTC)


class TradeRecord(SQLModel, table=True):
    """Normalized buy/sell/void trade (append-only, owned by ingestion)."""
    __tablename__ = "trade"

    id: str = Field(default_factory=_uuid, primary_key=True)
    wallet_id: str = Field(index=True)
    asset_id: str = Field(index=True)

    # Transaction signature (unique; prevents duplicate imports)
    signature: Optional[str] = Field(default=None, index=True)

    side: str = Field()  # buy, sell or void
    quantity: float = Field()
    price: Optional[float] = Field(default=None)  # base per token
    base_amount: Optional[float] = Field(default=None)

    ts_utc: datetime = Field(index=True)
    venue: Optional[str] = Field(default=None)
    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    # Ingestion order, tie-breaker for equal timestamps
    ingest_seq: int = Field(default=0)
    is_deleted: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=_now)

    __table_args__ = (
        UniqueConstraint("signature", name="uq_trade_signature"),
    )


class ClosedLotRecord(SQLModel, table=True):
    """Matched buy/sell slice. Rebuilt wholesale per wallet, never edited."""
    __tablename__ = "closed_lot"

    id: str = Field(default_factory=_uuid, primary_key=True)
    wallet_id: str = Field(index=True)
    asset_id: str = Field(index=True)
    sequence: int = Field()

    quantity: float = Field()
    entry_price: Optional[float] = Field(default=None)  # NULL for pre-history
    entry_time: Optional[datetime] = Field(default=None)
    exit_price: float = Field()
    exit_time: datetime = Field(index=True)

    cost_basis: Optional[float] = Field(default=None)  # NULL when unknown
    proceeds: float = Field()
    realized_pnl: float = Field()
    realized_pnl_percent: Optional[float] = Field(default=None)
    hold_minutes: Optional[int] = Field(default=None)

    buy_trade_id: Optional[str] = Field(default=None, index=True)
    sell_trade_id: str = Field(index=True)

    is_pre_history: bool = Field(default=False, index=True)
    cycle: int = Field(default=1)
    valuation: str = Field(default="unknown")

    # DCA and re-entry patterns
    dca_entry_count: Optional[int] = Field(default=None)
    dca_time_span_minutes: Optional[int] = Field(default=None)
    reentry_time_minutes: Optional[int] = Field(default=None)
    reentry_price_change_percent: Optional[float] = Field(default=None)
    previous_cycle_pnl: Optional[float] = Field(default=None)

    # UTC hour / weekday (0 = Monday)
    entry_hour: Optional[int] = Field(default=None)
    entry_weekday: Optional[int] = Field(default=None)
    exit_hour: Optional[int] = Field(default=None)
    exit_weekday: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=_now)

    __table_args__ = (
        UniqueConstraint("wallet_id", "asset_id", "sequence", name="uq_closed_lot_sequence"),
    )


class OpenPositionRecord(SQLModel, table=True):
    """Residual FIFO queue per wallet/asset, used to resume matching."""
    __tablename__ = "open_position"

    id: str = Field(default_factory=_uuid, primary_key=True)
    wallet_id: str = Field(index=True)
    asset_id: str = Field(index=True)

    quantity: float = Field()
    cost_basis: float = Field()
    average_price: float = Field()
    first_entry_time: Optional[datetime] = Field(default=None)

    # Resume cursor
    last_trade_id: Optional[str] = Field(default=None)
    last_trade_time: Optional[datetime] = Field(default=None, index=True)
    next_sequence: int = Field(default=1)
    next_lot_sequence: int = Field(default=0)
    cycle: int = Field(default=1)
    buy_count: int = Field(default=0)
    sell_count: int = Field(default=0)
    fingerprint: str = Field(default="")

    # Cycle state carried across runs
    cycle_pnl: float = Field(default=0.0)
    cycle_entry_time: Optional[datetime] = Field(default=None)
    cycle_entry_price: Optional[float] = Field(default=None)
    last_exit_time: Optional[datetime] = Field(default=None)
    last_exit_price: Optional[float] = Field(default=None)
    last_cycle_pnl: Optional[float] = Field(default=None)

    lots: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=_now)

    __table_args__ = (
        UniqueConstraint("wallet_id", "asset_id", name="uq_open_position_wallet_asset"),
    )


class WalletScoreSnapshot(SQLModel, table=True):
    """Append-only score history (one row per metrics pass)."""
    __tablename__ = "wallet_score_snapshot"

    id: str = Field(default_factory=_uuid, primary_key=True)
    wallet_id: str = Field(index=True)
    computed_at: datetime = Field(index=True)

    score: float = Field()
    trade_count: int = Field(default=0)
    void_count: int = Field(default=0)
    closed_lot_count: int = Field(default=0)

    window_scores: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    windows: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    advanced: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))


class WalletJob(SQLModel, table=True):
    """Progress of one wallet inside a sweep (makes sweeps resumable)."""
    __tablename__ = "wallet_job"

    id: str = Field(default_factory=_uuid, primary_key=True)
    sweep_id: str = Field(index=True)
    wallet_id: str = Field(index=True)

    status: str = Field(default="pending")  # pending, processing, done, failed
    attempts: int = Field(default=0)
    error: Optional[str] = Field(default=None)
    updated_at: datetime = Field(default_factory=_now)

    __table_args__ = (
        UniqueConstraint("sweep_id", "wallet_id", name="uq_wallet_job"),
    )


class TradeCorrection(SQLModel, table=True):
    """Audit trail of manual or scripted trade-log corrections."""
    __tablename__ = "trade_correction"

    id: str = Field(default_factory=_uuid, primary_key=True)
    trade_id: str = Field(index=True)
    wallet_id: str = Field(index=True)

    field_name: str = Field()
    old_value: Optional[str] = Field(default=None)
    new_value: Optional[str] = Field(default=None)
    reason: str = Field(default="")
    created_at: datetime = Field(default_factory=_now)
