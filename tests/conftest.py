"""Test configuration and fixtures."""

import itertools
from datetime import datetime, timedelta

import pytest
import pytz
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from walletledger.config import Settings
from walletledger.db import models  # noqa: F401
from walletledger.domain.models import ClosedLot, Trade, TradeSide

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=pytz.UTC)


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine shared by every session of a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return lambda: Session(engine)


@pytest.fixture(name="settings")
def settings_fixture():
    return Settings(database_url="sqlite:///:memory:", sweep_delay_seconds=0.0, max_workers=1)


@pytest.fixture(name="t0")
def t0_fixture():
    return T0


@pytest.fixture(name="now")
def now_fixture():
    return T0 + timedelta(days=1)


@pytest.fixture(name="make_trade")
def make_trade_fixture():
    """
    Factory for trades: make_trade("buy", qty, price, minutes=offset from T0).
    Ids and ingestion sequence increase with every call.
    """
    counter = itertools.count(1)

    def _make(
        side,
        quantity,
        price,
        minutes=0,
        wallet_id="W1",
        asset_id="TOKEN",
        base_amount=None,
        trade_id=None,
        metadata=None,
    ):
        seq = next(counter)
        trade_id = trade_id or f"{wallet_id}-T{seq}"
        try:
            side = TradeSide.parse(side)
        except ValueError:
            pass
        return Trade(
            id=trade_id,
            wallet_id=wallet_id,
            asset_id=asset_id,
            side=side,
            quantity=quantity,
            price=price,
            timestamp=T0 + timedelta(minutes=minutes),
            base_amount=base_amount,
            venue="raydium",
            metadata={"baseToken": "SOL"} if metadata is None else metadata,
            ingest_seq=seq,
            signature=f"sig-{trade_id}",
        )

    return _make


@pytest.fixture(name="make_lot")
def make_lot_fixture():
    """Factory for closed lots with a known cost basis of `cost`."""
    counter = itertools.count(1)

    def _make(pnl, exit_time, cost=10.0, asset_id="TOKEN", pre_history=False, valuation="on_chain"):
        seq = next(counter)
        proceeds = cost + pnl if not pre_history else pnl
        return ClosedLot(
            wallet_id="W1",
            asset_id=asset_id,
            sequence=seq,
            quantity=1.0,
            entry_price=None if pre_history else cost,
            entry_time=None if pre_history else exit_time - timedelta(minutes=30),
            exit_price=proceeds,
            exit_time=exit_time,
            cost_basis=None if pre_history else cost,
            proceeds=proceeds,
            realized_pnl=pnl,
            realized_pnl_percent=None if pre_history else pnl / cost * 100,
            hold_minutes=None if pre_history else 30,
            buy_trade_id=None if pre_history else f"B{seq}",
            sell_trade_id=f"S{seq}",
            is_pre_history=pre_history,
            valuation=valuation,
        )

    return _make
