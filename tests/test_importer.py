"""Tests for idempotent trade import."""

from dataclasses import replace

from sqlmodel import select

from walletledger.db.models import TradeRecord
from walletledger.db.repository import LedgerRepository
from walletledger.domain.models import TradeSide
from walletledger.io.importer import TradeImporter


def test_import_is_idempotent(session, make_trade):
    trades = [
        make_trade("buy", 10, 1.0, minutes=0),
        make_trade("sell", 5, 2.0, minutes=1),
    ]

    total, inserted, warnings = TradeImporter.import_trades(session, trades)
    assert (total, inserted) == (2, 2)
    assert warnings == []

    total, inserted, warnings = TradeImporter.import_trades(session, trades)
    assert (total, inserted) == (2, 0)
    assert len(warnings) == 2
    assert all("duplicate in DB" in w for w in warnings)

    assert len(session.exec(select(TradeRecord)).all()) == 2


def test_duplicates_in_batch_are_skipped(session, make_trade):
    trade = make_trade("buy", 10, 1.0)
    copy = replace(trade, id="other-id")

    _, inserted, warnings = TradeImporter.import_trades(session, [trade, copy])

    assert inserted == 1
    assert "duplicate in batch" in warnings[0]


def test_imported_trades_round_trip(session, make_trade):
    trade = make_trade("add", 10, 1.0, base_amount=10.5, metadata={"baseToken": "USDC"})
    TradeImporter.import_trades(session, [trade])

    [loaded] = LedgerRepository.list_trades(session, "W1")
    assert loaded.id == trade.id
    assert loaded.side == TradeSide.BUY
    assert loaded.base_amount == 10.5
    assert loaded.metadata == {"baseToken": "USDC"}
    assert loaded.timestamp == trade.timestamp
    assert loaded.ingest_seq == trade.ingest_seq


def test_ingest_seq_assigned_when_missing(session, make_trade):
    first = replace(make_trade("buy", 1, 1.0), ingest_seq=0)
    second = replace(make_trade("buy", 1, 1.0), ingest_seq=0)
    TradeImporter.import_trades(session, [first, second])

    seqs = [t.ingest_seq for t in LedgerRepository.list_trades(session, "W1")]
    assert seqs == [1, 2]


def test_create_tables_is_repeatable(engine, session, make_trade):
    from walletledger.db.session import create_db_and_tables

    TradeImporter.import_trades(session, [make_trade("buy", 1, 1.0)])
    create_db_and_tables(bind=engine)

    assert len(LedgerRepository.list_trades(session, "W1")) == 1
