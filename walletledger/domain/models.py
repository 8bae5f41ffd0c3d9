# walletledger/domain/models.py
"""Domain value objects."""

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

import pytz

from walletledger.domain.provenance import Provenance, provenance_from_metadata
from walletledger.errors import InsufficientHistoryWarning, ValidationError


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"
    VOID = "void"

    @classmethod
    def parse(cls, raw: str) -> "TradeSide":
        """Accepts buy/sell/void plus the liquidity aliases add/remove."""
        value = (raw or "").strip().lower()
        if value == "add":
            return cls.BUY
        if value == "remove":
            return cls.SELL
        return cls(value)


def to_utc(ts: datetime) -> datetime:
    """Naive timestamps are treated as UTC."""
    if ts.tzinfo is None:
        return pytz.UTC.localize(ts)
    return ts.astimezone(pytz.UTC)


@dataclass(frozen=True)
class Trade:
    """An immutable buy/sell/void fact from the trade log."""
    id: str
    wallet_id: str
    asset_id: str
    side: TradeSide
    quantity: float
    price: Optional[float]
    timestamp: datetime
    base_amount: Optional[float] = None
    venue: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    ingest_seq: int = 0
    signature: Optional[str] = None

    @property
    def is_void(self) -> bool:
        return self.side == TradeSide.VOID

    @property
    def provenance(self) -> Provenance:
        return provenance_from_metadata(self.metadata)

    @property
    def base_value(self) -> float:
        """Base-currency value of the trade (recorded amount, else qty * price)."""
        if self.base_amount is not None and self.base_amount > 0:
            return self.base_amount
        return self.quantity * (self.price or 0.0)

    def sort_key(self):
        # buys sort before sells at the same instant
        side_rank = 0 if self.side == TradeSide.BUY else 1
        return (to_utc(self.timestamp), side_rank, self.ingest_seq, self.id)

    def with_price(self, price: float, metadata: Dict[str, Any]) -> "Trade":
        """Copy with a revalued price; a recorded base amount is kept."""
        base_amount = self.base_amount
        if base_amount is None or base_amount <= 0:
            base_amount = self.quantity * price
        return replace(self, price=price, base_amount=base_amount, metadata=metadata)


@dataclass
class OpenLot:
    """Represents an open lot (for FIFO matching)."""
    asset_id: str
    remaining_quantity: float
    unit_cost: float
    entry_time: datetime
    buy_trade_id: str
    sequence: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "remaining_quantity": self.remaining_quantity,
            "unit_cost": self.unit_cost,
            "entry_time": to_utc(self.entry_time).isoformat(),
            "buy_trade_id": self.buy_trade_id,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpenLot":
        return cls(
            asset_id=data["asset_id"],
            remaining_quantity=float(data["remaining_quantity"]),
            unit_cost=float(data["unit_cost"]),
            entry_time=to_utc(datetime.fromisoformat(data["entry_time"])),
            buy_trade_id=data["buy_trade_id"],
            sequence=int(data["sequence"]),
        )


@dataclass(frozen=True)
class ClosedLot:
    """
    A matched buy/sell slice.

    Pre-history lots (sell without a known buy) have no cost basis: entry
    fields, cost_basis, realized_pnl_percent and hold_minutes are None and
    realized_pnl equals proceeds. Treat their PnL as a lower bound.
    """
    wallet_id: str
    asset_id: str
    sequence: int
    quantity: float
    entry_price: Optional[float]
    entry_time: Optional[datetime]
    exit_price: float
    exit_time: datetime
    cost_basis: Optional[float]
    proceeds: float
    realized_pnl: float
    realized_pnl_percent: Optional[float]
    hold_minutes: Optional[int]
    buy_trade_id: Optional[str]
    sell_trade_id: str
    is_pre_history: bool = False
    cycle: int = 1
    valuation: str = "unknown"

    # DCA: buy lots consumed by the same sell and the minutes between their entries
    dca_entry_count: Optional[int] = None
    dca_time_span_minutes: Optional[int] = None

    # Re-entry: set from the second cycle on
    reentry_time_minutes: Optional[int] = None
    reentry_price_change_percent: Optional[float] = None
    previous_cycle_pnl: Optional[float] = None

    # UTC timing, weekday 0 = Monday
    entry_hour: Optional[int] = None
    entry_weekday: Optional[int] = None
    exit_hour: Optional[int] = None
    exit_weekday: Optional[int] = None

    @property
    def cost_known(self) -> bool:
        return self.cost_basis is not None


@dataclass
class OpenPosition:
    """Residual FIFO queue for one (wallet, asset), persisted between runs."""
    wallet_id: str
    asset_id: str
    lots: Deque[OpenLot] = field(default_factory=deque)
    last_trade_id: Optional[str] = None
    last_trade_time: Optional[datetime] = None
    next_sequence: int = 1
    next_lot_sequence: int = 0
    cycle: int = 1
    buy_count: int = 0
    sell_count: int = 0
    # running digest of every trade consumed so far; resume requires a match
    fingerprint: str = ""

    # current cycle and the one closed out before it
    cycle_pnl: float = 0.0
    cycle_entry_time: Optional[datetime] = None
    cycle_entry_price: Optional[float] = None
    last_exit_time: Optional[datetime] = None
    last_exit_price: Optional[float] = None
    last_cycle_pnl: Optional[float] = None

    @property
    def quantity(self) -> float:
        return sum(lot.remaining_quantity for lot in self.lots)

    @property
    def cost_basis(self) -> float:
        return sum(lot.remaining_quantity * lot.unit_cost for lot in self.lots)

    @property
    def average_price(self) -> float:
        qty = self.quantity
        return self.cost_basis / qty if qty > 0 else 0.0

    @property
    def first_entry_time(self) -> Optional[datetime]:
        return self.lots[0].entry_time if self.lots else None

    @property
    def is_open(self) -> bool:
        return bool(self.lots)


@dataclass
class MatchResult:
    """Output of one matching pass."""
    closed_lots: List[ClosedLot] = field(default_factory=list)
    open_positions: List[OpenPosition] = field(default_factory=list)
    rejected: List[ValidationError] = field(default_factory=list)
    warnings: List[InsufficientHistoryWarning] = field(default_factory=list)
    trade_count: int = 0
    void_count: int = 0
    resumed_assets: List[str] = field(default_factory=list)


@dataclass
class RollingWindowStats:
    """Aggregates of the closed lots whose exit falls inside one window."""
    label: str
    days: Optional[int]
    realized_pnl: float = 0.0
    realized_pnl_percent: Optional[float] = None
    closed_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: Optional[float] = None
    avg_hold_minutes: Optional[float] = None
    avg_pnl_percent: Optional[float] = None
    avg_rr: Optional[float] = None
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    pre_history_count: int = 0
    pre_history_pnl: float = 0.0
    valuation_breakdown: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__, valuation_breakdown=dict(self.valuation_breakdown))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RollingWindowStats":
        return cls(**data)


@dataclass
class AssetStats:
    asset_id: str
    closed_trades: int
    wins: int
    realized_pnl: float
    win_rate: Optional[float]


@dataclass
class AdvancedStats:
    """All-time breakdown used by drill-down views."""
    profit_factor: Optional[float] = None
    largest_win: Optional[float] = None
    largest_loss: Optional[float] = None
    avg_win_percent: Optional[float] = None
    avg_loss_percent: Optional[float] = None
    max_win_streak: int = 0
    max_loss_streak: int = 0
    assets: List[AssetStats] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__, assets=[dict(a.__dict__) for a in self.assets])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdvancedStats":
        data = dict(data)
        data["assets"] = [AssetStats(**a) for a in data.get("assets", [])]
        return cls(**data)


@dataclass
class WalletMetrics:
    """One metrics pass for a wallet; appended as a score snapshot."""
    wallet_id: str
    computed_at: datetime
    windows: Dict[str, RollingWindowStats] = field(default_factory=dict)
    score: float = 0.0
    window_scores: Dict[str, float] = field(default_factory=dict)
    trade_count: int = 0
    void_count: int = 0
    closed_lot_count: int = 0
    advanced: AdvancedStats = field(default_factory=AdvancedStats)

    @property
    def is_empty(self) -> bool:
        return self.trade_count == 0

    def window(self, label: str) -> RollingWindowStats:
        return self.windows[label]
