# walletledger/domain/lot_matcher.py
"""
FIFO lot matching.
Turns a wallet's trade log into closed lots (realized history) and the
residual open position per asset. Handles DCA, partial sells and sells
without a recorded buy (pre-history).
"""

import copy
import hashlib
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from walletledger.domain.models import (
    ClosedLot,
    MatchResult,
    OpenLot,
    OpenPosition,
    Trade,
    TradeSide,
    to_utc,
)
from walletledger.domain.provenance import provenance_kind
from walletledger.domain.windows import QUANTITY_EPSILON, is_positive_number
from walletledger.errors import InsufficientHistoryWarning, ValidationError

logger = logging.getLogger(__name__)


class LotMatcher:
    """Matches sells against buys first-in-first-out, one asset at a time."""

    @staticmethod
    def process_trades(
        wallet_id: str,
        trades: Iterable[Trade],
        asset_id: Optional[str] = None,
        tracking_start_time: Optional[datetime] = None,
        open_positions: Optional[Iterable[OpenPosition]] = None,
    ) -> MatchResult:
        """
        Match all trades of a wallet.

        Args:
            wallet_id: Wallet whose trades are given
            trades: Trade log (any order; void trades are skipped)
            asset_id: Only match this asset
            tracking_start_time: Discard trades strictly before this instant
            open_positions: Snapshots from a previous run. An asset whose
                snapshot cursor is found in its trades resumes from it;
                otherwise the asset is replayed from scratch.

        Returns:
            MatchResult with closed lots in sell order, residual positions
            (only assets with lots left), rejected trades and warnings.
        """
        result = MatchResult()
        cutoff = to_utc(tracking_start_time) if tracking_start_time else None

        by_asset: Dict[str, List[Trade]] = defaultdict(list)
        for trade in trades:
            if asset_id is not None and trade.asset_id != asset_id:
                continue
            if trade.side == TradeSide.VOID:
                result.void_count += 1
                continue
            try:
                LotMatcher.validate_trade(trade, wallet_id)
            except ValidationError as e:
                logger.warning("Rejected trade for wallet %s: %s", wallet_id, e)
                result.rejected.append(e)
                continue
            if cutoff is not None and to_utc(trade.timestamp) < cutoff:
                continue
            by_asset[trade.asset_id].append(trade)
            result.trade_count += 1

        snapshots = {p.asset_id: p for p in (open_positions or [])}

        closed: List[ClosedLot] = []
        for aid in sorted(by_asset):
            asset_trades = sorted(by_asset[aid], key=lambda t: t.sort_key())
            position, pending = LotMatcher._resume_point(
                wallet_id, aid, asset_trades, snapshots.get(aid)
            )
            if pending is not asset_trades:
                result.resumed_assets.append(aid)

            lots, position, warnings = LotMatcher.match_asset(position, pending)
            closed.extend(lots)
            result.warnings.extend(warnings)
            if position.is_open:
                result.open_positions.append(position)

        closed.sort(key=lambda lot: (lot.exit_time, lot.asset_id, lot.sequence))
        result.closed_lots = closed
        return result

    @staticmethod
    def validate_trade(trade: Trade, wallet_id: Optional[str] = None) -> None:
        """Raise ValidationError when a trade cannot take part in matching."""
        if wallet_id is not None and trade.wallet_id != wallet_id:
            raise ValidationError(trade.id, f"belongs to wallet {trade.wallet_id}")
        if not trade.asset_id:
            raise ValidationError(trade.id, "missing asset")
        if trade.side not in (TradeSide.BUY, TradeSide.SELL):
            raise ValidationError(trade.id, f"unknown side {trade.side!r}")
        if trade.timestamp is None:
            raise ValidationError(trade.id, "missing timestamp")
        if not is_positive_number(trade.quantity):
            raise ValidationError(trade.id, f"non-positive quantity {trade.quantity!r}")
        if not is_positive_number(trade.price):
            raise ValidationError(trade.id, f"missing or non-positive price {trade.price!r}")

    @staticmethod
    def _resume_point(
        wallet_id: str,
        asset_id: str,
        trades: List[Trade],
        snapshot: Optional[OpenPosition],
    ) -> Tuple[OpenPosition, List[Trade]]:
        """Pick the starting position and the trades still to be matched."""
        if snapshot is not None and snapshot.last_trade_id is not None:
            consumed = snapshot.buy_count + snapshot.sell_count
            fingerprint = ""
            for idx, trade in enumerate(trades):
                fingerprint = LotMatcher.fingerprint(fingerprint, trade)
                if trade.id != snapshot.last_trade_id:
                    continue
                # inserted, voided or corrected trades before the cursor change index or digest
                if idx + 1 == consumed and fingerprint == snapshot.fingerprint:
                    return copy.deepcopy(snapshot), trades[idx + 1:]
                break
            logger.info(
                "Snapshot cursor %s stale for %s/%s, replaying asset",
                snapshot.last_trade_id, wallet_id, asset_id,
            )
        return OpenPosition(wallet_id=wallet_id, asset_id=asset_id), trades

    @staticmethod
    def match_asset(
        position: OpenPosition,
        trades: List[Trade],
    ) -> Tuple[List[ClosedLot], OpenPosition, List[InsufficientHistoryWarning]]:
        """
        Run FIFO over already sorted, validated trades of one asset.

        `position` is advanced in place: its lots form the FIFO queue and
        its counters carry the closed-lot sequence, cycle and digest.
        """
        closed: List[ClosedLot] = []
        warnings: List[InsufficientHistoryWarning] = []

        for trade in trades:
            if trade.side == TradeSide.BUY:
                entry_time = to_utc(trade.timestamp)
                if not position.lots:
                    position.cycle_entry_time = entry_time
                    position.cycle_entry_price = trade.price
                position.lots.append(
                    OpenLot(
                        asset_id=position.asset_id,
                        remaining_quantity=trade.quantity,
                        unit_cost=trade.price,
                        entry_time=entry_time,
                        buy_trade_id=trade.id,
                        sequence=position.next_lot_sequence,
                    )
                )
                position.next_lot_sequence += 1
                position.buy_count += 1
            else:
                lots, warning = LotMatcher._match_sell(position, trade)
                closed.extend(lots)
                if warning is not None:
                    warnings.append(warning)
                position.sell_count += 1

            position.last_trade_id = trade.id
            position.last_trade_time = to_utc(trade.timestamp)
            position.fingerprint = LotMatcher.fingerprint(position.fingerprint, trade)

        return closed, position, warnings

    @staticmethod
    def _match_sell(
        position: OpenPosition,
        trade: Trade,
    ) -> Tuple[List[ClosedLot], Optional[InsufficientHistoryWarning]]:
        """Consume open lots for one sell; overflow becomes a pre-history lot."""
        exit_time = to_utc(trade.timestamp)
        sell_qty = trade.quantity
        sell_value = trade.base_value
        had_lots = bool(position.lots)

        common = dict(
            wallet_id=position.wallet_id,
            asset_id=position.asset_id,
            exit_price=trade.price,
            exit_time=exit_time,
            sell_trade_id=trade.id,
            cycle=position.cycle,
            valuation=provenance_kind(trade.provenance),
            exit_hour=exit_time.hour,
            exit_weekday=exit_time.weekday(),
        )

        # (slice quantity, lot) pairs; lots are consumed before the ClosedLots are built
        slices: List[Tuple[float, OpenLot]] = []
        remaining = sell_qty
        while remaining > QUANTITY_EPSILON and position.lots:
            lot = position.lots[0]
            matched = min(remaining, lot.remaining_quantity)
            slices.append((matched, copy.copy(lot)))

            remaining -= matched
            lot.remaining_quantity -= matched
            if lot.remaining_quantity <= QUANTITY_EPSILON:
                position.lots.popleft()

        closed: List[ClosedLot] = []
        if slices:
            entries = [lot.entry_time for _, lot in slices]
            dca = dict(
                dca_entry_count=len(slices),
                dca_time_span_minutes=LotMatcher._minutes(min(entries), max(entries)),
                **LotMatcher._reentry(position),
            )
            for matched, lot in slices:
                cost_basis = matched * lot.unit_cost
                # proceeds are the slice's share of what the sell actually returned
                proceeds = (matched / sell_qty) * sell_value
                realized_pnl = proceeds - cost_basis
                closed.append(
                    ClosedLot(
                        sequence=position.next_sequence,
                        quantity=matched,
                        entry_price=lot.unit_cost,
                        entry_time=lot.entry_time,
                        cost_basis=cost_basis,
                        proceeds=proceeds,
                        realized_pnl=realized_pnl,
                        realized_pnl_percent=(
                            realized_pnl / cost_basis * 100 if cost_basis > 0 else None
                        ),
                        hold_minutes=LotMatcher._minutes(lot.entry_time, exit_time),
                        buy_trade_id=lot.buy_trade_id,
                        is_pre_history=False,
                        entry_hour=lot.entry_time.hour,
                        entry_weekday=lot.entry_time.weekday(),
                        **dca,
                        **common,
                    )
                )
                position.next_sequence += 1
                position.cycle_pnl += realized_pnl

        warning = None
        if remaining > QUANTITY_EPSILON:
            proceeds = (remaining / sell_qty) * sell_value
            closed.append(
                ClosedLot(
                    sequence=position.next_sequence,
                    quantity=remaining,
                    entry_price=None,
                    entry_time=None,
                    cost_basis=None,
                    proceeds=proceeds,
                    realized_pnl=proceeds,
                    realized_pnl_percent=None,
                    hold_minutes=None,
                    buy_trade_id=None,
                    is_pre_history=True,
                    **common,
                )
            )
            position.next_sequence += 1
            warning = InsufficientHistoryWarning(position.asset_id, trade.id, remaining)
            logger.warning(
                "Pre-history sell %s on %s/%s: %.8f tokens without a recorded buy",
                trade.id, position.wallet_id, position.asset_id, remaining,
            )

        if had_lots and not position.lots:
            position.last_exit_time = exit_time
            position.last_exit_price = trade.price
            position.last_cycle_pnl = position.cycle_pnl
            position.cycle_pnl = 0.0
            position.cycle += 1

        return closed, warning

    @staticmethod
    def _reentry(position: OpenPosition) -> dict:
        """Re-entry fields of the current cycle relative to the previous one."""
        if position.last_exit_time is None or position.cycle_entry_time is None:
            return {}
        change = None
        if position.last_exit_price and position.cycle_entry_price is not None:
            change = (
                (position.cycle_entry_price - position.last_exit_price)
                / position.last_exit_price * 100
            )
        return dict(
            reentry_time_minutes=LotMatcher._minutes(
                position.last_exit_time, position.cycle_entry_time
            ),
            reentry_price_change_percent=change,
            previous_cycle_pnl=position.last_cycle_pnl,
        )

    @staticmethod
    def fingerprint(previous: str, trade: Trade) -> str:
        """Chain a trade's matching-relevant fields onto a running digest."""
        side = trade.side.value if isinstance(trade.side, TradeSide) else str(trade.side)
        base = None if trade.base_amount is None else float(trade.base_amount)
        fields = [previous, trade.id, side, float(trade.quantity), float(trade.price), base]
        payload = "|".join(f if isinstance(f, str) else repr(f) for f in fields)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @staticmethod
    def _minutes(start: datetime, end: datetime) -> int:
        return int(round((to_utc(end) - to_utc(start)).total_seconds() / 60))
