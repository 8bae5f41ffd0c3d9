# walletledger/errors.py
"""
Error taxonomy for the ledger.

- ValidationError: a single malformed trade. Skipped, logged, processing continues.
- InsufficientHistoryWarning: a sell with no recorded buy. Collected, never raised.
- DependencyError: price oracle or store unavailable. The wallet pass aborts.
- ConcurrencyConflict: a second pass for a wallet that is already in flight.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for ledger failures."""


class ValidationError(LedgerError):
    """A trade that cannot be matched."""

    def __init__(self, trade_id: Optional[str], reason: str):
        self.trade_id = trade_id
        self.reason = reason
        super().__init__(f"Trade {trade_id}: {reason}")


class InsufficientHistoryWarning(UserWarning):
    """Sell quantity exceeded every known buy (tracking started mid-position)."""

    def __init__(self, asset_id: str, sell_trade_id: str, quantity: float):
        self.asset_id = asset_id
        self.sell_trade_id = sell_trade_id
        self.quantity = quantity
        super().__init__(
            f"Sell {sell_trade_id} on {asset_id} exceeded open lots by {quantity}"
        )


class DependencyError(LedgerError):
    """External collaborator (price oracle, store) failed."""


class ConcurrencyConflict(LedgerError):
    """Another pass for the same wallet is already running."""

    def __init__(self, wallet_id: str):
        self.wallet_id = wallet_id
        super().__init__(f"Wallet {wallet_id} is already being processed")
