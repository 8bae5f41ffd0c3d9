# walletledger/pricing.py
"""Price oracle boundary and trade revaluation."""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from walletledger.domain.models import Trade, TradeSide, to_utc
from walletledger.domain.windows import is_positive_number
from walletledger.errors import DependencyError

logger = logging.getLogger(__name__)


class PriceOracle(Protocol):
    def get_asset_price_at(self, asset_id: str, timestamp: datetime) -> float:
        """Price of one token in base currency at `timestamp`."""


class CachedPriceOracle:
    """
    TTL cache in front of a PriceOracle, shared for the duration of a sweep.

    Entries older than `ttl_seconds` are refetched, and dropped from the cache
    whenever a new price is stored. Any oracle failure is raised as
    DependencyError.
    """

    def __init__(
        self,
        oracle: PriceOracle,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._oracle = oracle
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: Dict[Tuple[str, datetime], Tuple[float, float]] = {}
        self._lock = threading.Lock()
        self.fetches = 0

    def get_asset_price_at(self, asset_id: str, timestamp: datetime) -> float:
        key = (asset_id, to_utc(timestamp))
        with self._lock:
            hit = self._cache.get(key)
            if hit is not None:
                if self._clock() - hit[1] < self._ttl:
                    return hit[0]
                del self._cache[key]

        try:
            price = self._oracle.get_asset_price_at(asset_id, key[1])
        except DependencyError:
            raise
        except Exception as e:
            raise DependencyError(f"Price oracle failed for {asset_id}: {e}") from e
        if not is_positive_number(price):
            raise DependencyError(f"Price oracle returned {price!r} for {asset_id}")

        with self._lock:
            self._prune()
            self._cache[key] = (float(price), self._clock())
            self.fetches += 1
        return float(price)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    @property
    def size(self) -> int:
        """Entries currently held."""
        with self._lock:
            return len(self._cache)

    def _prune(self) -> None:
        now = self._clock()
        expired = [k for k, (_, stored) in self._cache.items() if now - stored >= self._ttl]
        for key in expired:
            del self._cache[key]


def revalue_trades(trades: Iterable[Trade], oracle: Optional[PriceOracle]) -> List[Trade]:
    """
    Fill in missing prices from the oracle.

    Only trades without a usable price are touched; without an oracle they
    are returned unchanged (matching rejects them).
    """
    out = []
    for trade in trades:
        if (
            oracle is None
            or trade.side == TradeSide.VOID
            or is_positive_number(trade.price)
            or not is_positive_number(trade.quantity)
            or trade.timestamp is None
        ):
            out.append(trade)
            continue

        price = oracle.get_asset_price_at(trade.asset_id, trade.timestamp)
        metadata = dict(trade.metadata, valuationSource="oracle")
        logger.debug("Revalued trade %s at %s", trade.id, price)
        out.append(trade.with_price(price, metadata))
    return out
