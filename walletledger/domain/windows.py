# walletledger/domain/windows.py
"""Rolling window bounds and small numeric helpers shared by matching and metrics."""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from walletledger.domain.models import to_utc

# Remainders below this are treated as fully consumed.
QUANTITY_EPSILON = 1e-8


@dataclass(frozen=True)
class TimeWindow:
    label: str
    days: Optional[int]

    def bounds(self, now: datetime) -> Tuple[Optional[datetime], datetime]:
        now = to_utc(now)
        if self.days is None:
            return None, now
        return now - timedelta(days=self.days), now

    def contains(self, ts: datetime, now: datetime) -> bool:
        start, end = self.bounds(now)
        ts = to_utc(ts)
        if ts > end:
            return False
        return start is None or ts >= start


def build_windows(spec: Iterable[Tuple[str, Optional[int]]]) -> List[TimeWindow]:
    return [TimeWindow(label=label, days=days) for label, days in spec]


def clamp(value: float, low: float, high: float) -> float:
    if value is None or math.isnan(value):
        return low
    return max(low, min(high, value))


def safe_div(numerator: float, denominator: float) -> Optional[float]:
    """None instead of ZeroDivisionError / inf."""
    if not denominator:
        return None
    return numerator / denominator


def mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def is_positive_number(value) -> bool:
    if value is None:
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return not math.isnan(number) and not math.isinf(number) and number > 0
