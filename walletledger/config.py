# walletledger/config.py
"""Runtime configuration read from environment variables."""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


# label -> days (None = all-time)
DEFAULT_WINDOWS = "7d,30d,90d,all"


def parse_windows(spec: str) -> List[Tuple[str, Optional[int]]]:
    """
    Parse a window list such as "7d,30d,all".

    Returns:
        [(label, days_or_None), ...] in the given order
    """
    windows = []
    for raw in spec.split(","):
        label = raw.strip().lower()
        if not label:
            continue
        if label == "all":
            windows.append((label, None))
            continue
        if not label.endswith("d") or not label[:-1].isdigit():
            raise ValueError(f"Invalid window label: {raw!r}")
        days = int(label[:-1])
        if days <= 0:
            raise ValueError(f"Window must be positive: {raw!r}")
        windows.append((label, days))
    if not windows:
        raise ValueError("At least one window is required")
    return windows


@dataclass(frozen=True)
class ScoreWeights:
    """
    Fixed weights of the composite score. They sum to 100, so the score is
    bounded to [0, 100] once every component is clamped to [0, 1].

    - win_rate: recent win rate, already in [0, 1]
    - recent_pnl: recent realized PnL %, saturates at `pnl_cap_percent`
    - avg_pnl: average PnL % per closed lot, saturates at `pnl_cap_percent`
    - experience: closed trade count, saturates at `experience_cap_trades`
    - drawdown: 1 - max drawdown % / `drawdown_cap_percent`
    """
    win_rate: float = 30.0
    recent_pnl: float = 25.0
    avg_pnl: float = 20.0
    experience: float = 10.0
    drawdown: float = 15.0

    pnl_cap_percent: float = 60.0
    experience_cap_trades: int = 100
    drawdown_cap_percent: float = 100.0

    @property
    def total(self) -> float:
        return self.win_rate + self.recent_pnl + self.avg_pnl + self.experience + self.drawdown


@dataclass
class Settings:
    database_url: str = "sqlite:///./wallet_ledger.db"
    windows: List[Tuple[str, Optional[int]]] = field(
        default_factory=lambda: parse_windows(DEFAULT_WINDOWS)
    )
    score_window: str = "30d"
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    price_ttl_seconds: float = 60.0
    sweep_delay_seconds: float = 0.5
    max_workers: int = 4
    report_timezone: str = "UTC"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from WALLETLEDGER_* environment variables."""
        settings = cls(
            database_url=os.getenv("WALLETLEDGER_DATABASE_URL", cls.database_url),
            windows=parse_windows(os.getenv("WALLETLEDGER_WINDOWS", DEFAULT_WINDOWS)),
            score_window=os.getenv("WALLETLEDGER_SCORE_WINDOW", cls.score_window),
            price_ttl_seconds=float(
                os.getenv("WALLETLEDGER_PRICE_TTL_SECONDS", cls.price_ttl_seconds)
            ),
            sweep_delay_seconds=float(
                os.getenv("WALLETLEDGER_SWEEP_DELAY_SECONDS", cls.sweep_delay_seconds)
            ),
            max_workers=int(os.getenv("WALLETLEDGER_MAX_WORKERS", cls.max_workers)),
            report_timezone=os.getenv("WALLETLEDGER_REPORT_TIMEZONE", cls.report_timezone),
        )
        if settings.score_window not in settings.window_labels:
            raise ValueError(
                f"Score window {settings.score_window!r} is not one of {settings.window_labels}"
            )
        return settings

    @property
    def window_labels(self) -> List[str]:
        return [label for label, _ in self.windows]
