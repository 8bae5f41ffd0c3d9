# walletledger/domain/provenance.py
"""
Valuation provenance of a trade.

Ingestion stores provenance as a free-form metadata dict. It is parsed once
into one of the variants below so downstream code can switch on the type.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Union

STABLECOINS = {"USDC", "USDT"}
NATIVE_BASES = {"SOL", "WSOL"}


@dataclass(frozen=True)
class OnChainValuation:
    """Base amount taken from the swap itself (native base token)."""
    base_symbol: str = "SOL"


@dataclass(frozen=True)
class OracleValuation:
    """Base amount derived from an external price oracle."""
    source: str = "oracle"


@dataclass(frozen=True)
class StablecoinParity:
    """Quoted in a stablecoin and valued 1:1."""
    symbol: str = "USDC"


@dataclass(frozen=True)
class UnknownProvenance:
    """Metadata present but not recognised (or absent)."""
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


Provenance = Union[OnChainValuation, OracleValuation, StablecoinParity, UnknownProvenance]

VALUATION_KINDS = ("on_chain", "oracle", "stablecoin", "unknown")


def provenance_from_metadata(metadata: Dict[str, Any]) -> Provenance:
    """
    Parse a trade metadata dict.

    Recognised keys: "valuationSource" (e.g. "onchain", "birdeye", "binance"),
    "baseToken" (e.g. "SOL", "USDC").
    """
    if not metadata:
        return UnknownProvenance()

    source = str(metadata.get("valuationSource") or "").strip().lower()
    base = str(metadata.get("baseToken") or "").strip().upper()

    if base in STABLECOINS:
        return StablecoinParity(symbol=base)
    if source in ("", "onchain", "on_chain", "swap"):
        if base in NATIVE_BASES or (not base and source):
            return OnChainValuation(base_symbol=base or "SOL")
        return UnknownProvenance(raw=dict(metadata))
    return OracleValuation(source=source)


def provenance_kind(provenance: Provenance) -> str:
    """Exhaustive mapping of a variant to its kind label."""
    if isinstance(provenance, OnChainValuation):
        return "on_chain"
    if isinstance(provenance, OracleValuation):
        return "oracle"
    if isinstance(provenance, StablecoinParity):
        return "stablecoin"
    if isinstance(provenance, UnknownProvenance):
        return "unknown"
    raise TypeError(f"Unhandled provenance: {provenance!r}")
