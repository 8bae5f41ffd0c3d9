"""Tests for settings and valuation provenance parsing."""

import pytest

from walletledger.config import ScoreWeights, Settings, parse_windows
from walletledger.domain.provenance import (
    OnChainValuation,
    OracleValuation,
    StablecoinParity,
    UnknownProvenance,
    provenance_from_metadata,
    provenance_kind,
)


def test_parse_windows():
    assert parse_windows("7d, 30D,all") == [("7d", 7), ("30d", 30), ("all", None)]


@pytest.mark.parametrize("spec", ["", "7", "7w", "0d", "-1d", ","])
def test_parse_windows_rejects_bad_labels(spec):
    with pytest.raises(ValueError):
        parse_windows(spec)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("WALLETLEDGER_DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("WALLETLEDGER_WINDOWS", "1d,14d")
    monkeypatch.setenv("WALLETLEDGER_SCORE_WINDOW", "14d")
    monkeypatch.setenv("WALLETLEDGER_MAX_WORKERS", "8")
    monkeypatch.setenv("WALLETLEDGER_PRICE_TTL_SECONDS", "5")

    settings = Settings.from_env()

    assert settings.database_url == "sqlite:///:memory:"
    assert settings.window_labels == ["1d", "14d"]
    assert settings.score_window == "14d"
    assert settings.max_workers == 8
    assert settings.price_ttl_seconds == 5.0
    assert settings.report_timezone == "UTC"


def test_settings_defaults(monkeypatch):
    for name in ("WALLETLEDGER_WINDOWS", "WALLETLEDGER_SCORE_WINDOW"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()
    assert settings.window_labels == ["7d", "30d", "90d", "all"]
    assert settings.score_window == "30d"


def test_score_window_must_be_configured(monkeypatch):
    monkeypatch.setenv("WALLETLEDGER_WINDOWS", "7d,all")
    monkeypatch.setenv("WALLETLEDGER_SCORE_WINDOW", "30d")
    with pytest.raises(ValueError):
        Settings.from_env()


def test_score_weights_sum_to_hundred():
    assert ScoreWeights().total == 100.0


@pytest.mark.parametrize(
    "metadata,expected",
    [
        ({"baseToken": "SOL"}, OnChainValuation("SOL")),
        ({"valuationSource": "onchain", "baseToken": "wsol"}, OnChainValuation("WSOL")),
        ({"valuationSource": "swap"}, OnChainValuation("SOL")),
        ({"baseToken": "usdc"}, StablecoinParity("USDC")),
        ({"valuationSource": "birdeye", "baseToken": "SOL"}, OracleValuation("birdeye")),
        ({"valuationSource": "oracle"}, OracleValuation("oracle")),
    ],
)
def test_provenance_from_metadata(metadata, expected):
    assert provenance_from_metadata(metadata) == expected


def test_unrecognised_provenance_is_unknown():
    assert isinstance(provenance_from_metadata({}), UnknownProvenance)
    assert isinstance(provenance_from_metadata({"baseToken": "BONK"}), UnknownProvenance)
    assert provenance_kind(provenance_from_metadata({"venue": "x"})) == "unknown"


def test_provenance_kind_is_exhaustive():
    assert provenance_kind(OnChainValuation()) == "on_chain"
    assert provenance_kind(OracleValuation()) == "oracle"
    assert provenance_kind(StablecoinParity()) == "stablecoin"
    with pytest.raises(TypeError):
        provenance_kind("on_chain")
