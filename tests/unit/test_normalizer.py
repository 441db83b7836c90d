"""资产代码与时间周期归一化测试。"""

import pytest

from app.pipeline.normalizer import (
    TIMEFRAMES,
    asset_currencies,
    normalize_asset,
    normalize_timeframe,
    provider_interval,
    provider_symbol,
)


class TestNormalizeAsset:
    @pytest.mark.parametrize(
        "raw",
        ["eurusd", "EUR-USD", "EUR / usd", " eur/usd ", "EURUSD", "eur - usd"],
    )
    def test_variants_normalize_to_slash_form(self, raw: str) -> None:
        assert normalize_asset(raw) == "EUR/USD"

    def test_already_canonical(self) -> None:
        assert normalize_asset("GBP/JPY") == "GBP/JPY"

    def test_mixed_separators_rejected(self) -> None:
        """同时出现 "/" 与 "-" 时不去除连字符。"""
        assert normalize_asset("EU-R/USD") is None

    @pytest.mark.parametrize("raw", ["EURUS", "EUR/US", "EURO/USD", "12345", "", "BTC/USDT"])
    def test_unrecognized_returns_none(self, raw: str) -> None:
        assert normalize_asset(raw) is None

    @pytest.mark.parametrize("raw", [None, 123, ["EURUSD"]])
    def test_non_string_returns_none(self, raw) -> None:
        assert normalize_asset(raw) is None


class TestNormalizeTimeframe:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("1 hour", "H1"),
            ("1h", "H1"),
            ("4 Hours", "H4"),
            ("h4", "H4"),
            ("Daily", "D1"),
            ("diario", "D1"),
            ("semanal", "W1"),
            ("15min", "15m"),
            ("mensual", "MN"),
        ],
    )
    def test_synonyms(self, raw: str, expected: str) -> None:
        assert normalize_timeframe(raw) == expected

    @pytest.mark.parametrize("canonical", TIMEFRAMES)
    def test_canonical_values_pass_through(self, canonical: str) -> None:
        assert normalize_timeframe(canonical) == canonical

    @pytest.mark.parametrize("raw", ["7min", "2 hours", "yearly", "", None, 4])
    def test_unknown_returns_none(self, raw) -> None:
        assert normalize_timeframe(raw) is None


class TestProviderMapping:
    def test_currencies(self) -> None:
        assert asset_currencies("EUR/USD") == ["EUR", "USD"]

    def test_symbol(self) -> None:
        assert provider_symbol("XAU/USD") == "XAUUSD"

    def test_known_interval(self) -> None:
        assert provider_interval("H1") == ("60min", "14")

    def test_unknown_interval_falls_back_to_daily(self) -> None:
        assert provider_interval(None) == ("daily", "14")
        assert provider_interval("H7") == ("daily", "14")
