"""信号配方测试。"""

from app.market.fmp import IndicatorSnapshot
from app.signals.recipes import (
    Ema200OverboughtRejection,
    Ema200OversoldBounce,
    default_recipes,
    first_match,
)


class TestEma200OversoldBounce:
    def test_matches_below_ema_and_oversold(self) -> None:
        recipe = Ema200OversoldBounce()
        assert recipe.matches(IndicatorSnapshot(price=1.05, rsi=30, ema200=1.06)) is True

    def test_not_oversold(self) -> None:
        recipe = Ema200OversoldBounce()
        assert recipe.matches(IndicatorSnapshot(price=1.05, rsi=45, ema200=1.06)) is False

    def test_above_ema(self) -> None:
        recipe = Ema200OversoldBounce()
        assert recipe.matches(IndicatorSnapshot(price=1.07, rsi=30, ema200=1.06)) is False

    def test_custom_threshold(self) -> None:
        recipe = Ema200OversoldBounce({"rsi_oversold": 25})
        assert recipe.params == {"rsi_oversold": 25}
        assert recipe.matches(IndicatorSnapshot(price=1.05, rsi=30, ema200=1.06)) is False


class TestEma200OverboughtRejection:
    def test_matches(self) -> None:
        candidate = Ema200OverboughtRejection().evaluate(
            "XAUUSD", IndicatorSnapshot(price=2400, rsi=72, ema200=2300)
        )
        assert candidate.direction == "SELL"
        assert candidate.asset == "XAUUSD"
        assert candidate.price == 2400
        assert candidate.pattern == "Rechazo en EMA 200 + RSI Sobrecompra"

    def test_no_match_returns_none(self) -> None:
        assert Ema200OverboughtRejection().evaluate(
            "XAUUSD", IndicatorSnapshot(price=2400, rsi=55, ema200=2300)
        ) is None


def test_default_recipes_use_configured_thresholds() -> None:
    recipes = default_recipes(rsi_oversold=30, rsi_overbought=70)
    assert recipes[0].params["rsi_oversold"] == 30
    assert recipes[1].params["rsi_overbought"] == 70


def test_first_match_neutral_snapshot() -> None:
    snapshot = IndicatorSnapshot(price=1.06, rsi=50, ema200=1.06)
    assert first_match(default_recipes(), "EURUSD", snapshot) is None


def test_default_params_not_shared_between_instances() -> None:
    a = Ema200OversoldBounce({"rsi_oversold": 20})
    b = Ema200OversoldBounce()
    assert a.params["rsi_oversold"] == 20
    assert b.params["rsi_oversold"] == 35.0
