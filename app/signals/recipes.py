"""信号配方（技术面共振规则）。

每个配方对最新指标快照做一次布尔判断，命中后生成候选信号交给 AI 复核。
参数通过 default_params 声明，可由调用方覆盖（超买超卖阈值来自配置）。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.market.fmp import IndicatorSnapshot


@dataclass(frozen=True)
class SignalCandidate:
    asset: str
    direction: str          # BUY / SELL
    pattern: str            # 面向用户的形态描述
    price: float


class BaseRecipe(ABC):
    """信号配方抽象基类。

    Attributes:
        name: 配方唯一标识（kebab-case）
        direction: 命中后的方向，"BUY" 或 "SELL"
        pattern: 写入信号 technical_pattern 的描述
        default_params: 默认参数字典
        params: 运行时参数（default_params 与自定义参数合并后的结果）
    """

    name: str = ""
    direction: str = ""
    pattern: str = ""
    default_params: dict = {}

    def __init__(self, params: dict | None = None) -> None:
        self.params = {**self.default_params}
        if params:
            self.params.update(params)

    @abstractmethod
    def matches(self, snapshot: IndicatorSnapshot) -> bool:
        """快照是否满足配方条件。"""

    def evaluate(self, asset: str, snapshot: IndicatorSnapshot) -> SignalCandidate | None:
        if not self.matches(snapshot):
            return None
        return SignalCandidate(
            asset=asset,
            direction=self.direction,
            pattern=self.pattern,
            price=snapshot.price,
        )


class Ema200OversoldBounce(BaseRecipe):
    """价格位于 EMA200 下方且 RSI 超卖 → 关键支撑反弹做多。"""

    name = "ema200-oversold-bounce"
    direction = "BUY"
    pattern = "Rebote en EMA 200 + RSI Sobreventa"
    default_params = {"rsi_oversold": 35.0}

    def matches(self, snapshot: IndicatorSnapshot) -> bool:
        return (
            snapshot.price <= snapshot.ema200
            and snapshot.rsi <= self.params["rsi_oversold"]
        )


class Ema200OverboughtRejection(BaseRecipe):
    """价格位于 EMA200 上方且 RSI 超买 → 关键阻力回落做空。"""

    name = "ema200-overbought-rejection"
    direction = "SELL"
    pattern = "Rechazo en EMA 200 + RSI Sobrecompra"
    default_params = {"rsi_overbought": 65.0}

    def matches(self, snapshot: IndicatorSnapshot) -> bool:
        return (
            snapshot.price >= snapshot.ema200
            and snapshot.rsi >= self.params["rsi_overbought"]
        )


def default_recipes(rsi_oversold: float = 35.0, rsi_overbought: float = 65.0) -> list[BaseRecipe]:
    return [
        Ema200OversoldBounce({"rsi_oversold": rsi_oversold}),
        Ema200OverboughtRejection({"rsi_overbought": rsi_overbought}),
    ]


def first_match(
    recipes: list[BaseRecipe],
    asset: str,
    snapshot: IndicatorSnapshot,
) -> SignalCandidate | None:
    """按顺序返回第一个命中的候选信号。"""
    for recipe in recipes:
        candidate = recipe.evaluate(asset, snapshot)
        if candidate is not None:
            return candidate
    return None
