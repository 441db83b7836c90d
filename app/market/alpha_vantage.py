"""Alpha Vantage 行情客户端：报价、技术指标、新闻情绪、经济日历。

Alpha Vantage 限流时仍返回 HTTP 200，响应体中带 "Note" 或 "Information" 字段，
此处统一识别并抛出 RateLimitError，是否致命由调用方决定。
"""

import json
import logging
from typing import Any

import httpx

from app.exceptions import DependencyError, RateLimitError
from app.market.http import JsonHttpClient

logger = logging.getLogger(__name__)

# 图表上识别出的指标名 → Alpha Vantage function
INDICATOR_FUNCTIONS: dict[str, str] = {
    "RSI": "RSI",
    "SMA": "SMA",
    "EMA": "EMA",
    "MACD": "MACD",
    "STOCH": "STOCH",
    "BBANDS": "BBANDS",
    "SAR": "SAR",
}

# 均线统一看 200 周期
_PERIOD_OVERRIDES: dict[str, str] = {"SMA": "200"}

_RATE_LIMIT_KEYS = ("Note", "Information")


def map_indicator(name: str | None) -> str | None:
    """指标名映射为接口 function，无法映射时返回 None。"""
    if not name:
        return None
    return INDICATOR_FUNCTIONS.get(name.strip().upper())


class AlphaVantageClient(JsonHttpClient):
    """Alpha Vantage 异步客户端。"""

    provider = "alpha_vantage"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://www.alphavantage.co/query",
        timeout: int = 20,
        max_retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, max_retries=max_retries, transport=transport)
        self._api_key = api_key

    async def _query(self, function: str, **params: Any) -> dict[str, Any]:
        data = await self.get_json(params={"function": function, "apikey": self._api_key, **params})
        if not isinstance(data, dict):
            raise DependencyError(f"alpha_vantage {function} 响应格式异常")
        for key in _RATE_LIMIT_KEYS:
            if key in data:
                raise RateLimitError(f"alpha_vantage {function} 限流：{data[key]}")
        if "Error Message" in data:
            raise DependencyError(f"alpha_vantage {function} 错误：{data['Error Message']}")
        return data

    async def fetch_quote(self, symbol: str) -> float | None:
        """最新价格，接口未返回价格时为 None。"""
        data = await self._query("GLOBAL_QUOTE", symbol=symbol)
        price = (data.get("Global Quote") or {}).get("05. price")
        if price in (None, ""):
            return None
        try:
            return float(price)
        except (TypeError, ValueError) as exc:
            raise DependencyError(f"alpha_vantage 报价格式异常：{price!r}") from exc

    async def fetch_indicator(
        self,
        function: str,
        symbol: str,
        interval: str,
        time_period: str,
    ) -> dict[str, Any]:
        """最新一期指标值。

        Returns:
            {"fecha": "2024-05-01", "RSI": "41.2"}；无数据时返回空字典
        """
        period = _PERIOD_OVERRIDES.get(function, time_period)
        data = await self._query(
            function,
            symbol=symbol,
            interval=interval,
            time_period=period,
            series_type="close",
        )
        series_key = next((k for k in data if k.startswith("Technical Analysis:")), None)
        if series_key is None or not data[series_key]:
            return {}
        latest_date, values = next(iter(data[series_key].items()))
        return {"fecha": latest_date, **values}

    async def fetch_news(self, currencies: list[str], limit: int = 10) -> list[dict[str, Any]]:
        """与货币相关的最新新闻（含情绪标签）。"""
        tickers = ",".join(f"FOREX:{c}" for c in currencies)
        data = await self._query("NEWS_SENTIMENT", tickers=tickers, limit=str(limit))
        items = []
        for entry in (data.get("feed") or [])[:limit]:
            items.append({
                "titulo": entry.get("title"),
                "fuente": entry.get("source"),
                "url": entry.get("url"),
                "resumen": entry.get("summary"),
                "sentimiento": entry.get("overall_sentiment_label"),
                "publicado": entry.get("time_published"),
            })
        return items

    async def fetch_economic_calendar(self, horizon_days: int = 7) -> list[dict[str, Any]]:
        """未来 horizon_days 天内的经济日历原始事件。

        接口的 data 字段可能是 JSON 字符串，也可能已是列表。
        """
        data = await self._query("ECONOMIC_CALENDAR", horizon=f"{horizon_days}days")
        raw = data.get("data")
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise DependencyError("alpha_vantage 经济日历数据无法解析") from exc
        if not isinstance(raw, list):
            return []
        return [event for event in raw if isinstance(event, dict)]
