"""Financial Modeling Prep 客户端：技术指标快照、经济日历、历史公布值。"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx

from app.exceptions import DependencyError
from app.market.http import JsonHttpClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndicatorSnapshot:
    """信号扫描所需的最新指标值。"""

    price: float
    rsi: float
    ema200: float


class FmpClient(JsonHttpClient):
    """Financial Modeling Prep 异步客户端。"""

    provider = "fmp"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://financialmodelingprep.com/api/v3",
        timeout: int = 20,
        max_retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, max_retries=max_retries, transport=transport)
        self._api_key = api_key

    async def _get_list(self, path: str, **params: Any) -> list[dict[str, Any]]:
        data = await self.get_json(path, params={**params, "apikey": self._api_key})
        if isinstance(data, dict) and "Error Message" in data:
            raise DependencyError(f"fmp {path} 错误：{data['Error Message']}")
        if not isinstance(data, list):
            raise DependencyError(f"fmp {path} 响应格式异常")
        return data

    async def fetch_indicator_snapshot(self, symbol: str, interval: str) -> IndicatorSnapshot | None:
        """最新收盘价、RSI(14)、EMA(200)，任一缺失返回 None。"""
        path = f"technical_indicator/{interval}/{symbol}"
        ema_rows = await self._get_list(path, type="ema", period=200)
        rsi_rows = await self._get_list(path, type="rsi", period=14)
        if not ema_rows or not rsi_rows:
            return None

        latest_ema, latest_rsi = ema_rows[0], rsi_rows[0]
        try:
            return IndicatorSnapshot(
                price=float(latest_ema["close"]),
                rsi=float(latest_rsi["rsi"]),
                ema200=float(latest_ema["ema"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("[FMP] %s 指标数据不完整：ema=%s rsi=%s", symbol, latest_ema, latest_rsi)
            return None

    async def fetch_calendar(self, start: date, end: date) -> list[dict[str, Any]]:
        """日期区间内的经济日历事件。"""
        return await self._get_list(
            "economic_calendar",
            **{"from": start.isoformat(), "to": end.isoformat()},
        )

    async def fetch_historical_calendar(self, currency: str) -> list[dict[str, Any]]:
        """某货币的历史经济数据公布记录（新的在前）。"""
        return await self._get_list(f"historical-economic-calendar/{currency}")
