"""阶段二：行情增强。

enriching → generating，写入 market_data。
并发拉取：报价（必需）、基础指标 + 图表中识别出的指标、相关新闻、经济日历。
- 报价失败（含限流）使阶段失败
- 单个指标限流记为占位文本，不影响其他数据
- 新闻、日历失败时记为空，只写日志
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from app.ai.schemas import MarketData
from app.config import Settings
from app.exceptions import DependencyError, RateLimitError, StageValidationError
from app.market.alpha_vantage import AlphaVantageClient, map_indicator
from app.pipeline.normalizer import asset_currencies, provider_interval, provider_symbol
from app.pipeline.stages.base import BaseStage
from app.pipeline.state import STAGE_ENRICHMENT, EnrichmentCompleted, PipelineStatus
from app.pipeline.store import RequestStore
from app.pipeline.validator import validate
from app.realtime.publisher import RecordPublisher

logger = logging.getLogger(__name__)

RATE_LIMIT_PLACEHOLDER = "Límite de API alcanzado"
UNAVAILABLE_PLACEHOLDER = "Dato no disponible"


def indicators_to_fetch(baseline: list[str], extraction: dict[str, Any]) -> list[str]:
    """基础指标 ∪ 图表指标（映射为接口名并去重，保持顺序）。"""
    names = list(baseline)
    for item in extraction.get("indicadores") or []:
        function = map_indicator((item or {}).get("nombre_indicador"))
        if function:
            names.append(function)
    return list(dict.fromkeys(names))


def split_calendar(
    events: list[dict[str, Any]],
    currencies: list[str],
    now: datetime,
) -> dict[str, list[dict[str, Any]]]:
    """按货币过滤经济日历，并以当前时间拆分为已公布 / 待公布。"""
    past: list[dict[str, Any]] = []
    future: list[dict[str, Any]] = []
    for event in events:
        if event.get("currency") not in currencies:
            continue
        try:
            event_time = datetime.fromisoformat(str(event.get("utc_time")).replace("Z", "+00:00"))
        except ValueError:
            continue
        if event_time.tzinfo is None:
            event_time = event_time.replace(tzinfo=timezone.utc)

        summary = {
            "noticia": event.get("event"),
            "importancia": event.get("impact"),
            "actual": event.get("actual"),
            "prevision": event.get("forecast"),
            "previo": event.get("previous"),
        }
        if event_time <= now:
            past.append(summary)
        else:
            hours = round((event_time - now).total_seconds() / 3600)
            future.append({**summary, "tiempo_restante": f"{hours} horas"})
    return {"noticias_pasadas": past, "noticias_futuras": future}


class EnrichmentStage(BaseStage):
    name = STAGE_ENRICHMENT
    consumes = PipelineStatus.ENRICHING
    error_prefix = "Error en enriquecimiento"

    def __init__(
        self,
        settings: Settings,
        store: RequestStore,
        market: AlphaVantageClient,
        publisher: RecordPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(settings, store, publisher)
        self._market = market
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(self, record: Any) -> EnrichmentCompleted:
        extraction = record.analysis_result or {}
        asset = extraction.get("activo")
        if not asset:
            raise StageValidationError(["El análisis no contiene un 'activo' válido."])

        symbol = provider_symbol(asset)
        currencies = asset_currencies(asset)
        interval, time_period = provider_interval(extraction.get("temporalidad"))
        functions = indicators_to_fetch(self._settings.enrichment_baseline_indicators, extraction)
        logger.info(
            "[%s] 请求 %s 增强 %s（%s），指标：%s",
            self.name, record.id, asset, interval, ",".join(functions),
        )

        quote, news, calendar, *indicator_results = await asyncio.gather(
            self._market.fetch_quote(symbol),
            self._market.fetch_news(currencies, self._settings.enrichment_news_limit),
            self._market.fetch_economic_calendar(self._settings.enrichment_calendar_horizon_days),
            *(
                self._market.fetch_indicator(function, symbol, interval, time_period)
                for function in functions
            ),
            return_exceptions=True,
        )

        if isinstance(quote, BaseException):
            raise quote

        indicators: dict[str, Any] = {}
        for function, result in zip(functions, indicator_results):
            indicators[function] = self._soft_result(record.id, function, result)

        market = {
            "precio_actual": quote,
            "indicadores": indicators,
            "noticias": self._soft_list(record.id, "news", news),
            "calendario_economico": split_calendar(
                self._soft_list(record.id, "calendar", calendar),
                currencies,
                self._clock(),
            ),
        }

        result = validate(market, MarketData)
        if not result.valid:
            raise StageValidationError(result.errors)
        return EnrichmentCompleted(market=result.sanitized)

    def _soft_result(self, request_id: str, function: str, result: Any) -> Any:
        if isinstance(result, RateLimitError):
            logger.warning("[%s] 请求 %s 指标 %s 限流，记为占位", self.name, request_id, function)
            return RATE_LIMIT_PLACEHOLDER
        if isinstance(result, DependencyError):
            logger.warning("[%s] 请求 %s 指标 %s 获取失败：%s", self.name, request_id, function, result)
            return UNAVAILABLE_PLACEHOLDER
        if isinstance(result, BaseException):
            raise result
        return result

    def _soft_list(self, request_id: str, label: str, result: Any) -> list:
        if isinstance(result, DependencyError):
            logger.warning("[%s] 请求 %s %s 获取失败：%s", self.name, request_id, label, result)
            return []
        if isinstance(result, BaseException):
            raise result
        return result
