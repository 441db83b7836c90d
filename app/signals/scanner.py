"""信号扫描器。

对每个关注品种：拉取指标快照 → 配方匹配 → AI 风控复核 → 仅保存确认的信号。
不维护逐品种状态；被否决的候选不留痕迹。单个品种失败不影响其他品种。
"""

import logging
import time

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.ai.clients.gemini import GeminiClient
from app.ai.prompts import build_signal_validation_prompt
from app.ai.schemas import SignalVerdict
from app.config import Settings
from app.market.fmp import FmpClient
from app.models.signal import TradingSignal
from app.pipeline.validator import validate
from app.realtime.publisher import RecordPublisher
from app.signals.recipes import BaseRecipe, SignalCandidate, default_recipes, first_match

logger = logging.getLogger(__name__)

# 信号方向：内部 BUY/SELL ↔ 模型提示词中的 COMPRA/VENTA
_TO_MODEL_DIRECTION = {"BUY": "COMPRA", "SELL": "VENTA"}
_FROM_MODEL_DIRECTION = {v: k for k, v in _TO_MODEL_DIRECTION.items()}


class SignalScanner:
    """周期性信号扫描。"""

    def __init__(
        self,
        settings: Settings,
        fmp: FmpClient,
        gemini: GeminiClient,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: RecordPublisher | None = None,
        recipes: list[BaseRecipe] | None = None,
    ) -> None:
        self._settings = settings
        self._fmp = fmp
        self._gemini = gemini
        self._session_factory = session_factory
        self._publisher = publisher
        self._recipes = recipes or default_recipes(
            settings.signal_rsi_oversold, settings.signal_rsi_overbought
        )

    async def scan(self) -> list[TradingSignal]:
        """扫描全部关注品种，返回本轮新保存的信号。"""
        start = time.monotonic()
        saved: list[TradingSignal] = []
        for asset in self._settings.signal_scan_assets:
            try:
                signal = await self.scan_asset(asset)
            except Exception:
                logger.exception("[信号扫描] %s 处理失败，继续下一个", asset)
                continue
            if signal is not None:
                saved.append(signal)

        logger.info(
            "[信号扫描] 完成：%d 个品种，新信号 %d 条，耗时 %.1fs",
            len(self._settings.signal_scan_assets), len(saved), time.monotonic() - start,
        )
        return saved

    async def scan_asset(self, asset: str) -> TradingSignal | None:
        snapshot = await self._fmp.fetch_indicator_snapshot(asset, self._settings.signal_scan_interval)
        if snapshot is None:
            logger.info("[信号扫描] %s 无指标数据", asset)
            return None

        candidate = first_match(self._recipes, asset, snapshot)
        if candidate is None:
            return None

        logger.info(
            "[信号扫描] %s 命中 %s 候选（%s），提交 AI 复核",
            asset, candidate.direction, candidate.pattern,
        )
        return await self._confirm(candidate)

    async def _confirm(self, candidate: SignalCandidate) -> TradingSignal | None:
        model_direction = _TO_MODEL_DIRECTION[candidate.direction]
        raw = await self._gemini.chat_json(
            build_signal_validation_prompt(
                candidate.asset, model_direction, candidate.pattern, candidate.price
            ),
        )
        result = validate(raw, SignalVerdict)
        if not result.valid:
            logger.warning("[信号扫描] %s 复核结果不合法：%s", candidate.asset, "; ".join(result.errors))
            return None

        verdict = result.sanitized
        if verdict["status"] != "valida":
            logger.info("[信号扫描] %s 候选被否决：%s", candidate.asset, verdict.get("justification"))
            return None

        confirmed = verdict["signal"]
        if _FROM_MODEL_DIRECTION[confirmed["direction"]] != candidate.direction:
            logger.warning(
                "[信号扫描] %s 复核方向 %s 与候选 %s 不一致，丢弃",
                candidate.asset, confirmed["direction"], candidate.direction,
            )
            return None

        signal = TradingSignal(
            asset=candidate.asset,
            direction=candidate.direction,
            entry_price=confirmed["entry_price"],
            stop_loss=confirmed["stop_loss"],
            take_profit=confirmed["take_profit"],
            justification=confirmed["justification"],
            technical_pattern=candidate.pattern,
        )
        async with self._session_factory() as session:
            session.add(signal)
            await session.commit()
            await session.refresh(signal)

        logger.info(
            "[信号扫描] %s 保存 %s 信号：入场 %s 止损 %s 止盈 %s",
            signal.asset, signal.direction, signal.entry_price, signal.stop_loss, signal.take_profit,
        )
        if self._publisher is not None:
            await self._publisher.publish_signal(signal)
        return signal
