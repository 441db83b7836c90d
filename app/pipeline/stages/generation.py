"""阶段三：生成最终建议。

generating → complete，写入 final_recommendation。
complete 提交成功后扣除一次分析额度；扣费失败只记录日志，请求保持 complete。
"""

import logging
from typing import Any

from app.ai.clients.gemini import GeminiClient
from app.ai.prompts import build_recommendation_prompt
from app.ai.schemas import RECOMMENDATION_RESPONSE_SCHEMA, Recommendation
from app.config import Settings
from app.credits.ledger import CreditLedger
from app.exceptions import InsufficientCreditsError, ProfileNotFoundError, StageValidationError
from app.pipeline.stages.base import BaseStage
from app.pipeline.state import STAGE_RECOMMENDATION, PipelineStatus, RecommendationCompleted
from app.pipeline.store import RequestStore
from app.pipeline.validator import validate
from app.realtime.publisher import RecordPublisher

logger = logging.getLogger(__name__)


class GenerationStage(BaseStage):
    name = STAGE_RECOMMENDATION
    consumes = PipelineStatus.GENERATING
    error_prefix = "Error en recomendación"

    def __init__(
        self,
        settings: Settings,
        store: RequestStore,
        gemini: GeminiClient,
        ledger: CreditLedger,
        publisher: RecordPublisher | None = None,
    ) -> None:
        super().__init__(settings, store, publisher)
        self._gemini = gemini
        self._ledger = ledger

    async def run(self, record: Any) -> RecommendationCompleted:
        raw = await self._gemini.chat_json(
            build_recommendation_prompt(record.analysis_result, record.market_data),
            max_tokens=self._settings.gemini_max_tokens,
            response_schema=RECOMMENDATION_RESPONSE_SCHEMA,
        )
        result = validate(raw, Recommendation)
        if not result.valid:
            raise StageValidationError(result.errors)
        return RecommendationCompleted(recommendation=result.sanitized)

    async def after_commit(self, record: Any) -> None:
        try:
            balance = await self._ledger.deduct_for_request(record.id, record.user_id)
        except (InsufficientCreditsError, ProfileNotFoundError) as exc:
            logger.error(
                "[%s] 请求 %s 已完成但扣费失败（user=%s）：%s",
                self.name, record.id, record.user_id, exc,
            )
            return
        except Exception:
            logger.exception(
                "[%s] 请求 %s 已完成但扣费异常（user=%s），待对账补扣",
                self.name, record.id, record.user_id,
            )
            return

        if balance is None:
            logger.info("[%s] 请求 %s 已扣费，跳过", self.name, record.id)
        else:
            logger.info(
                "[%s] 请求 %s 扣除 1 次额度，user=%s 剩余 %d",
                self.name, record.id, record.user_id, balance,
            )
