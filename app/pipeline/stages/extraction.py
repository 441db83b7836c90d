"""阶段一：图表识别。

pending → analyzing → enriching，写入 analysis_result。
下载截图，连同用户备注一起交给视觉模型，按 ChartExtraction 校验输出。
"""

import logging
from typing import Any

from app.ai.clients.gemini import GeminiClient
from app.ai.prompts import build_extraction_prompt
from app.ai.schemas import EXTRACTION_RESPONSE_SCHEMA, ChartExtraction
from app.config import Settings
from app.exceptions import StageValidationError
from app.pipeline.stages.base import BaseStage
from app.pipeline.state import (
    STAGE_ANALYSIS,
    ExtractionCompleted,
    ExtractionStarted,
    PipelineStatus,
)
from app.pipeline.store import RequestStore
from app.pipeline.validator import validate
from app.realtime.publisher import RecordPublisher
from app.storage.client import ObjectStorage

logger = logging.getLogger(__name__)


class ExtractionStage(BaseStage):
    name = STAGE_ANALYSIS
    consumes = PipelineStatus.PENDING
    claim_status = PipelineStatus.ANALYZING
    start_event = ExtractionStarted()
    error_prefix = "Error en análisis"

    def __init__(
        self,
        settings: Settings,
        store: RequestStore,
        storage: ObjectStorage,
        gemini: GeminiClient,
        publisher: RecordPublisher | None = None,
    ) -> None:
        super().__init__(settings, store, publisher)
        self._storage = storage
        self._gemini = gemini

    async def run(self, record: Any) -> ExtractionCompleted:
        image = await self._storage.download(record.image_path)
        logger.info(
            "[%s] 请求 %s 已下载截图 %s（%d 字节）",
            self.name, record.id, record.image_path, len(image.data),
        )

        raw = await self._gemini.chat_json(
            build_extraction_prompt(record.notes),
            max_tokens=self._settings.gemini_max_tokens,
            image=image.data,
            image_mime_type=image.content_type,
            response_schema=EXTRACTION_RESPONSE_SCHEMA,
        )
        logger.debug("[%s] 请求 %s token 用量：%s", self.name, record.id, self._gemini.get_last_usage())

        result = validate(raw, ChartExtraction)
        if not result.valid:
            raise StageValidationError(result.errors)
        return ExtractionCompleted(extraction=result.sanitized)
