"""分析请求状态机。

状态为带数据的标签联合，转换函数 transition() 是唯一合法的状态推进入口：

    Pending ─ExtractionStarted→ Analyzing ─ExtractionCompleted→ Enriching
        ─EnrichmentCompleted→ Generating ─RecommendationCompleted→ Complete

任一非终态收到 StageFailed 均转为 Failed；Complete / Failed 为终态。

持久化时通过 columns_for() 得到要写入的列，保证：
- final_recommendation 非空 ⇔ status = complete
- error_message 非空 ⇔ status = failed
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Union

from app.exceptions import IllegalTransitionError, PipelineError


class PipelineStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    ENRICHING = "enriching"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({PipelineStatus.COMPLETE, PipelineStatus.FAILED})

# 阶段标识（写入 failed_stage）
STAGE_ANALYSIS = "analysis"
STAGE_ENRICHMENT = "enrichment"
STAGE_RECOMMENDATION = "recommendation"


# ---------------------------------------------------------------------------
# 状态
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Pending:
    status: ClassVar[PipelineStatus] = PipelineStatus.PENDING


@dataclass(frozen=True)
class Analyzing:
    status: ClassVar[PipelineStatus] = PipelineStatus.ANALYZING


@dataclass(frozen=True)
class Enriching:
    extraction: dict[str, Any]
    status: ClassVar[PipelineStatus] = PipelineStatus.ENRICHING


@dataclass(frozen=True)
class Generating:
    extraction: dict[str, Any]
    market: dict[str, Any]
    status: ClassVar[PipelineStatus] = PipelineStatus.GENERATING


@dataclass(frozen=True)
class Complete:
    extraction: dict[str, Any]
    market: dict[str, Any]
    recommendation: dict[str, Any]
    status: ClassVar[PipelineStatus] = PipelineStatus.COMPLETE


@dataclass(frozen=True)
class Failed:
    stage: str
    message: str
    status: ClassVar[PipelineStatus] = PipelineStatus.FAILED


State = Union[Pending, Analyzing, Enriching, Generating, Complete, Failed]


# ---------------------------------------------------------------------------
# 事件
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExtractionStarted:
    pass


@dataclass(frozen=True)
class ExtractionCompleted:
    extraction: dict[str, Any]


@dataclass(frozen=True)
class EnrichmentCompleted:
    market: dict[str, Any]


@dataclass(frozen=True)
class RecommendationCompleted:
    recommendation: dict[str, Any]


@dataclass(frozen=True)
class StageFailed:
    stage: str
    message: str


Event = Union[
    ExtractionStarted,
    ExtractionCompleted,
    EnrichmentCompleted,
    RecommendationCompleted,
    StageFailed,
]


def transition(state: State, event: Event) -> State:
    """按事件推进状态，非法组合抛 IllegalTransitionError。"""
    if isinstance(state, (Complete, Failed)):
        raise IllegalTransitionError(
            f"终态 {state.status.value} 不接受事件 {type(event).__name__}"
        )

    if isinstance(event, StageFailed):
        return Failed(stage=event.stage, message=event.message)

    if isinstance(state, Pending) and isinstance(event, ExtractionStarted):
        return Analyzing()
    if isinstance(state, Analyzing) and isinstance(event, ExtractionCompleted):
        return Enriching(extraction=event.extraction)
    if isinstance(state, Enriching) and isinstance(event, EnrichmentCompleted):
        return Generating(extraction=state.extraction, market=event.market)
    if isinstance(state, Generating) and isinstance(event, RecommendationCompleted):
        return Complete(
            extraction=state.extraction,
            market=state.market,
            recommendation=event.recommendation,
        )

    raise IllegalTransitionError(
        f"状态 {state.status.value} 不接受事件 {type(event).__name__}"
    )


# ---------------------------------------------------------------------------
# 持久化映射
# ---------------------------------------------------------------------------


def state_from_record(record: Any) -> State:
    """从 AnalysisRequest 行还原状态，结果字段缺失视为记录损坏。"""
    try:
        status = PipelineStatus(record.status)
    except ValueError:
        raise PipelineError(f"未知状态：{record.status!r}")

    if status is PipelineStatus.PENDING:
        return Pending()
    if status is PipelineStatus.ANALYZING:
        return Analyzing()
    if status is PipelineStatus.FAILED:
        return Failed(stage=record.failed_stage or "", message=record.error_message or "")

    if record.analysis_result is None:
        raise PipelineError(f"状态 {status.value} 缺少 analysis_result")
    if status is PipelineStatus.ENRICHING:
        return Enriching(extraction=record.analysis_result)

    if record.market_data is None:
        raise PipelineError(f"状态 {status.value} 缺少 market_data")
    if status is PipelineStatus.GENERATING:
        return Generating(extraction=record.analysis_result, market=record.market_data)

    if record.final_recommendation is None:
        raise PipelineError("状态 complete 缺少 final_recommendation")
    return Complete(
        extraction=record.analysis_result,
        market=record.market_data,
        recommendation=record.final_recommendation,
    )


def columns_for(state: State) -> dict[str, Any]:
    """状态 → 需要写入的列。

    终态之外 final_recommendation 与 error_message 一律置空；
    失败时保留此前阶段已写入的结果，便于排查。
    """
    columns: dict[str, Any] = {
        "status": state.status.value,
        "final_recommendation": None,
        "error_message": None,
        "failed_stage": None,
    }
    if isinstance(state, Enriching):
        columns["analysis_result"] = state.extraction
    elif isinstance(state, Generating):
        columns["analysis_result"] = state.extraction
        columns["market_data"] = state.market
    elif isinstance(state, Complete):
        columns["analysis_result"] = state.extraction
        columns["market_data"] = state.market
        columns["final_recommendation"] = state.recommendation
    elif isinstance(state, Failed):
        columns["error_message"] = state.message
        columns["failed_stage"] = state.stage
    return columns


def stage_for_status(status: str) -> str:
    """非终态 → 负责推进它的阶段标识（超时清理时用于标记失败阶段）。"""
    if status in (PipelineStatus.PENDING.value, PipelineStatus.ANALYZING.value):
        return STAGE_ANALYSIS
    if status == PipelineStatus.ENRICHING.value:
        return STAGE_ENRICHMENT
    return STAGE_RECOMMENDATION
