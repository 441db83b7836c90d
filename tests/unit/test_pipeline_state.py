"""状态机转换与持久化映射测试。"""

from types import SimpleNamespace

import pytest

from app.exceptions import IllegalTransitionError, PipelineError
from app.pipeline.state import (
    Analyzing,
    Complete,
    EnrichmentCompleted,
    Enriching,
    ExtractionCompleted,
    ExtractionStarted,
    Failed,
    Generating,
    Pending,
    PipelineStatus,
    RecommendationCompleted,
    StageFailed,
    columns_for,
    stage_for_status,
    state_from_record,
    transition,
)

EXTRACTION = {"activo": "EUR/USD"}
MARKET = {"precio_actual": 1.08}
RECOMMENDATION = {"indice_confianza": {"puntuacion": 70}}


def _record(status: str, **fields) -> SimpleNamespace:
    values = {
        "status": status,
        "analysis_result": None,
        "market_data": None,
        "final_recommendation": None,
        "error_message": None,
        "failed_stage": None,
    }
    values.update(fields)
    return SimpleNamespace(**values)


class TestTransition:
    def test_happy_path(self) -> None:
        state = transition(Pending(), ExtractionStarted())
        assert state == Analyzing()
        state = transition(state, ExtractionCompleted(EXTRACTION))
        assert state == Enriching(extraction=EXTRACTION)
        state = transition(state, EnrichmentCompleted(MARKET))
        assert state == Generating(extraction=EXTRACTION, market=MARKET)
        state = transition(state, RecommendationCompleted(RECOMMENDATION))
        assert state == Complete(extraction=EXTRACTION, market=MARKET, recommendation=RECOMMENDATION)
        assert state.status is PipelineStatus.COMPLETE

    @pytest.mark.parametrize(
        "state",
        [Pending(), Analyzing(), Enriching(EXTRACTION), Generating(EXTRACTION, MARKET)],
    )
    def test_failure_from_any_non_terminal_state(self, state) -> None:
        failed = transition(state, StageFailed(stage="enrichment", message="Error en enriquecimiento: x"))
        assert failed == Failed(stage="enrichment", message="Error en enriquecimiento: x")

    @pytest.mark.parametrize(
        "state",
        [Complete(EXTRACTION, MARKET, RECOMMENDATION), Failed("analysis", "boom")],
    )
    def test_terminal_states_reject_everything(self, state) -> None:
        with pytest.raises(IllegalTransitionError):
            transition(state, StageFailed(stage="analysis", message="again"))
        with pytest.raises(IllegalTransitionError):
            transition(state, ExtractionStarted())

    def test_out_of_order_event(self) -> None:
        with pytest.raises(IllegalTransitionError):
            transition(Pending(), EnrichmentCompleted(MARKET))
        with pytest.raises(IllegalTransitionError):
            transition(Enriching(EXTRACTION), RecommendationCompleted(RECOMMENDATION))


class TestColumnsFor:
    def test_complete_sets_recommendation_only(self) -> None:
        cols = columns_for(Complete(EXTRACTION, MARKET, RECOMMENDATION))
        assert cols["status"] == "complete"
        assert cols["final_recommendation"] == RECOMMENDATION
        assert cols["error_message"] is None

    def test_failed_sets_error_only(self) -> None:
        cols = columns_for(Failed("recommendation", "Error en recomendación: x"))
        assert cols["status"] == "failed"
        assert cols["error_message"] == "Error en recomendación: x"
        assert cols["failed_stage"] == "recommendation"
        assert cols["final_recommendation"] is None
        # 失败时保留已有的阶段结果
        assert "analysis_result" not in cols
        assert "market_data" not in cols

    @pytest.mark.parametrize(
        "state",
        [Pending(), Analyzing(), Enriching(EXTRACTION), Generating(EXTRACTION, MARKET)],
    )
    def test_non_terminal_clears_terminal_columns(self, state) -> None:
        cols = columns_for(state)
        assert cols["final_recommendation"] is None
        assert cols["error_message"] is None

    def test_generating_writes_both_results(self) -> None:
        cols = columns_for(Generating(EXTRACTION, MARKET))
        assert cols["analysis_result"] == EXTRACTION
        assert cols["market_data"] == MARKET


class TestStateFromRecord:
    def test_round_trip_generating(self) -> None:
        record = _record("generating", analysis_result=EXTRACTION, market_data=MARKET)
        assert state_from_record(record) == Generating(EXTRACTION, MARKET)

    def test_failed_record(self) -> None:
        record = _record("failed", failed_stage="analysis", error_message="Error en análisis: x")
        assert state_from_record(record) == Failed("analysis", "Error en análisis: x")

    def test_missing_result_is_corrupt(self) -> None:
        with pytest.raises(PipelineError):
            state_from_record(_record("enriching"))
        with pytest.raises(PipelineError):
            state_from_record(_record("generating", analysis_result=EXTRACTION))

    def test_unknown_status(self) -> None:
        with pytest.raises(PipelineError):
            state_from_record(_record("queued"))


@pytest.mark.parametrize(
    ("status", "stage"),
    [
        ("pending", "analysis"),
        ("analyzing", "analysis"),
        ("enriching", "enrichment"),
        ("generating", "recommendation"),
    ],
)
def test_stage_for_status(status: str, stage: str) -> None:
    assert stage_for_status(status) == stage
