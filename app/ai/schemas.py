"""AI 输出数据模型。

定义各阶段模型响应的 Pydantic 校验模型（字段清单 + 领域规则），
以及随请求发送给 Gemini 的输出结构约束（response_schema）。
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.pipeline.normalizer import TIMEFRAMES, normalize_asset, normalize_timeframe
from app.pipeline.validator import canonical_choice, is_unknown

SENTIMENTS = ("Alcista", "Bajista", "Neutral")
STRATEGIES = ("COMPRAR", "VENDER", "ESPERAR")
SIGNAL_DIRECTIONS = ("COMPRA", "VENTA")


class _ModelOutput(BaseModel):
    """模型输出公共配置：数值可写入文本字段（"1.0850" 与 1.085 等价对待）。"""

    model_config = ConfigDict(coerce_numbers_to_str=True)


# ---------------------------------------------------------------------------
# 图表识别
# ---------------------------------------------------------------------------


class IdentifiedPattern(_ModelOutput):
    nombre_patron: str | None = None
    descripcion: str | None = None


class ChartIndicator(_ModelOutput):
    nombre_indicador: str | None = None
    parametros: str | None = None
    estado_o_valor: str | None = None


class CandlePattern(_ModelOutput):
    nombre_patron: str | None = None
    ubicacion: str | None = None


def _drop_nulls(value: Any) -> Any:
    """null 列表视为空列表，并去掉列表中的 null 元素。"""
    if value is None:
        return []
    if isinstance(value, list):
        return [item for item in value if item is not None]
    return value


class KeyLevels(_ModelOutput):
    soportes: list[str] = Field(default_factory=list)
    resistencias: list[str] = Field(default_factory=list)

    @field_validator("soportes", "resistencias", mode="before")
    @classmethod
    def _null_levels(cls, value: Any) -> Any:
        return _drop_nulls(value)


class ChartExtraction(_ModelOutput):
    """图表识别结果，所有顶层字段必须出现，未知时为 null。"""

    activo: str | None
    temporalidad: str | None
    patrones_identificados: list[IdentifiedPattern]
    indicadores: list[ChartIndicator]
    patrones_velas: list[CandlePattern]
    niveles_clave: KeyLevels
    evaluacion_niveles: str | None
    sentimiento_analisis: Literal["Alcista", "Bajista", "Neutral"] | None

    @field_validator("patrones_identificados", "indicadores", "patrones_velas", mode="before")
    @classmethod
    def _null_collections(cls, value: Any) -> Any:
        return _drop_nulls(value)

    @field_validator("niveles_clave", mode="before")
    @classmethod
    def _null_key_levels(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("activo", mode="before")
    @classmethod
    def _normalize_asset(cls, value: Any) -> str | None:
        if is_unknown(value):
            return None
        normalized = normalize_asset(value)
        if normalized is None:
            raise ValueError(f"Activo inválido: '{value}'")
        return normalized

    @field_validator("temporalidad", mode="before")
    @classmethod
    def _normalize_timeframe(cls, value: Any) -> str | None:
        if is_unknown(value):
            return None
        normalized = normalize_timeframe(value)
        if normalized is None:
            raise ValueError(f"Temporalidad inválida: '{value}'")
        return normalized

    @field_validator("sentimiento_analisis", mode="before")
    @classmethod
    def _canonical_sentiment(cls, value: Any) -> Any:
        if is_unknown(value):
            return None
        return canonical_choice(value, SENTIMENTS)


# ---------------------------------------------------------------------------
# 市场数据
# ---------------------------------------------------------------------------


class CalendarEntry(_ModelOutput):
    noticia: str | None = None
    importancia: str | None = None
    actual: str | None = None
    prevision: str | None = None
    previo: str | None = None
    tiempo_restante: str | None = None


class CalendarSplit(BaseModel):
    noticias_pasadas: list[CalendarEntry] = Field(default_factory=list)
    noticias_futuras: list[CalendarEntry] = Field(default_factory=list)


class NewsItem(_ModelOutput):
    titulo: str | None = None
    fuente: str | None = None
    url: str | None = None
    resumen: str | None = None
    sentimiento: str | None = None
    publicado: str | None = None


class MarketData(BaseModel):
    """行情增强结果。indicadores 的值为指标快照或限流占位文本。"""

    precio_actual: float | None
    indicadores: dict[str, Any]
    noticias: list[NewsItem]
    calendario_economico: CalendarSplit


# ---------------------------------------------------------------------------
# 最终建议
# ---------------------------------------------------------------------------


class AnalyticalSummary(_ModelOutput):
    analisis_fundamental: str
    puntos_confluencia: list[str]
    puntos_divergencia: list[str]


class ConfidenceIndex(_ModelOutput):
    puntuacion: int = Field(ge=0, le=100)
    justificacion: str


class TradingPlan(_ModelOutput):
    entrada_sugerida: str
    stop_loss: str
    take_profit: str


class WatchPlan(_ModelOutput):
    condicion_compra: str | None = None
    condicion_venta: str | None = None


class StrategicRecommendation(_ModelOutput):
    estrategia: Literal["COMPRAR", "VENDER", "ESPERAR"]
    justificacion_estrategia: str
    plan_de_trading: TradingPlan
    plan_de_vigilancia: WatchPlan | None = None

    @field_validator("estrategia", mode="before")
    @classmethod
    def _canonical_strategy(cls, value: Any) -> Any:
        return canonical_choice(value, STRATEGIES)

    @model_validator(mode="after")
    def _watch_plan_required_when_waiting(self) -> StrategicRecommendation:
        if self.estrategia != "ESPERAR":
            return self
        plan = self.plan_de_vigilancia
        missing = [
            name
            for name in ("condicion_compra", "condicion_venta")
            if plan is None or not (getattr(plan, name) or "").strip()
        ]
        if missing:
            raise ValueError(
                "Con estrategia 'ESPERAR' es obligatorio 'plan_de_vigilancia' con "
                + " y ".join(missing)
            )
        return self


class Recommendation(_ModelOutput):
    resumen_analitico: AnalyticalSummary
    indice_confianza: ConfidenceIndex
    recomendacion_estrategica: StrategicRecommendation


# ---------------------------------------------------------------------------
# 信号复核
# ---------------------------------------------------------------------------


class ValidatedSignal(_ModelOutput):
    asset: str
    direction: Literal["COMPRA", "VENTA"]
    entry_price: float
    stop_loss: float
    take_profit: float
    justification: str

    @field_validator("direction", mode="before")
    @classmethod
    def _canonical_direction(cls, value: Any) -> Any:
        return canonical_choice(value, SIGNAL_DIRECTIONS)

    @model_validator(mode="after")
    def _levels_on_correct_side(self) -> ValidatedSignal:
        if self.direction == "COMPRA":
            ok = self.stop_loss < self.entry_price < self.take_profit
        else:
            ok = self.take_profit < self.entry_price < self.stop_loss
        if not ok:
            raise ValueError(
                f"Niveles incoherentes para {self.direction}: "
                f"entrada={self.entry_price}, stop={self.stop_loss}, objetivo={self.take_profit}"
            )
        return self


class SignalVerdict(_ModelOutput):
    status: Literal["valida", "descartada"]
    signal: ValidatedSignal | None = None
    justification: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _canonical_status(cls, value: Any) -> Any:
        return canonical_choice(value, ("valida", "descartada"))

    @model_validator(mode="after")
    def _signal_required_when_valid(self) -> SignalVerdict:
        if self.status == "valida" and self.signal is None:
            raise ValueError("Una señal 'valida' debe incluir el objeto 'signal'")
        return self


# ---------------------------------------------------------------------------
# 经济事件分析
# ---------------------------------------------------------------------------


class ForecastScenario(_ModelOutput):
    scenario: str
    recommendation: str


class EventAnalysis(_ModelOutput):
    professional_description: str
    historical_analysis: str
    forecast_scenarios: list[ForecastScenario] = Field(min_length=3, max_length=3)


# ---------------------------------------------------------------------------
# Gemini 输出结构约束
# ---------------------------------------------------------------------------


def _nullable_string() -> dict[str, Any]:
    return {"type": "STRING", "nullable": True}


EXTRACTION_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "activo": _nullable_string(),
        "temporalidad": {"type": "STRING", "enum": list(TIMEFRAMES), "nullable": True},
        "patrones_identificados": {
            "type": "ARRAY",
            "nullable": True,
            "items": {
                "type": "OBJECT",
                "properties": {
                    "nombre_patron": _nullable_string(),
                    "descripcion": _nullable_string(),
                },
            },
        },
        "indicadores": {
            "type": "ARRAY",
            "nullable": True,
            "items": {
                "type": "OBJECT",
                "properties": {
                    "nombre_indicador": _nullable_string(),
                    "parametros": _nullable_string(),
                    "estado_o_valor": _nullable_string(),
                },
            },
        },
        "patrones_velas": {
            "type": "ARRAY",
            "nullable": True,
            "items": {
                "type": "OBJECT",
                "properties": {
                    "nombre_patron": _nullable_string(),
                    "ubicacion": _nullable_string(),
                },
            },
        },
        "niveles_clave": {
            "type": "OBJECT",
            "nullable": True,
            "properties": {
                "soportes": {"type": "ARRAY", "items": {"type": "STRING"}},
                "resistencias": {"type": "ARRAY", "items": {"type": "STRING"}},
            },
        },
        "evaluacion_niveles": _nullable_string(),
        "sentimiento_analisis": {"type": "STRING", "enum": list(SENTIMENTS), "nullable": True},
    },
    "required": [
        "activo",
        "temporalidad",
        "patrones_identificados",
        "indicadores",
        "patrones_velas",
        "niveles_clave",
        "evaluacion_niveles",
        "sentimiento_analisis",
    ],
}

RECOMMENDATION_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "resumen_analitico": {
            "type": "OBJECT",
            "properties": {
                "analisis_fundamental": {"type": "STRING"},
                "puntos_confluencia": {"type": "ARRAY", "items": {"type": "STRING"}},
                "puntos_divergencia": {"type": "ARRAY", "items": {"type": "STRING"}},
            },
            "required": ["analisis_fundamental", "puntos_confluencia", "puntos_divergencia"],
        },
        "indice_confianza": {
            "type": "OBJECT",
            "properties": {
                "puntuacion": {
                    "type": "INTEGER",
                    "description": "Un número entero (no decimal) entre 0 y 100.",
                },
                "justificacion": {"type": "STRING"},
            },
            "required": ["puntuacion", "justificacion"],
        },
        "recomendacion_estrategica": {
            "type": "OBJECT",
            "properties": {
                "estrategia": {"type": "STRING", "enum": list(STRATEGIES)},
                "justificacion_estrategia": {"type": "STRING"},
                "plan_de_trading": {
                    "type": "OBJECT",
                    "properties": {
                        "entrada_sugerida": {"type": "STRING"},
                        "stop_loss": {"type": "STRING"},
                        "take_profit": {"type": "STRING"},
                    },
                    "required": ["entrada_sugerida", "stop_loss", "take_profit"],
                },
                "plan_de_vigilancia": {
                    "type": "OBJECT",
                    "description": "Obligatorio si la estrategia es 'ESPERAR'.",
                    "properties": {
                        "condicion_compra": {"type": "STRING"},
                        "condicion_venta": {"type": "STRING"},
                    },
                },
            },
            "required": ["estrategia", "justificacion_estrategia", "plan_de_trading"],
        },
    },
    "required": ["resumen_analitico", "indice_confianza", "recomendacion_estrategica"],
}
