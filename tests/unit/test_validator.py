"""模型输出校验器测试：字段清单 + 领域规则。"""

import copy

import pytest

from app.ai.schemas import (
    ChartExtraction,
    EventAnalysis,
    MarketData,
    Recommendation,
    SignalVerdict,
)
from app.pipeline.validator import canonical_choice, is_unknown, validate


class TestValidateBasics:
    def test_non_object_rejected(self) -> None:
        result = validate(["not", "a", "dict"], ChartExtraction)
        assert result.valid is False
        assert result.errors == ["La respuesta no es un objeto JSON válido."]
        assert result.sanitized is None

    def test_missing_field_names_the_path(self, extraction) -> None:
        del extraction["niveles_clave"]
        result = validate(extraction, ChartExtraction)
        assert result.valid is False
        assert any("niveles_clave" in e for e in result.errors)
        assert any(e.startswith("Falta el campo obligatorio") for e in result.errors)

    def test_all_errors_reported(self, extraction) -> None:
        del extraction["niveles_clave"]
        del extraction["indicadores"]
        result = validate(extraction, ChartExtraction)
        assert len(result.errors) == 2


class TestChartExtraction:
    def test_valid_extraction(self, extraction) -> None:
        result = validate(extraction, ChartExtraction)
        assert result.valid is True
        assert result.sanitized["activo"] == "EUR/USD"

    def test_asset_and_timeframe_normalized(self, extraction) -> None:
        extraction["activo"] = "eurusd"
        extraction["temporalidad"] = "4 hours"
        result = validate(extraction, ChartExtraction)
        assert result.valid is True
        assert result.sanitized["activo"] == "EUR/USD"
        assert result.sanitized["temporalidad"] == "H4"

    @pytest.mark.parametrize("unknown", [None, "", "null", "NULL"])
    def test_unknown_values_become_null(self, extraction, unknown) -> None:
        extraction["activo"] = unknown
        extraction["temporalidad"] = unknown
        result = validate(extraction, ChartExtraction)
        assert result.valid is True
        assert result.sanitized["activo"] is None
        assert result.sanitized["temporalidad"] is None

    def test_unrecognized_asset_is_an_error(self, extraction) -> None:
        extraction["activo"] = "EU-R/USD"
        result = validate(extraction, ChartExtraction)
        assert result.valid is False
        assert any("activo" in e and "EU-R/USD" in e for e in result.errors)

    def test_unrecognized_timeframe_is_an_error(self, extraction) -> None:
        extraction["temporalidad"] = "cada rato"
        result = validate(extraction, ChartExtraction)
        assert result.valid is False
        assert any("temporalidad" in e for e in result.errors)

    def test_sentiment_case_insensitive(self, extraction) -> None:
        extraction["sentimiento_analisis"] = "bajista"
        result = validate(extraction, ChartExtraction)
        assert result.sanitized["sentimiento_analisis"] == "Bajista"

    def test_invalid_sentiment(self, extraction) -> None:
        extraction["sentimiento_analisis"] = "Eufórico"
        result = validate(extraction, ChartExtraction)
        assert result.valid is False
        assert any("sentimiento_analisis" in e for e in result.errors)

    def test_numeric_levels_accepted_as_text(self, extraction) -> None:
        extraction["niveles_clave"] = {"soportes": [1.08], "resistencias": ["1.0950"]}
        result = validate(extraction, ChartExtraction)
        assert result.valid is True
        assert result.sanitized["niveles_clave"]["soportes"] == ["1.08"]

    @pytest.mark.parametrize("field", ["patrones_identificados", "indicadores", "patrones_velas"])
    def test_null_collection_becomes_empty_list(self, extraction, field) -> None:
        extraction[field] = None
        result = validate(extraction, ChartExtraction)
        assert result.valid is True, result.errors
        assert result.sanitized[field] == []

    @pytest.mark.parametrize("field", ["patrones_identificados", "indicadores", "patrones_velas"])
    def test_null_items_dropped(self, extraction, field) -> None:
        item = extraction[field][0]
        extraction[field] = [None, item]
        result = validate(extraction, ChartExtraction)
        assert result.valid is True, result.errors
        assert len(result.sanitized[field]) == 1

    def test_null_key_levels_become_empty(self, extraction) -> None:
        extraction["niveles_clave"] = None
        result = validate(extraction, ChartExtraction)
        assert result.valid is True, result.errors
        assert result.sanitized["niveles_clave"] == {"soportes": [], "resistencias": []}

    def test_null_level_lists_and_items(self, extraction) -> None:
        extraction["niveles_clave"] = {"soportes": None, "resistencias": [None, "1.0950"]}
        result = validate(extraction, ChartExtraction)
        assert result.valid is True, result.errors
        assert result.sanitized["niveles_clave"] == {"soportes": [], "resistencias": ["1.0950"]}


class TestRecommendation:
    def test_valid(self, recommendation) -> None:
        assert validate(recommendation, Recommendation).valid is True

    def test_numeric_string_score_coerced(self, recommendation) -> None:
        recommendation["indice_confianza"]["puntuacion"] = "85"
        result = validate(recommendation, Recommendation)
        assert result.valid is True
        assert result.sanitized["indice_confianza"]["puntuacion"] == 85

    def test_non_numeric_score_rejected(self, recommendation) -> None:
        recommendation["indice_confianza"]["puntuacion"] = "alto"
        result = validate(recommendation, Recommendation)
        assert result.valid is False
        assert any("indice_confianza.puntuacion" in e for e in result.errors)

    @pytest.mark.parametrize("score", [-1, 101])
    def test_score_out_of_range(self, recommendation, score) -> None:
        recommendation["indice_confianza"]["puntuacion"] = score
        assert validate(recommendation, Recommendation).valid is False

    def test_wait_requires_watch_plan(self, recommendation) -> None:
        recommendation["recomendacion_estrategica"]["estrategia"] = "ESPERAR"
        result = validate(recommendation, Recommendation)
        assert result.valid is False
        assert any("plan_de_vigilancia" in e for e in result.errors)

    def test_wait_with_partial_watch_plan(self, recommendation) -> None:
        strategic = recommendation["recomendacion_estrategica"]
        strategic["estrategia"] = "ESPERAR"
        strategic["plan_de_vigilancia"] = {"condicion_compra": "Cierre sobre 1.0950"}
        result = validate(recommendation, Recommendation)
        assert result.valid is False
        assert any("condicion_venta" in e for e in result.errors)

    def test_wait_with_complete_watch_plan(self, recommendation) -> None:
        strategic = recommendation["recomendacion_estrategica"]
        strategic["estrategia"] = "esperar"
        strategic["plan_de_vigilancia"] = {
            "condicion_compra": "Cierre sobre 1.0950",
            "condicion_venta": "Cierre bajo 1.0790",
        }
        result = validate(recommendation, Recommendation)
        assert result.valid is True
        assert result.sanitized["recomendacion_estrategica"]["estrategia"] == "ESPERAR"

    def test_unknown_strategy(self, recommendation) -> None:
        recommendation["recomendacion_estrategica"]["estrategia"] = "MANTENER"
        assert validate(recommendation, Recommendation).valid is False


class TestMarketData:
    def test_placeholder_indicator_allowed(self, market) -> None:
        market["indicadores"]["MACD"] = "Límite de API alcanzado"
        assert validate(market, MarketData).valid is True

    def test_missing_price_key(self, market) -> None:
        del market["precio_actual"]
        assert validate(market, MarketData).valid is False


class TestSignalVerdict:
    def _signal(self, **overrides) -> dict:
        signal = {
            "asset": "EURUSD",
            "direction": "COMPRA",
            "entry_price": 1.0850,
            "stop_loss": 1.0800,
            "take_profit": 1.0950,
            "justification": "Rebote en EMA 200",
        }
        signal.update(overrides)
        return signal

    def test_valid_buy(self) -> None:
        result = validate({"status": "valida", "signal": self._signal()}, SignalVerdict)
        assert result.valid is True

    @pytest.mark.parametrize("status", ["válida", "Válida", " VALIDA "])
    def test_accented_status_accepted(self, status) -> None:
        result = validate({"status": status, "signal": self._signal()}, SignalVerdict)
        assert result.valid is True, result.errors
        assert result.sanitized["status"] == "valida"

    def test_buy_with_inverted_levels(self) -> None:
        raw = {"status": "valida", "signal": self._signal(stop_loss=1.09)}
        result = validate(raw, SignalVerdict)
        assert result.valid is False
        assert any("Niveles incoherentes" in e for e in result.errors)

    def test_valid_sell(self) -> None:
        raw = {
            "status": "valida",
            "signal": self._signal(direction="venta", stop_loss=1.09, take_profit=1.08),
        }
        result = validate(raw, SignalVerdict)
        assert result.valid is True
        assert result.sanitized["signal"]["direction"] == "VENTA"

    def test_valid_requires_signal(self) -> None:
        assert validate({"status": "valida"}, SignalVerdict).valid is False

    def test_discarded(self) -> None:
        raw = {"status": "descartada", "justification": "Tendencia bajista fuerte"}
        assert validate(raw, SignalVerdict).valid is True


class TestEventAnalysis:
    def _analysis(self, n: int) -> dict:
        return {
            "professional_description": "Mide el empleo no agrícola.",
            "historical_analysis": "Superó previsiones 3 de 5 veces.",
            "forecast_scenarios": [
                {"scenario": f"Escenario {i}", "recommendation": "Esperar"} for i in range(n)
            ],
        }

    def test_three_scenarios(self) -> None:
        assert validate(self._analysis(3), EventAnalysis).valid is True

    @pytest.mark.parametrize("n", [2, 4])
    def test_wrong_scenario_count(self, n) -> None:
        assert validate(self._analysis(n), EventAnalysis).valid is False


class TestHelpers:
    @pytest.mark.parametrize("raw", [None, "", "  ", "null", "None"])
    def test_is_unknown(self, raw) -> None:
        assert is_unknown(raw) is True

    def test_known_value(self) -> None:
        assert is_unknown("EURUSD") is False

    def test_canonical_choice(self) -> None:
        assert canonical_choice(" comprar ", ("COMPRAR", "VENDER")) == "COMPRAR"
        assert canonical_choice("otro", ("COMPRAR",)) == "otro"
        assert canonical_choice(5, ("COMPRAR",)) == 5
        assert canonical_choice("Válida", ("valida", "descartada")) == "valida"
        assert canonical_choice("VENTA", ("COMPRA", "VENTA")) == "VENTA"


def test_sanitized_is_independent_copy(extraction) -> None:
    original = copy.deepcopy(extraction)
    validate(extraction, ChartExtraction)
    assert extraction == original
