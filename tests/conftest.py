"""共享测试夹具：内存 SQLite 数据库、无 .env 的配置、示例数据。"""

from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.models import Base, UserProfile


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, gemini_api_key="test-key")


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def add_profile(session_factory):
    async def _add(user_id: str = "user-1", credits: int = 5) -> UserProfile:
        async with session_factory() as session:
            profile = UserProfile(id=user_id, analysis_credits=credits)
            session.add(profile)
            await session.commit()
            return profile

    return _add


@pytest.fixture
def extraction() -> dict[str, Any]:
    """已校验的图表识别结果。"""
    return {
        "activo": "EUR/USD",
        "temporalidad": "H4",
        "patrones_identificados": [{"nombre_patron": "Doble suelo", "descripcion": "Zona 1.0800"}],
        "indicadores": [{"nombre_indicador": "RSI", "parametros": "14", "estado_o_valor": "32"}],
        "patrones_velas": [{"nombre_patron": "Martillo", "ubicacion": "soporte"}],
        "niveles_clave": {"soportes": ["1.0800"], "resistencias": ["1.0950"]},
        "evaluacion_niveles": "Soporte respetado dos veces",
        "sentimiento_analisis": "Alcista",
    }


@pytest.fixture
def market() -> dict[str, Any]:
    return {
        "precio_actual": 1.0852,
        "indicadores": {"RSI": {"fecha": "2024-05-01", "RSI": "41.20"}},
        "noticias": [],
        "calendario_economico": {"noticias_pasadas": [], "noticias_futuras": []},
    }


@pytest.fixture
def recommendation() -> dict[str, Any]:
    """模型返回的最终建议原始 JSON。"""
    return {
        "resumen_analitico": {
            "analisis_fundamental": "El dólar se debilita tras datos de empleo.",
            "puntos_confluencia": ["Doble suelo en soporte", "RSI saliendo de sobreventa"],
            "puntos_divergencia": ["Noticias mixtas"],
        },
        "indice_confianza": {"puntuacion": 72, "justificacion": "Confluencia técnica clara."},
        "recomendacion_estrategica": {
            "estrategia": "COMPRAR",
            "justificacion_estrategia": "Rebote en soporte con momentum.",
            "plan_de_trading": {
                "entrada_sugerida": "1.0855",
                "stop_loss": "1.0790",
                "take_profit": "1.0980",
            },
        },
    }
