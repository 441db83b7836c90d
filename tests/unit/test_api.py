"""HTTP API 测试：分析请求、触发回调、信号、经济日历、计费回调。"""

import hashlib
import hmac
import json
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.api import analysis, billing, calendar, signals
from app.api.deps import (
    get_billing_handler,
    get_dispatcher,
    get_event_analysis_service,
    get_redis_client,
    get_session_factory,
)
from app.billing.webhook import BillingWebhookHandler, HmacSignatureVerifier
from app.credits.ledger import CreditLedger
from app.exceptions import DependencyError
from app.models.calendar import EconomicEvent
from app.models.signal import TradingSignal
from app.pipeline.stages.base import StageOutcome
from app.pipeline.store import SqlRequestStore

SECRET = "whsec-test"


@pytest.fixture
def redis_mock() -> MagicMock:
    redis = MagicMock()
    redis.publish = AsyncMock()
    return redis


@pytest.fixture
def dispatcher() -> MagicMock:
    mock = MagicMock()
    mock.dispatch = AsyncMock(return_value=StageOutcome.ADVANCED)
    return mock


@pytest.fixture
def event_service() -> MagicMock:
    return MagicMock()


@pytest.fixture
def app(session_factory, redis_mock, dispatcher, event_service) -> FastAPI:
    app = FastAPI()
    for module in (analysis, billing, calendar, signals):
        app.include_router(module.router)
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis_client] = lambda: redis_mock
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_event_analysis_service] = lambda: event_service
    app.dependency_overrides[get_billing_handler] = lambda: BillingWebhookHandler(
        CreditLedger(session_factory), HmacSignatureVerifier(SECRET)
    )
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


class TestCreateAnalysis:
    async def test_created_and_published(self, client, add_profile, redis_mock) -> None:
        await add_profile("user-1", credits=2)

        resp = await client.post(
            "/api/v1/analysis",
            json={"user_id": "user-1", "image_path": "user-1/chart.png", "notes": "Doble suelo"},
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "pending"
        assert data["notes"] == "Doble suelo"
        assert "lease_token" not in data
        channel = redis_mock.publish.call_args.args[0]
        assert channel == f"analysis:{data['id']}"

    async def test_no_credits(self, client, add_profile) -> None:
        await add_profile("user-1", credits=0)

        resp = await client.post("/api/v1/analysis", json={"user_id": "user-1", "image_path": "a.png"})

        assert resp.status_code == 402
        assert resp.json()["detail"] == "No tienes créditos suficientes para un nuevo análisis."

    async def test_unknown_user(self, client) -> None:
        resp = await client.post("/api/v1/analysis", json={"user_id": "ghost", "image_path": "a.png"})
        assert resp.status_code == 404

    async def test_missing_image_path(self, client) -> None:
        resp = await client.post("/api/v1/analysis", json={"user_id": "user-1"})
        assert resp.status_code == 422

    async def test_without_redis_drives_in_background(self, app, client, add_profile) -> None:
        await add_profile("user-1")
        app.dependency_overrides[get_redis_client] = lambda: None

        with patch("app.api.analysis.build_dispatcher") as mock_build:
            mock_build.return_value.drive = AsyncMock()
            resp = await client.post("/api/v1/analysis", json={"user_id": "user-1", "image_path": "a.png"})

        assert resp.status_code == 201
        mock_build.return_value.drive.assert_awaited_once_with(resp.json()["id"])


class TestReadAnalysis:
    async def test_get_and_list(self, client, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "a.png")
        await store.create("user-2", "b.png")

        resp = await client.get(f"/api/v1/analysis/{record.id}")
        assert resp.status_code == 200
        assert resp.json()["image_path"] == "a.png"

        listed = await client.get("/api/v1/analysis", params={"user_id": "user-1"})
        assert [r["id"] for r in listed.json()] == [record.id]

    async def test_not_found(self, client) -> None:
        resp = await client.get("/api/v1/analysis/nope")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Análisis no encontrado."


class TestTrigger:
    async def test_dispatches_record(self, client, dispatcher) -> None:
        resp = await client.post(
            "/api/v1/analysis/hooks/trigger",
            json={"type": "UPDATE", "record": {"id": "req-1", "status": "enriching"}},
        )

        assert resp.status_code == 200
        assert resp.json() == {"request_id": "req-1", "outcome": "advanced"}
        dispatcher.dispatch.assert_awaited_once_with("req-1")

    async def test_missing_id(self, client, dispatcher) -> None:
        resp = await client.post("/api/v1/analysis/hooks/trigger", json={"record": {"status": "pending"}})

        assert resp.status_code == 400
        dispatcher.dispatch.assert_not_awaited()


class TestSignals:
    async def test_filter_and_order(self, client, session_factory) -> None:
        now = datetime(2024, 5, 1, 12, 0)
        async with session_factory() as session:
            for i, asset in enumerate(["EURUSD", "GBPUSD", "EURUSD"]):
                session.add(TradingSignal(
                    asset=asset,
                    direction="BUY",
                    entry_price=1.05,
                    stop_loss=1.04,
                    take_profit=1.07,
                    justification="Soporte",
                    technical_pattern="Rebote en EMA 200 + RSI Sobreventa",
                    created_at=now + timedelta(hours=i),
                ))
            await session.commit()

        resp = await client.get("/api/v1/signals", params={"asset": "eur/usd"})

        data = resp.json()
        assert [s["asset"] for s in data] == ["EURUSD", "EURUSD"]
        assert data[0]["created_at"] > data[1]["created_at"]


class TestCalendar:
    async def test_range_and_filters(self, client, session_factory) -> None:
        async with session_factory() as session:
            session.add_all([
                EconomicEvent(event_date=datetime(2024, 5, 3, 12, 30), event_name="NFP", currency="USD", impact="High"),
                EconomicEvent(event_date=datetime(2024, 5, 3, 9, 0), event_name="PMI", currency="EUR", impact="Medium"),
                EconomicEvent(event_date=datetime(2024, 5, 20, 12, 30), event_name="CPI", currency="USD", impact="High"),
            ])
            await session.commit()

        resp = await client.get(
            "/api/v1/calendar", params={"start": "2024-05-01", "end": "2024-05-07", "currency": "usd"}
        )

        assert [e["event_name"] for e in resp.json()] == ["NFP"]

    async def test_inverted_range(self, client) -> None:
        resp = await client.get("/api/v1/calendar", params={"start": "2024-05-07", "end": "2024-05-01"})
        assert resp.status_code == 400

    async def test_event_analysis(self, client, event_service) -> None:
        event_service.get_or_create = AsyncMock(return_value={"professional_description": "..."})

        resp = await client.post(
            "/api/v1/calendar/analysis",
            json={"event_name": "NFP", "currency": "usd", "event_date": "2024-05-03"},
        )

        assert resp.status_code == 200
        args = event_service.get_or_create.call_args.args
        assert args == ("NFP", "USD", date(2024, 5, 3))

    async def test_event_analysis_upstream_failure(self, client, event_service) -> None:
        event_service.get_or_create = AsyncMock(side_effect=DependencyError("fmp down"))

        resp = await client.post(
            "/api/v1/calendar/analysis",
            json={"event_name": "NFP", "currency": "USD", "event_date": "2024-05-03"},
        )

        assert resp.status_code == 502


class TestBillingWebhook:
    def _body(self, user_id: str = "user-1") -> bytes:
        return json.dumps({
            "id": "pay-1",
            "event_type": "PAYMENT_COMPLETED",
            "payment": {"metadata": {"supabase_user_id": user_id, "plan_id": "plan_basic_monthly"}},
        }).encode()

    def _sign(self, body: bytes) -> str:
        return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()

    async def test_grants_credits(self, client, add_profile) -> None:
        await add_profile("user-1", credits=1)
        body = self._body()

        resp = await client.post(
            "/api/v1/billing/webhook/dlocal", content=body, headers={"x-signature": self._sign(body)}
        )

        assert resp.status_code == 200
        assert resp.json() == {"received": True, "applied": True, "credits": 21}

    async def test_bad_signature(self, client, add_profile) -> None:
        await add_profile("user-1")
        resp = await client.post(
            "/api/v1/billing/webhook/dlocal", content=self._body(), headers={"x-signature": "deadbeef"}
        )
        assert resp.status_code == 400

    async def test_unknown_provider(self, client) -> None:
        resp = await client.post("/api/v1/billing/webhook/stripe", content=b"{}")
        assert resp.status_code == 404

    async def test_unknown_user(self, client) -> None:
        body = self._body("ghost")
        resp = await client.post(
            "/api/v1/billing/webhook/dlocal", content=body, headers={"x-signature": self._sign(body)}
        )
        assert resp.status_code == 404
