"""额度账本测试。"""

import pytest
from sqlalchemy import update

from app.credits.ledger import CreditLedger
from app.credits.plans import PLANS, resolve_plan
from app.exceptions import InsufficientCreditsError, ProfileNotFoundError
from app.models.analysis import AnalysisRequest
from app.models.profile import UserProfile
from app.pipeline.store import SqlRequestStore


async def _complete_request(session_factory, user_id: str = "user-1") -> str:
    record = await SqlRequestStore(session_factory).create(user_id, "charts/a.png")
    async with session_factory() as session:
        await session.execute(
            update(AnalysisRequest)
            .where(AnalysisRequest.id == record.id)
            .values(status="complete", final_recommendation={"ok": True})
        )
        await session.commit()
    return record.id


class TestDeduct:
    async def test_deduct_decrements(self, session_factory, add_profile) -> None:
        await add_profile("user-1", credits=2)
        ledger = CreditLedger(session_factory)
        assert await ledger.deduct("user-1") == 1
        assert await ledger.deduct("user-1") == 0

    async def test_never_negative(self, session_factory, add_profile) -> None:
        await add_profile("user-1", credits=0)
        ledger = CreditLedger(session_factory)
        with pytest.raises(InsufficientCreditsError):
            await ledger.deduct("user-1")
        assert await ledger.balance("user-1") == 0

    async def test_unknown_user(self, session_factory) -> None:
        ledger = CreditLedger(session_factory)
        with pytest.raises(ProfileNotFoundError):
            await ledger.deduct("ghost")
        with pytest.raises(ProfileNotFoundError):
            await ledger.balance("ghost")


class TestDeductForRequest:
    async def test_charges_exactly_once(self, session_factory, add_profile) -> None:
        await add_profile("user-1", credits=5)
        request_id = await _complete_request(session_factory)
        ledger = CreditLedger(session_factory)

        results = [await ledger.deduct_for_request(request_id, "user-1") for _ in range(3)]

        assert results == [4, None, None]
        assert await ledger.balance("user-1") == 4

    async def test_incomplete_request_not_charged(self, session_factory, add_profile) -> None:
        await add_profile("user-1", credits=5)
        record = await SqlRequestStore(session_factory).create("user-1", "a.png")
        ledger = CreditLedger(session_factory)

        assert await ledger.deduct_for_request(record.id, "user-1") is None
        assert await ledger.balance("user-1") == 5

    async def test_insufficient_credits_rolls_back_flag(self, session_factory, add_profile) -> None:
        await add_profile("user-1", credits=0)
        request_id = await _complete_request(session_factory)
        ledger = CreditLedger(session_factory)

        with pytest.raises(InsufficientCreditsError):
            await ledger.deduct_for_request(request_id, "user-1")

        record = await SqlRequestStore(session_factory).fetch(request_id)
        assert record.credit_charged is False


class TestReconcile:
    async def test_charges_missed_requests(self, session_factory, add_profile) -> None:
        await add_profile("user-1", credits=5)
        await add_profile("user-2", credits=0)
        await _complete_request(session_factory, "user-1")
        await _complete_request(session_factory, "user-1")
        await _complete_request(session_factory, "user-2")
        ledger = CreditLedger(session_factory)

        assert await ledger.reconcile() == 2
        assert await ledger.balance("user-1") == 3
        # 第二次对账没有可补扣的请求（user-2 额度仍为 0）
        assert await ledger.reconcile() == 0


class TestGrant:
    async def test_grant_adds_credits_and_plan(self, session_factory, add_profile) -> None:
        await add_profile("user-1", credits=1)
        ledger = CreditLedger(session_factory)
        plan = resolve_plan("dlocal", "plan_advanced_monthly")

        assert await ledger.grant("evt-1", "dlocal", "user-1", "plan_advanced_monthly", plan) == 51

        async with session_factory() as session:
            profile = await session.get(UserProfile, "user-1")
        assert profile.subscription_plan == "Avanzado"
        assert profile.subscription_status == "active"

    async def test_duplicate_event_applied_once(self, session_factory, add_profile) -> None:
        await add_profile("user-1", credits=0)
        ledger = CreditLedger(session_factory)
        plan = resolve_plan("paypal", "P-123ABC456DEF_M_BASIC")

        assert await ledger.grant("evt-9", "paypal", "user-1", "P-123ABC456DEF_M_BASIC", plan) == 20
        assert await ledger.grant("evt-9", "paypal", "user-1", "P-123ABC456DEF_M_BASIC", plan) is None
        assert await ledger.balance("user-1") == 20

    async def test_unknown_user_can_be_redelivered(self, session_factory, add_profile) -> None:
        ledger = CreditLedger(session_factory)
        plan = resolve_plan("dlocal", "plan_basic_monthly")
        with pytest.raises(ProfileNotFoundError):
            await ledger.grant("evt-2", "dlocal", "late-user", "plan_basic_monthly", plan)

        # 事件记录随失败一起回滚，用户创建后重投可以生效
        await add_profile("late-user", credits=0)
        assert await ledger.grant("evt-2", "dlocal", "late-user", "plan_basic_monthly", plan) == 20


class TestPlans:
    def test_yearly_is_twelve_months(self) -> None:
        monthly = resolve_plan("dlocal", "plan_pro_monthly")
        yearly = resolve_plan("dlocal", "plan_pro_yearly")
        assert yearly.credits == monthly.credits * 12
        assert yearly.name == "Profesional Anual"

    def test_paypal_ids(self) -> None:
        assert resolve_plan("paypal", "P-789GHI012JKL_Y_EXPERT").credits == 6000

    def test_unknown(self) -> None:
        assert resolve_plan("dlocal", "plan_free") is None
        assert resolve_plan("stripe", "plan_basic_monthly") is None

    def test_both_providers_cover_all_tiers(self) -> None:
        assert len(PLANS["dlocal"]) == len(PLANS["paypal"]) == 8
