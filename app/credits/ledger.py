"""分析额度账本。

扣减是单条条件 UPDATE（credits > 0 时减一），读改写在数据库内原子完成。
按请求扣费时，请求的 credit_charged 标记与余额在同一事务内更新，
同一请求无论被触发多少次都最多扣一次。
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.credits.plans import Plan
from app.exceptions import InsufficientCreditsError, ProfileNotFoundError
from app.models.analysis import AnalysisRequest
from app.models.base import utcnow
from app.models.profile import ProcessedWebhookEvent, UserProfile
from app.pipeline.state import PipelineStatus

logger = logging.getLogger(__name__)


class CreditLedger:
    """用户额度读写。"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def balance(self, user_id: str) -> int:
        """当前余额，用户不存在抛 ProfileNotFoundError。"""
        async with self._session_factory() as session:
            credits = await session.scalar(
                select(UserProfile.analysis_credits).where(UserProfile.id == user_id)
            )
        if credits is None:
            raise ProfileNotFoundError(f"用户 {user_id} 不存在")
        return credits

    async def deduct(self, user_id: str) -> int:
        """扣除一次额度并返回新余额。

        Raises:
            InsufficientCreditsError: 余额为 0
            ProfileNotFoundError: 用户不存在
        """
        async with self._session_factory() as session:
            new_balance = await self._deduct_in(session, user_id)
            await session.commit()
        return new_balance

    async def deduct_for_request(self, request_id: str, user_id: str) -> int | None:
        """为已完成的请求扣费，至多一次。

        Returns:
            新余额；请求未完成或已扣过费时返回 None
        """
        async with self._session_factory() as session:
            flagged = await session.execute(
                update(AnalysisRequest)
                .where(
                    AnalysisRequest.id == request_id,
                    AnalysisRequest.status == PipelineStatus.COMPLETE.value,
                    AnalysisRequest.credit_charged.is_(False),
                )
                .values(credit_charged=True)
                .execution_options(synchronize_session=False)
            )
            if flagged.rowcount != 1:
                await session.rollback()
                return None
            # 余额不足时抛异常，标记随事务一起回滚
            new_balance = await self._deduct_in(session, user_id)
            await session.commit()
        return new_balance

    async def _deduct_in(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            update(UserProfile)
            .where(UserProfile.id == user_id, UserProfile.analysis_credits > 0)
            .values(
                analysis_credits=UserProfile.analysis_credits - 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            exists = await session.scalar(select(UserProfile.id).where(UserProfile.id == user_id))
            if exists is None:
                raise ProfileNotFoundError(f"用户 {user_id} 不存在")
            raise InsufficientCreditsError(f"用户 {user_id} 额度不足")

        return await session.scalar(
            select(UserProfile.analysis_credits).where(UserProfile.id == user_id)
        )

    async def grant(
        self,
        event_id: str,
        provider: str,
        user_id: str,
        plan_id: str,
        plan: Plan,
    ) -> int | None:
        """按计费事件充值，同一事件 id 只生效一次。

        Returns:
            新余额；事件已处理过时返回 None

        Raises:
            ProfileNotFoundError: 用户不存在
        """
        async with self._session_factory() as session:
            if await session.get(ProcessedWebhookEvent, event_id) is not None:
                return None

            session.add(ProcessedWebhookEvent(
                event_id=event_id,
                provider=provider,
                user_id=user_id,
                plan_id=plan_id,
                credits_granted=plan.credits,
            ))
            try:
                await session.flush()
            except IntegrityError:
                # 并发投递的同一事件已先写入
                await session.rollback()
                return None

            result = await session.execute(
                update(UserProfile)
                .where(UserProfile.id == user_id)
                .values(
                    analysis_credits=UserProfile.analysis_credits + plan.credits,
                    subscription_plan=plan.name,
                    subscription_status="active",
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise ProfileNotFoundError(f"用户 {user_id} 不存在")

            new_balance = await session.scalar(
                select(UserProfile.analysis_credits).where(UserProfile.id == user_id)
            )
            await session.commit()

        logger.info(
            "[额度] %s 事件 %s：user=%s 计划 %s +%d，余额 %d",
            provider, event_id, user_id, plan.name, plan.credits, new_balance,
        )
        return new_balance

    async def reconcile(self, limit: int = 100) -> int:
        """补扣已完成但未扣费的请求，返回补扣成功数。"""
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(AnalysisRequest.id, AnalysisRequest.user_id)
                .where(
                    AnalysisRequest.status == PipelineStatus.COMPLETE.value,
                    AnalysisRequest.credit_charged.is_(False),
                )
                .order_by(AnalysisRequest.updated_at)
                .limit(limit)
            )).all()

        charged = 0
        for request_id, user_id in rows:
            try:
                if await self.deduct_for_request(request_id, user_id) is not None:
                    charged += 1
            except (InsufficientCreditsError, ProfileNotFoundError) as exc:
                logger.warning("[额度] 请求 %s 补扣失败：%s", request_id, exc)

        if rows:
            logger.info("[额度] 对账完成：待补扣 %d，成功 %d", len(rows), charged)
        return charged
