"""计费回调处理：支付成功 → 按计划充值额度。

支持 dlocal（PAYMENT_COMPLETED）与 paypal（BILLING.SUBSCRIPTION.ACTIVATED）。
签名校验是可替换的协作者；同一事件 id 重复投递只充值一次。
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from app.credits.ledger import CreditLedger
from app.credits.plans import resolve_plan
from app.exceptions import WebhookError

logger = logging.getLogger(__name__)

# 各渠道携带签名的请求头
SIGNATURE_HEADERS = {
    "dlocal": "x-signature",
    "paypal": "paypal-transmission-sig",
}


class SignatureVerifier(Protocol):
    def verify(self, body: bytes, signature: str | None) -> bool: ...


class HmacSignatureVerifier:
    """HMAC-SHA256 共享密钥签名校验，密钥为空时拒绝所有请求。"""

    def __init__(self, secret: str) -> None:
        self._secret = secret.encode()

    def verify(self, body: bytes, signature: str | None) -> bool:
        if not self._secret or not signature:
            return False
        expected = hmac.new(self._secret, body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip().removeprefix("sha256=").lower())


@dataclass(frozen=True)
class CreditGrantEvent:
    event_id: str
    provider: str
    user_id: str
    plan_id: str


def parse_event(provider: str, payload: dict[str, Any]) -> CreditGrantEvent | None:
    """解析回调载荷。非充值类事件返回 None，关键字段缺失抛 WebhookError。"""
    if provider == "dlocal":
        if payload.get("event_type") != "PAYMENT_COMPLETED":
            return None
        payment = payload.get("payment") or {}
        metadata = payment.get("metadata") or {}
        event_id = payload.get("id") or payment.get("id")
        user_id = metadata.get("supabase_user_id")
        plan_id = metadata.get("plan_id")
    elif provider == "paypal":
        if payload.get("event_type") != "BILLING.SUBSCRIPTION.ACTIVATED":
            return None
        resource = payload.get("resource") or {}
        event_id = payload.get("id")
        user_id = resource.get("custom_id")
        plan_id = resource.get("plan_id")
    else:
        raise WebhookError(f"未知支付渠道：{provider}")

    if not (event_id and user_id and plan_id):
        raise WebhookError("回调缺少事件 id、用户或计划信息")
    return CreditGrantEvent(
        event_id=str(event_id),
        provider=provider,
        user_id=str(user_id),
        plan_id=str(plan_id),
    )


class BillingWebhookHandler:
    """校验签名 → 解析事件 → 幂等充值。"""

    def __init__(self, ledger: CreditLedger, verifier: SignatureVerifier) -> None:
        self._ledger = ledger
        self._verifier = verifier

    async def handle(self, provider: str, body: bytes, signature: str | None) -> dict[str, Any]:
        if not self._verifier.verify(body, signature):
            logger.warning("[计费] %s 回调签名校验失败", provider)
            raise WebhookError("签名无效")

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise WebhookError("回调载荷不是合法 JSON") from exc
        if not isinstance(payload, dict):
            raise WebhookError("回调载荷不是 JSON 对象")

        event = parse_event(provider, payload)
        if event is None:
            logger.info("[计费] %s 事件 %s 无需处理", provider, payload.get("event_type"))
            return {"received": True, "applied": False}

        plan = resolve_plan(provider, event.plan_id)
        if plan is None:
            raise WebhookError(f"未知计划：{event.plan_id}")

        balance = await self._ledger.grant(
            event.event_id, provider, event.user_id, event.plan_id, plan
        )
        if balance is None:
            logger.info("[计费] %s 事件 %s 已处理过，忽略", provider, event.event_id)
            return {"received": True, "applied": False, "duplicate": True}
        return {"received": True, "applied": True, "credits": balance}
