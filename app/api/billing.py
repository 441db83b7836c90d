"""计费回调 API。"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.deps import get_billing_handler
from app.billing.webhook import SIGNATURE_HEADERS, BillingWebhookHandler
from app.exceptions import ProfileNotFoundError, WebhookError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.post("/webhook/{provider}")
async def billing_webhook(
    provider: str,
    request: Request,
    handler: BillingWebhookHandler = Depends(get_billing_handler),
) -> dict[str, Any]:
    header = SIGNATURE_HEADERS.get(provider)
    if header is None:
        raise HTTPException(status_code=404, detail="Proveedor de pago desconocido.")

    body = await request.body()
    try:
        return await handler.handle(provider, body, request.headers.get(header))
    except WebhookError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ProfileNotFoundError as exc:
        logger.error("[计费] %s 回调用户不存在：%s", provider, exc)
        raise HTTPException(status_code=404, detail="Usuario no encontrado.")
