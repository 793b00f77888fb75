# orderpay/routes/webhooks.py
from __future__ import annotations
import json
from typing import Optional
from fastapi import APIRouter, Header, Request

from ..errors import ValidationError
from ..schemas.payments import WebhookAck
from ..services.webhooks import handle_webhook, verify_callback_token

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payment-provider", response_model=WebhookAck)
async def payment_provider_webhook(
    request: Request,
    x_callback_token: Optional[str] = Header(default=None),
):
    verify_callback_token(x_callback_token)
    raw = await request.body()
    try:
        body = json.loads(raw.decode("utf-8"))
    except ValueError:
        raise ValidationError("webhook body is not valid JSON")
    return await handle_webhook(body)
