from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from cantina_bot.dependencies import get_engine
from cantina_bot.logging_config import get_logger
from cantina_bot.schemas.webhook import INBOUND_SHAPES, InboundMessage, WebhookResponse
from cantina_bot.services.conversation_service import ConversationEngine

logger = get_logger("webhook")

router = APIRouter()


def normalize_payload(payload: Any) -> Optional[InboundMessage]:
    """Map any accepted gateway payload to (phone, text); None when it is not a customer message."""
    if not isinstance(payload, dict):
        return None
    for shape in INBOUND_SHAPES:
        try:
            event = shape.model_validate(payload)
        except ValidationError:
            continue
        inbound = event.to_inbound()
        if inbound is None or not inbound.phone:
            return None
        return inbound
    return None


@router.get("/webhook")
async def webhook_probe():
    """Health probe for gateway UI checks; real webhooks must use POST."""
    return {"ok": True, "message": "Use POST with JSON payload"}


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(request: Request, engine: ConversationEngine = Depends(get_engine)):
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Webhook body is not JSON, ignoring")
        return WebhookResponse(success=True, message="Ignored: body is not JSON")

    inbound = normalize_payload(payload)
    if inbound is None:
        logger.info(
            "Webhook payload ignored",
            extra={"context": {"keys": sorted(payload.keys()) if isinstance(payload, dict) else None}},
        )
        return WebhookResponse(success=True, message="Ignored: unrecognized payload")

    try:
        session = await engine.handle_inbound(inbound.phone, inbound.text)
    except Exception as e:
        logger.exception(f"Webhook processing failed: {e}", extra={"context": {"phone": inbound.phone}})
        return JSONResponse(
            status_code=500,
            content=WebhookResponse(success=False, message="Internal error").model_dump(),
        )

    return WebhookResponse(success=True, message="Processed", state=session.state.value)
