"""WhatsApp webhook endpoint — receives Twilio messages and simulator calls."""

from __future__ import annotations

import hmac
from typing import Optional

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from restobot.config import settings
from restobot.conversation.bot_config import get_bot_config
from restobot.conversation.engine import ConversationEngine, get_conversation_engine_for
from restobot.redis_client import get_redis
from restobot.schemas.conversation import InboundMessage
from restobot.whatsapp.client import get_whatsapp_client
from restobot.whatsapp.menu import resolve_menu_choice
from restobot.whatsapp.phone import to_e164, to_local
from restobot.whatsapp.signature import is_valid_twilio_request

logger = structlog.get_logger()

router = APIRouter()

SIMULATOR_HEADER = "x-simulator-api-key"


async def get_conversation_engine(redis: aioredis.Redis = Depends(get_redis)) -> ConversationEngine:
    """FastAPI dependency for the shared conversation engine."""
    return get_conversation_engine_for(redis)


@router.post("/webhook/whatsapp")
async def whatsapp_webhook(
    request: Request,
    engine: ConversationEngine = Depends(get_conversation_engine),
    redis: aioredis.Redis = Depends(get_redis),
) -> Response:
    """Receive an inbound message.

    Callers sending the simulator header get the JSON envelope with the
    bot's responses; Twilio gets a bare acknowledgement and the responses
    are pushed through the WhatsApp client.
    """
    simulator_key = request.headers.get(SIMULATOR_HEADER)
    if simulator_key is not None:
        return await _handle_simulator(request, engine, simulator_key)
    return await _handle_twilio(request, engine, redis)


# ─── Simulator ───────────────────────────────────────────────────────


async def _handle_simulator(request: Request, engine: ConversationEngine, key: str) -> Response:
    expected = settings.simulator_api_key
    if not expected or not hmac.compare_digest(key, expected):
        logger.warning("simulator_unauthorized")
        return JSONResponse({"success": False, "error": "unauthorized"}, status_code=401)

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"success": False, "error": "invalid JSON body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"success": False, "error": "invalid JSON body"}, status_code=400)

    phone = to_local(str(body.get("phone") or ""))
    if not phone:
        return JSONResponse({"success": False, "error": "missing phone"}, status_code=400)

    message = InboundMessage(
        sender=phone,
        body=str(body.get("message") or ""),
        media_url=body.get("mediaUrl") or None,
        simulated=True,
    )
    logger.info("simulator_message_received", phone=phone, text_preview=message.body[:50])

    try:
        result = await engine.handle_message(message)
    except Exception as e:
        logger.error("simulator_processing_error", phone=phone, error=str(e), exc_info=True)
        return JSONResponse(
            {
                "success": False,
                "responses": [{"to": phone, "body": get_bot_config().system_error_message}],
                "error": "processing failed",
            }
        )

    return JSONResponse(
        {
            "success": True,
            "responses": result.responses,
            "newState": {"currentState": result.state, "context": result.context},
        }
    )


# ─── Twilio ──────────────────────────────────────────────────────────


async def _handle_twilio(request: Request, engine: ConversationEngine, redis: aioredis.Redis) -> Response:
    """Twilio sends application/x-www-form-urlencoded with fields:
      - From: "whatsapp:+972501234567"
      - Body: message text
      - MediaUrl0: first attached media, if any
      - ButtonPayload / ListId: id of a tapped interactive option
    """
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    if settings.twilio_validate_signature:
        url = settings.webhook_public_url or str(request.url)
        if not is_valid_twilio_request(url, params, request.headers.get("X-Twilio-Signature", "")):
            return Response(status_code=403)

    sender = to_local(params.get("From", ""))
    if not sender:
        logger.warning("whatsapp_missing_sender")
        return Response(status_code=400)

    interactive = params.get("ButtonPayload") or params.get("ListId")
    body = interactive or params.get("Body", "")
    media_url: Optional[str] = params.get("MediaUrl0") or None

    logger.info(
        "whatsapp_message_received",
        phone=sender,
        text_preview=body[:50],
        has_media=media_url is not None,
        message_sid=params.get("MessageSid", ""),
    )

    try:
        if not interactive and body:
            choice = await resolve_menu_choice(redis, sender, body)
            if choice:
                body = choice
        await engine.handle_message(InboundMessage(sender=sender, body=body, media_url=media_url))
    except Exception as e:
        logger.error("whatsapp_processing_error", phone=sender, error=str(e), exc_info=True)
        await _notify_system_error(sender)

    return Response(content="OK", media_type="text/plain")


async def _notify_system_error(phone: str) -> None:
    wa_client = get_whatsapp_client()
    if wa_client is None:
        return
    try:
        await wa_client.send_message(to_e164(phone), get_bot_config().system_error_message)
    except Exception as e:
        logger.warning("whatsapp_send_error", phone=phone, error=str(e))
