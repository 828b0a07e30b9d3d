"""Twilio WhatsApp client — outbound bot messages for restaurants and suppliers."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from twilio.rest import Client as TwilioClient

from restobot.config import settings

logger = structlog.get_logger()

# Twilio rejects WhatsApp bodies above this length
MAX_BODY_LENGTH = 1600

_client: Optional["WhatsAppClient"] = None


def split_body(text: str, limit: int = MAX_BODY_LENGTH) -> list[str]:
    """Split a long message on line boundaries into chunks Twilio accepts."""
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class WhatsAppClient:
    """Sends bot prompts and supplier order notices through Twilio."""

    def __init__(self, twilio: TwilioClient, sender_number: str):
        self.twilio = twilio
        self.sender = f"whatsapp:{sender_number}"

    async def send_message(self, to_phone: str, text: str, media_url: Optional[str] = None) -> str:
        """Send ``text`` to an E.164 number, in several messages if it is long.

        Media is attached to the last chunk. Returns the SID of the last
        message sent.
        """
        chunks = split_body(text)
        sid = ""
        for index, chunk in enumerate(chunks):
            extra = {}
            if media_url and index == len(chunks) - 1:
                extra["media_url"] = [media_url]
            message = await asyncio.to_thread(
                self.twilio.messages.create,
                body=chunk,
                from_=self.sender,
                to=f"whatsapp:{to_phone}",
                **extra,
            )
            sid = message.sid

        logger.info("whatsapp_message_sent", to=to_phone, sid=sid, parts=len(chunks))
        return sid


def get_whatsapp_client() -> Optional[WhatsAppClient]:
    """Shared client, or None when Twilio credentials are missing."""
    global _client
    if _client is None:
        if not (settings.twilio_account_sid and settings.twilio_auth_token):
            logger.debug("whatsapp_client_not_configured")
            return None
        _client = WhatsAppClient(
            TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token),
            settings.twilio_whatsapp_number,
        )
        logger.info("whatsapp_client_initialized", sender=settings.twilio_whatsapp_number)
    return _client
