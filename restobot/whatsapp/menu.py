"""Menu adapter — renders template prompts as numbered WhatsApp text.

Plain WhatsApp messages carry no buttons, so we:
1. Render template options as a numbered list under the body
2. Store the mapping (number / label → option id) in Redis
3. When the user replies with a number or label, resolve it back to the option id
"""

from __future__ import annotations

import json
from typing import Optional

import redis.asyncio as aioredis
import structlog

from restobot.schemas.actions import SendMessagePayload

logger = structlog.get_logger()

# A menu older than a day is stale
MENU_TTL = 86400


def _menu_key(phone: str) -> str:
    """Redis key for the active menu mapping."""
    return f"wa_menu:{phone}"


def template_to_text(payload: SendMessagePayload) -> tuple[str, dict[str, str]]:
    """Convert a SEND_MESSAGE payload to WhatsApp text + option mapping.

    Returns:
        (text, mapping) where:
          - text is the header, the body and a numbered option list
          - mapping is {"1": "credit_card", "כרטיס אשראי": "credit_card", ...}
    """
    template = payload.template
    if template is None:
        return payload.body or "", {}

    parts: list[str] = []
    if template.header:
        parts.append(f"*{template.header}*")
    parts.append(template.body)

    lines: list[str] = []
    mapping: dict[str, str] = {}
    for idx, option in enumerate(template.options, start=1):
        lines.append(f"{idx}. {option.label}")
        mapping[str(idx)] = option.id
        mapping[option.label.strip().lower()] = option.id
    if lines:
        parts.append("\n".join(lines))

    return "\n\n".join(parts), mapping


async def save_menu(redis_client: aioredis.Redis, phone: str, mapping: dict[str, str]) -> None:
    """Save current menu mapping to Redis."""
    await redis_client.setex(_menu_key(phone), MENU_TTL, json.dumps(mapping, ensure_ascii=False))
    logger.debug(
        "wa_menu_saved",
        phone=phone,
        options=len([k for k in mapping if k.isdigit()]),
    )


async def resolve_menu_choice(redis_client: aioredis.Redis, phone: str, user_text: str) -> Optional[str]:
    """Try to resolve user's text input against the saved menu.

    Checks: exact digit match, then case-insensitive label match.

    Returns:
        option id if matched, None otherwise
    """
    data = await redis_client.get(_menu_key(phone))
    if not data:
        return None

    mapping: dict[str, str] = json.loads(data)
    text = user_text.strip()
    if text in mapping:
        return mapping[text]
    return mapping.get(text.lower())


async def clear_menu(redis_client: aioredis.Redis, phone: str) -> None:
    """Clear the menu mapping (the last prompt offered no options)."""
    await redis_client.delete(_menu_key(phone))
