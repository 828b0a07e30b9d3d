"""Action dispatcher — performs the side effects emitted by the reducer.

Actions run one at a time in emission order. A failing action is logged,
the user gets a best-effort apology, and the remaining actions still run.
"""

from __future__ import annotations

from typing import AsyncContextManager, Awaitable, Callable, Optional

import redis.asyncio as aioredis
import structlog

from restobot.conversation.bot_config import BotConfig
from restobot.conversation.callbacks import format_quantity
from restobot.conversation.session import ConversationStore
from restobot.errors import ActionDispatchError
from restobot.repositories.entities import EntityRepository, entity_repository
from restobot.schemas.actions import (
    ActionType,
    BotAction,
    PayloadModel,
    SendMessagePayload,
    SendOrderPayload,
)
from restobot.schemas.conversation import MessageEntry
from restobot.whatsapp.client import WhatsAppClient
from restobot.whatsapp.menu import clear_menu, save_menu, template_to_text
from restobot.whatsapp.phone import to_e164

logger = structlog.get_logger()

RepositoryFactory = Callable[[], AsyncContextManager[EntityRepository]]


class ActionDispatcher:
    """Interprets a list of BotActions for one conversation."""

    def __init__(
        self,
        store: ConversationStore,
        config: BotConfig,
        repositories: RepositoryFactory = entity_repository,
        whatsapp_client: Optional[WhatsAppClient] = None,
        redis_client: Optional[aioredis.Redis] = None,
    ):
        self.store = store
        self.config = config
        self.repositories = repositories
        self.whatsapp_client = whatsapp_client
        self.redis = redis_client
        self._handlers: dict[ActionType, Callable[..., Awaitable[Optional[dict]]]] = {
            ActionType.SEND_MESSAGE: self._send_message,
            ActionType.CREATE_RESTAURANT: self._create_restaurant,
            ActionType.CREATE_SUPPLIER: self._upsert_supplier,
            ActionType.UPDATE_SUPPLIER: self._upsert_supplier,
            ActionType.UPDATE_PRODUCT: self._update_products,
            ActionType.CREATE_INVENTORY_SNAPSHOT: self._create_snapshot,
            ActionType.SEND_ORDER: self._send_order,
            ActionType.LOG_DELIVERY: self._log_delivery,
        }

    # ─── Public ──────────────────────────────────────────────────────

    async def dispatch(self, phone: str, actions: list[BotAction], *, simulate: bool = False) -> list[dict]:
        """Run ``actions`` sequentially.

        Returns:
            SEND_MESSAGE payloads (wire format) in simulation mode, else [].
        """
        responses: list[dict] = []
        for index, action in enumerate(actions):
            try:
                payload = action.parse_payload()
                response = await self._handlers[action.type](phone, payload, simulate)
            except Exception as e:
                logger.error(
                    "action_failed",
                    phone=phone,
                    action=action.type.value,
                    index=index,
                    error=str(e),
                    exc_info=True,
                )
                await self._apologize(phone, simulate, responses)
                continue
            if response is not None:
                responses.append(response)
        return responses

    # ─── Messages ────────────────────────────────────────────────────

    async def _send_message(self, phone: str, payload: SendMessagePayload, simulate: bool) -> Optional[dict]:
        response: Optional[dict] = None
        if simulate:
            response = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
        else:
            client = self._require_client()
            text, mapping = template_to_text(payload)
            await client.send_message(to_e164(payload.to), text)
            if self.redis is not None:
                if mapping:
                    await save_menu(self.redis, payload.to, mapping)
                else:
                    await clear_menu(self.redis, payload.to)

        await self.store.append_message(
            phone,
            MessageEntry(
                role="assistant",
                body=payload.text,
                message_state=payload.message_state,
                template_id=payload.template.id if payload.template else None,
                has_template=payload.template is not None,
            ),
        )
        return response

    async def _apologize(self, phone: str, simulate: bool, responses: list[dict]) -> None:
        """Best-effort apology after a failed action; never raises."""
        text = self.config.action_error_message
        try:
            if simulate:
                responses.append({"to": phone, "body": text, "messageState": "ERROR"})
            elif self.whatsapp_client is not None:
                await self.whatsapp_client.send_message(to_e164(phone), text)
        except Exception as e:
            logger.warning("apology_failed", phone=phone, error=str(e))

    def _require_client(self) -> WhatsAppClient:
        if self.whatsapp_client is None:
            raise ActionDispatchError("WhatsApp client is not configured")
        return self.whatsapp_client

    # ─── Entities ────────────────────────────────────────────────────

    async def _create_restaurant(self, phone: str, payload: PayloadModel, simulate: bool) -> None:
        async with self.repositories() as repo:
            await repo.create_restaurant(payload)

    async def _upsert_supplier(self, phone: str, payload: PayloadModel, simulate: bool) -> None:
        async with self.repositories() as repo:
            await repo.upsert_supplier(payload)

    async def _update_products(self, phone: str, payload: PayloadModel, simulate: bool) -> None:
        async with self.repositories() as repo:
            await repo.update_products(payload)

    async def _create_snapshot(self, phone: str, payload: PayloadModel, simulate: bool) -> None:
        async with self.repositories() as repo:
            await repo.create_inventory_snapshot(payload)

    async def _send_order(self, phone: str, payload: SendOrderPayload, simulate: bool) -> None:
        async with self.repositories() as repo:
            await repo.create_order(payload)
        if simulate:
            return
        client = self._require_client()
        await client.send_message(to_e164(payload.supplier_id), self._order_text(payload))
        logger.info("supplier_notified", order_id=payload.order_id, supplier=payload.supplier_id)

    async def _log_delivery(self, phone: str, payload: PayloadModel, simulate: bool) -> None:
        async with self.repositories() as repo:
            await repo.log_delivery(payload)

    def _order_text(self, payload: SendOrderPayload) -> str:
        lines = [
            f"• {item.name}: {format_quantity(item.quantity)} {self.config.unit_label(item.unit)}"
            for item in payload.items
        ]
        greeting = f"שלום {payload.supplier_name}," if payload.supplier_name else "שלום,"
        return (
            f"🛒 *הזמנה חדשה {payload.order_id}*\n\n"
            f"{greeting}\nנבקש לספק את הפריטים הבאים:\n\n"
            + "\n".join(lines)
            + "\n\nתודה!"
        )
