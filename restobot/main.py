"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from restobot.api.webhooks.whatsapp import router as whatsapp_router
from restobot.config import settings
from restobot.conversation.bot_config import get_bot_config
from restobot.conversation.states import build_state_table
from restobot.database import dispose_engine
from restobot.llm.client import close_llm_client
from restobot.redis_client import close_redis


def configure_logging() -> None:
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.environment == "development"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
    )


configure_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check the state table on boot, release shared clients on shutdown."""
    table = build_state_table(get_bot_config())
    logger.info(
        "restobot_starting",
        environment=settings.environment,
        states=len(table),
        lock_backend=settings.lock_backend,
        extraction_enabled=bool(settings.anthropic_api_key),
    )
    yield
    logger.info("restobot_stopping")
    await close_redis()
    await close_llm_client()
    await dispose_engine()


app = FastAPI(
    title="Restobot API",
    description="WhatsApp bot for restaurant inventory, supplier orders and deliveries",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(whatsapp_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
