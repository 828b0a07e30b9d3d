"""Anthropic async client singleton."""

from __future__ import annotations

from anthropic import AsyncAnthropic

from restobot.config import settings

_client: AsyncAnthropic | None = None


def get_llm_client() -> AsyncAnthropic:
    """Get or create the Anthropic async client."""
    global _client
    if _client is None:
        _client = AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )
    return _client


async def close_llm_client() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None
