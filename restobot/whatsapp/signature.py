"""Twilio webhook signature verification."""

from __future__ import annotations

from typing import Mapping

import structlog
from twilio.request_validator import RequestValidator

from restobot.config import settings

logger = structlog.get_logger()


def is_valid_twilio_request(url: str, params: Mapping[str, str], signature: str) -> bool:
    """Check ``X-Twilio-Signature`` against the posted form parameters."""
    if not signature or not settings.twilio_auth_token:
        logger.warning("twilio_signature_missing")
        return False
    validator = RequestValidator(settings.twilio_auth_token)
    valid = validator.validate(url, dict(params), signature)
    if not valid:
        logger.warning("twilio_signature_invalid", url=url)
    return valid
