"""Phone number normalization between Twilio (E.164) and local format."""

import re

_NOISE = re.compile(r"[\s\-().]")


def to_local(raw: str) -> str:
    """Normalize a sender to the local Israeli format ("0501234567").

    Accepts "whatsapp:+972501234567", "+972-50-123-4567", "972501234567"
    and already-local numbers. Foreign numbers keep their "+" prefix.
    """
    text = _NOISE.sub("", raw.replace("whatsapp:", "").strip())
    if text.startswith("+972"):
        return "0" + text[4:]
    if text.startswith("972") and len(text) == 12:
        return "0" + text[3:]
    return text


def to_e164(local: str) -> str:
    """Convert a local number back to E.164 for the messaging gateway."""
    text = _NOISE.sub("", local)
    if text.startswith("+"):
        return text
    if text.startswith("0"):
        return "+972" + text[1:]
    return "+" + text
