"""Operator alerts for the support bot.

Alerts go to a separate ops chat through its own bot (ALERT_BOT_TOKEN /
ALERT_CHAT_ID), never through the customer-facing bot.
"""

import os
from typing import Optional

from app.config import settings
from app.logging_config import get_logger
from app.services.telegram_service import TelegramService

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = os.environ.get("ALERT_BOT_TOKEN")
ALERT_CHAT_ID = os.environ.get("ALERT_CHAT_ID")

LEVEL_MARKERS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}

# Telegram rejects longer texts
MAX_ALERT_LENGTH = 4000


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    lines = [f"{LEVEL_MARKERS.get(level, '📢')} *{level}* · {settings.company_name} bot", "", message]
    if context:
        lines += ["", "```"] + [f"  {key}: {value}" for key, value in context.items()] + ["```"]
    text = "\n".join(lines)
    if len(text) > MAX_ALERT_LENGTH:
        text = text[: MAX_ALERT_LENGTH - 3] + "..."
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert to the ops chat. Returns True if Telegram accepted it.

    Failures are logged, never raised: an alert must not break the request
    that triggered it.
    """
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    result = TelegramService(ALERT_BOT_TOKEN).send_message(
        ALERT_CHAT_ID, format_alert(level, message, context), parse_mode="Markdown"
    )
    if not result.get("ok"):
        logger.error(f"Failed to send {level} alert", extra={"context": {"message": message}})
        return False
    return True


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("CRITICAL", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)
