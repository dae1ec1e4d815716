from typing import Optional

import httpx

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("telegram_service")


class TelegramService:
    """Service for sending messages to Telegram."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)

    def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Make request to Telegram API."""
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=30.0) as client:
                response = client.post(url, json=data or {})
                return response.json()
        except Exception as e:
            logger.error(f"Telegram API error: {e}")
            return {"ok": False, "error": str(e)}

    def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: Optional[str] = None,
    ) -> dict:
        """Send message to Telegram chat.

        Step prompts are plain text, so no parse mode is set unless asked for.
        """
        data = {
            "chat_id": chat_id,
            "text": text,
        }
        if parse_mode:
            data["parse_mode"] = parse_mode

        result = self._make_request("sendMessage", data)
        if not result.get("ok"):
            logger.warning(
                f"Telegram sendMessage failed for chat {chat_id}",
                extra={"context": {"chat_id": chat_id, "error": result.get("error") or result.get("description")}},
            )
        return result


def get_telegram_service() -> Optional[TelegramService]:
    """Service for the customer-facing bot, or None when no token is configured."""
    if not settings.telegram_bot_token:
        return None
    return TelegramService(settings.telegram_bot_token)
