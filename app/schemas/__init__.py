from app.schemas.chat import ChatMessageRequest, ChatMessageResponse, SessionResponse
from app.schemas.telegram import TelegramUpdate, TelegramWebhookResponse

__all__ = ["ChatMessageRequest", "ChatMessageResponse", "SessionResponse", "TelegramUpdate", "TelegramWebhookResponse"]
