import json
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.logging_config import get_logger
from app.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from app.services import flow_engine, session_service
from app.services.alert_service import alert_critical, alert_error, alert_warning
from app.services.session_service import Channel
from app.services.step_repository import FlowError
from app.services.telegram_service import get_telegram_service

logger = get_logger("telegram_webhook")

router = APIRouter(prefix="/api/bot", tags=["bot"])


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    try:
        return await request.json()
    except Exception as e:
        logger.warning(f"Standard request.json() failed: {e}, fallback decoding")

    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            return json.loads(raw.decode(enc, errors="replace"))
        except ValueError:
            continue

    logger.error("Failed to decode Telegram webhook payload after fallbacks")
    return None


def handle_text_message(db: Session, chat_id: str, sender_name: str, text: str) -> flow_engine.EngineReply:
    """Resolve client and session, then run the engine. Does not commit."""
    client = session_service.upsert_client(db, chat_id, sender_name)
    chat_session = session_service.find_open_session(db, client.id, Channel.TELEGRAM)

    if chat_session is None:
        _, reply = flow_engine.start_session(db, client, Channel.TELEGRAM, first_message=text)
        return reply

    return flow_engine.process_inbound(db, chat_session.id, text)


def deliver_reply(chat_id: str, text: str) -> bool:
    """Best-effort push of the bot reply. Failures never undo the committed turn."""
    telegram = get_telegram_service()
    if telegram is None:
        logger.warning(f"TELEGRAM_BOT_TOKEN not configured, reply to {chat_id} not delivered")
        return False

    result = telegram.send_message(chat_id, text)
    if not result.get("ok"):
        alert_warning(
            "Telegram delivery failed",
            {"chat_id": chat_id, "error": result.get("error") or result.get("description")},
        )
        return False
    return True


@router.post("/webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(request: Request, db: Session = Depends(get_db)):
    """Customer messages from Telegram. Always answers 200 so Telegram does not retry."""
    body = await parse_telegram_update(request)
    if body is None:
        return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

    try:
        update = TelegramUpdate(**body)
    except ValueError as e:
        logger.warning(f"Unparseable Telegram update: {e}")
        return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

    message = update.message
    if message is None or not message.text or not message.text.strip():
        return TelegramWebhookResponse(success=True, message="No actionable content")

    chat_id = str(message.chat.id)
    text = message.text.strip()

    try:
        reply = handle_text_message(db, chat_id, message.sender_name, text)
        db.commit()
    except FlowError as e:
        db.rollback()
        logger.error(f"Flow configuration error for chat {chat_id}: {e.message}", exc_info=True)
        alert_critical("Flow configuration error", {"chat_id": chat_id, "error": e.message})
        return TelegramWebhookResponse(success=False, message="Error")
    except Exception as e:
        db.rollback()
        logger.error(f"Telegram webhook error: {e}", exc_info=True)
        alert_error("Telegram webhook failed", {"chat_id": chat_id, "error": str(e)})
        return TelegramWebhookResponse(success=False, message="Error")

    if reply.has_reply:
        deliver_reply(chat_id, reply.reply_text)

    return TelegramWebhookResponse(success=True, message="OK", session_id=reply.session_id)
