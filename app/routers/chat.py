"""Web chat endpoints.

Clients poll `GET /messages/{session_id}` for replies; nothing is pushed to
the browser. Advisors (roles `asesor` and `admin`) work the escalated queue.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.auth import Identity, get_current_identity, require_advisor
from app.database import get_db
from app.logging_config import get_logger
from app.models import ChatSession
from app.schemas.chat import (
    ChatMessageRequest,
    ChatMessageResponse,
    EscalatedSessionItem,
    EscalatedSessionListResponse,
    MessageItem,
    MessageListResponse,
    SessionCheckResponse,
    SessionResponse,
)
from app.services import flow_engine, session_service
from app.services.session_service import Channel, MessageRole, SessionNotFoundError, web_external_id
from app.services.state_machine import SessionState
from app.services.telegram_service import get_telegram_service

logger = get_logger("chat")

router = APIRouter(prefix="/api/chat", tags=["chat"])


def _internal_error(db: Session, e: Exception, detail: str) -> HTTPException:
    db.rollback()
    logger.error(f"{detail} {e}", exc_info=True)
    return HTTPException(status_code=500, detail=detail)


def _owns(identity: Identity, chat_session: ChatSession) -> bool:
    client = chat_session.client
    return client is not None and client.external_id == web_external_id(identity.user_id)


def _push_to_telegram(chat_session: ChatSession, text: str) -> None:
    if chat_session.channel != Channel.TELEGRAM.value:
        return
    telegram = get_telegram_service()
    if telegram is None:
        logger.warning(f"TELEGRAM_BOT_TOKEN not configured, session {chat_session.id} not notified")
        return
    telegram.send_message(chat_session.client.external_id, text)


def _open_web_session(db: Session, identity: Identity, restart: bool) -> SessionResponse:
    client = session_service.upsert_client(db, web_external_id(identity.user_id), identity.name)
    chat_session, _ = flow_engine.start_session(db, client, Channel.WEB, restart=restart)
    db.commit()
    return SessionResponse(session_id=chat_session.id, state=chat_session.state, client_id=client.id)


@router.post("/session", response_model=SessionResponse)
def get_or_create_session(identity: Identity = Depends(get_current_identity), db: Session = Depends(get_db)):
    """Return the caller's open web session, creating (and greeting) one if needed."""
    try:
        return _open_web_session(db, identity, restart=False)
    except Exception as e:
        raise _internal_error(db, e, "Error al obtener la sesión.")


@router.get("/session/check", response_model=SessionCheckResponse)
def check_active_session(identity: Identity = Depends(get_current_identity), db: Session = Depends(get_db)):
    client = session_service.find_client(db, web_external_id(identity.user_id))
    if client is None:
        return SessionCheckResponse(active=False)

    chat_session = session_service.find_open_session(db, client.id, Channel.WEB)
    if chat_session is None:
        return SessionCheckResponse(active=False)
    return SessionCheckResponse(active=True, session_id=chat_session.id, state=chat_session.state)


@router.post("/session/flow", response_model=SessionResponse)
def start_flow_session(identity: Identity = Depends(get_current_identity), db: Session = Depends(get_db)):
    """Close whatever web session is open and start the flow from the entry step."""
    try:
        return _open_web_session(db, identity, restart=True)
    except Exception as e:
        raise _internal_error(db, e, "Error al iniciar el flujo.")


@router.post("/message", response_model=ChatMessageResponse, status_code=201)
def send_message(
    request: ChatMessageRequest,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    if not request.content:
        raise HTTPException(status_code=400, detail="sessionId y content son requeridos.")

    chat_session = session_service.get_session(db, request.session_id)
    if chat_session is None:
        raise HTTPException(status_code=404, detail="Sesión no encontrada.")
    if not _owns(identity, chat_session):
        raise HTTPException(status_code=403, detail="No tienes permiso para acceder a este recurso.")

    try:
        reply = flow_engine.process_inbound(db, chat_session.id, request.content)
        db.commit()
    except Exception as e:
        raise _internal_error(db, e, "Error al enviar el mensaje.")

    return ChatMessageResponse(ok=True, reply=reply.reply_text, state=reply.state)


@router.get("/messages/{session_id}", response_model=MessageListResponse)
def get_messages(session_id: int, identity: Identity = Depends(get_current_identity), db: Session = Depends(get_db)):
    chat_session = session_service.get_session(db, session_id)
    if chat_session is None:
        raise HTTPException(status_code=404, detail="Sesión no encontrada.")
    if not identity.is_advisor and not _owns(identity, chat_session):
        raise HTTPException(status_code=403, detail="No tienes permiso para acceder a este recurso.")

    messages = session_service.list_messages(db, session_id)
    return MessageListResponse(messages=[MessageItem.model_validate(m) for m in messages])


@router.get("/sessions", response_model=EscalatedSessionListResponse)
def get_escalated_sessions(identity: Identity = Depends(require_advisor), db: Session = Depends(get_db)):
    summaries = session_service.list_escalated_sessions(db)
    return EscalatedSessionListResponse(sessions=[EscalatedSessionItem.model_validate(s) for s in summaries])


@router.post("/advisor-message", response_model=ChatMessageResponse, status_code=201)
def send_advisor_message(
    request: ChatMessageRequest,
    identity: Identity = Depends(require_advisor),
    db: Session = Depends(get_db),
):
    """Append an agent message. A bot-active session is escalated on the first agent reply."""
    if not request.content:
        raise HTTPException(status_code=400, detail="sessionId y content son requeridos.")

    try:
        chat_session = session_service.lock_session(db, request.session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Sesión no encontrada.")

    if chat_session.state == SessionState.CLOSED.value:
        db.rollback()
        raise HTTPException(status_code=409, detail="La sesión ya está cerrada.")

    try:
        session_service.save_message(db, chat_session.id, MessageRole.AGENT, request.content)
        if chat_session.state == SessionState.BOT_ACTIVE.value:
            session_service.mark_escalated(db, chat_session)
        db.commit()
    except Exception as e:
        raise _internal_error(db, e, "Error al enviar el mensaje.")

    logger.info(
        f"Advisor {identity.user_id} replied on session {chat_session.id}",
        extra={"context": {"session_id": chat_session.id, "advisor_id": identity.user_id}},
    )
    _push_to_telegram(chat_session, request.content)
    return ChatMessageResponse(ok=True, state=chat_session.state)


@router.post("/session/{session_id}/end", response_model=ChatMessageResponse)
def end_session_by_advisor(session_id: int, identity: Identity = Depends(require_advisor), db: Session = Depends(get_db)):
    try:
        chat_session = session_service.lock_session(db, session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Sesión no encontrada.")

    if chat_session.state == SessionState.CLOSED.value:
        db.rollback()
        return ChatMessageResponse(ok=True, state=chat_session.state)

    try:
        flow_engine.end_session(db, chat_session)
        farewell = flow_engine.farewell_text(db)
        db.commit()
    except Exception as e:
        raise _internal_error(db, e, "Error al cerrar la sesión.")

    logger.info(f"Advisor {identity.user_id} closed session {session_id}")
    _push_to_telegram(chat_session, farewell)
    return ChatMessageResponse(ok=True, reply=farewell, state=chat_session.state)
