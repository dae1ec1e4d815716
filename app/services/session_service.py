from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from app.logging_config import get_logger
from app.models import ChatSession, Client, Message
from app.services.state_machine import SessionState, close, escalate
from app.services.step_repository import FlowError

logger = get_logger("session_service")


class Channel(str, Enum):
    TELEGRAM = "telegram"
    WEB = "web"


class MessageRole(str, Enum):
    USER = "user"
    BOT = "bot"
    AGENT = "agent"


class SessionNotFoundError(FlowError):
    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


@dataclass(frozen=True)
class EscalatedSessionSummary:
    session_id: int
    state: str
    channel: str
    started_at: datetime
    client_name: str
    external_id: str
    last_message: Optional[str]
    last_activity: Optional[datetime]


def web_external_id(user_id) -> str:
    """Client identifier for an authenticated web user."""
    return f"web_{user_id}"


def locked_client_query(db: Session, external_id: str) -> Query:
    return (
        db.query(Client)
        .filter(Client.external_id == external_id)
        .with_for_update()
        .populate_existing()
    )


def _insert_client(db: Session, external_id: str, name: str) -> Client:
    """Insert under a savepoint.

    A concurrent first contact can insert the same external id between our
    lookup and flush. The unique constraint makes us wait for it; on conflict
    the savepoint is discarded and the winner's row is locked instead.
    """
    now = datetime.now(timezone.utc)
    try:
        with db.begin_nested():
            client = Client(external_id=external_id, name=name, created_at=now, updated_at=now)
            db.add(client)
            db.flush()
    except IntegrityError:
        logger.info(f"Client {external_id} created concurrently, reusing it")
        return locked_client_query(db, external_id).one()

    logger.info(f"Created client {client.id} for {external_id}")
    return client


def upsert_client(db: Session, external_id: str, name: str) -> Client:
    """Find client by external id (row-locked) or create it. The name is always refreshed."""
    client = locked_client_query(db, external_id).first()
    if client is None:
        client = _insert_client(db, external_id, name)

    if name and client.name != name:
        client.name = name
        client.updated_at = datetime.now(timezone.utc)
        db.flush()

    return client


def find_client(db: Session, external_id: str) -> Optional[Client]:
    return db.query(Client).filter(Client.external_id == external_id).first()


def find_open_session(db: Session, client_id: int, channel: Channel) -> Optional[ChatSession]:
    """Most recent non-closed session of the client on the channel."""
    return (
        db.query(ChatSession)
        .filter(
            ChatSession.client_id == client_id,
            ChatSession.channel == channel.value,
            ChatSession.state != SessionState.CLOSED.value,
        )
        .order_by(ChatSession.started_at.desc(), ChatSession.id.desc())
        .first()
    )


def create_session(db: Session, client_id: int, channel: Channel) -> ChatSession:
    """Insert a bot-active session with no current step. Caller guarantees no other open session."""
    now = datetime.now(timezone.utc)
    chat_session = ChatSession(
        client_id=client_id,
        channel=channel.value,
        state=SessionState.BOT_ACTIVE.value,
        flow="principal",
        current_step=None,
        temp_data={},
        started_at=now,
        updated_at=now,
    )
    db.add(chat_session)
    db.flush()
    logger.info(
        f"Opened {channel.value} session {chat_session.id}",
        extra={"context": {"client_id": client_id, "session_id": chat_session.id}},
    )
    return chat_session


def get_session(db: Session, session_id: int) -> Optional[ChatSession]:
    return db.query(ChatSession).filter(ChatSession.id == session_id).first()


def locked_session_query(db: Session, session_id: int) -> Query:
    return (
        db.query(ChatSession)
        .filter(ChatSession.id == session_id)
        .with_for_update()
        .populate_existing()
    )


def lock_session(db: Session, session_id: int) -> ChatSession:
    """Load the session under a row lock held until the transaction ends."""
    chat_session = locked_session_query(db, session_id).first()
    if chat_session is None:
        raise SessionNotFoundError(session_id)
    return chat_session


def update_progress(db: Session, chat_session: ChatSession, step_code: str, temp_data: dict) -> None:
    chat_session.current_step = step_code
    chat_session.temp_data = dict(temp_data)
    chat_session.updated_at = datetime.now(timezone.utc)
    db.flush()


def mark_escalated(db: Session, chat_session: ChatSession) -> None:
    new_state = escalate(SessionState(chat_session.state))
    chat_session.state = new_state.value
    chat_session.updated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(f"Session {chat_session.id} escalated to a human agent")


def mark_closed(db: Session, chat_session: ChatSession) -> None:
    new_state = close(SessionState(chat_session.state))
    now = datetime.now(timezone.utc)
    chat_session.state = new_state.value
    chat_session.updated_at = now
    chat_session.closed_at = now
    db.flush()
    logger.info(f"Session {chat_session.id} closed")


def save_message(db: Session, session_id: int, role: MessageRole, content: str) -> Message:
    """Append a transcript entry."""
    message = Message(
        session_id=session_id,
        role=role.value,
        content=content,
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def list_messages(db: Session, session_id: int) -> list[Message]:
    return (
        db.query(Message)
        .filter(Message.session_id == session_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def list_escalated_sessions(db: Session) -> list[EscalatedSessionSummary]:
    """Sessions waiting for (or being served by) a human agent, most recent activity first."""
    rows = (
        db.query(ChatSession, Client)
        .join(Client, Client.id == ChatSession.client_id)
        .filter(ChatSession.state == SessionState.ESCALATED.value)
        .all()
    )

    summaries = []
    for chat_session, client in rows:
        last = (
            db.query(Message)
            .filter(Message.session_id == chat_session.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .first()
        )
        summaries.append(
            EscalatedSessionSummary(
                session_id=chat_session.id,
                state=chat_session.state,
                channel=chat_session.channel,
                started_at=chat_session.started_at,
                client_name=client.name,
                external_id=client.external_id,
                last_message=last.content if last else None,
                last_activity=last.created_at if last else None,
            )
        )

    # sessions without messages go last
    summaries.sort(key=lambda s: (s.last_activity is not None, s.last_activity or s.started_at), reverse=True)
    return summaries
