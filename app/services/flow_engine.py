"""Conversation flow engine.

`process_inbound` is the single entry point for both channels. It must run
inside a transaction owned by the caller: the session row is locked, every
write is flushed, and the router commits (or rolls back) afterwards.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger, session_logger
from app.models import ChatSession, Client
from app.services import session_service
from app.services.action_executor import ActionContext, execute_action
from app.services.session_service import Channel, MessageRole
from app.services.state_machine import SessionState, accepts_bot_transitions
from app.services.step_repository import ENTRY_STEP, FAREWELL_STEP, Step, find_step, get_step
from app.services.transitions import (
    capture_open_answer,
    match_option,
    record_payment_method,
    render_unrecognized,
    render_with_options,
)

logger = get_logger("flow_engine")

DEFAULT_FAREWELL = "Gracias por comunicarte con nosotros. ¡Hasta pronto!"


@dataclass(frozen=True)
class Transition:
    next_step: str
    reply_text: str
    temp_data: dict
    side_effects: tuple[str, ...] = field(default_factory=tuple)
    matched: bool = True


@dataclass(frozen=True)
class EngineReply:
    session_id: int
    reply_text: Optional[str]
    state: str

    @property
    def has_reply(self) -> bool:
        return bool(self.reply_text)


def render_step(step: Step) -> str:
    return render_with_options(step.prompt, step.options)


def advance(db: Session, chat_session: ChatSession, inbound_text: str) -> Transition:
    """Compute and apply the transition for one inbound message.

    Side effects of the resolved step's action are written through `db`; the
    caller persists the returned step code, temp data and transcript.
    """
    temp_data = dict(chat_session.temp_data or {})

    if not chat_session.current_step:
        entry = get_step(db, ENTRY_STEP)
        return Transition(next_step=entry.code, reply_text=render_step(entry), temp_data=temp_data)

    current = get_step(db, chat_session.current_step)

    if current.is_question:
        temp_data = capture_open_answer(current.code, temp_data, inbound_text)
        next_code = current.default_next
    else:
        option = match_option(current.options, inbound_text)
        if option is None:
            return Transition(
                next_step=current.code,
                reply_text=render_unrecognized(current.options),
                temp_data=temp_data,
                matched=False,
            )
        temp_data = record_payment_method(current.code, temp_data, option)
        next_code = option.destination

    target = get_step(db, next_code)
    reply_text = target.prompt
    options = target.options
    side_effects: tuple[str, ...] = ()

    if target.action is not None:
        outcome = execute_action(
            db,
            target.action,
            ActionContext(
                chat_session=chat_session,
                step=target,
                inbound_text=inbound_text,
                prior_step=current.code,
                temp_data=temp_data,
            ),
        )
        if outcome.reply_text is not None:
            reply_text = outcome.reply_text
        if outcome.options is not None:
            options = outcome.options
        if outcome.next_step is not None:
            next_code = outcome.next_step
        side_effects = outcome.side_effects

    return Transition(
        next_step=next_code,
        reply_text=render_with_options(reply_text, options),
        temp_data=temp_data,
        side_effects=side_effects,
    )


def process_inbound(db: Session, session_id: int, text: str) -> EngineReply:
    """Run one inbound message through the engine under the session row lock."""
    chat_session = session_service.lock_session(db, session_id)
    log = session_logger("flow_engine", chat_session.id, chat_session.client_id)

    session_service.save_message(db, chat_session.id, MessageRole.USER, text)

    if not accepts_bot_transitions(chat_session.state):
        log.info(f"Message recorded without reply, session is {chat_session.state}")
        return EngineReply(session_id=chat_session.id, reply_text=None, state=chat_session.state)

    transition = advance(db, chat_session, text)

    session_service.save_message(db, chat_session.id, MessageRole.BOT, transition.reply_text)
    session_service.update_progress(db, chat_session, transition.next_step, transition.temp_data)

    log.info(
        f"Step {transition.next_step} (matched={transition.matched})",
        context={"side_effects": list(transition.side_effects)},
    )
    return EngineReply(session_id=chat_session.id, reply_text=transition.reply_text, state=chat_session.state)


def greet(db: Session, chat_session: ChatSession, first_message: Optional[str] = None) -> EngineReply:
    """Place a fresh session at the entry step and post the welcome prompt.

    The first message, when given, is kept in the transcript for audit only.
    """
    entry = get_step(db, ENTRY_STEP)
    reply_text = render_step(entry)

    if first_message:
        session_service.save_message(db, chat_session.id, MessageRole.USER, first_message)
    session_service.save_message(db, chat_session.id, MessageRole.BOT, reply_text)
    session_service.update_progress(db, chat_session, entry.code, chat_session.temp_data or {})

    return EngineReply(session_id=chat_session.id, reply_text=reply_text, state=chat_session.state)


def farewell_text(db: Session) -> str:
    step = find_step(db, FAREWELL_STEP)
    return step.prompt if step and step.prompt else DEFAULT_FAREWELL


def end_session(db: Session, chat_session: ChatSession, role: MessageRole = MessageRole.BOT) -> ChatSession:
    """Close an open session, appending the farewell text to its transcript."""
    if chat_session.state == SessionState.CLOSED.value:
        return chat_session
    session_service.save_message(db, chat_session.id, role, farewell_text(db))
    session_service.mark_closed(db, chat_session)
    return chat_session


def start_session(
    db: Session,
    client: Client,
    channel: Channel,
    first_message: Optional[str] = None,
    restart: bool = False,
) -> tuple[ChatSession, Optional[EngineReply]]:
    """Return the client's open session on the channel, creating and greeting one if needed.

    With `restart` any open session is closed first and a new one is always
    created. The caller must hold the client row lock (see `upsert_client`).
    The reply is None when an existing session was returned.
    """
    existing = session_service.find_open_session(db, client.id, channel)

    if existing is not None and not restart:
        return existing, None

    if existing is not None:
        end_session(db, existing)
        logger.info(f"Restarted flow for client {client.id}, closed session {existing.id}")

    chat_session = session_service.create_session(db, client.id, channel)
    return chat_session, greet(db, chat_session, first_message)
