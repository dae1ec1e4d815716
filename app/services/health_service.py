from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import ChatSession, Payment, Ticket
from app.services.session_service import mark_closed
from app.services.state_machine import SessionState

logger = get_logger("health_service")


def check_and_heal_sessions(db: Session) -> dict:
    """Check session invariants and repair violations.

    A client may hold at most one open session per channel. Rows written
    before the partial unique index existed can break that; every open
    session except the newest one is closed.
    """
    healed = []

    duplicated = (
        db.query(ChatSession.client_id, ChatSession.channel)
        .filter(ChatSession.state != SessionState.CLOSED.value)
        .group_by(ChatSession.client_id, ChatSession.channel)
        .having(func.count(ChatSession.id) > 1)
        .all()
    )

    for client_id, channel in duplicated:
        open_sessions = (
            db.query(ChatSession)
            .filter(
                ChatSession.client_id == client_id,
                ChatSession.channel == channel,
                ChatSession.state != SessionState.CLOSED.value,
            )
            .order_by(ChatSession.started_at.desc(), ChatSession.id.desc())
            .with_for_update()
            .all()
        )

        for stale in open_sessions[1:]:
            old_state = stale.state
            mark_closed(db, stale)
            healed.append(
                {
                    "session_id": stale.id,
                    "client_id": client_id,
                    "issue": f"duplicate_open_{channel}_session",
                    "action": f"closed ({old_state})",
                }
            )
            logger.warning(f"Healed session {stale.id}: duplicate open {channel} session for client {client_id}")

    db.commit()

    return {
        "healed_count": len(healed),
        "details": healed,
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }


def get_system_health(db: Session) -> dict:
    """Session counts per lifecycle state plus ledger/ticket backlog."""
    counts = dict(
        db.query(ChatSession.state, func.count(ChatSession.id)).group_by(ChatSession.state).all()
    )

    open_tickets = db.query(Ticket).filter(Ticket.status == "open").count()
    unused_payments = db.query(Payment).filter(Payment.used.is_(False)).count()

    return {
        "sessions": {state.value: counts.get(state.value, 0) for state in SessionState},
        "tickets": {"open": open_tickets},
        "payments": {"unused": unused_payments},
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }
