"""System actions attached to dialogue steps.

Every action runs inside the caller's transaction (the SQLAlchemy session that
holds the lock on the chat session row). None of them commits.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import ChatSession, Ticket
from app.services import ledger_service
from app.services.result import FailureCode, Result
from app.services.session_service import mark_closed, mark_escalated
from app.services.step_repository import (
    ENTRY_STEP,
    FAREWELL_STEP,
    REFERENCE_STEP,
    Option,
    Step,
    SystemAction,
)
from app.services.transitions import REFERENCE_KEY

logger = get_logger("action_executor")

TICKET_PRIORITY_HIGH = "high"
NEW_CUSTOMER_INVOICE_DESCRIPTION = "Instalacion y Primer Mes"

MSG_NO_DEBT = "Estas al dia! No tienes ninguna factura pendiente.\n\nEscribe Volver para ir al menu principal."
MSG_ESCALATION_NOTICE = "Un asesor se conectara contigo en breve. Por favor espera..."

PAYMENT_SUCCESS_OPTIONS = (
    Option(text="1. Volver al inicio", destination=ENTRY_STEP),
    Option(text="2. Cerrar chat", destination=FAREWELL_STEP),
)


@dataclass(frozen=True)
class ActionContext:
    chat_session: ChatSession
    step: Step
    inbound_text: str
    prior_step: Optional[str]
    temp_data: dict


@dataclass(frozen=True)
class ActionOutcome:
    """Overrides an action applies to the engine's reply. None means keep."""

    reply_text: Optional[str] = None
    options: Optional[tuple[Option, ...]] = None
    next_step: Optional[str] = None
    side_effects: tuple[str, ...] = field(default_factory=tuple)


def format_amount(amount) -> str:
    return f"{Decimal(amount):.2f}"


def reconcile_payment(db: Session, client_id: int, reference: str) -> Result[Decimal]:
    """Match a bank transfer to the client's outstanding invoices.

    The payment row is read with FOR UPDATE and used=false, so of two
    concurrent attempts on the same reference only the first settles; the
    second waits for the lock and then finds nothing.
    """
    reference = (reference or "").strip()
    if not reference:
        return Result.failure("Empty payment reference", FailureCode.PAYMENT_NOT_FOUND)

    payment = ledger_service.find_unused_payment(db, reference)
    if payment is None:
        return Result.failure(f"No unused payment with reference {reference}", FailureCode.PAYMENT_NOT_FOUND)

    amount = Decimal(payment.amount)
    invoices = ledger_service.list_outstanding_invoices(db, client_id, lock=True)

    if invoices:
        debt = sum((Decimal(invoice.amount) for invoice in invoices), Decimal("0"))
        if amount < debt:
            logger.info(
                f"Payment {reference} insufficient: {amount} < {debt}",
                extra={"context": {"client_id": client_id, "reference": reference}},
            )
            return Result.failure(f"Payment {amount} does not cover debt {debt}", FailureCode.INSUFFICIENT_AMOUNT)

        ledger_service.mark_invoices_paid(db, invoices)
        # representative link to the oldest settled invoice
        ledger_service.consume_payment(db, payment, invoices[0])
    else:
        invoice = ledger_service.create_paid_invoice(db, client_id, amount, NEW_CUSTOMER_INVOICE_DESCRIPTION)
        ledger_service.consume_payment(db, payment, invoice)

    logger.info(
        f"Payment {reference} settled for client {client_id}",
        extra={"context": {"client_id": client_id, "reference": reference, "amount": str(amount)}},
    )
    return Result.success(amount)


def _create_ticket(db: Session, ctx: ActionContext) -> ActionOutcome:
    description = f"Reporte automatico en paso: {ctx.prior_step}. Mensaje: {ctx.inbound_text}"
    ticket = Ticket(
        client_id=ctx.chat_session.client_id,
        description=description,
        priority=TICKET_PRIORITY_HIGH,
        status="open",
        created_at=datetime.now(timezone.utc),
    )
    db.add(ticket)
    db.flush()
    logger.info(f"Ticket {ticket.id} created for client {ctx.chat_session.client_id}")
    return ActionOutcome(side_effects=("ticket_created",))


def _query_debt(db: Session, ctx: ActionContext) -> ActionOutcome:
    summary = ledger_service.summarize_debt(db, ctx.chat_session.client_id)
    if summary.count == 0:
        return ActionOutcome(reply_text=MSG_NO_DEBT, options=())

    lines = "\n".join(
        f"- {invoice.description} -> ${format_amount(invoice.amount)}" for invoice in summary.invoices
    )
    text = (
        f"ESTADO DE CUENTA\n\nActualmente tienes {summary.count} factura(s) pendiente(s):\n\n"
        f"{lines}\n\nSUB-TOTAL A PAGAR: ${format_amount(summary.total)}\n\n"
        "¿Deseas reportar un pago para cancelar este saldo?"
    )
    return ActionOutcome(reply_text=text)


def _verify_payment(db: Session, ctx: ActionContext) -> ActionOutcome:
    reference = ctx.temp_data.get(REFERENCE_KEY) or ""
    result = reconcile_payment(db, ctx.chat_session.client_id, reference)

    if result.ok:
        text = (
            f"Excelente! Hemos verificado tu transferencia por ${format_amount(result.value)}.\n\n"
            "Tu factura ha sido pagada y tu servicio esta procesado. "
            f"¡Gracias por preferir {settings.company_name}!"
        )
        return ActionOutcome(reply_text=text, options=PAYMENT_SUCCESS_OPTIONS, side_effects=("payment_settled",))

    text = (
        f"No encontramos un pago disponible con la referencia {reference}, o ya fue procesada. "
        "Por favor verifica el numero e intenta de nuevo."
    )
    return ActionOutcome(
        reply_text=text,
        options=(),
        next_step=REFERENCE_STEP,
        side_effects=(f"payment_rejected:{result.error_code.value}",),
    )


def _close_session(db: Session, ctx: ActionContext) -> ActionOutcome:
    mark_closed(db, ctx.chat_session)
    return ActionOutcome(side_effects=("session_closed",))


def _escalate_to_human(db: Session, ctx: ActionContext) -> ActionOutcome:
    mark_escalated(db, ctx.chat_session)
    return ActionOutcome(
        reply_text=f"{ctx.step.prompt}\n\n{MSG_ESCALATION_NOTICE}",
        options=(),
        side_effects=("session_escalated",),
    )


ACTION_HANDLERS: dict[SystemAction, Callable[[Session, ActionContext], ActionOutcome]] = {
    SystemAction.CREATE_TICKET: _create_ticket,
    SystemAction.QUERY_DEBT: _query_debt,
    SystemAction.VERIFY_PAYMENT: _verify_payment,
    SystemAction.CLOSE_SESSION: _close_session,
    SystemAction.ESCALATE_TO_HUMAN: _escalate_to_human,
}


def execute_action(db: Session, action: SystemAction, ctx: ActionContext) -> ActionOutcome:
    handler = ACTION_HANDLERS[action]
    logger.debug(f"Running action {action.value} for session {ctx.chat_session.id}")
    return handler(db, ctx)
