from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Query, Session

from app.models import Invoice, Payment

OUTSTANDING_STATUSES = ("pending", "overdue")
PAID = "paid"


@dataclass(frozen=True)
class DebtSummary:
    invoices: list[Invoice]
    total: Decimal

    @property
    def count(self) -> int:
        return len(self.invoices)


def outstanding_invoices_query(db: Session, client_id: int, *, lock: bool = False) -> Query:
    """Pending/overdue invoices of the client, oldest due date first (id breaks ties)."""
    query = (
        db.query(Invoice)
        .filter(Invoice.client_id == client_id, Invoice.status.in_(OUTSTANDING_STATUSES))
        .order_by(Invoice.due_date.asc(), Invoice.id.asc())
    )
    if lock:
        query = query.with_for_update().populate_existing()
    return query


def list_outstanding_invoices(db: Session, client_id: int, *, lock: bool = False) -> list[Invoice]:
    return outstanding_invoices_query(db, client_id, lock=lock).all()


def summarize_debt(db: Session, client_id: int) -> DebtSummary:
    invoices = list_outstanding_invoices(db, client_id)
    total = sum((Decimal(invoice.amount) for invoice in invoices), Decimal("0"))
    return DebtSummary(invoices=invoices, total=total)


def unused_payment_query(db: Session, reference: str) -> Query:
    """Unused payment by reference, locked so a concurrent settlement waits and then sees used=true."""
    return (
        db.query(Payment)
        .filter(Payment.reference == reference, Payment.used.is_(False))
        .with_for_update()
        .populate_existing()
    )


def find_unused_payment(db: Session, reference: str) -> Optional[Payment]:
    return unused_payment_query(db, reference).first()


def mark_invoices_paid(db: Session, invoices: list[Invoice]) -> None:
    for invoice in invoices:
        invoice.status = PAID
    db.flush()


def create_paid_invoice(
    db: Session,
    client_id: int,
    amount: Decimal,
    description: str,
    due_in_days: int = 30,
) -> Invoice:
    now = datetime.now(timezone.utc)
    invoice = Invoice(
        client_id=client_id,
        amount=amount,
        description=description,
        due_date=date.today() + timedelta(days=due_in_days),
        status=PAID,
        created_at=now,
    )
    db.add(invoice)
    db.flush()
    return invoice


def consume_payment(db: Session, payment: Payment, invoice: Invoice) -> None:
    """Flip the payment to used and link it to the settled invoice."""
    if payment.used:
        raise ValueError(f"Payment {payment.reference} already used")
    payment.used = True
    payment.invoice_id = invoice.id
    db.flush()
