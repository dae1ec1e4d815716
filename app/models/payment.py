from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, Text

from app.database import Base


class Payment(Base):
    """Bank-reported transfer. `used` flips to True exactly once."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference = Column(Text, nullable=False, unique=True)
    amount = Column(Numeric(12, 2), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    invoice_id = Column(Integer, ForeignKey("invoices.id"))
    created_at = Column(DateTime(timezone=True))
