from sqlalchemy import Column, DateTime, Integer, Text
from sqlalchemy.orm import relationship

from app.database import Base


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(Text, nullable=False, unique=True)  # telegram chat id or web_<user id>
    name = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    sessions = relationship("ChatSession", back_populates="client")
    invoices = relationship("Invoice", back_populates="client")
    tickets = relationship("Ticket", back_populates="client")
