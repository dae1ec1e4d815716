from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from app.database import Base


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    description = Column(Text, nullable=False)
    priority = Column(Text, nullable=False)  # low, medium, high
    status = Column(Text, nullable=False, default="open")
    created_at = Column(DateTime(timezone=True), nullable=False)

    client = relationship("Client", back_populates="tickets")
