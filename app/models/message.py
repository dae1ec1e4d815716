from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from app.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False, index=True)
    role = Column(Text, nullable=False)  # user, bot, agent
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    session = relationship("ChatSession", back_populates="messages")
