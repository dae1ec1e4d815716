from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import relationship

from app.database import Base, JSONType


class ChatSession(Base):
    __tablename__ = "sessions"
    __table_args__ = (
        # one open session per client and channel
        Index(
            "uq_sessions_open_per_channel",
            "client_id",
            "channel",
            unique=True,
            postgresql_where=text("state <> 'closed'"),
            sqlite_where=text("state <> 'closed'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    channel = Column(Text, nullable=False)  # telegram, web
    state = Column(Text, nullable=False, default="bot_active")  # bot_active, escalated, closed
    flow = Column(Text, nullable=False, default="principal")
    current_step = Column(Text)
    temp_data = Column(JSONType, nullable=False, default=dict)
    started_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True))
    closed_at = Column(DateTime(timezone=True))

    client = relationship("Client", back_populates="sessions")
    messages = relationship("Message", back_populates="session", order_by="Message.id")
