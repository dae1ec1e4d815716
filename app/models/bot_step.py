from sqlalchemy import Boolean, Column, Integer, Text

from app.database import Base, JSONType


class BotStep(Base):
    """Configured dialogue node. Read-only for the engine."""

    __tablename__ = "bot_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(Text, nullable=False, unique=True)
    prompt = Column(Text, nullable=False)
    is_question = Column(Boolean, nullable=False, default=False)
    default_next = Column(Text)
    options = Column(JSONType, nullable=False, default=list)  # ordered; first match wins
    action = Column(Text)
