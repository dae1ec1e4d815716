from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import settings

engine = create_engine(settings.database_url, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON on other backends (tests run on SQLite).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def get_db():
    """Yield a session per request. Routers own commit/rollback."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
