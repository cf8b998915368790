"""
SQLAlchemy engine, session factory and declarative base.

PostgreSQL (with pgvector) is the production database; SQLite is supported
for local development and the unit tests, where vector and full-text search
fall back to Python scoring.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings

_IS_SQLITE = settings.database_url.startswith("sqlite")

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if _IS_SQLITE else {},
    pool_pre_ping=True,  # Celery workers hold connections across long idle gaps
)


if _IS_SQLITE:

    @event.listens_for(engine, "connect")
    def _configure_sqlite(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=15000")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create the vector extension (PostgreSQL) and all tables."""
    from . import models  # noqa: F401  registers the mappers on Base

    if engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

    Base.metadata.create_all(bind=engine)


def is_postgres(db) -> bool:
    """True when the session is bound to PostgreSQL (pgvector + tsvector available)."""
    bind = db.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def safe_rollback(db):
    """Rollback that won't raise on a broken connection."""
    try:
        db.rollback()
    except Exception:
        pass
