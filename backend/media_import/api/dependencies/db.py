"""Database session dependency."""

from collections.abc import Generator

from sqlalchemy.orm import Session

from media_import.db.session import SessionLocal, get_db


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a managed SQLAlchemy session."""
    yield from get_db()


def get_session_factory():
    """Session factory for work that outlives the request (SSE polling)."""
    return SessionLocal
