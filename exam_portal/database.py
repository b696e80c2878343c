"""Database configuration and session dependency."""

from typing import Iterator

from sqlmodel import Session, SQLModel, create_engine

from exam_portal.config import settings

DATABASE_URL = settings.DATABASE_URL

_connect_args = (
    {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
)

# echo=False to avoid noisy logs; toggle EXAM_DATABASE_ECHO for debugging
engine = create_engine(
    DATABASE_URL, echo=settings.DATABASE_ECHO, connect_args=_connect_args
)


def create_db_and_tables() -> None:
    """Create database tables based on SQLModel metadata."""
    # Import models so every table is registered on the metadata
    from exam_portal import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency that yields a database session."""
    with Session(engine) as session:
        yield session


def new_session() -> Session:
    """Open a standalone session for work outside a request (timers, sweeps)."""
    return Session(engine)
