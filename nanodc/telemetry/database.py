"""Database setup and session management for the device settings store."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .config import DATABASE_URL
from .models import Base


def create_session_factory(database_url: str = DATABASE_URL) -> sessionmaker:
    """
    Build a session factory bound to a fresh engine and create the schema.

    SQLite engines are opened with multithreaded access support because
    counter writes run on a worker thread.
    """
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


SessionLocal = None


def get_session_factory() -> sessionmaker:
    """Return the process-wide session factory, creating it on first use."""
    global SessionLocal
    if SessionLocal is None:
        SessionLocal = create_session_factory()
    return SessionLocal
