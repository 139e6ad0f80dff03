"""Engine and session factory bound to the configured database."""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from habitbingo.core.config import settings

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def create_schema() -> None:
    """Create any missing tables (documents are schemaless JSON, so no migrations are kept)."""
    from habitbingo.db.base import Base
    import habitbingo.db.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
