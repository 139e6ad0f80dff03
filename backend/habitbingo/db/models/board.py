"""Board ORM model (singleton row holding the current grid document)."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, func

from habitbingo.db.base import Base
from habitbingo.db.types import JSONBCompat


class BoardRecord(Base):
    __tablename__ = "bingo_boards"

    id = Column(Integer, primary_key=True, default=1)
    document = Column(JSONBCompat, nullable=False, default=dict)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
