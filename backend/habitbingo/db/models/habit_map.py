"""Habit map ORM model: one versioned document per goal."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, Text, func

from habitbingo.db.base import Base
from habitbingo.db.types import JSONBCompat


class HabitMapRecord(Base):
    __tablename__ = "habit_maps"

    goal = Column(Text, primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    source = Column(Text, nullable=False, default="pipeline")
    document = Column(JSONBCompat, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
