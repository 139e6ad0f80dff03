"""Event log ORM model (map-ready, board-completed, ...)."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, Integer, Text, func

from habitbingo.db.base import Base
from habitbingo.db.types import JSONBCompat


class EventLog(Base):
    __tablename__ = "event_log"
    __table_args__ = (Index("ix_event_log_event_type", "event_type"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(Text, nullable=False)
    payload = Column(JSONBCompat, nullable=False, default=dict)
    delivery_status = Column(Text, nullable=False, default="recorded")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
