"""Singleton profile row: goals, filters, rewards and rotation history."""
from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer, func, text as sa_text

from habitbingo.db.base import Base
from habitbingo.db.types import JSONBCompat


class AppProfile(Base):
    __tablename__ = "app_profiles"

    id = Column(Integer, primary_key=True, default=1)
    goals = Column(JSONBCompat, nullable=False, default=list)
    blocked_topics = Column(JSONBCompat, nullable=False, default=list)
    board_size_preference = Column(Integer, nullable=False, default=3, server_default=sa_text("3"))
    coins = Column(Integer, nullable=False, default=0, server_default=sa_text("0"))
    total_coins_earned = Column(Integer, nullable=False, default=0, server_default=sa_text("0"))
    skip_tickets = Column(Integer, nullable=False, default=0, server_default=sa_text("0"))
    first_full_board_bonus_granted = Column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
    shuffle_history = Column(JSONBCompat, nullable=False, default=list)
    task_history = Column(JSONBCompat, nullable=False, default=list)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
