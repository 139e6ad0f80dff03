"""Schemas for goal management and habit maps."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from habitbingo.services.habit_models import HabitMap


class GoalsRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Free-text goals, separated by commas, newlines or 'and'.")


class GoalRenameRequest(BaseModel):
    new_goal: str = Field(..., min_length=1)


class GoalsResponse(BaseModel):
    goals: List[str]
    request_id: str


class HabitMapResponse(BaseModel):
    goal: str
    current_stage: int
    habit_map: HabitMap
    request_id: str


class RegenerateResponse(BaseModel):
    goal: str
    status: str
    failed_pass: Optional[str] = None
    reason: Optional[str] = None
    request_id: str
