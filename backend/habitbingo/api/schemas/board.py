"""Schemas for the bingo board."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from habitbingo.services.board_models import Board


class BoardResponse(BaseModel):
    board: Board
    coins: int
    skip_tickets: int
    request_id: str


class RefreshResponse(BaseModel):
    refreshed: bool
    board: Optional[Board]
    request_id: str


class RewardSummary(BaseModel):
    coins: int
    new_lines: int
    completed_board: bool
    skip_tickets: int


class CellCompleteResponse(BaseModel):
    board: Board
    reward: RewardSummary
    already_done: bool
    stage: Optional[int] = None
    request_id: str


class BoardSizeRequest(BaseModel):
    size: int = Field(..., ge=3, le=5)


class BlockedTopicsRequest(BaseModel):
    topics: List[str] = Field(default_factory=list)


class BlockedTopicsResponse(BaseModel):
    topics: List[str]
    request_id: str
