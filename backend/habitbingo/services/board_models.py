"""Board document models."""
from __future__ import annotations

from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def _cell_id() -> str:
    return uuid4().hex


class BoardCell(BaseModel):
    id: str = Field(default_factory=_cell_id)
    title: str = ""
    is_done: bool = False
    goal: Optional[str] = None
    origin_step_id: Optional[str] = None
    micro_action_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.title.strip()


class Board(BaseModel):
    size: int = 3
    cells: List[BoardCell] = Field(default_factory=list)
    rewarded_line_ids: List[int] = Field(default_factory=list)
    full_rewarded: bool = False
    completed_full_boards: int = 0

    @classmethod
    def empty(cls, size: int, completed_full_boards: int = 0) -> "Board":
        return cls(
            size=size,
            cells=[BoardCell() for _ in range(size * size)],
            completed_full_boards=completed_full_boards,
        )

    @property
    def is_pristine(self) -> bool:
        return all(cell.is_empty for cell in self.cells)

    def titles(self) -> List[str]:
        return [cell.title for cell in self.cells if not cell.is_empty]

    def goal_cell_count(self) -> int:
        return sum(1 for cell in self.cells if cell.goal and not cell.is_empty)

    def find_cell(self, cell_id: str) -> Optional[int]:
        for index, cell in enumerate(self.cells):
            if cell.id == cell_id:
                return index
        return None
