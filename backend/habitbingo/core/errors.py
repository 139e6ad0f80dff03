"""Exception hierarchy for the habit-map pipeline and the board state owner."""
from __future__ import annotations

from typing import List, Optional


class HabitBingoError(Exception):
    """Base exception for the service."""


class OracleError(HabitBingoError):
    """Any failure talking to, or interpreting, the text-generation service."""


class NetworkError(OracleError):
    """Transport-level failure (connection dropped, timeout)."""


class ServerError(OracleError):
    """The generation service answered with an error status or an error envelope."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(OracleError):
    """Output was not valid JSON or was rejected by a validator."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = list(issues or [])


class ExhaustedError(HabitBingoError):
    """A pipeline pass ran out of attempts; the run is aborted."""

    def __init__(self, goal: str, pass_name: str, reason: str):
        super().__init__(f"Pipeline for '{goal}' failed during {pass_name}: {reason}")
        self.goal = goal
        self.pass_name = pass_name
        self.reason = reason


class GoalNotFoundError(HabitBingoError):
    def __init__(self, goal: str):
        super().__init__(f"Goal not tracked: {goal}")
        self.goal = goal


class CellNotFoundError(HabitBingoError):
    def __init__(self, cell_id: str):
        super().__init__(f"Board cell not found: {cell_id}")
        self.cell_id = cell_id


class NoSkipTicketsError(HabitBingoError):
    """Raised when a skip is requested without any ticket left."""


class InvalidGoalError(HabitBingoError):
    """Goal text is empty, unchanged, or already tracked."""
