"""Single owner of goals, habit maps, the board and reward counters."""
from __future__ import annotations

import asyncio
import itertools
import logging
import random
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from habitbingo.core.config import settings
from habitbingo.core.errors import CellNotFoundError, GoalNotFoundError, InvalidGoalError, NoSkipTicketsError
from habitbingo.db.models import AppProfile, BoardRecord
from habitbingo.db.session import SessionLocal
from habitbingo.observability.metrics import count, log_metric
from habitbingo.services import habit_map_store
from habitbingo.services.board_models import Board, BoardCell
from habitbingo.services.board_scheduler import clamp_board_size, refresh, replace_cell
from habitbingo.services.completion import apply_progress
from habitbingo.services.events.base import (
    BOARD_COMPLETED,
    BOARD_REFRESHED,
    LINE_COMPLETED,
    MAP_FAILED,
    MAP_READY,
    EventSink,
)
from habitbingo.services.events.hooks import emit_event
from habitbingo.services.habit_models import HabitMap
from habitbingo.services.habit_pipeline import PipelineFailure, build_habit_map
from habitbingo.services.local_maps import build_local_habit_map, is_support_goal
from habitbingo.services.oracle import Oracle, build_oracle
from habitbingo.services.rewards import RewardOutcome, settle
from habitbingo.services.stage_tracker import current_stage, record_completion

logger = logging.getLogger(__name__)

TASK_HISTORY_LIMIT = 200
_GOAL_SEPARATORS = re.compile(r"[,，、;；\n]+|\s+and\s+|以及")


def parse_goals(text: str) -> List[str]:
    """Split free text into distinct goal labels, keeping their order."""
    goals: List[str] = []
    for part in _GOAL_SEPARATORS.split(text or ""):
        goal = part.strip().strip(".。．")
        if goal and goal not in goals:
            goals.append(goal)
    return goals


@dataclass
class CompletionOutcome:
    board: Board
    reward: RewardOutcome = field(default_factory=RewardOutcome)
    stage: Optional[int] = None
    already_done: bool = False


@dataclass
class ProfileSummary:
    goals: List[str]
    blocked_topics: List[str]
    board_size: int
    coins: int
    total_coins_earned: int
    skip_tickets: int


class HabitBingoState:
    """
    Serialises every mutation through one asyncio lock.

    Pipeline runs are independent tasks keyed by goal. Each run carries the
    goal's generation token at launch; a result is only committed if the token
    is still current, so removed or renamed goals never get written back.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        oracle: Optional[Oracle] = None,
        event_sink: Optional[EventSink] = None,
        rng: Optional[random.Random] = None,
    ):
        self._session_factory = session_factory
        self._oracle = oracle
        self._event_sink = event_sink
        self._rng = rng or random.Random()
        self._lock = asyncio.Lock()
        self._token_counter = itertools.count(1)
        self._tokens: Dict[str, int] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._refreshing = False

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    def generation_token(self, goal: str) -> Optional[int]:
        return self._tokens.get(goal)

    # Goals

    async def register_goals(self, text: str) -> List[str]:
        """Replace the tracked goal list; new goals get a habit map, dropped goals lose theirs."""
        goals = parse_goals(text)
        if not goals:
            raise InvalidGoalError("No goals found in text")
        async with self._lock:
            with self._session_factory() as db:
                profile = _profile(db)
                previous = list(profile.goals or [])
                removed = [goal for goal in previous if goal not in goals]
                added = [goal for goal in goals if goal not in previous]
                profile.goals = goals
                for goal in removed:
                    self._forget_goal(db, profile, goal)
                pending = self._prepare_maps(db, added)
                db.commit()
        logger.info("Goals registered: %s added, %s removed", len(added), len(removed))
        for goal in pending:
            self._launch_pipeline(goal)
        if added or removed:
            await self.refresh_board()
        return goals

    async def remove_goal(self, goal: str) -> List[str]:
        async with self._lock:
            with self._session_factory() as db:
                profile = _profile(db)
                if goal not in (profile.goals or []):
                    raise GoalNotFoundError(goal)
                profile.goals = [item for item in profile.goals if item != goal]
                self._forget_goal(db, profile, goal)
                db.commit()
                goals = list(profile.goals)
        await self.refresh_board()
        return goals

    async def rename_goal(self, old: str, new: str) -> List[str]:
        new = (new or "").strip()
        if not new or new == old:
            raise InvalidGoalError("New goal name must be non-empty and different")
        async with self._lock:
            with self._session_factory() as db:
                profile = _profile(db)
                goals = list(profile.goals or [])
                if old not in goals:
                    raise GoalNotFoundError(old)
                if new in goals:
                    raise InvalidGoalError(f"Goal already tracked: {new}")
                profile.goals = [new if item == old else item for item in goals]
                self._tokens.pop(old, None)
                moved = habit_map_store.rename_habit_map(db, old, new)
                pending = [] if moved else self._prepare_maps(db, [new])
                if moved:
                    self._bump_token(new)
                board = _load_board(db, profile)
                for cell in board.cells:
                    if cell.goal == old:
                        cell.goal = new
                _save_board(db, board)
                profile.task_history = [
                    {**entry, "goal": new} if entry.get("goal") == old else entry for entry in profile.task_history or []
                ]
                db.commit()
                goals = list(profile.goals)
        for goal in pending:
            self._launch_pipeline(goal)
        await self.refresh_board()
        return goals

    async def regenerate_goal(self, goal: str) -> Union[HabitMap, PipelineFailure]:
        """Force a rebuild. On failure the stored map is left as it was."""
        with self._session_factory() as db:
            if goal not in (_profile(db).goals or []):
                raise GoalNotFoundError(goal)
        if self._oracle is None:
            async with self._lock:
                with self._session_factory() as db:
                    habit_map = build_local_habit_map(goal)
                    habit_map_store.save_habit_map(db, habit_map)
                    emit_event(db, MAP_READY, {"goal": goal, "source": habit_map.source}, sink=self._event_sink)
                    db.commit()
            await self.refresh_board()
            return habit_map
        token = self._bump_token(goal)
        return await self._run_pipeline(goal, token)

    async def ensure_habit_maps(self) -> List[str]:
        """Start builds for tracked goals that have no stored map and no run in flight."""
        async with self._lock:
            with self._session_factory() as db:
                profile = _profile(db)
                stored = habit_map_store.load_habit_maps(db)
                missing = [goal for goal in profile.goals or [] if goal not in stored and goal not in self._tasks]
                pending = self._prepare_maps(db, missing)
                db.commit()
        for goal in pending:
            self._launch_pipeline(goal)
        return missing

    def list_goals(self) -> List[str]:
        with self._session_factory() as db:
            return list(_profile(db).goals or [])

    def get_habit_map(self, goal: str) -> Tuple[HabitMap, int]:
        with self._session_factory() as db:
            if goal not in (_profile(db).goals or []):
                raise GoalNotFoundError(goal)
            habit_map = habit_map_store.load_habit_map(db, goal)
        if habit_map is None:
            raise GoalNotFoundError(goal)
        return habit_map, current_stage(habit_map)

    # Pipeline tasks

    def _launch_pipeline(self, goal: str) -> asyncio.Task:
        token = self._tokens.get(goal) or self._bump_token(goal)
        task = asyncio.create_task(self._run_pipeline(goal, token), name=f"habit-map:{goal}")
        self._tasks[goal] = task
        task.add_done_callback(lambda finished, key=goal: self._forget_task(key, finished))
        return task

    def _forget_task(self, goal: str, task: asyncio.Task) -> None:
        if self._tasks.get(goal) is task:
            self._tasks.pop(goal, None)

    async def wait_for_pipelines(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()))

    async def _build(self, goal: str) -> Union[HabitMap, PipelineFailure]:
        if self._oracle is None:
            return PipelineFailure(goal=goal, pass_name="oracle", reason="no generation service is configured")
        try:
            return await build_habit_map(goal, self._oracle)
        except Exception as exc:
            logger.exception("Habit map build crashed")
            count("habit_pipeline_crashed", {"goal": goal})
            return PipelineFailure(goal=goal, pass_name="pipeline", reason=f"{type(exc).__name__}: {exc}")

    async def _run_pipeline(self, goal: str, token: int) -> Union[HabitMap, PipelineFailure]:
        result = await self._build(goal)
        async with self._lock:
            if self._tokens.get(goal) != token:
                logger.info("Discarding stale habit map result (token %s)", token)
                count("habit_pipeline_result_discarded", {"goal": goal})
                return result
            with self._session_factory() as db:
                if isinstance(result, HabitMap):
                    habit_map_store.save_habit_map(db, result)
                    emit_event(db, MAP_READY, {"goal": goal, "source": result.source}, sink=self._event_sink)
                else:
                    if habit_map_store.load_habit_map(db, goal) is None:
                        habit_map_store.save_habit_map(db, build_local_habit_map(goal))
                    emit_event(db, MAP_FAILED, result.to_dict(), sink=self._event_sink)
                db.commit()
        await self.refresh_board()
        return result

    def _prepare_maps(self, db: Session, goals: Sequence[str]) -> List[str]:
        """Store local maps where no generation service is configured; return goals needing a pipeline run."""
        pending: List[str] = []
        for goal in goals:
            self._bump_token(goal)
            if self._oracle is None or is_support_goal(goal):
                habit_map_store.save_habit_map(db, build_local_habit_map(goal))
            else:
                pending.append(goal)
        return pending

    def _forget_goal(self, db: Session, profile: AppProfile, goal: str) -> None:
        self._tokens.pop(goal, None)
        habit_map_store.delete_habit_map(db, goal)
        profile.task_history = [entry for entry in profile.task_history or [] if entry.get("goal") != goal]

    def _bump_token(self, goal: str) -> int:
        token = next(self._token_counter)
        self._tokens[goal] = token
        return token

    # Board

    async def refresh_board(self) -> Optional[Board]:
        """Refill the board; returns None when a refresh is already running."""
        if self._refreshing:
            count("board_refresh_skipped")
            return None
        self._refreshing = True
        try:
            async with self._lock:
                with self._session_factory() as db:
                    profile = _profile(db)
                    goal_maps = self._goal_maps(db, profile)
                    result = refresh(
                        _load_board(db, profile),
                        goal_maps,
                        list(profile.blocked_topics or []),
                        list(profile.shuffle_history or []),
                        size=profile.board_size_preference,
                        rng=self._rng,
                    )
                    _save_board(db, result.board)
                    profile.shuffle_history = result.history
                    _append_task_history(profile, result.placed)
                    emit_event(
                        db,
                        BOARD_REFRESHED,
                        {"size": result.board.size, "placed": len(result.placed), "fallback": result.fallback_used},
                        sink=self._event_sink,
                    )
                    db.commit()
            log_metric("board_refresh_fallback_cells", result.fallback_used)
            return result.board
        finally:
            self._refreshing = False

    def get_board(self) -> Board:
        with self._session_factory() as db:
            return _load_board(db, _profile(db))

    async def complete_cell(self, cell_id: str) -> CompletionOutcome:
        async with self._lock:
            with self._session_factory() as db:
                profile = _profile(db)
                board = _load_board(db, profile)
                index = board.find_cell(cell_id)
                if index is None:
                    raise CellNotFoundError(cell_id)
                cell = board.cells[index]
                if cell.is_done:
                    return CompletionOutcome(board=board, already_done=True)
                cell.is_done = True
                profile.task_history = [
                    {**entry, "is_done": True} if entry.get("id") == cell.id else entry
                    for entry in profile.task_history or []
                ]

                stage = None
                if cell.goal and cell.origin_step_id:
                    habit_map = habit_map_store.load_habit_map(db, cell.goal)
                    if habit_map is not None and record_completion(habit_map, cell.origin_step_id) is not None:
                        habit_map_store.save_habit_map(db, habit_map)
                        stage = current_stage(habit_map)

                new_lines, completed_board = apply_progress(board)
                reward = settle(cell.title, new_lines, completed_board, bool(profile.first_full_board_bonus_granted))
                profile.coins = (profile.coins or 0) + reward.coins
                profile.total_coins_earned = (profile.total_coins_earned or 0) + reward.coins
                if reward.skip_tickets:
                    profile.skip_tickets = (profile.skip_tickets or 0) + reward.skip_tickets
                    profile.first_full_board_bonus_granted = True
                if new_lines:
                    emit_event(db, LINE_COMPLETED, {"count": new_lines}, sink=self._event_sink)
                if completed_board:
                    emit_event(
                        db,
                        BOARD_COMPLETED,
                        {"completed_full_boards": board.completed_full_boards},
                        sink=self._event_sink,
                    )
                _save_board(db, board)
                db.commit()
        log_metric("coins_awarded", reward.coins, {"lines": new_lines, "board": completed_board})
        return CompletionOutcome(board=board, reward=reward, stage=stage)

    async def skip_cell(self, cell_id: str) -> Board:
        """Spend one skip ticket to swap an incomplete cell for a different task."""
        async with self._lock:
            with self._session_factory() as db:
                profile = _profile(db)
                board = _load_board(db, profile)
                index = board.find_cell(cell_id)
                if index is None:
                    raise CellNotFoundError(cell_id)
                if board.cells[index].is_done:
                    return board
                if (profile.skip_tickets or 0) <= 0:
                    raise NoSkipTicketsError("No skip tickets left")
                profile.skip_tickets -= 1
                replacement = replace_cell(
                    board,
                    index,
                    self._goal_maps(db, profile),
                    list(profile.blocked_topics or []),
                    list(profile.shuffle_history or []),
                    rng=self._rng,
                )
                board.cells[index] = replacement
                _append_task_history(profile, [replacement])
                _save_board(db, board)
                db.commit()
        return board

    async def block_cell(self, cell_id: str) -> Optional[Board]:
        """Block the cell's text as a topic and refresh the board."""
        async with self._lock:
            with self._session_factory() as db:
                profile = _profile(db)
                board = _load_board(db, profile)
                index = board.find_cell(cell_id)
                if index is None:
                    raise CellNotFoundError(cell_id)
                title = board.cells[index].title.strip()
                topics = list(profile.blocked_topics or [])
                if title and title not in topics:
                    topics.append(title)
                    profile.blocked_topics = topics
                db.commit()
        return await self.refresh_board()

    async def set_blocked_topics(self, topics: Sequence[str]) -> List[str]:
        cleaned: List[str] = []
        for topic in topics:
            value = (topic or "").strip()
            if value and value not in cleaned:
                cleaned.append(value)
        async with self._lock:
            with self._session_factory() as db:
                _profile(db).blocked_topics = cleaned
                db.commit()
        return cleaned

    async def set_board_size(self, size: int) -> Optional[Board]:
        async with self._lock:
            with self._session_factory() as db:
                _profile(db).board_size_preference = clamp_board_size(size)
                db.commit()
        return await self.refresh_board()

    def get_profile(self) -> ProfileSummary:
        with self._session_factory() as db:
            profile = _profile(db)
            return ProfileSummary(
                goals=list(profile.goals or []),
                blocked_topics=list(profile.blocked_topics or []),
                board_size=profile.board_size_preference,
                coins=profile.coins or 0,
                total_coins_earned=profile.total_coins_earned or 0,
                skip_tickets=profile.skip_tickets or 0,
            )

    def _goal_maps(self, db: Session, profile: AppProfile) -> Dict[str, HabitMap]:
        """Maps for tracked goals; goals still waiting on a pipeline run are skipped."""
        stored = habit_map_store.load_habit_maps(db)
        return {goal: stored[goal] for goal in profile.goals or [] if goal in stored}


def _profile(db: Session) -> AppProfile:
    profile = db.get(AppProfile, 1)
    if profile is None:
        profile = AppProfile(
            id=1,
            goals=[],
            blocked_topics=[],
            board_size_preference=settings.board_size_default,
            coins=0,
            total_coins_earned=0,
            skip_tickets=0,
            first_full_board_bonus_granted=False,
            shuffle_history=[],
            task_history=[],
        )
        db.add(profile)
        db.flush()
    return profile


def _load_board(db: Session, profile: AppProfile) -> Board:
    record = db.get(BoardRecord, 1)
    if record is None or not record.document:
        return Board.empty(clamp_board_size(profile.board_size_preference or settings.board_size_default))
    return Board.model_validate(record.document)


def _save_board(db: Session, board: Board) -> None:
    record = db.get(BoardRecord, 1)
    document = board.model_dump(mode="json")
    if record is None:
        db.add(BoardRecord(id=1, document=document))
    else:
        record.document = document
    db.flush()


def _append_task_history(profile: AppProfile, cells: Sequence[BoardCell]) -> None:
    history = list(profile.task_history or [])
    history.extend(
        {"id": cell.id, "title": cell.title, "goal": cell.goal, "is_done": cell.is_done}
        for cell in cells
        if not cell.is_empty
    )
    profile.task_history = history[-TASK_HISTORY_LIMIT:]


@lru_cache
def get_state_owner() -> HabitBingoState:
    """Process-wide state owner used by the API and the worker."""
    return HabitBingoState(oracle=build_oracle())
