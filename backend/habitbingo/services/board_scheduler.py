"""Fill and refill the bingo grid from goal and support candidate streams."""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Sequence

from habitbingo.core.config import settings
from habitbingo.services.board_models import Board, BoardCell
from habitbingo.services.candidate_pool import Candidate, candidates, is_blocked
from habitbingo.services.completion import completed_lines
from habitbingo.services.habit_models import HabitMap
from habitbingo.services.local_maps import SUPPORT_GOAL_KEY, build_local_habit_map
from habitbingo.services.similarity import reject_if_similar_to_any

logger = logging.getLogger(__name__)

MIN_BOARD_SIZE = 3
MAX_BOARD_SIZE = 5

FALLBACK_POOL = (
    "Drink a glass of water",
    "Stretch for 30 seconds",
    "Take three slow breaths",
    "Open a window for fresh air",
    "Roll your shoulders five times",
    "Put one thing back where it belongs",
    "Step outside for one minute",
)
ALWAYS_AVAILABLE = "Take a short break"


@dataclass
class RefreshResult:
    board: Board
    history: List[List[str]]
    placed: List[BoardCell] = field(default_factory=list)
    fallback_used: int = 0


def clamp_board_size(size: int) -> int:
    return max(MIN_BOARD_SIZE, min(MAX_BOARD_SIZE, int(size)))


def resize_board(board: Board, size: int) -> Board:
    """
    Return a board of the requested size.

    Completed cells keep their row and column when they still fit; lines they
    already complete on the new grid are marked rewarded so they never pay twice.
    """
    size = clamp_board_size(size)
    if board.size == size and len(board.cells) == size * size:
        return board
    resized = Board.empty(size, completed_full_boards=board.completed_full_boards)
    if len(board.cells) == board.size * board.size:
        for index, cell in enumerate(board.cells):
            if not cell.is_done:
                continue
            row, col = divmod(index, board.size)
            if row < size and col < size:
                resized.cells[row * size + col] = cell.model_copy()
    resized.rewarded_line_ids = completed_lines(resized)
    return resized


def deduplicate_board(board: Board, threshold: Optional[float] = None) -> Board:
    """Clear incomplete cells whose title is similar to an earlier cell on the same board."""
    result = board.model_copy(deep=True)
    kept: List[str] = [cell.title for cell in result.cells if cell.is_done and not cell.is_empty]
    for index, cell in enumerate(result.cells):
        if cell.is_empty or cell.is_done:
            continue
        if reject_if_similar_to_any(cell.title, kept, threshold):
            result.cells[index] = BoardCell()
            continue
        kept.append(cell.title)
    return result


def refresh(
    board: Board,
    goal_maps: Mapping[str, HabitMap],
    blocked_topics: Sequence[str],
    history: Sequence[Sequence[str]],
    *,
    size: Optional[int] = None,
    support_map: Optional[HabitMap] = None,
    goal_cap: Optional[int] = None,
    history_limit: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> RefreshResult:
    """
    Refill a board.

    A pristine board (every title empty) or a fully completed one is filled
    from scratch; otherwise only incomplete cells are replaced. Goal cells are
    capped, every accepted title is checked against the board and the shuffle
    history, and empty slots end in the fallback pool.
    """
    rng = rng or random.Random()
    goal_cap = settings.board_goal_cell_cap if goal_cap is None else goal_cap
    history_limit = settings.shuffle_history_limit if history_limit is None else history_limit
    support_map = support_map or build_local_habit_map(SUPPORT_GOAL_KEY)

    working = resize_board(board.model_copy(deep=True), size if size is not None else board.size)
    fresh_start = working.is_pristine or all(cell.is_done for cell in working.cells)
    if fresh_start and not working.is_pristine:
        working = Board.empty(working.size, completed_full_boards=working.completed_full_boards)
    replace_indices = [index for index, cell in enumerate(working.cells) if fresh_start or not cell.is_done]
    for index in replace_indices:
        working.cells[index] = BoardCell()

    corpus: List[str] = working.titles() + [title for entry in history for title in entry if title]
    goal_count = working.goal_cell_count()

    goal_stream = _shuffled(_goal_candidates(goal_maps, blocked_topics), rng)
    support_stream = _shuffled(candidates(SUPPORT_GOAL_KEY, support_map, blocked_topics), rng)

    placed: List[BoardCell] = []
    fallback_used = 0
    for index in replace_indices:
        candidate: Optional[Candidate] = None
        if goal_count < goal_cap:
            candidate = _pop_distinct(goal_stream, corpus)
        if candidate is None:
            candidate = _pop_distinct(support_stream, corpus)
        if candidate is not None:
            cell = BoardCell(
                title=candidate.text,
                goal=candidate.goal,
                origin_step_id=candidate.step_id,
                micro_action_id=candidate.micro_action_id,
            )
            if cell.goal:
                goal_count += 1
        else:
            cell = BoardCell(title=_fallback_title(corpus, blocked_topics))
            fallback_used += 1
        working.cells[index] = cell
        corpus.append(cell.title)
        placed.append(cell)

    if fallback_used:
        logger.info("Board refresh used %s fallback item(s)", fallback_used)

    new_history = [list(entry) for entry in history] + [working.titles()]
    if history_limit > 0:
        new_history = new_history[-history_limit:]
    else:
        new_history = []
    return RefreshResult(board=working, history=new_history, placed=placed, fallback_used=fallback_used)


def replace_cell(
    board: Board,
    cell_index: int,
    goal_maps: Mapping[str, HabitMap],
    blocked_topics: Sequence[str],
    history: Sequence[Sequence[str]],
    *,
    support_map: Optional[HabitMap] = None,
    goal_cap: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> BoardCell:
    """Pick a new cell for one slot, avoiding the outgoing title; used when a cell is skipped."""
    rng = rng or random.Random()
    goal_cap = settings.board_goal_cell_cap if goal_cap is None else goal_cap
    support_map = support_map or build_local_habit_map(SUPPORT_GOAL_KEY)
    outgoing = board.cells[cell_index]
    corpus = board.titles() + [title for entry in history for title in entry if title]
    goal_count = board.goal_cell_count() - (1 if outgoing.goal and not outgoing.is_empty else 0)

    candidate: Optional[Candidate] = None
    if goal_count < goal_cap:
        goal_stream = _shuffled(_goal_candidates(goal_maps, blocked_topics), rng)
        candidate = _pop_distinct(goal_stream, corpus)
    if candidate is None:
        candidate = _pop_distinct(_shuffled(candidates(SUPPORT_GOAL_KEY, support_map, blocked_topics), rng), corpus)
    if candidate is None:
        return BoardCell(title=_fallback_title(corpus, blocked_topics))
    return BoardCell(
        title=candidate.text,
        goal=candidate.goal,
        origin_step_id=candidate.step_id,
        micro_action_id=candidate.micro_action_id,
    )


def _goal_candidates(goal_maps: Mapping[str, HabitMap], blocked_topics: Sequence[str]) -> List[Candidate]:
    output: List[Candidate] = []
    for goal, habit_map in goal_maps.items():
        if goal == SUPPORT_GOAL_KEY:
            continue
        output.extend(candidates(goal, habit_map, blocked_topics))
    return output


def _shuffled(items: Iterable[Candidate], rng: random.Random) -> List[Candidate]:
    stream = list(items)
    rng.shuffle(stream)
    return stream


def _pop_distinct(stream: List[Candidate], corpus: List[str]) -> Optional[Candidate]:
    while stream:
        candidate = stream.pop(0)
        if not reject_if_similar_to_any(candidate.text, corpus):
            return candidate
    return None


def _fallback_title(corpus: List[str], blocked_topics: Sequence[str]) -> str:
    for title in FALLBACK_POOL:
        if is_blocked(title, blocked_topics):
            continue
        if not reject_if_similar_to_any(title, corpus):
            return title
    return ALWAYS_AVAILABLE
