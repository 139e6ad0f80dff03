"""Tests for board refresh, resize and dedup."""
from __future__ import annotations

import random

import pytest

from habitbingo.services.board_models import Board, BoardCell
from habitbingo.services.board_scheduler import (
    ALWAYS_AVAILABLE,
    clamp_board_size,
    deduplicate_board,
    refresh,
    replace_cell,
    resize_board,
)
from habitbingo.services.similarity import reject_if_similar_to_any

GUITAR_ACTIONS = [
    "Play one chord",
    "Tune the low string",
    "Clap a rhythm pattern",
    "Hum the melody of a favourite song",
    "Place the capo on fret two",
    "Watch a lesson clip",
]
SPANISH_ACTIONS = [
    "Learn three new verbs",
    "Label a kitchen item with its name",
    "Listen to a podcast intro",
    "Say hola to a neighbour",
    "Review flashcards on the bus",
    "Count backwards from veinte",
]


def _filled_board(size: int = 3) -> Board:
    return Board(size=size, cells=[BoardCell(title=f"Existing task number {index}") for index in range(size * size)])


@pytest.mark.parametrize("size", [3, 4, 5])
def test_refresh_fills_every_cell(size: int) -> None:
    result = refresh(Board.empty(size), {}, [], [], rng=random.Random(3))

    assert len(result.board.cells) == size * size
    assert all(not cell.is_empty for cell in result.board.cells)


def test_large_board_without_goals_ends_in_always_available_item() -> None:
    result = refresh(Board.empty(5), {}, [], [], rng=random.Random(3))

    assert ALWAYS_AVAILABLE in result.board.titles()
    assert result.fallback_used > 0


def test_goal_cells_are_capped(map_with) -> None:
    goal_maps = {"guitar": map_with("guitar", GUITAR_ACTIONS), "spanish": map_with("spanish", SPANISH_ACTIONS)}

    result = refresh(Board.empty(3), goal_maps, [], [], goal_cap=4, rng=random.Random(11))

    assert result.board.goal_cell_count() == 4
    goal_cells = [cell for cell in result.board.cells if cell.goal]
    assert all(cell.origin_step_id == "S1" and cell.micro_action_id for cell in goal_cells)


def test_kept_goal_cells_count_against_cap(map_with) -> None:
    board = _filled_board()
    for index in range(4):
        board.cells[index] = BoardCell(title=GUITAR_ACTIONS[index], goal="guitar", is_done=True)

    result = refresh(board, {"spanish": map_with("spanish", SPANISH_ACTIONS)}, [], [], goal_cap=4, rng=random.Random(5))

    assert result.board.goal_cell_count() == 4
    assert all(cell.goal is None for cell in result.placed)


def test_blocked_topics_never_reach_the_board(map_with) -> None:
    habit_map = map_with("morning", ["Brew a pour-over coffee", "Make the bed", "Open the curtains"])

    result = refresh(Board.empty(3), {"morning": habit_map}, ["Coffee"], [], rng=random.Random(2))

    assert not any("coffee" in title.casefold() for title in result.board.titles())
    assert all(not cell.is_empty for cell in result.board.cells)


def test_history_rejects_near_duplicates(map_with) -> None:
    habit_map = map_with("fitness", ["5-minute walk"])

    result = refresh(Board.empty(3), {"fitness": habit_map}, [], [["walk for 5 minutes"]], rng=random.Random(1))

    assert "5-minute walk" not in result.board.titles()
    assert result.board.goal_cell_count() == 0


def test_placed_titles_are_not_similar_to_each_other(map_with) -> None:
    goal_maps = {"guitar": map_with("guitar", GUITAR_ACTIONS)}

    result = refresh(Board.empty(4), goal_maps, [], [], rng=random.Random(8))

    titles = [title for title in result.board.titles() if title != ALWAYS_AVAILABLE]
    for index, title in enumerate(titles):
        assert not reject_if_similar_to_any(title, titles[:index])


def test_partial_refresh_keeps_completed_cells() -> None:
    board = _filled_board()
    board.cells[4].is_done = True
    kept = board.cells[4].model_copy()

    result = refresh(board, {}, [], [], rng=random.Random(4))

    assert result.board.cells[4] == kept
    assert len(result.placed) == 8
    assert not any(cell.is_done for index, cell in enumerate(result.board.cells) if index != 4)


def test_fully_completed_board_starts_fresh() -> None:
    board = _filled_board()
    for cell in board.cells:
        cell.is_done = True
    board.full_rewarded = True
    board.completed_full_boards = 2
    board.rewarded_line_ids = list(range(8))

    result = refresh(board, {}, [], [], rng=random.Random(4))

    assert not any(cell.is_done for cell in result.board.cells)
    assert result.board.rewarded_line_ids == []
    assert result.board.full_rewarded is False
    assert result.board.completed_full_boards == 2


def test_history_is_truncated() -> None:
    history = [["Old one"], ["Old two"], ["Old three"]]

    result = refresh(Board.empty(3), {}, [], history, history_limit=3, rng=random.Random(4))

    assert len(result.history) == 3
    assert result.history[0] == ["Old two"]
    assert result.history[-1] == result.board.titles()


def test_resize_keeps_done_cells_and_marks_finished_lines() -> None:
    board = _filled_board(4)
    for index in (0, 1, 2):
        board.cells[index].is_done = True

    resized = resize_board(board, 3)

    assert resized.size == 3
    assert [cell.is_done for cell in resized.cells[:3]] == [True, True, True]
    assert resized.rewarded_line_ids == [0]


def test_refresh_with_new_size_does_not_repay_lines() -> None:
    board = _filled_board(4)
    for index in (0, 1, 2):
        board.cells[index].is_done = True

    result = refresh(board, {}, [], [], size=3, rng=random.Random(6))

    assert result.board.size == 3
    assert result.board.rewarded_line_ids == [0]
    assert len(result.placed) == 6


def test_board_size_is_clamped() -> None:
    assert clamp_board_size(1) == 3
    assert clamp_board_size(9) == 5
    assert clamp_board_size(4) == 4


def test_deduplicate_board_is_idempotent() -> None:
    board = Board(
        size=3,
        cells=[BoardCell(title=title) for title in ("Drink water", "drink water!", "Read a page")]
        + [BoardCell() for _ in range(6)],
    )

    once = deduplicate_board(board)
    twice = deduplicate_board(once)

    assert once.cells[1].is_empty
    assert [cell.title for cell in once.cells] == [cell.title for cell in twice.cells]


def test_replace_cell_avoids_outgoing_title(map_with) -> None:
    board = refresh(Board.empty(3), {"guitar": map_with("guitar", GUITAR_ACTIONS)}, [], [], rng=random.Random(9)).board
    outgoing = board.cells[0]

    replacement = replace_cell(board, 0, {"guitar": map_with("guitar", GUITAR_ACTIONS)}, [], [], rng=random.Random(9))

    assert replacement.title != outgoing.title
    assert replacement.id != outgoing.id
