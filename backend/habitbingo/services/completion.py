"""Line and full-board completion bookkeeping."""
from __future__ import annotations

from typing import List, Tuple

from habitbingo.services.board_models import Board


def line_indices(size: int) -> List[List[int]]:
    """Cell indices per line: rows, then columns, then the two diagonals (2N+2 lines)."""
    rows = [[row * size + col for col in range(size)] for row in range(size)]
    cols = [[row * size + col for row in range(size)] for col in range(size)]
    diagonal = [index * size + index for index in range(size)]
    anti_diagonal = [index * size + (size - 1 - index) for index in range(size)]
    return rows + cols + [diagonal, anti_diagonal]


def completed_lines(board: Board) -> List[int]:
    if len(board.cells) != board.size * board.size:
        return []
    return [
        line_id
        for line_id, indices in enumerate(line_indices(board.size))
        if all(board.cells[index].is_done for index in indices)
    ]


def apply_progress(board: Board) -> Tuple[int, bool]:
    """
    Record newly completed lines and a first full-board completion on the board.

    Returns ``(new_line_count, did_complete_full_board)``; reward side effects
    are left to the caller.
    """
    rewarded = set(board.rewarded_line_ids)
    new_lines = [line_id for line_id in completed_lines(board) if line_id not in rewarded]
    board.rewarded_line_ids.extend(new_lines)

    did_complete = False
    if board.cells and all(cell.is_done for cell in board.cells) and not board.full_rewarded:
        board.full_rewarded = True
        board.completed_full_boards += 1
        did_complete = True
    return len(new_lines), did_complete
