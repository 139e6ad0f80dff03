"""Coin and skip-ticket bookkeeping for completed cells, lines and boards."""
from __future__ import annotations

from dataclasses import dataclass

LINE_BONUS = 5
FULL_BOARD_BONUS = 50
FIRST_FULL_BOARD_SKIP_TICKETS = 1


def estimate_coins(text: str) -> int:
    """Small, predictable payout by task length."""
    length = len(text.strip())
    if length <= 6:
        return 1
    if length <= 12:
        return 2
    if length <= 18:
        return 3
    return 4


@dataclass
class RewardOutcome:
    coins: int = 0
    new_lines: int = 0
    completed_board: bool = False
    skip_tickets: int = 0

    def to_dict(self) -> dict:
        return {
            "coins": self.coins,
            "new_lines": self.new_lines,
            "completed_board": self.completed_board,
            "skip_tickets": self.skip_tickets,
        }


def settle(
    cell_title: str,
    new_lines: int,
    completed_board: bool,
    first_full_board_already_granted: bool,
) -> RewardOutcome:
    outcome = RewardOutcome(coins=estimate_coins(cell_title), new_lines=new_lines, completed_board=completed_board)
    outcome.coins += new_lines * LINE_BONUS
    if completed_board:
        outcome.coins += FULL_BOARD_BONUS
        if not first_full_board_already_granted:
            outcome.skip_tickets = FIRST_FULL_BOARD_SKIP_TICKETS
    return outcome
