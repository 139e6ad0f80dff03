"""Bingo board API routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from habitbingo.api.schemas.board import (
    BlockedTopicsRequest,
    BlockedTopicsResponse,
    BoardResponse,
    BoardSizeRequest,
    CellCompleteResponse,
    RefreshResponse,
    RewardSummary,
)
from habitbingo.core.errors import CellNotFoundError, NoSkipTicketsError
from habitbingo.observability.metrics import log_metric
from habitbingo.observability.tracing import trace
from habitbingo.services.board_models import Board
from habitbingo.services.state_owner import HabitBingoState, get_state_owner

router = APIRouter()


@router.get("/board", response_model=BoardResponse, tags=["board"])
def get_board(http_request: Request, owner: HabitBingoState = Depends(get_state_owner)) -> BoardResponse:
    request_id = getattr(http_request.state, "request_id", None)
    return _board_response(owner, owner.get_board(), request_id)


@router.post("/board/refresh", response_model=RefreshResponse, tags=["board"])
async def refresh_board(http_request: Request, owner: HabitBingoState = Depends(get_state_owner)) -> RefreshResponse:
    """Refill incomplete cells. A request made while a refresh is running is ignored."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace("board.refresh", metadata={"route": "/board/refresh"}, request_id=request_id):
        board = await owner.refresh_board()
    return RefreshResponse(refreshed=board is not None, board=board, request_id=request_id or "")


@router.post("/board/cells/{cell_id}/complete", response_model=CellCompleteResponse, tags=["board"])
async def complete_cell(
    cell_id: str,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> CellCompleteResponse:
    request_id = getattr(http_request.state, "request_id", None)
    with trace("board.complete_cell", metadata={"route": "/board/cells/{cell_id}/complete"}, request_id=request_id):
        try:
            outcome = await owner.complete_cell(cell_id)
        except CellNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cell not found") from exc
    if outcome.reward.completed_board:
        log_metric("board.completed", 1)
    return CellCompleteResponse(
        board=outcome.board,
        reward=RewardSummary(**outcome.reward.to_dict()),
        already_done=outcome.already_done,
        stage=outcome.stage,
        request_id=request_id or "",
    )


@router.post("/board/cells/{cell_id}/skip", response_model=BoardResponse, tags=["board"])
async def skip_cell(
    cell_id: str,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> BoardResponse:
    request_id = getattr(http_request.state, "request_id", None)
    with trace("board.skip_cell", metadata={"route": "/board/cells/{cell_id}/skip"}, request_id=request_id):
        try:
            board = await owner.skip_cell(cell_id)
        except CellNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cell not found") from exc
        except NoSkipTicketsError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No skip tickets left") from exc
    return _board_response(owner, board, request_id)


@router.post("/board/cells/{cell_id}/block", response_model=BoardResponse, tags=["board"])
async def block_cell(
    cell_id: str,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> BoardResponse:
    request_id = getattr(http_request.state, "request_id", None)
    with trace("board.block_cell", metadata={"route": "/board/cells/{cell_id}/block"}, request_id=request_id):
        try:
            board = await owner.block_cell(cell_id)
        except CellNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cell not found") from exc
    return _board_response(owner, board or owner.get_board(), request_id)


@router.put("/board/size", response_model=BoardResponse, tags=["board"])
async def set_board_size(
    payload: BoardSizeRequest,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> BoardResponse:
    request_id = getattr(http_request.state, "request_id", None)
    with trace("board.set_size", metadata={"route": "/board/size", "size": payload.size}, request_id=request_id):
        board = await owner.set_board_size(payload.size)
    return _board_response(owner, board or owner.get_board(), request_id)


@router.put("/blocked-topics", response_model=BlockedTopicsResponse, tags=["board"])
async def set_blocked_topics(
    payload: BlockedTopicsRequest,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> BlockedTopicsResponse:
    request_id = getattr(http_request.state, "request_id", None)
    topics = await owner.set_blocked_topics(payload.topics)
    return BlockedTopicsResponse(topics=topics, request_id=request_id or "")


def _board_response(owner: HabitBingoState, board: Board, request_id: str | None) -> BoardResponse:
    profile = owner.get_profile()
    return BoardResponse(
        board=board,
        coins=profile.coins,
        skip_tickets=profile.skip_tickets,
        request_id=request_id or "",
    )
