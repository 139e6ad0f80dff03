"""Goal management and habit map API routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from habitbingo.api.schemas.goals import (
    GoalRenameRequest,
    GoalsRequest,
    GoalsResponse,
    HabitMapResponse,
    RegenerateResponse,
)
from habitbingo.core.errors import GoalNotFoundError, InvalidGoalError
from habitbingo.observability.metrics import log_metric
from habitbingo.observability.tracing import trace
from habitbingo.services.habit_pipeline import PipelineFailure
from habitbingo.services.state_owner import HabitBingoState, get_state_owner

router = APIRouter()


@router.post("/goals", response_model=GoalsResponse, tags=["goals"])
async def register_goals(
    payload: GoalsRequest,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> GoalsResponse:
    """Replace the tracked goals with the ones parsed from free text."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace("goals.register", metadata={"route": "/goals"}, request_id=request_id):
        try:
            goals = await owner.register_goals(payload.text)
        except InvalidGoalError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    log_metric("goals.registered", len(goals))
    return GoalsResponse(goals=goals, request_id=request_id or "")


@router.get("/goals", response_model=GoalsResponse, tags=["goals"])
def list_goals(http_request: Request, owner: HabitBingoState = Depends(get_state_owner)) -> GoalsResponse:
    request_id = getattr(http_request.state, "request_id", None)
    return GoalsResponse(goals=owner.list_goals(), request_id=request_id or "")


@router.delete("/goals/{goal}", response_model=GoalsResponse, tags=["goals"])
async def remove_goal(
    goal: str,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> GoalsResponse:
    request_id = getattr(http_request.state, "request_id", None)
    with trace("goals.remove", metadata={"route": "/goals/{goal}"}, request_id=request_id):
        try:
            goals = await owner.remove_goal(goal)
        except GoalNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found") from exc
    return GoalsResponse(goals=goals, request_id=request_id or "")


@router.patch("/goals/{goal}", response_model=GoalsResponse, tags=["goals"])
async def rename_goal(
    goal: str,
    payload: GoalRenameRequest,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> GoalsResponse:
    request_id = getattr(http_request.state, "request_id", None)
    with trace("goals.rename", metadata={"route": "/goals/{goal}"}, request_id=request_id):
        try:
            goals = await owner.rename_goal(goal, payload.new_goal)
        except GoalNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found") from exc
        except InvalidGoalError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return GoalsResponse(goals=goals, request_id=request_id or "")


@router.post("/goals/{goal}/regenerate", response_model=RegenerateResponse, tags=["goals"])
async def regenerate_goal(
    goal: str,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> RegenerateResponse:
    """Force a fresh habit map; on failure the previous map stays in place."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace("goals.regenerate", metadata={"route": "/goals/{goal}/regenerate"}, request_id=request_id):
        try:
            result = await owner.regenerate_goal(goal)
        except GoalNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found") from exc
    if isinstance(result, PipelineFailure):
        log_metric("goals.regenerate_failed", 1, {"pass": result.pass_name})
        return RegenerateResponse(
            goal=goal,
            status="failed",
            failed_pass=result.pass_name,
            reason=result.reason,
            request_id=request_id or "",
        )
    return RegenerateResponse(goal=goal, status="ready", request_id=request_id or "")


@router.get("/goals/{goal}/habit-map", response_model=HabitMapResponse, tags=["goals"])
def get_habit_map(
    goal: str,
    http_request: Request,
    owner: HabitBingoState = Depends(get_state_owner),
) -> HabitMapResponse:
    request_id = getattr(http_request.state, "request_id", None)
    try:
        habit_map, stage = owner.get_habit_map(goal)
    except GoalNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Habit map not found") from exc
    return HabitMapResponse(goal=goal, current_stage=stage, habit_map=habit_map, request_id=request_id or "")
