"""Derive a goal's difficulty stage from step completion counters."""
from __future__ import annotations

from typing import Optional

from habitbingo.services.habit_models import HabitMap, HabitStep


def current_stage(habit_map: Optional[HabitMap]) -> int:
    """Lowest stage with an incomplete step, or the highest stage once everything is complete."""
    if habit_map is None or not habit_map.stages:
        return 0
    stages = habit_map.sorted_stages()
    for stage in stages:
        if any(not step.is_complete for step in stage.steps):
            return stage.stage
    return stages[-1].stage


def record_completion(habit_map: HabitMap, step_id: str) -> Optional[HabitStep]:
    """
    Count one completed micro-action against a step.

    Counters only move up and stop at the required count. Returns the step,
    or None when the id is unknown.
    """
    step = habit_map.find_step(step_id)
    if step is None:
        return None
    if step.completed_count < step.required_completion_count:
        step.completed_count += 1
        habit_map.touch()
    return step
