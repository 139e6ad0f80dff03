"""Template habit maps used without a generation service and for the built-in support goal."""
from __future__ import annotations

from typing import List

from habitbingo.services.habit_models import (
    STAGE_INDICES,
    STAGE_NAMES,
    HabitMap,
    HabitStage,
    HabitStep,
    MethodRouteEntry,
    decode_micro_actions,
    stage_prefix,
)

SUPPORT_GOAL_KEY = "self-care support"
STEPS_PER_STAGE = 3

SUPPORT_TASKS = (
    "Sip some warm water",
    "Stand up and stretch for 10 seconds",
    "Look out the window for 30 seconds",
    "Wash your face",
    "Tidy your desk for 1 minute",
)


def is_support_goal(goal: str | None) -> bool:
    return goal == SUPPORT_GOAL_KEY


def build_local_habit_map(goal: str) -> HabitMap:
    if is_support_goal(goal):
        return _support_map()
    tasks = [
        f"Do {goal} for 30 seconds",
        f"Spend 2 minutes on {goal}",
        f"Tell someone you are working on {goal}",
        f"Put the things you need for {goal} within reach",
        f"Write one line about how {goal} went",
    ]
    return HabitMap(
        goal=goal,
        mastery_definition=(
            f"Doing '{goal}' without reminders, and keeping a minimal version going with the fallback "
            "when energy is low."
        ),
        frictions=[
            "Starting feels like a hassle",
            "Tiredness or mood drains motivation",
            "Distractions from the phone or chores",
        ],
        method_route=_method_route(),
        stages=_stages(
            step_title=lambda name, index: f"{name} step {index}: the smallest move toward {goal}",
            fallback="Do a 30-second version",
            duration="1-5 min",
            tasks=tasks,
        ),
        source="local",
    )


def _support_map() -> HabitMap:
    return HabitMap(
        goal=SUPPORT_GOAL_KEY,
        mastery_definition="Using small actions to get back to steady ground when mood or energy dips.",
        frictions=["Too tired", "Too anxious", "Feeling it won't help"],
        method_route=_method_route(),
        stages=_stages(
            step_title=lambda name, index: f"{name} step {index}: settle body and mind",
            fallback="Do it for 10 seconds",
            duration="1-3 min",
            tasks=list(SUPPORT_TASKS),
        ),
        source="local",
    )


def _method_route() -> List[MethodRouteEntry]:
    return [
        MethodRouteEntry(text="Grow the duration a little once the short version feels easy", tag="progressive"),
        MethodRouteEntry(text="On heavy days do only the fallback version", tag="low_effort"),
        MethodRouteEntry(text="After a break, restart from the smallest step", tag="recovery"),
    ]


def _stages(step_title, fallback: str, duration: str, tasks: List[str]) -> List[HabitStage]:
    stages: List[HabitStage] = []
    for stage_index in STAGE_INDICES:
        name = STAGE_NAMES[stage_index]
        steps: List[HabitStep] = []
        for index in range(1, STEPS_PER_STAGE + 1):
            step_id = f"{stage_prefix(stage_index)}{index}"
            steps.append(
                HabitStep(
                    step_id=step_id,
                    title=step_title(name, index),
                    duration_estimate=duration,
                    fallback=fallback,
                    category=name,
                    micro_actions=decode_micro_actions(tasks, step_id),
                )
            )
        stages.append(HabitStage(stage=stage_index, name=name, steps=steps))
    return stages
