"""Eligible micro-actions for a goal, gated by its current stage."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from habitbingo.services.habit_models import HabitMap, HabitStep
from habitbingo.services.local_maps import is_support_goal
from habitbingo.services.similarity import normalize
from habitbingo.services.stage_tracker import current_stage

MIN_ACTION_LENGTH = 3

# Placeholder text that names no concrete action.
VAGUE_PHRASES = (
    "todo",
    "tbd",
    "n/a",
    "something",
    "anything",
    "do it",
    "work on it",
    "make progress",
    "keep going",
    "try harder",
    "think about it",
    "be better",
    "做點什麼",
    "努力",
    "加油",
)
_VAGUE_NORMALIZED = {normalize(phrase) for phrase in VAGUE_PHRASES}


@dataclass(frozen=True)
class Candidate:
    goal: Optional[str]
    step_id: str
    micro_action_id: str
    text: str


def eligible_steps(habit_map: HabitMap) -> List[HabitStep]:
    """Incomplete steps of the current stage plus the first incomplete step of the next stage."""
    stage_index = current_stage(habit_map)
    stages = {stage.stage: stage for stage in habit_map.stages}
    steps: List[HabitStep] = []
    current = stages.get(stage_index)
    if current is not None:
        steps.extend(step for step in current.steps if not step.is_complete)
    following = stages.get(stage_index + 1)
    if following is not None:
        preview = next((step for step in following.steps if not step.is_complete), None)
        if preview is not None:
            steps.append(preview)
    return steps


def is_blocked(text: str, blocked_topics: Sequence[str]) -> bool:
    folded = text.casefold()
    return any(topic.strip() and topic.strip().casefold() in folded for topic in blocked_topics)


def is_vague(text: str) -> bool:
    normalized = normalize(text)
    return len(normalized) < MIN_ACTION_LENGTH or normalized in _VAGUE_NORMALIZED


def candidates(goal: str, habit_map: HabitMap, blocked_topics: Iterable[str] = ()) -> List[Candidate]:
    """Flatten eligible steps' micro-actions, dropping blocked and vague ones."""
    topics = [topic for topic in blocked_topics if topic and topic.strip()]
    label = None if is_support_goal(goal) else goal
    output: List[Candidate] = []
    for step in eligible_steps(habit_map):
        for action in step.micro_actions:
            text = action.text.strip()
            if not text or is_vague(text) or is_blocked(text, topics):
                continue
            output.append(Candidate(goal=label, step_id=step.step_id, micro_action_id=action.id, text=text))
    return output
