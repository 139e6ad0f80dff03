"""Shared fakes and map builders for the test suite."""
from __future__ import annotations

import asyncio
import copy
import json
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import habitbingo.db.models  # noqa: F401
from habitbingo.db.base import Base
from habitbingo.services.habit_models import (
    BEHAVIOR_FORMS,
    STAGE_INDICES,
    HabitMap,
    HabitStage,
    HabitStep,
    decode_micro_actions,
    stage_prefix,
)
from habitbingo.services.oracle import OracleRequest

# Markers are checked in order; correction prompts repeat their own pass's output only.
PASS_MARKERS = (
    ("recovery_system", '"recoveryScripts"'),
    ("reinforcement", '"entries"'),
    ("behavior_compilation", '"behaviors"'),
    ("stage_construction", '"methodRoute"'),
    ("capability_model", '"leveragePoints"'),
    ("goal_normalization", '"normalizedGoal"'),
)

MICRO_ACTION_TEXTS = (
    "Put the novel on your pillow",
    "Read one paragraph aloud",
    "Mark a page with a sticky note",
    "Write one sentence about the chapter",
    "Set the phone in another room for ten minutes",
    "Carry a paperback in your bag",
    "Open the e-reader app on the couch",
    "Choose the next title from the shelf",
    "Underline a favourite line",
    "Tell a friend the plot so far",
    "Sit by the window with the book closed",
    "Read the back cover blurb",
    "Skim the table of contents",
    "Return a library loan",
    "Reread the last page you finished",
)

CAPABILITY_BEHAVIORS = {"C1": ["BH1", "BH4"], "C2": ["BH2", "BH5"], "C3": ["BH3"]}


def detect_pass(prompt: str) -> str:
    for name, marker in PASS_MARKERS:
        if marker in prompt:
            return name
    raise AssertionError(f"Unrecognised prompt: {prompt[:80]}")


def reinforcement_entries(capabilities=("C1", "C2", "C3")) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    for cap_index, capability in enumerate(("C1", "C2", "C3")):
        behaviors = CAPABILITY_BEHAVIORS[capability]
        for form_index, form in enumerate(BEHAVIOR_FORMS):
            if capability not in capabilities:
                continue
            entries.append(
                {
                    "capabilityId": capability,
                    "form": form,
                    "behaviorId": behaviors[form_index % len(behaviors)],
                    "interventionId": "IV1",
                    "microActions": [
                        {
                            "text": MICRO_ACTION_TEXTS[cap_index * len(BEHAVIOR_FORMS) + form_index],
                            "estimatedSeconds": 90,
                            "observableCompletionSignal": "The action is visibly done",
                            "successProbability": 0.8,
                        }
                    ],
                }
            )
    return entries


def valid_pass_payloads(required_count: int = 1) -> Dict[str, Dict[str, Any]]:
    stage_steps = [(0, "S1"), (1, "P1"), (2, "L1"), (3, "B1"), (4, "R1")]
    return {
        "goal_normalization": {
            "normalizedGoal": "Read more books",
            "masteryDefinition": "Finishing a chapter whenever a free half hour appears",
            "frictions": [
                "Phone pulls attention away",
                "Books are out of reach",
                "Evenings feel too tired for reading",
            ],
        },
        "capability_model": {
            "capabilities": [
                {"id": "C1", "name": "Focus", "description": "Staying with a page"},
                {"id": "C2", "name": "Access", "description": "Having a book at hand"},
                {"id": "C3", "name": "Reflection", "description": "Remembering what was read"},
            ],
            "leveragePoints": [
                {"id": "LV1", "capabilityId": "C1", "description": "Phone out of sight"},
                {"id": "LV2", "capabilityId": "C2", "description": "Book next to the bed"},
                {"id": "LV3", "capabilityId": "C3", "description": "Notes in the margin"},
            ],
        },
        "stage_construction": {
            "methodRoute": [
                {"text": "Add a page once a session feels easy", "tag": "progressive"},
                {"text": "On tired evenings read a single paragraph", "tag": "low_effort"},
                {"text": "After a gap restart with the last page you liked", "tag": "recovery"},
            ],
            "stages": [
                {
                    "stage": stage,
                    "stageName": f"Stage {stage}",
                    "steps": [
                        {
                            "stepId": step_id,
                            "title": f"Reading step {step_id}",
                            "duration": "5 min",
                            "fallback": "Read a single sentence",
                            "category": "reading",
                            "requiredCompletionCount": required_count if step_id == "S1" else 1,
                            "capabilityIds": ["C1"],
                        }
                    ],
                }
                for stage, step_id in stage_steps
            ],
        },
        "behavior_compilation": {
            "behaviors": [
                {"id": "BH1", "stepId": "S1", "capabilityId": "C1", "leverageId": "LV1", "cue": "Sitting on the bed", "action": "Open the book"},
                {"id": "BH2", "stepId": "P1", "capabilityId": "C2", "leverageId": "LV2", "cue": "Packing a bag", "action": "Pack the book"},
                {"id": "BH3", "stepId": "L1", "capabilityId": "C3", "leverageId": "LV3", "cue": "Closing the book", "action": "Jot one note"},
                {"id": "BH4", "stepId": "B1", "capabilityId": "C1", "leverageId": "LV1", "cue": "After dinner", "action": "Read two pages"},
                {"id": "BH5", "stepId": "R1", "capabilityId": "C2", "leverageId": "LV2", "cue": "Weekend morning", "action": "Pick a new book"},
            ],
            "interventions": [
                {"id": f"IV{index}", "behaviorId": f"BH{index}", "strategy": "Shrink the start", "variants": ["One line", "One page"]}
                for index in range(1, 5)
            ],
        },
        "reinforcement": {"entries": reinforcement_entries()},
        "recovery_system": {
            "recoveryScripts": [
                {"interventionId": f"IV{index}", "scripts": ["Open to any page", "Read the first line only"]}
                for index in range(1, 5)
            ]
        },
    }


class FakeOracle:
    """Answers each pass from a per-pass script, falling back to a valid payload."""

    def __init__(
        self,
        script: Optional[Dict[str, List[Any]]] = None,
        *,
        required_count: int = 1,
        gate: Optional[asyncio.Event] = None,
    ):
        self.script = {name: list(items) for name, items in (script or {}).items()}
        self.defaults = valid_pass_payloads(required_count)
        self.gate = gate
        self.requests: List[tuple[str, OracleRequest]] = []

    async def complete(self, request: OracleRequest) -> str:
        name = detect_pass(request.user_prompt)
        self.requests.append((name, request))
        if self.gate is not None:
            await self.gate.wait()
        queue = self.script.get(name)
        item = queue.pop(0) if queue else copy.deepcopy(self.defaults[name])
        if isinstance(item, BaseException):
            raise item
        return item if isinstance(item, str) else json.dumps(item)

    def prompts(self, pass_name: str) -> List[str]:
        return [request.user_prompt for name, request in self.requests if name == pass_name]


@pytest.fixture()
def fake_oracle_factory():
    return FakeOracle


@pytest.fixture()
def pass_payloads():
    return valid_pass_payloads


@pytest.fixture()
def entries_for():
    return reinforcement_entries


def habit_map_with(goal: str, texts, stage_zero_steps: int = 1) -> HabitMap:
    """A map whose only schedulable micro-actions are ``texts`` on stage 0."""
    stages = [
        HabitStage(
            stage=0,
            steps=[
                HabitStep(
                    step_id=f"S{index}",
                    title=f"Start {index}",
                    fallback="Do a smaller version",
                    micro_actions=decode_micro_actions(list(texts) if index == 1 else [], f"S{index}"),
                )
                for index in range(1, stage_zero_steps + 1)
            ],
        )
    ]
    for stage in STAGE_INDICES[1:]:
        step_id = f"{stage_prefix(stage)}1"
        stages.append(HabitStage(stage=stage, steps=[HabitStep(step_id=step_id, title="Later", fallback="Smaller")]))
    return HabitMap(goal=goal, mastery_definition=f"Doing {goal} calmly", stages=stages)


@pytest.fixture()
def map_with():
    return habit_map_with


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield TestingSessionLocal
    engine.dispose()
