"""Habit map domain models and document decoding."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

HABIT_MAP_SCHEMA = "habit_map.v2"

STAGE_INDICES = (0, 1, 2, 3, 4)
STAGE_PREFIXES = ("S", "P", "L", "B", "R")
STAGE_NAMES = ("Seed", "Sprout", "Leaf", "Bloom", "Rooted")

REQUIRED_COUNT_RANGE = (1, 3)
ESTIMATED_SECONDS_RANGE = (5, 1800)
SUCCESS_PROBABILITY_RANGE = (0.05, 0.95)

# Tags the method route must carry at least once each.
METHOD_ROUTE_TAGS = ("progressive", "low_effort", "recovery")

# Fixed behavior forms; reinforcement coverage is capabilities x forms.
BEHAVIOR_FORMS = ("prepare", "starter", "practice", "reflect", "recover")


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def stage_prefix(stage: int) -> str:
    return STAGE_PREFIXES[stage]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MicroAction(BaseModel):
    """Smallest schedulable unit; what a board cell shows."""

    id: str
    parent_step_id: str
    capability_id: Optional[str] = None
    behavior_id: Optional[str] = None
    intervention_id: Optional[str] = None
    form: Optional[str] = None
    text: str
    estimated_seconds: int = 60
    observable_completion_signal: str = ""
    success_probability: float = 0.8

    @field_validator("estimated_seconds", mode="before")
    @classmethod
    def _clamp_seconds(cls, value: Any) -> int:
        return int(clamp(int(value), *ESTIMATED_SECONDS_RANGE))

    @field_validator("success_probability", mode="before")
    @classmethod
    def _clamp_probability(cls, value: Any) -> float:
        return float(clamp(float(value), *SUCCESS_PROBABILITY_RANGE))


class HabitStep(BaseModel):
    step_id: str
    title: str
    duration_estimate: str = ""
    fallback: str
    category: str = ""
    required_completion_count: int = 1
    completed_count: int = 0
    capability_ids: List[str] = Field(default_factory=list)
    micro_actions: List[MicroAction] = Field(default_factory=list)

    @field_validator("required_completion_count", mode="before")
    @classmethod
    def _clamp_required(cls, value: Any) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            number = REQUIRED_COUNT_RANGE[0]
        return int(clamp(number, *REQUIRED_COUNT_RANGE))

    @model_validator(mode="after")
    def _clamp_completed(self) -> "HabitStep":
        self.completed_count = int(clamp(self.completed_count, 0, self.required_completion_count))
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_complete(self) -> bool:
        return self.completed_count >= self.required_completion_count


class HabitStage(BaseModel):
    stage: int
    name: str = ""
    steps: List[HabitStep] = Field(default_factory=list)


class MethodRouteEntry(BaseModel):
    text: str
    tag: Optional[str] = None


class Capability(BaseModel):
    id: str
    name: str
    description: str = ""


class LeveragePoint(BaseModel):
    id: str
    capability_id: str
    description: str


class Behavior(BaseModel):
    id: str
    step_id: str
    capability_id: str
    leverage_id: Optional[str] = None
    cue: str = ""
    action: str


class Intervention(BaseModel):
    id: str
    behavior_id: str
    strategy: str
    variants: List[str] = Field(default_factory=list)
    recovery_scripts: List[str] = Field(default_factory=list)


class HabitMap(BaseModel):
    """Validated five-stage plan for one goal."""

    goal: str
    mastery_definition: str
    frictions: List[str] = Field(default_factory=list)
    method_route: List[MethodRouteEntry] = Field(default_factory=list)
    stages: List[HabitStage] = Field(default_factory=list)
    capabilities: List[Capability] = Field(default_factory=list)
    leverage_points: List[LeveragePoint] = Field(default_factory=list)
    behaviors: List[Behavior] = Field(default_factory=list)
    interventions: List[Intervention] = Field(default_factory=list)
    source: str = "pipeline"
    updated_at: datetime = Field(default_factory=_utcnow)

    def sorted_stages(self) -> List[HabitStage]:
        return sorted(self.stages, key=lambda stage: stage.stage)

    def iter_steps(self) -> Iterator[tuple[int, HabitStep]]:
        for stage in self.sorted_stages():
            for step in stage.steps:
                yield stage.stage, step

    def find_step(self, step_id: str) -> Optional[HabitStep]:
        for _, step in self.iter_steps():
            if step.step_id == step_id:
                return step
        return None

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def to_document(self) -> Dict[str, Any]:
        document = self.model_dump(mode="json")
        document["schema"] = HABIT_MAP_SCHEMA
        return document


def decode_micro_actions(
    raw_items: Any,
    parent_step_id: str,
    *,
    provenance: Optional[Dict[str, Optional[str]]] = None,
    start_index: int = 1,
) -> List[MicroAction]:
    """
    Normalize micro-action lists into MicroAction objects.

    Entries may be structured objects (``{"text": ..., "estimatedSeconds": ...}``)
    or bare strings from older documents; structured is tried first. Blank
    entries are dropped.
    """
    actions: List[MicroAction] = []
    base = {key: value for key, value in (provenance or {}).items() if value}
    index = start_index
    for item in raw_items or []:
        fields = _structured_micro_action(item)
        if fields is None:
            fields = _legacy_micro_action(item)
        if fields is None:
            continue
        payload = {**base, **{key: value for key, value in fields.items() if value is not None}}
        payload.setdefault("id", f"{parent_step_id}.{index}")
        payload["parent_step_id"] = parent_step_id
        actions.append(MicroAction(**payload))
        index += 1
    return actions


def _finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _structured_micro_action(item: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(item, dict):
        return None
    text = item.get("text") or item.get("title") or item.get("action")
    if not isinstance(text, str) or not text.strip():
        return None
    fields: Dict[str, Any] = {"text": text.strip()}
    seconds = item.get("estimatedSeconds", item.get("estimated_seconds"))
    if _finite_number(seconds):
        fields["estimated_seconds"] = int(seconds)
    probability = item.get("successProbability", item.get("success_probability"))
    if _finite_number(probability):
        fields["success_probability"] = float(probability)
    signal = item.get("observableCompletionSignal", item.get("observable_completion_signal"))
    if isinstance(signal, str):
        fields["observable_completion_signal"] = signal.strip()
    for source_key, target_key in (
        ("capabilityId", "capability_id"),
        ("capability_id", "capability_id"),
        ("behaviorId", "behavior_id"),
        ("behavior_id", "behavior_id"),
        ("interventionId", "intervention_id"),
        ("intervention_id", "intervention_id"),
        ("form", "form"),
    ):
        value = item.get(source_key)
        if isinstance(value, str) and value.strip():
            fields[target_key] = value.strip()
    return fields


def _legacy_micro_action(item: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(item, str) or not item.strip():
        return None
    return {"text": item.strip()}


def decode_habit_map_document(goal: str, document: Dict[str, Any]) -> HabitMap:
    """Decode a stored document, accepting the current schema or the legacy single-shot layout."""
    if document.get("schema") == HABIT_MAP_SCHEMA:
        habit_map = HabitMap.model_validate(document)
        habit_map.goal = goal
        return habit_map
    return _decode_legacy_document(goal, document)


def _decode_legacy_document(goal: str, document: Dict[str, Any]) -> HabitMap:
    stages: List[HabitStage] = []
    for raw_stage in document.get("stages") or []:
        if not isinstance(raw_stage, dict) or not isinstance(raw_stage.get("stage"), int):
            continue
        stage_index = raw_stage["stage"]
        if stage_index not in STAGE_INDICES:
            continue
        steps: List[HabitStep] = []
        for position, raw_step in enumerate(raw_stage.get("steps") or [], start=1):
            if not isinstance(raw_step, dict):
                continue
            step_id = str(raw_step.get("stepId") or "").strip() or f"{stage_prefix(stage_index)}{position}"
            required = raw_step.get("requiredBingoCount", 1)
            step = HabitStep(
                step_id=step_id,
                title=str(raw_step.get("title") or "").strip(),
                duration_estimate=str(raw_step.get("duration") or "").strip(),
                fallback=str(raw_step.get("fallback") or "").strip(),
                category=str(raw_step.get("category") or "").strip(),
                required_completion_count=required,
                completed_count=max(0, int(raw_step.get("completedBingoCount") or 0)),
                micro_actions=decode_micro_actions(raw_step.get("bingoTasks"), step_id),
            )
            if raw_step.get("isCompleted") and not step.is_complete:
                step.completed_count = step.required_completion_count
            steps.append(step)
        stages.append(
            HabitStage(
                stage=stage_index,
                name=str(raw_stage.get("stageName") or STAGE_NAMES[stage_index]),
                steps=steps,
            )
        )

    route = [
        MethodRouteEntry(text=entry.strip())
        for entry in document.get("methodRoute") or []
        if isinstance(entry, str) and entry.strip()
    ]
    updated_raw = document.get("updatedAt")
    updated_at = _parse_timestamp(updated_raw)
    return HabitMap(
        goal=goal,
        mastery_definition=str(document.get("masteryDefinition") or "").strip(),
        frictions=[item.strip() for item in document.get("frictions") or [] if isinstance(item, str) and item.strip()],
        method_route=route,
        stages=stages,
        source="legacy",
        updated_at=updated_at or _utcnow(),
    )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # Older documents stored seconds since 2001-01-01.
        return datetime.fromtimestamp(978307200 + float(value), tz=timezone.utc)
    return None
