"""Schema validators for each habit-map pipeline pass.

Every validator is a pure function returning a ValidationReport. A report with
issues is a rejection; its ``error_text()`` is what gets sent back to the
model when asking it to repair its own output. ``cleaned`` holds the
normalized payload (snake_case keys, clamped numbers) for the next pass.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from habitbingo.services.habit_models import (
    BEHAVIOR_FORMS,
    ESTIMATED_SECONDS_RANGE,
    METHOD_ROUTE_TAGS,
    REQUIRED_COUNT_RANGE,
    STAGE_INDICES,
    SUCCESS_PROBABILITY_RANGE,
    HabitMap,
    clamp,
    stage_prefix,
)

MIN_FRICTIONS = 3
MIN_CAPABILITIES = 3
MIN_LEVERAGE_POINTS = 3
MIN_METHOD_ROUTE = 3
MIN_BEHAVIORS = 3
MIN_INTERVENTIONS = 4
MIN_VARIANTS = 2
MIN_RECOVERY_SCRIPTS = 2
MAX_REPORTED_ISSUES = 12

BANNED_SUBSTRINGS = (
    # cadence phrasing
    "every day",
    "everyday",
    "each day",
    "daily",
    "every morning",
    "every night",
    "每天",
    "每日",
    "天天",
    # KPI phrasing
    "kpi",
    "streak",
    "completion rate",
    "% complete",
    # template boilerplate
    "build a trigger",
    "establish a ritual",
    "overcome resistance",
    "take action",
    "give it a try",
    "do a small step",
    "just start",
    "培養觸發點",
    "建立儀式",
    "克服阻力",
    "開始行動",
    "嘗試一下",
    "做一個很小的步驟",
)

_STEP_ID_PATTERN = re.compile(r"^([A-Z])(\d+)$")

ReinforcementKey = Tuple[str, str]


@dataclass
class ValidationReport:
    pass_name: str
    issues: List[str] = field(default_factory=list)
    cleaned: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return not self.issues

    def add(self, issue: str) -> None:
        self.issues.append(issue)

    def error_text(self) -> str:
        shown = self.issues[:MAX_REPORTED_ISSUES]
        lines = [f"- {issue}" for issue in shown]
        hidden = len(self.issues) - len(shown)
        if hidden > 0:
            lines.append(f"- ...and {hidden} more issue(s)")
        return "\n".join(lines)


@dataclass
class ReferenceCatalog:
    """Ids defined by earlier passes; later passes may only reference these."""

    capability_ids: Set[str] = field(default_factory=set)
    leverage_ids: Set[str] = field(default_factory=set)
    step_ids: Set[str] = field(default_factory=set)
    behavior_capabilities: Dict[str, str] = field(default_factory=dict)
    intervention_ids: Set[str] = field(default_factory=set)


def scan_banned_content(texts: Iterable[str]) -> List[str]:
    haystack = "\n".join(text for text in texts if text).casefold()
    return [f"contains banned phrase '{phrase}'" for phrase in BANNED_SUBSTRINGS if phrase.casefold() in haystack]


def validate_goal_normalization(payload: Any) -> ValidationReport:
    report = ValidationReport("goal_normalization")
    if not _require_object(payload, report):
        return report
    normalized_goal = _text(payload.get("normalizedGoal"))
    mastery = _text(payload.get("masteryDefinition"))
    frictions = _string_list(payload.get("frictions"))
    if not normalized_goal:
        report.add("normalizedGoal must be a non-empty string")
    if not mastery:
        report.add("masteryDefinition must be a non-empty string")
    if len(frictions) < MIN_FRICTIONS:
        report.add(f"frictions needs at least {MIN_FRICTIONS} entries (got {len(frictions)})")
    for issue in scan_banned_content([mastery or "", *frictions]):
        report.add(issue)
    report.cleaned = {
        "normalized_goal": normalized_goal or "",
        "mastery_definition": mastery or "",
        "frictions": frictions,
    }
    return report


def validate_capability_model(payload: Any) -> ValidationReport:
    report = ValidationReport("capability_model")
    if not _require_object(payload, report):
        return report
    capabilities: List[Dict[str, str]] = []
    seen: Set[str] = set()
    for position, raw in enumerate(_object_list(payload.get("capabilities")), start=1):
        cap_id = _text(raw.get("id"))
        name = _text(raw.get("name"))
        if not cap_id:
            report.add(f"capabilities[{position}] is missing an id")
            continue
        if cap_id in seen:
            report.add(f"capability id {cap_id} is duplicated")
            continue
        if not name:
            report.add(f"capability {cap_id} needs a name")
        seen.add(cap_id)
        capabilities.append({"id": cap_id, "name": name or "", "description": _text(raw.get("description")) or ""})
    if len(capabilities) < MIN_CAPABILITIES:
        report.add(f"capabilities needs at least {MIN_CAPABILITIES} entries (got {len(capabilities)})")

    leverage_points: List[Dict[str, str]] = []
    leverage_seen: Set[str] = set()
    for position, raw in enumerate(_object_list(payload.get("leveragePoints")), start=1):
        lev_id = _text(raw.get("id"))
        capability_id = _text(raw.get("capabilityId"))
        description = _text(raw.get("description"))
        if not lev_id:
            report.add(f"leveragePoints[{position}] is missing an id")
            continue
        if lev_id in leverage_seen or lev_id in seen:
            report.add(f"leverage id {lev_id} is duplicated")
            continue
        if capability_id not in seen:
            report.add(f"leverage point {lev_id} references unknown capability {capability_id!r}")
        if not description:
            report.add(f"leverage point {lev_id} needs a description")
        leverage_seen.add(lev_id)
        leverage_points.append({"id": lev_id, "capability_id": capability_id or "", "description": description or ""})
    if len(leverage_points) < MIN_LEVERAGE_POINTS:
        report.add(f"leveragePoints needs at least {MIN_LEVERAGE_POINTS} entries (got {len(leverage_points)})")

    texts = [item["name"] for item in capabilities] + [item["description"] for item in capabilities]
    texts += [item["description"] for item in leverage_points]
    for issue in scan_banned_content(texts):
        report.add(issue)
    report.cleaned = {"capabilities": capabilities, "leverage_points": leverage_points}
    return report


def validate_stage_construction(payload: Any, catalog: ReferenceCatalog) -> ValidationReport:
    report = ValidationReport("stage_construction")
    if not _require_object(payload, report):
        return report

    route = _method_route(payload.get("methodRoute"))
    if len(route) < MIN_METHOD_ROUTE:
        report.add(f"methodRoute needs at least {MIN_METHOD_ROUTE} entries (got {len(route)})")
    present_tags = {entry["tag"] for entry in route if entry["tag"]}
    for tag in METHOD_ROUTE_TAGS:
        if tag not in present_tags:
            report.add(f"methodRoute must include an entry tagged '{tag}'")

    stages: List[Dict[str, Any]] = []
    stage_seen: Set[int] = set()
    step_seen: Set[str] = set()
    texts: List[str] = [entry["text"] for entry in route]
    for raw_stage in _object_list(payload.get("stages")):
        stage_index = raw_stage.get("stage")
        if not isinstance(stage_index, int) or isinstance(stage_index, bool):
            report.add(f"stage index {stage_index!r} is not an integer")
            continue
        if stage_index in stage_seen:
            report.add(f"stage {stage_index} appears more than once")
            continue
        if stage_index not in STAGE_INDICES:
            report.add(f"stage {stage_index} is outside 0-4")
            continue
        stage_seen.add(stage_index)
        steps: List[Dict[str, Any]] = []
        raw_steps = _object_list(raw_stage.get("steps"))
        if not raw_steps:
            report.add(f"stage {stage_index} needs at least one step")
        for raw_step in raw_steps:
            step = _clean_step(raw_step, stage_index, step_seen, catalog, report)
            if step is None:
                continue
            step_seen.add(step["step_id"])
            texts.extend([step["title"], step["fallback"], step["category"], step["duration_estimate"]])
            steps.append(step)
        stage_name = _text(raw_stage.get("stageName")) or ""
        texts.append(stage_name)
        stages.append({"stage": stage_index, "name": stage_name, "steps": steps})

    if stage_seen != set(STAGE_INDICES):
        missing = sorted(set(STAGE_INDICES) - stage_seen)
        report.add(f"stages must cover exactly 0-4 (missing {missing})")

    for issue in scan_banned_content(texts):
        report.add(issue)
    report.cleaned = {"method_route": route, "stages": sorted(stages, key=lambda item: item["stage"])}
    return report


def validate_behavior_compilation(payload: Any, catalog: ReferenceCatalog) -> ValidationReport:
    report = ValidationReport("behavior_compilation")
    if not _require_object(payload, report):
        return report

    behaviors: List[Dict[str, Any]] = []
    behavior_caps: Dict[str, str] = {}
    covered_steps: Set[str] = set()
    for position, raw in enumerate(_object_list(payload.get("behaviors")), start=1):
        behavior_id = _text(raw.get("id"))
        if not behavior_id:
            report.add(f"behaviors[{position}] is missing an id")
            continue
        if behavior_id in behavior_caps:
            report.add(f"behavior id {behavior_id} is duplicated")
            continue
        step_id = _text(raw.get("stepId"))
        capability_id = _text(raw.get("capabilityId"))
        leverage_id = _text(raw.get("leverageId"))
        action = _text(raw.get("action"))
        if step_id not in catalog.step_ids:
            report.add(f"behavior {behavior_id} references unknown step {step_id!r}")
        if capability_id not in catalog.capability_ids:
            report.add(f"behavior {behavior_id} references unknown capability {capability_id!r}")
        if leverage_id and leverage_id not in catalog.leverage_ids:
            report.add(f"behavior {behavior_id} references unknown leverage point {leverage_id!r}")
        if not action:
            report.add(f"behavior {behavior_id} needs an action")
        behavior_caps[behavior_id] = capability_id or ""
        if step_id:
            covered_steps.add(step_id)
        behaviors.append(
            {
                "id": behavior_id,
                "step_id": step_id or "",
                "capability_id": capability_id or "",
                "leverage_id": leverage_id,
                "cue": _text(raw.get("cue")) or "",
                "action": action or "",
            }
        )
    if len(behaviors) < MIN_BEHAVIORS:
        report.add(f"behaviors needs at least {MIN_BEHAVIORS} entries (got {len(behaviors)})")
    uncovered = sorted(catalog.step_ids - covered_steps)
    if uncovered:
        report.add(f"every step needs a behavior; uncovered steps: {', '.join(uncovered)}")

    interventions: List[Dict[str, Any]] = []
    intervention_seen: Set[str] = set()
    for position, raw in enumerate(_object_list(payload.get("interventions")), start=1):
        intervention_id = _text(raw.get("id"))
        if not intervention_id:
            report.add(f"interventions[{position}] is missing an id")
            continue
        if intervention_id in intervention_seen:
            report.add(f"intervention id {intervention_id} is duplicated")
            continue
        behavior_id = _text(raw.get("behaviorId"))
        strategy = _text(raw.get("strategy"))
        variants = _string_list(raw.get("variants"))
        if behavior_id not in behavior_caps:
            report.add(f"intervention {intervention_id} references unknown behavior {behavior_id!r}")
        if not strategy:
            report.add(f"intervention {intervention_id} needs a strategy")
        if len(variants) < MIN_VARIANTS:
            report.add(f"intervention {intervention_id} needs at least {MIN_VARIANTS} variants")
        intervention_seen.add(intervention_id)
        interventions.append(
            {"id": intervention_id, "behavior_id": behavior_id or "", "strategy": strategy or "", "variants": variants}
        )
    if len(interventions) < MIN_INTERVENTIONS:
        report.add(f"interventions needs at least {MIN_INTERVENTIONS} entries (got {len(interventions)})")

    texts = [item["cue"] for item in behaviors] + [item["action"] for item in behaviors]
    for item in interventions:
        texts.append(item["strategy"])
        texts.extend(item["variants"])
    for issue in scan_banned_content(texts):
        report.add(issue)
    report.cleaned = {"behaviors": behaviors, "interventions": interventions}
    return report


def validate_reinforcement_entries(
    payload: Any,
    catalog: ReferenceCatalog,
    requested: Set[ReinforcementKey],
) -> ValidationReport:
    """Validate one reinforcement response; entries for keys that were not requested are dropped."""
    report = ValidationReport("reinforcement")
    if not _require_object(payload, report):
        return report

    entries: List[Dict[str, Any]] = []
    ignored: List[str] = []
    texts: List[str] = []
    raw_entries = _object_list(payload.get("entries"))
    if not raw_entries:
        report.add("entries must be a non-empty list")
    for position, raw in enumerate(raw_entries, start=1):
        capability_id = _text(raw.get("capabilityId"))
        form = _text(raw.get("form"))
        label = f"entry {capability_id}/{form}"
        if capability_id not in catalog.capability_ids:
            report.add(f"entries[{position}] references unknown capability {capability_id!r}")
            continue
        if form not in BEHAVIOR_FORMS:
            report.add(f"{label} uses unknown form (allowed: {', '.join(BEHAVIOR_FORMS)})")
            continue
        if (capability_id, form) not in requested:
            ignored.append(label)
            continue
        behavior_id = _text(raw.get("behaviorId"))
        intervention_id = _text(raw.get("interventionId"))
        if behavior_id not in catalog.behavior_capabilities:
            report.add(f"{label} references unknown behavior {behavior_id!r}")
        elif catalog.behavior_capabilities[behavior_id] != capability_id:
            report.add(f"{label} uses behavior {behavior_id}, which belongs to another capability")
        if intervention_id and intervention_id not in catalog.intervention_ids:
            report.add(f"{label} references unknown intervention {intervention_id!r}")
        actions = _clean_micro_actions(raw.get("microActions"), label, report)
        if not actions:
            report.add(f"{label} needs at least one micro-action")
        texts.extend(action["text"] for action in actions)
        texts.extend(action.get("observableCompletionSignal", "") for action in actions)
        entries.append(
            {
                "capability_id": capability_id,
                "form": form,
                "behavior_id": behavior_id,
                "intervention_id": intervention_id,
                "micro_actions": actions,
            }
        )

    for issue in scan_banned_content(texts):
        report.add(issue)
    report.cleaned = {"entries": entries, "ignored": ignored}
    return report


def validate_recovery_system(payload: Any, catalog: ReferenceCatalog) -> ValidationReport:
    report = ValidationReport("recovery_system")
    if not _require_object(payload, report):
        return report
    scripts_by_intervention: Dict[str, List[str]] = {}
    for raw in _object_list(payload.get("recoveryScripts")):
        intervention_id = _text(raw.get("interventionId"))
        if intervention_id not in catalog.intervention_ids:
            report.add(f"recovery script references unknown intervention {intervention_id!r}")
            continue
        scripts = _string_list(raw.get("scripts"))
        if len(scripts) < MIN_RECOVERY_SCRIPTS:
            report.add(f"intervention {intervention_id} needs at least {MIN_RECOVERY_SCRIPTS} recovery scripts")
        scripts_by_intervention.setdefault(intervention_id, []).extend(scripts)
    missing = sorted(catalog.intervention_ids - set(scripts_by_intervention))
    if missing:
        report.add(f"recovery scripts missing for interventions: {', '.join(missing)}")
    texts = [script for scripts in scripts_by_intervention.values() for script in scripts]
    for issue in scan_banned_content(texts):
        report.add(issue)
    report.cleaned = {"recovery_scripts": scripts_by_intervention}
    return report


def validate_habit_map(habit_map: HabitMap) -> ValidationReport:
    """Final structural invariants for an assembled map."""
    report = ValidationReport("habit_map")
    if not habit_map.mastery_definition.strip():
        report.add("masteryDefinition is empty")
    if len(habit_map.frictions) < MIN_FRICTIONS:
        report.add("fewer than three frictions")
    if len(habit_map.method_route) < MIN_METHOD_ROUTE:
        report.add("fewer than three method route entries")
    stage_set = {stage.stage for stage in habit_map.stages}
    if stage_set != set(STAGE_INDICES) or len(habit_map.stages) != len(STAGE_INDICES):
        report.add(f"stage indices must be exactly 0-4 (got {sorted(stage_set)})")
    step_ids: Set[str] = set()
    action_ids: Set[str] = set()
    for stage in habit_map.stages:
        if not stage.steps:
            report.add(f"stage {stage.stage} has no steps")
        for step in stage.steps:
            if stage.stage in STAGE_INDICES and not step.step_id.startswith(stage_prefix(stage.stage)):
                report.add(f"step {step.step_id} does not match stage {stage.stage}")
            if step.step_id in step_ids:
                report.add(f"step id {step.step_id} is duplicated")
            step_ids.add(step.step_id)
            if not step.fallback.strip():
                report.add(f"step {step.step_id} has no fallback")
            low, high = REQUIRED_COUNT_RANGE
            if not low <= step.required_completion_count <= high:
                report.add(f"step {step.step_id} requiredCompletionCount out of range")
            if not 0 <= step.completed_count <= step.required_completion_count:
                report.add(f"step {step.step_id} completedCount out of range")
            if not step.micro_actions:
                report.add(f"step {step.step_id} has no micro-actions")
            for action in step.micro_actions:
                if action.id in action_ids:
                    report.add(f"micro-action id {action.id} is duplicated")
                action_ids.add(action.id)
                if not action.text.strip():
                    report.add(f"micro-action {action.id} has empty text")
                if action.parent_step_id != step.step_id:
                    report.add(f"micro-action {action.id} is attached to the wrong step")
                if not ESTIMATED_SECONDS_RANGE[0] <= action.estimated_seconds <= ESTIMATED_SECONDS_RANGE[1]:
                    report.add(f"micro-action {action.id} estimatedSeconds out of range")
                if not 0.0 < action.success_probability < 1.0:
                    report.add(f"micro-action {action.id} successProbability out of range")
    return report


def _clean_step(
    raw_step: Dict[str, Any],
    stage_index: int,
    step_seen: Set[str],
    catalog: ReferenceCatalog,
    report: ValidationReport,
) -> Optional[Dict[str, Any]]:
    step_id = _text(raw_step.get("stepId"))
    if not step_id:
        report.add(f"a step in stage {stage_index} is missing stepId")
        return None
    expected = stage_prefix(stage_index)
    match = _STEP_ID_PATTERN.match(step_id)
    if not step_id.startswith(expected):
        report.add(f"stepId {step_id} does not match stage {stage_index} (expected prefix {expected})")
    elif match and int(match.group(2)) < 1:
        report.add(f"stepId {step_id} must be numbered from 1")
    if step_id in step_seen:
        report.add(f"stepId {step_id} is duplicated")
        return None
    title = _text(raw_step.get("title"))
    fallback = _text(raw_step.get("fallback"))
    if not title or not fallback:
        report.add(f"step {step_id} needs a non-empty title and fallback")

    raw_required = raw_step.get("requiredCompletionCount", REQUIRED_COUNT_RANGE[0])
    if not _is_number(raw_required):
        report.add(f"step {step_id} requiredCompletionCount must be a number")
        raw_required = REQUIRED_COUNT_RANGE[0]
    required = int(clamp(int(raw_required), *REQUIRED_COUNT_RANGE))

    capability_ids = _string_list(raw_step.get("capabilityIds"))
    for capability_id in capability_ids:
        if capability_id not in catalog.capability_ids:
            report.add(f"step {step_id} references unknown capability {capability_id!r}")
    return {
        "step_id": step_id,
        "title": title or "",
        "duration_estimate": _text(raw_step.get("duration")) or "",
        "fallback": fallback or "",
        "category": _text(raw_step.get("category")) or "",
        "required_completion_count": required,
        "capability_ids": capability_ids,
    }


def _clean_micro_actions(raw_actions: Any, label: str, report: ValidationReport) -> List[Dict[str, Any]]:
    cleaned: List[Dict[str, Any]] = []
    if not isinstance(raw_actions, list):
        return cleaned
    for item in raw_actions:
        if isinstance(item, str):
            if item.strip():
                cleaned.append({"text": item.strip()})
            continue
        if not isinstance(item, dict):
            report.add(f"{label} has a micro-action that is neither text nor an object")
            continue
        text = _text(item.get("text"))
        if not text:
            report.add(f"{label} has a micro-action with empty text")
            continue
        action: Dict[str, Any] = {"text": text}
        seconds = item.get("estimatedSeconds")
        if seconds is not None:
            if not _is_number(seconds) or seconds <= 0:
                report.add(f"{label} micro-action '{text}' estimatedSeconds must be a positive number")
            else:
                action["estimatedSeconds"] = int(clamp(int(seconds), *ESTIMATED_SECONDS_RANGE))
        probability = item.get("successProbability")
        if probability is not None:
            if not _is_number(probability):
                report.add(f"{label} micro-action '{text}' successProbability must be a number")
            else:
                action["successProbability"] = float(clamp(float(probability), *SUCCESS_PROBABILITY_RANGE))
        signal = _text(item.get("observableCompletionSignal"))
        if signal:
            action["observableCompletionSignal"] = signal
        cleaned.append(action)
    return cleaned


def _method_route(raw: Any) -> List[Dict[str, Optional[str]]]:
    route: List[Dict[str, Optional[str]]] = []
    if not isinstance(raw, list):
        return route
    for item in raw:
        if isinstance(item, str) and item.strip():
            route.append({"text": item.strip(), "tag": None})
        elif isinstance(item, dict):
            text = _text(item.get("text"))
            if not text:
                continue
            tag = _text(item.get("tag"))
            route.append({"text": text, "tag": tag.lower().replace("-", "_") if tag else None})
    return route


def _require_object(payload: Any, report: ValidationReport) -> bool:
    if not isinstance(payload, dict):
        report.add("response must be a JSON object")
        return False
    return True


def _object_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)
