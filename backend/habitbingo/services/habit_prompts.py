"""Prompt rendering for the habit-map pipeline passes."""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from habitbingo.services.habit_models import BEHAVIOR_FORMS, METHOD_ROUTE_TAGS, STAGE_NAMES, STAGE_PREFIXES

SYSTEM_INSTRUCTION = (
    "You are a behavior-design planner. You turn one personal goal into a staged habit map made of "
    "concrete physical actions. Always answer with a single JSON object that matches the requested "
    "schema exactly. Refer to earlier items only by their ids. Never describe schedules or cadence "
    "(no 'every day', 'daily', 'each day'), never mention KPIs or streaks, and avoid generic coaching "
    "phrases such as 'take action', 'just start', 'build a trigger' or 'overcome resistance'."
)

GOAL_NORMALIZATION_SCHEMA = {
    "normalizedGoal": "string",
    "masteryDefinition": "string: what mastery looks like, observable",
    "frictions": ["string (at least 3 concrete obstacles)"],
}

CAPABILITY_MODEL_SCHEMA = {
    "capabilities": [{"id": "C1", "name": "string", "description": "string"}],
    "leveragePoints": [{"id": "LV1", "capabilityId": "C1", "description": "string"}],
}

STAGE_CONSTRUCTION_SCHEMA = {
    "methodRoute": [{"text": "string", "tag": "progressive | low_effort | recovery"}],
    "stages": [
        {
            "stage": "integer 0-4",
            "stageName": "string",
            "steps": [
                {
                    "stepId": "prefix letter for the stage + number, e.g. S1",
                    "title": "string",
                    "duration": "string, e.g. '2 min'",
                    "fallback": "string: lower-effort variant",
                    "category": "string",
                    "requiredCompletionCount": "integer 1-3",
                    "capabilityIds": ["C1"],
                }
            ],
        }
    ],
}

BEHAVIOR_COMPILATION_SCHEMA = {
    "behaviors": [
        {"id": "BH1", "stepId": "S1", "capabilityId": "C1", "leverageId": "LV1", "cue": "string", "action": "string"}
    ],
    "interventions": [
        {"id": "IV1", "behaviorId": "BH1", "strategy": "string", "variants": ["string", "string"]}
    ],
}

REINFORCEMENT_SCHEMA = {
    "entries": [
        {
            "capabilityId": "C1",
            "form": "|".join(BEHAVIOR_FORMS),
            "behaviorId": "BH1 (must belong to the same capability)",
            "interventionId": "IV1 (optional)",
            "microActions": [
                {
                    "text": "string: one physical action under 30 minutes",
                    "estimatedSeconds": "integer 5-1800",
                    "observableCompletionSignal": "string",
                    "successProbability": "number between 0 and 1",
                }
            ],
        }
    ],
}

RECOVERY_SYSTEM_SCHEMA = {
    "recoveryScripts": [{"interventionId": "IV1", "scripts": ["string", "string"]}],
}


def render_goal_normalization(goal: str) -> str:
    return _compose(
        f"Goal (verbatim from the user): {goal}",
        "Restate the goal plainly, define mastery, and list the frictions that usually stop people.",
        GOAL_NORMALIZATION_SCHEMA,
    )


def render_capability_model(normalized: Dict[str, Any]) -> str:
    context = {
        "goal": normalized["normalized_goal"],
        "masteryDefinition": normalized["mastery_definition"],
        "frictions": normalized["frictions"],
    }
    return _compose(
        "Goal context: " + _dump(context),
        "Model the capabilities someone needs for mastery (at least 3, ids C1, C2, ...) and the leverage "
        "points that make each capability easier (at least 3, ids LV1, LV2, ..., each pointing at a capabilityId).",
        CAPABILITY_MODEL_SCHEMA,
    )


def render_stage_construction(normalized: Dict[str, Any], capability_ids: Sequence[str]) -> str:
    stage_lines = ", ".join(
        f"{index}={name} (prefix {prefix})" for index, (name, prefix) in enumerate(zip(STAGE_NAMES, STAGE_PREFIXES))
    )
    return _compose(
        f"Goal: {normalized['normalized_goal']}\nCapability ids: {', '.join(capability_ids)}",
        "Build exactly five stages, easiest first: "
        f"{stage_lines}. Each stage needs at least one step. Step ids use the stage prefix and start at 1. "
        "Every step needs a fallback that is easier than the step itself. The method route needs at least "
        f"three entries and must include one entry tagged each of: {', '.join(METHOD_ROUTE_TAGS)}.",
        STAGE_CONSTRUCTION_SCHEMA,
    )


def render_behavior_compilation(
    goal: str,
    step_ids: Sequence[str],
    capability_ids: Sequence[str],
    leverage_ids: Sequence[str],
) -> str:
    return _compose(
        "Reference ids:\n"
        f"- goal: {goal}\n"
        f"- stepIds: {', '.join(step_ids)}\n"
        f"- capabilityIds: {', '.join(capability_ids)}\n"
        f"- leverageIds: {', '.join(leverage_ids)}",
        "Compile behaviors (at least 3, ids BH1, ...) so that every stepId has at least one behavior, "
        "then interventions (at least 4, ids IV1, ...) with at least two variants each.",
        BEHAVIOR_COMPILATION_SCHEMA,
    )


def render_reinforcement(
    goal: str,
    missing: Iterable[Tuple[str, str]],
    behavior_catalog: Dict[str, str],
    intervention_ids: Sequence[str],
) -> str:
    pairs = sorted(missing)
    wanted = "\n".join(f"- capabilityId={capability}, form={form}" for capability, form in pairs)
    behaviors = ", ".join(f"{behavior_id}->{capability}" for behavior_id, capability in sorted(behavior_catalog.items()))
    return _compose(
        f"Goal: {goal}\nBehaviors (id->capabilityId): {behaviors}\nInterventionIds: {', '.join(intervention_ids)}",
        "Return exactly one entry for each of these (capability, form) pairs and no others:\n"
        f"{wanted}\nEach entry needs at least one micro-action: a single concrete physical action "
        "someone can finish in one sitting.",
        REINFORCEMENT_SCHEMA,
    )


def render_recovery_system(goal: str, intervention_ids: Sequence[str]) -> str:
    return _compose(
        f"Goal: {goal}\nInterventionIds: {', '.join(intervention_ids)}",
        "For every intervention id write at least two short recovery scripts the person can use after an "
        "interruption to get back on track.",
        RECOVERY_SYSTEM_SCHEMA,
    )


def with_correction(prompt: str, error_text: str, previous_output: Optional[str]) -> str:
    """Append validator feedback so the model can repair its previous answer."""
    sections: List[str] = [prompt, "Your previous answer was rejected for these reasons:", error_text]
    if previous_output:
        sections.extend(["Previous answer:", previous_output.strip()[:4000]])
    sections.append("Return the corrected JSON object only.")
    return "\n\n".join(sections)


def _compose(context: str, instructions: str, schema: Dict[str, Any]) -> str:
    return f"{context}\n\n{instructions}\n\nRespond with JSON matching this schema:\n{_dump(schema)}"


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2)
