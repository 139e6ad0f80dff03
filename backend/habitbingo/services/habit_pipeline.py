"""Multi-pass habit-map generation with validation and bounded self-correction."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from habitbingo.core.config import settings
from habitbingo.core.context import goal_ctx_var
from habitbingo.core.errors import ExhaustedError, NetworkError, ParseError, ServerError
from habitbingo.observability.metrics import log_metric
from habitbingo.observability.tracing import trace
from habitbingo.services import habit_prompts as prompts
from habitbingo.services.habit_models import (
    BEHAVIOR_FORMS,
    STAGE_NAMES,
    Behavior,
    Capability,
    HabitMap,
    HabitStage,
    HabitStep,
    Intervention,
    LeveragePoint,
    MethodRouteEntry,
    MicroAction,
    decode_micro_actions,
)
from habitbingo.services.habit_validators import (
    ReferenceCatalog,
    ReinforcementKey,
    ValidationReport,
    validate_behavior_compilation,
    validate_capability_model,
    validate_goal_normalization,
    validate_habit_map,
    validate_recovery_system,
    validate_reinforcement_entries,
    validate_stage_construction,
)
from habitbingo.services.oracle import Oracle, OracleRequest, parse_oracle_json

logger = logging.getLogger(__name__)

Validator = Callable[[Any], ValidationReport]


@dataclass(frozen=True)
class Attempt:
    """One try at a pass; retries carry the previous rejection into the next prompt."""

    number: int = 1
    max_attempts: int = 2
    previous_error: Optional[str] = None
    previous_output: Optional[str] = None

    @property
    def can_retry(self) -> bool:
        return self.number < self.max_attempts

    def retry(self, error: str, output: Optional[str]) -> "Attempt":
        return replace(self, number=self.number + 1, previous_error=error, previous_output=output)


@dataclass
class PipelineFailure:
    goal: str
    pass_name: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"goal": self.goal, "pass": self.pass_name, "reason": self.reason}


class HabitMapPipeline:
    """
    Build a habit map for one goal.

    Passes run in order: goal normalization, capability model, stage
    construction, behavior compilation, reinforcement (patch mode), recovery
    system. Each pass gets at most one self-correction retry. Nothing is
    returned unless every pass and the final structural check succeed.
    """

    def __init__(
        self,
        oracle: Oracle,
        *,
        correction_retries: Optional[int] = None,
        patch_followup_limit: Optional[int] = None,
        max_output_tokens: Optional[int] = None,
    ):
        self.oracle = oracle
        retries = settings.pipeline_correction_retries if correction_retries is None else correction_retries
        self.max_attempts = 1 + max(0, retries)
        self.patch_followup_limit = (
            settings.patch_followup_limit if patch_followup_limit is None else patch_followup_limit
        )
        self.max_output_tokens = max_output_tokens or settings.oracle_max_output_tokens

    async def build(self, goal: str) -> Union[HabitMap, PipelineFailure]:
        token = goal_ctx_var.set(goal)
        started = perf_counter()
        try:
            with trace("habit_pipeline.build", metadata={"goal": goal}):
                habit_map = await self._run(goal)
        except ExhaustedError as exc:
            logger.warning("Habit map pipeline failed during %s: %s", exc.pass_name, exc.reason)
            log_metric("habit_pipeline_failed", 1, {"goal": goal, "pass": exc.pass_name})
            return PipelineFailure(goal=goal, pass_name=exc.pass_name, reason=exc.reason)
        finally:
            goal_ctx_var.reset(token)
        log_metric("habit_pipeline_duration_ms", round((perf_counter() - started) * 1000, 1), {"goal": goal})
        logger.info("Habit map ready for goal with %s steps", sum(1 for _ in habit_map.iter_steps()))
        return habit_map

    async def _run(self, goal: str) -> HabitMap:
        catalog = ReferenceCatalog()

        normalized = (
            await self._run_pass(
                goal,
                "goal_normalization",
                prompts.render_goal_normalization(goal),
                validate_goal_normalization,
            )
        ).cleaned

        capability_model = (
            await self._run_pass(
                goal,
                "capability_model",
                prompts.render_capability_model(normalized),
                validate_capability_model,
            )
        ).cleaned
        capability_order = [item["id"] for item in capability_model["capabilities"]]
        catalog.capability_ids = set(capability_order)
        catalog.leverage_ids = {item["id"] for item in capability_model["leverage_points"]}

        stage_model = (
            await self._run_pass(
                goal,
                "stage_construction",
                prompts.render_stage_construction(normalized, capability_order),
                lambda payload: validate_stage_construction(payload, catalog),
            )
        ).cleaned
        step_order = [step["step_id"] for stage in stage_model["stages"] for step in stage["steps"]]
        catalog.step_ids = set(step_order)

        behavior_model = (
            await self._run_pass(
                goal,
                "behavior_compilation",
                prompts.render_behavior_compilation(
                    normalized["normalized_goal"], step_order, capability_order, sorted(catalog.leverage_ids)
                ),
                lambda payload: validate_behavior_compilation(payload, catalog),
            )
        ).cleaned
        catalog.behavior_capabilities = {item["id"]: item["capability_id"] for item in behavior_model["behaviors"]}
        catalog.intervention_ids = {item["id"] for item in behavior_model["interventions"]}

        entries = await self._run_reinforcement(goal, normalized["normalized_goal"], capability_order, catalog)

        recovery = (
            await self._run_pass(
                goal,
                "recovery_system",
                prompts.render_recovery_system(normalized["normalized_goal"], sorted(catalog.intervention_ids)),
                lambda payload: validate_recovery_system(payload, catalog),
            )
        ).cleaned

        habit_map = _assemble(goal, normalized, capability_model, stage_model, behavior_model, entries, recovery)
        report = validate_habit_map(habit_map)
        if not report.passed:
            raise ExhaustedError(goal, "assembly", report.error_text())
        return habit_map

    async def _run_reinforcement(
        self,
        goal: str,
        normalized_goal: str,
        capability_order: List[str],
        catalog: ReferenceCatalog,
    ) -> Dict[ReinforcementKey, Dict[str, Any]]:
        """Patch mode: keep asking only for missing (capability, form) pairs, merging by key."""
        target = [(capability_id, form) for capability_id in capability_order for form in BEHAVIOR_FORMS]
        merged: Dict[ReinforcementKey, Dict[str, Any]] = {}
        followups = 0
        while True:
            missing: Set[ReinforcementKey] = {key for key in target if key not in merged}
            prompt = prompts.render_reinforcement(
                normalized_goal, missing, catalog.behavior_capabilities, sorted(catalog.intervention_ids)
            )
            report = await self._run_pass(
                goal,
                "reinforcement",
                prompt,
                lambda payload: validate_reinforcement_entries(payload, catalog, missing),
            )
            for entry in report.cleaned["entries"]:
                merged.setdefault((entry["capability_id"], entry["form"]), entry)
            still_missing = [key for key in target if key not in merged]
            if not still_missing:
                return {key: merged[key] for key in target}
            if followups >= self.patch_followup_limit:
                labels = ", ".join(f"{capability}/{form}" for capability, form in still_missing)
                raise ExhaustedError(goal, "reinforcement", f"coverage incomplete after follow-ups: {labels}")
            followups += 1
            log_metric("habit_pipeline_patch_followup", 1, {"missing": len(still_missing)})
            logger.info("Reinforcement coverage missing %s pair(s); requesting follow-up %s", len(still_missing), followups)

    async def _run_pass(self, goal: str, pass_name: str, prompt: str, validate: Validator) -> ValidationReport:
        attempt = Attempt(max_attempts=self.max_attempts)
        while True:
            report, error_text, raw_output = await self._attempt_pass(goal, pass_name, prompt, validate, attempt)
            if report is not None:
                log_metric("habit_pipeline_pass_attempts", attempt.number, {"pass": pass_name})
                return report
            log_metric("habit_pipeline_pass_rejected", 1, {"pass": pass_name, "attempt": attempt.number})
            if not attempt.can_retry:
                raise ExhaustedError(goal, pass_name, error_text)
            logger.info("Pass %s rejected on attempt %s; asking for a correction", pass_name, attempt.number)
            attempt = attempt.retry(error_text, raw_output)

    async def _attempt_pass(
        self,
        goal: str,
        pass_name: str,
        prompt: str,
        validate: Validator,
        attempt: Attempt,
    ) -> Tuple[Optional[ValidationReport], str, Optional[str]]:
        user_prompt = prompt
        if attempt.previous_error is not None:
            user_prompt = prompts.with_correction(prompt, attempt.previous_error, attempt.previous_output)
        request = OracleRequest(
            system_instruction=prompts.SYSTEM_INSTRUCTION,
            user_prompt=user_prompt,
            max_output_tokens=self.max_output_tokens,
        )
        with trace(f"habit_pipeline.{pass_name}", metadata={"attempt": attempt.number}):
            raw_output: Optional[str] = None
            try:
                raw_output = await self.oracle.complete(request)
                payload = parse_oracle_json(raw_output)
            except ParseError as exc:
                return None, _issues_text(exc), raw_output
            except (NetworkError, ServerError) as exc:
                raise ExhaustedError(goal, pass_name, str(exc)) from exc
            report = validate(payload)
        if report.passed:
            return report, "", raw_output
        return None, report.error_text(), raw_output


async def build_habit_map(goal: str, oracle: Oracle) -> Union[HabitMap, PipelineFailure]:
    """Convenience wrapper returning a HabitMap or a PipelineFailure."""
    return await HabitMapPipeline(oracle).build(goal)


def _assemble(
    goal: str,
    normalized: Dict[str, Any],
    capability_model: Dict[str, Any],
    stage_model: Dict[str, Any],
    behavior_model: Dict[str, Any],
    entries: Dict[ReinforcementKey, Dict[str, Any]],
    recovery: Dict[str, Any],
) -> HabitMap:
    behaviors = [Behavior(**item) for item in behavior_model["behaviors"]]
    behavior_by_id = {behavior.id: behavior for behavior in behaviors}

    actions_by_step: Dict[str, List[MicroAction]] = {}
    for (capability_id, form), entry in entries.items():
        behavior = behavior_by_id[entry["behavior_id"]]
        existing = actions_by_step.setdefault(behavior.step_id, [])
        existing.extend(
            decode_micro_actions(
                entry["micro_actions"],
                behavior.step_id,
                provenance={
                    "capability_id": capability_id,
                    "behavior_id": behavior.id,
                    "intervention_id": entry.get("intervention_id"),
                    "form": form,
                },
                start_index=len(existing) + 1,
            )
        )

    # Steps no reinforcement entry landed on are seeded from their own behaviors.
    for behavior in behaviors:
        if actions_by_step.get(behavior.step_id):
            continue
        actions_by_step[behavior.step_id] = decode_micro_actions(
            [behavior.action],
            behavior.step_id,
            provenance={"capability_id": behavior.capability_id, "behavior_id": behavior.id},
        )

    stages: List[HabitStage] = []
    for raw_stage in stage_model["stages"]:
        steps = [
            HabitStep(**raw_step, micro_actions=actions_by_step.get(raw_step["step_id"], []))
            for raw_step in raw_stage["steps"]
        ]
        name = raw_stage["name"] or STAGE_NAMES[raw_stage["stage"]]
        stages.append(HabitStage(stage=raw_stage["stage"], name=name, steps=steps))

    scripts = recovery["recovery_scripts"]
    interventions = [
        Intervention(**item, recovery_scripts=scripts.get(item["id"], [])) for item in behavior_model["interventions"]
    ]
    return HabitMap(
        goal=goal,
        mastery_definition=normalized["mastery_definition"],
        frictions=normalized["frictions"],
        method_route=[MethodRouteEntry(**entry) for entry in stage_model["method_route"]],
        stages=stages,
        capabilities=[Capability(**item) for item in capability_model["capabilities"]],
        leverage_points=[LeveragePoint(**item) for item in capability_model["leverage_points"]],
        behaviors=behaviors,
        interventions=interventions,
        source="pipeline",
    )


def _issues_text(exc: ParseError) -> str:
    if exc.issues:
        return "\n".join(f"- {issue}" for issue in exc.issues)
    return f"- {exc}"
