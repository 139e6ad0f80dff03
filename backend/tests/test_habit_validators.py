"""Tests for the per-pass validators."""
from __future__ import annotations

from habitbingo.services.habit_validators import (
    ReferenceCatalog,
    scan_banned_content,
    validate_behavior_compilation,
    validate_capability_model,
    validate_goal_normalization,
    validate_habit_map,
    validate_recovery_system,
    validate_reinforcement_entries,
    validate_stage_construction,
)
from habitbingo.services.local_maps import build_local_habit_map


def _catalog() -> ReferenceCatalog:
    return ReferenceCatalog(
        capability_ids={"C1", "C2", "C3"},
        leverage_ids={"LV1", "LV2", "LV3"},
        step_ids={"S1", "P1", "L1", "B1", "R1"},
        behavior_capabilities={"BH1": "C1", "BH2": "C2", "BH3": "C3", "BH4": "C1", "BH5": "C2"},
        intervention_ids={"IV1", "IV2", "IV3", "IV4"},
    )


def test_goal_normalization_requires_three_frictions(pass_payloads) -> None:
    payload = pass_payloads()["goal_normalization"]
    assert validate_goal_normalization(payload).passed

    payload["frictions"] = ["Only one"]
    report = validate_goal_normalization(payload)

    assert not report.passed
    assert "frictions needs at least 3" in report.error_text()


def test_non_object_response_is_rejected() -> None:
    report = validate_goal_normalization(["not", "an", "object"])

    assert report.issues == ["response must be a JSON object"]


def test_capability_model_rejects_dangling_leverage(pass_payloads) -> None:
    payload = pass_payloads()["capability_model"]
    payload["leveragePoints"][0]["capabilityId"] = "C7"

    report = validate_capability_model(payload)

    assert any("unknown capability 'C7'" in issue for issue in report.issues)


def test_stage_construction_cleans_and_clamps(pass_payloads) -> None:
    payload = pass_payloads()["stage_construction"]
    payload["stages"][1]["steps"][0]["requiredCompletionCount"] = 9

    report = validate_stage_construction(payload, _catalog())

    assert report.passed, report.issues
    sprout = report.cleaned["stages"][1]["steps"][0]
    assert sprout["step_id"] == "P1"
    assert sprout["required_completion_count"] == 3


def test_stage_construction_enforces_stage_set_and_prefixes(pass_payloads) -> None:
    payload = pass_payloads()["stage_construction"]
    payload["stages"] = payload["stages"][:4]
    payload["stages"][2]["steps"][0]["stepId"] = "S9"

    report = validate_stage_construction(payload, _catalog())

    text = report.error_text()
    assert "missing [4]" in text
    assert "stepId S9 does not match stage 2" in text


def test_stage_construction_requires_all_route_tags(pass_payloads) -> None:
    payload = pass_payloads()["stage_construction"]
    payload["methodRoute"][2]["tag"] = "progressive"

    report = validate_stage_construction(payload, _catalog())

    assert "methodRoute must include an entry tagged 'recovery'" in report.issues


def test_stage_construction_rejects_non_numeric_counts(pass_payloads) -> None:
    payload = pass_payloads()["stage_construction"]
    payload["stages"][0]["steps"][0]["requiredCompletionCount"] = "twice"

    report = validate_stage_construction(payload, _catalog())

    assert "step S1 requiredCompletionCount must be a number" in report.issues


def test_stage_construction_rejects_non_finite_counts(pass_payloads) -> None:
    payload = pass_payloads()["stage_construction"]
    payload["stages"][0]["steps"][0]["requiredCompletionCount"] = float("inf")

    report = validate_stage_construction(payload, _catalog())

    assert "step S1 requiredCompletionCount must be a number" in report.issues


def test_stage_construction_scans_names_and_categories(pass_payloads) -> None:
    payload = pass_payloads()["stage_construction"]
    payload["stages"][2]["stageName"] = "Streak builder"
    payload["stages"][3]["steps"][0]["category"] = "Daily reading"

    report = validate_stage_construction(payload, _catalog())

    assert "contains banned phrase 'daily'" in report.issues
    assert "contains banned phrase 'streak'" in report.issues


def test_behavior_compilation_requires_every_step_covered(pass_payloads) -> None:
    payload = pass_payloads()["behavior_compilation"]
    payload["behaviors"] = [item for item in payload["behaviors"] if item["stepId"] != "R1"]

    report = validate_behavior_compilation(payload, _catalog())

    assert any("uncovered steps: R1" in issue for issue in report.issues)


def test_behavior_compilation_needs_two_variants(pass_payloads) -> None:
    payload = pass_payloads()["behavior_compilation"]
    payload["interventions"][0]["variants"] = ["Only one"]

    report = validate_behavior_compilation(payload, _catalog())

    assert "intervention IV1 needs at least 2 variants" in report.issues


def test_reinforcement_accepts_legacy_strings_and_drops_unrequested(entries_for) -> None:
    entries = entries_for(capabilities=("C1",))
    entries[0]["microActions"] = ["Put the novel on your pillow"]
    requested = {("C1", "prepare"), ("C1", "starter")}

    report = validate_reinforcement_entries({"entries": entries}, _catalog(), requested)

    assert report.passed, report.issues
    assert {(entry["capability_id"], entry["form"]) for entry in report.cleaned["entries"]} == requested
    assert report.cleaned["entries"][0]["micro_actions"] == [{"text": "Put the novel on your pillow"}]
    assert len(report.cleaned["ignored"]) == 3


def test_reinforcement_rejects_behavior_from_other_capability(entries_for) -> None:
    entries = entries_for(capabilities=("C1",))
    entries[0]["behaviorId"] = "BH2"

    report = validate_reinforcement_entries({"entries": entries}, _catalog(), {("C1", "prepare")})

    assert any("belongs to another capability" in issue for issue in report.issues)


def test_reinforcement_clamps_numeric_fields(entries_for) -> None:
    entries = entries_for(capabilities=("C1",))
    entries[0]["microActions"][0]["estimatedSeconds"] = 99999
    entries[0]["microActions"][0]["successProbability"] = 1.4

    report = validate_reinforcement_entries({"entries": entries}, _catalog(), {("C1", "prepare")})

    action = report.cleaned["entries"][0]["micro_actions"][0]
    assert action["estimatedSeconds"] == 1800
    assert action["successProbability"] == 0.95


def test_reinforcement_rejects_non_finite_numbers(entries_for) -> None:
    entries = entries_for(capabilities=("C1",))
    entries[0]["microActions"][0]["estimatedSeconds"] = float("nan")
    entries[1]["microActions"][0]["successProbability"] = float("-inf")

    report = validate_reinforcement_entries({"entries": entries}, _catalog(), {("C1", "prepare"), ("C1", "starter")})

    assert any("estimatedSeconds must be a positive number" in issue for issue in report.issues)
    assert any("successProbability must be a number" in issue for issue in report.issues)


def test_recovery_system_requires_every_intervention(pass_payloads) -> None:
    payload = pass_payloads()["recovery_system"]
    payload["recoveryScripts"] = payload["recoveryScripts"][:3]

    report = validate_recovery_system(payload, _catalog())

    assert "recovery scripts missing for interventions: IV4" in report.issues


def test_banned_scan_is_case_insensitive() -> None:
    issues = scan_banned_content(["Keep your STREAK alive", "Open the book"])

    assert issues == ["contains banned phrase 'streak'"]


def test_local_maps_satisfy_final_invariants() -> None:
    report = validate_habit_map(build_local_habit_map("stretching"))

    assert report.passed, report.issues
