"""Structural validation and repair of parsed weekly plans."""
from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from plan_engine.core.errors import ValidationError

logger = logging.getLogger(__name__)

DAY_KEYS: Tuple[str, ...] = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DEFAULT_HYDRATION_L = 2.5
DEFAULT_MOBILITY = ["10-minute post-workout stretch", "Foam rolling if available"]
DEFAULT_SLEEP = ["Target 7-8 hours", "Avoid screens 1 hour before bed"]
DEFAULT_FOCUS = ["Full Body"]

# Day sections a redo may replace; everything else is kept from the source plan.
REDO_SECTIONS: Dict[str, Tuple[str, ...]] = {
    "workout": ("workout", "reason"),
    "nutrition": ("nutrition", "recovery", "reason"),
    "both": ("workout", "nutrition", "recovery", "reason"),
}


@dataclass(frozen=True)
class PlanConstraints:
    """Authoritative values the model output is checked and corrected against."""

    total_kcal: int
    protein_g: int
    forbidden_foods: Tuple[str, ...] = ()
    avoided_exercises: Tuple[str, ...] = ()


@dataclass
class RepairReport:
    parse_strategy: str
    structural_fixes: List[str] = field(default_factory=list)
    semantic_issues: List[str] = field(default_factory=list)
    verification: str = "not_run"

    def to_notes(self) -> Dict[str, Any]:
        return {
            "parse_strategy": self.parse_strategy,
            "structural_fixes": list(self.structural_fixes),
            "semantic_issues": list(self.semantic_issues),
            "verification": self.verification,
        }


class _Loose(BaseModel):
    model_config = ConfigDict(extra="allow")


class WorkoutShape(_Loose):
    focus: List[str]
    blocks: List[Dict[str, Any]] = Field(min_length=1)


class NutritionShape(_Loose):
    total_kcal: int
    protein_g: int
    meals: List[Dict[str, Any]] = Field(min_length=1)
    hydration_l: float


class RecoveryShape(_Loose):
    mobility: List[str]
    sleep: List[str]


class DayPlanShape(_Loose):
    workout: WorkoutShape
    nutrition: NutritionShape
    recovery: RecoveryShape
    reason: str


class WeekShape(BaseModel):
    monday: DayPlanShape
    tuesday: DayPlanShape
    wednesday: DayPlanShape
    thursday: DayPlanShape
    friday: DayPlanShape
    saturday: DayPlanShape
    sunday: DayPlanShape


def extract_days(value: Any) -> Dict[str, Any]:
    """Find the ``{monday..sunday}`` mapping inside a parsed response.

    Accepts ``{"days": {...}}``, verification wrappers such as
    ``{"verified": ..., "plan": {"days": {...}}}`` and a bare day mapping.
    """
    if isinstance(value, dict):
        lowered = {str(key).strip().lower(): item for key, item in value.items()}
        if isinstance(lowered.get("days"), dict):
            return extract_days(lowered["days"])
        if isinstance(lowered.get("plan"), dict):
            return extract_days(lowered["plan"])
        if any(day in lowered for day in DAY_KEYS):
            return {day: lowered[day] for day in DAY_KEYS if day in lowered}
    raise ValidationError("Response does not contain a days mapping", issues=["days: missing"])


def merge_redo_sections(previous: Dict[str, Any], generated: Any, redo_type: str) -> Dict[str, Any]:
    """Overlay the regenerated sections onto a copy of the previous week.

    Only the sections named by ``redo_type`` are taken from ``generated``; a
    day the model left out keeps its previous content.
    """
    sections = REDO_SECTIONS.get(redo_type, REDO_SECTIONS["both"])
    new_days = extract_days(generated)
    merged: Dict[str, Any] = {}
    for day in DAY_KEYS:
        base = previous.get(day)
        plan = copy.deepcopy(base) if isinstance(base, dict) else {}
        fresh = new_days.get(day)
        if isinstance(fresh, dict):
            for section in sections:
                if fresh.get(section) is not None:
                    plan[section] = copy.deepcopy(fresh[section])
        if plan:
            merged[day] = plan
    return {"days": merged}


def _as_str_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    if isinstance(value, list):
        items = [str(item) if not isinstance(item, str) else item for item in value if item not in (None, "")]
        return items
    return None


def _normalize_day(day: str, raw: Any, constraints: PlanConstraints, fixes: List[str]) -> Dict[str, Any]:
    plan = dict(raw)

    workout = plan.get("workout")
    if isinstance(workout, dict):
        workout = dict(workout)
        focus = _as_str_list(workout.get("focus"))
        if not focus:
            focus = list(DEFAULT_FOCUS)
            fixes.append(f"{day}.workout.focus: defaulted")
        workout["focus"] = focus
        blocks = workout.get("blocks")
        workout["blocks"] = [block for block in blocks if isinstance(block, dict)] if isinstance(blocks, list) else []
        plan["workout"] = workout
    else:
        plan.pop("workout", None)

    nutrition = plan.get("nutrition")
    if isinstance(nutrition, dict):
        nutrition = dict(nutrition)
        if nutrition.get("total_kcal") != constraints.total_kcal:
            fixes.append(f"{day}.nutrition.total_kcal: {nutrition.get('total_kcal')!r} -> {constraints.total_kcal}")
        if nutrition.get("protein_g") != constraints.protein_g:
            fixes.append(f"{day}.nutrition.protein_g: {nutrition.get('protein_g')!r} -> {constraints.protein_g}")
        nutrition["total_kcal"] = constraints.total_kcal
        nutrition["protein_g"] = constraints.protein_g
        meals = nutrition.get("meals")
        nutrition["meals"] = [meal for meal in meals if isinstance(meal, dict)] if isinstance(meals, list) else []
        hydration = nutrition.get("hydration_l")
        if isinstance(hydration, bool) or not isinstance(hydration, (int, float)):
            nutrition["hydration_l"] = DEFAULT_HYDRATION_L
            fixes.append(f"{day}.nutrition.hydration_l: defaulted")
        plan["nutrition"] = nutrition
    else:
        plan.pop("nutrition", None)

    recovery = plan.get("recovery")
    recovery = dict(recovery) if isinstance(recovery, dict) else {}
    for key, default in (("mobility", DEFAULT_MOBILITY), ("sleep", DEFAULT_SLEEP)):
        items = _as_str_list(recovery.get(key))
        if not items:
            items = list(default)
            fixes.append(f"{day}.recovery.{key}: defaulted")
        recovery[key] = items
    plan["recovery"] = recovery

    if not isinstance(plan.get("reason"), str):
        plan["reason"] = ""
    return plan


def _is_complete(plan: Dict[str, Any]) -> bool:
    workout = plan.get("workout") or {}
    nutrition = plan.get("nutrition") or {}
    return bool(workout.get("blocks")) and bool(nutrition.get("meals"))


def repair_plan(value: Any, constraints: PlanConstraints) -> Tuple[Dict[str, Dict[str, Any]], List[str]]:
    """Return seven repaired day plans in weekday order plus the list of fixes.

    Calorie and protein targets are always forced. A missing day is cloned from
    the first complete day; a day missing its workout blocks or meals takes
    that section from the same template. Raises ``ValidationError`` when no day
    is complete, since a week cannot be built without a template.
    """
    raw_days = extract_days(value)
    fixes: List[str] = []
    normalized: Dict[str, Dict[str, Any]] = {}
    for day in DAY_KEYS:
        raw = raw_days.get(day)
        if isinstance(raw, dict):
            normalized[day] = _normalize_day(day, raw, constraints, fixes)

    template_day = next((day for day in DAY_KEYS if day in normalized and _is_complete(normalized[day])), None)
    if template_day is None:
        raise ValidationError(
            "No complete day plan to build the week from",
            issues=[f"{day}: missing workout blocks or meals" for day in DAY_KEYS],
        )
    template = normalized[template_day]

    days: Dict[str, Dict[str, Any]] = {}
    for day in DAY_KEYS:
        plan = normalized.get(day)
        if plan is None:
            days[day] = copy.deepcopy(template)
            fixes.append(f"{day}: cloned from {template_day}")
            continue
        if not (plan.get("workout") or {}).get("blocks"):
            plan["workout"] = copy.deepcopy(template["workout"])
            fixes.append(f"{day}.workout: copied from {template_day}")
        if not (plan.get("nutrition") or {}).get("meals"):
            plan["nutrition"] = copy.deepcopy(template["nutrition"])
            fixes.append(f"{day}.nutrition: copied from {template_day}")
        days[day] = plan

    try:
        WeekShape.model_validate(days)
    except PydanticValidationError as exc:
        issues = [".".join(str(part) for part in error["loc"]) + f": {error['msg']}" for error in exc.errors()]
        raise ValidationError("Plan does not match the weekly shape after repair", issues=issues) from exc

    return days, fixes


def _walk_strings(value: Any, keys: Sequence[str]) -> Iterator[str]:
    if isinstance(value, dict):
        for key, item in value.items():
            if key in keys and isinstance(item, str):
                yield item
            else:
                yield from _walk_strings(item, keys)
    elif isinstance(value, list):
        for item in value:
            if isinstance(item, str):
                yield item
            else:
                yield from _walk_strings(item, keys)


def _word_pattern(token: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(token.strip())}\b", re.IGNORECASE)


def find_semantic_issues(days: Dict[str, Dict[str, Any]], constraints: PlanConstraints) -> List[str]:
    """List forbidden foods and avoided exercises still present in the plan.

    These are reported, never rewritten.
    """
    issues: List[str] = []
    food_patterns = [(token, _word_pattern(token)) for token in constraints.forbidden_foods if token.strip()]
    exercise_patterns = [(token, _word_pattern(token)) for token in constraints.avoided_exercises if token.strip()]

    for day in DAY_KEYS:
        plan = days.get(day) or {}
        meals = (plan.get("nutrition") or {}).get("meals") or []
        for text in _walk_strings(meals, ("food", "name", "item")):
            for token, pattern in food_patterns:
                if pattern.search(text):
                    issues.append(f"{day}: forbidden food '{token}' in '{text}'")
        blocks = (plan.get("workout") or {}).get("blocks") or []
        for text in _walk_strings(blocks, ("exercise", "name")):
            for token, pattern in exercise_patterns:
                if pattern.search(text):
                    issues.append(f"{day}: avoided exercise '{token}' in '{text}'")
    return _dedupe(issues)


def _dedupe(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))
