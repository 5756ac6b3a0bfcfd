"""Render a profile and trend memory into generation and verification prompts."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from plan_engine.services.completion.base import PromptPayload
from plan_engine.services.plan_structure import DAY_KEYS, REDO_SECTIONS, PlanConstraints
from plan_engine.services.profile import ProfileSnapshot, round_half_up
from plan_engine.services.trend_memory import TrendMemory, summarize_trend_memory

DEFAULT_BMR = 2000
DEFAULT_ACTIVITY_MULTIPLIER = 1.55
ACTIVITY_MULTIPLIERS = {
    "Sedentary": 1.2,
    "Lightly Active": 1.375,
    "Moderately Active": 1.55,
    "Very Active": 1.725,
    "Extra Active": 1.9,
}

SPLIT_MAPS: Dict[str, List[str]] = {
    "PPL": ["Push", "Pull", "Legs", "Push", "Pull", "Legs", "Rest"],
    "Push Pull Legs": ["Push", "Pull", "Legs", "Push", "Pull", "Legs", "Rest"],
    "Upper Lower": ["Upper Body", "Lower Body", "Rest", "Upper Body", "Lower Body", "Rest", "Rest"],
    "Full Body": ["Full Body", "Rest", "Full Body", "Rest", "Full Body", "Rest", "Rest"],
    "Bro Split": ["Chest", "Back", "Shoulders", "Arms", "Legs", "Rest", "Rest"],
}
SPLITS_BY_DAYS: Dict[int, List[str]] = {
    1: ["Full Body", "Rest", "Rest", "Rest", "Rest", "Rest", "Rest"],
    2: ["Upper Body", "Rest", "Rest", "Lower Body", "Rest", "Rest", "Rest"],
    3: ["Push", "Rest", "Pull", "Rest", "Legs", "Rest", "Rest"],
    4: ["Upper Body", "Lower Body", "Rest", "Upper Body", "Lower Body", "Rest", "Rest"],
    5: ["Push", "Pull", "Legs", "Upper Body", "Lower Body", "Rest", "Rest"],
    6: ["Push", "Pull", "Legs", "Push", "Pull", "Legs", "Rest"],
    7: ["Push", "Pull", "Legs", "Upper Body", "Lower Body", "Full Body", "Active Recovery"],
}

GOAL_INSTRUCTIONS = {
    "WEIGHT_LOSS": "Circuit-style work where useful, 12-15 reps, 2-3 cardio sessions, 30-60s rest, compound movements.",
    "MUSCLE_GAIN": "Progressive overload, 6-10 reps on main lifts, 4-5 sets, 2-3 min rest on compounds, isolation for lagging parts.",
    "ENDURANCE": "Supersets and circuits, 10-15 reps, 30-45s rest, 3-4 cardio sessions.",
    "GENERAL_FITNESS": "Balanced variety, 8-12 reps, compound plus isolation, 2-3 cardio sessions, functional movements.",
    "FLEXIBILITY_MOBILITY": "Yoga and stretching sessions, daily mobility, light resistance, active recovery.",
}
LEVEL_INSTRUCTIONS = {
    "Beginner": "Basic compound movements, machines where safer, 2-3 sets, RIR 3-4, form cues in notes.",
    "Intermediate": "Compound and isolation work, 3-4 sets, RIR 2-3, occasional supersets.",
    "Professional": "Advanced techniques, 4-5 sets on main lifts, RIR 1-2, periodization.",
}
MEAL_NAMES: Dict[int, List[str]] = {
    1: ["Main Meal"],
    2: ["First Meal", "Second Meal"],
    3: ["Breakfast", "Lunch", "Dinner"],
    4: ["Breakfast", "Lunch", "Afternoon Snack", "Dinner"],
    5: ["Breakfast", "Morning Snack", "Lunch", "Afternoon Snack", "Dinner"],
    6: ["Breakfast", "Morning Snack", "Lunch", "Afternoon Snack", "Dinner", "Evening Snack"],
    7: ["Breakfast", "Mid-Morning", "Lunch", "Afternoon Snack", "Post-Workout", "Dinner", "Before Bed"],
    8: ["Breakfast", "Snack 1", "Lunch", "Snack 2", "Pre-Workout", "Post-Workout", "Dinner", "Before Bed"],
}

MEAT_AND_FISH = (
    "chicken", "beef", "pork", "fish", "salmon", "tuna", "meat", "steak", "bacon",
    "ham", "turkey", "shrimp", "prawns", "lamb", "mutton", "seafood",
)
EGGS = ("egg", "eggs")


@dataclass(frozen=True)
class DietaryRules:
    label: str
    prompt_rules: str
    verification_rule: str
    forbidden_foods: Tuple[str, ...]


def dietary_rules(profile: ProfileSnapshot) -> DietaryRules:
    prefs = set(profile.dietary_prefs)
    if "Vegetarian" in prefs:
        return DietaryRules(
            label="VEGETARIAN",
            prompt_rules=(
                "DIETARY RULES (STRICT - VEGETARIAN):\n"
                "- ABSOLUTELY NO: meat, chicken, fish, seafood, eggs\n"
                "- Protein sources: lentils, chickpeas, beans, paneer, tofu, tempeh, greek yogurt, cottage cheese, quinoa"
            ),
            verification_rule="VEGETARIAN: no meat, chicken, fish, seafood, or eggs in any meal",
            forbidden_foods=MEAT_AND_FISH + EGGS,
        )
    if "Eggitarian" in prefs:
        return DietaryRules(
            label="EGGITARIAN",
            prompt_rules=(
                "DIETARY RULES (STRICT - EGGITARIAN):\n"
                "- ABSOLUTELY NO: meat, chicken, fish, seafood\n"
                "- EGGS ARE ALLOWED\n"
                "- Protein sources: eggs, lentils, chickpeas, beans, paneer, tofu, greek yogurt"
            ),
            verification_rule="EGGITARIAN: no meat, chicken, fish, or seafood (eggs are fine)",
            forbidden_foods=MEAT_AND_FISH,
        )
    return DietaryRules(
        label="NON-VEG",
        prompt_rules=(
            "DIETARY RULES (NON-VEG):\n"
            "- All protein sources allowed\n"
            "- Prioritize lean proteins: chicken breast, fish, lean beef, eggs"
        ),
        verification_rule="NON-VEG: any protein sources allowed",
        forbidden_foods=(),
    )


def calculate_bmr(profile: ProfileSnapshot) -> int:
    """Mifflin-St Jeor; 2000 when weight, height, age or sex is unknown."""
    if not (profile.weight and profile.height and profile.age and profile.sex):
        return DEFAULT_BMR
    base = 10 * profile.weight + 6.25 * profile.height - 5 * profile.age
    return round_half_up(base + 5 if profile.sex == "Male" else base - 161)


def calculate_tdee(profile: ProfileSnapshot) -> int:
    multiplier = ACTIVITY_MULTIPLIERS.get(profile.activity_level or "", DEFAULT_ACTIVITY_MULTIPLIER)
    return round_half_up(calculate_bmr(profile) * multiplier)


def calorie_target(profile: ProfileSnapshot) -> int:
    if profile.daily_calorie_target:
        return profile.daily_calorie_target
    tdee = calculate_tdee(profile)
    if profile.goal == "WEIGHT_LOSS":
        return round_half_up(tdee * 0.85)
    if profile.goal == "MUSCLE_GAIN":
        return round_half_up(tdee * 1.1)
    return tdee


def protein_target(profile: ProfileSnapshot) -> int:
    if not profile.weight:
        return round_half_up(calorie_target(profile) * 0.3 / 4)
    return round_half_up(profile.weight * (2.2 if profile.goal == "MUSCLE_GAIN" else 1.8))


def workout_split(profile: ProfileSnapshot) -> List[str]:
    if profile.preferred_workout_split in SPLIT_MAPS:
        return list(SPLIT_MAPS[profile.preferred_workout_split])
    return list(SPLITS_BY_DAYS[min(max(profile.training_days, 1), 7)])


def build_constraints(profile: ProfileSnapshot) -> PlanConstraints:
    return PlanConstraints(
        total_kcal=calorie_target(profile),
        protein_g=protein_target(profile),
        forbidden_foods=dietary_rules(profile).forbidden_foods,
        avoided_exercises=tuple(profile.avoid_exercises),
    )


def _lines(*items: Optional[str]) -> str:
    return "\n".join(item for item in items if item)


def _profile_block(profile: ProfileSnapshot, constraints: PlanConstraints) -> str:
    split = workout_split(profile)
    return _lines(
        "## USER PROFILE",
        f"- Goal: {profile.goal.replace('_', ' ')}",
        f"- Training days: {profile.training_days} per week",
        f"- Equipment: {', '.join(profile.equipment) or 'Bodyweight only'}",
        f"- Dietary preference: {', '.join(profile.dietary_prefs) or 'No restrictions'}",
        f"- Dietary notes: {profile.dietary_notes}" if profile.dietary_notes else None,
        f"- Age: {profile.age}" if profile.age else None,
        f"- Sex: {profile.sex}" if profile.sex else None,
        f"- Height: {profile.height} cm" if profile.height else None,
        f"- Weight: {profile.weight} kg" if profile.weight else None,
        f"- Goal weight: {profile.goal_weight} kg" if profile.goal_weight else None,
        f"- Activity level: {profile.activity_level}" if profile.activity_level else None,
        f"- Daily calories: {constraints.total_kcal} kcal",
        f"- Daily protein: {constraints.protein_g} g",
        f"- Meals per day: {profile.meal_count}",
        f"- Fasting window: {profile.fasting_window}"
        if profile.fasting_window and profile.fasting_window != "No Fasting"
        else None,
        f"- Experience level: {profile.training_level or 'Intermediate'}",
        f"- Workout split: {' -> '.join(split)}",
        f"- Training style: {', '.join(profile.training_style_preferences)}"
        if profile.training_style_preferences
        else None,
        f"- Session length: {profile.session_length} minutes" if profile.session_length else None,
        f"- Supplements: {', '.join(profile.supplements)}" if profile.supplements else None,
        f"- Personal goals: {', '.join(profile.personal_goals)}" if profile.personal_goals else None,
        f"- Areas to improve: {', '.join(profile.perceived_lacks)}" if profile.perceived_lacks else None,
        f"- Daily step target: {profile.step_target}" if profile.step_target else None,
        f"- Travel days per month: {profile.travel_days}" if profile.travel_days else None,
        f"- Special requests: {profile.special_requests}" if profile.special_requests else None,
    )


def build_generation_payload(
    profile: ProfileSnapshot,
    memory: Optional[TrendMemory],
    *,
    temperature: float = 0.6,
    max_tokens: int = 8192,
) -> PromptPayload:
    constraints = build_constraints(profile)
    rules = dietary_rules(profile)
    split = workout_split(profile)
    meal_names = MEAL_NAMES.get(profile.meal_count, MEAL_NAMES[3])
    level = profile.training_level or "Intermediate"

    system = _lines(
        "You are an elite fitness coach creating a personalized 7-day workout and nutrition plan.",
        "",
        _profile_block(profile, constraints),
        "",
        f"## REQUESTED CHANGES (CRITICAL)\n- {profile.plan_regeneration_request}"
        if profile.plan_regeneration_request
        else None,
        "## NUTRITION TARGETS (MUST MATCH EXACTLY ON EVERY DAY)",
        f"- total_kcal: {constraints.total_kcal}",
        f"- protein_g: {constraints.protein_g}",
        f"- meals: exactly {profile.meal_count} ({', '.join(meal_names)})",
        "",
        f"## GOAL ({profile.goal.replace('_', ' ')})",
        GOAL_INSTRUCTIONS.get(profile.goal, GOAL_INSTRUCTIONS["GENERAL_FITNESS"]),
        f"## LEVEL ({level})",
        LEVEL_INSTRUCTIONS.get(level, LEVEL_INSTRUCTIONS["Intermediate"]),
        "## WEEKLY SPLIT",
        "\n".join(f"- {day}: {focus}" for day, focus in zip(DAY_KEYS, split)),
        "## EQUIPMENT",
        f"{', '.join(profile.equipment) or 'Bodyweight only'}; only use exercises possible with it.",
        f"## EXERCISES TO AVOID (NEVER INCLUDE)\n{', '.join(profile.avoid_exercises)}"
        if profile.avoid_exercises
        else None,
        f"## INJURIES / LIMITATIONS\n{profile.injuries}" if profile.injuries else None,
        rules.prompt_rules,
        "",
        summarize_trend_memory(memory),
        "",
        "## OUTPUT FORMAT",
        "Return ONLY a JSON object of the form",
        '{"days": {"monday": {"workout": {"focus": [...], "blocks": [{"name": "...", "items": '
        '[{"exercise": "...", "sets": 3, "reps": "8-12", "RIR": 2}]}], "notes": "..."}, '
        f'"nutrition": {{"total_kcal": {constraints.total_kcal}, "protein_g": {constraints.protein_g}, '
        '"meals": [{"name": "...", "items": [{"food": "...", "qty": "..."}]}], "hydration_l": 2.5}, '
        '"recovery": {"mobility": [...], "sleep": [...]}, "reason": "..."}, ... all 7 days ...}}',
        "Rules: include all 7 days monday..sunday; RIR 0-5; sets 1-10; real exercise names; no markdown.",
    )
    user = "Create my personalized 7-day plan now. Return ONLY valid JSON."
    return PromptPayload(system=system, user=user, temperature=temperature, max_tokens=max_tokens, stage="generation")


def build_verification_payload(
    profile: ProfileSnapshot,
    days: Dict[str, Any],
    known_issues: Sequence[str] = (),
    *,
    temperature: float = 0.6,
    max_tokens: int = 8192,
) -> PromptPayload:
    constraints = build_constraints(profile)
    rules = dietary_rules(profile)
    level = profile.training_level or "Intermediate"

    system = _lines(
        "You are a fitness plan quality reviewer. Verify the plan below and FIX every violation.",
        "## REQUIREMENTS",
        f"- Diet: {rules.verification_rule}",
        f"- Dietary notes: {profile.dietary_notes}" if profile.dietary_notes else None,
        f"- total_kcal = {constraints.total_kcal} and protein_g = {constraints.protein_g} on every day",
        f"- Exactly {profile.meal_count} meals per day",
        f"- Equipment: {', '.join(profile.equipment) or 'Bodyweight only'}",
        f"- Avoided exercises must not appear: {', '.join(profile.avoid_exercises) or 'none'}",
        f"- Injuries: {profile.injuries or 'none'}",
        f"- Training level: {level}",
        f"- Session length: {profile.session_length} minutes" if profile.session_length else None,
        f"- Requested changes: {profile.plan_regeneration_request}" if profile.plan_regeneration_request else None,
        "## KNOWN VIOLATIONS" if known_issues else None,
        "\n".join(f"- {issue}" for issue in known_issues) if known_issues else None,
        "## CHECKLIST (per day)",
        "completeness, diet compliance, equipment match, avoided exercises, injury safety, "
        "nutrition accuracy, meal count, exercise validity, training level, valid JSON",
        "## OUTPUT FORMAT",
        'Return ONLY JSON: {"verified": true|false, "issues": [...], "fixes": [...], '
        '"plan": {"days": {"monday": {...}, ... all 7 days ...}}}',
        "If nothing needs fixing return the plan unchanged with empty issues and fixes.",
    )
    user = "Verify and fix this plan:\n\n" + json.dumps({"days": days}, indent=2)
    return PromptPayload(system=system, user=user, temperature=temperature, max_tokens=max_tokens, stage="verification")


REDO_FOCUS = {
    "workout": "the WORKOUT section only (focus, blocks, notes)",
    "nutrition": "the NUTRITION and RECOVERY sections only",
    "both": "the workout, nutrition and recovery sections",
}


def _previous_sections(previous_days: Dict[str, Any], redo_type: str) -> Dict[str, Any]:
    sections = REDO_SECTIONS.get(redo_type, REDO_SECTIONS["both"])
    return {
        day: {key: value for key, value in plan.items() if key in sections and key != "reason"}
        for day, plan in previous_days.items()
        if isinstance(plan, dict)
    }


def build_redo_payload(
    profile: ProfileSnapshot,
    previous_days: Dict[str, Any],
    redo_type: str,
    reason: Optional[str],
    memory: Optional[TrendMemory] = None,
    *,
    temperature: float = 0.6,
    max_tokens: int = 8192,
) -> PromptPayload:
    """Prompt for editing part of an existing week instead of starting over."""
    constraints = build_constraints(profile)
    rules = dietary_rules(profile)
    redo_type = redo_type if redo_type in REDO_FOCUS else "both"
    request = reason or profile.plan_regeneration_request or "Improve the plan"
    sections = [key for key in REDO_SECTIONS[redo_type] if key != "reason"]

    system = _lines(
        f"You are a fitness plan editor. Rewrite {REDO_FOCUS[redo_type]} of an existing 7-day plan.",
        "Apply the edit request and keep everything else about the week the same.",
        "",
        _profile_block(profile, constraints),
        "",
        rules.prompt_rules if redo_type != "workout" else None,
        f"## EXERCISES TO AVOID (NEVER INCLUDE)\n{', '.join(profile.avoid_exercises)}"
        if profile.avoid_exercises and redo_type != "nutrition"
        else None,
        f"## INJURIES / LIMITATIONS\n{profile.injuries}" if profile.injuries and redo_type != "nutrition" else None,
        summarize_trend_memory(memory),
        "",
        "## OUTPUT FORMAT",
        "Return ONLY a JSON object of the form "
        '{"days": {"monday": {' + ", ".join(f'"{key}": {{...}}' for key in sections) + ', "reason": "..."}, '
        "... all 7 days ...}}",
        f"Each day carries only {', '.join(sections)} and a one-sentence reason explaining the change.",
        f"Nutrition must keep total_kcal = {constraints.total_kcal} and protein_g = {constraints.protein_g}."
        if redo_type != "workout"
        else None,
    )
    user = (
        f'EDIT REQUEST: "{request}"\n\n'
        "CURRENT PLAN:\n"
        + json.dumps({"days": _previous_sections(previous_days, redo_type)}, indent=2)
        + "\n\nReturn the complete edited 7-day JSON now."
    )
    return PromptPayload(system=system, user=user, temperature=temperature, max_tokens=max_tokens, stage="redo")
