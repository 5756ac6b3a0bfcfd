"""Progress-only estimate of how long a plan generation will take.

Nothing here feeds back into job leases, timeouts or retries.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from plan_engine.db.models.generation_run import GenerationRun
from plan_engine.db.types import utcnow
from plan_engine.services.profile import ProfileSnapshot, round_half_up

logger = logging.getLogger(__name__)

MIN_SECONDS = 180
TYPICAL_SECONDS = 360
MAX_SECONDS = 480
HISTORY_LIMIT = 20
MIN_HISTORY_SAMPLES = 3
PROFILE_WEIGHT = 0.4
HISTORY_WEIGHT = 0.6

TRAINING_DAY_SECONDS = {1: 0, 2: 10, 3: 15, 4: 20, 5: 30, 6: 40, 7: 50}
EQUIPMENT_SECONDS = {0: 0, 1: 5, 2: 10, 3: 15, 4: 20}
DIET_SECONDS = {"none": 0, "one": 15, "multiple": 30, "with_notes": 45}
GOAL_WEIGHTS = {"GENERAL_FITNESS": 0, "WEIGHT_LOSS": 10, "MUSCLE_GAIN": 15, "ENDURANCE": 10, "FLEXIBILITY_MOBILITY": 5}
LEVEL_WEIGHTS = {"Beginner": 20, "Intermediate": 0, "Professional": 10}
INJURY_SECONDS = 30
SPECIAL_REQUEST_SECONDS = 20
VOICE_NOTE_SECONDS = 25
REGENERATION_SECONDS = 15


@dataclass(frozen=True)
class RunSample:
    duration_seconds: float
    complexity_score: int = 0
    success: bool = True


@dataclass(frozen=True)
class TimeEstimate:
    seconds: int
    min_seconds: int
    max_seconds: int
    confidence: str
    source: str
    complexity: int
    breakdown: List[str] = field(default_factory=list)


def _has_text(value: Optional[str], longer_than: int) -> bool:
    return bool(value) and len(value) > longer_than


def profile_complexity(profile: ProfileSnapshot) -> int:
    """Deterministic 0-100 complexity score."""
    score = 0.0
    score += min(profile.training_days * 1.5, 10)
    score += min(len(profile.equipment) * 2.5, 10)
    score += min(len(profile.dietary_prefs) * 5, 10)
    if _has_text(profile.dietary_notes, 10):
        score += 5
    score += GOAL_WEIGHTS.get(profile.goal, 0) / 1.5
    score += LEVEL_WEIGHTS.get(profile.training_level or "Intermediate", 0) / 2
    if _has_text(profile.injuries, 5):
        score += 7
    if profile.supplements:
        score += 3
    if profile.fasting_window:
        score += 4
    if profile.avoid_exercises:
        score += 4
    if _has_text(profile.special_requests, 10):
        score += 5
    if _has_text(profile.vmn_transcription, 50):
        score += 6
    if profile.plan_regeneration_request:
        score += 4
    if profile.personal_goals:
        score += 2
    return min(round_half_up(score), 100)


def _diet_key(profile: ProfileSnapshot) -> str:
    if _has_text(profile.dietary_notes, 10):
        return "with_notes"
    if len(profile.dietary_prefs) > 1:
        return "multiple"
    if len(profile.dietary_prefs) == 1:
        return "one"
    return "none"


def profile_estimate(profile: ProfileSnapshot) -> TimeEstimate:
    complexity = profile_complexity(profile)
    breakdown = [f"complexity {complexity}/100"]
    seconds = TYPICAL_SECONDS

    if complexity < 30:
        seconds -= 60
        breakdown.append("simple profile: -60s")
    elif complexity > 60:
        extra = round_half_up((complexity - 60) * 1.5)
        seconds += extra
        breakdown.append(f"complex profile: +{extra}s")

    days_bonus = TRAINING_DAY_SECONDS.get(profile.training_days, 15)
    seconds += days_bonus
    breakdown.append(f"{profile.training_days} training days: +{days_bonus}s")

    equipment_bonus = EQUIPMENT_SECONDS[min(len(profile.equipment), 4)]
    seconds += equipment_bonus
    if equipment_bonus:
        breakdown.append(f"{len(profile.equipment)} equipment types: +{equipment_bonus}s")

    diet_key = _diet_key(profile)
    seconds += DIET_SECONDS[diet_key]
    if DIET_SECONDS[diet_key]:
        breakdown.append(f"dietary restrictions ({diet_key}): +{DIET_SECONDS[diet_key]}s")

    for present, bonus, label in (
        (_has_text(profile.injuries, 5), INJURY_SECONDS, "injuries"),
        (_has_text(profile.special_requests, 10), SPECIAL_REQUEST_SECONDS, "special requests"),
        (_has_text(profile.vmn_transcription, 50), VOICE_NOTE_SECONDS, "voice note"),
        (bool(profile.plan_regeneration_request), REGENERATION_SECONDS, "regeneration request"),
    ):
        if present:
            seconds += bonus
            breakdown.append(f"{label}: +{bonus}s")

    return TimeEstimate(
        seconds=max(MIN_SECONDS, min(seconds, MAX_SECONDS)),
        min_seconds=max(MIN_SECONDS, seconds - 90),
        max_seconds=min(MAX_SECONDS, seconds + 120),
        confidence="low",
        source="profile",
        complexity=complexity,
        breakdown=breakdown,
    )


def _confidence(samples: int) -> str:
    if samples >= 10:
        return "high"
    if samples >= 5:
        return "medium"
    return "low"


def estimate(profile: ProfileSnapshot, history: Sequence[RunSample] = ()) -> TimeEstimate:
    """Blend the profile estimate with the last successful runs (40/60)."""
    base = profile_estimate(profile)
    successful = [sample for sample in list(history)[-HISTORY_LIMIT:] if sample.success]
    if len(successful) < MIN_HISTORY_SAMPLES:
        return base

    average = round_half_up(sum(sample.duration_seconds for sample in successful) / len(successful))
    combined = round_half_up(base.seconds * PROFILE_WEIGHT + average * HISTORY_WEIGHT)
    return TimeEstimate(
        seconds=combined,
        min_seconds=max(MIN_SECONDS, combined - 90),
        max_seconds=min(MAX_SECONDS, combined + 90),
        confidence=_confidence(len(successful)),
        source="combined",
        complexity=base.complexity,
        breakdown=base.breakdown + [f"historical average {average}s over {len(successful)} runs"],
    )


def progress_message(elapsed_seconds: float, estimate_: TimeEstimate) -> str:
    progress = elapsed_seconds / estimate_.seconds if estimate_.seconds else 1.0
    if progress < 0.25:
        return "Analyzing your profile & goals..."
    if progress < 0.5:
        return "Crafting your personalized workouts..."
    if progress < 0.75:
        return "Building your nutrition plan..."
    if progress < 1:
        return "Verifying and optimizing..."
    if elapsed_seconds < estimate_.max_seconds:
        return "Almost there, finalizing details..."
    return "Taking longer than usual. Hang tight!"


def remaining_time_message(elapsed_seconds: float, estimate_: TimeEstimate) -> str:
    remaining = int(estimate_.seconds - elapsed_seconds)
    if remaining <= 0:
        return "Almost ready..."
    if remaining <= 30:
        return f"About {remaining}s remaining"
    if remaining <= 60:
        return "Less than a minute remaining"
    minutes = -(-remaining // 60)
    return f"About {minutes} minutes remaining"


class GenerationHistoryStore:
    """Append-only duration history capped to the most recent runs."""

    def __init__(self, db: Session, limit: int = HISTORY_LIMIT) -> None:
        self.db = db
        self.limit = limit

    def append(
        self,
        *,
        duration_seconds: float,
        complexity_score: int,
        success: bool,
        user_id: Optional[UUID] = None,
    ) -> None:
        """Stage a sample and trim older rows; the caller commits."""
        self.db.add(
            GenerationRun(
                user_id=user_id,
                timestamp=utcnow(),
                duration_seconds=duration_seconds,
                complexity_score=complexity_score,
                success=success,
            )
        )
        self.db.flush()
        keep = select(GenerationRun.id).order_by(GenerationRun.id.desc()).limit(self.limit)
        self.db.execute(
            delete(GenerationRun).where(GenerationRun.id.not_in(keep)).execution_options(synchronize_session=False)
        )

    def recent(self) -> List[RunSample]:
        rows = self.db.scalars(select(GenerationRun).order_by(GenerationRun.id.desc()).limit(self.limit)).all()
        return [
            RunSample(duration_seconds=row.duration_seconds, complexity_score=row.complexity_score, success=row.success)
            for row in reversed(rows)
        ]
