"""Profile snapshot captured on a plan job."""
from __future__ import annotations

import math
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProfileSnapshot(BaseModel):
    """User profile as sent by the client (camelCase) and stored on the job."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: Optional[str] = None
    goal: str = "GENERAL_FITNESS"
    training_days: int = Field(default=3, ge=1, le=7)
    equipment: List[str] = Field(default_factory=list)
    dietary_prefs: List[str] = Field(default_factory=list)
    dietary_notes: Optional[str] = None

    age: Optional[int] = None
    sex: Optional[str] = None
    height: Optional[float] = None
    weight: Optional[float] = None
    goal_weight: Optional[float] = None
    activity_level: Optional[str] = None
    daily_calorie_target: Optional[int] = None

    meal_count: int = Field(default=3, ge=1, le=8)
    fasting_window: Optional[str] = None
    training_level: Optional[str] = None
    preferred_workout_split: Optional[str] = None
    training_style_preferences: List[str] = Field(default_factory=list)
    session_length: Optional[int] = None

    avoid_exercises: List[str] = Field(default_factory=list)
    injuries: Optional[str] = None
    supplements: List[str] = Field(default_factory=list)
    supplement_notes: Optional[str] = None
    personal_goals: List[str] = Field(default_factory=list)
    perceived_lacks: List[str] = Field(default_factory=list)
    step_target: Optional[int] = None
    travel_days: Optional[int] = None
    special_requests: Optional[str] = None
    vmn_transcription: Optional[str] = None
    plan_regeneration_request: Optional[str] = None

    def snapshot(self) -> dict:
        """JSON-safe camelCase dump for the job row."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
