"""Digest recent check-ins into smoothed wellness scores and advisory deltas.

The memory is a pure function of the most recent check-ins and is rebuilt on
every generation request; nothing here is persisted.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

EMA_ALPHA = 0.6
EMA_WINDOW = 4
WEIGHT_WINDOW = 7
NEUTRAL_SCORE = 0.5
RED_FLAG_STREAK = 3
FLAT_WEIGHT_KG = 0.2
CALORIE_NUDGE = 100
NORMAL_DIGESTION = "Normal"
METRICS = ("sleep", "energy", "water", "stress")


def score_sleep(hours: float) -> float:
    if hours < 2:
        return 0.0
    if hours < 4:
        return 0.25
    if hours < 7:
        return 0.5
    if hours <= 10:
        return 1.0
    return 0.75


def score_energy(value: float) -> float:
    if value < 3:
        return 0.0
    if value < 5:
        return 0.5
    if value < 7:
        return 0.75
    return 1.0


def score_water(liters: float) -> float:
    if liters < 1:
        return 0.0
    if liters < 3.5:
        return 0.5
    return 1.0


def score_stress(value: float) -> float:
    if value < 3:
        return 1.0
    if value < 5:
        return 0.75
    if value < 7:
        return 0.25
    return 0.0


_SCORERS: Dict[str, tuple[str, Callable[[float], float]]] = {
    "sleep": ("sleep_hrs", score_sleep),
    "energy": ("energy", score_energy),
    "water": ("water_l", score_water),
    "stress": ("stress", score_stress),
}


def ema(values: Sequence[float], alpha: float = EMA_ALPHA) -> float:
    """Exponential moving average seeded with the oldest value."""
    if not values:
        return NEUTRAL_SCORE
    smoothed = values[0]
    for value in values[1:]:
        smoothed = alpha * value + (1 - alpha) * smoothed
    return round(smoothed, 2)


@dataclass(frozen=True)
class CheckInSignal:
    date: date
    energy: Optional[float] = None
    sleep_hrs: Optional[float] = None
    stress: Optional[float] = None
    water_l: Optional[float] = None
    soreness: Sequence[str] = ()
    digestion: Optional[str] = None
    current_weight: Optional[float] = None

    @classmethod
    def from_record(cls, record: Any) -> "CheckInSignal":
        """Build from any object exposing check-in attributes (e.g. the ORM row)."""
        return cls(
            date=record.date,
            energy=getattr(record, "energy", None),
            sleep_hrs=getattr(record, "sleep_hrs", None),
            stress=getattr(record, "stress", None),
            water_l=getattr(record, "water_l", None),
            soreness=tuple(getattr(record, "soreness", None) or ()),
            digestion=getattr(record, "digestion", None),
            current_weight=getattr(record, "current_weight", None),
        )


@dataclass(frozen=True)
class SorenessStreak:
    area: str
    length: int
    is_red_flag: bool = True


@dataclass(frozen=True)
class DigestionStreak:
    state: str
    length: int
    is_red_flag: bool = True


@dataclass(frozen=True)
class WeightPoint:
    date: date
    weight: float


@dataclass(frozen=True)
class WeightTrend:
    points: List[WeightPoint] = field(default_factory=list)
    delta_kg: float = 0.0
    direction: str = "flat"
    recommended_calorie_delta: int = 0


@dataclass(frozen=True)
class TrendMemory:
    scores: Dict[str, float]
    ema: Dict[str, float]
    soreness_history: str
    soreness_streaks: List[SorenessStreak]
    digestion_history: str
    digestion_streaks: List[DigestionStreak]
    weight_trend: WeightTrend

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["weight_trend"]["points"] = [
            {"date": point.date.isoformat(), "weight": point.weight} for point in self.weight_trend.points
        ]
        return payload


def weight_direction(delta_kg: float) -> str:
    if abs(delta_kg) < FLAT_WEIGHT_KG:
        return "flat"
    return "up" if delta_kg > 0 else "down"


def build_weight_trend(checkins: Sequence[CheckInSignal], goal: Optional[str] = None) -> WeightTrend:
    """Weight movement over the given check-ins (oldest first) and an advisory delta."""
    points = [WeightPoint(c.date, float(c.current_weight)) for c in checkins if c.current_weight is not None]
    if len(points) < 2:
        return WeightTrend(points=points)

    delta = round(points[-1].weight - points[0].weight, 2)
    direction = weight_direction(delta)
    calorie_delta = 0
    if goal == "WEIGHT_LOSS" and direction in ("flat", "up"):
        calorie_delta = -CALORIE_NUDGE
    elif goal == "MUSCLE_GAIN" and direction in ("flat", "down"):
        calorie_delta = CALORIE_NUDGE
    return WeightTrend(points=points, delta_kg=delta, direction=direction, recommended_calorie_delta=calorie_delta)


def _soreness_streaks(window: Sequence[CheckInSignal]) -> List[SorenessStreak]:
    days = [{part.strip().lower() for part in c.soreness if part and part.strip()} for c in window]
    areas = sorted(set().union(*days)) if days else []
    streaks: List[SorenessStreak] = []
    for area in areas:
        longest = current = 0
        for parts in days:
            current = current + 1 if area in parts else 0
            longest = max(longest, current)
        if longest >= RED_FLAG_STREAK:
            streaks.append(SorenessStreak(area=area, length=longest))
    return streaks


def _digestion_streaks(states: Sequence[str]) -> List[DigestionStreak]:
    streaks: List[DigestionStreak] = []
    run_state: Optional[str] = None
    run_length = 0
    for state in list(states) + [None]:
        if state is not None and state == run_state:
            run_length += 1
            continue
        if run_state is not None and run_state != NORMAL_DIGESTION and run_length >= RED_FLAG_STREAK:
            streaks.append(DigestionStreak(state=run_state, length=run_length))
        run_state, run_length = state, 1
    return streaks


def build_trend_memory(
    checkins: Iterable[Any],
    goal: Optional[str] = None,
    min_history: int = 4,
) -> Optional[TrendMemory]:
    """Return the trend memory, or None with fewer than ``min_history`` check-ins."""
    signals = sorted(
        (c if isinstance(c, CheckInSignal) else CheckInSignal.from_record(c) for c in checkins),
        key=lambda signal: signal.date,
    )
    if len(signals) < min_history:
        return None

    window = signals[-EMA_WINDOW:]
    scores: Dict[str, float] = {}
    smoothed: Dict[str, float] = {}
    for metric in METRICS:
        attribute, scorer = _SCORERS[metric]
        series = [scorer(float(value)) for value in (getattr(c, attribute) for c in window) if value is not None]
        smoothed[metric] = ema(series)
        scores[metric] = series[-1] if series else 0.0

    soreness_parts = [", ".join(c.soreness) if c.soreness else "none" for c in window]
    digestion_states = [c.digestion or NORMAL_DIGESTION for c in window]

    return TrendMemory(
        scores=scores,
        ema=smoothed,
        soreness_history=f"Soreness in last {len(window)} days: {', '.join(soreness_parts)}",
        soreness_streaks=_soreness_streaks(window),
        digestion_history=f"Digestion in last {len(window)} days: {', '.join(digestion_states)}",
        digestion_streaks=_digestion_streaks(digestion_states),
        weight_trend=build_weight_trend(signals[-WEIGHT_WINDOW:], goal),
    )


def describe_score(value: float) -> str:
    if value >= 0.75:
        return "good"
    if value >= 0.5:
        return "moderate"
    return "low"


def summarize_trend_memory(memory: Optional[TrendMemory]) -> str:
    """Render the memory as the prompt block the generator reads."""
    if memory is None:
        return "No trend memory yet (fewer than 4 check-ins); plan from the profile alone."

    lines = ["TREND MEMORY (last check-ins, EMA alpha 0.6):"]
    for metric in METRICS:
        value = memory.ema[metric]
        lines.append(f"- {metric}: ema {value:.2f} ({describe_score(value)}), latest {memory.scores[metric]:.2f}")
    lines.append(f"- {memory.soreness_history}")
    for streak in memory.soreness_streaks:
        lines.append(f"  RED FLAG: {streak.area} sore {streak.length} days in a row; reduce volume for this area")
    lines.append(f"- {memory.digestion_history}")
    for streak in memory.digestion_streaks:
        lines.append(f"  RED FLAG: digestion '{streak.state}' {streak.length} days in a row; adjust food choices")
    trend = memory.weight_trend
    if trend.points:
        lines.append(f"- Weight: {trend.direction} ({trend.delta_kg:+.2f} kg over {len(trend.points)} entries)")
        if trend.recommended_calorie_delta:
            lines.append(
                f"  Advisory: weight is not moving toward the goal; suggest {trend.recommended_calorie_delta:+d} kcal "
                "at the next target review (keep this week's totals as given)"
            )
    return "\n".join(lines)
