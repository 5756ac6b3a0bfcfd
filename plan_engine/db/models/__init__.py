"""ORM models exposed for metadata discovery."""
from plan_engine.db.models.checkin import CheckIn
from plan_engine.db.models.generation_run import GenerationRun
from plan_engine.db.models.plan_job import PlanJob
from plan_engine.db.models.weekly_plan import WeeklyPlan

__all__ = [
    "CheckIn",
    "GenerationRun",
    "PlanJob",
    "WeeklyPlan",
]
