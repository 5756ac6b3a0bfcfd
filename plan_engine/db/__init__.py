"""Database utilities and models."""

from plan_engine.db.base import Base
from plan_engine.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
