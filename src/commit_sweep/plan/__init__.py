"""
Plan model, building, freezing and rehydration.
"""

from .plan_builder import PlanBuilder, PlanIntegrityError, freeze_plan, rehydrate_plan  # noqa: F401
from .plan_model import Plan, RepoPlan  # noqa: F401
