"""Natural-language planner: rule tier, optional reasoning tier, and plan runner."""

from mailgate.planner.models import Plan, PlanStep, PlanStrategy, StepAction, StepResult
from mailgate.planner.rules import plan_from_rules
from mailgate.planner.runner import PlanRunner
from mailgate.planner.strategy import FallbackPlanner, Planner, RulePlanner

__all__ = [
    "FallbackPlanner",
    "Plan",
    "PlanRunner",
    "PlanStep",
    "PlanStrategy",
    "Planner",
    "RulePlanner",
    "StepAction",
    "StepResult",
    "plan_from_rules",
]
