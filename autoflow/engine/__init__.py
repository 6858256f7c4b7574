"""Automation workflow engine: routing, conditions, steps and the run loop."""

from autoflow.engine.conditions import evaluate_condition, evaluate_conditions
from autoflow.engine.graph import RouteTable, build_routes
from autoflow.engine.interpolate import interpolate
from autoflow.engine.matcher import TriggerMatcher
from autoflow.engine.runner import AutomationRunner
from autoflow.engine.steps import RunState, StepExecutor, Suspend
from autoflow.engine.validator import AutomationValidator

__all__ = [
    "AutomationRunner",
    "AutomationValidator",
    "RouteTable",
    "RunState",
    "StepExecutor",
    "Suspend",
    "TriggerMatcher",
    "build_routes",
    "evaluate_condition",
    "evaluate_conditions",
    "interpolate",
]
