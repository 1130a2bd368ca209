"""Multi-model plan, validate and auto-correct coordinator."""

from .adapter import PlanAdapter
from .autocorrect import AutoCorrectEngine
from .classifier import classify
from .memory import InMemoryStore, JsonFileMemoryStore, MemoryStore
from .models import (
    ErrorCorrection,
    ExecutionPlan,
    OrchestratorResult,
    PlanStep,
    StepResult,
    Task,
    TaskAnalysis,
)
from .orchestrator import ModelRoster, Orchestrator
from .patterns import PatternStore
from .plan_patterns import PlanPatternStore
from .thresholds import ThresholdManager
from .validator import PlanValidationContext, PlanValidator

__all__ = [
    "Orchestrator",
    "ModelRoster",
    "AutoCorrectEngine",
    "PlanAdapter",
    "PlanValidator",
    "PlanValidationContext",
    "PatternStore",
    "PlanPatternStore",
    "ThresholdManager",
    "MemoryStore",
    "InMemoryStore",
    "JsonFileMemoryStore",
    "classify",
    "ErrorCorrection",
    "ExecutionPlan",
    "OrchestratorResult",
    "PlanStep",
    "StepResult",
    "Task",
    "TaskAnalysis",
]
