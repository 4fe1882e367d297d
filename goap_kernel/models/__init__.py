"""GOAP Kernel data models."""

from goap_kernel.models.action import (
    DEFAULT_RISK_FACTORS,
    Action,
    ActionCost,
    ActionPriority,
    RiskLevel,
)
from goap_kernel.models.config import ConsolidationConfig, PlannerConfig
from goap_kernel.models.pattern import (
    ActionSequence,
    ConfidenceUpdate,
    ContextSignature,
    GeneralizationLevel,
    Pattern,
    PatternMatch,
)
from goap_kernel.models.plan import ExecutionOutcome, Plan, TrackingResult
from goap_kernel.models.state import GoalState, PlanContext, StateValue, WorldState
from goap_kernel.models.stats import (
    ConsolidationReport,
    PatternLibraryStats,
    PlanningStats,
)

__all__ = [
    "DEFAULT_RISK_FACTORS",
    "Action",
    "ActionCost",
    "ActionPriority",
    "ActionSequence",
    "ConfidenceUpdate",
    "ConsolidationConfig",
    "ConsolidationReport",
    "ContextSignature",
    "ExecutionOutcome",
    "GeneralizationLevel",
    "GoalState",
    "Pattern",
    "PatternLibraryStats",
    "PatternMatch",
    "Plan",
    "PlanContext",
    "PlannerConfig",
    "PlanningStats",
    "RiskLevel",
    "StateValue",
    "TrackingResult",
    "WorldState",
]
