"""Statistics exposed to dashboards and maintenance tooling."""

from datetime import datetime
from typing import Dict

from pydantic import BaseModel


class PlanningStats(BaseModel):
    total_plans_generated: int = 0
    pattern_based_plans: int = 0
    search_plans: int = 0
    failed_plans: int = 0
    average_planning_time_ms: float = 0.0   # Exponential moving average
    pattern_reuse_rate: float = 0.0
    replanning_recommendations: int = 0
    store_unavailable_events: int = 0


class PatternLibraryStats(BaseModel):
    total_patterns: int = 0
    patterns_by_level: Dict[str, int] = {}
    average_confidence: float = 0.0
    average_usage: float = 0.0
    high_confidence_patterns: int = 0       # confidence > 0.8
    low_usage_patterns: int = 0             # used < 3 times
    degraded_patterns: int = 0


class ConsolidationReport(BaseModel):
    scanned: int = 0
    merged: int = 0
    pruned: int = 0
    duration_ms: float = 0.0
    ran_at: datetime
