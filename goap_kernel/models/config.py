"""Planner and consolidation configuration."""

from typing import Dict, List

from pydantic import BaseModel, Field

from goap_kernel.models.action import DEFAULT_RISK_FACTORS


class PlannerConfig(BaseModel):
    """Configuration for the planner, pattern matching and confidence learning."""

    enable_pattern_learning: bool = True
    pattern_match_threshold: float = Field(ge=0, le=1, default=0.7)
    dedup_similarity_threshold: float = Field(ge=0, le=1, default=0.95)
    candidate_limit: int = Field(ge=1, default=5)
    heuristic_pattern_limit: int = Field(ge=0, default=100)
    candidate_scan_limit: int = Field(ge=1, default=500)

    # Search bounds
    max_search_depth: int = Field(ge=1, default=50)
    max_expansions: int = Field(ge=1, default=20000)
    timeout_ms: int = Field(ge=0, default=5000)
    bridging_max_actions: int = Field(ge=0, default=2)

    # Confidence learning
    learning_rate: float = Field(gt=0, le=1, default=0.1)
    max_confidence_delta: float = Field(gt=0, le=1, default=0.10)
    decay_factor: float = Field(gt=0, le=1, default=0.95)
    decay_period_days: int = Field(ge=1, default=30)
    degradation_window: int = Field(ge=1, default=20)
    degradation_drop_threshold: float = Field(ge=0, le=1, default=0.15)
    degradation_min_samples: int = Field(ge=1, default=3)
    degraded_confidence_factor: float = Field(ge=0, le=1, default=0.5)
    initial_confidence_baseline: float = Field(ge=0, le=1, default=0.5)
    initial_confidence_bonus: float = Field(ge=0, le=1, default=0.3)

    # Concurrent updates
    max_update_attempts: int = Field(ge=1, default=3)
    update_backoff_ms: int = Field(ge=0, default=5)

    # Cost accounting
    default_action_duration: float = Field(ge=0, default=1.0)
    risk_factors: Dict[str, float] = dict(DEFAULT_RISK_FACTORS)

    # Replanning advice
    enable_replanning: bool = True
    replan_threshold: float = Field(ge=0, default=5.0)  # Absolute cost overrun

    # State keys excluded from context signatures (timestamps, counters, ...)
    context_ignore_keys: List[str] = []


class ConsolidationConfig(BaseModel):
    """Configuration for the background consolidation pass."""

    merge_similarity: float = Field(ge=0, le=1, default=0.95)
    prune_confidence_floor: float = Field(ge=0, le=1, default=0.3)
    prune_usage_floor: int = Field(ge=0, default=5)
    retention_days: int = Field(ge=0, default=30)
    batch_size: int = Field(ge=1, default=200)
    schedule: str = "0 * * * *"             # Cron expression, hourly
