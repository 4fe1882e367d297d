"""Pattern Model — learned, confidence-scored action sequences."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from goap_kernel.models.state import GoalState, WorldState


class GeneralizationLevel(str, Enum):
    SPECIFIC = "specific"   # Observed in a single context
    MODERATE = "moderate"   # Merged from near-identical contexts
    GENERAL = "general"     # Merged repeatedly across contexts

    def broaden(self) -> "GeneralizationLevel":
        if self is GeneralizationLevel.SPECIFIC:
            return GeneralizationLevel.MODERATE
        return GeneralizationLevel.GENERAL


class ContextSignature(BaseModel):
    """Summary of (goal, relevant current state) used for lookup and similarity."""

    goal: GoalState
    state: WorldState
    digest: str                             # sha256 over the canonical encoding


class ActionSequence(BaseModel):
    actions: List[str] = Field(min_length=1)
    total_cost: float = Field(ge=0)         # Cost recorded when it last succeeded


class Pattern(BaseModel):
    """A cached action sequence plus the evidence collected about it."""

    id: str
    context: ContextSignature
    action_sequence: ActionSequence
    confidence: float = Field(ge=0, le=1, default=0.5)
    usage_count: int = Field(ge=0, default=0)
    success_count: int = Field(ge=0, default=0)
    average_cost: float = Field(ge=0, default=0.0)
    cost_variance: float = Field(ge=0, default=0.0)
    created_at: datetime
    last_used: Optional[datetime] = None
    generalization_level: GeneralizationLevel = GeneralizationLevel.SPECIFIC
    recent_outcomes: List[bool] = []        # Rolling window of application outcomes
    degraded: bool = False
    version: int = 0                        # Optimistic concurrency token

    @model_validator(mode="after")
    def _check_counts(self) -> "Pattern":
        if self.success_count > self.usage_count:
            raise ValueError("success_count cannot exceed usage_count")
        return self

    @property
    def success_rate(self) -> float:
        if self.usage_count == 0:
            return 0.0
        return self.success_count / self.usage_count


class PatternMatch(BaseModel):
    """A candidate returned by similarity lookup."""

    pattern: Pattern
    similarity: float = Field(ge=0, le=1)
    ranking_confidence: float = Field(ge=0, le=1)

    @property
    def score(self) -> float:
        return self.similarity * self.ranking_confidence


class ConfidenceUpdate(BaseModel):
    """Result of one Bayesian revision."""

    pattern_id: str
    old_confidence: float
    new_confidence: float
    evidence_score: float
    likelihood: float
    posterior: float
    reason: str
