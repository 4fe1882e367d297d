"""Plans returned to the caller and the outcomes reported back."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from goap_kernel.models.state import PlanContext


class Plan(BaseModel):
    """An ordered action sequence. Immutable once returned; the caller executes it."""

    model_config = ConfigDict(frozen=True)

    id: str
    actions: List[str]                      # Action ids in execution order
    total_cost: float = Field(ge=0)
    estimated_duration: float = Field(ge=0, default=0.0)
    created_at: datetime
    source_pattern_id: Optional[str] = None  # Set iff the plan came from pattern reuse
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    context: PlanContext = PlanContext()

    @property
    def from_pattern(self) -> bool:
        return self.source_pattern_id is not None


class ExecutionOutcome(BaseModel):
    """What happened when a plan was executed. Sole feedback channel into learning."""

    plan_id: str
    success: bool
    actual_cost: float = Field(ge=0)
    estimated_cost: float = Field(ge=0)
    achieved_goal: bool
    execution_duration: float = Field(ge=0, default=0.0)
    errors: List[str] = []
    lessons_learned: List[str] = []

    @property
    def cost_variance(self) -> float:
        return self.actual_cost - self.estimated_cost


class TrackingResult(BaseModel):
    """What track_execution did with an outcome."""

    plan_id: str
    pattern_id: Optional[str] = None
    action: str                             # "confidence_updated" | "pattern_learned" | "ignored"
    old_confidence: Optional[float] = None
    new_confidence: Optional[float] = None
    replan_recommended: bool = False
    store_available: bool = True
