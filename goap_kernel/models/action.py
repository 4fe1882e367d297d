"""Action definitions — supplied by the caller with every planning request."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from goap_kernel.models.state import WorldState


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


DEFAULT_RISK_FACTORS: Dict[str, float] = {
    RiskLevel.LOW.value: 1.0,
    RiskLevel.MEDIUM.value: 1.5,
    RiskLevel.HIGH.value: 2.0,
    RiskLevel.CRITICAL.value: 3.0,
}


class ActionCost(BaseModel):
    """Cost record: base units scaled by a risk multiplier."""

    model_config = ConfigDict(frozen=True)

    base_units: float = Field(ge=0)
    risk_factor: RiskLevel = RiskLevel.LOW

    def total(self, risk_factors: Optional[Dict[str, float]] = None) -> float:
        factors = risk_factors or DEFAULT_RISK_FACTORS
        return self.base_units * factors[self.risk_factor.value]


class Action(BaseModel):
    """A single edge type in the planning graph."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    category: str = "general"
    priority: ActionPriority = ActionPriority.MEDIUM
    preconditions: WorldState = {}          # Must hold before the action runs
    effects: WorldState = {}                # Applied to the state on success
    cost: ActionCost = ActionCost(base_units=1.0)
    duration: Optional[float] = Field(default=None, ge=0)  # Execution time estimate
