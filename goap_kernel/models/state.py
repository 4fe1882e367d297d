"""World and goal state — immutable property maps the planner reasons over."""

from typing import Dict, Union

from pydantic import BaseModel, StrictBool, StrictFloat, StrictInt, StrictStr

# bool is listed first so True/False never coerce to 1/0
StateValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]

WorldState = Dict[str, StateValue]
GoalState = Dict[str, StateValue]


class PlanContext(BaseModel):
    """The states a plan was computed from."""

    current_state: WorldState = {}
    goal_state: GoalState = {}
