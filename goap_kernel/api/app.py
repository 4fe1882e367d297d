"""
GOAP Kernel API — FastAPI endpoints.

A thin adapter for orchestrators:
- Planning requests
- Execution outcome reporting
- Planning and pattern library statistics
- Pattern inspection
- Manual consolidation
- Runtime configuration
"""

from collections import OrderedDict
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from goap_kernel.errors import Cancelled, NoPlanFound, PlanningTimeout
from goap_kernel.maintenance.consolidation import ConsolidationWorker
from goap_kernel.models.action import Action
from goap_kernel.models.config import ConsolidationConfig, PlannerConfig
from goap_kernel.models.plan import ExecutionOutcome, Plan
from goap_kernel.models.state import GoalState, WorldState
from goap_kernel.patterns.store import PatternStore
from goap_kernel.planner.engine import GOAPPlanner


# --- Request/Response Models ---

class PlanRequest(BaseModel):
    current_state: WorldState
    goal_state: GoalState
    actions: List[Action]


class OutcomeRequest(BaseModel):
    success: bool
    actual_cost: float
    achieved_goal: bool
    estimated_cost: Optional[float] = None  # Defaults to the plan's total cost
    execution_duration: float = 0.0
    errors: List[str] = []
    lessons_learned: List[str] = []


# --- Application Factory ---

def create_app(
    planner: Optional[GOAPPlanner] = None,
    store: Optional[PatternStore] = None,
    config: Optional[PlannerConfig] = None,
    consolidation_config: Optional[ConsolidationConfig] = None,
    max_tracked_plans: int = 1000,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="GOAP Kernel API",
        description="Goal-oriented action planner with learned pattern reuse",
        version="0.1.0-alpha",
    )

    # Initialize components
    if planner is None:
        ps = store or PatternStore(config=config)
        planner = GOAPPlanner(store=ps, config=config or ps.config)
    ps = planner.store
    worker = ConsolidationWorker(ps, consolidation_config)
    plans: "OrderedDict[str, Plan]" = OrderedDict()  # Oldest evicted past max_tracked_plans

    # Store components on app state for access in endpoints
    app.state.planner = planner
    app.state.pattern_store = ps
    app.state.consolidation_worker = worker
    app.state.plans = plans

    # === PLANNING ===

    @app.post("/plan")
    def create_plan(req: PlanRequest):
        """Plan a minimum-cost action sequence for a goal."""
        try:
            plan = planner.plan(req.current_state, req.goal_state, req.actions)
        except NoPlanFound as exc:
            raise HTTPException(422, str(exc))
        except PlanningTimeout as exc:
            raise HTTPException(408, str(exc))
        except Cancelled as exc:
            raise HTTPException(409, str(exc))
        plans[plan.id] = plan
        while len(plans) > max_tracked_plans:
            plans.popitem(last=False)
        return plan.model_dump(mode="json")

    @app.get("/plans/{plan_id}")
    def get_plan(plan_id: str):
        plan = plans.get(plan_id)
        if plan is None:
            raise HTTPException(404, "Plan not found")
        return plan.model_dump(mode="json")

    @app.post("/plans/{plan_id}/outcome")
    def report_outcome(plan_id: str, req: OutcomeRequest):
        """Report how a plan's execution went."""
        plan = plans.get(plan_id)
        if plan is None:
            raise HTTPException(404, "Plan not found")
        outcome = ExecutionOutcome(
            plan_id=plan_id,
            success=req.success,
            actual_cost=req.actual_cost,
            estimated_cost=(
                req.estimated_cost if req.estimated_cost is not None else plan.total_cost
            ),
            achieved_goal=req.achieved_goal,
            execution_duration=req.execution_duration,
            errors=req.errors,
            lessons_learned=req.lessons_learned,
        )
        result = planner.track_execution(plan, outcome)
        return result.model_dump(mode="json")

    @app.get("/stats")
    def get_planning_stats():
        """Planning statistics."""
        return planner.get_stats().model_dump(mode="json")

    # === PATTERNS ===

    @app.get("/patterns")
    def list_patterns(limit: int = 50):
        """Patterns by confidence."""
        return [p.model_dump(mode="json") for p in ps.list_patterns(limit=limit)]

    @app.get("/patterns/stats")
    def get_pattern_stats():
        """Pattern library statistics."""
        return ps.get_stats().model_dump(mode="json")

    @app.get("/patterns/{pattern_id}")
    def get_pattern(pattern_id: str):
        pattern = ps.get(pattern_id)
        if pattern is None:
            raise HTTPException(404, "Pattern not found")
        return pattern.model_dump(mode="json")

    @app.get("/patterns/{pattern_id}/outcomes")
    def get_pattern_outcomes(pattern_id: str, limit: int = 50):
        """Execution history of a pattern."""
        if ps.get(pattern_id) is None:
            raise HTTPException(404, "Pattern not found")
        return [
            o.model_dump(mode="json")
            for o in ps.get_outcomes(pattern_id=pattern_id, limit=limit)
        ]

    # === MAINTENANCE ===

    @app.post("/maintenance/consolidate")
    def trigger_consolidation():
        """Force a consolidation pass."""
        return worker.run_once().model_dump(mode="json")

    @app.get("/maintenance/status")
    def consolidation_status():
        last = worker.last_report
        return {
            "status": worker.status,
            "schedule": worker.config.schedule,
            "last_report": last.model_dump(mode="json") if last else None,
        }

    # === CONFIGURATION ===

    @app.get("/config")
    def get_config():
        """Current planner configuration."""
        return planner.config.model_dump()

    @app.put("/config")
    def update_config(new_config: PlannerConfig):
        """Replace the planner configuration."""
        planner.configure(new_config)
        return new_config.model_dump()

    return app


# Default application instance
app = create_app()
