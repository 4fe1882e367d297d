"""
GOAP Planner — pattern reuse first, A* search as the fallback.

Per-request state machine:
  START → PATTERN_LOOKUP → PATTERN_ADAPT_OK → DONE
                         → PATTERN_ADAPT_FAIL | NO_CANDIDATE → SEARCH
  SEARCH → FOUND → DONE
         → TIMEOUT | EXHAUSTED | CANCELLED → FAILED

The store is the only shared resource. Each request owns its search state,
so plan() may be called from many threads at once.

track_execution() closes the learning loop: outcomes of reused patterns
revise their confidence, successful search plans become new patterns.
"""

import asyncio
import logging
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

from goap_kernel.errors import (
    Cancelled,
    NoPlanFound,
    PatternAdaptationFailure,
    PlanningTimeout,
    StoreUnavailable,
)
from goap_kernel.learning.confidence import ConfidenceUpdater
from goap_kernel.models.action import Action
from goap_kernel.models.config import PlannerConfig
from goap_kernel.models.pattern import ActionSequence, Pattern, PatternMatch
from goap_kernel.models.plan import ExecutionOutcome, Plan, TrackingResult
from goap_kernel.models.state import PlanContext, StateValue
from goap_kernel.models.stats import PlanningStats
from goap_kernel.patterns.similarity import build_signature
from goap_kernel.patterns.store import PatternStore, new_pattern_id
from goap_kernel.planner.heuristics import BaseHeuristic, CombinedHeuristic, PatternHeuristic
from goap_kernel.planner.search import AStarSearch, CancellationToken
from goap_kernel.world_model.state import satisfies, simulate

logger = logging.getLogger(__name__)

_EMA_ALPHA = 0.1


class PlanningPhase(str, Enum):
    START = "start"
    PATTERN_LOOKUP = "pattern_lookup"
    PATTERN_ADAPT_OK = "pattern_adapt_ok"
    PATTERN_ADAPT_FAIL = "pattern_adapt_fail"
    NO_CANDIDATE = "no_candidate"
    SEARCH = "search"
    FOUND = "found"
    TIMEOUT = "timeout"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    DONE = "done"
    FAILED = "failed"


class PlanningResult:
    """Result of one pass through the planning state machine."""

    def __init__(
        self,
        plan: Optional[Plan],
        phases: List[PlanningPhase],
        candidates_considered: int,
        expansions: int,
        planning_time_ms: float,
        error: Optional[Exception] = None,
    ):
        self.plan = plan
        self.phases = phases
        self.candidates_considered = candidates_considered
        self.expansions = expansions
        self.planning_time_ms = planning_time_ms
        self.error = error

    @property
    def succeeded(self) -> bool:
        return self.plan is not None

    @property
    def final_phase(self) -> PlanningPhase:
        return self.phases[-1]


class GOAPPlanner:
    """
    Plans action sequences for a goal, reusing learned patterns where they
    still apply and searching otherwise.
    """

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        config: Optional[PlannerConfig] = None,
        updater: Optional[ConfidenceUpdater] = None,
    ):
        self.config = config or (store.config if store is not None else PlannerConfig())
        self.store = store if store is not None else PatternStore(config=self.config)
        self.updater = updater or ConfidenceUpdater(self.config)
        self._stats = PlanningStats()
        self._stats_lock = threading.Lock()

    def configure(self, config: PlannerConfig) -> None:
        """Replace the configuration used by the planner, updater and store."""
        self.config = config
        self.updater.config = config
        self.store.config = config
        self.store.updater.config = config

    # --- Planning ---

    def plan(
        self,
        current_state: Mapping[str, StateValue],
        goal_state: Mapping[str, StateValue],
        actions: Sequence[Action],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Plan:
        """
        Return a minimum-cost plan, or raise NoPlanFound, PlanningTimeout
        or Cancelled. Never returns a partial plan.
        """
        result = self.plan_detailed(current_state, goal_state, actions, cancel_token)
        if result.error is not None:
            raise result.error
        return result.plan

    def plan_detailed(
        self,
        current_state: Mapping[str, StateValue],
        goal_state: Mapping[str, StateValue],
        actions: Sequence[Action],
        cancel_token: Optional[CancellationToken] = None,
    ) -> PlanningResult:
        """Run the state machine and report every phase it went through."""
        started = time.monotonic()
        deadline = (
            started + self.config.timeout_ms / 1000.0
            if self.config.timeout_ms > 0 else None
        )
        current = dict(current_state)
        goal = dict(goal_state)
        catalog = {a.id: a for a in actions}
        phases = [PlanningPhase.START]
        considered = 0
        expansions = 0

        def finish(plan: Optional[Plan], error: Optional[Exception] = None) -> PlanningResult:
            phases.append(PlanningPhase.DONE if plan is not None else PlanningPhase.FAILED)
            elapsed = (time.monotonic() - started) * 1000
            self._record_planning(plan, elapsed)
            logger.debug("Planning phases: %s", " → ".join(p.value for p in phases))
            return PlanningResult(plan, phases, considered, expansions, elapsed, error)

        if cancel_token is not None and cancel_token.cancelled:
            phases.append(PlanningPhase.CANCELLED)
            return finish(None, Cancelled("Planning request was cancelled"))

        if satisfies(current, goal):
            phases.append(PlanningPhase.FOUND)
            return finish(self._build_plan([], current, goal))

        # Pattern lookup
        patterns_available = True
        if self.config.enable_pattern_learning:
            phases.append(PlanningPhase.PATTERN_LOOKUP)
            try:
                candidates = self.store.find_candidates(goal, current)
            except StoreUnavailable as exc:
                self._store_unavailable(exc)
                candidates = []
                patterns_available = False

            if not candidates:
                phases.append(PlanningPhase.NO_CANDIDATE)
            for match in candidates:
                considered += 1
                try:
                    plan = self._adapt(match, current, goal, catalog, deadline, cancel_token)
                except PatternAdaptationFailure as exc:
                    logger.debug("Pattern %s not applicable: %s", match.pattern.id, exc)
                    continue
                except Cancelled as exc:
                    phases.append(PlanningPhase.CANCELLED)
                    return finish(None, exc)
                phases.append(PlanningPhase.PATTERN_ADAPT_OK)
                return finish(plan)
            if candidates:
                phases.append(PlanningPhase.PATTERN_ADAPT_FAIL)

        # Fallback search
        phases.append(PlanningPhase.SEARCH)
        heuristic = self._build_heuristic(current, goal, actions, patterns_available)
        search = AStarSearch(
            risk_factors=self.config.risk_factors,
            max_depth=self.config.max_search_depth,
            max_expansions=self.config.max_expansions,
        )
        try:
            found = search.search(current, goal, actions, heuristic, deadline, cancel_token)
        except PlanningTimeout as exc:
            phases.append(PlanningPhase.TIMEOUT)
            return finish(None, exc)
        except NoPlanFound as exc:
            phases.append(PlanningPhase.EXHAUSTED)
            return finish(None, exc)
        except Cancelled as exc:
            phases.append(PlanningPhase.CANCELLED)
            return finish(None, exc)

        expansions = found.expansions
        phases.append(PlanningPhase.FOUND)
        return finish(self._build_plan(found.actions, current, goal))

    async def plan_async(
        self,
        current_state: Mapping[str, StateValue],
        goal_state: Mapping[str, StateValue],
        actions: Sequence[Action],
        cancel_token: Optional[CancellationToken] = None,
    ) -> Plan:
        """Plan in a worker thread. Cancelling the awaiting task cancels the search."""
        token = cancel_token or CancellationToken()
        try:
            return await asyncio.to_thread(
                self.plan, current_state, goal_state, actions, token
            )
        except asyncio.CancelledError:
            token.cancel()
            raise

    def _adapt(
        self,
        match: PatternMatch,
        current: Dict[str, StateValue],
        goal: Dict[str, StateValue],
        catalog: Dict[str, Action],
        deadline: Optional[float],
        cancel_token: Optional[CancellationToken],
    ) -> Plan:
        """Validate a candidate against the current state and catalog."""
        pattern = match.pattern
        if match.ranking_confidence < self.config.pattern_match_threshold:
            raise PatternAdaptationFailure(
                f"confidence {match.ranking_confidence:.2f} below threshold"
            )

        missing = [a for a in pattern.action_sequence.actions if a not in catalog]
        if missing:
            raise PatternAdaptationFailure(f"unknown actions {missing}")
        sequence = [catalog[a] for a in pattern.action_sequence.actions]

        bridge: List[Action] = []
        if not satisfies(current, sequence[0].preconditions):
            bridge = self._bridge(current, sequence[0], list(catalog.values()), deadline, cancel_token)

        final_state = simulate(bridge + sequence, current)
        if final_state is None:
            raise PatternAdaptationFailure("action preconditions do not chain")
        if not satisfies(final_state, goal):
            raise PatternAdaptationFailure("sequence does not reach the goal")

        return self._build_plan(
            bridge + sequence, current, goal,
            source_pattern_id=pattern.id,
            confidence=match.ranking_confidence,
        )

    def _bridge(
        self,
        current: Dict[str, StateValue],
        first: Action,
        actions: List[Action],
        deadline: Optional[float],
        cancel_token: Optional[CancellationToken],
    ) -> List[Action]:
        """Shortest cheap prefix that makes the first pattern action applicable."""
        if self.config.bridging_max_actions == 0:
            raise PatternAdaptationFailure("preconditions of the first action do not hold")
        search = AStarSearch(
            risk_factors=self.config.risk_factors,
            max_depth=self.config.bridging_max_actions,
            max_expansions=self.config.max_expansions,
        )
        try:
            return search.search(
                current, first.preconditions, actions,
                deadline=deadline, cancel_token=cancel_token,
            ).actions
        except (NoPlanFound, PlanningTimeout) as exc:
            raise PatternAdaptationFailure(f"no bridge to {first.id}: {exc}") from exc

    def _build_heuristic(
        self,
        current: Dict[str, StateValue],
        goal: Dict[str, StateValue],
        actions: Sequence[Action],
        patterns_available: bool,
    ) -> CombinedHeuristic:
        base = BaseHeuristic(goal, actions, self.config.risk_factors)
        if not (self.config.enable_pattern_learning and patterns_available):
            return CombinedHeuristic(base)
        try:
            patterns = self.store.list_patterns(limit=self.config.heuristic_pattern_limit)
        except StoreUnavailable as exc:
            self._store_unavailable(exc)
            return CombinedHeuristic(base)
        learned = PatternHeuristic(
            goal,
            patterns,
            similarity=self.store.similarity,
            match_threshold=self.config.pattern_match_threshold,
            ignore_keys=self.config.context_ignore_keys,
        )
        return CombinedHeuristic(base, learned)

    def _build_plan(
        self,
        actions: List[Action],
        current: Dict[str, StateValue],
        goal: Dict[str, StateValue],
        source_pattern_id: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> Plan:
        return Plan(
            id=f"plan_{uuid4().hex[:12]}",
            actions=[a.id for a in actions],
            total_cost=sum(a.cost.total(self.config.risk_factors) for a in actions),
            estimated_duration=sum(
                a.duration if a.duration is not None else self.config.default_action_duration
                for a in actions
            ),
            created_at=datetime.utcnow(),
            source_pattern_id=source_pattern_id,
            confidence=confidence,
            context=PlanContext(current_state=current, goal_state=goal),
        )

    # --- Learning ---

    def track_execution(self, plan: Plan, outcome: ExecutionOutcome) -> TrackingResult:
        """Feed an execution outcome back into the pattern library."""
        replan = self._should_replan(outcome)
        result = TrackingResult(
            plan_id=plan.id,
            pattern_id=plan.source_pattern_id,
            action="ignored",
            replan_recommended=replan,
        )
        try:
            try:
                self.store.record_outcome(outcome, pattern_id=plan.source_pattern_id)
            except StoreUnavailable as exc:
                logger.warning("Outcome for %s not recorded: %s", plan.id, exc)

            if self.config.enable_pattern_learning:
                if plan.from_pattern:
                    result = self._update_pattern(plan, outcome, result)
                elif outcome.success and outcome.achieved_goal and plan.actions:
                    result = self._learn_pattern(plan, outcome, result)
        except StoreUnavailable as exc:
            self._store_unavailable(exc)
            result = result.model_copy(update={"store_available": False})

        if replan:
            with self._stats_lock:
                self._stats.replanning_recommendations += 1
        return result

    def _update_pattern(
        self, plan: Plan, outcome: ExecutionOutcome, result: TrackingResult
    ) -> TrackingResult:
        before: Dict[str, float] = {}

        def mutate(pattern: Pattern) -> Pattern:
            before["confidence"] = pattern.confidence
            return self.updater.apply_outcome(pattern, outcome)[0]

        updated = self.store.update(plan.source_pattern_id, mutate)
        if updated is None:
            logger.info("Pattern %s no longer exists; outcome ignored", plan.source_pattern_id)
            return result
        return result.model_copy(update={
            "action": "confidence_updated",
            "old_confidence": before["confidence"],
            "new_confidence": updated.confidence,
        })

    def _learn_pattern(
        self, plan: Plan, outcome: ExecutionOutcome, result: TrackingResult
    ) -> TrackingResult:
        now = datetime.utcnow()
        confidence = self.updater.initial_confidence(outcome)
        pattern = Pattern(
            id=new_pattern_id(),
            context=build_signature(
                plan.context.goal_state,
                plan.context.current_state,
                self.config.context_ignore_keys,
            ),
            action_sequence=ActionSequence(
                actions=list(plan.actions), total_cost=plan.total_cost
            ),
            confidence=confidence,
            usage_count=1,
            success_count=1,
            average_cost=plan.total_cost,
            created_at=now,
            last_used=now,
        )
        stored_id = self.store.store(pattern)
        return result.model_copy(update={
            "pattern_id": stored_id,
            "action": "pattern_learned",
            "new_confidence": confidence,
        })

    def _should_replan(self, outcome: ExecutionOutcome) -> bool:
        if not self.config.enable_replanning:
            return False
        return (
            not outcome.achieved_goal
            or abs(outcome.cost_variance) > self.config.replan_threshold
        )

    # --- Statistics ---

    def _store_unavailable(self, exc: StoreUnavailable) -> None:
        logger.warning("Pattern store unavailable, continuing without it: %s", exc)
        with self._stats_lock:
            self._stats.store_unavailable_events += 1

    def _record_planning(self, plan: Optional[Plan], elapsed_ms: float) -> None:
        with self._stats_lock:
            stats = self._stats
            if plan is None:
                stats.failed_plans += 1
                return
            stats.total_plans_generated += 1
            if plan.from_pattern:
                stats.pattern_based_plans += 1
            else:
                stats.search_plans += 1
            if stats.total_plans_generated == 1:
                stats.average_planning_time_ms = elapsed_ms
            else:
                stats.average_planning_time_ms = (
                    _EMA_ALPHA * elapsed_ms
                    + (1 - _EMA_ALPHA) * stats.average_planning_time_ms
                )
            stats.pattern_reuse_rate = stats.pattern_based_plans / stats.total_plans_generated

    def get_stats(self) -> PlanningStats:
        with self._stats_lock:
            return self._stats.model_copy()
