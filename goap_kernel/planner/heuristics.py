"""
Search heuristics.

h(state) = min(h_base(state), h_pattern(state))

h_base is admissible on its own: for every unmet goal property it takes the
cheapest action that sets it, and returns the largest of those costs (one
action may satisfy several properties, so summing would overestimate).
Properties no action can set make the state a dead end (infinite cost).

h_pattern is the learned estimate: the smallest average cost among stored
patterns whose context goal equals the state's residual goal gap and whose
context matches the state. Taking the min keeps the combined heuristic
admissible whatever the learned estimate says.
"""

import math
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from goap_kernel.models.action import Action
from goap_kernel.models.pattern import Pattern
from goap_kernel.models.state import StateValue
from goap_kernel.patterns.similarity import ContextSimilarity, build_signature, default_similarity
from goap_kernel.world_model.state import state_key, unmet_conditions, values_equal


class BaseHeuristic:
    """Max over unmet goal properties of the cheapest action that sets each one."""

    def __init__(
        self,
        goal: Mapping[str, StateValue],
        actions: Sequence[Action],
        risk_factors: Optional[Dict[str, float]] = None,
    ):
        self.goal = dict(goal)
        self._cheapest: Dict[str, float] = {}
        for action in actions:
            cost = action.cost.total(risk_factors)
            for key, value in action.effects.items():
                if key in self.goal and values_equal(self.goal[key], value):
                    if cost < self._cheapest.get(key, math.inf):
                        self._cheapest[key] = cost

    def __call__(self, state: Mapping[str, StateValue]) -> float:
        unmet = unmet_conditions(state, self.goal)
        if not unmet:
            return 0.0
        return max(self._cheapest.get(key, math.inf) for key in unmet)


class PatternHeuristic:
    """Cost-to-go estimate learned from stored patterns."""

    def __init__(
        self,
        goal: Mapping[str, StateValue],
        patterns: Iterable[Pattern],
        similarity: Optional[ContextSimilarity] = None,
        match_threshold: float = 0.7,
        ignore_keys: Iterable[str] = (),
    ):
        self.goal = dict(goal)
        self.similarity = similarity or default_similarity
        self.match_threshold = match_threshold
        self.ignore_keys = list(ignore_keys)
        self._by_goal: Dict[str, List[Pattern]] = {}
        for pattern in patterns:
            self._by_goal.setdefault(state_key(pattern.context.goal), []).append(pattern)

    def __call__(self, state: Mapping[str, StateValue]) -> Optional[float]:
        residual = unmet_conditions(state, self.goal)
        if not residual:
            return 0.0
        candidates = self._by_goal.get(state_key(residual))
        if not candidates:
            return None
        query = build_signature(residual, state, self.ignore_keys)
        estimates = [
            p.average_cost for p in candidates
            if self.similarity(query, p.context) >= self.match_threshold
        ]
        return min(estimates) if estimates else None


class CombinedHeuristic:
    """min(h_base, h_pattern), cached per state. Reports whether a pattern tightened it."""

    def __init__(self, base: BaseHeuristic, pattern: Optional[PatternHeuristic] = None):
        self.base = base
        self.pattern = pattern
        self._cache: Dict[str, Tuple[float, bool]] = {}

    def __call__(self, state: Mapping[str, StateValue]) -> Tuple[float, bool]:
        key = state_key(state)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        h = self.base(state)
        guided = False
        if self.pattern is not None and not math.isinf(h):
            learned = self.pattern(state)
            if learned is not None and learned <= h:
                h = learned
                guided = True

        self._cache[key] = (h, guided)
        return h, guided
