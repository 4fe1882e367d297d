"""
A* search over the state graph induced by a set of actions.

Nodes are world states, edges are actions whose preconditions hold, and the
edge weight is the action's total cost. Each state keeps every route that
is not beaten on both cost and depth, so a shallow costly route survives
next to a cheap deep one and the depth limit never hides a feasible plan.
States reached again more cheaply are reopened, so the returned path is
optimal for any admissible heuristic (consistency is not required).

The loop checks cancellation and the deadline on every expansion.
"""

import heapq
import itertools
import logging
import math
import threading
import time
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from goap_kernel.errors import Cancelled, NoPlanFound, PlanningTimeout
from goap_kernel.models.action import Action
from goap_kernel.models.state import StateValue, WorldState
from goap_kernel.world_model.state import apply_effects, can_apply, satisfies, state_key

logger = logging.getLogger(__name__)

HeuristicFn = Callable[[Mapping[str, StateValue]], Tuple[float, bool]]


def _zero_heuristic(state: Mapping[str, StateValue]) -> Tuple[float, bool]:
    return 0.0, False


def _dominated(g_cost: float, depth: int, labels) -> bool:
    """A route no cheaper and no shallower than one already seen."""
    return any(g <= g_cost and d <= depth for g, d in labels)


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a search."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class SearchNode:
    """A state on the frontier, linked back to its parent."""

    __slots__ = ("state", "key", "action", "parent", "g_cost", "h_cost", "depth", "pattern_guided")

    def __init__(
        self,
        state: WorldState,
        key: str,
        g_cost: float,
        h_cost: float,
        depth: int,
        action: Optional[Action] = None,
        parent: Optional["SearchNode"] = None,
        pattern_guided: bool = False,
    ):
        self.state = state
        self.key = key
        self.g_cost = g_cost
        self.h_cost = h_cost
        self.depth = depth
        self.action = action
        self.parent = parent
        self.pattern_guided = pattern_guided

    @property
    def f_cost(self) -> float:
        return self.g_cost + self.h_cost

    def path(self) -> List[Action]:
        actions = []
        node: Optional[SearchNode] = self
        while node is not None and node.action is not None:
            actions.append(node.action)
            node = node.parent
        actions.reverse()
        return actions


class SearchResult:
    """Outcome of a successful search."""

    def __init__(
        self,
        actions: List[Action],
        total_cost: float,
        final_state: WorldState,
        expansions: int,
    ):
        self.actions = actions
        self.total_cost = total_cost
        self.final_state = final_state
        self.expansions = expansions


class AStarSearch:
    """Best-first search bounded by depth, expansions and a deadline."""

    def __init__(
        self,
        risk_factors: Optional[Dict[str, float]] = None,
        max_depth: int = 50,
        max_expansions: int = 20000,
    ):
        self.risk_factors = risk_factors
        self.max_depth = max_depth
        self.max_expansions = max_expansions

    def edge_cost(self, action: Action) -> float:
        return action.cost.total(self.risk_factors)

    def search(
        self,
        start: Mapping[str, StateValue],
        goal: Mapping[str, StateValue],
        actions: Sequence[Action],
        heuristic: Optional[HeuristicFn] = None,
        deadline: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SearchResult:
        """
        Find the cheapest action sequence from start to a state satisfying goal.

        Raises NoPlanFound when the reachable graph is exhausted,
        PlanningTimeout when the depth, expansion or time budget runs out,
        and Cancelled when the token is cancelled.
        """
        heuristic = heuristic or _zero_heuristic
        start_state = dict(start)
        h0, guided0 = heuristic(start_state)
        if math.isinf(h0):
            raise NoPlanFound("Goal is unreachable: no action sets an unmet goal property")

        root = SearchNode(start_state, state_key(start_state), 0.0, h0, 0, pattern_guided=guided0)
        counter = itertools.count()
        frontier: list = [(root.f_cost, 0, 0 if guided0 else 1, next(counter), root)]
        labels: Dict[str, List[Tuple[float, int]]] = {root.key: [(0.0, 0)]}
        depth_limited = False
        expansions = 0

        while frontier:
            if cancel_token is not None and cancel_token.cancelled:
                raise Cancelled("Planning request was cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                raise PlanningTimeout(f"Search timed out after {expansions} expansions")

            _, _, _, _, node = heapq.heappop(frontier)
            if (node.g_cost, node.depth) not in labels.get(node.key, ()):
                continue  # Stale entry, dominated by a route found later

            if satisfies(node.state, goal):
                logger.debug("A* reached goal after %d expansions", expansions)
                return SearchResult(node.path(), node.g_cost, node.state, expansions)

            if node.depth >= self.max_depth:
                depth_limited = True
                continue

            expansions += 1
            if expansions > self.max_expansions:
                raise PlanningTimeout(
                    f"Search exceeded {self.max_expansions} node expansions"
                )

            for action in actions:
                if not can_apply(action, node.state):
                    continue
                next_state = apply_effects(node.state, action.effects)
                next_key = state_key(next_state)
                if next_key == node.key:
                    continue
                g_cost = node.g_cost + self.edge_cost(action)
                depth = node.depth + 1
                if _dominated(g_cost, depth, labels.get(next_key, ())):
                    continue
                h_cost, guided = heuristic(next_state)
                if math.isinf(h_cost):
                    continue
                labels[next_key] = [
                    (g, d) for g, d in labels.get(next_key, ())
                    if not (g_cost <= g and depth <= d)
                ] + [(g_cost, depth)]
                child = SearchNode(
                    next_state, next_key, g_cost, h_cost, depth,
                    action=action, parent=node, pattern_guided=guided,
                )
                heapq.heappush(
                    frontier,
                    (child.f_cost, depth, 0 if guided else 1, next(counter), child),
                )

        if depth_limited:
            raise PlanningTimeout(
                f"No plan within max_search_depth={self.max_depth}"
            )
        raise NoPlanFound(f"State space exhausted after {expansions} expansions")
