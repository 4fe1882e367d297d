"""
Context signatures and the pluggable similarity capability.

A context signature summarizes (goal, relevant current state). The store
uses its digest for exact identity and a ContextSimilarity for ranking and
deduplication. Implementations may swap the default weighted key-overlap
metric for hashing or embeddings without changing the store or planner.
"""

import hashlib
import json
from typing import Iterable, Mapping, Protocol

from goap_kernel.models.pattern import ContextSignature
from goap_kernel.models.state import StateValue
from goap_kernel.world_model.state import relevant_state, values_equal


def build_signature(
    goal: Mapping[str, StateValue],
    state: Mapping[str, StateValue],
    ignore_keys: Iterable[str] = (),
) -> ContextSignature:
    """Derive the context signature for a goal/state pair."""
    relevant = relevant_state(state, ignore_keys)
    canonical = json.dumps(
        {"goal": dict(goal), "state": relevant},
        sort_keys=True,
        separators=(",", ":"),
    )
    return ContextSignature(
        goal=dict(goal),
        state=relevant,
        digest=hashlib.sha256(canonical.encode()).hexdigest(),
    )


def state_similarity(
    a: Mapping[str, StateValue], b: Mapping[str, StateValue]
) -> float:
    """Fraction of keys (over the union) holding equal values in both maps."""
    keys = set(a) | set(b)
    if not keys:
        return 1.0
    matches = sum(
        1 for k in keys
        if k in a and k in b and values_equal(a[k], b[k])
    )
    return matches / len(keys)


class ContextSimilarity(Protocol):
    """Protocol for context similarity — returns a score in [0, 1]."""

    def __call__(self, a: ContextSignature, b: ContextSignature) -> float: ...


class WeightedContextSimilarity:
    """Goal overlap dominates; current-state overlap refines."""

    def __init__(self, goal_weight: float = 0.7, state_weight: float = 0.3):
        total = goal_weight + state_weight
        if total <= 0:
            raise ValueError("Similarity weights must sum to a positive value")
        self.goal_weight = goal_weight / total
        self.state_weight = state_weight / total

    def __call__(self, a: ContextSignature, b: ContextSignature) -> float:
        if a.digest == b.digest:
            return 1.0
        score = (
            self.goal_weight * state_similarity(a.goal, b.goal)
            + self.state_weight * state_similarity(a.state, b.state)
        )
        return max(0.0, min(1.0, score))


class ExactSignatureSimilarity:
    """Hash matching: identical signatures score 1, everything else 0."""

    def __call__(self, a: ContextSignature, b: ContextSignature) -> float:
        return 1.0 if a.digest == b.digest else 0.0


default_similarity = WeightedContextSimilarity()
