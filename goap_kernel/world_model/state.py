"""
World State operations — pure functions over property maps.

States are treated as immutable: every operation returns a new dict and
never mutates its inputs. Value comparison is type-aware so that a boolean
property never matches a numeric one (True != 1 here, unlike plain Python).
"""

import json
from typing import Iterable, Mapping, Optional, Sequence

from goap_kernel.models.action import Action
from goap_kernel.models.state import StateValue, WorldState


def values_equal(a: Optional[StateValue], b: Optional[StateValue]) -> bool:
    """Compare two state values, keeping bools distinct from numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    return a == b


def satisfies(state: Mapping[str, StateValue], conditions: Mapping[str, StateValue]) -> bool:
    """True when every condition pair is present in the state."""
    for key, value in conditions.items():
        if key not in state or not values_equal(state[key], value):
            return False
    return True


def unmet_conditions(
    state: Mapping[str, StateValue], conditions: Mapping[str, StateValue]
) -> WorldState:
    """The subset of conditions the state does not yet satisfy."""
    return {
        key: value
        for key, value in conditions.items()
        if key not in state or not values_equal(state[key], value)
    }


def apply_effects(
    state: Mapping[str, StateValue], effects: Mapping[str, StateValue]
) -> WorldState:
    """Return a new state with the effects applied."""
    updated = dict(state)
    updated.update(effects)
    return updated


def can_apply(action: Action, state: Mapping[str, StateValue]) -> bool:
    return satisfies(state, action.preconditions)


def simulate(
    actions: Sequence[Action], state: Mapping[str, StateValue]
) -> Optional[WorldState]:
    """
    Run actions in order against a state.
    Returns the resulting state, or None if any precondition fails.
    """
    current = dict(state)
    for action in actions:
        if not can_apply(action, current):
            return None
        current = apply_effects(current, action.effects)
    return current


def state_key(state: Mapping[str, StateValue]) -> str:
    """Canonical, order-independent encoding of a state."""
    return json.dumps(dict(state), sort_keys=True, separators=(",", ":"))


def relevant_state(
    state: Mapping[str, StateValue], ignore_keys: Iterable[str] = ()
) -> WorldState:
    """The part of a state that participates in context signatures."""
    ignored = set(ignore_keys)
    return {k: v for k, v in state.items() if k not in ignored}
