"""Tests for world state operations."""

from goap_kernel.models.action import Action
from goap_kernel.world_model.state import (
    apply_effects,
    can_apply,
    relevant_state,
    satisfies,
    simulate,
    state_key,
    unmet_conditions,
    values_equal,
)


class TestStateOperations:
    def test_satisfies_subset(self):
        state = {"built": True, "env": "prod", "replicas": 3}
        assert satisfies(state, {"built": True})
        assert satisfies(state, {})
        assert not satisfies(state, {"built": False})
        assert not satisfies(state, {"tested": True})

    def test_bool_and_int_are_distinct(self):
        assert not values_equal(True, 1)
        assert not values_equal(0, False)
        assert values_equal(1, 1.0)
        assert not satisfies({"flag": 1}, {"flag": True})

    def test_unmet_conditions(self):
        state = {"built": True, "deployed": False}
        assert unmet_conditions(state, {"built": True, "deployed": True}) == {"deployed": True}

    def test_apply_effects_does_not_mutate(self):
        state = {"built": False}
        updated = apply_effects(state, {"built": True, "tested": True})
        assert state == {"built": False}
        assert updated == {"built": True, "tested": True}

    def test_simulate_chain(self):
        build = Action(id="build", effects={"built": True})
        deploy = Action(id="deploy", preconditions={"built": True}, effects={"deployed": True})
        assert can_apply(build, {})
        assert not can_apply(deploy, {})
        assert simulate([build, deploy], {}) == {"built": True, "deployed": True}
        assert simulate([deploy, build], {}) is None

    def test_state_key_is_order_independent(self):
        assert state_key({"a": 1, "b": True}) == state_key({"b": True, "a": 1})
        assert state_key({"a": 1}) != state_key({"a": True})

    def test_relevant_state_drops_ignored_keys(self):
        state = {"built": True, "timestamp": "2024-01-01"}
        assert relevant_state(state, ["timestamp"]) == {"built": True}
        assert relevant_state(state) == state
