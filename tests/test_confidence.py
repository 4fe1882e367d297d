"""Tests for the Bayesian Confidence Updater."""

import random
from datetime import datetime, timedelta

import pytest

from goap_kernel.learning.confidence import ConfidenceUpdater
from goap_kernel.models.config import PlannerConfig
from goap_kernel.models.pattern import ActionSequence, ContextSignature, Pattern
from goap_kernel.models.plan import ExecutionOutcome


def _make_pattern(**overrides) -> Pattern:
    fields = dict(
        id="pat_1",
        context=ContextSignature(goal={"deployed": True}, state={}, digest="d1"),
        action_sequence=ActionSequence(actions=["build", "deploy"], total_cost=4.0),
        confidence=0.8,
        usage_count=1,
        success_count=1,
        average_cost=4.0,
        created_at=datetime.utcnow(),
    )
    fields.update(overrides)
    return Pattern(**fields)


def _outcome(success: bool, actual_cost: float = 4.0, achieved_goal=None) -> ExecutionOutcome:
    return ExecutionOutcome(
        plan_id="plan_1",
        success=success,
        actual_cost=actual_cost,
        estimated_cost=4.0,
        achieved_goal=success if achieved_goal is None else achieved_goal,
    )


class TestBayesianRevision:
    def setup_method(self):
        self.updater = ConfidenceUpdater()

    def test_evidence_score(self):
        assert ConfidenceUpdater.evidence_score(_outcome(True)) == 1.0
        assert ConfidenceUpdater.evidence_score(_outcome(True, achieved_goal=False)) == 0.5
        assert ConfidenceUpdater.evidence_score(_outcome(False)) == 0.0

    def test_likelihood_uses_prior_counts(self):
        assert ConfidenceUpdater.likelihood(3, 4, True) == 0.75
        assert ConfidenceUpdater.likelihood(3, 4, False) == 0.25

    def test_likelihood_laplace_when_unused(self):
        assert ConfidenceUpdater.likelihood(0, 0, True) == 0.5
        assert ConfidenceUpdater.likelihood(0, 0, False) == 0.5

    def test_posterior_degenerate_denominator(self):
        assert ConfidenceUpdater.bayesian_update(1.0, 0.0) == 1.0
        assert ConfidenceUpdater.bayesian_update(0.0, 1.0) == 0.0

    def test_failure_lowers_confidence(self):
        update = self.updater.compute(_make_pattern(), _outcome(False))
        # likelihood 0 → posterior 0 → 0.8 - 0.1 * 0.8
        assert update.new_confidence == pytest.approx(0.72)
        assert update.old_confidence == 0.8
        assert "failure" in update.reason

    def test_success_raises_confidence(self):
        pattern = _make_pattern(confidence=0.6, usage_count=4, success_count=3)
        update = self.updater.compute(pattern, _outcome(True))
        assert update.new_confidence > 0.6

    def test_delta_is_clamped(self):
        updater = ConfidenceUpdater(PlannerConfig(learning_rate=1.0))
        update = updater.compute(_make_pattern(), _outcome(False))
        assert update.new_confidence == pytest.approx(0.7)

    def test_bounds_hold_over_random_sequences(self):
        rng = random.Random(42)
        for _ in range(50):
            pattern = _make_pattern(
                confidence=rng.random(), usage_count=0, success_count=0,
            )
            for _ in range(40):
                outcome = _outcome(rng.random() < 0.6, actual_cost=rng.uniform(0, 10))
                new_pattern, update = self.updater.apply_outcome(pattern, outcome)
                assert 0.0 <= update.new_confidence <= 1.0
                assert abs(update.new_confidence - update.old_confidence) <= 0.10 + 1e-12
                assert new_pattern.success_count <= new_pattern.usage_count
                pattern = new_pattern

    def test_compute_is_pure(self):
        pattern = _make_pattern()
        first = self.updater.compute(pattern, _outcome(False))
        second = self.updater.compute(pattern, _outcome(False))
        assert first == second
        assert pattern.confidence == 0.8


class TestApplyOutcome:
    def setup_method(self):
        self.updater = ConfidenceUpdater()

    def test_counters_and_costs(self):
        pattern = _make_pattern()
        now = datetime.utcnow()
        updated, _ = self.updater.apply_outcome(pattern, _outcome(True, actual_cost=6.0), now)
        assert updated.usage_count == 2
        assert updated.success_count == 2
        assert updated.average_cost == pytest.approx(5.0)
        assert updated.cost_variance == pytest.approx(0.5)
        assert updated.last_used == now
        assert updated.action_sequence.total_cost == 6.0
        assert updated.recent_outcomes == [True]

    def test_failure_keeps_sequence_cost(self):
        updated, _ = self.updater.apply_outcome(_make_pattern(), _outcome(False, actual_cost=9.0))
        assert updated.success_count == 1
        assert updated.action_sequence.total_cost == 4.0

    def test_window_is_bounded(self):
        updater = ConfidenceUpdater(PlannerConfig(degradation_window=3))
        pattern = _make_pattern()
        for ok in [True, True, False, True]:
            pattern, _ = updater.apply_outcome(pattern, _outcome(ok))
        assert pattern.recent_outcomes == [True, False, True]

    def test_repeated_failures_mark_degraded(self):
        pattern = _make_pattern()
        for _ in range(2):
            pattern, _ = self.updater.apply_outcome(pattern, _outcome(False))
            assert not pattern.degraded
        pattern, _ = self.updater.apply_outcome(pattern, _outcome(False))
        assert pattern.degraded

    def test_is_degraded_rule(self):
        assert not self.updater.is_degraded([False, False], 10, 9)
        assert self.updater.is_degraded([False, False, True], 10, 9)
        assert not self.updater.is_degraded([True, True, True], 10, 9)
        # Exactly 15 points below is not a drop
        assert not self.updater.is_degraded([True] * 3 + [False] * 17, 100, 30)


class TestReadSideViews:
    def setup_method(self):
        self.updater = ConfidenceUpdater()

    def test_no_decay_within_period(self):
        now = datetime.utcnow()
        pattern = _make_pattern(last_used=now - timedelta(days=29))
        assert self.updater.effective_confidence(pattern, now) == pytest.approx(0.8)

    def test_decay_per_period(self):
        now = datetime.utcnow()
        pattern = _make_pattern(last_used=now - timedelta(days=61))
        assert self.updater.effective_confidence(pattern, now) == pytest.approx(0.8 * 0.95 ** 2)

    def test_decay_from_creation_when_never_used(self):
        now = datetime.utcnow()
        pattern = _make_pattern(created_at=now - timedelta(days=30))
        assert self.updater.effective_confidence(pattern, now) == pytest.approx(0.76)

    def test_degraded_ranks_at_half(self):
        now = datetime.utcnow()
        pattern = _make_pattern(last_used=now, degraded=True)
        assert self.updater.ranking_confidence(pattern, now) == pytest.approx(0.4)

    def test_initial_confidence(self):
        exact = ExecutionOutcome(
            plan_id="p", success=True, actual_cost=4.0, estimated_cost=4.0, achieved_goal=True,
        )
        overrun = exact.model_copy(update={"actual_cost": 6.0})
        free = exact.model_copy(update={"estimated_cost": 0.0})
        assert self.updater.initial_confidence(exact) == pytest.approx(0.8)
        assert self.updater.initial_confidence(overrun) == pytest.approx(0.65)
        assert self.updater.initial_confidence(free) == 0.5
