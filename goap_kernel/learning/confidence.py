"""
Confidence Updater — Bayesian online learning for pattern reliability.

Every revision is a pure function of the prior confidence, the pattern's
recorded evidence and the new outcome: no hidden global state, so updates
can be replayed and tested in isolation.

  evidence   = success ? (1.0 if goal achieved else 0.5) : 0.0
  likelihood = success ? s/u : 1 - s/u          (Laplace (s+1)/(u+2) when u = 0)
  posterior  = L*p / (L*p + (1-p)*(1-L))
  new        = p + learning_rate * (posterior - p), delta clamped to +/-0.10

Decay is applied lazily on read:
  effective = confidence * decay_factor ** floor(days_since_last_use / period)

Rollback: when the rolling success rate of recent applications falls more
than the drop threshold below the lifetime success rate, the pattern is
marked degraded and ranks at confidence * 0.5 until it recovers.
"""

import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple

from goap_kernel.models.config import PlannerConfig
from goap_kernel.models.pattern import ConfidenceUpdate, Pattern
from goap_kernel.models.plan import ExecutionOutcome

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class ConfidenceUpdater:
    """Revises pattern confidence and statistics from execution outcomes."""

    def __init__(self, config: Optional[PlannerConfig] = None):
        self.config = config or PlannerConfig()

    # --- Bayesian revision (pure) ---

    @staticmethod
    def evidence_score(outcome: ExecutionOutcome) -> float:
        if not outcome.success:
            return 0.0
        return 1.0 if outcome.achieved_goal else 0.5

    @staticmethod
    def likelihood(success_count: int, usage_count: int, success: bool) -> float:
        """Likelihood of the observed outcome given the pattern's history."""
        if usage_count == 0:
            rate = (success_count + 1) / (usage_count + 2)
        else:
            rate = success_count / usage_count
        return rate if success else 1.0 - rate

    @staticmethod
    def bayesian_update(prior: float, likelihood: float) -> float:
        numerator = likelihood * prior
        denominator = numerator + (1.0 - prior) * (1.0 - likelihood)
        if denominator == 0:
            return prior
        return numerator / denominator

    def compute(self, pattern: Pattern, outcome: ExecutionOutcome) -> ConfidenceUpdate:
        """Compute the revised confidence for one outcome without mutating anything."""
        prior = pattern.confidence
        evidence = self.evidence_score(outcome)
        likelihood = self.likelihood(
            pattern.success_count, pattern.usage_count, outcome.success
        )
        posterior = self.bayesian_update(prior, likelihood)

        proposed = prior + self.config.learning_rate * (posterior - prior)
        delta = _clamp(
            proposed - prior,
            -self.config.max_confidence_delta,
            self.config.max_confidence_delta,
        )
        new_confidence = _clamp(prior + delta, 0.0, 1.0)

        return ConfidenceUpdate(
            pattern_id=pattern.id,
            old_confidence=prior,
            new_confidence=new_confidence,
            evidence_score=evidence,
            likelihood=likelihood,
            posterior=posterior,
            reason=(
                f"Bayesian update based on "
                f"{'success' if outcome.success else 'failure'} "
                f"(evidence={evidence:.2f})"
            ),
        )

    # --- Full outcome application ---

    def apply_outcome(
        self,
        pattern: Pattern,
        outcome: ExecutionOutcome,
        now: Optional[datetime] = None,
    ) -> Tuple[Pattern, ConfidenceUpdate]:
        """
        Return a copy of the pattern with the outcome folded in: confidence,
        counters, cost statistics, rolling window and degraded flag.
        """
        now = now or datetime.utcnow()
        update = self.compute(pattern, outcome)

        usage = pattern.usage_count + 1
        successes = pattern.success_count + (1 if outcome.success else 0)

        # Incremental mean / variance of the observed cost
        alpha = 1.0 / usage
        average_cost = alpha * outcome.actual_cost + (1 - alpha) * pattern.average_cost
        diff = outcome.actual_cost - average_cost
        cost_variance = alpha * diff * diff + (1 - alpha) * pattern.cost_variance

        window = (list(pattern.recent_outcomes) + [outcome.success])[
            -self.config.degradation_window:
        ]
        degraded = self.is_degraded(window, usage, successes)
        if degraded and not pattern.degraded:
            logger.warning(
                "Pattern %s degraded: recent success %.2f vs lifetime %.2f",
                pattern.id,
                sum(window) / len(window),
                successes / usage,
            )
        elif pattern.degraded and not degraded:
            logger.info("Pattern %s recovered from degraded state", pattern.id)

        changes = {
            "confidence": update.new_confidence,
            "usage_count": usage,
            "success_count": successes,
            "average_cost": max(0.0, average_cost),
            "cost_variance": max(0.0, cost_variance),
            "last_used": now,
            "recent_outcomes": window,
            "degraded": degraded,
        }
        if outcome.success:
            changes["action_sequence"] = pattern.action_sequence.model_copy(
                update={"total_cost": outcome.actual_cost}
            )
        return pattern.model_copy(update=changes), update

    def is_degraded(self, window: List[bool], usage_count: int, success_count: int) -> bool:
        """Rolling success rate dropped too far below the lifetime average."""
        if len(window) < self.config.degradation_min_samples or usage_count == 0:
            return False
        rolling = sum(1 for ok in window if ok) / len(window)
        lifetime = success_count / usage_count
        return round(lifetime - rolling, 9) > self.config.degradation_drop_threshold

    # --- Read-side views ---

    def effective_confidence(self, pattern: Pattern, now: Optional[datetime] = None) -> float:
        """Confidence after lazy time decay."""
        now = now or datetime.utcnow()
        reference = pattern.last_used or pattern.created_at
        days = max(0.0, (now - reference).total_seconds() / 86400.0)
        periods = math.floor(days / self.config.decay_period_days)
        return pattern.confidence * (self.config.decay_factor ** periods)

    def ranking_confidence(self, pattern: Pattern, now: Optional[datetime] = None) -> float:
        """Confidence used for ranking and the reuse threshold."""
        confidence = self.effective_confidence(pattern, now)
        if pattern.degraded:
            confidence *= self.config.degraded_confidence_factor
        return confidence

    def initial_confidence(self, outcome: ExecutionOutcome) -> float:
        """Starting confidence for a pattern learned from a successful search plan."""
        baseline = self.config.initial_confidence_baseline
        if outcome.estimated_cost <= 0:
            return baseline
        ratio = outcome.actual_cost / outcome.estimated_cost
        closeness = max(0.0, 1.0 - abs(ratio - 1.0))
        return _clamp(baseline + self.config.initial_confidence_bonus * closeness, 0.0, 1.0)
