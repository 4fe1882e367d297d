"""
Planner error taxonomy.

Surfaced to callers: NoPlanFound, PlanningTimeout, Cancelled.
Absorbed internally: PatternAdaptationFailure (fall through to search),
StoreUnavailable (degrade to pure search), ConfidenceUpdateConflict
(retried, then applied under a short critical section).
"""


class PlannerError(Exception):
    """Base class for all planner errors."""
    pass


class NoPlanFound(PlannerError):
    """The goal is unreachable with the supplied actions."""
    pass


class PlanningTimeout(PlannerError):
    """Search exceeded its time, depth or expansion budget."""
    pass


class Cancelled(PlannerError):
    """The caller cancelled an in-flight planning request."""
    pass


class PatternAdaptationFailure(PlannerError):
    """A candidate pattern does not validate against the current state."""
    pass


class StoreUnavailable(PlannerError):
    """The pattern store backend cannot be reached."""
    pass


class ConfidenceUpdateConflict(PlannerError):
    """A concurrent write won the race for the same pattern."""

    def __init__(self, pattern_id: str, attempts: int):
        super().__init__(
            f"Pattern {pattern_id} changed concurrently; "
            f"gave up after {attempts} attempts"
        )
        self.pattern_id = pattern_id
        self.attempts = attempts
