"""Error taxonomy for the planning core.

Every error carries a stable ``code`` that is written onto the trip when a
background generation fails, so pollers can decide whether to offer a
"Regenerate" action (``retryable``) or not.
"""
from __future__ import annotations


class PlannerError(Exception):
    """Base class for planner failures."""

    code = "UNKNOWN_ERROR"
    retryable = True
    status_code = 500

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code


class InvalidPreferences(PlannerError):
    """Missing or malformed profile / city data. Needs a user correction."""

    code = "INVALID_PREFERENCES"
    retryable = False
    status_code = 422


class ProposerFailure(PlannerError):
    """The external itinerary proposer failed or returned garbage."""

    code = "PROPOSER_FAILURE"


class SchedulingFailure(PlannerError):
    """An internal scheduling invariant was violated."""

    code = "SCHEDULING_FAILURE"


class PersistenceFailure(PlannerError):
    """The record store is unavailable."""

    code = "PERSISTENCE_FAILURE"


class RetryBudgetExhausted(PlannerError):
    code = "RETRY_BUDGET_EXHAUSTED"
    retryable = False
    status_code = 400


class TripNotFound(PlannerError):
    code = "TRIP_NOT_FOUND"
    retryable = False
    status_code = 404


class GenerationInProgress(PlannerError):
    """A generation or rebalance is already running for the trip."""

    code = "GENERATION_IN_PROGRESS"
    status_code = 409


class InvalidStateTransition(PlannerError):
    code = "INVALID_STATE_TRANSITION"
    retryable = False
    status_code = 409


class ActivityNotFound(PlannerError):
    code = "ACTIVITY_NOT_FOUND"
    retryable = False
    status_code = 404


class ActivityConflict(PlannerError):
    """A requested edit would overlap another activity on the same day."""

    code = "ACTIVITY_CONFLICT"
    retryable = False
    status_code = 409
