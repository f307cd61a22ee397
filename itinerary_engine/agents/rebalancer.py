"""Re-run scheduling over a trip's current activity set, keeping locked slots."""
from __future__ import annotations

from typing import List, Tuple

from itinerary_engine.agents.scheduler import schedule
from itinerary_engine.config import SchedulerConfig
from itinerary_engine.schemas import (
    CandidateActivity,
    PreferenceProfile,
    ScheduledActivity,
    ScheduleResult,
    ScoringWeights,
    Trip,
    UnscheduledActivity,
)


def split_activities(trip: Trip) -> Tuple[List[ScheduledActivity], List[CandidateActivity], List[UnscheduledActivity]]:
    """Return ``(locked, movable candidates, carried-over entries)``.

    Movable candidates are the unlocked placements plus every previously
    unscheduled entry that still has a candidate. Entries without one (failed
    shape validation) cannot be placed and are carried over unchanged.
    """
    locked = [item for item in trip.scheduled if item.locked]
    movable = [item.activity for item in trip.scheduled if not item.locked]
    movable.extend(item.activity for item in trip.unscheduled if item.activity is not None)
    carried = [item for item in trip.unscheduled if item.activity is None]
    return locked, movable, carried


def plan_rebalance(
    trip: Trip,
    config: SchedulerConfig | None = None,
    weights: ScoringWeights | None = None,
) -> ScheduleResult:
    locked, movable, carried = split_activities(trip)
    profile = trip.preferences or PreferenceProfile()
    result = schedule(trip.date_range, movable, locked, profile, config=config, weights=weights)
    return ScheduleResult(scheduled=result.scheduled, unscheduled=result.unscheduled + carried)
