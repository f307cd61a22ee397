import datetime as dt

from itinerary_engine.agents.rebalancer import plan_rebalance, split_activities
from itinerary_engine.agents.scheduler import schedule
from itinerary_engine.schemas import (
    CandidateActivity,
    City,
    PreferenceProfile,
    Trip,
    UnscheduledActivity,
    UnscheduledReason,
)

MONDAY = dt.date(2026, 6, 1)


def _candidate(candidate_id: str, **overrides) -> CandidateActivity:
    data = {"id": candidate_id, "name": candidate_id, "category": "museum", "rating": 4.0, "review_count": 100}
    data.update(overrides)
    return CandidateActivity.model_validate(data)


def _planned_trip() -> Trip:
    profile = PreferenceProfile(energy_level=1, meal_importance={"lunch": True})
    pool = [_candidate(f"sight-{index}", rating=3.0 + index / 5) for index in range(7)]
    pool.append(_candidate("noodles", category="restaurant"))
    trip = Trip(
        id="trip-1",
        city=City(id="lisbon", name="Lisbon"),
        start_date=MONDAY,
        end_date=MONDAY + dt.timedelta(days=1),
        preferences=profile,
    )
    result = schedule(trip.date_range, pool, [], profile)
    trip.scheduled = result.scheduled
    trip.unscheduled = result.unscheduled + [
        UnscheduledActivity(reason=UnscheduledReason.INVALID_CANDIDATE, detail="name: missing", raw={"type": "park"})
    ]
    return trip


def test_rebalance_twice_is_idempotent():
    trip = _planned_trip()
    first = plan_rebalance(trip)
    trip.scheduled, trip.unscheduled = first.scheduled, first.unscheduled
    second = plan_rebalance(trip)
    assert first.model_dump_json() == second.model_dump_json()


def test_rebalance_keeps_locked_activities_in_place():
    trip = _planned_trip()
    moved = trip.scheduled[-1]
    pinned = moved.model_copy(
        update={
            "start": dt.datetime.combine(moved.date, dt.time(15)),
            "end": dt.datetime.combine(moved.date, dt.time(15)) + (moved.end - moved.start),
            "locked": True,
        }
    )
    trip.scheduled = [item for item in trip.scheduled if item.id != moved.id] + [pinned]

    result = plan_rebalance(trip)

    kept = next(item for item in result.scheduled if item.id == pinned.id)
    assert kept.locked
    assert (kept.start, kept.end) == (pinned.start, pinned.end)


def test_removed_activity_frees_a_slot_for_unscheduled_candidates():
    trip = _planned_trip()
    waiting = {item.activity.id for item in trip.unscheduled if item.activity is not None}
    removed = next(item for item in trip.scheduled if not item.activity.is_meal)
    trip.scheduled = [item for item in trip.scheduled if item.id != removed.id]

    result = plan_rebalance(trip)

    newly_placed = {item.id for item in result.scheduled} & waiting
    assert len(newly_placed) == 1


def test_malformed_entries_are_carried_over():
    trip = _planned_trip()
    result = plan_rebalance(trip)
    carried = [item for item in result.unscheduled if item.activity is None]
    assert len(carried) == 1
    assert carried[0].raw == {"type": "park"}


def test_split_activities_separates_locked_from_movable():
    trip = _planned_trip()
    trip.scheduled[0] = trip.scheduled[0].model_copy(update={"locked": True})
    locked, movable, carried = split_activities(trip)
    assert [item.id for item in locked] == [trip.scheduled[0].id]
    assert trip.scheduled[0].id not in {candidate.id for candidate in movable}
    assert len(carried) == 1
