import datetime as dt

import pytest

from itinerary_engine.agents.scheduler import check_slot, meal_at, schedule
from itinerary_engine.config import SchedulerConfig
from itinerary_engine.errors import SchedulingFailure
from itinerary_engine.schemas import (
    CandidateActivity,
    DateRange,
    PreferenceProfile,
    ScheduledActivity,
    UnscheduledReason,
)
from itinerary_engine.tools.opening_hours import covers

MONDAY = dt.date(2026, 6, 1)


def _days(count: int) -> DateRange:
    return DateRange(start=MONDAY, end=MONDAY + dt.timedelta(days=count - 1))


def _daily_hours(open_hour: int, close_hour: int) -> dict:
    periods = []
    for day in range(7):
        close_day = day if close_hour > open_hour else (day + 1) % 7
        periods.append({"open": {"day": day, "hour": open_hour}, "close": {"day": close_day, "hour": close_hour}})
    return {"periods": periods}


def _candidate(candidate_id: str, **overrides) -> CandidateActivity:
    data = {"id": candidate_id, "name": candidate_id, "category": "museum", "rating": 4.5, "review_count": 200}
    data.update(overrides)
    return CandidateActivity.model_validate(data)


def _at(day: dt.date, hour: int, minute: int = 0) -> dt.datetime:
    return dt.datetime.combine(day, dt.time(hour, minute))


def _assert_no_overlap(items):
    by_day = {}
    for item in items:
        by_day.setdefault(item.date, []).append(item)
    for day_items in by_day.values():
        day_items.sort(key=lambda item: item.start)
        for earlier, later in zip(day_items, day_items[1:]):
            assert earlier.end <= later.start


def test_scheduled_activities_never_overlap_and_respect_hours():
    profile = PreferenceProfile(energy_level=3, meal_importance={"lunch": True})
    pool = [
        _candidate(f"museum-{index}", duration_minutes=90, opening_hours=_daily_hours(10, 18))
        for index in range(6)
    ]
    pool += [_candidate(f"park-{index}", category="park", duration_minutes=60) for index in range(4)]
    pool += [_candidate("bistro", category="restaurant", opening_hours=_daily_hours(11, 23))]

    result = schedule(_days(2), pool, [], profile)

    assert result.scheduled
    _assert_no_overlap(result.scheduled)
    for item in result.scheduled:
        assert item.end > item.start
        assert covers(item.activity.opening_hours, item.start, item.end)


def test_travel_buffer_separates_consecutive_activities():
    profile = PreferenceProfile(energy_level=3)
    pool = [_candidate("a"), _candidate("b")]
    result = schedule(_days(1), pool, [], profile, SchedulerConfig(travel_buffer_minutes=30))
    first, second = result.scheduled
    assert second.start - first.end >= dt.timedelta(minutes=30)
    assert [first.sequence, second.sequence] == [0, 1]


def test_schedule_is_deterministic_regardless_of_input_order():
    profile = PreferenceProfile(meal_importance={"breakfast": True, "dinner": True})
    pool = [_candidate(f"spot-{index}", rating=3.5 + index / 10) for index in range(8)]
    pool += [_candidate(f"eat-{index}", category="restaurant") for index in range(4)]

    first = schedule(_days(3), pool, [], profile)
    second = schedule(_days(3), list(reversed(pool)), [], profile)

    assert first.model_dump_json() == second.model_dump_json()


def test_dinner_only_profile_fills_exactly_three_dinner_windows():
    profile = PreferenceProfile(meal_importance={"dinner": True})
    pool = [_candidate(f"restaurant-{index}", category="restaurant", duration_minutes=90) for index in range(5)]
    pool += [_candidate(f"sight-{index}") for index in range(3)]

    result = schedule(_days(3), pool, [], profile)

    meals = [item for item in result.scheduled if item.activity.is_meal]
    assert len(meals) == 3
    assert {item.meal for item in meals} == {"dinner"}
    assert sorted({item.date for item in meals}) == _days(3).days()
    for item in meals:
        assert _at(item.date, 18) <= item.start <= _at(item.date, 20, 30)
    leftovers = [item for item in result.unscheduled if item.activity.is_meal]
    assert len(leftovers) == 2
    assert all(item.reason == UnscheduledReason.NO_TIME_SLOT for item in leftovers)


def test_short_opening_window_on_late_start_day_is_an_hours_mismatch():
    profile = PreferenceProfile(preferred_start_time="late")
    pool = [
        _candidate("gallery-a", duration_minutes=90, opening_hours=_daily_hours(9, 11)),
        _candidate("gallery-b", duration_minutes=90, opening_hours=_daily_hours(9, 11)),
    ]

    result = schedule(_days(1), pool, [], profile)

    assert result.scheduled == []
    assert {item.activity.id for item in result.unscheduled} == {"gallery-a", "gallery-b"}
    assert all(item.reason == UnscheduledReason.NO_OPENING_HOURS_MATCH for item in result.unscheduled)


def test_low_energy_caps_the_day_at_two_activities():
    profile = PreferenceProfile(energy_level=1)
    pool = [_candidate(f"stop-{index}") for index in range(5)]

    result = schedule(_days(1), pool, [], profile)

    assert len(result.scheduled) == 2
    assert len(result.unscheduled) == 3
    assert all(item.reason == UnscheduledReason.DAILY_CAP_REACHED for item in result.unscheduled)


def test_activity_longer_than_the_day_has_no_time_slot():
    profile = PreferenceProfile(energy_level=1)
    result = schedule(_days(1), [_candidate("marathon", duration_minutes=12 * 60)], [], profile)
    assert result.unscheduled[0].reason == UnscheduledReason.NO_TIME_SLOT


def test_nightlife_may_run_past_midnight():
    profile = PreferenceProfile(energy_level=1)
    bar = _candidate("jazz-bar", category="bar", duration_minutes=120, opening_hours=_daily_hours(20, 2))
    result = schedule(_days(1), [bar], [], profile)
    placed = result.scheduled[0]
    assert placed.start == _at(MONDAY, 20)
    assert covers(bar.opening_hours, placed.start, placed.end)


def test_fixed_activities_are_kept_and_block_their_slot():
    profile = PreferenceProfile()
    locked = ScheduledActivity(
        activity=_candidate("tour"),
        date=MONDAY,
        start=_at(MONDAY, 9),
        end=_at(MONDAY, 12),
        locked=True,
    )
    result = schedule(_days(1), [_candidate("museum"), _candidate("tour")], [locked], profile)

    ids = [item.id for item in result.scheduled]
    assert ids == ["tour", "museum"]
    assert result.scheduled[0].locked
    assert result.scheduled[1].start >= _at(MONDAY, 12, 30)


def test_overlapping_fixed_activities_raise():
    profile = PreferenceProfile()
    first = ScheduledActivity(activity=_candidate("a"), date=MONDAY, start=_at(MONDAY, 9), end=_at(MONDAY, 11))
    second = ScheduledActivity(activity=_candidate("b"), date=MONDAY, start=_at(MONDAY, 10), end=_at(MONDAY, 12))
    with pytest.raises(SchedulingFailure):
        schedule(_days(1), [], [first, second], profile)


def test_excluded_candidates_are_reported_as_unscheduled():
    profile = PreferenceProfile(dietary_restrictions=["vegan"])
    result = schedule(_days(1), [_candidate("cheese", category="cheese_shop")], [], profile)
    assert result.scheduled == []
    assert result.unscheduled[0].reason == UnscheduledReason.EXCLUDED_BY_PREFERENCES
    assert result.unscheduled[0].detail == "dietary_conflict:vegan"


def test_check_slot_reports_conflicts_and_closed_hours():
    museum = _candidate("museum", opening_hours=_daily_hours(9, 17))
    other = ScheduledActivity(activity=_candidate("other"), date=MONDAY, start=_at(MONDAY, 10), end=_at(MONDAY, 11))

    assert check_slot(museum, _at(MONDAY, 10, 30), _at(MONDAY, 11, 30), [other]) == UnscheduledReason.NO_TIME_SLOT
    assert check_slot(museum, _at(MONDAY, 16, 30), _at(MONDAY, 17, 30), [other]) == (
        UnscheduledReason.NO_OPENING_HOURS_MATCH
    )
    assert check_slot(museum, _at(MONDAY, 11), _at(MONDAY, 12), [other]) is None


def test_check_slot_sees_blocks_that_run_past_midnight():
    bar = _candidate("jazz-bar", category="bar")
    late = ScheduledActivity(activity=bar, date=MONDAY, start=_at(MONDAY, 23), end=_at(MONDAY, 23) + dt.timedelta(hours=2))
    tuesday = MONDAY + dt.timedelta(days=1)

    club = _candidate("club", category="night_club")
    assert check_slot(club, _at(tuesday, 0, 30), _at(tuesday, 1, 30), [late]) == UnscheduledReason.NO_TIME_SLOT
    assert check_slot(club, _at(tuesday, 1, 30), _at(tuesday, 2, 30), [late]) is None


def test_candidates_sharing_an_id_are_all_accounted_for():
    profile = PreferenceProfile()
    castle = _candidate("1", name="Castle")
    museum = _candidate("1", name="Museum")
    result = schedule(_days(1), [castle, museum, castle], [], profile)

    assert [item.activity.name for item in result.scheduled] == ["Castle"]
    (dropped,) = result.unscheduled
    assert dropped.activity.name == "Museum"
    assert dropped.reason == UnscheduledReason.INVALID_CANDIDATE
    assert dropped.detail == "duplicate_id:1"


def test_meal_at_maps_start_times_to_windows():
    assert meal_at(_at(MONDAY, 8)) == "breakfast"
    assert meal_at(_at(MONDAY, 14, 30)) == "lunch"
    assert meal_at(_at(MONDAY, 19)) == "dinner"
    assert meal_at(_at(MONDAY, 10, 45)) is None
