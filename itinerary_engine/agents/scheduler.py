"""Greedy day-by-day placement of candidates into a conflict-free timeline.

The scheduler is pure: identical inputs give identical output, including
ordering. Intervals are closed-open and compared with a travel buffer on
both sides.
"""
from __future__ import annotations

import datetime as dt
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from itinerary_engine.agents.recommendation_scorer import partition_candidates
from itinerary_engine.config import SchedulerConfig
from itinerary_engine.errors import SchedulingFailure
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import (
    MEAL_TYPES,
    CandidateActivity,
    DateRange,
    PreferenceProfile,
    ScheduledActivity,
    ScheduleResult,
    ScoringWeights,
    UnscheduledActivity,
    UnscheduledReason,
)
from itinerary_engine.tools.opening_hours import DAY_MINUTES, intervals_cover, open_intervals, opening_points

logger = get_logger(__name__)

START_HOURS = {"early": 7, "mid": 9, "late": 10}
END_HOURS = {1: 18, 2: 20, 3: 22}
DAILY_CAPS = {1: 2, 2: 4, 3: 6}
NIGHTLIFE_END_MINUTE = DAY_MINUTES + 60

# Earliest and latest start minute for each meal.
MEAL_WINDOWS: Dict[str, Tuple[int, int]] = {
    "breakfast": (8 * 60, 10 * 60 + 30),
    "lunch": (12 * 60, 14 * 60 + 30),
    "dinner": (18 * 60, 20 * 60 + 30),
}


def day_envelope(profile: PreferenceProfile, candidate: CandidateActivity | None = None) -> Tuple[int, int]:
    """Return the (start, end) minutes of the planning day for this profile."""
    start = START_HOURS.get(profile.preferred_start_time, 9) * 60
    end = END_HOURS.get(profile.energy_level, 20) * 60
    if candidate is not None and candidate.is_nightlife:
        end = max(end, NIGHTLIFE_END_MINUTE)
    return start, end


def daily_cap(profile: PreferenceProfile) -> int:
    return DAILY_CAPS.get(profile.energy_level, 4)


def meal_at(start: dt.datetime) -> Optional[str]:
    """The meal whose window contains ``start``, if any."""
    minute = start.hour * 60 + start.minute
    for meal, (earliest, latest) in MEAL_WINDOWS.items():
        if earliest <= minute <= latest:
            return meal
    return None


def _at(day: dt.date, minute: int) -> dt.datetime:
    return dt.datetime.combine(day, dt.time()) + dt.timedelta(minutes=minute)


def _minute_of(day: dt.date, moment: dt.datetime) -> int:
    return int((moment - dt.datetime.combine(day, dt.time())).total_seconds() // 60)


class _Day:
    def __init__(self, day: dt.date):
        self.day = day
        self.blocks: List[ScheduledActivity] = []

    @property
    def activity_count(self) -> int:
        return sum(1 for block in self.blocks if block.meal is None and not block.activity.is_meal)

    def holds_meal(self, meal: str) -> bool:
        return any(block.meal == meal for block in self.blocks)

    def is_free(self, start: dt.datetime, end: dt.datetime, buffer_minutes: int) -> bool:
        return not any(block.overlaps(start, end, buffer_minutes) for block in self.blocks)

    def start_points(self, earliest: int, latest: int, step: int, buffer_minutes: int, extra: Iterable[int]) -> List[int]:
        if latest < earliest:
            return []
        points = set(range(earliest, latest + 1, step))
        for block in self.blocks:
            points.add(_minute_of(self.day, block.end) + buffer_minutes)
        points.update(extra)
        return sorted(point for point in points if earliest <= point <= latest)


def _place(
    day: _Day,
    candidate: CandidateActivity,
    earliest: int,
    latest: int,
    config: SchedulerConfig,
    meal: Optional[str] = None,
) -> Tuple[Optional[ScheduledActivity], bool]:
    """Try every start point in order; returns (placement, hours_blocked)."""
    intervals = open_intervals(candidate.opening_hours)
    duration = candidate.duration_minutes
    hours_blocked = False
    points = day.start_points(
        earliest,
        latest,
        config.slot_step_minutes,
        config.travel_buffer_minutes,
        opening_points(intervals, day.day),
    )
    for minute in points:
        start, end = _at(day.day, minute), _at(day.day, minute + duration)
        if not day.is_free(start, end, config.travel_buffer_minutes):
            continue
        if not intervals_cover(intervals, day.day, minute, minute + duration):
            hours_blocked = True
            continue
        placed = ScheduledActivity(activity=candidate, date=day.day, start=start, end=end, meal=meal)
        day.blocks.append(placed)
        return placed, hours_blocked
    return None, hours_blocked


def _pre_place(days: Dict[dt.date, _Day], fixed: Sequence[ScheduledActivity]) -> List[ScheduledActivity]:
    ordered = sorted(fixed, key=lambda item: (item.date, item.start, item.id))
    for index, item in enumerate(ordered):
        for other in ordered[index + 1:]:
            if other.date == item.date and other.overlaps(item.start, item.end):
                raise SchedulingFailure(
                    f"fixed activities {item.id} and {other.id} overlap on {item.date.isoformat()}"
                )
        days.setdefault(item.date, _Day(item.date)).blocks.append(item)
    return ordered


def check_slot(
    activity: CandidateActivity,
    start: dt.datetime,
    end: dt.datetime,
    existing: Iterable[ScheduledActivity],
    buffer_minutes: int = 0,
) -> Optional[UnscheduledReason]:
    """Why ``activity`` cannot occupy ``[start, end)``, or ``None`` if it can."""
    if end <= start:
        return UnscheduledReason.NO_TIME_SLOT
    day = start.date()
    for other in existing:
        # late blocks can run past midnight, so compare datetimes rather than dates
        if other.id == activity.id:
            continue
        if other.overlaps(start, end, buffer_minutes):
            return UnscheduledReason.NO_TIME_SLOT
    minute = _minute_of(day, start)
    length = int((end - start).total_seconds() // 60)
    if not intervals_cover(open_intervals(activity.opening_hours), day, minute, minute + length):
        return UnscheduledReason.NO_OPENING_HOURS_MATCH
    return None


def schedule(
    date_range: DateRange,
    candidates: Sequence[CandidateActivity],
    fixed: Sequence[ScheduledActivity],
    profile: PreferenceProfile,
    config: SchedulerConfig | None = None,
    weights: ScoringWeights | None = None,
) -> ScheduleResult:
    """Place ``candidates`` around ``fixed`` across every day of ``date_range``."""
    config = config or SchedulerConfig()
    days: Dict[dt.date, _Day] = {day: _Day(day) for day in date_range.days()}
    fixed = _pre_place(days, fixed)
    fixed_by_id = {item.id: item.activity for item in fixed}
    trip_days = [days[day] for day in date_range.days()]

    placed: List[ScheduledActivity] = []
    unscheduled: List[UnscheduledActivity] = []

    unique: Dict[str, CandidateActivity] = {}
    for candidate in candidates:
        kept = fixed_by_id.get(candidate.id) or unique.get(candidate.id)
        if kept is None:
            unique[candidate.id] = candidate
        elif kept != candidate:
            logger.warning("Candidate id %s is used by more than one place; keeping %r", candidate.id, kept.name)
            unscheduled.append(
                UnscheduledActivity(
                    activity=candidate,
                    reason=UnscheduledReason.INVALID_CANDIDATE,
                    detail=f"duplicate_id:{candidate.id}",
                )
            )
    ranked, excluded = partition_candidates(unique.values(), profile, weights=weights)

    meals = [item.candidate for item in ranked if item.candidate.is_meal]
    others = [item.candidate for item in ranked if not item.candidate.is_meal]

    wanted_meals = profile.meal_importance.wanted()
    for day in trip_days:
        for meal in MEAL_TYPES:
            if meal not in wanted_meals or day.holds_meal(meal):
                continue
            earliest, latest = MEAL_WINDOWS[meal]
            for candidate in meals:
                result, _ = _place(day, candidate, earliest, latest, config, meal=meal)
                if result is not None:
                    placed.append(result)
                    meals.remove(candidate)
                    break

    for candidate in meals:
        detail = "no requested meal window could take it" if wanted_meals else "no meals were requested"
        unscheduled.append(
            UnscheduledActivity(activity=candidate, reason=UnscheduledReason.NO_TIME_SLOT, detail=detail)
        )

    cap = daily_cap(profile)
    for candidate in others:
        capped_days = 0
        hours_blocked = False
        result = None
        for day in trip_days:
            if day.activity_count >= cap:
                capped_days += 1
                continue
            earliest, envelope_end = day_envelope(profile, candidate)
            result, blocked = _place(day, candidate, earliest, envelope_end - candidate.duration_minutes, config)
            hours_blocked = hours_blocked or blocked
            if result is not None:
                break
        if result is not None:
            placed.append(result)
            continue
        if trip_days and capped_days == len(trip_days):
            reason = UnscheduledReason.DAILY_CAP_REACHED
            detail = f"every day already holds {cap} activities"
        elif hours_blocked:
            reason = UnscheduledReason.NO_OPENING_HOURS_MATCH
            detail = "free slots exist but the place is closed during them"
        else:
            reason = UnscheduledReason.NO_TIME_SLOT
            detail = "no free slot long enough inside the day"
        unscheduled.append(UnscheduledActivity(activity=candidate, reason=reason, detail=detail))

    for item in excluded:
        unscheduled.append(
            UnscheduledActivity(
                activity=item.candidate,
                reason=UnscheduledReason.EXCLUDED_BY_PREFERENCES,
                detail=item.exclusion_reason,
            )
        )

    logger.info(
        "Scheduled %d new + %d fixed activities over %d day(s); %d unscheduled",
        len(placed),
        len(fixed),
        len(trip_days),
        len(unscheduled),
    )
    return ScheduleResult(scheduled=sequence_activities(list(fixed) + placed), unscheduled=unscheduled)


def sequence_activities(items: List[ScheduledActivity]) -> List[ScheduledActivity]:
    items.sort(key=lambda item: (item.date, item.start, item.id))
    out: List[ScheduledActivity] = []
    current: Optional[dt.date] = None
    index = 0
    for item in items:
        if item.date != current:
            current, index = item.date, 0
        out.append(item.model_copy(update={"sequence": index}))
        index += 1
    return out
