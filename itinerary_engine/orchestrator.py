# itinerary_engine/orchestrator.py
from __future__ import annotations

import asyncio
import datetime as dt
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError

from itinerary_engine.agents.candidate_intake import intake_candidates
from itinerary_engine.agents.rebalancer import plan_rebalance
from itinerary_engine.agents.recommendation_scorer import score_candidates
from itinerary_engine.agents.scheduler import check_slot, meal_at, schedule, sequence_activities
from itinerary_engine.config import Settings
from itinerary_engine.errors import (
    ActivityConflict,
    ActivityNotFound,
    GenerationInProgress,
    InvalidPreferences,
    InvalidStateTransition,
    PersistenceFailure,
    PlannerError,
    ProposerFailure,
    RetryBudgetExhausted,
    SchedulingFailure,
)
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import (
    CandidateActivity,
    PlaceDetails,
    PreferenceProfile,
    ProposalRequest,
    RecommendationRequest,
    RecommendationScore,
    ScheduledActivity,
    ScheduleResult,
    Trip,
    TripCreate,
    TripStatus,
    UnscheduledActivity,
    UnscheduledReason,
    coerce_profile,
)
from itinerary_engine.store import TripStore
from itinerary_engine.tools.opening_hours import covers
from itinerary_engine.tools.place_details import merge_details

logger = get_logger(__name__)

PROGRESS_STARTED = 10
PROGRESS_PROPOSED = 30
PROGRESS_BASIC_READY = 70
PROGRESS_COMPLETE = 100
ENRICH_BATCH_SIZE = 3

CLOSED_WARNING = "This place might be closed at the scheduled time."

_ACTIVE = (TripStatus.GENERATING, TripStatus.BASIC_READY)


class ItineraryProposer(Protocol):
    def propose(self, request: ProposalRequest) -> List[Dict[str, Any]]: ...


class PlaceEnricher(Protocol):
    async def fetch(self, place_ref: str) -> Optional[PlaceDetails]: ...


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def validate_preferences(raw: Any) -> PreferenceProfile:
    if isinstance(raw, PreferenceProfile):
        raw = raw.model_dump()
    if raw is None:
        return PreferenceProfile()
    try:
        return PreferenceProfile.model_validate(raw)
    except ValidationError as exc:
        raise InvalidPreferences(f"invalid preferences: {exc.errors()[0].get('msg', 'bad value')}") from exc


class GenerationOrchestrator:
    """Drives trips through draft -> generating -> basic_ready -> complete.

    Every status/progress/activity change is a read-modify-write of the whole
    trip performed under one lock, so pollers only ever see committed states.
    Background work runs as one asyncio task per trip.
    """

    def __init__(
        self,
        store: TripStore,
        proposer: ItineraryProposer,
        enricher: PlaceEnricher | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.proposer = proposer
        self.enricher = enricher
        self.settings = settings or Settings()
        self._lock = threading.Lock()
        self._tasks: Dict[str, asyncio.Task] = {}

    # ---------- store access ----------
    def _load(self, trip_id: str) -> Trip:
        try:
            return self.store.load_trip(trip_id)
        except PlannerError:
            raise
        except Exception as exc:
            raise PersistenceFailure(f"could not load trip {trip_id}: {exc}") from exc

    def _save(self, trip: Trip) -> Trip:
        trip.updated_at = _now()
        try:
            return self.store.save_trip(trip)
        except PlannerError:
            raise
        except Exception as exc:
            raise PersistenceFailure(f"could not save trip {trip.id}: {exc}") from exc

    def _transition(self, trip_id: str, mutate: Callable[[Trip], Optional[PlannerError]]) -> Trip:
        """Apply ``mutate`` atomically.

        ``mutate`` may raise to abort without writing, or return an error to
        persist the trip as mutated and then raise it.
        """
        with self._lock:
            trip = self._load(trip_id)
            refusal = mutate(trip)
            saved = self._save(trip)
        if refusal is not None:
            raise refusal
        return saved

    # ---------- queries ----------
    def create_trip(self, payload: TripCreate) -> Trip:
        try:
            return self.store.create_trip(payload)
        except PlannerError:
            raise
        except Exception as exc:
            raise PersistenceFailure(f"could not create trip: {exc}") from exc

    def get_trip(self, trip_id: str) -> Trip:
        return self._load(trip_id)

    def is_running(self, trip_id: str) -> bool:
        task = self._tasks.get(trip_id)
        return task is not None and not task.done()

    # ---------- triggers ----------
    async def start_generation(self, trip_id: str, preferences: Any = None) -> Trip:
        """Move a draft trip to ``generating`` and launch the pipeline in the background."""
        profile = validate_preferences(preferences) if preferences is not None else None

        def begin(trip: Trip) -> None:
            if trip.status in _ACTIVE:
                raise GenerationInProgress(f"trip {trip.id} is already {trip.status.value}")
            if trip.status != TripStatus.DRAFT:
                raise InvalidStateTransition(
                    f"trip {trip.id} is {trip.status.value}; use regenerate instead"
                )
            if profile is not None:
                trip.preferences = profile
            if trip.city is None:
                raise InvalidPreferences("trip has no destination city")
            if trip.preferences is None:
                trip.preferences = PreferenceProfile()
            # the first run counts against the retry budget
            trip.attempts_count = 1
            trip.status = TripStatus.GENERATING
            trip.progress = PROGRESS_STARTED
            trip.error_code = None
            trip.error_message = None

        trip = self._transition(trip_id, begin)
        logger.info("Generation started for trip %s", trip_id)
        self._launch(trip.id, trip.attempts_count)
        return trip

    async def regenerate(self, trip_id: str) -> Trip:
        """Reset a finished or failed trip and run the same pipeline again."""
        limit = self.settings.max_retry_attempts

        def begin(trip: Trip) -> Optional[PlannerError]:
            if trip.status in _ACTIVE:
                raise GenerationInProgress(f"trip {trip.id} is already {trip.status.value}")
            if trip.status not in (TripStatus.ERROR, TripStatus.COMPLETE):
                raise InvalidStateTransition(
                    f"trip {trip.id} is {trip.status.value}; only failed or complete trips can regenerate"
                )
            if trip.attempts_count >= limit:
                refusal = RetryBudgetExhausted(f"trip {trip.id} used all {limit} generation attempts")
                trip.error_code, trip.error_message = refusal.code, refusal.message
                return refusal
            try:
                trip.preferences = validate_preferences(trip.preferences)
                if trip.city is None:
                    raise InvalidPreferences("trip has no destination city")
            except InvalidPreferences as exc:
                trip.error_code, trip.error_message = exc.code, exc.message
                return exc

            trip.attempts_count += 1
            trip.status = TripStatus.GENERATING
            trip.progress = PROGRESS_STARTED
            trip.error_code = None
            trip.error_message = None
            trip.scheduled = []
            trip.unscheduled = []
            self.store.delete_activities(trip.id)
            return None

        trip = self._transition(trip_id, begin)
        logger.info("Generation attempt %d started for trip %s", trip.attempts_count, trip_id)
        self._launch(trip.id, trip.attempts_count)
        return trip

    def rebalance(self, trip_id: str) -> ScheduleResult:
        """Re-place every unlocked activity around the locked ones and persist the split."""
        with self._lock:
            trip = self._load(trip_id)
            if trip.status in _ACTIVE or self.is_running(trip_id):
                raise GenerationInProgress(f"trip {trip.id} is being generated; rebalance later")
            result = plan_rebalance(
                trip,
                config=self.settings.scheduler,
                weights=self.settings.scoring_weights,
            )
            trip.scheduled = result.scheduled
            trip.unscheduled = result.unscheduled
            trip.last_rebalanced_at = _now()
            self._save(trip)
        logger.info(
            "Rebalanced trip %s: %d scheduled, %d unscheduled",
            trip_id,
            len(result.scheduled),
            len(result.unscheduled),
        )
        return result

    def edit_activity(self, trip_id: str, activity_id: str, start: dt.datetime) -> ScheduledActivity:
        """Move an activity to ``start`` (same duration) and lock it there."""
        if start.tzinfo is not None:
            # schedules are in the destination's wall-clock time
            start = start.replace(tzinfo=None)
        edited: Dict[str, ScheduledActivity] = {}

        def apply(trip: Trip) -> None:
            if trip.status in _ACTIVE:
                raise GenerationInProgress(f"trip {trip.id} is being generated; edit later")
            current = _find(trip, activity_id)
            end = start + (current.end - current.start)
            others = [item for item in trip.scheduled if item.id != activity_id]
            reason = check_slot(current.activity, start, end, others)
            if reason == UnscheduledReason.NO_TIME_SLOT:
                raise ActivityConflict(f"{current.activity.name} would overlap another activity")
            moved = current.model_copy(
                update={
                    "date": start.date(),
                    "start": start,
                    "end": end,
                    "meal": meal_at(start) if current.activity.is_meal else None,
                    "locked": True,
                    "warning": CLOSED_WARNING if reason == UnscheduledReason.NO_OPENING_HOURS_MATCH else None,
                }
            )
            trip.scheduled = sequence_activities(others + [moved])
            edited["item"] = next(item for item in trip.scheduled if item.id == activity_id)

        self._transition(trip_id, apply)
        return edited["item"]

    def remove_activity(self, trip_id: str, activity_id: str) -> Trip:
        def apply(trip: Trip) -> None:
            if trip.status in _ACTIVE:
                raise GenerationInProgress(f"trip {trip.id} is being generated; edit later")
            _find(trip, activity_id)
            trip.scheduled = sequence_activities([item for item in trip.scheduled if item.id != activity_id])

        return self._transition(trip_id, apply)

    def add_activity(self, trip_id: str, place_id: str) -> Trip:
        """Queue a place from the trip city's pool; the next rebalance places it."""

        def apply(trip: Trip) -> None:
            if trip.status in _ACTIVE:
                raise GenerationInProgress(f"trip {trip.id} is being generated; edit later")
            if trip.city is None:
                raise InvalidPreferences("trip has no destination city")
            pool = {place.id: place for place in self.store.load_places(trip.city.id)}
            place = pool.get(place_id)
            if place is None:
                raise ActivityNotFound(f"place {place_id} is not in the pool for {trip.city.id}")
            on_trip = {item.id for item in trip.scheduled}
            on_trip.update(item.activity.id for item in trip.unscheduled if item.activity is not None)
            if place.id in on_trip:
                raise ActivityConflict(f"{place.name} is already on trip {trip.id}")
            trip.unscheduled.append(
                UnscheduledActivity(
                    activity=place,
                    reason=UnscheduledReason.NO_TIME_SLOT,
                    detail="added by the traveller; rebalance to place it",
                )
            )

        trip = self._transition(trip_id, apply)
        logger.info("Queued place %s on trip %s", place_id, trip_id)
        return trip

    def get_recommendations(self, city_id: str, params: RecommendationRequest) -> List[RecommendationScore]:
        profile = coerce_profile(params.preferences)
        pool: List[CandidateActivity] = self.store.load_places(city_id)
        if params.category == "restaurants":
            pool = [place for place in pool if place.is_meal]
        elif params.category == "attractions":
            pool = [place for place in pool if not place.is_meal]
        ranked = score_candidates(pool, profile, params.context, self.settings.scoring_weights)
        return ranked[: params.limit]

    # ---------- background execution ----------
    def _launch(self, trip_id: str, attempt: int) -> None:
        task = asyncio.create_task(self._run(trip_id, attempt), name=f"generate-{trip_id}")
        self._tasks[trip_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(trip_id) is done:
                self._tasks.pop(trip_id, None)

        task.add_done_callback(_forget)

    async def _run(self, trip_id: str, attempt: int) -> None:
        try:
            trip = self._load(trip_id)
            request = ProposalRequest(
                city=trip.city,
                date_range=trip.date_range,
                preferences=trip.preferences or PreferenceProfile(),
                attempt=attempt,
            )
            raw = await asyncio.to_thread(self._propose, request)
            self._advance(trip_id, PROGRESS_PROPOSED)

            candidates, invalid = intake_candidates(raw)
            if not candidates:
                raise ProposerFailure("proposer returned no usable activities")
            result = self._schedule(request, candidates)

            def basic_ready(current: Trip) -> None:
                current.scheduled = result.scheduled
                current.unscheduled = result.unscheduled + invalid
                current.status = TripStatus.BASIC_READY
                current.progress = max(current.progress, PROGRESS_BASIC_READY)

            self._transition(trip_id, basic_ready)
            logger.info(
                "Trip %s basic_ready: %d scheduled, %d unscheduled",
                trip_id,
                len(result.scheduled),
                len(result.unscheduled) + len(invalid),
            )

            await self._enrich(trip_id)

            def complete(current: Trip) -> None:
                current.status = TripStatus.COMPLETE
                current.progress = PROGRESS_COMPLETE

            self._transition(trip_id, complete)
            logger.info("Trip %s complete", trip_id)
        except asyncio.CancelledError:
            self._fail(trip_id, PlannerError("generation was cancelled", code="GENERATION_CANCELLED"))
            raise
        except PlannerError as exc:
            logger.warning("Generation failed for trip %s: [%s] %s", trip_id, exc.code, exc.message)
            self._fail(trip_id, exc)
        except Exception as exc:
            logger.error("Unexpected generation failure for trip %s", trip_id, exc_info=True)
            self._fail(trip_id, PlannerError(str(exc) or exc.__class__.__name__))

    def _propose(self, request: ProposalRequest) -> List[Dict[str, Any]]:
        try:
            return self.proposer.propose(request)
        except PlannerError:
            raise
        except Exception as exc:
            raise ProposerFailure(f"proposer failed: {exc}") from exc

    def _schedule(self, request: ProposalRequest, candidates: List[CandidateActivity]) -> ScheduleResult:
        try:
            return schedule(
                request.date_range,
                candidates,
                [],
                request.preferences,
                config=self.settings.scheduler,
                weights=self.settings.scoring_weights,
            )
        except PlannerError:
            raise
        except Exception as exc:
            raise SchedulingFailure(f"scheduler crashed: {exc}") from exc

    def _advance(self, trip_id: str, progress: int) -> None:
        def bump(trip: Trip) -> None:
            trip.progress = max(trip.progress, min(progress, PROGRESS_COMPLETE))

        self._transition(trip_id, bump)

    def _fail(self, trip_id: str, error: PlannerError) -> None:
        def record(trip: Trip) -> None:
            if trip.status not in _ACTIVE:
                return
            trip.status = TripStatus.ERROR
            trip.error_code = error.code
            trip.error_message = error.message

        try:
            self._transition(trip_id, record)
        except PlannerError:
            logger.error("Could not record failure for trip %s", trip_id, exc_info=True)

    async def _enrich(self, trip_id: str) -> None:
        if self.enricher is None:
            return
        trip = self._load(trip_id)
        refs: List[str] = []
        for item in trip.scheduled:
            ref = item.activity.place_ref
            if ref and ref not in refs:
                refs.append(ref)
        if not refs:
            return

        done = 0
        for offset in range(0, len(refs), ENRICH_BATCH_SIZE):
            batch = refs[offset: offset + ENRICH_BATCH_SIZE]
            results = await asyncio.gather(*(self._fetch_details(ref) for ref in batch))
            details = {ref: found for ref, found in zip(batch, results) if found is not None}
            done += len(batch)
            progress = PROGRESS_BASIC_READY + (PROGRESS_COMPLETE - PROGRESS_BASIC_READY - 1) * done // len(refs)

            def apply(current: Trip) -> None:
                current.scheduled = [_with_details(item, details) for item in current.scheduled]
                current.progress = max(current.progress, progress)

            self._transition(trip_id, apply)
        logger.info("Enriched %d place(s) for trip %s", len(refs), trip_id)

    async def _fetch_details(self, place_ref: str) -> Optional[PlaceDetails]:
        try:
            return await self.enricher.fetch(place_ref)
        except Exception:
            logger.warning("Enrichment failed for place %s; keeping proposer data", place_ref, exc_info=True)
            return None

    # ---------- lifecycle ----------
    async def wait_idle(self, trip_id: str | None = None) -> None:
        if trip_id is not None:
            tasks = [self._tasks[trip_id]] if trip_id in self._tasks else []
        else:
            tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("Cancelling %d in-flight generation task(s)", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)


def _find(trip: Trip, activity_id: str) -> ScheduledActivity:
    for item in trip.scheduled:
        if item.id == activity_id:
            return item
    raise ActivityNotFound(f"activity {activity_id} is not scheduled on trip {trip.id}")


def _with_details(item: ScheduledActivity, details: Dict[str, PlaceDetails]) -> ScheduledActivity:
    found = details.get(item.activity.place_ref or "")
    if found is None:
        return item
    activity = merge_details(item.activity, found)
    warning = item.warning
    if activity.hours_known and not covers(activity.opening_hours, item.start, item.end):
        warning = CLOSED_WARNING
    return item.model_copy(update={"activity": activity, "warning": warning})
