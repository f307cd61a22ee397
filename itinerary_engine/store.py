"""Record store boundary plus the in-process implementation used by the API."""
from __future__ import annotations

import datetime as dt
import threading
import uuid
from typing import Dict, List, Protocol, Sequence

from itinerary_engine.errors import TripNotFound
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import CandidateActivity, Trip, TripCreate

logger = get_logger(__name__)


class TripStore(Protocol):
    def create_trip(self, payload: TripCreate) -> Trip: ...

    def load_trip(self, trip_id: str) -> Trip: ...

    def save_trip(self, trip: Trip) -> Trip: ...

    def delete_activities(self, trip_id: str) -> None: ...

    def load_places(self, city_id: str) -> List[CandidateActivity]: ...

    def save_places(self, city_id: str, places: Sequence[CandidateActivity]) -> None: ...


class InMemoryTripStore:
    """Thread-safe dict store.

    Every read and write goes through a deep copy so a caller holding a trip
    never observes another writer's half-finished changes.
    """

    def __init__(self) -> None:
        self._trips: Dict[str, Trip] = {}
        self._places: Dict[str, List[CandidateActivity]] = {}
        self._lock = threading.RLock()

    def create_trip(self, payload: TripCreate) -> Trip:
        trip = Trip(
            id=uuid.uuid4().hex,
            title=payload.title,
            city=payload.city,
            start_date=payload.start_date,
            end_date=payload.end_date,
            preferences=payload.preferences,
            updated_at=dt.datetime.now(dt.timezone.utc),
        )
        with self._lock:
            self._trips[trip.id] = trip.model_copy(deep=True)
        logger.info("Created draft trip %s for %s", trip.id, trip.city.name if trip.city else "?")
        return trip

    def load_trip(self, trip_id: str) -> Trip:
        with self._lock:
            trip = self._trips.get(trip_id)
            if trip is None:
                raise TripNotFound(f"trip {trip_id} does not exist")
            return trip.model_copy(deep=True)

    def save_trip(self, trip: Trip) -> Trip:
        with self._lock:
            if trip.id not in self._trips:
                raise TripNotFound(f"trip {trip.id} does not exist")
            self._trips[trip.id] = trip.model_copy(deep=True)
        return trip

    def delete_activities(self, trip_id: str) -> None:
        with self._lock:
            trip = self._trips.get(trip_id)
            if trip is None:
                raise TripNotFound(f"trip {trip_id} does not exist")
            self._trips[trip_id] = trip.model_copy(update={"scheduled": [], "unscheduled": []}, deep=True)

    def load_places(self, city_id: str) -> List[CandidateActivity]:
        with self._lock:
            return list(self._places.get(city_id, []))

    def save_places(self, city_id: str, places: Sequence[CandidateActivity]) -> None:
        with self._lock:
            self._places[city_id] = list(places)
        logger.info("Stored %d places for city %s", len(places), city_id)
