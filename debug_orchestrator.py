# debug_orchestrator.py
import asyncio
import json

from itinerary_engine.agents.candidate_intake import intake_candidates
from itinerary_engine.agents.pool_proposer import PlacePoolProposer
from itinerary_engine.config import load_settings
from itinerary_engine.orchestrator import GenerationOrchestrator
from itinerary_engine.schemas import City, TripCreate
from itinerary_engine.store import InMemoryTripStore

PLACES = [
    {"name": "Rijksmuseum", "type": "museum", "rating": 4.7, "reviewCount": 95000, "tags": ["indoor", "must_see"]},
    {"name": "Vondelpark", "type": "park", "rating": 4.7, "reviewCount": 70000, "tags": ["outdoor"]},
    {"name": "Anne Frank House", "type": "museum", "rating": 4.6, "reviewCount": 60000, "duration": 90},
    {"name": "Canal cruise", "type": "tourist_attraction", "rating": 4.5, "reviewCount": 12000, "duration": 75},
    {"name": "Foodhallen", "type": "food_court", "rating": 4.4, "reviewCount": 20000, "tags": ["vegetarian_friendly"]},
    {"name": "De Kas", "type": "restaurant", "rating": 4.6, "reviewCount": 2500, "priceLevel": 3, "tags": ["vegetarian"]},
    {"name": "Moeders", "type": "restaurant", "rating": 4.5, "reviewCount": 9000, "tags": ["dutch", "not_vegetarian"]},
    {"name": "Café Winkel 43", "type": "cafe", "rating": 4.5, "reviewCount": 11000, "duration": 45},
    {"name": "Jordaan walk", "type": "tourist_attraction", "tags": ["outdoor", "local"], "startTime": "16:00", "endTime": "17:30"},
]


async def main():
    settings = load_settings()
    store = InMemoryTripStore()
    orchestrator = GenerationOrchestrator(store, PlacePoolProposer(store), None, settings)

    places, _ = intake_candidates(PLACES)
    store.save_places("amsterdam", places)

    trip = orchestrator.create_trip(
        TripCreate(city=City(id="amsterdam", name="Amsterdam"), start_date="2026-10-10", end_date="2026-10-12")
    )
    await orchestrator.start_generation(
        trip.id,
        {
            "interests": ["arts", "history", "food"],
            "energyLevel": 2,
            "dietaryRestrictions": ["vegetarian"],
            "mealImportance": {"lunch": True, "dinner": True},
        },
    )
    await orchestrator.wait_idle(trip.id)

    result = orchestrator.get_trip(trip.id)
    print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
    print(f"status={result.status.value} scheduled={len(result.scheduled)} unscheduled={len(result.unscheduled)}")


if __name__ == "__main__":
    asyncio.run(main())
