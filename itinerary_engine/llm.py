# itinerary_engine/llm.py
from __future__ import annotations

import json
from typing import Any, Dict, List

from itinerary_engine.errors import ProposerFailure
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import PreferenceProfile, ProposalRequest

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a travel-planning agent that proposes places to visit.
Respond ONLY in JSON with the schema:
  {"activities": [{"name": "", "category": "", "address": "", "placeId": "",
                   "lat": 0.0, "lng": 0.0, "duration": 60, "priceLevel": 2,
                   "rating": 0.0, "reviewCount": 0, "tags": []}]}
- category: a single lower_snake_case place type (museum, park, restaurant, cafe, bar, ...).
- duration: suggested visit length in minutes.
- tags: include "indoor" or "outdoor", "must_see" for landmarks, cuisine and dietary tags for food.
Only propose places that exist. Do not invent ratings or place ids; omit them when unsure.
Do not assign dates or times; another system schedules the activities.
"""

USER_TEMPLATE = """Destination: {city}
Dates: {dates} ({days} day(s))
Interests: {interests}
Budget tier (1-4): {price_tier}
Pace (1 relaxed - 3 packed): {energy}
Dietary restrictions: {diet}
Preferred cuisines: {preferred}
Avoid cuisines: {avoided}
Meals to plan: {meals}
Crowds: {crowds}

Propose roughly {count} activities and {meal_count} food places.
{retry_note}"""

RETRY_NOTE = "This is generation attempt {attempt}; favour well-known, reliably open places."


def _join(values: List[str], empty: str = "none stated") -> str:
    return ", ".join(values) if values else empty


def _city_label(request: ProposalRequest) -> str:
    location = request.city.location
    if location is None:
        return request.city.name
    return f"{request.city.name} (centre {location.lat:.4f}, {location.lng:.4f})"


def build_user_prompt(request: ProposalRequest) -> str:
    profile: PreferenceProfile = request.preferences
    days = len(request.date_range.days())
    meals = profile.meal_importance.wanted()
    per_day = {1: 3, 2: 5, 3: 7}.get(profile.energy_level, 5)
    return USER_TEMPLATE.format(
        city=_city_label(request),
        dates=f"{request.date_range.start.isoformat()} to {request.date_range.end.isoformat()}",
        days=days,
        interests=_join(profile.interests),
        price_tier=profile.price_tier,
        energy=profile.energy_level,
        diet=_join(profile.dietary_restrictions),
        preferred=_join(profile.cuisine_preferences.preferred),
        avoided=_join(profile.cuisine_preferences.avoided),
        meals=_join(meals, "none"),
        crowds=profile.crowd_preference,
        count=per_day * days,
        meal_count=(len(meals) * days) + 2 if meals else 0,
        retry_note=RETRY_NOTE.format(attempt=request.attempt) if request.attempt > 1 else "",
    )


class OpenAIItineraryProposer:
    """Ask a hosted model for raw candidate activities.

    The OpenAI client is built once by the application and injected here.
    Entries are returned unvalidated; intake decides what is usable.
    """

    def __init__(self, client: Any, model: str = "gpt-4o-mini", *, temperature: float = 0.2):
        self.client = client
        self.model = model
        self.temperature = temperature

    def propose(self, request: ProposalRequest) -> List[Dict[str, Any]]:
        logger.info(
            "Invoking LLM model %s for %s (attempt %d)", self.model, request.city.name, request.attempt
        )
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(request)},
                ],
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
            raw = resp.choices[0].message.content
        except Exception as exc:
            raise ProposerFailure(f"proposer call failed: {exc}") from exc

        try:
            payload = json.loads(raw or "")
        except ValueError as exc:
            raise ProposerFailure("proposer returned invalid JSON") from exc

        activities = payload.get("activities") if isinstance(payload, dict) else None
        if not isinstance(activities, list):
            raise ProposerFailure("proposer response has no activities list")
        logger.info("LLM proposed %d activities", len(activities))
        return activities
