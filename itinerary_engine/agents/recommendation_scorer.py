"""Recommendation scoring: rank candidate places against a preference profile.

Each factor is normalised to [0, 1] and combined with ``ScoringWeights``.
Avoided cuisines and explicit dietary conflicts are hard exclusions: the
candidate gets ``-inf`` and never appears in a ranked list.
"""
from __future__ import annotations

import datetime as dt
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import (
    CandidateActivity,
    GeoPoint,
    PreferenceProfile,
    RecommendationScore,
    ScoringContext,
    ScoringWeights,
)
from itinerary_engine.tools.opening_hours import intervals_cover, open_intervals

logger = get_logger(__name__)

# Interest tags expand to the place categories that satisfy them.
INTEREST_CATEGORIES: Dict[str, frozenset] = {
    "outdoors": frozenset({"park", "hiking_area", "beach", "garden", "national_park", "zoo", "viewpoint", "outdoor"}),
    "arts": frozenset({"museum", "art_gallery", "gallery", "theater", "performing_arts_theater"}),
    "food": frozenset({"restaurant", "cafe", "bakery", "market", "food_court", "meal_takeaway", "dining"}),
    "entertainment": frozenset({"night_club", "bar", "amusement_park", "casino", "movie_theater", "concert_hall"}),
    "photography": frozenset({"landmark", "viewpoint", "tourist_attraction", "monument", "bridge"}),
    "history": frozenset({"historic_site", "historical_landmark", "monument", "castle", "church", "museum"}),
    "shopping": frozenset({"shopping_mall", "market", "store"}),
    "relaxation": frozenset({"spa", "park", "beach"}),
}

DIETARY_CONFLICTS: Dict[str, frozenset] = {
    "vegetarian": frozenset({"steakhouse", "steak_house", "barbecue", "butcher"}),
    "vegan": frozenset({"steakhouse", "steak_house", "barbecue", "butcher", "dairy", "cheese_shop"}),
    "halal": frozenset({"pork"}),
    "kosher": frozenset({"pork", "shellfish"}),
}

BUDGET_TIERS: Dict[str, Tuple[int, ...]] = {
    "budget": (1,),
    "moderate": (2,),
    "luxury": (3, 4),
}
_TIER_BUDGET = {1: "budget", 2: "moderate", 3: "luxury", 4: "luxury"}

TRANSPORT_RANGE_KM = {
    "walking": 1.0,
    "public_transit": 3.0,
    "taxi": 5.0,
    "driving": 8.0,
}

REVIEW_SATURATION = 10_000
_LOCAL_TAGS = frozenset({"local", "hidden_gem", "quiet"})
_BUSY_TAGS = frozenset({"busy", "crowded", "popular"})

# One date per weekday, Sunday first, for "open on any day" checks.
_REFERENCE_WEEK = [dt.date(2024, 1, 7) + dt.timedelta(days=offset) for offset in range(7)]


def resolve_budget(profile: PreferenceProfile, context: ScoringContext) -> str:
    if context.budget:
        return context.budget
    return _TIER_BUDGET.get(profile.price_tier, "moderate")


def exclusion_reason(candidate: CandidateActivity, profile: PreferenceProfile) -> Optional[str]:
    terms = candidate.terms()
    for cuisine in profile.cuisine_preferences.avoided:
        if cuisine in terms or f"{cuisine}_restaurant" in terms:
            return f"avoided_cuisine:{cuisine}"
    for restriction in profile.dietary_restrictions:
        if f"not_{restriction}" in terms or terms & DIETARY_CONFLICTS.get(restriction, frozenset()):
            return f"dietary_conflict:{restriction}"
    return None


def _preference_factor(candidate: CandidateActivity, profile: PreferenceProfile) -> float:
    terms = candidate.terms()

    if profile.interests:
        matched = sum(
            1
            for interest in profile.interests
            if interest in terms or terms & INTEREST_CATEGORIES.get(interest, frozenset())
        )
        interest_score = 0.6 + 0.4 * matched / len(profile.interests) if matched else 0.0
    else:
        interest_score = 0.5

    score = interest_score
    if candidate.is_meal:
        preferred = profile.cuisine_preferences.preferred
        if not preferred:
            cuisine_score = 0.5
        elif any(c in terms or f"{c}_restaurant" in terms for c in preferred):
            cuisine_score = 1.0
        else:
            cuisine_score = 0.3
        score = (interest_score + cuisine_score) / 2

    for restriction in profile.dietary_restrictions:
        if {restriction, f"{restriction}_restaurant", f"{restriction}_friendly"} & terms:
            score += 0.2
            break
    return _clamp(score)


def _price_factor(candidate: CandidateActivity, profile: PreferenceProfile, budget: str) -> float:
    tier = candidate.price_tier or 2
    targets = BUDGET_TIERS.get(budget, BUDGET_TIERS["moderate"])
    distance = min(abs(tier - target) for target in targets)
    budget_fit = 1.0 - (distance / 3.0) ** 2
    profile_fit = 1.0 - (abs(tier - profile.price_tier) / 3.0) ** 2
    return _clamp(0.7 * budget_fit + 0.3 * profile_fit)


def _review_volume(candidate: CandidateActivity) -> float:
    return min(1.0, math.log1p(candidate.review_count) / math.log1p(REVIEW_SATURATION))


def _quality_factor(candidate: CandidateActivity) -> float:
    return _clamp(0.6 * candidate.rating / 5.0 + 0.4 * _review_volume(candidate))


def _crowd_factor(candidate: CandidateActivity, crowd: str) -> float:
    if crowd == "mixed":
        return 0.5
    popularity = _review_volume(candidate)
    if candidate.is_must_see:
        popularity = max(popularity, 0.9)
    if set(candidate.tags) & _BUSY_TAGS:
        popularity = max(popularity, 0.8)
    if crowd == "popular":
        return _clamp(popularity)
    bonus = 0.2 if set(candidate.tags) & _LOCAL_TAGS else 0.0
    return _clamp(1.0 - popularity + bonus)


def _day_part(minute: int) -> str:
    if minute < 12 * 60:
        return "morning"
    if minute < 17 * 60:
        return "afternoon"
    return "evening"


def _parse_start(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    hours, _, minutes = value.partition(":")
    try:
        hour, minute = int(hours), int(minutes)
    except ValueError:
        return None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return hour * 60 + minute


def _time_factor(candidate: CandidateActivity, profile: PreferenceProfile, context: ScoringContext) -> float:
    start = _parse_start(context.start_time)
    if start is None:
        return 1.0

    intervals = open_intervals(candidate.opening_hours)
    end = start + candidate.duration_minutes
    days: Sequence[dt.date] = [context.date] if context.date else _REFERENCE_WEEK
    open_fit = 1.0 if any(intervals_cover(intervals, day, start, end) for day in days) else 0.0

    part = _day_part(start)
    if "outdoor" in candidate.tags:
        leaning = 1.0 if part in profile.prefers_outdoor else 0.0
    elif "indoor" in candidate.tags:
        leaning = 1.0 if part in profile.prefers_indoor else 0.0
    else:
        leaning = 1.0 if part in profile.best_time_of_day else 0.5
    return _clamp(0.8 * open_fit + 0.2 * leaning)


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    radius = 6371.0
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * radius * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def _proximity_factor(candidate: CandidateActivity, profile: PreferenceProfile, context: ScoringContext) -> float:
    if context.current_location is None or candidate.location is None:
        return 0.0
    scale = max((TRANSPORT_RANGE_KM.get(mode, 1.0) for mode in profile.transport_modes), default=1.0)
    distance = haversine_km(context.current_location, candidate.location)
    return _clamp(1.0 / (1.0 + distance / scale))


def evaluate_candidate(
    candidate: CandidateActivity,
    profile: PreferenceProfile,
    context: ScoringContext | None = None,
    weights: ScoringWeights | None = None,
) -> RecommendationScore:
    """Score one candidate, including its factor breakdown and exclusion status."""
    context = context or ScoringContext()
    weights = weights or ScoringWeights()

    reason = exclusion_reason(candidate, profile)
    if reason:
        return RecommendationScore(
            candidate=candidate,
            score=float("-inf"),
            factors={},
            excluded=True,
            exclusion_reason=reason,
        )

    crowd = context.crowd_preference or profile.crowd_preference
    factors = {
        "preference": _preference_factor(candidate, profile),
        "quality": _quality_factor(candidate),
        "price": _price_factor(candidate, profile, resolve_budget(profile, context)),
        "crowd": _crowd_factor(candidate, crowd),
        "time_of_day": _time_factor(candidate, profile, context),
        "proximity": _proximity_factor(candidate, profile, context),
    }
    total = sum(getattr(weights, name) * value for name, value in factors.items())
    return RecommendationScore(
        candidate=candidate,
        score=round(total, 6),
        factors={name: round(value, 4) for name, value in factors.items()},
    )


def rank_key(item: RecommendationScore) -> Tuple[float, int, float, str]:
    candidate = item.candidate
    return (-item.score, -candidate.review_count, -candidate.rating, candidate.id)


def partition_candidates(
    candidates: Iterable[CandidateActivity],
    profile: PreferenceProfile,
    context: ScoringContext | None = None,
    weights: ScoringWeights | None = None,
) -> Tuple[List[RecommendationScore], List[RecommendationScore]]:
    """Return ``(ranked, excluded)``; ranked is best first, excluded ordered by id."""
    ranked: List[RecommendationScore] = []
    excluded: List[RecommendationScore] = []
    for candidate in candidates:
        result = evaluate_candidate(candidate, profile, context, weights)
        (excluded if result.excluded else ranked).append(result)
    ranked.sort(key=rank_key)
    excluded.sort(key=lambda item: item.candidate.id)
    if excluded:
        logger.info(
            "Hard-excluded %d candidate(s): %s",
            len(excluded),
            ", ".join(f"{item.candidate.id} ({item.exclusion_reason})" for item in excluded),
        )
    return ranked, excluded


def score_candidates(
    candidates: Iterable[CandidateActivity],
    profile: PreferenceProfile,
    context: ScoringContext | None = None,
    weights: ScoringWeights | None = None,
) -> List[RecommendationScore]:
    """Ranked recommendations; hard-excluded candidates are left out entirely."""
    ranked, _ = partition_candidates(candidates, profile, context, weights)
    return ranked


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))
