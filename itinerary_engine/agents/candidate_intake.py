"""Utility agent that turns raw proposer entries into validated candidates."""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Tuple

from pydantic import ValidationError

from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import CandidateActivity, UnscheduledActivity, UnscheduledReason

logger = get_logger(__name__)

DEFAULT_DURATIONS = {
    "restaurant": 90,
    "dining": 90,
    "cafe": 45,
    "bakery": 30,
    "meal_takeaway": 30,
    "food_court": 45,
    "museum": 120,
    "art_gallery": 90,
    "park": 60,
    "bar": 90,
    "night_club": 120,
}
DEFAULT_DURATION = 60

_ALIASES = {
    "type": "category",
    "kind": "category",
    "lat": "latitude",
    "lng": "longitude",
    "lon": "longitude",
}


def intake_candidates(entries: Iterable[Any]) -> Tuple[List[CandidateActivity], List[UnscheduledActivity]]:
    """Validate proposer output.

    Returns ``(candidates, invalid)``. Malformed entries never raise; they come
    back as ``invalid_candidate`` records holding the raw payload so the trip
    can still show what the proposer suggested.
    """
    candidates: List[CandidateActivity] = []
    invalid: List[UnscheduledActivity] = []
    seen: set = set()
    ids: set = set()

    for index, entry in enumerate(entries or []):
        if not isinstance(entry, dict):
            invalid.append(_invalid({"value": str(entry)}, "entry is not an object"))
            continue
        try:
            candidate = CandidateActivity.model_validate(_normalise(entry, index))
        except (ValidationError, TypeError, ValueError) as exc:
            invalid.append(_invalid(entry, _first_error(exc)))
            continue

        key = (candidate.name.strip().lower(), candidate.address.strip().lower())
        if key in seen:
            logger.info("Dropping duplicate proposal %r", candidate.name)
            continue
        seen.add(key)
        if candidate.id in ids:
            fresh = _unique_id(candidate.id, ids)
            logger.info("Proposal %r reuses id %s; renamed to %s", candidate.name, candidate.id, fresh)
            candidate = candidate.model_copy(update={"id": fresh})
        ids.add(candidate.id)
        candidates.append(candidate)

    if invalid:
        logger.warning("Proposer returned %d malformed entr%s", len(invalid), "y" if len(invalid) == 1 else "ies")
    return candidates, invalid


def _normalise(entry: Dict[str, Any], index: int) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key, value in entry.items():
        data[_ALIASES.get(key, key)] = value

    if "location" not in data and data.get("latitude") is not None and data.get("longitude") is not None:
        data["location"] = {"lat": data.pop("latitude"), "lng": data.pop("longitude")}

    name = str(data.get("name") or "").strip()
    data["name"] = name
    if not data.get("id"):
        data["id"] = f"cand-{index}-{_slug(name) or 'activity'}"
    else:
        data["id"] = str(data["id"])

    if not any(data.get(key) for key in ("duration_minutes", "durationMinutes", "duration")):
        derived = _span_minutes(data.get("startTime"), data.get("endTime"))
        category = str(data.get("category") or "").strip().lower().replace(" ", "_")
        data["duration_minutes"] = derived or DEFAULT_DURATIONS.get(category, DEFAULT_DURATION)

    for key in ("priceLevel", "price_tier", "priceTier"):
        if key in data and data[key] is not None:
            data[key] = _price_tier(data[key])

    if data.get("address") is None:
        data["address"] = ""
    return data


def _span_minutes(start: Any, end: Any) -> int | None:
    begin, finish = _clock(start), _clock(end)
    if begin is None or finish is None:
        return None
    span = finish - begin
    if span <= 0:
        span += 24 * 60
    return span


def _clock(value: Any) -> int | None:
    if not isinstance(value, str):
        return None
    match = re.fullmatch(r"\s*(\d{1,2}):(\d{2})\s*", value)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour * 60 + minute


def _price_tier(value: Any) -> int | None:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped and set(stripped) == {"$"}:
            return min(4, len(stripped))
        try:
            value = int(stripped)
        except ValueError:
            return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(1, min(4, int(value)))


def _unique_id(base: str, taken: set) -> str:
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:40]


def _invalid(raw: Dict[str, Any], detail: str) -> UnscheduledActivity:
    return UnscheduledActivity(
        activity=None,
        reason=UnscheduledReason.INVALID_CANDIDATE,
        detail=detail,
        raw=raw,
    )


def _first_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "entry"
            return f"{field}: {first.get('msg', 'invalid value')}"
    return str(exc) or exc.__class__.__name__
