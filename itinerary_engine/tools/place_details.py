from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import CandidateActivity, GeoPoint, OpeningHours, PlaceDetails

logger = get_logger(__name__)

_PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 1,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}


class PlaceDetailsClient:
    """
    Fetch opening hours, rating, price and photos for a place reference.

    Any failure (missing key, HTTP error, malformed body) yields ``None`` so the
    caller keeps what it already knows about the place.
    """
    DETAILS_ENDPOINT = "https://places.googleapis.com/v1/places/{place_ref}"
    FIELD_MASK = ",".join(
        [
            "id",
            "formattedAddress",
            "location",
            "regularOpeningHours",
            "rating",
            "userRatingCount",
            "priceLevel",
            "photos",
        ]
    )

    def __init__(self, api_key: Optional[str] = None, *, timeout: float = 10.0):
        self.api_key = api_key or os.getenv("GOOGLE_PLACES_API_KEY")
        self.timeout = timeout
        if not self.api_key:
            logger.warning("GOOGLE_PLACES_API_KEY not set; place enrichment will be skipped")

    async def fetch(self, place_ref: str) -> Optional[PlaceDetails]:
        if not self.api_key or not place_ref:
            return None
        url = self.DETAILS_ENDPOINT.format(place_ref=place_ref)
        headers = {"X-Goog-Api-Key": self.api_key, "X-Goog-FieldMask": self.FIELD_MASK}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Place details lookup failed for %s", place_ref, exc_info=True)
            return None
        if not isinstance(data, dict):
            logger.warning("Place details for %s were not a JSON object; ignoring", place_ref)
            return None
        return parse_place_details(place_ref, data)


def parse_place_details(place_ref: str, data: Dict[str, Any]) -> PlaceDetails:
    """Map a Places v1 body onto ``PlaceDetails``, dropping fields that do not validate."""
    hours: Optional[OpeningHours] = None
    raw_hours = data.get("regularOpeningHours")
    if isinstance(raw_hours, dict) and raw_hours.get("periods"):
        try:
            hours = OpeningHours.model_validate({"periods": raw_hours["periods"]})
        except ValidationError:
            logger.warning("Unparseable opening hours for %s; treating as unknown", place_ref)

    location: Optional[GeoPoint] = None
    if isinstance(data.get("location"), dict):
        try:
            location = GeoPoint.model_validate(data["location"])
        except ValidationError:
            location = None

    rating = data.get("rating")
    if not isinstance(rating, (int, float)) or not 0 <= rating <= 5:
        rating = None
    reviews = data.get("userRatingCount")
    if not isinstance(reviews, int) or reviews < 0:
        reviews = None

    photos: List[str] = []
    for photo in data.get("photos") or []:
        if isinstance(photo, dict) and photo.get("name"):
            photos.append(str(photo["name"]))

    return PlaceDetails(
        place_ref=place_ref,
        address=data.get("formattedAddress") or None,
        location=location,
        opening_hours=hours,
        rating=rating,
        review_count=reviews,
        price_tier=_PRICE_LEVELS.get(str(data.get("priceLevel") or "")),
        photos=photos[:5],
    )


def merge_details(candidate: CandidateActivity, details: PlaceDetails) -> CandidateActivity:
    """Return a copy of ``candidate`` with every field the details service supplied."""
    update: Dict[str, Any] = {}
    if details.address:
        update["address"] = details.address
    if details.location is not None:
        update["location"] = details.location
    if details.opening_hours is not None and details.opening_hours.known:
        update["opening_hours"] = details.opening_hours
    if details.rating is not None:
        update["rating"] = details.rating
    if details.review_count is not None:
        update["review_count"] = details.review_count
    if details.price_tier is not None:
        update["price_tier"] = details.price_tier
    if details.photos:
        update["photos"] = list(details.photos)
    if not update:
        return candidate
    return candidate.model_copy(update=update)
