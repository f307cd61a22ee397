import datetime as dt
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

MEAL_TYPES = ("breakfast", "lunch", "dinner")
MEAL_CATEGORIES = frozenset({"restaurant", "cafe", "bakery", "meal_takeaway", "dining", "food_court"})
NIGHTLIFE_CATEGORIES = frozenset({"bar", "night_club"})

MealType = Literal["breakfast", "lunch", "dinner"]
StartTime = Literal["early", "mid", "late"]
CrowdPreference = Literal["popular", "hidden", "mixed"]
DayPart = Literal["morning", "afternoon", "evening"]
TripBudget = Literal["budget", "moderate", "luxury"]


def normalise_tags(values: Any) -> List[str]:
    """Lower-case, underscore and de-duplicate tags while keeping their order."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    out: List[str] = []
    for value in values:
        if value is None:
            continue
        tag = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        if tag and tag not in out:
            out.append(tag)
    return out


# ------- Preference model -------
class CuisinePreferences(BaseModel):
    model_config = ConfigDict(extra="forbid")

    preferred: List[str] = Field(default_factory=list)
    avoided: List[str] = Field(default_factory=list)

    @field_validator("preferred", "avoided", mode="before")
    @classmethod
    def _tags(cls, value: Any) -> List[str]:
        return normalise_tags(value)

    @model_validator(mode="after")
    def _disjoint(self) -> "CuisinePreferences":
        overlap = sorted(set(self.preferred) & set(self.avoided))
        if overlap:
            raise ValueError(f"cuisines cannot be both preferred and avoided: {', '.join(overlap)}")
        return self


class MealImportance(BaseModel):
    model_config = ConfigDict(extra="forbid")

    breakfast: bool = False
    lunch: bool = False
    dinner: bool = False

    def wanted(self) -> List[str]:
        return [meal for meal in MEAL_TYPES if getattr(self, meal)]


class PreferenceProfile(BaseModel):
    """A traveller's tastes. Defaults live here and nowhere else."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    interests: List[str] = Field(default_factory=list)
    price_tier: int = Field(
        2, ge=1, le=4, validation_alias=AliasChoices("price_tier", "priceTier", "pricePreference")
    )
    energy_level: int = Field(2, ge=1, le=3, validation_alias=AliasChoices("energy_level", "energyLevel"))
    preferred_start_time: StartTime = Field(
        "mid", validation_alias=AliasChoices("preferred_start_time", "preferredStartTime")
    )
    dietary_restrictions: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("dietary_restrictions", "dietaryRestrictions")
    )
    cuisine_preferences: CuisinePreferences = Field(
        default_factory=CuisinePreferences,
        validation_alias=AliasChoices("cuisine_preferences", "cuisinePreferences"),
    )
    meal_importance: MealImportance = Field(
        default_factory=MealImportance, validation_alias=AliasChoices("meal_importance", "mealImportance")
    )
    transport_modes: List[str] = Field(
        default_factory=lambda: ["walking", "taxi"],
        validation_alias=AliasChoices("transport_modes", "transportModes", "transportPreferences"),
    )
    crowd_preference: CrowdPreference = Field(
        "mixed", validation_alias=AliasChoices("crowd_preference", "crowdPreference")
    )
    best_time_of_day: List[DayPart] = Field(
        default_factory=lambda: ["morning", "afternoon"],
        validation_alias=AliasChoices("best_time_of_day", "bestTimeOfDay"),
    )
    prefers_indoor: List[DayPart] = Field(
        default_factory=lambda: ["afternoon"], validation_alias=AliasChoices("prefers_indoor", "prefersIndoor")
    )
    prefers_outdoor: List[DayPart] = Field(
        default_factory=lambda: ["morning"], validation_alias=AliasChoices("prefers_outdoor", "prefersOutdoor")
    )

    @field_validator(
        "interests",
        "transport_modes",
        "best_time_of_day",
        "prefers_indoor",
        "prefers_outdoor",
        mode="before",
    )
    @classmethod
    def _tags(cls, value: Any) -> List[str]:
        return normalise_tags(value)

    @field_validator("dietary_restrictions", mode="before")
    @classmethod
    def _diet(cls, value: Any) -> List[str]:
        # "none" is a UI choice, not a restriction
        return [tag for tag in normalise_tags(value) if tag != "none"]


def coerce_profile(raw: Any) -> PreferenceProfile:
    """Build a profile, replacing any malformed field with its default."""
    if isinstance(raw, PreferenceProfile):
        return raw
    if not isinstance(raw, dict):
        return PreferenceProfile()
    clean: Dict[str, Any] = {}
    for key, value in raw.items():
        try:
            PreferenceProfile.model_validate({key: value})
        except ValidationError:
            continue
        clean[key] = value
    return PreferenceProfile.model_validate(clean)


# ------- Places -------
class GeoPoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lat: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lng", "longitude", "lon"))


class DayTime(BaseModel):
    """A point in the week. ``day`` follows the Places convention: 0 = Sunday."""

    day: int = Field(..., ge=0, le=6)
    hour: int = Field(0, ge=0, le=24)
    minute: int = Field(0, ge=0, le=59)

    @model_validator(mode="before")
    @classmethod
    def _from_hhmm(cls, data: Any) -> Any:
        # legacy Places payloads carry {"day": 1, "time": "0930"}
        if isinstance(data, dict) and "time" in data and "hour" not in data:
            raw = str(data.get("time") or "").replace(":", "")
            if len(raw) == 4 and raw.isdigit():
                data = {**data, "hour": int(raw[:2]), "minute": int(raw[2:])}
        return data

    @property
    def minute_of_week(self) -> int:
        return self.day * 1440 + self.hour * 60 + self.minute


class OpeningPeriod(BaseModel):
    open: DayTime
    close: Optional[DayTime] = None


class OpeningHours(BaseModel):
    periods: List[OpeningPeriod] = Field(default_factory=list)

    @property
    def known(self) -> bool:
        return bool(self.periods)


class CandidateActivity(BaseModel):
    """A place proposal. Immutable: scheduling only binds it to a time slot."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    category: str = "attraction"
    location: Optional[GeoPoint] = None
    address: str = ""
    place_ref: Optional[str] = Field(None, validation_alias=AliasChoices("place_ref", "placeId", "place_id"))
    duration_minutes: int = Field(
        60, gt=0, le=24 * 60, validation_alias=AliasChoices("duration_minutes", "durationMinutes", "duration")
    )
    opening_hours: Optional[OpeningHours] = Field(
        None, validation_alias=AliasChoices("opening_hours", "openingHours")
    )
    rating: float = Field(0.0, ge=0, le=5)
    review_count: int = Field(0, ge=0, validation_alias=AliasChoices("review_count", "reviewCount"))
    price_tier: Optional[int] = Field(
        None, ge=1, le=4, validation_alias=AliasChoices("price_tier", "priceTier", "priceLevel")
    )
    tags: List[str] = Field(default_factory=list)
    photos: List[str] = Field(default_factory=list)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> str:
        tags = normalise_tags(value)
        return tags[0] if tags else "attraction"

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, value: Any) -> List[str]:
        return normalise_tags(value)

    @property
    def is_meal(self) -> bool:
        return self.category in MEAL_CATEGORIES

    @property
    def is_nightlife(self) -> bool:
        return self.category in NIGHTLIFE_CATEGORIES

    @property
    def hours_known(self) -> bool:
        return self.opening_hours is not None and self.opening_hours.known

    @property
    def is_must_see(self) -> bool:
        return "must_see" in self.tags

    def terms(self) -> set:
        return {self.category, *self.tags}


class PlaceDetails(BaseModel):
    """Fields returned by the place-detail enrichment service. Anything may be missing."""

    place_ref: str
    address: Optional[str] = None
    location: Optional[GeoPoint] = None
    opening_hours: Optional[OpeningHours] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    review_count: Optional[int] = Field(None, ge=0)
    price_tier: Optional[int] = Field(None, ge=1, le=4)
    photos: List[str] = Field(default_factory=list)


# ------- Scheduling -------
class DateRange(BaseModel):
    start: dt.date
    end: dt.date

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("start date must not be after end date")
        return self

    def days(self) -> List[dt.date]:
        span = (self.end - self.start).days
        return [self.start + dt.timedelta(days=offset) for offset in range(span + 1)]


class ScheduledActivity(BaseModel):
    activity: CandidateActivity
    date: dt.date
    start: dt.datetime
    end: dt.datetime
    sequence: int = 0
    locked: bool = False
    meal: Optional[MealType] = None
    warning: Optional[str] = None

    @model_validator(mode="after")
    def _interval(self) -> "ScheduledActivity":
        if self.end <= self.start:
            raise ValueError("scheduled activity must end after it starts")
        return self

    @property
    def id(self) -> str:
        return self.activity.id

    def overlaps(self, start: dt.datetime, end: dt.datetime, buffer_minutes: int = 0) -> bool:
        pad = dt.timedelta(minutes=buffer_minutes)
        return start < self.end + pad and self.start - pad < end


class UnscheduledReason(str, Enum):
    NO_OPENING_HOURS_MATCH = "no_opening_hours_match"
    NO_TIME_SLOT = "no_time_slot"
    DAILY_CAP_REACHED = "daily_cap_reached"
    EXCLUDED_BY_PREFERENCES = "excluded_by_preferences"
    INVALID_CANDIDATE = "invalid_candidate"


class UnscheduledActivity(BaseModel):
    # activity is None only for proposer entries that failed validation
    activity: Optional[CandidateActivity] = None
    reason: UnscheduledReason
    detail: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


class ScheduleResult(BaseModel):
    scheduled: List[ScheduledActivity] = Field(default_factory=list)
    unscheduled: List[UnscheduledActivity] = Field(default_factory=list)


# ------- Recommendations -------
class ScoringWeights(BaseModel):
    preference: float = Field(0.30, ge=0)
    quality: float = Field(0.25, ge=0)
    price: float = Field(0.15, ge=0)
    crowd: float = Field(0.10, ge=0)
    time_of_day: float = Field(0.10, ge=0)
    proximity: float = Field(0.10, ge=0)


class ScoringContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    budget: Optional[TripBudget] = None
    start_time: Optional[str] = Field(
        None, pattern=r"^\d{2}:\d{2}$", validation_alias=AliasChoices("start_time", "startTime")
    )
    date: Optional[dt.date] = None
    current_location: Optional[GeoPoint] = Field(
        None, validation_alias=AliasChoices("current_location", "currentLocation")
    )
    crowd_preference: Optional[CrowdPreference] = Field(
        None, validation_alias=AliasChoices("crowd_preference", "crowdPreference")
    )

    @field_validator("budget", mode="before")
    @classmethod
    def _budget(cls, value: Any) -> Any:
        # unknown budgets fall back to the profile-derived default
        if isinstance(value, str) and value.strip().lower() in ("budget", "moderate", "luxury"):
            return value.strip().lower()
        return None


class RecommendationScore(BaseModel):
    candidate: CandidateActivity
    score: float
    factors: Dict[str, float] = Field(default_factory=dict)
    excluded: bool = False
    exclusion_reason: Optional[str] = None


class RecommendationRequest(BaseModel):
    preferences: Dict[str, Any] = Field(default_factory=dict)
    context: ScoringContext = Field(default_factory=ScoringContext)
    category: Optional[Literal["restaurants", "attractions"]] = None
    limit: int = Field(20, ge=1, le=100)


# ------- Trips -------
class TripStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    BASIC_READY = "basic_ready"
    COMPLETE = "complete"
    ERROR = "error"


class City(BaseModel):
    id: str
    name: str = Field(..., min_length=1)
    location: Optional[GeoPoint] = None


class Trip(BaseModel):
    id: str
    title: Optional[str] = None
    city: Optional[City] = None
    start_date: dt.date
    end_date: dt.date
    preferences: Optional[PreferenceProfile] = None
    status: TripStatus = TripStatus.DRAFT
    progress: int = Field(0, ge=0, le=100)
    attempts_count: int = Field(0, ge=0)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    scheduled: List[ScheduledActivity] = Field(default_factory=list)
    unscheduled: List[UnscheduledActivity] = Field(default_factory=list)
    last_rebalanced_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @model_validator(mode="after")
    def _dates(self) -> "Trip":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    @property
    def date_range(self) -> DateRange:
        return DateRange(start=self.start_date, end=self.end_date)


class ProposalRequest(BaseModel):
    city: City
    date_range: DateRange
    preferences: PreferenceProfile
    attempt: int = 0


# ------- API payloads -------
class TripCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    city: City
    start_date: dt.date
    end_date: dt.date
    title: Optional[str] = None
    preferences: Optional[PreferenceProfile] = None

    @model_validator(mode="after")
    def _dates(self) -> "TripCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class GenerationRequest(BaseModel):
    preferences: Optional[Dict[str, Any]] = None


class ActivityEdit(BaseModel):
    start: dt.datetime
