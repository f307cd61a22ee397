"""Process configuration, read once from the environment (and ``.env``)."""
from __future__ import annotations

import json
import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import ScoringWeights

logger = get_logger(__name__)


class SchedulerConfig(BaseModel):
    travel_buffer_minutes: int = Field(30, ge=0)
    slot_step_minutes: int = Field(15, gt=0)


class Settings(BaseModel):
    openai_api_key: str | None = None
    proposer_model: str = "gpt-4o-mini"
    google_places_api_key: str | None = None
    max_retry_attempts: int = Field(3, ge=0)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    scoring_weights: ScoringWeights = Field(default_factory=ScoringWeights)
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %d", name, raw, default)
        return default


def _weights_env() -> ScoringWeights:
    raw = os.getenv("ITINERARY_SCORING_WEIGHTS")
    if not raw:
        return ScoringWeights()
    try:
        overrides = json.loads(raw)
        return ScoringWeights.model_validate({**ScoringWeights().model_dump(), **overrides})
    except (ValueError, TypeError, ValidationError):
        logger.warning("ITINERARY_SCORING_WEIGHTS is not a valid weight object; using defaults", exc_info=True)
        return ScoringWeights()


def load_settings() -> Settings:
    """Build settings from the environment, loading a ``.env`` file if present."""
    load_dotenv()

    raw_origins = os.getenv("ITINERARY_ALLOWED_ORIGINS") or "*"
    origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()] or ["*"]

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        proposer_model=os.getenv("ITINERARY_PROPOSER_MODEL") or "gpt-4o-mini",
        google_places_api_key=os.getenv("GOOGLE_PLACES_API_KEY") or None,
        max_retry_attempts=max(0, _int_env("ITINERARY_MAX_RETRY_ATTEMPTS", 3)),
        scheduler=SchedulerConfig(
            travel_buffer_minutes=max(0, _int_env("ITINERARY_TRAVEL_BUFFER_MINUTES", 30)),
        ),
        scoring_weights=_weights_env(),
        allowed_origins=origins,
    )
