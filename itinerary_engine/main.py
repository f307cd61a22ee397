from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import OpenAI
from pydantic import ValidationError

from itinerary_engine.agents.candidate_intake import intake_candidates
from itinerary_engine.agents.pool_proposer import PlacePoolProposer
from itinerary_engine.config import Settings, load_settings
from itinerary_engine.errors import PlannerError
from itinerary_engine.llm import OpenAIItineraryProposer
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.orchestrator import GenerationOrchestrator
from itinerary_engine.schemas import ActivityEdit, GenerationRequest, RecommendationRequest, TripCreate
from itinerary_engine.store import InMemoryTripStore
from itinerary_engine.tools.place_details import PlaceDetailsClient

logger = get_logger(__name__)


def build_orchestrator(settings: Settings) -> GenerationOrchestrator:
    """Construct the process-wide clients once and wire them into the orchestrator."""
    store = InMemoryTripStore()
    if settings.openai_api_key:
        proposer: Any = OpenAIItineraryProposer(OpenAI(api_key=settings.openai_api_key), settings.proposer_model)
    else:
        logger.warning("OPENAI_API_KEY not set; proposing activities from stored place pools")
        proposer = PlacePoolProposer(store)
    enricher = PlaceDetailsClient(settings.google_places_api_key) if settings.google_places_api_key else None
    return GenerationOrchestrator(store, proposer, enricher, settings)


def _validate(model: Any, payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc


def create_app(orchestrator: GenerationOrchestrator | None = None, settings: Settings | None = None) -> FastAPI:
    settings = settings or (orchestrator.settings if orchestrator else load_settings())
    orchestrator = orchestrator or build_orchestrator(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await orchestrator.shutdown()

    app = FastAPI(title="Itinerary Engine API", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    # Operators can narrow this via ITINERARY_ALLOWED_ORIGINS.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PlannerError)
    async def planner_error(_: Request, exc: PlannerError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": {"code": exc.code, "message": exc.message, "retryable": exc.retryable}},
        )

    @app.post("/api/trips", status_code=201)
    async def create_trip(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        trip = orchestrator.create_trip(_validate(TripCreate, payload))
        return trip.model_dump(mode="json")

    @app.get("/api/trips/{trip_id}")
    async def get_trip(trip_id: str) -> Dict[str, Any]:
        return orchestrator.get_trip(trip_id).model_dump(mode="json")

    @app.post("/api/trips/{trip_id}/generate", status_code=202)
    async def generate(trip_id: str, payload: Dict[str, Any] | None = Body(None)) -> Dict[str, Any]:
        request = _validate(GenerationRequest, payload or {})
        trip = await orchestrator.start_generation(trip_id, request.preferences)
        return {"id": trip.id, "status": trip.status.value, "progress": trip.progress}

    @app.post("/api/trips/{trip_id}/regenerate", status_code=202)
    async def regenerate(trip_id: str) -> Dict[str, Any]:
        trip = await orchestrator.regenerate(trip_id)
        return {
            "id": trip.id,
            "status": trip.status.value,
            "progress": trip.progress,
            "attempts_count": trip.attempts_count,
        }

    @app.post("/api/trips/{trip_id}/activities", status_code=201)
    async def add_activity(trip_id: str, place_id: str = Body(..., embed=True)) -> Dict[str, Any]:
        return orchestrator.add_activity(trip_id, place_id).model_dump(mode="json")

    @app.post("/api/trips/{trip_id}/activities/rebalance")
    async def rebalance(trip_id: str) -> Dict[str, Any]:
        return orchestrator.rebalance(trip_id).model_dump(mode="json")

    @app.patch("/api/trips/{trip_id}/activities/{activity_id}")
    async def edit_activity(trip_id: str, activity_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        edit = _validate(ActivityEdit, payload)
        return orchestrator.edit_activity(trip_id, activity_id, edit.start).model_dump(mode="json")

    @app.delete("/api/trips/{trip_id}/activities/{activity_id}")
    async def remove_activity(trip_id: str, activity_id: str) -> Dict[str, Any]:
        return orchestrator.remove_activity(trip_id, activity_id).model_dump(mode="json")

    @app.put("/api/cities/{city_id}/places")
    async def load_places(city_id: str, payload: List[Any] = Body(...)) -> Dict[str, Any]:
        places, invalid = intake_candidates(payload)
        orchestrator.store.save_places(city_id, places)
        return {
            "city_id": city_id,
            "stored": len(places),
            "invalid": [item.model_dump(mode="json") for item in invalid],
        }

    @app.post("/api/cities/{city_id}/recommendations")
    async def recommendations(city_id: str, payload: Dict[str, Any] | None = Body(None)) -> Dict[str, Any]:
        params = _validate(RecommendationRequest, payload or {})
        ranked = orchestrator.get_recommendations(city_id, params)
        return {"city_id": city_id, "results": [item.model_dump(mode="json") for item in ranked]}

    return app


app = create_app()
