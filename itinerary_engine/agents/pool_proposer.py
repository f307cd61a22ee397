"""Proposer that draws from the city's stored place pool instead of a model."""
from __future__ import annotations

from typing import Any, Dict, List

from itinerary_engine.errors import ProposerFailure
from itinerary_engine.logging_setup import get_logger
from itinerary_engine.schemas import ProposalRequest

logger = get_logger(__name__)


class PlacePoolProposer:
    def __init__(self, store: Any):
        self.store = store

    def propose(self, request: ProposalRequest) -> List[Dict[str, Any]]:
        places = self.store.load_places(request.city.id)
        if not places:
            raise ProposerFailure(f"no places stored for city {request.city.id}")
        logger.info("Proposing %d pooled places for %s", len(places), request.city.name)
        return [place.model_dump(mode="json") for place in places]
