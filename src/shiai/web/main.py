"""
Shiai JSON API.

Thin handlers over CompetitionService. Each request gets its own session;
handlers commit once the operation succeeds, and engine errors map to
HTTP status codes in one exception handler.

Run with:
    uvicorn shiai.web.main:app --reload
    python -m shiai.web.main          # host and port from settings
"""

import logging
from functools import lru_cache
from typing import Any, Optional, Union

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from shiai.collaborators import SeedingAssistant
from shiai.config import settings
from shiai.db.models import Match, Performance
from shiai.db.session import get_db, get_session
from shiai.errors import (
    AuthorizationError,
    CompetitionError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from shiai.events import EventPublisher, LoggingPublisher
from shiai.seeding.gemini import GeminiSeedingAssistant
from shiai.services.competition import CompetitionService
from shiai.tasks.progression import BackgroundProgression, ProgressionTrigger

logger = logging.getLogger(__name__)

app = FastAPI(title="Shiai Competition Engine")

ERROR_STATUS = {
    ValidationError: 422,
    AuthorizationError: 403,
    ConflictError: 409,
    NotFoundError: 404,
    ExternalServiceError: 502,
}


@app.exception_handler(CompetitionError)
async def competition_error_handler(request: Request, exc: CompetitionError):
    """Map engine errors to JSON responses."""
    status_code = ERROR_STATUS.get(type(exc), 400)
    logger.info("%s %s -> %d %s", request.method, request.url.path, status_code, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# =============================================================================
# Dependencies
# =============================================================================

@lru_cache
def get_publisher() -> EventPublisher:
    return LoggingPublisher()


@lru_cache
def get_progression() -> ProgressionTrigger:
    return BackgroundProgression(session_factory=get_session, publisher=get_publisher())


@lru_cache
def get_seeding_assistant() -> Optional[SeedingAssistant]:
    if not settings.seeding_assistant_enabled or not settings.gemini_api_key:
        return None
    return GeminiSeedingAssistant()


def get_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    progression: ProgressionTrigger = Depends(get_progression),
    assistant: Optional[SeedingAssistant] = Depends(get_seeding_assistant),
) -> CompetitionService:
    return CompetitionService(
        db,
        seeding_assistant=assistant,
        publisher=publisher,
        progression=progression,
    )


# =============================================================================
# Request bodies
# =============================================================================

class ScoreSubmission(BaseModel):
    judge_id: int
    competitor_id: int
    value: Optional[Union[float, str]] = Field(default=None, description="Forms score")
    tally: Optional[dict[str, int]] = Field(default=None, description="Sparring counts")


class RoundRequest(BaseModel):
    level: str
    competitor_ids: list[int]
    replace: bool = False


class NextLevelRequest(BaseModel):
    from_level: str


class PlacementRequest(BaseModel):
    level: str


class StatusRequest(BaseModel):
    status: str


class BronzeRequest(BaseModel):
    competitor_ids: list[int]


# =============================================================================
# Serializers
# =============================================================================

def _performance_dict(p: Performance) -> dict[str, Any]:
    return {
        "performance_id": p.id,
        "competitor_id": p.competitor_id,
        "level": p.level,
        "performance_order": p.performance_order,
        "status": p.status,
        "final_score": str(p.final_score) if p.final_score is not None else None,
        "place": p.place,
    }


def _match_dict(m: Match) -> dict[str, Any]:
    return {
        "match_id": m.id,
        "level": m.level,
        "position": m.position,
        "status": m.status,
        "competitor_ids": m.competitor_ids,
        "winner_id": m.winner_id,
        "decided_by": m.decided_by,
    }


# =============================================================================
# Scores and results
# =============================================================================

@app.post("/api/units/{unit_kind}/{unit_id}/scores")
async def submit_score(
    unit_kind: str,
    unit_id: int,
    body: ScoreSubmission,
    db: Session = Depends(get_db),
    service: CompetitionService = Depends(get_service),
):
    """Upsert one judge's score and return the unit's current result."""
    value = body.tally if unit_kind == "match" else body.value
    receipt = service.submit_score(body.judge_id, unit_kind, unit_id, body.competitor_id, value)
    db.commit()
    return {"replaced": receipt.replaced, "result": receipt.result.to_dict()}


@app.get("/api/units/{unit_kind}/{unit_id}/result")
async def get_result(
    unit_kind: str,
    unit_id: int,
    service: CompetitionService = Depends(get_service),
):
    return service.get_result(unit_kind, unit_id).to_dict()


@app.post("/api/matches/{match_id}/resolve")
async def resolve_match(
    match_id: int,
    db: Session = Depends(get_db),
    service: CompetitionService = Depends(get_service),
):
    match = service.resolve_match(match_id)
    db.commit()
    return _match_dict(match)


@app.post("/api/matches/{match_id}/status")
async def set_match_status(
    match_id: int,
    body: StatusRequest,
    db: Session = Depends(get_db),
    service: CompetitionService = Depends(get_service),
):
    match = service.matches.set_status(match_id, body.status)
    db.commit()
    return _match_dict(match)


# =============================================================================
# Categories
# =============================================================================

@app.post("/api/categories/{category_id}/rounds", status_code=201)
async def create_round(
    category_id: int,
    body: RoundRequest,
    db: Session = Depends(get_db),
    service: CompetitionService = Depends(get_service),
):
    performances = service.create_round(
        category_id, body.level, body.competitor_ids, replace=body.replace
    )
    db.commit()
    return {"level": body.level, "performances": [_performance_dict(p) for p in performances]}


@app.post("/api/categories/{category_id}/levels/next")
async def generate_next_level(
    category_id: int,
    body: NextLevelRequest,
    db: Session = Depends(get_db),
    service: CompetitionService = Depends(get_service),
):
    outcome = service.generate_next_level(category_id, body.from_level)
    db.commit()
    return outcome.to_dict()


@app.post("/api/categories/{category_id}/draws", status_code=201)
async def generate_draws(
    category_id: int,
    db: Session = Depends(get_db),
    service: CompetitionService = Depends(get_service),
):
    bracket = service.generate_draws(category_id)
    db.commit()
    return bracket.to_dict()


@app.post("/api/categories/{category_id}/bronze", status_code=201)
async def create_bronze_match(
    category_id: int,
    body: BronzeRequest,
    db: Session = Depends(get_db),
    service: CompetitionService = Depends(get_service),
):
    match = service.matches.create_bronze_match(category_id, body.competitor_ids)
    db.commit()
    return _match_dict(match)


@app.post("/api/categories/{category_id}/placements")
async def assign_placements(
    category_id: int,
    body: PlacementRequest,
    db: Session = Depends(get_db),
    service: CompetitionService = Depends(get_service),
):
    performances = service.assign_placements(category_id, body.level)
    db.commit()
    return {"level": body.level, "placements": [_performance_dict(p) for p in performances]}


@app.get("/api/categories/{category_id}/scoreboard")
async def get_scoreboard(
    category_id: int,
    level: str = Query(..., description="Level name, e.g. 'First Round' or 'Semifinal'"),
    service: CompetitionService = Depends(get_service),
):
    return {"level": level, "rows": service.get_scoreboard(category_id, level)}


@app.get("/api/categories/{category_id}/standings")
async def get_standings(
    category_id: int,
    service: CompetitionService = Depends(get_service),
):
    return {"standings": [s.to_dict() for s in service.standings(category_id)]}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "shiai.web.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
