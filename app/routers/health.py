"""Health check endpoint: used by the load balancer and the worker supervisor."""

import logging

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from app.database import check_db_connection
from app.services.scrubbing.rules import DEFAULT_RULES
from app.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    environment: str
    database: str
    rules_loaded: int
    version: str = "1.0.0"


@router.get("/health", response_model=HealthResponse, include_in_schema=False)
def health_check(response: Response) -> HealthResponse:
    """
    Returns 200 if the service is up and the DB is reachable, 503 otherwise.
    Redis is not checked: the API keeps scrubbing inline when the queue is down.
    """
    db_ok = check_db_connection()
    if not db_ok:
        logger.warning("Health check: database unreachable")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(
        status="ok" if db_ok else "degraded",
        environment=settings.environment,
        database="connected" if db_ok else "unreachable",
        rules_loaded=len(DEFAULT_RULES),
    )
