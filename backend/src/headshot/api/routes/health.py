"""Liveness endpoint backed by a database round trip."""

import structlog
from fastapi import APIRouter, Request, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger()
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request, response: Response) -> dict:
    """Report 200 when the database answers, 503 with the error otherwise."""
    try:
        async with request.app.state.session_factory() as session:
            await session.scalar(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("health_check.failed", error=str(e), error_type=type(e).__name__)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unhealthy", "error": {"type": type(e).__name__, "message": str(e)}}

    return {"status": "healthy"}
