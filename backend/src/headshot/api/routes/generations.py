"""Headshot generation API endpoints.

This module implements REST endpoints for the generation job lifecycle:
- POST /api/generations - Charge credits and start a generation
- GET /api/generations - Paginated history of the caller's jobs
- GET /api/generations/{job_id} - Poll a job's status
- POST /api/generations/{job_id}/cancel - Best-effort cancellation

Submission returns as soon as the job row exists; clients poll the status
endpoint until the job is completed or failed.
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from headshot.api.dependencies import get_current_user_id, get_generation_service
from headshot.models.generation_job import GenerationJob
from headshot.services.exceptions import (
    InsufficientCreditsError,
    JobNotFoundError,
    ProviderNotConfiguredError,
    ValidationError,
)
from headshot.services.generation import GenerationService
from headshot.services.providers.base import GenerationResult

logger = structlog.get_logger()
router = APIRouter(prefix="/api/generations", tags=["generations"])


# Request/Response Models


class CreateGenerationRequest(BaseModel):
    """Request model for starting a generation."""

    style_id: str = Field(..., min_length=1, description="Catalog style id")
    input_image_url: str | None = Field(
        default=None,
        description="Source photo URL; omit for text-to-image",
    )


class CreateGenerationResponse(BaseModel):
    job_id: str
    status: str


class GenerationStatusResponse(BaseModel):
    """Client-facing job status."""

    id: str
    status: str = Field(..., description="pending, processing, completed or failed")
    image_url: str | None = Field(default=None, description="Set only when completed")
    error: str | None = Field(default=None, description="Set only when failed")


class GenerationDTO(BaseModel):
    """Data Transfer Object for a job in history listings."""

    id: str
    status: str
    style_id: str
    provider: str
    input_image_url: str | None = None
    image_url: str | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime


class GenerationsResponse(BaseModel):
    generations: list[GenerationDTO]
    total: int
    offset: int
    limit: int


class CancelGenerationResponse(BaseModel):
    cancelled: bool


def _to_dto(job: GenerationJob, result: GenerationResult) -> GenerationDTO:
    return GenerationDTO(
        id=job.id,
        status=result.status.value,
        style_id=job.style_id,
        provider=job.provider,
        input_image_url=job.input_image_url,
        image_url=result.image_url,
        error=result.error,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


# API Endpoints


@router.post("", response_model=CreateGenerationResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_generation(
    request: CreateGenerationRequest,
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> CreateGenerationResponse:
    """Charge one generation and start it in the background.

    Raises:
        HTTPException 400: Unknown style or malformed image URL
        HTTPException 402: Not enough credits (no job is created)
        HTTPException 503: Generation backend not configured
    """
    try:
        job = await service.submit_generation(
            user_id=user_id,
            style_id=request.style_id,
            input_image_url=request.input_image_url,
        )
    except ValidationError as e:
        logger.info("generation.rejected", user_id=user_id, reason=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InsufficientCreditsError as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "Insufficient credits",
                "required": e.required,
                "available": e.available,
            },
        )
    except ProviderNotConfiguredError as e:
        logger.error("generation.provider_not_configured", provider=e.provider_id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return CreateGenerationResponse(job_id=job.id, status=job.status.value)


@router.get("", response_model=GenerationsResponse)
async def list_generations(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> GenerationsResponse:
    """Return the caller's jobs, newest first."""
    jobs, total = await service.list_generations(user_id, limit=limit, offset=offset)
    return GenerationsResponse(
        generations=[_to_dto(job, GenerationResult.from_job(job, service.stale_after)) for job in jobs],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.get("/{job_id}", response_model=GenerationStatusResponse)
async def get_generation_status(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> GenerationStatusResponse:
    """Poll a job. Unknown ids answer ``pending`` rather than 404."""
    result = await service.query_generation_status(job_id, user_id=user_id)
    return GenerationStatusResponse(
        id=job_id,
        status=result.status.value,
        image_url=result.image_url,
        error=result.error,
    )


@router.post("/{job_id}/cancel", response_model=CancelGenerationResponse)
async def cancel_generation(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    service: GenerationService = Depends(get_generation_service),
) -> CancelGenerationResponse:
    """Best-effort cancellation; polling may still see the job finish.

    Raises:
        HTTPException 404: Job does not exist or belongs to another user
    """
    try:
        cancelled = await service.cancel_generation(user_id, job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return CancelGenerationResponse(cancelled=cancelled)
