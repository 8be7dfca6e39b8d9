"""Provider gateway contract shared by all image generation backends.

A provider turns a GenerateInput into an image URL. The outbound call runs as
a detached asyncio task started by create_generation(); the caller gets the
job id back immediately and is responsible for persisting the outcome.
Status reads come from the job store only and never touch the backend.
"""

import asyncio
import secrets
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

import structlog

from headshot.core.config import Settings
from headshot.models.generation_job import GenerationJob, GenerationStatus
from headshot.services.exceptions import GenerationError
from headshot.uow import UnitOfWorkFactory

logger = structlog.get_logger()

STALE_JOB_ERROR = "Generation timed out"

_ID_ALPHABET = string.ascii_lowercase + string.digits


class GenerationType(str, Enum):
    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_IMAGE = "image-to-image"


@dataclass
class GenerateInput:
    """Everything a backend needs for one generation.

    ``extra`` carries backend-specific options (e.g. ``size``) and, when the
    caller has already allocated one, the ``job_id`` to use.
    """

    prompt: str
    style_id: str
    user_id: str
    input_image_url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationHandle:
    """Returned by create_generation; ``outcome`` resolves to the image URL."""

    job_id: str
    status: GenerationStatus
    generation_type: GenerationType
    outcome: "asyncio.Task[str]"


@dataclass(frozen=True)
class GenerationResult:
    status: GenerationStatus
    image_url: str | None = None
    error: str | None = None

    @classmethod
    def from_job(cls, job: GenerationJob | None, stale_after: timedelta) -> "GenerationResult":
        """Build the client-facing view of a stored job.

        Missing rows read as pending; rows stuck in processing past
        ``stale_after`` read as failed.
        """
        if job is None:
            return cls(status=GenerationStatus.PENDING)

        status = GenerationStatus(job.status)
        if status == GenerationStatus.COMPLETED and job.output_image_url:
            return cls(status=status, image_url=job.output_image_url)
        if status == GenerationStatus.FAILED:
            return cls(status=status, error=job.error or "Generation failed")
        if job.is_stale(stale_after):
            return cls(status=GenerationStatus.FAILED, error=STALE_JOB_ERROR)
        return cls(status=GenerationStatus.PROCESSING)


def determine_generation_type(input: GenerateInput) -> GenerationType:
    """Image-to-image when a source image is given, text-to-image otherwise."""
    if input.input_image_url:
        return GenerationType.IMAGE_TO_IMAGE
    return GenerationType.TEXT_TO_IMAGE


class GenerationProvider(ABC):
    """Base class for image generation backends."""

    id: str = ""
    name: str = ""

    def __init__(self, settings: Settings, uow_factory: UnitOfWorkFactory):
        self.settings = settings
        self.uow_factory = uow_factory
        self.timeout = settings.provider_timeout_seconds

    @abstractmethod
    def is_configured(self) -> bool:
        """Return True if the backend has the credentials it needs."""

    @abstractmethod
    async def _generate(
        self, job_id: str, input: GenerateInput, generation_type: GenerationType
    ) -> str | None:
        """Call the backend and return the output image URL.

        Implementations raise GenerationError for anything they can describe;
        a falsy return value is treated as an empty payload.
        """

    def new_job_id(self, generation_type: GenerationType) -> str:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
        return f"{self.id}_{generation_type.value}_{int(time.time() * 1000)}_{suffix}"

    def create_generation(self, input: GenerateInput) -> GenerationHandle:
        """Start the backend call in the background and return at once.

        A ``job_id`` in ``input.extra`` is used as-is so the caller's stored
        record and the backend call share one identity.

        Must be called from a running event loop.
        """
        generation_type = determine_generation_type(input)
        job_id = input.extra.get("job_id") or self.new_job_id(generation_type)

        logger.info(
            "provider.generation_started",
            provider=self.id,
            job_id=job_id,
            generation_type=generation_type.value,
        )
        outcome = asyncio.create_task(self._run(job_id, input, generation_type))
        return GenerationHandle(
            job_id=job_id,
            status=GenerationStatus.PROCESSING,
            generation_type=generation_type,
            outcome=outcome,
        )

    async def get_generation_status(self, job_id: str) -> GenerationResult:
        """Read the persisted state of a job; unknown ids read as pending."""
        async with await self.uow_factory() as uow:
            job = await uow.generation_jobs.get_by_id(job_id)
        return GenerationResult.from_job(
            job, timedelta(seconds=self.settings.stale_job_timeout_seconds)
        )

    async def cancel_generation(self, job_id: str) -> bool:
        """Best effort; an in-flight HTTP call cannot be withdrawn."""
        logger.info("provider.cancel_requested", provider=self.id, job_id=job_id)
        return True

    async def _run(self, job_id: str, input: GenerateInput, generation_type: GenerationType) -> str:
        if not self.is_configured():
            raise GenerationError(f"{self.id} AI generation service not configured", retryable=False)

        start_time = time.monotonic()
        try:
            image_url = await asyncio.wait_for(
                self._generate(job_id, input, generation_type), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise GenerationError(f"{self.name} request timed out after {self.timeout:g}s") from e

        if not image_url:
            raise GenerationError("No image data in response")

        logger.info(
            "provider.generation_succeeded",
            provider=self.id,
            job_id=job_id,
            duration=round(time.monotonic() - start_time, 2),
        )
        return image_url
