"""Generation job orchestrator.

Owns the job state machine:

    submit ──► processing ──► completed
                    │
                    └───────► failed

The request path validates input, deducts credits and stores the job row in
one transaction, then starts the provider call and returns. A detached task
per job waits for the provider, re-hosts the output and performs the single
terminal write. Terminal writes are conditional on ``status = 'processing'``,
so duplicate or late writes are no-ops and a refund can only follow the one
write that actually failed the job.
"""

import asyncio
import time
from datetime import timedelta
from urllib.parse import urlparse

import structlog
from sqlalchemy.exc import SQLAlchemyError

from headshot.core.config import Settings
from headshot.core.timezone import utcnow
from headshot.models.credit_transaction import CreditTransactionType
from headshot.models.generation_job import GenerationJob, GenerationStatus
from headshot.services.exceptions import (
    GenerationError,
    JobNotFoundError,
    ProviderNotConfiguredError,
    StorageError,
    ValidationError,
)
from headshot.services.ledger import LedgerService, refund_reference
from headshot.services.providers.base import (
    STALE_JOB_ERROR,
    GenerateInput,
    GenerationHandle,
    GenerationProvider,
    GenerationResult,
    determine_generation_type,
)
from headshot.services.storage.object_storage import ObjectStorage
from headshot.services.styles import StyleCatalog
from headshot.uow import UnitOfWorkFactory

logger = structlog.get_logger()

UNEXPECTED_ERROR = "Generation failed unexpectedly"
REHOSTED_CONTENT_TYPE = "image/jpeg"


class GenerationService:
    """Submits generation jobs and drives them to a terminal state."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        provider: GenerationProvider,
        ledger: LedgerService,
        settings: Settings,
        styles: StyleCatalog | None = None,
        storage: ObjectStorage | None = None,
    ):
        """Initialize generation service.

        Args:
            uow_factory: Factory for per-operation units of work
            provider: Backend that produces images
            ledger: Credit ledger used for the per-job charge and refunds
            settings: Application settings (cost, refund policy, staleness bound)
            styles: Style catalog (default: built-in styles)
            storage: Object storage for re-hosting outputs; None disables re-hosting
        """
        self.uow_factory = uow_factory
        self.provider = provider
        self.ledger = ledger
        self.settings = settings
        self.styles = styles or StyleCatalog()
        self.storage = storage
        self.cost = settings.generation_cost_credits
        self.stale_after = timedelta(seconds=settings.stale_job_timeout_seconds)
        self._tasks: set[asyncio.Task] = set()

    async def submit_generation(
        self,
        user_id: str,
        style_id: str,
        input_image_url: str | None = None,
    ) -> GenerationJob:
        """Create a job, charge for it and start generation in the background.

        Args:
            user_id: Owning user
            style_id: Catalog style to apply
            input_image_url: Source photo; omitted for text-to-image

        Returns:
            The stored job (status processing)

        Raises:
            InvalidStyleError: Unknown style id
            ValidationError: Malformed input image URL
            ProviderNotConfiguredError: Backend has no credentials
            InsufficientCreditsError: Balance does not cover the cost; no job is created
        """
        style = self.styles.lookup(style_id)
        if input_image_url is not None:
            _validate_image_url(input_image_url)
        if not self.provider.is_configured():
            raise ProviderNotConfiguredError(self.provider.id)

        generate_input = GenerateInput(
            prompt=style.prompt,
            style_id=style.id,
            user_id=user_id,
            input_image_url=input_image_url,
        )
        job_id = self.provider.new_job_id(determine_generation_type(generate_input))
        generate_input.extra["job_id"] = job_id

        job = GenerationJob(
            id=job_id,
            user_id=user_id,
            provider=self.provider.id,
            status=GenerationStatus.PROCESSING,
            input_image_url=input_image_url,
            prompt=style.prompt,
            style_id=style.id,
        )

        # Charge and job row commit together; the row must exist before the
        # provider call can race ahead of it
        async with await self.uow_factory() as uow:
            await self.ledger.deduct(
                uow,
                user_id,
                self.cost,
                f"Headshot generation ({style.name})",
                reference_id=f"generation_{job_id}",
            )
            await uow.generation_jobs.add(job)

        handle = self.provider.create_generation(generate_input)
        task = asyncio.create_task(self._finalize(handle))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "generation.submitted",
            job_id=job_id,
            user_id=user_id,
            style_id=style.id,
            provider=self.provider.id,
            generation_type=handle.generation_type.value,
        )
        return job

    async def query_generation_status(
        self, job_id: str, user_id: str | None = None
    ) -> GenerationResult:
        """Return the job's status as clients see it. Never raises.

        Unknown ids, and ids owned by another user when ``user_id`` is given,
        read as pending. Jobs stuck in processing past the stale bound read
        as failed.
        """
        try:
            async with await self.uow_factory() as uow:
                job = await uow.generation_jobs.get_by_id(job_id)
        except SQLAlchemyError:
            logger.exception("generation.status_read_failed", job_id=job_id)
            return GenerationResult(status=GenerationStatus.PENDING)

        if job is not None and user_id is not None and job.user_id != user_id:
            job = None
        return GenerationResult.from_job(job, self.stale_after)

    async def cancel_generation(self, user_id: str, job_id: str) -> bool:
        """Ask the backend to cancel; the job may still reach a terminal state.

        Raises:
            JobNotFoundError: If the job does not exist or belongs to another user
        """
        async with await self.uow_factory() as uow:
            job = await uow.generation_jobs.get_by_id(job_id)
        if job is None or job.user_id != user_id:
            raise JobNotFoundError(job_id)
        return await self.provider.cancel_generation(job_id)

    async def list_generations(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[GenerationJob], int]:
        """Return (jobs newest first, total count) for a user."""
        async with await self.uow_factory() as uow:
            jobs = await uow.generation_jobs.list_by_user(user_id, limit=limit, offset=offset)
            total = await uow.generation_jobs.count_by_user(user_id)
        return jobs, total

    async def record_completed(self, job_id: str, image_url: str) -> bool:
        """Terminal write for success.

        Returns:
            True if this call completed the job, False if it was already terminal
        """
        async with await self.uow_factory() as uow:
            transitioned = await uow.generation_jobs.mark_completed(job_id, image_url)

        if transitioned:
            logger.info("generation.completed", job_id=job_id, image_url=image_url)
        else:
            logger.warning("generation.terminal_write_skipped", job_id=job_id, status="completed")
        return transitioned

    async def record_failed(self, job_id: str, error: str) -> bool:
        """Terminal write for failure, refunding the charge when enabled.

        The refund commits in the same transaction as the status change and
        only happens when this call performed the transition.

        Returns:
            True if this call failed the job, False if it was already terminal
        """
        async with await self.uow_factory() as uow:
            job = await uow.generation_jobs.get_by_id(job_id)
            transitioned = job is not None and await uow.generation_jobs.mark_failed(
                job_id, error
            )
            if job is not None and transitioned and self.settings.refund_on_failure:
                await self.ledger.grant(
                    uow,
                    job.user_id,
                    self.cost,
                    f"Refund for failed generation {job_id}",
                    reference_id=refund_reference(job_id),
                    transaction_type=CreditTransactionType.GENERATION_REFUND,
                )

        if transitioned:
            logger.info("generation.failed", job_id=job_id, error=error)
        else:
            logger.warning("generation.terminal_write_skipped", job_id=job_id, status="failed")
        return transitioned

    async def expire_stale_jobs(self) -> int:
        """Fail every job stuck in processing past the stale bound.

        Returns:
            Number of jobs this call moved to failed
        """
        cutoff = utcnow() - self.stale_after
        async with await self.uow_factory() as uow:
            stale_jobs = await uow.generation_jobs.get_stale_processing(cutoff)

        expired = 0
        for job in stale_jobs:
            if await self.record_failed(job.id, STALE_JOB_ERROR):
                expired += 1

        if expired:
            logger.info("generation.stale_jobs_expired", count=expired)
        return expired

    async def drain(self) -> None:
        """Wait for all detached jobs started by this service to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight detached jobs; the stale sweep fails them later."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("generation.shutdown_cancelled", count=len(tasks))

    async def _finalize(self, handle: GenerationHandle) -> None:
        job_id = handle.job_id
        try:
            try:
                image_url = await handle.outcome
            except GenerationError as e:
                logger.warning(
                    "generation.provider_failed",
                    job_id=job_id,
                    error=str(e),
                    retryable=e.retryable,
                )
                await self.record_failed(job_id, str(e))
                return
            except Exception:
                logger.exception("generation.provider_crashed", job_id=job_id)
                await self.record_failed(job_id, UNEXPECTED_ERROR)
                return

            image_url = await self._rehost(job_id, image_url)
            await self.record_completed(job_id, image_url)
        except Exception:
            # Outcome is lost; the stale sweep will fail the job
            logger.error("generation.terminal_write_failed", job_id=job_id, exc_info=True)

    async def _rehost(self, job_id: str, image_url: str) -> str:
        if self.storage is None or not self.storage.is_configured():
            return image_url
        if self.storage.is_hosted(image_url):
            logger.debug("generation.already_hosted", job_id=job_id)
            return image_url

        key = f"generated/{job_id}/{int(time.time() * 1000)}.jpg"
        try:
            return await self.storage.upload_from_url(image_url, key, REHOSTED_CONTENT_TYPE)
        except StorageError as e:
            logger.warning("generation.rehost_failed", job_id=job_id, error=str(e))
            return image_url


def _validate_image_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid input image URL")
