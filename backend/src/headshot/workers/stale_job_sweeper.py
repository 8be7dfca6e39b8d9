"""Stale job sweeper.

Fails generation jobs that have been processing for longer than
STALE_JOB_TIMEOUT_SECONDS. A job can get stuck when the process restarts
mid-generation or the terminal write itself fails; the read path already
reports such jobs as failed, this worker makes it durable and refunds them.
"""

import asyncio

import structlog

from headshot.core.config import Settings
from headshot.services.generation import GenerationService

logger = structlog.get_logger()

ERROR_BACKOFF_SECONDS = 5


async def run_stale_job_sweeper(service: GenerationService, settings: Settings) -> None:
    """Main worker loop for the stale job sweep.

    Args:
        service: Generation service that owns terminal writes
        settings: Application settings (sweep interval)
    """
    logger.info(
        "worker.started",
        worker_type="stale_job_sweeper",
        sweep_interval=settings.stale_sweep_interval_seconds,
        stale_after=settings.stale_job_timeout_seconds,
    )

    try:
        while True:
            try:
                expired = await service.expire_stale_jobs()
                logger.debug("worker.sweep_complete", worker_type="stale_job_sweeper", expired=expired)

                await asyncio.sleep(settings.stale_sweep_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker_type="stale_job_sweeper",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker_type="stale_job_sweeper")
        raise
