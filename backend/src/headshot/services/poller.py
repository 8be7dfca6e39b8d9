"""Client-side status polling with bounded attempts."""

import asyncio
from typing import Awaitable, Callable

import structlog

from headshot.models.generation_job import GenerationStatus
from headshot.services.exceptions import GenerationFailedError, PollTimeoutError
from headshot.services.providers.base import GenerationResult

logger = structlog.get_logger()

StatusFetcher = Callable[[str], Awaitable[GenerationResult]]
ProgressCallback = Callable[[int], None]

MAX_WAITING_PROGRESS = 95


def waiting_progress(attempt: int, max_attempts: int) -> int:
    """Progress shown while a job is still running; never reaches 100."""
    return min(MAX_WAITING_PROGRESS, (attempt * MAX_WAITING_PROGRESS) // max_attempts)


class StatusPoller:
    """Polls a job until it is terminal or the attempt budget runs out.

    Each attempt is an independent status read followed by a fixed sleep.
    """

    def __init__(
        self,
        fetch: StatusFetcher,
        interval: float = 2.0,
        max_attempts: int = 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize poller.

        Args:
            fetch: Coroutine returning the current GenerationResult for a job id
            interval: Seconds between attempts
            max_attempts: Attempts before giving up
            sleep: Sleep function (injectable for tests)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.fetch = fetch
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def poll(
        self, job_id: str, on_progress: ProgressCallback | None = None
    ) -> GenerationResult:
        """Wait for the job to complete.

        Returns:
            The completed GenerationResult (status completed, image_url set)

        Raises:
            GenerationFailedError: The job failed; carries the stored error
            PollTimeoutError: Still not terminal after max_attempts
        """
        for attempt in range(1, self.max_attempts + 1):
            result = await self.fetch(job_id)

            if result.status == GenerationStatus.COMPLETED:
                _report(on_progress, 100)
                logger.debug("poller.completed", job_id=job_id, attempts=attempt)
                return result

            if result.status == GenerationStatus.FAILED:
                logger.debug("poller.failed", job_id=job_id, attempts=attempt)
                raise GenerationFailedError(job_id, result.error)

            _report(on_progress, waiting_progress(attempt, self.max_attempts))

            if attempt < self.max_attempts:
                await self._sleep(self.interval)

        logger.info("poller.timed_out", job_id=job_id, attempts=self.max_attempts)
        raise PollTimeoutError(job_id, self.max_attempts)


def _report(on_progress: ProgressCallback | None, value: int) -> None:
    if on_progress is not None:
        on_progress(value)
