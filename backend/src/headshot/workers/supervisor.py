"""Restart-on-crash supervision for long-running worker loops."""

import asyncio
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()

RESTART_DELAY_SECONDS = 1.0


class WorkerSupervisor:
    """Keeps one worker loop running until stop() is called.

    A loop that raises or returns is restarted after ``restart_delay``.
    ``task`` always refers to the current incarnation, so stop() cancels the
    loop that is actually running rather than the first one started.
    """

    def __init__(
        self,
        name: str,
        run: Callable[[], Awaitable[None]],
        restart_delay: float = RESTART_DELAY_SECONDS,
    ):
        self.name = name
        self._run = run
        self.restart_delay = restart_delay
        self.restarts = 0
        self.task: asyncio.Task | None = None
        self._stopping = False

    def start(self) -> asyncio.Task:
        self.task = asyncio.create_task(self._run(), name=self.name)
        self.task.add_done_callback(self._on_done)
        return self.task

    async def stop(self) -> None:
        self._stopping = True
        if self.task is not None:
            self.task.cancel()
            await asyncio.gather(self.task, return_exceptions=True)
        logger.info("worker.shutdown_complete", worker=self.name, restarts=self.restarts)

    def _on_done(self, task: asyncio.Task) -> None:
        if self._stopping or task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "worker.crashed",
                worker=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=self.restart_delay,
                exc_info=exc,
            )
        else:
            logger.warning(
                "worker.stopped_unexpectedly", worker=self.name, retry_in_seconds=self.restart_delay
            )
        self.task = asyncio.create_task(self._restart(), name=f"{self.name}-restart")

    async def _restart(self) -> None:
        await asyncio.sleep(self.restart_delay)
        if self._stopping:
            return
        self.restarts += 1
        logger.info("worker.restarting", worker=self.name, restarts=self.restarts)
        self.start()
