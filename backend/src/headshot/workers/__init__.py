"""Background workers for async processing tasks."""

from headshot.workers.stale_job_sweeper import run_stale_job_sweeper
from headshot.workers.supervisor import WorkerSupervisor

__all__ = [
    "WorkerSupervisor",
    "run_stale_job_sweeper",
]
