"""GenerationJob repository for headshot backend.

Provides data access methods for GenerationJob entities, including the
conditional terminal writes that keep status transitions monotonic.
"""

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from headshot.core.timezone import utcnow
from headshot.models.generation_job import GenerationJob, GenerationStatus


class GenerationJobRepository:
    """Repository for GenerationJob entities.

    Terminal writes are single UPDATE statements guarded by
    ``status = 'processing'``, so a second completion for the same job
    matches no rows and is a no-op.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new generation job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: str) -> GenerationJob | None:
        """Retrieve generation job by ID, bypassing any cached instance.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_user(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> list[GenerationJob]:
        """Retrieve a user's generation jobs with pagination.

        Args:
            user_id: Owning user identifier
            limit: Maximum number of jobs to return (default: 20)
            offset: Number of jobs to skip (default: 0)

        Returns:
            List of jobs ordered by creation time (newest first)
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.user_id == user_id)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_by_user(self, user_id: str) -> int:
        """Count all generation jobs owned by a user."""
        result = await self.session.execute(
            select(func.count()).select_from(GenerationJob).where(GenerationJob.user_id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar() or 0

    async def mark_completed(self, job_id: str, output_image_url: str) -> bool:
        """Set output URL and status=completed if the job is still processing.

        Args:
            job_id: Job's unique identifier
            output_image_url: URL of the generated image

        Returns:
            True if this call performed the transition, False if the job was
            missing or already terminal

        Raises:
            ValueError: If output_image_url is empty
        """
        if not output_image_url:
            raise ValueError("output_image_url cannot be empty")

        return await self._transition(
            job_id,
            status=GenerationStatus.COMPLETED,
            output_image_url=output_image_url,
            error=None,
        )

    async def mark_failed(self, job_id: str, error: str) -> bool:
        """Set error and status=failed if the job is still processing.

        Args:
            job_id: Job's unique identifier
            error: Error description (truncated to 1000 characters)

        Returns:
            True if this call performed the transition, False otherwise
        """
        return await self._transition(
            job_id,
            status=GenerationStatus.FAILED,
            output_image_url=None,
            error=(error or "Generation failed")[:1000],
        )

    async def get_stale_processing(self, older_than: datetime, limit: int = 100) -> list[GenerationJob]:
        """Retrieve jobs stuck in processing since before ``older_than``.

        Args:
            older_than: Creation time cutoff (naive UTC)
            limit: Maximum number of jobs to return (default: 100)

        Returns:
            List of stale jobs ordered by creation time (oldest first)
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.status == GenerationStatus.PROCESSING)  # type: ignore[arg-type]
            .where(GenerationJob.created_at < older_than)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _transition(self, job_id: str, **values) -> bool:
        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(GenerationJob.status == GenerationStatus.PROCESSING)  # type: ignore[arg-type]
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
