"""GenerationJob entity - one image generation request with lifecycle status tracking."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel

from headshot.core.timezone import utcnow


class GenerationStatus(str, Enum):
    """Generation job lifecycle status.

    PENDING is only reported for rows that do not exist yet; stored jobs
    start in PROCESSING.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid generation job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks a single generation from submission to terminal outcome."""

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: str = Field(primary_key=True, max_length=64)
    user_id: str = Field(index=True, max_length=255)
    provider: str = Field(max_length=50)  # "v3" or "replicate"
    status: GenerationStatus = Field(default=GenerationStatus.PROCESSING, index=True)
    input_image_url: Optional[str] = Field(default=None)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    style_id: str = Field(max_length=100)
    output_image_url: Optional[str] = Field(default=None)
    error: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return GenerationStatus(self.status).is_terminal

    def is_stale(self, max_age: timedelta, now: datetime | None = None) -> bool:
        """Return True if the job is still processing after max_age."""
        if self.status != GenerationStatus.PROCESSING:
            return False
        return (now or utcnow()) - self.created_at > max_age

    def mark_completed(self, output_image_url: str) -> None:
        """Transition from processing to completed.

        Args:
            output_image_url: URL of the generated (possibly re-hosted) image

        Raises:
            InvalidStateTransition: If current status is not processing
            ValueError: If output_image_url is empty
        """
        if self.status != GenerationStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {GenerationStatus(self.status).value}. "
                "Job must be in processing state."
            )
        if not output_image_url:
            raise ValueError("output_image_url is required")
        self.output_image_url = output_image_url
        self.error = None
        self.status = GenerationStatus.COMPLETED
        self.updated_at = utcnow()

    def mark_failed(self, error: str) -> None:
        """Transition from processing to failed.

        Args:
            error: Human-readable failure reason (truncated to 1000 characters)

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.status != GenerationStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {GenerationStatus(self.status).value}."
            )
        self.error = (error or "Generation failed")[:1000]
        self.output_image_url = None
        self.status = GenerationStatus.FAILED
        self.updated_at = utcnow()
