"""Service error hierarchy for generation and ledger operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Failures that a fresh submission may not hit again
  (network, timeouts, upstream 5xx, empty results)
- PermanentError: Failures that will repeat until something changes
  (configuration, validation)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on a later submission.

    Examples:
    - Network timeouts
    - Upstream service unavailable (5xx)
    - Empty or malformed provider payloads
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Provider credentials missing
    - Unknown style id
    - Malformed input URL
    """

    pass


# Generation-specific errors
class ProviderNotConfiguredError(PermanentError):
    """The selected generation backend has no credentials."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"{provider_id} AI generation service not configured")


class ValidationError(PermanentError):
    """Request rejected before any job is created."""

    pass


class InvalidStyleError(ValidationError):
    """Style id is not present in the catalog."""

    def __init__(self, style_id: str):
        self.style_id = style_id
        super().__init__(f"Invalid style ID: {style_id}")


class JobNotFoundError(ServiceError):
    """No job with this id is visible to the caller."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Generation {job_id} not found")


class GenerationError(TransientError):
    """Provider call failed (network, timeout, non-2xx, empty payload).

    ``retryable`` tells the user whether re-submitting can help; it does not
    trigger any automatic retry.
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class GenerationFailedError(ServiceError):
    """A polled job reached the failed state."""

    def __init__(self, job_id: str, error: str | None):
        self.job_id = job_id
        self.error = error or "Generation failed"
        super().__init__(self.error)


class PollTimeoutError(ServiceError):
    """Polling gave up while the job was still processing."""

    def __init__(self, job_id: str, attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(
            f"Generation {job_id} is still processing after {attempts} checks, check back later"
        )


# Object storage errors
class StorageError(TransientError):
    """Upload to object storage failed."""

    pass


# Ledger-specific errors
class InsufficientCreditsError(ServiceError):
    """User balance does not cover the requested deduction."""

    def __init__(self, user_id: str, required: int, available: int):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(
            f"User {user_id} has insufficient credits. "
            f"Required: {required}, Available: {available}"
        )


class DuplicateReferenceError(ServiceError):
    """A one-time grant reference was already used for this user."""

    def __init__(self, user_id: str, reference_id: str):
        self.user_id = user_id
        self.reference_id = reference_id
        super().__init__(f"Reference {reference_id} already used for user {user_id}")
