"""Replicate image generation backend with error classification."""

import asyncio
from typing import Any

import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from headshot.core.config import Settings
from headshot.services.exceptions import GenerationError
from headshot.services.providers.base import GenerateInput, GenerationProvider, GenerationType
from headshot.uow import UnitOfWorkFactory

logger = structlog.get_logger()

NEGATIVE_PROMPT = "blurry, low quality, distorted, deformed, ugly, disfigured, watermark, text"
IMAGE_STRENGTH = 0.7


def classify_error(exception: Exception) -> GenerationError:
    """Turn a Replicate SDK or network exception into a GenerationError.

    Classification rules:
        - Timeout errors → retryable
        - 429 (rate limit) → retryable
        - 503 (service unavailable) → retryable
        - 401/403 (authentication) → not retryable
        - Content policy violations → not retryable
        - Connection errors → retryable
        - Anything else → not retryable
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower or isinstance(exception, TimeoutError):
        return GenerationError(f"Network timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return GenerationError(f"Rate limit exceeded: {error_message}")

    if "503" in error_message or "service unavailable" in error_message_lower:
        return GenerationError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return GenerationError(f"Authentication failed: {error_message}", retryable=False)

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        return GenerationError(f"Content policy violation: {error_message}", retryable=False)

    if isinstance(exception, (ConnectionError, OSError)):
        return GenerationError(f"Connection error: {error_message}")

    return GenerationError(f"Replicate error: {error_message}", retryable=False)


def extract_image_url(output: Any) -> str | None:
    """Normalise model output (list, string or file object) to one URL."""
    if isinstance(output, (list, tuple)):
        if not output:
            return None
        output = output[0]
    if output is None:
        return None
    url = getattr(output, "url", output)
    return str(url) if url else None


class ReplicateProvider(GenerationProvider):
    """Backend running Replicate models through the official SDK.

    The SDK is synchronous, so the prediction is created and awaited in
    worker threads. When the base class timeout cancels the wait, the remote
    prediction is canceled too, which ends the polling thread.
    """

    id = "replicate"
    name = "Replicate Image Generator"

    def __init__(
        self,
        settings: Settings,
        uow_factory: UnitOfWorkFactory,
        client: replicate.Client | None = None,
    ):
        super().__init__(settings, uow_factory)
        self.api_token = settings.replicate_api_token
        self.text_model = settings.replicate_text_model
        self.image_model = settings.replicate_image_model
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.api_token)

    def build_request(
        self, input: GenerateInput, generation_type: GenerationType
    ) -> tuple[str, dict[str, Any]]:
        """Return (model reference, model input) for a generation."""
        if generation_type == GenerationType.IMAGE_TO_IMAGE:
            return self.image_model, {
                "prompt": (
                    f"{input.prompt}, person based on input image, high quality, "
                    "professional photography"
                ),
                "negative_prompt": NEGATIVE_PROMPT,
                "image": input.input_image_url,
                "strength": IMAGE_STRENGTH,
                "num_outputs": 1,
            }
        return self.text_model, {"prompt": input.prompt}

    async def _generate(
        self, job_id: str, input: GenerateInput, generation_type: GenerationType
    ) -> str | None:
        model, model_input = self.build_request(input, generation_type)
        client = self._client or replicate.Client(api_token=self.api_token, timeout=self.timeout)

        logger.info(
            "replicate.request",
            job_id=job_id,
            model=model,
            generation_type=generation_type.value,
        )
        try:
            prediction = await asyncio.to_thread(start_prediction, client, model, model_input)
            try:
                await asyncio.to_thread(prediction.wait)
            except asyncio.CancelledError:
                # Timed out or shutting down: stop the remote prediction so the
                # waiting thread sees a terminal status and exits
                await asyncio.to_thread(self._cancel_prediction, prediction, job_id)
                raise
        except ReplicateAPIError as e:
            raise classify_error(e) from e
        except (ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e

        if prediction.status == "failed":
            raise classify_error(RuntimeError(str(prediction.error or "Prediction failed")))
        if prediction.status == "canceled":
            raise GenerationError("Replicate prediction was canceled")

        image_url = extract_image_url(prediction.output)
        if image_url is None:
            logger.warning(
                "replicate.unexpected_output",
                job_id=job_id,
                output_type=type(prediction.output).__name__,
            )
        return image_url

    def _cancel_prediction(self, prediction: Any, job_id: str) -> None:
        try:
            prediction.cancel()
        except (ReplicateAPIError, ConnectionError, OSError) as e:
            logger.warning("replicate.cancel_failed", job_id=job_id, error=str(e))
        else:
            logger.info("replicate.prediction_canceled", job_id=job_id, prediction_id=prediction.id)


def start_prediction(client: replicate.Client, model: str, model_input: dict[str, Any]) -> Any:
    """Create a prediction for ``owner/name`` or ``owner/name:version``."""
    if ":" in model:
        _, version = model.split(":", 1)
        return client.predictions.create(version=version, input=model_input)
    return client.models.predictions.create(model=model, input=model_input)
