"""V3 (nano-banana) image generation backend.

Endpoints:
- Text-to-image:  POST {base}/v1/images/generations  (JSON body)
- Image-to-image: POST {base}/v1/images/edits        (multipart, source image attached)
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
import structlog

from headshot.core.config import Settings
from headshot.services.exceptions import GenerationError
from headshot.services.providers.base import GenerateInput, GenerationProvider, GenerationType
from headshot.uow import UnitOfWorkFactory

logger = structlog.get_logger()

DEFAULT_TEXT_PROMPT = "Generate a professional headshot photo"
DEFAULT_EDIT_PROMPT = "Edit this image professionally"
DEFAULT_TEXT_SIZE = "1024x1024"
DEFAULT_EDIT_SIZE = "1:1"
USER_AGENT = "HeadshotPro-AI/1.0"


class V3Provider(GenerationProvider):
    """Backend for the V3 platform's OpenAI-style images API."""

    id = "v3"
    name = "V3 Nano-Banana Image Generator"

    def __init__(
        self,
        settings: Settings,
        uow_factory: UnitOfWorkFactory,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize V3 provider.

        Args:
            settings: Application settings (API key, base URL, model, timeout)
            uow_factory: Factory for status reads
            client: Optional shared HTTP client; a short-lived one is opened per call otherwise
        """
        super().__init__(settings, uow_factory)
        self.api_key = settings.v3_api_key
        self.base_url = settings.v3_api_base_url.rstrip("/")
        self.model = settings.v3_model
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _generate(
        self, job_id: str, input: GenerateInput, generation_type: GenerationType
    ) -> str | None:
        logger.info("v3.request", job_id=job_id, generation_type=generation_type.value)
        try:
            async with self._session() as client:
                if generation_type == GenerationType.IMAGE_TO_IMAGE and input.input_image_url:
                    payload = await self._image_to_image(client, input, input.input_image_url)
                else:
                    payload = await self._text_to_image(client, input)
        except httpx.TimeoutException as e:
            raise GenerationError(f"V3 API request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise GenerationError(f"V3 API network error: {e}") from e

        return _first_image_url(payload)

    async def _text_to_image(self, client: httpx.AsyncClient, input: GenerateInput) -> Any:
        body = {
            "prompt": input.prompt or DEFAULT_TEXT_PROMPT,
            "model": self.model,
            "response_format": "url",
            "size": input.extra.get("size") or DEFAULT_TEXT_SIZE,
        }
        response = await client.post(
            f"{self.base_url}/v1/images/generations",
            headers=self._headers(),
            json=body,
        )
        return self._parse(response)

    async def _image_to_image(
        self, client: httpx.AsyncClient, input: GenerateInput, image_url: str
    ) -> Any:
        image_data, filename, content_type = await self._download_image(client, image_url)
        response = await client.post(
            f"{self.base_url}/v1/images/edits",
            headers=self._headers(),
            files={"image": (filename, image_data, content_type)},
            data={
                "prompt": input.prompt or DEFAULT_EDIT_PROMPT,
                "model": self.model,
                "response_format": "url",
                "size": input.extra.get("size") or DEFAULT_EDIT_SIZE,
            },
        )
        return self._parse(response)

    async def _download_image(
        self, client: httpx.AsyncClient, url: str
    ) -> tuple[bytes, str, str]:
        response = await client.get(url)
        if response.status_code >= 400:
            raise GenerationError(f"Failed to download image: {response.status_code}")

        filename = url.split("?")[0].rstrip("/").split("/")[-1] or "image.jpg"
        content_type = response.headers.get("content-type", "").split(";")[0] or "image/jpeg"
        return response.content, filename, content_type

    def _parse(self, response: httpx.Response) -> Any:
        if response.is_success:
            try:
                return response.json()
            except ValueError as e:
                raise GenerationError("Malformed response from V3 API") from e

        message = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            message = body["error"].get("message")

        logger.warning("v3.error_response", status_code=response.status_code, message=message)
        raise GenerationError(
            message or f"V3 API error: {response.status_code}",
            retryable=response.status_code == 429 or response.status_code >= 500,
        )

    def _headers(self) -> dict[str, str]:
        # Content-Type is left to httpx so multipart boundaries are set correctly
        return {"Authorization": f"Bearer {self.api_key}", "User-Agent": USER_AGENT}

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client


def _first_image_url(payload: Any) -> str:
    """Pull ``data[0].url`` out of an images API response."""
    data = payload.get("data") if isinstance(payload, dict) else None
    if not data:
        raise GenerationError("No image data in response")
    if not isinstance(data, list) or not isinstance(data[0], dict):
        raise GenerationError("Malformed response from V3 API")
    url = data[0].get("url")
    if not isinstance(url, str) or not url:
        raise GenerationError("Malformed response from V3 API")
    return url
