"""S3-compatible object storage (Cloudflare R2) for re-hosting generated images."""

import asyncio

import boto3
import httpx
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from headshot.core.config import Settings
from headshot.services.exceptions import StorageError

logger = structlog.get_logger()


class ObjectStorage:
    """Upload client for the configured bucket.

    boto3 is synchronous, so uploads run in a worker thread.
    """

    def __init__(self, settings: Settings, client=None, http_client: httpx.AsyncClient | None = None):
        """Initialize object storage.

        Args:
            settings: Application settings (endpoint, credentials, bucket, public URL)
            client: Optional pre-built boto3 S3 client
            http_client: Optional HTTP client used to download source images
        """
        self.bucket = settings.storage_bucket_name
        self.public_url = settings.storage_public_url.rstrip("/")
        self.endpoint_url = settings.storage_endpoint_url
        self.access_key_id = settings.storage_access_key_id
        self.secret_access_key = settings.storage_secret_access_key
        self.timeout = settings.provider_timeout_seconds
        self._client = client
        self._http_client = http_client

    def is_configured(self) -> bool:
        if self._client is not None:
            return bool(self.bucket and self.public_url)
        return all(
            (
                self.endpoint_url,
                self.access_key_id,
                self.secret_access_key,
                self.bucket,
                self.public_url,
            )
        )

    def is_hosted(self, url: str) -> bool:
        """Return True if the URL already points into this bucket's public domain."""
        return bool(self.public_url) and url.startswith(f"{self.public_url}/")

    async def put(self, data: bytes, key: str, content_type: str) -> str:
        """Upload bytes and return their public URL.

        Raises:
            StorageError: If storage is not configured or the upload fails
        """
        if not self.is_configured():
            raise StorageError("Object storage not configured")

        client = self._get_client()
        try:
            await asyncio.to_thread(
                client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Upload failed for {key}: {e}") from e

        url = f"{self.public_url}/{key}"
        logger.info("storage.uploaded", key=key, size=len(data))
        return url

    async def upload_from_url(self, source_url: str, key: str, content_type: str) -> str:
        """Download an image and upload it under ``key``.

        Raises:
            StorageError: If the download or the upload fails
        """
        try:
            if self._http_client is not None:
                response = await self._http_client.get(source_url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(source_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to download {source_url}: {e}") from e

        return await self.put(response.content, key, content_type)

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
                region_name="auto",
            )
        return self._client
