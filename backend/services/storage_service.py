import asyncio
import logging
from datetime import timedelta
from typing import Callable, Optional, TypeVar

from google.api_core import exceptions as gcloud_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage

from utils.env import Settings
from utils.errors import AppError, UpstreamTimeoutError, UpstreamUnavailableError

logger = logging.getLogger("storage_service")

T = TypeVar("T")


class StorageService:
    """Object store for uploaded images, backed by a single GCS bucket."""

    def __init__(self, settings: Settings, client: Optional[storage.Client] = None):
        self.settings = settings
        self.bucket_name = settings.GOOGLE_CLOUD_BUCKET_NAME
        self.timeout = settings.STORAGE_TIMEOUT_SECONDS
        self._client = client
        self._bucket: Optional[storage.Bucket] = None

    def get_bucket(self) -> storage.Bucket:
        if not self.bucket_name:
            raise UpstreamUnavailableError("GOOGLE_CLOUD_BUCKET_NAME is not configured")
        if self._bucket is None:
            if self._client is None:
                logger.info(f"Initializing GCS client for bucket: {self.bucket_name}")
                self._client = storage.Client(project=self.settings.GOOGLE_CLOUD_PROJECT or None)
            self._bucket = self._client.bucket(self.bucket_name)
        return self._bucket

    async def run(self, operation: str, fn: Callable[[], T]) -> T:
        """Run a blocking GCS call in a thread with a hard deadline."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error(f"{operation} timed out after {self.timeout}s")
            raise UpstreamTimeoutError(f"Storage {operation} timed out") from exc
        except AppError:
            raise
        except (gcloud_exceptions.GoogleAPICallError, auth_exceptions.GoogleAuthError, OSError) as exc:
            # requests transport errors are OSError subclasses
            logger.error(f"{operation} failed: {exc}")
            raise UpstreamUnavailableError(f"Storage {operation} failed: {exc}") from exc

    def _put_sync(self, path: str, data: bytes, content_type: str, overwrite: bool):
        blob = self.get_bucket().blob(path)
        kwargs = {} if overwrite else {"if_generation_match": 0}
        blob.upload_from_string(data, content_type=content_type, timeout=self.timeout, **kwargs)

    async def put(self, path: str, data: bytes, content_type: str, overwrite: bool = True) -> str:
        """Store ``data`` at ``path``; an existing object is replaced unless overwrite is off."""
        logger.info(f"Uploading {len(data)} bytes to gs://{self.bucket_name}/{path}")
        await self.run("upload", lambda: self._put_sync(path, data, content_type, overwrite))
        return f"gs://{self.bucket_name}/{path}"

    def _sign_url_sync(self, path: str, ttl_seconds: int) -> str:
        blob = self.get_bucket().blob(path)
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=ttl_seconds),
            method="GET",
        )

    async def sign_url(self, path: str, ttl_seconds: int) -> str:
        url = await self.run("sign", lambda: self._sign_url_sync(path, ttl_seconds))
        logger.debug(f"Signed {path} for {ttl_seconds}s")
        return url
