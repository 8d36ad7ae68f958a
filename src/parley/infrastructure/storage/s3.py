"""S3-compatible storage for generated images."""

from dataclasses import dataclass

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from parley.config import Settings, get_settings
from parley.shared.concurrency import to_thread_limited
from parley.shared.exceptions import StorageError
from parley.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    size: int
    mime_type: str


def generated_image_key(user_id: str, message_id: str) -> str:
    """Structure: uploads/{user_id}/generated-{message_id}.png"""
    return f"uploads/{user_id}/generated-{message_id}.png"


class S3Storage:
    """S3-compatible storage.

    Works with AWS S3 in production and MinIO for local development. boto3 is
    synchronous, so every call goes through the bounded threadpool helper.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.bucket = settings.s3_bucket
        self.base_url = settings.storage_base_url
        self.client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4"),
        )

    async def upload(self, key: str, content: bytes, mime_type: str) -> StoredObject:
        """Upload bytes under ``key`` and return its stable URL.

        Raises:
            StorageError: If upload fails
        """
        try:
            await to_thread_limited(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=mime_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("s3_upload_failed", key=key, error=str(e))
            raise StorageError(f"File could not be uploaded: {e}") from e

        logger.info("file_uploaded", key=key, size=len(content))
        return StoredObject(key=key, url=self.url_for(key), size=len(content), mime_type=mime_type)

    async def upload_generated_image(
        self,
        user_id: str,
        message_id: str,
        content: bytes,
        mime_type: str = "image/png",
    ) -> StoredObject:
        return await self.upload(generated_image_key(user_id, message_id), content, mime_type)

    def url_for(self, key: str) -> str:
        """Stable URL of a stored object.

        Persisted in message parts, so it must never expire: the public base
        URL when configured (required in production), otherwise the object's
        path-style URL on the endpoint.
        """
        return f"{self.base_url}/{key}"

    async def check(self) -> None:
        """Readiness probe: the bucket is reachable.

        Raises:
            StorageError: If the bucket cannot be reached
        """
        try:
            await to_thread_limited(self.client.head_bucket, Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Bucket {self.bucket} is not reachable: {e}") from e
