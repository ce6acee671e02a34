"""
Media store

Puts transcoded renditions in S3-compatible object storage so platforms that
fetch media by URL (Instagram) can download them.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from dualcast.core.config import settings

logger = logging.getLogger(__name__)


class MediaStoreError(Exception):
    """Raised when an object cannot be stored or addressed"""
    def __init__(self, message: str, original_error: Exception = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


@dataclass
class StoredMedia:
    key: str
    url: str
    size: int


def _client(endpoint_url: Optional[str]):
    session = boto3.session.Session(
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        region_name=settings.AWS_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=endpoint_url or None,
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        ),
    )


class MediaStore:
    """S3/MinIO backed store handing out time-limited public URLs"""

    def __init__(self, bucket: str = None, key_prefix: str = None, client=None, presign_client=None):
        self.bucket = bucket or settings.AWS_S3_BUCKET
        self.key_prefix = (key_prefix if key_prefix is not None else settings.S3_KEY_PREFIX).strip("/")
        self._client = client
        self._presign_client = presign_client

    @property
    def client(self):
        """SDK client for server-side uploads"""
        if self._client is None:
            self._client = _client(settings.S3_ENDPOINT_URL)
        return self._client

    @property
    def presign_client(self):
        """Client whose endpoint the platforms can reach when following presigned URLs"""
        if self._presign_client is None:
            self._presign_client = _client(settings.S3_PUBLIC_ENDPOINT_URL or settings.S3_ENDPOINT_URL)
        return self._presign_client

    def object_key(self, job_id: str, filename: str) -> str:
        parts = [self.key_prefix, job_id, Path(filename).name]
        return "/".join(p for p in parts if p)

    def _upload(self, local_path: str, key: str, content_type: str) -> None:
        self.client.upload_file(str(local_path), self.bucket, key, ExtraArgs={"ContentType": content_type})

    def _presigned_get(self, key: str, expires: int) -> str:
        return self.presign_client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires,
            HttpMethod="GET",
        )

    async def upload(
        self,
        local_path: str,
        job_id: str,
        content_type: str = "video/mp4",
        expires: int = None,
    ) -> StoredMedia:
        """Upload a local file and return a URL the platform can fetch"""
        path = Path(local_path)
        if not path.is_file():
            raise MediaStoreError(f"File not found: {local_path}")

        key = self.object_key(job_id, path.name)
        expires = expires or settings.S3_PRESIGN_EXPIRY_SECONDS
        try:
            await asyncio.to_thread(self._upload, str(path), key, content_type)
            url = await asyncio.to_thread(self._presigned_get, key, expires)
        except (BotoCoreError, ClientError) as e:
            raise MediaStoreError(f"Failed to store {path.name}: {e}", e)

        logger.info(f"Stored {path.name} as s3://{self.bucket}/{key}")
        return StoredMedia(key=key, url=url, size=path.stat().st_size)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to delete s3://{self.bucket}/{key}: {e}")


_media_store: Optional[MediaStore] = None


def get_media_store() -> MediaStore:
    """Get global media store instance"""
    global _media_store
    if _media_store is None:
        _media_store = MediaStore()
    return _media_store
