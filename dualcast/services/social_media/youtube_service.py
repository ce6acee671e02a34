"""
YouTube Data API Service

Uploads Shorts with the resumable upload protocol: an init request returns a
session URL, the file is PUT in fixed-size chunks, and a 308 response tells
us which byte to resume from.
"""

import asyncio
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

import aiofiles

from .base_service import (
    BaseSocialMediaService, TokenManager, PublishResult, SocialMediaServiceError,
    CredentialError, RateLimitError, TransientPlatformError, ContentRejectedError,
    QuotaExceededError, sanitize_token, reconnect_hint,
)
from .tag_sanitizer import sanitize_youtube_tags, total_tag_length
from dualcast.core.config import settings
from dualcast.models.publish_job import Platform

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_MULTIPLE = 256 * 1024
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5000
SHORTS_SUFFIX = "#Shorts #ytshorts"

_RANGE_HEADER = re.compile(r"bytes=(\d+)-(\d+)")
_ANGLE_BRACKETS = re.compile(r"[<>]")

QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded"}
RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}
CREDENTIAL_REASONS = {"authError", "unauthorized", "forbidden", "insufficientPermissions", "youtubeSignupRequired"}
TAG_REASONS = {"invalidTags", "invalidVideoKeywords"}

UploadProgressCallback = Callable[[int, int], None]


@dataclass
class VideoMetadata:
    title: str
    description: str
    tags: List[str] = field(default_factory=list)
    category_id: str = settings.YOUTUBE_CATEGORY_ID
    privacy_status: str = settings.YOUTUBE_PRIVACY_STATUS
    made_for_kids: bool = False

    def to_resource(self) -> Dict[str, Any]:
        return {
            "snippet": {
                "title": self.title,
                "description": self.description,
                "tags": self.tags,
                "categoryId": self.category_id,
            },
            "status": {
                "privacyStatus": self.privacy_status,
                "selfDeclaredMadeForKids": self.made_for_kids,
            },
        }


def build_video_metadata(title: str, description: str, tags: List[str]) -> VideoMetadata:
    """Shorts-ready metadata: YouTube-safe title, #Shorts marker, sanitized tags"""
    title = _ANGLE_BRACKETS.sub("", title or "").strip()[:MAX_TITLE_LENGTH] or "Untitled Video"
    description = _ANGLE_BRACKETS.sub("", description or "").strip()
    if "#shorts" not in description.lower():
        suffix = f"\n\n{SHORTS_SUFFIX}" if description else SHORTS_SUFFIX
        description = description[:MAX_DESCRIPTION_LENGTH - len(suffix)].rstrip() + suffix
    else:
        description = description[:MAX_DESCRIPTION_LENGTH]

    sanitized = sanitize_youtube_tags(tags or [])
    logger.debug(f"YouTube tags: {len(sanitized)} tags, {total_tag_length(sanitized)} chars")
    return VideoMetadata(title=title, description=description, tags=sanitized)


def parse_range_header(value: Optional[str]) -> int:
    """Next byte offset from a resumable upload `Range: bytes=0-N` header"""
    if not value:
        return 0
    match = _RANGE_HEADER.search(value)
    return int(match.group(2)) + 1 if match else 0


class YouTubeTokenManager(TokenManager):
    """Google OAuth refresh-token grant"""

    def __init__(self):
        super().__init__(Platform.YOUTUBE)

    async def _refresh_token(self, refresh_token: str) -> Tuple[str, Optional[datetime]]:
        data = {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        async with YouTubePublisher(access_token=refresh_token) as client:
            response = await client._make_request("POST", settings.GOOGLE_TOKEN_URL, data=data)

        access_token = response.data.get("access_token")
        if not access_token:
            raise CredentialError(
                f"YouTube token refresh failed. {reconnect_hint(Platform.YOUTUBE)}",
                platform=Platform.YOUTUBE,
            )
        expires_in = response.data.get("expires_in")
        expires_at = datetime.utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
        return access_token, expires_at


class YouTubePublisher(BaseSocialMediaService):
    """YouTube Data API v3 resumable uploader"""

    platform = Platform.YOUTUBE

    def __init__(self, access_token: str, channel_id: Optional[str] = None, chunk_size: int = None, **kwargs):
        super().__init__(**kwargs)
        self.access_token = sanitize_token(access_token)
        self.channel_id = channel_id
        self.chunk_size = chunk_size or settings.YOUTUBE_CHUNK_SIZE
        if self.chunk_size % UPLOAD_CHUNK_MULTIPLE:
            raise ValueError(f"Chunk size must be a multiple of {UPLOAD_CHUNK_MULTIPLE} bytes")

    def _auth_headers(self) -> Dict[str, str]:
        token = sanitize_token(self.access_token)
        if not token:
            raise CredentialError(
                f"YouTube access token is missing. {reconnect_hint(self.platform)}",
                platform=self.platform,
            )
        return {"Authorization": f"Bearer {token}"}

    def classify_error(self, status: int, data: Dict[str, Any], headers: Dict[str, str] = None) -> SocialMediaServiceError:
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            errors = error.get("errors") or [{}]
            reason = errors[0].get("reason", "")
            message = error.get("message", "") or f"API request failed with status {status}"
            kwargs = {"platform": self.platform, "error_code": reason or str(status), "status_code": status}

            if reason in QUOTA_REASONS:
                return QuotaExceededError(
                    "YouTube API quota exceeded. Please try again tomorrow.", **kwargs
                )
            if reason in RATE_LIMIT_REASONS:
                return RateLimitError(f"YouTube rate limit exceeded: {message}", **kwargs)
            if reason in TAG_REASONS or "invalid video keywords" in message.lower():
                return ContentRejectedError(
                    "Invalid video tags. Tags must be under 30 characters each "
                    "and total under 500 characters.",
                    **kwargs,
                )
            if status == 401 or reason in CREDENTIAL_REASONS:
                return CredentialError(
                    f"YouTube authentication failed: {message}. {reconnect_hint(self.platform)}",
                    **kwargs,
                )
        return super().classify_error(status, data, headers)

    async def init_resumable_upload(self, metadata: VideoMetadata, total_bytes: int) -> str:
        """Start a resumable upload session and return its upload URL"""
        params = {"uploadType": "resumable", "part": "snippet,status"}
        headers = {
            **self._auth_headers(),
            "Content-Type": "application/json; charset=UTF-8",
            "X-Upload-Content-Type": "video/*",
            "X-Upload-Content-Length": str(total_bytes),
        }

        response = await self._make_request(
            "POST", settings.YOUTUBE_UPLOAD_URL,
            params=params, headers=headers, json=metadata.to_resource(),
        )
        upload_url = response.headers.get("location")
        if not upload_url:
            raise TransientPlatformError(
                "YouTube did not return a resumable upload URL", platform=self.platform
            )
        logger.info(f"Initialized YouTube resumable upload for channel {self.channel_id or 'default'} ({total_bytes} bytes)")
        return upload_url

    async def query_upload_status(self, upload_url: str, total_bytes: int) -> Tuple[int, Optional[Dict[str, Any]]]:
        """Ask how many bytes YouTube holds; returns (next offset, final resource if complete)"""
        response = await self._send(
            "PUT", upload_url,
            headers={**self._auth_headers(), "Content-Range": f"bytes */{total_bytes}", "Content-Length": "0"},
            ok_statuses=(308,),
            allow_redirects=False,
        )
        if response.status == 308:
            return parse_range_header(response.headers.get("range")), None
        return total_bytes, response.data

    async def upload_chunks(
        self,
        upload_url: str,
        file_path: str,
        total_bytes: int,
        on_progress: Optional[UploadProgressCallback] = None,
    ) -> Dict[str, Any]:
        """PUT the file in chunks, resuming from the acknowledged offset after failures"""
        offset = 0
        failures = 0

        async with aiofiles.open(file_path, "rb") as f:
            while True:
                await f.seek(offset)
                chunk = await f.read(self.chunk_size)
                end = offset + len(chunk) - 1
                headers = {
                    **self._auth_headers(),
                    "Content-Type": "video/*",
                    "Content-Range": f"bytes {offset}-{end}/{total_bytes}",
                }

                try:
                    response = await self._send(
                        "PUT", upload_url,
                        headers=headers, data=chunk,
                        ok_statuses=(308,), allow_redirects=False,
                    )
                except TransientPlatformError as e:
                    failures += 1
                    if failures >= self.max_attempts:
                        raise
                    delay = min(self.min_wait * (2 ** (failures - 1)), self.max_wait)
                    logger.warning(
                        f"YouTube chunk at byte {offset} failed ({e.message}), "
                        f"retrying in {delay:g}s ({failures}/{self.max_attempts})"
                    )
                    await asyncio.sleep(delay)
                    try:
                        offset, completed = await self.query_upload_status(upload_url, total_bytes)
                    except TransientPlatformError:
                        continue
                    if completed is not None:
                        return completed
                    continue

                if response.status != 308:
                    if on_progress:
                        on_progress(total_bytes, total_bytes)
                    return response.data

                next_offset = parse_range_header(response.headers.get("range"))
                if next_offset <= offset and chunk:
                    failures += 1
                    if failures >= self.max_attempts:
                        raise TransientPlatformError(
                            f"YouTube upload stalled at byte {offset}", platform=self.platform
                        )
                else:
                    failures = 0
                offset = next_offset
                logger.debug(f"YouTube upload resumed at byte {offset}/{total_bytes}")
                if on_progress:
                    on_progress(offset, total_bytes)

    def finalize(self, resource: Dict[str, Any]) -> PublishResult:
        video_id = resource.get("id") if isinstance(resource, dict) else None
        if not video_id:
            raise ContentRejectedError(
                "YouTube upload finished without a video ID", platform=self.platform
            )
        return PublishResult(
            platform=self.platform,
            external_id=video_id,
            external_url=f"https://www.youtube.com/watch?v={video_id}",
            api_response=resource,
        )

    async def publish_short(
        self,
        file_path: str,
        metadata: VideoMetadata,
        on_progress: Optional[UploadProgressCallback] = None,
    ) -> PublishResult:
        total_bytes = os.path.getsize(file_path)
        upload_url = await self.init_resumable_upload(metadata, total_bytes)
        resource = await self.upload_chunks(upload_url, file_path, total_bytes, on_progress)
        result = self.finalize(resource)
        logger.info(f"Uploaded YouTube video {result.external_id}")
        return result
