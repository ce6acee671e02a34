"""
Instagram Graph API Service

Publishes Reels through the Graph API container flow: create a media
container from a public video URL, poll it until Instagram has processed the
video, then commit it with media_publish.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
import logging

from .base_service import (
    BaseSocialMediaService, TokenManager, PublishResult, SocialMediaServiceError,
    CredentialError, RateLimitError, TransientPlatformError, ContentRejectedError,
    sanitize_token, reconnect_hint,
)
from dualcast.core.config import settings
from dualcast.models.publish_job import Platform

logger = logging.getLogger(__name__)

# Graph API error codes
TOKEN_ERROR_CODES = {"190", "102", "463", "467"}
RATE_LIMIT_ERROR_CODES = {"4", "17", "32", "613"}
MEDIA_NOT_READY_CODE = "9007"

READY_STATUSES = {"FINISHED", "PUBLISHED"}
FAILED_STATUSES = {"ERROR", "EXPIRED"}


class ContainerTimeoutError(SocialMediaServiceError):
    """The media container never reached a ready state"""
    pass


def format_caption(description: str, hashtags: List[str], max_length: int = None) -> str:
    """Description followed by hashtags, trimmed to Instagram's caption limit"""
    max_length = max_length or settings.INSTAGRAM_CAPTION_MAX_LENGTH
    description = (description or "").strip()
    tags = " ".join(tag for tag in hashtags or [] if tag)

    if not tags:
        return description[:max_length]
    suffix = f"\n\n{tags}" if description else tags
    if len(description) + len(suffix) <= max_length:
        return f"{description}{suffix}"
    # Keep every hashtag; shorten the description instead
    room = max_length - len(suffix)
    if room <= 0:
        return tags[:max_length]
    return f"{description[:room].rstrip()}{suffix}"


class InstagramTokenManager(TokenManager):
    """Instagram-specific token management through Facebook"""

    def __init__(self):
        super().__init__(Platform.INSTAGRAM)

    async def _refresh_token(self, refresh_token: str) -> Tuple[str, Optional[datetime]]:
        """Exchange the stored long-lived token for a fresh one"""
        url = f"{settings.INSTAGRAM_GRAPH_URL}/oauth/access_token"
        params = {
            "grant_type": "fb_exchange_token",
            "client_id": settings.FACEBOOK_APP_ID,
            "client_secret": settings.FACEBOOK_APP_SECRET,
            "fb_exchange_token": refresh_token,
        }

        async with InstagramPublisher(access_token=refresh_token, account_id="") as client:
            response = await client._make_request("GET", url, params=params)

        access_token = response.data.get("access_token")
        if not access_token:
            raise CredentialError(
                f"Instagram token refresh failed. {reconnect_hint(Platform.INSTAGRAM)}",
                platform=Platform.INSTAGRAM,
            )
        expires_in = response.data.get("expires_in")
        expires_at = datetime.utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
        return access_token, expires_at


class InstagramPublisher(BaseSocialMediaService):
    """Instagram Graph API Reels publisher"""

    platform = Platform.INSTAGRAM

    def __init__(
        self,
        access_token: str,
        account_id: str,
        poll_interval: float = None,
        poll_attempts: int = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.base_url = settings.INSTAGRAM_GRAPH_URL
        self.access_token = sanitize_token(access_token)
        self.account_id = (account_id or "").strip()
        self.poll_interval = settings.INSTAGRAM_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.poll_attempts = poll_attempts or settings.INSTAGRAM_POLL_MAX_ATTEMPTS

    def _token(self) -> str:
        token = sanitize_token(self.access_token)
        if not token:
            raise CredentialError(
                f"Instagram access token is missing. {reconnect_hint(self.platform)}",
                platform=self.platform,
            )
        return token

    def classify_error(self, status: int, data: Dict[str, Any], headers: Dict[str, str] = None) -> SocialMediaServiceError:
        error = data.get("error", {}) if isinstance(data, dict) else {}
        code = str(error.get("code", "")) if isinstance(error, dict) else ""
        message = error.get("error_user_msg") or error.get("message") if isinstance(error, dict) else None
        message = message or f"API request failed with status {status}"
        kwargs = {"platform": self.platform, "error_code": code or str(status), "status_code": status}

        if code in TOKEN_ERROR_CODES:
            return CredentialError(
                f"Instagram connection is broken (error {code}): {message}. {reconnect_hint(self.platform)}",
                **kwargs,
            )
        if code in RATE_LIMIT_ERROR_CODES:
            return RateLimitError(f"Instagram API rate limit exceeded: {message}", **kwargs)
        if code == MEDIA_NOT_READY_CODE:
            return TransientPlatformError(f"Instagram media is not ready yet: {message}", **kwargs)
        return super().classify_error(status, data, headers)

    async def create_container(self, media_url: str, caption: str, cover_url: Optional[str] = None) -> str:
        """POST /{ig-user-id}/media with media_type=REELS"""
        params = {
            "media_type": "REELS",
            "video_url": media_url,
            "caption": caption,
            "share_to_feed": "true",
            "access_token": self._token(),
        }
        if cover_url:
            params["cover_url"] = cover_url

        response = await self._make_request("POST", f"{self.base_url}/{self.account_id}/media", params=params)
        container_id = response.data.get("id")
        if not container_id:
            raise ContentRejectedError(
                "No container ID returned from Instagram API", platform=self.platform
            )
        logger.info(f"Created Instagram Reels container {container_id}")
        return str(container_id)

    async def get_container_status(self, container_id: str) -> Optional[str]:
        response = await self._send(
            "GET",
            f"{self.base_url}/{container_id}",
            params={"fields": "status_code", "access_token": self._token()},
        )
        return response.data.get("status_code")

    async def poll_until_ready(self, container_id: str) -> None:
        """Poll the container status with a fixed delay and a bounded number of attempts"""
        last_error: Optional[Exception] = None
        for attempt in range(1, self.poll_attempts + 1):
            try:
                status_code = await self.get_container_status(container_id)
            except TransientPlatformError as e:
                last_error = e
                logger.warning(
                    f"Container {container_id} status check failed "
                    f"(attempt {attempt}/{self.poll_attempts}): {e.message}"
                )
            else:
                logger.debug(f"Container {container_id} status (attempt {attempt}/{self.poll_attempts}): {status_code}")
                # No status_code means the media reports readiness implicitly
                if not status_code or status_code in READY_STATUSES:
                    return
                if status_code in FAILED_STATUSES:
                    raise ContentRejectedError(
                        f"Instagram could not process the video (container status {status_code})",
                        platform=self.platform,
                        error_code=status_code,
                    )

            if attempt < self.poll_attempts:
                await asyncio.sleep(self.poll_interval)

        detail = f": {last_error}" if last_error else ""
        raise ContainerTimeoutError(
            f"Reels container not ready after {self.poll_attempts} attempts{detail}",
            platform=self.platform,
            error_code="CONTAINER_TIMEOUT",
        )

    async def commit(self, container_id: str) -> str:
        """POST /{ig-user-id}/media_publish"""
        response = await self._make_request(
            "POST",
            f"{self.base_url}/{self.account_id}/media_publish",
            params={"creation_id": container_id, "access_token": self._token()},
        )
        media_id = response.data.get("id")
        if not media_id:
            raise ContentRejectedError(
                "No media ID returned from Instagram publish API", platform=self.platform
            )
        logger.info(f"Published Instagram media {media_id}")
        return str(media_id)

    async def get_permalink(self, media_id: str) -> str:
        fallback = f"https://www.instagram.com/reel/{media_id}/"
        try:
            response = await self._send(
                "GET",
                f"{self.base_url}/{media_id}",
                params={"fields": "permalink", "access_token": self._token()},
            )
        except SocialMediaServiceError as e:
            logger.warning(f"Could not fetch permalink for {media_id}, using fallback: {e.message}")
            return fallback
        return response.data.get("permalink") or fallback

    async def publish_reel(self, media_url: str, caption: str, cover_url: Optional[str] = None) -> PublishResult:
        """Create, wait for and commit a Reels container"""
        if not self.account_id:
            raise CredentialError(
                f"No Instagram business account connected. {reconnect_hint(self.platform)}",
                platform=self.platform,
            )
        container_id = await self.create_container(media_url, caption, cover_url)
        await self.poll_until_ready(container_id)
        media_id = await self.commit(container_id)
        permalink = await self.get_permalink(media_id)
        return PublishResult(
            platform=self.platform,
            external_id=media_id,
            external_url=permalink,
            api_response={"containerId": container_id, "mediaId": media_id, "permalink": permalink},
        )
