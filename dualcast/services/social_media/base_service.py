"""
Base Social Media Service Classes

Shared plumbing for the platform publishers: an aiohttp session, a request
helper that classifies failures into credential, transient and content
errors, retry with exponential backoff for the transient ones, and OAuth
token refresh.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple, Union
import logging

import aiohttp
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from dualcast.core.config import settings
from dualcast.models.publish_job import Platform

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

PLATFORM_LABELS = {
    Platform.INSTAGRAM: "Instagram",
    Platform.YOUTUBE: "YouTube",
}


def sanitize_token(token: Optional[str]) -> str:
    """Remove whitespace that stored tokens pick up from copy/paste and storage"""
    return _WHITESPACE.sub("", token or "")


@dataclass
class PlatformResponse:
    """Raw platform API response; header names are lower-cased"""
    status: int
    data: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class PublishResult:
    """Outcome of a successful publish"""
    platform: Platform
    external_id: str
    external_url: str
    api_response: Dict[str, Any] = field(default_factory=dict)


class SocialMediaServiceError(Exception):
    """Base exception for social media service errors"""
    def __init__(
        self,
        message: str,
        platform: Union[Platform, str] = "",
        error_code: str = "",
        original_error: Exception = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.platform = platform.value if isinstance(platform, Platform) else platform
        self.error_code = error_code
        self.original_error = original_error
        self.status_code = status_code
        super().__init__(self.message)


class CredentialError(SocialMediaServiceError):
    """Expired, revoked or missing credential; the owner has to reconnect the account"""
    pass


class TransientPlatformError(SocialMediaServiceError):
    """Network failure, timeout or temporary server error; safe to retry"""
    pass


class RateLimitError(TransientPlatformError):
    """Rate limit exceeded error"""
    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ContentRejectedError(SocialMediaServiceError):
    """The platform refused the content or request; retrying will not help"""
    pass


class QuotaExceededError(ContentRejectedError):
    """Daily API quota exhausted"""
    pass


def reconnect_hint(platform: Platform) -> str:
    label = PLATFORM_LABELS.get(platform, platform.value)
    return f"Please reconnect your {label} account to reauthenticate."


class TokenManager:
    """Manages OAuth tokens with automatic refresh"""

    def __init__(self, platform: Platform):
        self.platform = platform

    async def get_valid_token(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[str, Optional[datetime], bool]:
        """Return (token, expires_at, refreshed), refreshing if necessary"""
        access_token = sanitize_token(access_token)
        refresh_token = sanitize_token(refresh_token)

        if not access_token and not refresh_token:
            raise CredentialError(
                f"No access token available. {reconnect_hint(self.platform)}",
                platform=self.platform,
            )

        # Check if token is expired or about to expire (within 5 minutes)
        expiring = not access_token
        if expires_at:
            if isinstance(expires_at, str):
                expires_at = datetime.fromisoformat(expires_at)
            now = datetime.now(expires_at.tzinfo) if expires_at.tzinfo else datetime.utcnow()
            expiring = expiring or expires_at <= now + timedelta(minutes=5)

        if not expiring:
            return access_token, expires_at, False

        if not refresh_token:
            raise CredentialError(
                f"Token expired and no refresh token available. {reconnect_hint(self.platform)}",
                platform=self.platform,
            )

        new_token, new_expiry = await self._refresh_token(refresh_token)
        logger.info(f"Refreshed {self.platform.value} access token")
        return sanitize_token(new_token), new_expiry, True

    @abstractmethod
    async def _refresh_token(self, refresh_token: str) -> Tuple[str, Optional[datetime]]:
        """Refresh the access token using the refresh token"""
        pass


class BaseSocialMediaService(ABC):
    """Abstract base class for the platform publishers"""

    platform: Platform

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        max_attempts: int = None,
        min_wait: float = None,
        max_wait: float = None,
    ):
        self.session = session
        self._owns_session = session is None
        self.max_attempts = max_attempts or settings.SOCIAL_MEDIA_MAX_RETRIES
        self.min_wait = settings.SOCIAL_MEDIA_RETRY_MIN_WAIT if min_wait is None else min_wait
        self.max_wait = settings.SOCIAL_MEDIA_RETRY_MAX_WAIT if max_wait is None else max_wait

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(
                total=settings.SOCIAL_MEDIA_UPLOAD_TIMEOUT,
                sock_read=settings.SOCIAL_MEDIA_REQUEST_TIMEOUT,
            )
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self.session

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.min_wait, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception_type(TransientPlatformError),
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )

    def _extract_error(self, data: Dict[str, Any]) -> Tuple[str, str]:
        """Pull (message, code) out of a platform error body"""
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            return str(error.get("message", "")), str(error.get("code", ""))
        if isinstance(error, str):
            return data.get("error_description") or error, error
        return "", ""

    def classify_error(self, status: int, data: Dict[str, Any], headers: Dict[str, str] = None) -> SocialMediaServiceError:
        """Map a failed response onto the error taxonomy"""
        message, code = self._extract_error(data)
        message = message or f"API request failed with status {status}"
        kwargs = {"platform": self.platform, "error_code": code or str(status), "status_code": status}

        if status in (401, 403) or code == "invalid_grant":
            return CredentialError(
                f"{PLATFORM_LABELS[self.platform]} authentication failed: {message}. "
                f"{reconnect_hint(self.platform)}",
                **kwargs,
            )
        if status == 429:
            retry_after = (headers or {}).get("retry-after")
            return RateLimitError(
                f"{PLATFORM_LABELS[self.platform]} rate limit exceeded: {message}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                **kwargs,
            )
        if status >= 500:
            return TransientPlatformError(
                f"{PLATFORM_LABELS[self.platform]} service error ({status}): {message}", **kwargs
            )
        return ContentRejectedError(message, **kwargs)

    async def _send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Union[Dict, str, bytes]] = None,
        json: Optional[Dict[str, Any]] = None,
        ok_statuses: Tuple[int, ...] = (),
        allow_redirects: bool = True,
    ) -> PlatformResponse:
        """One HTTP round trip; non-success statuses are raised as classified errors"""
        session = await self._get_session()
        try:
            async with session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                data=data,
                json=json,
                allow_redirects=allow_redirects,
            ) as response:
                try:
                    response_data = await response.json(content_type=None)
                except ValueError:
                    response_data = {"content": await response.text()}
                if response_data is None:
                    response_data = {}
                response_headers = {k.lower(): v for k, v in response.headers.items()}
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientPlatformError(
                f"Network error talking to {PLATFORM_LABELS[self.platform]}: {e or type(e).__name__}",
                platform=self.platform,
                error_code="NETWORK_ERROR",
                original_error=e,
            )

        if 200 <= status < 300 or status in ok_statuses:
            return PlatformResponse(status=status, data=response_data, headers=response_headers)

        raise self.classify_error(status, response_data, response_headers)

    async def _make_request(self, method: str, url: str, **kwargs) -> PlatformResponse:
        """Make HTTP request with retry logic for transient failures"""
        async for attempt in self._retrying():
            with attempt:
                return await self._send(method, url, **kwargs)

    async def close(self):
        """Clean up resources"""
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

