"""
Platform credential lookup

Connecting an account (the OAuth dance) happens elsewhere; the pipeline only
needs a valid token for an owner's connected account at publish time.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from dualcast.models.platform_account import PlatformAccount, AccountStatus
from dualcast.models.publish_job import Platform
from dualcast.services.social_media.base_service import (
    CredentialError, TokenManager, reconnect_hint, sanitize_token,
)
from dualcast.services.social_media.instagram_service import InstagramTokenManager
from dualcast.services.social_media.youtube_service import YouTubeTokenManager

logger = logging.getLogger(__name__)


@dataclass
class PlatformCredentials:
    platform: Platform
    account_id: str
    access_token: str
    username: Optional[str] = None
    expires_at: Optional[datetime] = None


class CredentialProvider(ABC):
    @abstractmethod
    async def get_credentials(self, owner_id: str, platform: Platform) -> PlatformCredentials:
        """Return a usable credential or raise CredentialError"""
        pass

    async def mark_invalid(self, owner_id: str, platform: Platform, error: str) -> None:
        """Record that the platform rejected the stored credential"""
        return None


class DatabaseCredentialProvider(CredentialProvider):
    """Reads PlatformAccount rows and refreshes tokens that are about to expire"""

    def __init__(self, session_factory, token_managers: Dict[Platform, TokenManager] = None):
        self.session_factory = session_factory
        self.token_managers = token_managers or {
            Platform.INSTAGRAM: InstagramTokenManager(),
            Platform.YOUTUBE: YouTubeTokenManager(),
        }

    def _load_account(self, owner_id: str, platform: Platform) -> Optional[PlatformAccount]:
        db = self.session_factory()
        try:
            return db.query(PlatformAccount).filter(
                PlatformAccount.owner_id == owner_id,
                PlatformAccount.platform == platform,
            ).first()
        finally:
            db.close()

    def _update_account(self, account_id: int, **values) -> None:
        db = self.session_factory()
        try:
            db.query(PlatformAccount).filter(PlatformAccount.id == account_id).update(values)
            db.commit()
        finally:
            db.close()

    async def get_credentials(self, owner_id: str, platform: Platform) -> PlatformCredentials:
        account = self._load_account(owner_id, platform)
        if account is None or account.status == AccountStatus.DISCONNECTED:
            raise CredentialError(
                f"No connected {platform.value} account. {reconnect_hint(platform)}",
                platform=platform,
                error_code="NOT_CONNECTED",
            )

        token, expires_at, refreshed = await self.token_managers[platform].get_valid_token(
            account.access_token, account.refresh_token, account.token_expires_at
        )
        if refreshed:
            self._update_account(
                account.id,
                access_token=token,
                token_expires_at=expires_at,
                status=AccountStatus.ACTIVE,
                last_error=None,
            )

        return PlatformCredentials(
            platform=platform,
            account_id=sanitize_token(account.platform_account_id),
            access_token=token,
            username=account.username,
            expires_at=expires_at,
        )

    async def mark_invalid(self, owner_id: str, platform: Platform, error: str) -> None:
        account = self._load_account(owner_id, platform)
        if account is None:
            return
        self._update_account(account.id, status=AccountStatus.ERROR, last_error=error)
        logger.warning(f"Marked {platform.value} account for owner {owner_id} as needing reconnect")
