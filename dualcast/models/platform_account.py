from sqlalchemy import Column, Integer, String, DateTime, Text, Enum, UniqueConstraint
from sqlalchemy.sql import func
from dualcast.db.session import Base
from dualcast.models.publish_job import Platform
import enum


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class PlatformAccount(Base):
    """Platform credentials connected by an owner through the external OAuth flow"""
    __tablename__ = "platform_accounts"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String, nullable=False, index=True)
    platform = Column(Enum(Platform), nullable=False)

    # Instagram business account id or YouTube channel id
    platform_account_id = Column(String, nullable=False)
    username = Column(String)

    # Authentication tokens (encrypted by the OAuth collaborator)
    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))

    status = Column(Enum(AccountStatus), default=AccountStatus.ACTIVE)
    last_error = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("owner_id", "platform", name="uq_platform_account_owner"),
    )
