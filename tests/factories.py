import factory
from faker import Faker
from datetime import datetime, timedelta
import uuid

from dualcast.models.publish_job import (
    PublishJob, PublishJobPlatform, JobStatus, Platform, PlatformStatus
)
from dualcast.models.platform_account import PlatformAccount, AccountStatus

fake = Faker()


def _provider_config():
    return {
        field: {"provider": "openai", "model": "gpt-4o-mini", "hasApiKey": False}
        for field in ("title", "description", "keywords", "hashtags")
    }


class PublishJobPlatformFactory(factory.Factory):
    """Factory for creating PublishJobPlatform instances."""

    class Meta:
        model = PublishJobPlatform

    platform = Platform.INSTAGRAM
    status = PlatformStatus.PENDING


class PublishJobFactory(factory.Factory):
    """Factory for creating PublishJob instances."""

    class Meta:
        model = PublishJob

    job_id = factory.LazyFunction(lambda: uuid.uuid4().hex)
    owner_id = factory.LazyFunction(lambda: f"owner-{fake.random_int(min=1, max=999999)}")
    status = JobStatus.PENDING
    video_filename = factory.LazyAttribute(lambda obj: f"{fake.slug()}.mp4")
    video_path = factory.LazyAttribute(lambda obj: f"/tmp/uploads/{obj.job_id}.mp4")
    brief = factory.LazyAttribute(lambda obj: fake.sentence(nb_words=8))
    provider_config = factory.LazyFunction(_provider_config)
    overall_percentage = 0
    created_at = factory.LazyFunction(datetime.utcnow)
    platforms = factory.LazyFunction(lambda: [
        PublishJobPlatformFactory(platform=Platform.INSTAGRAM),
        PublishJobPlatformFactory(platform=Platform.YOUTUBE),
    ])


class PlatformAccountFactory(factory.Factory):
    """Factory for creating PlatformAccount instances."""

    class Meta:
        model = PlatformAccount

    owner_id = "owner-1"
    platform = Platform.INSTAGRAM
    platform_account_id = factory.LazyFunction(lambda: str(fake.random_number(digits=17, fix_len=True)))
    username = factory.LazyAttribute(lambda obj: fake.user_name())
    access_token = factory.LazyFunction(lambda: f"token_{uuid.uuid4().hex}")
    refresh_token = factory.LazyFunction(lambda: f"refresh_{uuid.uuid4().hex}")
    token_expires_at = factory.LazyFunction(lambda: datetime.utcnow() + timedelta(days=30))
    status = AccountStatus.ACTIVE
