from dualcast.db.session import Base
from .publish_job import (
    PublishJob, PublishJobPlatform, PublishJobStep,
    JobStatus, Platform, PlatformStatus, StepStatus, PipelineStep
)
from .platform_account import PlatformAccount, AccountStatus
