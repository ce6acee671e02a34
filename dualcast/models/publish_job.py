from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text, Enum, Index, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from dualcast.db.session import Base
import enum


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PARTIAL)


class Platform(str, enum.Enum):
    INSTAGRAM = "instagram"
    YOUTUBE = "youtube"


class PlatformStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PlatformStatus.COMPLETED, PlatformStatus.FAILED)


class StepStatus(str, enum.Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStep(str, enum.Enum):
    VALIDATE_VIDEO = "validate_video"
    TRANSCODE_INSTAGRAM = "transcode_instagram"
    TRANSCODE_YOUTUBE = "transcode_youtube"
    GENERATE_CONTENT = "generate_content"
    PUBLISH_INSTAGRAM = "publish_instagram"
    PUBLISH_YOUTUBE = "publish_youtube"

    @classmethod
    def transcode_for(cls, platform: Platform) -> "PipelineStep":
        return cls(f"transcode_{platform.value}")

    @classmethod
    def publish_for(cls, platform: Platform) -> "PipelineStep":
        return cls(f"publish_{platform.value}")


class PublishJob(Base):
    """One upload published to every supported platform"""
    __tablename__ = "publish_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String, unique=True, nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.PENDING, index=True)

    # Source asset
    video_filename = Column(String, nullable=False)
    video_path = Column(String, nullable=False)
    brief = Column(Text, nullable=False)

    # Per-field {provider, model, hasApiKey}; caller API keys are never stored
    provider_config = Column(JSON, nullable=False)
    # {title, description, keywords, hashtags}; written once
    generated_content = Column(JSON)

    overall_percentage = Column(Integer, nullable=False, default=0)
    current_step = Column(String)
    error = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True))

    platforms = relationship(
        "PublishJobPlatform", back_populates="job",
        cascade="all, delete-orphan", order_by="PublishJobPlatform.id"
    )
    steps = relationship(
        "PublishJobStep", back_populates="job",
        cascade="all, delete-orphan", order_by="PublishJobStep.id"
    )

    __table_args__ = (
        Index("ix_publish_jobs_owner_created", "owner_id", "created_at"),
    )

    def platform_state(self, platform: Platform) -> "PublishJobPlatform":
        for state in self.platforms:
            if state.platform == platform:
                return state
        raise KeyError(platform)


class PublishJobPlatform(Base):
    """Per-platform publish state, written only by that platform's stage"""
    __tablename__ = "publish_job_platforms"

    id = Column(Integer, primary_key=True, index=True)
    job_pk = Column(Integer, ForeignKey("publish_jobs.id"), nullable=False, index=True)
    platform = Column(Enum(Platform), nullable=False)
    status = Column(Enum(PlatformStatus), nullable=False, default=PlatformStatus.PENDING)

    external_id = Column(String)
    external_url = Column(String)
    error = Column(Text)
    api_response = Column(JSON)
    published_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    job = relationship("PublishJob", back_populates="platforms")

    __table_args__ = (
        UniqueConstraint("job_pk", "platform", name="uq_publish_job_platform"),
    )


class PublishJobStep(Base):
    """Append-only audit trail of pipeline steps"""
    __tablename__ = "publish_job_steps"

    id = Column(Integer, primary_key=True, index=True)
    job_pk = Column(Integer, ForeignKey("publish_jobs.id"), nullable=False, index=True)
    step_name = Column(String, nullable=False)
    status = Column(Enum(StepStatus), nullable=False, default=StepStatus.STARTED)
    message = Column(Text)
    error = Column(Text)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    job = relationship("PublishJob", back_populates="steps")
