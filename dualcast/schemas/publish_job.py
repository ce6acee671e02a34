from pydantic import BaseModel, Field, validator
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


class ContentField(str, Enum):
    TITLE = "title"
    DESCRIPTION = "description"
    KEYWORDS = "keywords"
    HASHTAGS = "hashtags"


class FieldProviderConfig(BaseModel):
    provider: str
    model: Optional[str] = None
    apiKey: Optional[str] = None

    @validator("provider", pre=True)
    def normalize_provider(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("provider is required")
        return v.strip().lower()

    @validator("model", "apiKey", pre=True)
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class ProviderConfig(BaseModel):
    title: FieldProviderConfig
    description: FieldProviderConfig
    keywords: FieldProviderConfig
    hashtags: FieldProviderConfig

    def for_field(self, field: ContentField) -> FieldProviderConfig:
        return getattr(self, ContentField(field).value)

    def redacted(self) -> Dict[str, Dict[str, Any]]:
        """Provider config with caller credentials masked, safe to return to clients"""
        data = {}
        for field in ContentField:
            config = self.for_field(field)
            data[field.value] = {
                "provider": config.provider,
                "model": config.model,
                "hasApiKey": bool(config.apiKey),
            }
        return data


class GeneratedContent(BaseModel):
    title: str
    description: str
    keywords: List[str] = Field(default_factory=list)
    hashtags: List[str] = Field(default_factory=list)


class PublishAcceptedResponse(BaseModel):
    jobId: str
    status: str
    message: str = "Publish job accepted"


class PlatformStateResponse(BaseModel):
    platform: str
    status: str
    externalId: Optional[str] = None
    externalUrl: Optional[str] = None
    error: Optional[str] = None
    publishedAt: Optional[datetime] = None


class ProgressStepResponse(BaseModel):
    stepName: str
    status: str
    message: Optional[str] = None
    error: Optional[str] = None
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None


class PublishJobResponse(BaseModel):
    jobId: str
    status: str
    videoFilename: str
    brief: str
    providers: Dict[str, Dict[str, Any]]
    generatedContent: Optional[GeneratedContent] = None
    platforms: Dict[str, PlatformStateResponse]
    progressLog: List[ProgressStepResponse]
    overallPercentage: int
    currentStep: Optional[str] = None
    error: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, job) -> "PublishJobResponse":
        return cls(
            jobId=job.job_id,
            status=job.status.value,
            videoFilename=job.video_filename,
            brief=job.brief,
            providers=job.provider_config or {},
            generatedContent=GeneratedContent(**job.generated_content) if job.generated_content else None,
            platforms={
                state.platform.value: PlatformStateResponse(
                    platform=state.platform.value,
                    status=state.status.value,
                    externalId=state.external_id,
                    externalUrl=state.external_url,
                    error=state.error,
                    publishedAt=state.published_at,
                )
                for state in job.platforms
            },
            progressLog=[
                ProgressStepResponse(
                    stepName=step.step_name,
                    status=step.status.value,
                    message=step.message,
                    error=step.error,
                    startedAt=step.started_at,
                    completedAt=step.completed_at,
                )
                for step in job.steps
            ],
            overallPercentage=job.overall_percentage,
            currentStep=job.current_step,
            error=job.error,
            createdAt=job.created_at,
            updatedAt=job.updated_at,
            completedAt=job.completed_at,
        )
