from .publish_job import (
    ContentField, FieldProviderConfig, ProviderConfig, GeneratedContent,
    PublishAcceptedResponse, PlatformStateResponse, ProgressStepResponse, PublishJobResponse
)
from .progress import ProgressEvent, ProgressEventType
