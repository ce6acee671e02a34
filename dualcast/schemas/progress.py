"""
Progress event schema shared by the orchestrator, the broadcaster and the
WebSocket endpoint.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ProgressEventType(str, Enum):
    """Typed events pushed on a job's channel"""
    JOB_PROGRESS = "job:progress"
    JOB_WARNING = "job:warning"
    TRANSCODE_PROGRESS = "transcode:progress"
    PUBLISH_PROGRESS = "publish:progress"
    PUBLISH_DONE = "publish:done"
    PUBLISH_ERROR = "publish:error"
    JOB_COMPLETE = "job:complete"


class ProgressEvent(BaseModel):
    event: ProgressEventType
    jobId: str
    step: str
    status: str
    percentage: int = Field(0, ge=0, le=100)
    message: str = ""
    platform: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def to_message(self) -> Dict[str, Any]:
        """JSON-ready payload for transport"""
        return self.model_dump(mode="json", exclude_none=True)
