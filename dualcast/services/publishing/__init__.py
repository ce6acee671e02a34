"""
Publish pipeline: job persistence, progress fan-out, orchestration and
background execution
"""

from .job_store import JobStore
from .broadcaster import ProgressBroadcaster, get_broadcaster
from .orchestrator import PublishOrchestrator
from .runner import JobRunner

__all__ = [
    "JobStore",
    "ProgressBroadcaster",
    "get_broadcaster",
    "PublishOrchestrator",
    "JobRunner",
]
