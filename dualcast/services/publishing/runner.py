"""
Background execution of publish jobs

Each accepted job runs on its own asyncio task, independent of the request
that created it. The runner is the last line of defence: whatever escapes the
orchestrator is logged and the job is marked failed.
"""

import asyncio
import logging
from typing import Dict, Optional

from dualcast.core.exceptions import DualcastException
from dualcast.schemas.progress import ProgressEvent, ProgressEventType
from dualcast.schemas.publish_job import ProviderConfig
from dualcast.services.publishing.broadcaster import ProgressBroadcaster
from dualcast.services.publishing.job_store import JobStore
from dualcast.services.publishing.orchestrator import PublishOrchestrator

logger = logging.getLogger(__name__)


class JobRunner:
    def __init__(self, orchestrator: PublishOrchestrator, job_store: JobStore, broadcaster: ProgressBroadcaster):
        self.orchestrator = orchestrator
        self.job_store = job_store
        self.broadcaster = broadcaster
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def submit(self, job_id: str, provider_config: Optional[ProviderConfig] = None) -> asyncio.Task:
        """Schedule a job; returns immediately"""
        task = asyncio.create_task(self._run(job_id, provider_config), name=f"publish-{job_id}")
        self._tasks[job_id] = task
        logger.info(f"Scheduled publish job {job_id}")
        return task

    async def _run(self, job_id: str, provider_config: Optional[ProviderConfig]) -> None:
        try:
            await self.orchestrator.run(job_id, provider_config)
        except asyncio.CancelledError:
            self._abort(job_id, "Publishing was interrupted by a server shutdown")
            raise
        except Exception as e:
            logger.exception(f"Publish job {job_id} crashed")
            self._abort(job_id, f"Unexpected error: {e}")
        finally:
            self._tasks.pop(job_id, None)

    def _abort(self, job_id: str, error: str) -> None:
        try:
            failed = self.job_store.fail_job(job_id, error)
        except DualcastException as e:
            logger.error(f"Could not mark job {job_id} failed: {e.message}")
            failed = False

        if failed:
            self.broadcaster.publish(job_id, ProgressEvent(
                event=ProgressEventType.JOB_COMPLETE,
                jobId=job_id,
                step="job",
                status="failed",
                percentage=100,
                message=error,
            ))
        self.broadcaster.close_channel(job_id)

    async def wait(self, job_id: str) -> None:
        """Wait for a scheduled job to finish"""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight jobs; there is no resume after restart"""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight publish jobs")
