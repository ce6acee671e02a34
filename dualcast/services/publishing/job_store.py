"""
Publish Job Store

Persists PublishJob documents and enforces their lifecycle rules: forward-only
job and platform status transitions, write-once generated content, an
append-only step log and a progress percentage that never regresses.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from dualcast.core.exceptions import ActiveJobExistsError, InvalidStateTransition, JobNotFoundError
from dualcast.models.publish_job import (
    PublishJob, PublishJobPlatform, PublishJobStep,
    JobStatus, Platform, PlatformStatus, StepStatus, PipelineStep
)

logger = logging.getLogger(__name__)

JOB_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PARTIAL},
}

# pending -> failed covers a platform whose transcode failed before publishing began
PLATFORM_TRANSITIONS = {
    PlatformStatus.PENDING: {PlatformStatus.PROCESSING, PlatformStatus.FAILED},
    PlatformStatus.PROCESSING: {PlatformStatus.COMPLETED, PlatformStatus.FAILED},
}

FINISHED_STEP_STATUSES = (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)
TOTAL_STEPS = len(PipelineStep)
ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


def new_job_id() -> str:
    return uuid.uuid4().hex


def terminal_status_for(platform_statuses: List[PlatformStatus]) -> JobStatus:
    """Both published -> completed, none -> failed, exactly one -> partial"""
    succeeded = sum(1 for s in platform_statuses if s == PlatformStatus.COMPLETED)
    if succeeded == len(platform_statuses):
        return JobStatus.COMPLETED
    if succeeded == 0:
        return JobStatus.FAILED
    return JobStatus.PARTIAL


class JobStore:
    """Short-lived SQLAlchemy sessions per operation; no awaits inside a write."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def _write(self):
        db: Session = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @contextmanager
    def _read(self):
        db: Session = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    @staticmethod
    def _load(db: Session, job_id: str) -> PublishJob:
        job = db.query(PublishJob).filter(PublishJob.job_id == job_id).first()
        if not job:
            raise JobNotFoundError(f"Publish job {job_id} not found")
        return job

    # Creation and queries

    def create_job(
        self,
        owner_id: str,
        video_filename: str,
        video_path: str,
        brief: str,
        provider_config: Dict[str, Any],
        exclusive: bool = False,
    ) -> str:
        """Insert a pending job; with exclusive, refuse when the owner already has one in flight"""
        job_id = new_job_id()
        with self._write() as db:
            if exclusive and self._active_job_query(db, owner_id).first() is not None:
                raise ActiveJobExistsError()
            job = PublishJob(
                job_id=job_id,
                owner_id=owner_id,
                status=JobStatus.PENDING,
                video_filename=video_filename,
                video_path=video_path,
                brief=brief,
                provider_config=provider_config,
                overall_percentage=0,
            )
            job.platforms = [
                PublishJobPlatform(platform=platform, status=PlatformStatus.PENDING)
                for platform in Platform
            ]
            db.add(job)
        logger.info(f"Created publish job {job_id} for owner {owner_id}")
        return job_id

    def get_job(self, job_id: str, owner_id: Optional[str] = None) -> Optional[PublishJob]:
        with self._read() as db:
            query = (
                db.query(PublishJob)
                .options(selectinload(PublishJob.platforms), selectinload(PublishJob.steps))
                .filter(PublishJob.job_id == job_id)
            )
            if owner_id is not None:
                query = query.filter(PublishJob.owner_id == owner_id)
            return query.first()

    def list_jobs(self, owner_id: str, limit: int = 20) -> List[PublishJob]:
        with self._read() as db:
            return (
                db.query(PublishJob)
                .options(selectinload(PublishJob.platforms), selectinload(PublishJob.steps))
                .filter(PublishJob.owner_id == owner_id)
                .order_by(PublishJob.created_at.desc(), PublishJob.id.desc())
                .limit(limit)
                .all()
            )

    @staticmethod
    def _active_job_query(db: Session, owner_id: str):
        return db.query(PublishJob.id).filter(
            PublishJob.owner_id == owner_id,
            PublishJob.status.in_(ACTIVE_STATUSES),
        )

    def has_active_job(self, owner_id: str) -> bool:
        with self._read() as db:
            return self._active_job_query(db, owner_id).first() is not None

    # Job status

    def set_status(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> None:
        with self._write() as db:
            job = self._load(db, job_id)
            if status not in JOB_TRANSITIONS.get(job.status, set()):
                raise InvalidStateTransition(
                    f"Job {job_id} cannot move from {job.status.value} to {status.value}"
                )
            job.status = status
            if error and not job.error:
                job.error = error
            if status.is_terminal:
                job.overall_percentage = 100
                job.completed_at = datetime.utcnow()
                job.current_step = None
        logger.info(f"Job {job_id} status -> {status.value}")

    def finalize(self, job_id: str) -> JobStatus:
        """Derive and persist the terminal status from both platform records"""
        with self._read() as db:
            job = self._load(db, job_id)
            status = terminal_status_for([state.status for state in job.platforms])
            first_error = self._first_platform_error(job)
        self.set_status(
            job_id, status,
            error=first_error if status != JobStatus.COMPLETED else None,
        )
        return status

    @staticmethod
    def _first_platform_error(job: PublishJob) -> Optional[str]:
        """Error of the platform step that failed first, in completion order"""
        platform_steps = {
            step.value for step in PipelineStep if step.value.startswith(("transcode_", "publish_"))
        }
        failed = [
            step for step in job.steps
            if step.status == StepStatus.FAILED and step.error and step.step_name in platform_steps
        ]
        if failed:
            earliest = min(failed, key=lambda s: (s.completed_at, s.id))
            return earliest.error
        return next((s.error for s in job.platforms if s.error), None)

    @staticmethod
    def _fail(job: PublishJob, error: str) -> None:
        for state in job.platforms:
            if not state.status.is_terminal:
                state.status = PlatformStatus.FAILED
                state.error = state.error or error
        # A pending job still passes through processing on its way to failed
        if job.status == JobStatus.PENDING:
            job.status = JobStatus.PROCESSING
        job.status = JobStatus.FAILED
        job.error = job.error or error
        job.overall_percentage = 100
        job.completed_at = datetime.utcnow()
        job.current_step = None

    def fail_job(self, job_id: str, error: str) -> bool:
        """Fail a job and every platform that has not finished; no-op for terminal jobs"""
        with self._write() as db:
            job = self._load(db, job_id)
            if job.status.is_terminal:
                return False
            self._fail(job, error)
        logger.info(f"Job {job_id} status -> failed: {error}")
        return True

    def fail_stale_jobs(self, reason: str = "Interrupted by a server restart") -> int:
        """Fail jobs left in flight by a previous process; there is no resume."""
        with self._write() as db:
            jobs = db.query(PublishJob).filter(PublishJob.status.in_(ACTIVE_STATUSES)).all()
            for job in jobs:
                self._fail(job, reason)
            count = len(jobs)
        if count:
            logger.warning(f"Marked {count} interrupted publish jobs as failed")
        return count

    # Step log

    def start_step(self, job_id: str, step: PipelineStep, message: Optional[str] = None) -> int:
        with self._write() as db:
            job = self._load(db, job_id)
            row = PublishJobStep(
                job=job,
                step_name=step.value,
                status=StepStatus.STARTED,
                message=message,
                started_at=datetime.utcnow(),
            )
            db.add(row)
            job.current_step = step.value
            db.flush()
            return row.id

    def finish_step(
        self,
        step_id: int,
        status: StepStatus,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> int:
        """Close a started step and return the job's overall percentage"""
        if status not in FINISHED_STEP_STATUSES:
            raise InvalidStateTransition(f"{status.value} is not a finished step status")
        with self._write() as db:
            row = db.query(PublishJobStep).filter(PublishJobStep.id == step_id).first()
            if row is None:
                raise JobNotFoundError(f"Step {step_id} not found")
            if row.status != StepStatus.STARTED:
                raise InvalidStateTransition(
                    f"Step {row.step_name} is already {row.status.value}"
                )
            row.status = status
            row.completed_at = datetime.utcnow()
            if message:
                row.message = message
            row.error = error
            db.flush()
            return self._update_percentage(db, row.job)

    def record_step(
        self,
        job_id: str,
        step: PipelineStep,
        status: StepStatus,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> int:
        """Append an already-finished step, e.g. a publish skipped after a failed transcode"""
        step_id = self.start_step(job_id, step, message)
        return self.finish_step(step_id, status, message=message, error=error)

    @staticmethod
    def _update_percentage(db: Session, job: PublishJob) -> int:
        finished = {
            s.step_name for s in job.steps if s.status in FINISHED_STEP_STATUSES
        }
        computed = round(min(len(finished), TOTAL_STEPS) / TOTAL_STEPS * 100)
        job.overall_percentage = max(job.overall_percentage or 0, computed)
        return job.overall_percentage

    # Content and platform state

    def set_generated_content(self, job_id: str, content: Dict[str, Any]) -> None:
        with self._write() as db:
            job = self._load(db, job_id)
            if job.generated_content is not None:
                raise InvalidStateTransition(f"Generated content for job {job_id} is already set")
            job.generated_content = content

    def set_platform_status(
        self,
        job_id: str,
        platform: Platform,
        status: PlatformStatus,
        external_id: Optional[str] = None,
        external_url: Optional[str] = None,
        error: Optional[str] = None,
        api_response: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._write() as db:
            job = self._load(db, job_id)
            state = job.platform_state(platform)
            if status not in PLATFORM_TRANSITIONS.get(state.status, set()):
                raise InvalidStateTransition(
                    f"{platform.value} state for job {job_id} cannot move from "
                    f"{state.status.value} to {status.value}"
                )
            state.status = status
            if external_id:
                state.external_id = external_id
            if external_url:
                state.external_url = external_url
            if error:
                state.error = error
            if api_response is not None:
                state.api_response = api_response
            if status == PlatformStatus.COMPLETED:
                state.published_at = datetime.utcnow()
        logger.info(f"Job {job_id} {platform.value} -> {status.value}")
