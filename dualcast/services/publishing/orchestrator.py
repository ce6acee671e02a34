"""
Publish Pipeline Orchestrator

Drives one publish job from an accepted upload to a terminal status:

    validate -> (transcode instagram || transcode youtube || generate content)
             -> (publish instagram || publish youtube) -> finalize

Every step is written to the job store before the matching progress event is
pushed, so a client that reads the job after an event never sees older state.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from dualcast.core.config import settings
from dualcast.models.publish_job import JobStatus, Platform, PlatformStatus, PipelineStep, StepStatus
from dualcast.schemas.progress import ProgressEvent, ProgressEventType
from dualcast.schemas.publish_job import GeneratedContent, ProviderConfig
from dualcast.services.ai.base import AIServiceError
from dualcast.services.ai.metadata_generator import MetadataGenerator, get_metadata_generator
from dualcast.services.publishing.broadcaster import ProgressBroadcaster, get_broadcaster
from dualcast.services.publishing.job_store import JobStore
from dualcast.services.social_media.base_service import (
    BaseSocialMediaService, CredentialError, PublishResult, SocialMediaServiceError,
)
from dualcast.services.social_media.credentials import CredentialProvider, PlatformCredentials
from dualcast.services.social_media.instagram_service import InstagramPublisher, format_caption
from dualcast.services.social_media.youtube_service import YouTubePublisher, build_video_metadata
from dualcast.services.storage.media_store import MediaStore, MediaStoreError, get_media_store
from dualcast.services.video_processing.platform_specs import PlatformSpec, get_platform_specs
from dualcast.services.video_processing.transcoder import (
    TranscodeError, VideoTranscoder, get_transcoder,
)

logger = logging.getLogger(__name__)

# Upload progress is reported in steps of this many percent
UPLOAD_PROGRESS_STEP = 5

PublisherFactory = Callable[[PlatformCredentials], BaseSocialMediaService]


def instagram_publisher(credentials: PlatformCredentials) -> InstagramPublisher:
    return InstagramPublisher(access_token=credentials.access_token, account_id=credentials.account_id)


def youtube_publisher(credentials: PlatformCredentials) -> YouTubePublisher:
    return YouTubePublisher(access_token=credentials.access_token, channel_id=credentials.account_id)


@dataclass
class JobContext:
    """Per-run state that never leaves the orchestrator"""
    job_id: str
    owner_id: str
    video_path: str
    brief: str
    provider_config: ProviderConfig
    percentage: int = 0
    error: Optional[str] = None
    outputs: Dict[Platform, str] = field(default_factory=dict)


class PublishOrchestrator:
    def __init__(
        self,
        job_store: JobStore,
        credential_provider: CredentialProvider,
        broadcaster: ProgressBroadcaster = None,
        transcoder: VideoTranscoder = None,
        metadata_generator: MetadataGenerator = None,
        media_store: MediaStore = None,
        publisher_factories: Dict[Platform, PublisherFactory] = None,
        platform_specs: Dict[Platform, PlatformSpec] = None,
        cleanup: bool = None,
    ):
        self.job_store = job_store
        self.credential_provider = credential_provider
        self.broadcaster = broadcaster or get_broadcaster()
        self.transcoder = transcoder or get_transcoder()
        self.metadata_generator = metadata_generator or get_metadata_generator()
        self.media_store = media_store or get_media_store()
        self.publisher_factories = publisher_factories or {
            Platform.INSTAGRAM: instagram_publisher,
            Platform.YOUTUBE: youtube_publisher,
        }
        self.platform_specs = platform_specs or get_platform_specs()
        self.cleanup = settings.CLEANUP_TEMP_FILES if cleanup is None else cleanup

    # Events

    def _emit(
        self,
        ctx: JobContext,
        event: ProgressEventType,
        step: str,
        status: str,
        message: str = "",
        percentage: Optional[int] = None,
        platform: Optional[Platform] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.broadcaster.publish(ctx.job_id, ProgressEvent(
            event=event,
            jobId=ctx.job_id,
            step=step,
            status=status,
            percentage=ctx.percentage if percentage is None else percentage,
            message=message,
            platform=platform.value if platform else None,
            data=data,
        ))

    def _advance(self, ctx: JobContext, percentage: int) -> None:
        ctx.percentage = max(ctx.percentage, percentage)

    def _start(self, ctx: JobContext, step: PipelineStep, message: str, platform: Platform = None) -> int:
        step_id = self.job_store.start_step(ctx.job_id, step, message)
        logger.info(f"Job {ctx.job_id}: {step.value} started")
        self._emit(ctx, ProgressEventType.JOB_PROGRESS, step.value, StepStatus.STARTED.value,
                   message, platform=platform)
        return step_id

    def _finish(
        self,
        ctx: JobContext,
        step: PipelineStep,
        step_id: int,
        status: StepStatus,
        message: str,
        error: Optional[str] = None,
        platform: Platform = None,
    ) -> None:
        self._advance(ctx, self.job_store.finish_step(step_id, status, message=message, error=error))
        logger.info(f"Job {ctx.job_id}: {step.value} {status.value}" + (f" ({error})" if error else ""))
        self._emit(ctx, ProgressEventType.JOB_PROGRESS, step.value, status.value,
                   error or message, platform=platform)

    # Pipeline

    async def run(self, job_id: str, provider_config: Optional[ProviderConfig] = None) -> JobStatus:
        """Drive a pending job to a terminal status"""
        job = self.job_store.get_job(job_id)
        if job is None:
            raise ValueError(f"Publish job {job_id} does not exist")

        ctx = JobContext(
            job_id=job.job_id,
            owner_id=job.owner_id,
            video_path=job.video_path,
            brief=job.brief,
            provider_config=provider_config or ProviderConfig(**job.provider_config),
        )

        self.job_store.set_status(job_id, JobStatus.PROCESSING)
        self._emit(ctx, ProgressEventType.JOB_PROGRESS, "job", JobStatus.PROCESSING.value,
                   "Publishing started")
        try:
            status = await self._run_pipeline(ctx)
        finally:
            self._cleanup(ctx)

        job = self.job_store.get_job(job_id)
        self._emit(
            ctx, ProgressEventType.JOB_COMPLETE, "job", status.value,
            message=job.error or "Published to all platforms",
            percentage=100,
            data={
                state.platform.value: {
                    "status": state.status.value,
                    "url": state.external_url,
                    "error": state.error,
                }
                for state in job.platforms
            },
        )
        self.broadcaster.close_channel(job_id)
        logger.info(f"Job {job_id} finished with status {status.value}")
        return status

    async def _run_pipeline(self, ctx: JobContext) -> JobStatus:
        if not await self._validate(ctx):
            return JobStatus.FAILED

        transcodes = {
            platform: asyncio.create_task(self._transcode(ctx, platform))
            for platform in self.platform_specs
        }
        content = await self._generate_content(ctx)
        if content is None:
            # Both platforms share the content, so there is nothing left to publish
            for task in transcodes.values():
                task.cancel()
            await asyncio.gather(*transcodes.values(), return_exceptions=True)
            self.job_store.fail_job(ctx.job_id, ctx.error)
            return JobStatus.FAILED

        outputs = dict(zip(transcodes, await asyncio.gather(*transcodes.values())))

        await asyncio.gather(*(
            self._publish_stage(ctx, platform, outputs[platform], content)
            for platform in outputs
        ))
        return self.job_store.finalize(ctx.job_id)

    async def _validate(self, ctx: JobContext) -> bool:
        step = PipelineStep.VALIDATE_VIDEO
        step_id = self._start(ctx, step, "Checking uploaded video")
        try:
            result = await self.transcoder.validate(ctx.video_path)
        except TranscodeError as e:
            error = f"Video validation failed: {e.message}"
            self._finish(ctx, step, step_id, StepStatus.FAILED, "Video rejected", error)
            self.job_store.fail_job(ctx.job_id, error)
            return False

        for warning in result.warnings:
            logger.warning(f"Job {ctx.job_id}: {warning}")
            self._emit(ctx, ProgressEventType.JOB_WARNING, step.value, "warning", warning)
        self._finish(ctx, step, step_id, StepStatus.COMPLETED,
                     f"Video OK: {result.probe.resolution}, {result.probe.duration:.1f}s")
        return True

    async def _transcode(self, ctx: JobContext, platform: Platform) -> Optional[str]:
        """Convert the upload for one platform; a failure fails only that platform"""
        step = PipelineStep.transcode_for(platform)
        spec = self.platform_specs[platform]
        step_id = self._start(ctx, step, f"Converting to {spec.resolution}", platform)

        def on_progress(percent: int) -> None:
            self._emit(ctx, ProgressEventType.TRANSCODE_PROGRESS, step.value, "processing",
                       f"Converting for {platform.value}: {percent}%",
                       percentage=percent, platform=platform)

        try:
            output_path = await self.transcoder.convert(ctx.video_path, spec, on_progress=on_progress)
        except asyncio.CancelledError:
            self._finish(ctx, step, step_id, StepStatus.SKIPPED, "Cancelled: content generation failed",
                         platform=platform)
            raise
        except TranscodeError as e:
            return self._fail_transcode(ctx, platform, step, step_id, f"Video conversion failed: {e.message}")
        except Exception as e:
            logger.exception(f"Job {ctx.job_id}: unexpected error converting for {platform.value}")
            return self._fail_transcode(ctx, platform, step, step_id, f"Video conversion failed: {e}")

        ctx.outputs[platform] = str(output_path)
        self._finish(ctx, step, step_id, StepStatus.COMPLETED, f"Converted to {spec.resolution}",
                     platform=platform)
        return str(output_path)

    def _fail_transcode(
        self,
        ctx: JobContext,
        platform: Platform,
        step: PipelineStep,
        step_id: int,
        error: str,
    ) -> None:
        self._finish(ctx, step, step_id, StepStatus.FAILED, "Conversion failed", error, platform)
        self.job_store.set_platform_status(ctx.job_id, platform, PlatformStatus.FAILED, error=error)
        self._emit(ctx, ProgressEventType.PUBLISH_ERROR, step.value, PlatformStatus.FAILED.value,
                   error, platform=platform)
        return None

    async def _generate_content(self, ctx: JobContext) -> Optional[GeneratedContent]:
        step = PipelineStep.GENERATE_CONTENT
        step_id = self._start(ctx, step, "Generating title, description, keywords and hashtags")
        try:
            result = await self.metadata_generator.generate_all(ctx.provider_config, ctx.brief)
        except AIServiceError as e:
            ctx.error = f"Metadata generation failed: {e.message}"
            self._finish(ctx, step, step_id, StepStatus.FAILED, "Content generation failed", ctx.error)
            return None

        self.job_store.set_generated_content(ctx.job_id, result.content.model_dump())
        for fallback in result.fallback_fields:
            self._emit(ctx, ProgressEventType.JOB_WARNING, step.value, "warning",
                       f"Continuing without {fallback.value}")
        self._finish(ctx, step, step_id, StepStatus.COMPLETED, "Content generated")
        return result.content

    # Publishing

    async def _publish_stage(
        self,
        ctx: JobContext,
        platform: Platform,
        video_path: Optional[str],
        content: GeneratedContent,
    ) -> bool:
        """Upload and publish to one platform, writing only that platform's state"""
        step = PipelineStep.publish_for(platform)
        if video_path is None:
            self._advance(ctx, self.job_store.record_step(
                ctx.job_id, step, StepStatus.SKIPPED, message="Skipped: video conversion failed"
            ))
            return False

        step_id = self._start(ctx, step, f"Publishing to {platform.value}", platform)
        self.job_store.set_platform_status(ctx.job_id, platform, PlatformStatus.PROCESSING)

        try:
            credentials = await self.credential_provider.get_credentials(ctx.owner_id, platform)
            stored = await self.media_store.upload(video_path, ctx.job_id)
            self._emit(ctx, ProgressEventType.PUBLISH_PROGRESS, step.value, "processing",
                       "Video stored, sending to platform", platform=platform)
            async with self.publisher_factories[platform](credentials) as publisher:
                if platform == Platform.INSTAGRAM:
                    result = await self._publish_instagram(publisher, stored.url, content)
                else:
                    result = await self._publish_youtube(ctx, publisher, video_path, content)
            result.api_response.setdefault("mediaUrl", stored.url)
        except CredentialError as e:
            try:
                await self.credential_provider.mark_invalid(ctx.owner_id, platform, e.message)
            except Exception:
                logger.exception(f"Job {ctx.job_id}: could not flag {platform.value} credentials as invalid")
            return self._fail_platform(ctx, platform, step, step_id, e.message)
        except (SocialMediaServiceError, MediaStoreError) as e:
            return self._fail_platform(ctx, platform, step, step_id, e.message)
        except Exception as e:
            # Nothing may escape a stage while its sibling is still publishing
            logger.exception(f"Job {ctx.job_id}: unexpected error publishing to {platform.value}")
            return self._fail_platform(ctx, platform, step, step_id, f"Unexpected error: {e}")

        self.job_store.set_platform_status(
            ctx.job_id, platform, PlatformStatus.COMPLETED,
            external_id=result.external_id,
            external_url=result.external_url,
            api_response=result.api_response,
        )
        self._finish(ctx, step, step_id, StepStatus.COMPLETED, f"Published: {result.external_url}",
                     platform=platform)
        self._emit(ctx, ProgressEventType.PUBLISH_DONE, step.value, PlatformStatus.COMPLETED.value,
                   f"Published to {platform.value}", platform=platform,
                   data={"id": result.external_id, "url": result.external_url})
        return True

    def _fail_platform(
        self,
        ctx: JobContext,
        platform: Platform,
        step: PipelineStep,
        step_id: int,
        error: str,
    ) -> bool:
        self.job_store.set_platform_status(ctx.job_id, platform, PlatformStatus.FAILED, error=error)
        self._finish(ctx, step, step_id, StepStatus.FAILED, "Publish failed", error, platform)
        self._emit(ctx, ProgressEventType.PUBLISH_ERROR, step.value, PlatformStatus.FAILED.value,
                   error, platform=platform)
        return False

    async def _publish_instagram(
        self,
        publisher: InstagramPublisher,
        media_url: str,
        content: GeneratedContent,
    ) -> PublishResult:
        caption = format_caption(content.description, content.hashtags)
        return await publisher.publish_reel(media_url, caption)

    async def _publish_youtube(
        self,
        ctx: JobContext,
        publisher: YouTubePublisher,
        video_path: str,
        content: GeneratedContent,
    ) -> PublishResult:
        step = PipelineStep.PUBLISH_YOUTUBE
        metadata = build_video_metadata(content.title, content.description, content.keywords)
        reported = [0]

        def on_progress(sent: int, total: int) -> None:
            percent = int(sent * 100 / total) if total else 100
            if percent - reported[0] >= UPLOAD_PROGRESS_STEP or (percent == 100 and reported[0] < 100):
                reported[0] = percent
                self._emit(ctx, ProgressEventType.PUBLISH_PROGRESS, step.value, "processing",
                           f"Uploading to YouTube: {percent}%",
                           percentage=percent, platform=Platform.YOUTUBE)

        return await publisher.publish_short(video_path, metadata, on_progress)

    # Housekeeping

    def _cleanup(self, ctx: JobContext) -> None:
        if not self.cleanup:
            return
        paths: List[str] = [ctx.video_path, *ctx.outputs.values()]
        for path in paths:
            try:
                if path and os.path.exists(path):
                    os.remove(path)
            except OSError as e:
                logger.warning(f"Failed to remove {path}: {e}")
