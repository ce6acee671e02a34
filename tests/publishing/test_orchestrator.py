"""
End-to-end pipeline runs with every external collaborator faked.
"""

import os

import pytest

from dualcast.models.publish_job import JobStatus, Platform, PlatformStatus, StepStatus
from dualcast.schemas.progress import ProgressEventType
from dualcast.schemas.publish_job import ContentField
from dualcast.services.ai.base import ConfigurationError, ProviderError
from dualcast.services.ai.metadata_generator import MetadataGenerator
from dualcast.services.publishing.orchestrator import PublishOrchestrator
from dualcast.services.social_media.base_service import ContentRejectedError, CredentialError
from dualcast.services.storage.media_store import MediaStoreError
from dualcast.services.video_processing.transcoder import TranscodeError, VideoValidationError
from tests.fakes import (
    FakeCredentialProvider, FakeMediaStore, FakeTranscoder, RecordingServiceFactory,
    ScriptedAIService, publisher_factories,
)


@pytest.fixture
def upload(tmp_path):
    path = tmp_path / "uploads" / "launch.mp4"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00" * 4096)
    return path


@pytest.fixture
def job_id(job_store, provider_config, upload):
    return job_store.create_job(
        owner_id="owner-1",
        video_filename="launch.mp4",
        video_path=str(upload),
        brief="Launch video for the Aurora X headphones",
        provider_config=provider_config.redacted(),
    )


class Pipeline:
    """Orchestrator wired to fakes, with handles on each fake for assertions."""

    def __init__(self, job_store, broadcaster, tmp_path, replies=None, transcode_fail=None,
                 credential_errors=None, mark_invalid_error=None, publish_errors=None, media_error=None,
                 warnings=None, allow_partial=False, cleanup=False):
        self.job_store = job_store
        self.broadcaster = broadcaster
        self.service = ScriptedAIService(replies=replies)
        self.transcoder = FakeTranscoder(tmp_path / "processed", fail=transcode_fail, warnings=warnings)
        self.credentials = FakeCredentialProvider(errors=credential_errors, mark_invalid_error=mark_invalid_error)
        self.media_store = FakeMediaStore(error=media_error)
        factories, self.publishers = publisher_factories(publish_errors)
        self.orchestrator = PublishOrchestrator(
            job_store,
            credential_provider=self.credentials,
            broadcaster=broadcaster,
            transcoder=self.transcoder,
            metadata_generator=MetadataGenerator(
                service_factory=RecordingServiceFactory(self.service),
                max_attempts=1, min_wait=0, max_wait=0, allow_partial=allow_partial,
            ),
            media_store=self.media_store,
            publisher_factories=factories,
            cleanup=cleanup,
        )

    async def run(self, job_id, provider_config):
        subscription = self.broadcaster.open(job_id)
        status = await self.orchestrator.run(job_id, provider_config)
        self.events = [event async for event in subscription]
        return status

    def of_type(self, event_type):
        return [event for event in self.events if event.event == event_type]


@pytest.fixture
def pipeline(job_store, broadcaster, tmp_path):
    def build(**kwargs):
        return Pipeline(job_store, broadcaster, tmp_path, **kwargs)
    return build


class TestSuccessfulRun:
    """Both platforms publish."""

    @pytest.mark.unit
    async def test_completed(self, pipeline, job_store, job_id, provider_config):
        p = pipeline()

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.COMPLETED
        job = job_store.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.overall_percentage == 100
        assert job.error is None
        assert job.completed_at is not None

        instagram = job.platform_state(Platform.INSTAGRAM)
        youtube = job.platform_state(Platform.YOUTUBE)
        assert instagram.external_url == "https://www.instagram.com/reel/C1a2b3/"
        assert youtube.external_url == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert instagram.api_response["mediaUrl"].startswith("https://media.example.com/")

        hashtags = job.generated_content["hashtags"]
        assert 0 < len(hashtags) <= 15
        assert len({tag.lower() for tag in hashtags}) == len(hashtags)
        assert all(len(tag) <= 30 for tag in hashtags)

        assert [s.status for s in job.steps] == [StepStatus.COMPLETED] * 6

    @pytest.mark.unit
    async def test_publishers_receive_generated_content(self, pipeline, job_store, job_id, provider_config):
        p = pipeline()

        await p.run(job_id, provider_config)

        content = job_store.get_job(job_id).generated_content
        reel = p.publishers[Platform.INSTAGRAM].calls[0]
        assert reel["media_url"].startswith("https://media.example.com/publish/")
        assert reel["caption"].startswith(content["description"])
        assert all(tag in reel["caption"] for tag in content["hashtags"])

        short = p.publishers[Platform.YOUTUBE].calls[0]
        assert short["file_path"].endswith("_youtube_shorts.mp4")
        assert short["metadata"].title == content["title"]
        assert "#Shorts" in short["metadata"].description
        assert all(p.publishers[platform].closed for platform in Platform)

    @pytest.mark.unit
    async def test_progress_events(self, pipeline, job_id, provider_config):
        p = pipeline()

        await p.run(job_id, provider_config)

        progress = [event.percentage for event in p.of_type(ProgressEventType.JOB_PROGRESS)]
        assert progress == sorted(progress)
        assert p.of_type(ProgressEventType.TRANSCODE_PROGRESS)
        assert {e.platform for e in p.of_type(ProgressEventType.PUBLISH_DONE)} == {"instagram", "youtube"}

        final = p.events[-1]
        assert final.event == ProgressEventType.JOB_COMPLETE
        assert final.status == "completed"
        assert final.percentage == 100
        assert final.data["youtube"]["url"] == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert p.broadcaster.subscriber_count(job_id) == 0

    @pytest.mark.unit
    async def test_validation_warnings_are_reported(self, pipeline, job_id, provider_config):
        p = pipeline(warnings=["Low resolution source (320x240)"])

        await p.run(job_id, provider_config)

        warnings = p.of_type(ProgressEventType.JOB_WARNING)
        assert [w.message for w in warnings] == ["Low resolution source (320x240)"]

    @pytest.mark.unit
    async def test_temporary_files_are_removed(self, pipeline, job_id, provider_config, upload):
        p = pipeline(cleanup=True)

        await p.run(job_id, provider_config)

        assert not upload.exists()
        assert not any(os.path.exists(call["file_path"]) for call in p.publishers[Platform.YOUTUBE].calls)

    @pytest.mark.unit
    async def test_stored_provider_config_is_used_by_default(self, pipeline, job_id):
        p = pipeline()

        assert await p.run(job_id, None) == JobStatus.COMPLETED
        assert p.orchestrator.metadata_generator.service_factory.requests[0]["api_key"] is None

    @pytest.mark.unit
    async def test_unknown_job(self, pipeline, provider_config):
        with pytest.raises(ValueError):
            await pipeline().orchestrator.run("missing", provider_config)


class TestPlatformFailures:
    """A failing platform never takes the other one down."""

    @pytest.mark.unit
    async def test_invalid_credentials_give_partial(self, pipeline, job_store, job_id, provider_config):
        error = CredentialError(
            "YouTube authentication failed: Invalid Credentials. "
            "Please reconnect your YouTube account to reauthenticate.",
            platform=Platform.YOUTUBE,
        )
        p = pipeline(credential_errors={Platform.YOUTUBE: error})

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.PARTIAL
        job = job_store.get_job(job_id)
        assert job.platform_state(Platform.INSTAGRAM).status == PlatformStatus.COMPLETED
        youtube = job.platform_state(Platform.YOUTUBE)
        assert youtube.status == PlatformStatus.FAILED
        assert "reauthenticate" in youtube.error
        assert "reauthenticate" in job.error
        assert p.credentials.invalidated == [("owner-1", Platform.YOUTUBE, error.message)]
        assert [e.platform for e in p.of_type(ProgressEventType.PUBLISH_ERROR)] == ["youtube"]

    @pytest.mark.unit
    async def test_both_platforms_fail(self, pipeline, job_store, job_id, provider_config):
        p = pipeline(publish_errors={
            Platform.INSTAGRAM: ContentRejectedError("Instagram could not process the video", platform=Platform.INSTAGRAM),
            Platform.YOUTUBE: ContentRejectedError("Invalid video tags", platform=Platform.YOUTUBE),
        })

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.FAILED
        job = job_store.get_job(job_id)
        assert job.error
        assert all(state.status == PlatformStatus.FAILED for state in job.platforms)
        assert p.events[-1].status == "failed"

    @pytest.mark.unit
    async def test_transcode_failure_skips_publish(self, pipeline, job_store, job_id, provider_config):
        p = pipeline(transcode_fail={"youtube_shorts": TranscodeError("ffmpeg exited with code 1", "youtube_shorts")})

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.PARTIAL
        job = job_store.get_job(job_id)
        youtube = job.platform_state(Platform.YOUTUBE)
        assert youtube.error.startswith("Video conversion failed")
        steps = {s.step_name: s.status for s in job.steps}
        assert steps["transcode_youtube"] == StepStatus.FAILED
        assert steps["publish_youtube"] == StepStatus.SKIPPED
        assert p.publishers[Platform.YOUTUBE].calls == []
        assert job.platform_state(Platform.INSTAGRAM).status == PlatformStatus.COMPLETED

    @pytest.mark.unit
    async def test_unexpected_transcode_error_fails_only_that_platform(self, pipeline, job_store, job_id,
                                                                       provider_config):
        p = pipeline(transcode_fail={"instagram_reels": PermissionError("ffmpeg not executable")})

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.PARTIAL
        job = job_store.get_job(job_id)
        instagram = job.platform_state(Platform.INSTAGRAM)
        assert instagram.status == PlatformStatus.FAILED
        assert "ffmpeg not executable" in instagram.error
        assert job.platform_state(Platform.YOUTUBE).status == PlatformStatus.COMPLETED
        steps = {s.step_name: s.status for s in job.steps}
        assert steps["transcode_instagram"] == StepStatus.FAILED
        assert steps["publish_instagram"] == StepStatus.SKIPPED
        assert StepStatus.STARTED not in steps.values()
        assert p.events[-1].event == ProgressEventType.JOB_COMPLETE

    @pytest.mark.unit
    async def test_credential_flag_failure_stays_in_stage(self, pipeline, job_store, job_id, provider_config):
        error = CredentialError("Token revoked, reauthenticate", platform=Platform.YOUTUBE)
        p = pipeline(
            credential_errors={Platform.YOUTUBE: error},
            mark_invalid_error=RuntimeError("database is locked"),
        )

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.PARTIAL
        youtube = job_store.get_job(job_id).platform_state(Platform.YOUTUBE)
        assert youtube.status == PlatformStatus.FAILED
        assert "reauthenticate" in youtube.error

    @pytest.mark.unit
    async def test_media_store_failure(self, pipeline, job_store, job_id, provider_config):
        p = pipeline(media_error=MediaStoreError("Failed to store launch.mp4: AccessDenied"))

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.FAILED
        assert job_store.get_job(job_id).platform_state(Platform.INSTAGRAM).error.startswith("Failed to store")

    @pytest.mark.unit
    async def test_unexpected_publisher_error(self, pipeline, job_store, job_id, provider_config):
        p = pipeline(publish_errors={Platform.INSTAGRAM: RuntimeError("socket exploded")})

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.PARTIAL
        error = job_store.get_job(job_id).platform_state(Platform.INSTAGRAM).error
        assert error == "Unexpected error: socket exploded"


class TestJobFailures:
    """Failures shared by both platforms fail the whole job."""

    @pytest.mark.unit
    async def test_validation_failure(self, pipeline, job_store, job_id, provider_config):
        p = pipeline(transcode_fail={"validate": VideoValidationError("Video is too short (0.4s)")})

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.FAILED
        job = job_store.get_job(job_id)
        assert job.error == "Video validation failed: Video is too short (0.4s)"
        assert all(state.status == PlatformStatus.FAILED for state in job.platforms)
        assert p.transcoder.converted == []
        assert p.service.calls == []
        assert p.events[-1].event == ProgressEventType.JOB_COMPLETE

    @pytest.mark.unit
    async def test_metadata_failure(self, pipeline, job_store, job_id, provider_config):
        p = pipeline(replies={ContentField.TITLE: ConfigurationError("Invalid API key", "openai")})

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.FAILED
        job = job_store.get_job(job_id)
        assert job.error.startswith("Metadata generation failed")
        assert job.generated_content is None
        assert all(state.status == PlatformStatus.FAILED for state in job.platforms)
        assert all(publisher.calls == [] for publisher in p.publishers.values())
        assert job.overall_percentage == 100

    @pytest.mark.unit
    async def test_partial_metadata_continues(self, pipeline, job_store, job_id, provider_config):
        p = pipeline(replies={ContentField.HASHTAGS: ProviderError("down", "openai")}, allow_partial=True)

        status = await p.run(job_id, provider_config)

        assert status == JobStatus.COMPLETED
        assert job_store.get_job(job_id).generated_content["hashtags"] == []
        assert [w.message for w in p.of_type(ProgressEventType.JOB_WARNING)] == ["Continuing without hashtags"]
