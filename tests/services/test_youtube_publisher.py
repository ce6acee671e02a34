"""
Tests for YouTube Shorts metadata and the resumable upload protocol.
"""

import pytest

from dualcast.services.social_media.base_service import (
    ContentRejectedError, CredentialError, PlatformResponse, QuotaExceededError, TransientPlatformError,
)
from dualcast.services.social_media.youtube_service import (
    MAX_TITLE_LENGTH, UPLOAD_CHUNK_MULTIPLE, YouTubePublisher, build_video_metadata, parse_range_header,
)

CHUNK = UPLOAD_CHUNK_MULTIPLE
SESSION_URL = "https://www.googleapis.com/upload/youtube/v3/videos?upload_id=abc"


def youtube_error(status, reason, message="error"):
    return status, {"error": {"code": status, "message": message, "errors": [{"reason": reason}]}}


@pytest.fixture
def publisher():
    return YouTubePublisher(access_token="yt-token", chunk_size=CHUNK, max_attempts=3, min_wait=0, max_wait=0)


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "short.mp4"
    path.write_bytes(b"v" * (CHUNK * 2 + 1000))
    return path


class FakeUploadServer:
    """Resumable upload session that acknowledges every chunk it receives."""

    def __init__(self, total_bytes, fail_chunks=()):
        self.total_bytes = total_bytes
        self.received = 0
        self.fail_chunks = set(fail_chunks)
        self.requests = []

    async def send(self, method, url, headers=None, data=None, json=None, **kwargs):
        content_range = (headers or {}).get("Content-Range")
        self.requests.append((method, content_range))
        if method == "POST":
            assert json["snippet"]["title"]
            return PlatformResponse(status=200, data={}, headers={"location": SESSION_URL})

        if content_range.startswith("bytes */"):
            return self._ack()

        start = int(content_range.split(" ")[1].split("-")[0])
        if start in self.fail_chunks:
            self.fail_chunks.discard(start)
            raise TransientPlatformError("connection reset")
        assert start == self.received
        self.received += len(data)
        if self.received >= self.total_bytes:
            return PlatformResponse(status=200, data={"id": "dQw4w9WgXcQ", "snippet": {}})
        return self._ack()

    def _ack(self):
        return PlatformResponse(status=308, data={}, headers={"range": f"bytes=0-{self.received - 1}"})


class TestVideoMetadata:
    """Shorts metadata is YouTube-safe."""

    @pytest.mark.unit
    def test_build_video_metadata(self):
        metadata = build_video_metadata(
            "<Launch> day " + "x" * 200,
            "All about the launch.",
            ["#launch", "launch", "x" * 45, "product tips"],
        )

        assert len(metadata.title) == MAX_TITLE_LENGTH
        assert "<" not in metadata.title and ">" not in metadata.title
        assert metadata.description.endswith("#Shorts #ytshorts")
        assert metadata.tags == ["launch", "product tips"]

    @pytest.mark.unit
    def test_existing_shorts_marker_is_kept(self):
        metadata = build_video_metadata("Title", "Watch this #shorts", [])

        assert metadata.description == "Watch this #shorts"

    @pytest.mark.unit
    def test_blank_title(self):
        assert build_video_metadata("  ", "", []).title == "Untitled Video"

    @pytest.mark.unit
    def test_to_resource(self):
        resource = build_video_metadata("Title", "Description", ["tag"]).to_resource()

        assert resource["snippet"]["tags"] == ["tag"]
        assert resource["status"]["selfDeclaredMadeForKids"] is False

    @pytest.mark.unit
    @pytest.mark.parametrize("value,expected", [
        ("bytes=0-262143", 262144), ("bytes=0-0", 1), (None, 0), ("garbage", 0),
    ])
    def test_parse_range_header(self, value, expected):
        assert parse_range_header(value) == expected


class TestYouTubePublisher:
    """Test chunked resumable uploads."""

    @pytest.mark.unit
    def test_chunk_size_must_be_aligned(self):
        with pytest.raises(ValueError, match="multiple"):
            YouTubePublisher(access_token="yt-token", chunk_size=CHUNK + 1)

    @pytest.mark.unit
    async def test_publish_short(self, publisher, video_file):
        total = video_file.stat().st_size
        server = FakeUploadServer(total)
        publisher._send = server.send
        progress = []

        result = await publisher.publish_short(
            str(video_file), build_video_metadata("Title", "Description", []),
            on_progress=lambda sent, size: progress.append(sent),
        )

        assert result.external_id == "dQw4w9WgXcQ"
        assert result.external_url == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert server.received == total
        assert [r[1] for r in server.requests[1:]] == [
            f"bytes 0-{CHUNK - 1}/{total}",
            f"bytes {CHUNK}-{2 * CHUNK - 1}/{total}",
            f"bytes {2 * CHUNK}-{total - 1}/{total}",
        ]
        assert progress == [CHUNK, 2 * CHUNK, total]

    @pytest.mark.unit
    async def test_resumes_after_failed_chunk(self, publisher, video_file):
        total = video_file.stat().st_size
        server = FakeUploadServer(total, fail_chunks={CHUNK})
        publisher._send = server.send

        result = await publisher.publish_short(str(video_file), build_video_metadata("Title", "", []))

        assert result.external_id == "dQw4w9WgXcQ"
        assert ("PUT", f"bytes */{total}") in server.requests
        assert server.received == total

    @pytest.mark.unit
    async def test_gives_up_after_repeated_failures(self, publisher, video_file, mocker):
        publisher._send = mocker.AsyncMock(side_effect=[
            PlatformResponse(status=200, data={}, headers={"location": SESSION_URL}),
        ] + [TransientPlatformError("connection reset")] * 10)

        with pytest.raises(TransientPlatformError):
            await publisher.publish_short(str(video_file), build_video_metadata("Title", "", []))

    @pytest.mark.unit
    async def test_missing_session_url(self, publisher, video_file, mocker):
        publisher._send = mocker.AsyncMock(return_value=PlatformResponse(status=200, data={}))
        publisher.max_attempts = 1

        with pytest.raises(TransientPlatformError, match="resumable upload URL"):
            await publisher.publish_short(str(video_file), build_video_metadata("Title", "", []))


class TestYouTubeErrors:
    """YouTube error reasons map onto the error taxonomy."""

    @pytest.mark.unit
    def test_quota_exceeded(self, publisher):
        error = publisher.classify_error(*youtube_error(403, "quotaExceeded"))

        assert isinstance(error, QuotaExceededError)
        assert "quota" in error.message

    @pytest.mark.unit
    def test_invalid_credentials(self, publisher):
        error = publisher.classify_error(*youtube_error(401, "authError", "Invalid Credentials"))

        assert isinstance(error, CredentialError)
        assert "reauthenticate" in error.message

    @pytest.mark.unit
    def test_invalid_tags(self, publisher):
        error = publisher.classify_error(*youtube_error(400, "invalidTags"))

        assert isinstance(error, ContentRejectedError)
        assert "500 characters" in error.message

    @pytest.mark.unit
    def test_server_error_is_transient(self, publisher):
        error = publisher.classify_error(503, {"error": {"code": 503, "message": "Backend Error"}})

        assert isinstance(error, TransientPlatformError)
