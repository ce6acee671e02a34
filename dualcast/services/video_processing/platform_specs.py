"""
Per-platform transcoding targets
"""

from dataclasses import dataclass
from typing import Dict

from dualcast.core.config import settings
from dualcast.models.publish_job import Platform


@dataclass(frozen=True)
class PlatformSpec:
    """Target frame, codecs and limits for one publishing destination"""
    name: str
    width: int
    height: int
    video_bitrate: str
    audio_bitrate: str
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    pixel_format: str = "yuv420p"
    max_duration: float = 60.0
    max_size_mb: int = 100

    @property
    def aspect_ratio(self) -> str:
        return "9:16" if self.width * 16 == self.height * 9 else f"{self.width}:{self.height}"

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


def get_platform_specs() -> Dict[Platform, PlatformSpec]:
    return {
        Platform.INSTAGRAM: PlatformSpec(
            name="instagram_reels",
            width=settings.INSTAGRAM_TARGET_WIDTH,
            height=settings.INSTAGRAM_TARGET_HEIGHT,
            video_bitrate=settings.INSTAGRAM_VIDEO_BITRATE,
            audio_bitrate=settings.INSTAGRAM_AUDIO_BITRATE,
            max_duration=60.0,
            max_size_mb=100,
        ),
        Platform.YOUTUBE: PlatformSpec(
            name="youtube_shorts",
            width=settings.YOUTUBE_TARGET_WIDTH,
            height=settings.YOUTUBE_TARGET_HEIGHT,
            video_bitrate=settings.YOUTUBE_VIDEO_BITRATE,
            audio_bitrate=settings.YOUTUBE_AUDIO_BITRATE,
            max_duration=60.0,
            max_size_mb=256,
        ),
    }


def get_platform_spec(platform: Platform) -> PlatformSpec:
    return get_platform_specs()[Platform(platform)]
