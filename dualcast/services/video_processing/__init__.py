"""
Video processing services for user uploads
"""

from .transcoder import VideoTranscoder, TranscodeError, VideoValidationError, get_transcoder
from .platform_specs import PlatformSpec, get_platform_specs, get_platform_spec

__all__ = [
    "VideoTranscoder",
    "TranscodeError",
    "VideoValidationError",
    "get_transcoder",
    "PlatformSpec",
    "get_platform_specs",
    "get_platform_spec",
]
