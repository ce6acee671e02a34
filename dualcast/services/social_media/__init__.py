from .instagram_service import InstagramPublisher
from .youtube_service import YouTubePublisher
from .credentials import CredentialProvider, DatabaseCredentialProvider, PlatformCredentials
from .tag_sanitizer import sanitize_youtube_tags

__all__ = [
    "InstagramPublisher",
    "YouTubePublisher",
    "CredentialProvider",
    "DatabaseCredentialProvider",
    "PlatformCredentials",
    "sanitize_youtube_tags",
]
