from typing import List, Union
from pydantic import AnyHttpUrl, validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Dualcast"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./dualcast.db"

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @validator("BACKEND_CORS_ORIGINS", pre=True)
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Uploads
    UPLOAD_DIR: str = "./uploads"
    PROCESSED_DIR: str = "./processed"
    MAX_VIDEO_SIZE_MB: int = 100
    SUPPORTED_VIDEO_MIME_TYPES: List[str] = ["video/mp4", "video/quicktime", "video/x-msvideo"]
    MIN_VIDEO_DURATION_SECONDS: float = 1.0
    LONG_VIDEO_WARNING_SECONDS: float = 3600.0
    CLEANUP_TEMP_FILES: bool = True

    # Transcoding
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    FFMPEG_PRESET: str = "veryfast"
    FFMPEG_CRF: int = 23
    INSTAGRAM_TARGET_WIDTH: int = 720
    INSTAGRAM_TARGET_HEIGHT: int = 1280
    INSTAGRAM_VIDEO_BITRATE: str = "3500k"
    INSTAGRAM_AUDIO_BITRATE: str = "128k"
    YOUTUBE_TARGET_WIDTH: int = 1080
    YOUTUBE_TARGET_HEIGHT: int = 1920
    YOUTUBE_VIDEO_BITRATE: str = "5000k"
    YOUTUBE_AUDIO_BITRATE: str = "192k"

    # AI Services
    OPENAI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""
    GEMINI_API_KEY: str = ""
    OPENROUTER_API_KEY: str = ""

    # AI Configuration
    DEFAULT_MODEL_PROVIDER: str = "gemini"
    OPENAI_DEFAULT_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_DEFAULT_MODEL: str = "claude-3-5-sonnet-20241022"
    GEMINI_DEFAULT_MODEL: str = "gemini-2.5-flash"
    OPENROUTER_DEFAULT_MODEL: str = "meta-llama/llama-3.1-8b-instruct:free"
    LLAMA_DEFAULT_MODEL: str = "meta-llama/llama-3.1-70b-instruct"
    GEMINI_API_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_SITE_URL: str = "https://dualcast.app"
    MAX_TOKENS_PER_REQUEST: int = 1024
    AI_TEMPERATURE: float = 0.7
    AI_REQUEST_TIMEOUT: int = 60
    AI_MAX_RETRIES: int = 3
    AI_RETRY_MIN_WAIT: float = 1.0
    AI_RETRY_MAX_WAIT: float = 10.0
    AI_ALLOW_PARTIAL_METADATA: bool = False

    # Instagram Graph API
    FACEBOOK_APP_ID: str = ""
    FACEBOOK_APP_SECRET: str = ""
    INSTAGRAM_GRAPH_URL: str = "https://graph.facebook.com/v24.0"
    INSTAGRAM_POLL_INTERVAL_SECONDS: float = 2.0
    INSTAGRAM_POLL_MAX_ATTEMPTS: int = 20
    INSTAGRAM_CAPTION_MAX_LENGTH: int = 2200

    # YouTube Data API
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    YOUTUBE_UPLOAD_URL: str = "https://www.googleapis.com/upload/youtube/v3/videos"
    YOUTUBE_CHUNK_SIZE: int = 5 * 1024 * 1024
    YOUTUBE_CATEGORY_ID: str = "22"
    YOUTUBE_PRIVACY_STATUS: str = "public"

    # Platform request policy
    SOCIAL_MEDIA_REQUEST_TIMEOUT: int = 30
    SOCIAL_MEDIA_UPLOAD_TIMEOUT: int = 300
    SOCIAL_MEDIA_MAX_RETRIES: int = 3
    SOCIAL_MEDIA_RETRY_MIN_WAIT: float = 2.0
    SOCIAL_MEDIA_RETRY_MAX_WAIT: float = 30.0

    # Media store (S3 compatible)
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_S3_BUCKET: str = "dualcast-media"
    AWS_REGION: str = "us-east-1"
    S3_ENDPOINT_URL: str = ""
    S3_PUBLIC_ENDPOINT_URL: str = ""
    S3_KEY_PREFIX: str = "publish"
    S3_PRESIGN_EXPIRY_SECONDS: int = 3600

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
