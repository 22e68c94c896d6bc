import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _build_database_url() -> str:
    raw_url = os.getenv("DATABASE_URL", "sqlite:///./videoguard.db")
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


@dataclass(frozen=True)
class Settings:
    database_url: str = _build_database_url()
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    drm_secret: str = os.getenv("DRM_SECRET", "")
    video_token_expire_seconds: int = int(
        os.getenv("VIDEO_TOKEN_EXPIRE_SECONDS", str(2 * 60 * 60))
    )
    video_token_issuer: str = os.getenv("VIDEO_TOKEN_ISSUER", "edtech-platform")
    video_token_audience: str = os.getenv("VIDEO_TOKEN_AUDIENCE", "video-player")
    max_concurrent_sessions: int = int(os.getenv("MAX_CONCURRENT_SESSIONS", "3"))
    max_daily_views: int = int(os.getenv("MAX_DAILY_VIEWS", "50"))
    watermark_enabled: bool = _env_bool("WATERMARK_ENABLED", True)
    cleanup_on_startup: bool = _env_bool("CLEANUP_EXPIRED_ON_STARTUP", True)
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
