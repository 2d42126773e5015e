"""Application configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Bar Speed Analyzer"
    debug: bool = False
    api_prefix: str = "/api"

    # Database (SQLite for local dev, PostgreSQL for production)
    database_url: str = "sqlite+aiosqlite:///./barspeed.db"
    database_url_sync: str = "sqlite:///./barspeed.db"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Storage
    history_limit: int = 50  # Sessions returned by the history listing

    # Video Processing
    max_video_duration_minutes: int = 10
    processing_fps: float = 0.0  # 0 = every source frame
    processing_frame_width: int = 0  # Resize frames for faster processing (0 = no resize)

    # Tracking
    max_consecutive_lost_frames: int = 90  # ~3s at 30fps before the session is failed
    tracker_sample_stride: int = 1

    # Signal processing windows (milliseconds)
    position_smoothing_ms: float = 100.0
    velocity_smoothing_ms: float = 100.0
    acceleration_smoothing_ms: float = 100.0
    peak_force_window_ms: float = 100.0

    # Rep segmentation
    rep_on_threshold: float = 0.10  # m/s
    rep_off_threshold: float = 0.05  # m/s
    rep_min_frames: int = 5
    rep_min_peak_velocity: float = 0.15
    rep_min_duration_s: float = 0.35

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
