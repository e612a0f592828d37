"""
Configuration management for the micro-lesson pipeline.
"""

from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Project paths
    data_dir: Path = Field(default_factory=lambda: Path("data"))
    output_dir: Path = Field(default_factory=lambda: Path("output"))
    cache_dir: Path = Field(default_factory=lambda: Path("cache"))
    logs_dir: Path = Field(default_factory=lambda: Path("logs"))

    # Worker pool
    max_concurrent_jobs: int = Field(default=3, ge=1, le=20)

    # Ingestion limits
    max_upload_bytes: int = Field(default=500 * 1024 * 1024, description="Maximum accepted upload size in bytes")
    min_duration_seconds: float = Field(default=10.0, description="Shortest accepted source video")
    max_duration_seconds: float = Field(default=4 * 3600.0, description="Longest accepted source video")
    min_width: int = Field(default=320)
    min_height: int = Field(default=240)
    video_quality: str = Field(default="best[height<=720]/best", description="yt-dlp format selector")
    estimate_base_seconds: float = Field(default=60.0)
    estimate_per_video_second: float = Field(default=0.5)
    estimate_max_seconds: float = Field(default=3600.0)

    # Candidate discovery
    youtube_api_key: Optional[str] = Field(default=None, description="YouTube Data API v3 key")
    youtube_api_url: str = Field(default="https://www.googleapis.com/youtube/v3")
    candidate_min_duration: float = Field(default=300.0)
    candidate_max_duration: float = Field(default=7200.0)
    candidate_min_views: int = Field(default=1000)
    candidate_analysis_limit: int = Field(default=15)

    # Content analysis
    segment_importance_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_analysis_segments: int = Field(default=20, ge=1)

    # Script generation
    default_target_duration: float = Field(default=240.0, gt=0)
    duration_tolerance: float = Field(default=0.1, gt=0.0, lt=1.0, description="Allowed relative deviation from target")
    min_phase_seconds: float = Field(default=10.0, ge=0.0)
    max_optimization_attempts: int = Field(default=3, ge=0, le=10)

    # Segmentation and alignment
    min_segment_overlap: float = Field(default=0.15, ge=0.0, le=1.0)
    min_phase_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    overlap_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    keypoint_trust_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    key_moment_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    # TTS settings
    tts_language: str = Field(default="en", description="Narration language code")
    voice_gender: str = Field(default="female", description="Voice gender preference")
    tts_timeout: float = Field(default=120.0, description="TTS request timeout in seconds")
    narration_mismatch_tolerance: float = Field(default=0.05, description="Relative narration length deviation before warning")

    # Video rendering settings
    video_codec: str = Field(default="libx264", description="Video codec (use h264_nvenc for NVIDIA GPU, libx264 for CPU)")
    audio_codec: str = Field(default="aac", description="Audio codec")
    video_bitrate: str = Field(default="5M", description="Video bitrate")
    audio_bitrate: str = Field(default="192k", description="Audio bitrate")
    audio_sample_rate: int = Field(default=48000, description="Audio sample rate in Hz")
    audio_overflow_policy: str = Field(default="time_compress", description="time_compress or freeze_frame")
    max_audio_tempo: float = Field(default=1.5, ge=1.0, le=4.0, description="Largest narration speed-up")
    ffmpeg_binary: str = Field(default="ffmpeg")
    ffprobe_binary: str = Field(default="ffprobe")
    ffmpeg_timeout: float = Field(default=900.0, description="Encoder subprocess timeout in seconds")

    # External API settings
    whisper_api_url: str = Field(default="http://127.0.0.1:6904", description="Whisper STT API base URL")
    whisper_model: str = Field(default="large-v3")
    ollama_url: str = Field(default="http://127.0.0.1:11434", description="Ollama API base URL")
    ollama_model: str = Field(default="llama3.1:8b", description="Text-generation model")
    api_timeout: float = Field(default=600.0, description="API request timeout in seconds")
    api_connect_retries: int = Field(default=0, ge=0, le=10, description="Transport-level retries on connection failure")
    transcription_timeout: float = Field(default=1800.0)
    generation_timeout: float = Field(default=300.0)

    # Logging settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")

    @property
    def media_dir(self) -> Path:
        return self.data_dir / "media"

    @property
    def records_dir(self) -> Path:
        return self.data_dir / "records"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings


def create_directories(target: Optional[Settings] = None):
    """Create necessary directories if they don't exist."""
    target = target or settings
    directories = [
        target.data_dir,
        target.output_dir,
        target.cache_dir,
        target.logs_dir,
        target.media_dir,
        target.records_dir,
        target.output_dir / "segments",
        target.cache_dir / "downloads",
        target.cache_dir / "encoding",
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


# Create directories on import
create_directories()
