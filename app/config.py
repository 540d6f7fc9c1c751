"""Configuration settings for Voice Stitch."""

import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./voice_stitch.db")

    # Object storage
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_KEY: str = os.getenv("SUPABASE_SERVICE_KEY", "")
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "audio-recordings")
    STORAGE_TIMEOUT_SECONDS: float = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "60"))

    # Chunk upload
    MAX_CHUNK_SIZE_MB: int = int(os.getenv("MAX_CHUNK_SIZE_MB", "25"))

    # Combination
    DOWNLOAD_BATCH_SIZE: int = int(os.getenv("DOWNLOAD_BATCH_SIZE", "50"))
    JOB_HEARTBEAT_TIMEOUT_SECONDS: int = int(os.getenv("JOB_HEARTBEAT_TIMEOUT_SECONDS", "600"))

    # Recording parameters of the PCM pipeline (one short WAV per chunk)
    WAV_SAMPLE_RATE: int = int(os.getenv("WAV_SAMPLE_RATE", "48000"))
    WAV_CHANNELS: int = int(os.getenv("WAV_CHANNELS", "1"))
    WAV_BITS_PER_SAMPLE: int = int(os.getenv("WAV_BITS_PER_SAMPLE", "16"))

    # FFmpeg
    FFMPEG_BIN: str = os.getenv("FFMPEG_BIN", "ffmpeg")
    FFMPEG_TIMEOUT_SECONDS: int = int(os.getenv("FFMPEG_TIMEOUT_SECONDS", "300"))
    REENCODE_SELF_FRAMING: bool = os.getenv("REENCODE_SELF_FRAMING", "false").lower() == "true"
    REENCODE_AUDIO_CODEC: str = os.getenv("REENCODE_AUDIO_CODEC", "libopus")
    REENCODE_BITRATE: str = os.getenv("REENCODE_BITRATE", "64k")

    # Silence detection
    SILENCE_THRESHOLD_DB: float = float(os.getenv("SILENCE_THRESHOLD_DB", "-50"))
    SILENCE_MIN_DURATION_SECONDS: float = float(os.getenv("SILENCE_MIN_DURATION_SECONDS", "0.5"))

    # Transcription hand-off
    TRANSCRIPTION_URL: str = os.getenv("TRANSCRIPTION_URL", "")
    TRANSCRIPTION_TIMEOUT_SECONDS: float = float(os.getenv("TRANSCRIPTION_TIMEOUT_SECONDS", "10"))

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    @property
    def use_supabase_storage(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_KEY)

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        errors = []
        if bool(self.SUPABASE_URL) != bool(self.SUPABASE_SERVICE_KEY):
            errors.append("SUPABASE_URL and SUPABASE_SERVICE_KEY must both be set - using local storage")
        if self.WAV_BITS_PER_SAMPLE % 8 != 0:
            errors.append(f"WAV_BITS_PER_SAMPLE={self.WAV_BITS_PER_SAMPLE} is not a whole number of bytes")
        if self.DOWNLOAD_BATCH_SIZE < 1:
            errors.append("DOWNLOAD_BATCH_SIZE must be at least 1")
        if not self.TRANSCRIPTION_URL:
            errors.append("TRANSCRIPTION_URL is not set - combined recordings will not be sent for transcription")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
