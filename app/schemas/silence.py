"""Pydantic schemas for silence analysis endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class SilenceAnalysisRequest(BaseModel):
    file_path: str = Field(min_length=1, max_length=512)
    bucket_name: str | None = Field(
        default=None, min_length=1, max_length=128, pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$"
    )


class SilenceSegment(BaseModel):
    start: float
    end: float


class SilenceAnalysisResponse(BaseModel):
    bucket_name: str
    file_path: str
    cached: bool
    segments: list[SilenceSegment]
    segment_count: int
    duration_seconds: float
    threshold_db: float
    min_silence_duration_seconds: float
    analyzed_at: datetime
