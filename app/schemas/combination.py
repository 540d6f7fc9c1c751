"""Pydantic schemas for combination endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.enums import Speaker


class CombinationRequest(BaseModel):
    conversation_id: str = Field(min_length=1, max_length=64)
    speaker: Speaker = Speaker.PATIENT


class CombinationResponse(BaseModel):
    status: str
    job_id: int | None = None
    file_path: str | None = None
    error: str | None = None
    created: bool = False
    chunk_count: int | None = None
    size_bytes: int | None = None
    duration_ms: int | None = None

    model_config = {"from_attributes": True}


class CombinationJobResponse(BaseModel):
    id: int
    conversation_id: str
    speaker: str
    status: str
    container_kind: str | None
    combined_file_path: str | None
    combined_size_bytes: int | None
    total_chunks: int | None
    error_message: str | None
    started_at: datetime
    heartbeat_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class ReapRequest(BaseModel):
    older_than_seconds: int | None = Field(default=None, ge=0)


class ReapResponse(BaseModel):
    reaped: int
