"""Pydantic schemas for audio chunk endpoints."""

from datetime import datetime

from pydantic import BaseModel


class AudioChunkResponse(BaseModel):
    id: int
    conversation_id: str
    chunk_index: int
    speaker: str
    storage_path: str
    byte_size: int
    mime_type: str | None
    container_kind: str
    status: str
    retry_count: int
    created_at: datetime

    model_config = {"from_attributes": True}


class AudioChunkUploadResponse(BaseModel):
    chunk: AudioChunkResponse
    duplicate: bool = False


class AudioChunkListResponse(BaseModel):
    items: list[AudioChunkResponse]
    total: int
    uploaded: int
    combined: int
    failed: int
