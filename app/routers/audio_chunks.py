"""Audio chunk API endpoints."""

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.enums import ChunkStatus, Speaker
from app.rate_limit import limiter
from app.schemas.audio_chunk import AudioChunkListResponse, AudioChunkResponse, AudioChunkUploadResponse
from app.services.audio_chunk import ChunkIngestionError, get_chunk_ingestion_service
from app.services.storage import ChunkStore, StorageError, get_chunk_store

logger = logging.getLogger("voice_stitch")

router = APIRouter(prefix="/api/v1/audio-chunks", tags=["Audio Chunks"])


@router.post("/", response_model=AudioChunkUploadResponse)
@limiter.limit("600/minute")
async def upload_audio_chunk(
    request: Request,
    file: UploadFile,
    conversation_id: str = Form(...),
    chunk_index: int = Form(...),
    speaker: str = Form(Speaker.PATIENT.value),
    db: Session = Depends(get_db),
    store: ChunkStore = Depends(get_chunk_store),
) -> AudioChunkUploadResponse:
    """Upload one audio chunk of a live conversation."""
    service = get_chunk_ingestion_service()
    payload = await file.read()

    try:
        result = service.ingest(
            db=db,
            store=store,
            conversation_id=conversation_id,
            chunk_index=chunk_index,
            speaker=speaker,
            content_type=file.content_type,
            payload=payload,
        )
    except ChunkIngestionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    except StorageError as e:
        logger.error("Chunk upload failed for %s/%s #%d: %s", conversation_id, speaker, chunk_index, e.message)
        raise HTTPException(status_code=500, detail=f"Failed to upload audio chunk {chunk_index}") from None

    return AudioChunkUploadResponse(
        chunk=AudioChunkResponse.model_validate(result.chunk),
        duplicate=result.duplicate,
    )


@router.get("/", response_model=AudioChunkListResponse)
def list_audio_chunks(
    conversation_id: str,
    speaker: Speaker | None = None,
    db: Session = Depends(get_db),
) -> AudioChunkListResponse:
    """List the chunks of a conversation with per-status counts."""
    service = get_chunk_ingestion_service()
    chunks = service.list_chunks(db, conversation_id, speaker.value if speaker else None)
    statuses = [c.status for c in chunks]
    return AudioChunkListResponse(
        items=[AudioChunkResponse.model_validate(c) for c in chunks],
        total=len(chunks),
        uploaded=statuses.count(ChunkStatus.UPLOADED.value),
        combined=statuses.count(ChunkStatus.COMBINED.value),
        failed=statuses.count(ChunkStatus.FAILED.value),
    )
