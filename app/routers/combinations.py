"""Combination job API endpoints."""

import dataclasses

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.enums import JobStatus, Speaker
from app.rate_limit import limiter
from app.schemas.combination import (
    CombinationJobResponse,
    CombinationRequest,
    CombinationResponse,
    ReapRequest,
    ReapResponse,
)
from app.services.combination import NO_CHUNKS_MESSAGE, get_combination_service
from app.services.combination_job import get_combination_job_manager
from app.services.storage import ChunkStore, get_chunk_store

router = APIRouter(prefix="/api/v1/combinations", tags=["Combinations"])


def _status_code(result_status: str, error: str | None) -> int:
    if result_status == JobStatus.COMPLETED.value:
        return 200
    if result_status == JobStatus.PROCESSING.value:
        return 202
    if error == NO_CHUNKS_MESSAGE:
        return 404
    return 500


@router.post("/", response_model=CombinationResponse)
@limiter.limit("30/minute")
def combine_chunks(
    request: Request,
    response: Response,
    body: CombinationRequest,
    db: Session = Depends(get_db),
    store: ChunkStore = Depends(get_chunk_store),
) -> CombinationResponse:
    """Combine every uploaded chunk of a conversation channel into one recording.

    A second request for the same conversation and speaker joins the existing
    job instead of starting another one.
    """
    service = get_combination_service()
    result = service.combine(db, store, body.conversation_id, body.speaker.value)
    response.status_code = _status_code(result.status, result.error)
    return CombinationResponse(**dataclasses.asdict(result))


@router.get("/", response_model=CombinationJobResponse)
def get_latest_combination(
    conversation_id: str,
    speaker: Speaker = Speaker.PATIENT,
    db: Session = Depends(get_db),
) -> CombinationJobResponse:
    """Get the most recent combination job for a conversation channel."""
    job = get_combination_job_manager().latest_for_key(db, conversation_id, speaker.value)
    if not job:
        raise HTTPException(status_code=404, detail="Combination job not found")
    return CombinationJobResponse.model_validate(job)


@router.post("/reap", response_model=ReapResponse)
def reap_stale_combinations(
    body: ReapRequest | None = None,
    db: Session = Depends(get_db),
) -> ReapResponse:
    """Fail processing jobs whose heartbeat has expired."""
    older_than = body.older_than_seconds if body else None
    reaped = get_combination_job_manager().reap_stale(db, older_than_seconds=older_than)
    return ReapResponse(reaped=reaped)


@router.get("/{job_id}", response_model=CombinationJobResponse)
def get_combination(
    job_id: int,
    db: Session = Depends(get_db),
) -> CombinationJobResponse:
    """Get a combination job by ID."""
    job = get_combination_job_manager().get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Combination job not found")
    return CombinationJobResponse.model_validate(job)
