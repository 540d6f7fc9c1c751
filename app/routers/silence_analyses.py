"""Silence analysis API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.rate_limit import limiter
from app.schemas.silence import SilenceAnalysisRequest, SilenceAnalysisResponse, SilenceSegment
from app.services.silence import SilenceAnalysisError, get_silence_analyzer
from app.services.storage import ChunkStore, ObjectNotFoundError, StorageError, get_chunk_store

logger = logging.getLogger("voice_stitch")

router = APIRouter(prefix="/api/v1/silence-analyses", tags=["Silence Analysis"])


@router.post("/", response_model=SilenceAnalysisResponse)
@limiter.limit("30/minute")
def analyze_silence(
    request: Request,
    body: SilenceAnalysisRequest,
    db: Session = Depends(get_db),
    store: ChunkStore = Depends(get_chunk_store),
) -> SilenceAnalysisResponse:
    """Find silent segments in a stored recording. Results are cached per file path."""
    try:
        analysis, cached = get_silence_analyzer().analyze(db, store, body.file_path, body.bucket_name)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="Audio file not found") from None
    except StorageError as e:
        logger.error("Silence analysis download failed for %s: %s", body.file_path, e.message)
        raise HTTPException(status_code=500, detail="Failed to download audio file") from None
    except SilenceAnalysisError as e:
        logger.error("Silence analysis failed for %s: %s", body.file_path, e)
        raise HTTPException(status_code=500, detail=f"Failed to analyze audio: {e}") from None

    return SilenceAnalysisResponse(
        bucket_name=analysis.bucket_name,
        file_path=analysis.file_path,
        cached=cached,
        segments=[SilenceSegment(start=start, end=end) for start, end in analysis.segments],
        segment_count=len(analysis.segments),
        duration_seconds=analysis.duration_seconds,
        threshold_db=analysis.threshold_db,
        min_silence_duration_seconds=analysis.min_silence_duration_seconds,
        analyzed_at=analysis.analyzed_at,
    )
