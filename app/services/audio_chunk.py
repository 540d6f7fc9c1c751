"""Audio chunk ingestion: validation, storage upload, and chunk records."""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import utcnow
from app.models.audio_chunk import AudioChunk
from app.models.enums import ChunkStatus, Speaker
from app.services.reassembly import detect_container_kind
from app.services.storage import ChunkStore, StorageError

logger = logging.getLogger(__name__)

# MediaRecorder sends "audio/webm;codecs=opus"; some browsers label audio-only WebM as video/webm.
EXTRA_MIME_TYPES = {"video/webm", "application/octet-stream"}


class ChunkIngestionError(ValueError):
    """The chunk upload request is invalid."""


@dataclass
class IngestResult:
    chunk: AudioChunk
    duplicate: bool = False


def chunk_storage_path(conversation_id: str, speaker: str, chunk_index: int, extension: str) -> str:
    return f"{conversation_id}/{speaker}/chunk-{chunk_index:03d}.{extension}"


class ChunkIngestionService:
    """Stores uploaded chunks and records them for later combination."""

    def validate(
        self,
        conversation_id: str,
        chunk_index: int,
        speaker: str,
        content_type: str | None,
        payload: bytes,
    ) -> str | None:
        """Validate an upload. Returns error message or None if valid."""
        if not conversation_id or not conversation_id.strip():
            return "Conversation ID is required"
        if chunk_index < 0:
            return "Valid chunk index is required"
        if speaker not in {s.value for s in Speaker}:
            return 'Invalid speaker value. Must be "patient" or "ai"'
        if not payload:
            return "No audio data provided"

        max_mb = get_settings().MAX_CHUNK_SIZE_MB
        if len(payload) > max_mb * 1024 * 1024:
            return f"Chunk too large ({len(payload) // (1024 * 1024)}MB). Maximum: {max_mb}MB"

        if content_type:
            mime = content_type.split(";", 1)[0].strip().lower()
            if not mime.startswith("audio/") and mime not in EXTRA_MIME_TYPES:
                return f"Invalid content type '{content_type}'. Must be an audio file."
        return None

    def get_chunk(self, db: Session, conversation_id: str, chunk_index: int, speaker: str) -> AudioChunk | None:
        return (
            db.query(AudioChunk)
            .filter(
                AudioChunk.conversation_id == conversation_id,
                AudioChunk.chunk_index == chunk_index,
                AudioChunk.speaker == speaker,
            )
            .first()
        )

    def list_chunks(self, db: Session, conversation_id: str, speaker: str | None = None) -> list[AudioChunk]:
        query = db.query(AudioChunk).filter(AudioChunk.conversation_id == conversation_id)
        if speaker is not None:
            query = query.filter(AudioChunk.speaker == speaker)
        return query.order_by(AudioChunk.speaker, AudioChunk.chunk_index).all()

    def ingest(
        self,
        db: Session,
        store: ChunkStore,
        conversation_id: str,
        chunk_index: int,
        speaker: str,
        content_type: str | None,
        payload: bytes,
    ) -> IngestResult:
        """Upload one chunk and record it.

        A chunk already uploaded for the same (conversation, index, speaker) is
        returned as a duplicate without a second upload. A previously failed
        chunk is re-uploaded over whatever the failed attempt left behind.

        Raises:
            ChunkIngestionError: If the request is invalid.
            StorageError: If the upload fails. A failed chunk row is recorded first.
        """
        error = self.validate(conversation_id, chunk_index, speaker, content_type, payload)
        if error:
            raise ChunkIngestionError(error)

        kind = detect_container_kind(payload, content_type)
        path = chunk_storage_path(conversation_id, speaker, chunk_index, kind.extension)

        existing = self.get_chunk(db, conversation_id, chunk_index, speaker)
        if existing is not None and existing.status != ChunkStatus.FAILED.value:
            logger.info("Chunk %d already exists for %s/%s", chunk_index, conversation_id, speaker)
            return IngestResult(chunk=existing, duplicate=True)

        values = {
            "storage_path": path,
            "byte_size": len(payload),
            "mime_type": content_type,
            "container_kind": kind.value,
        }

        try:
            store.put(path, payload, kind.content_type, upsert=existing is not None)
        except StorageError as e:
            logger.error("Upload of chunk %d for %s/%s failed: %s", chunk_index, conversation_id, speaker, e.message)
            duplicate = self._record_failure(db, existing, conversation_id, chunk_index, speaker, values)
            if duplicate is not None:
                return IngestResult(chunk=duplicate, duplicate=True)
            raise

        if existing is not None:
            for key, value in values.items():
                setattr(existing, key, value)
            existing.status = ChunkStatus.UPLOADED.value
            existing.updated_at = utcnow()
            db.commit()
            db.refresh(existing)
            logger.info(
                "Chunk %d for %s/%s re-uploaded after %d failure(s)",
                chunk_index,
                conversation_id,
                speaker,
                existing.retry_count,
            )
            return IngestResult(chunk=existing)

        chunk = AudioChunk(
            conversation_id=conversation_id,
            chunk_index=chunk_index,
            speaker=speaker,
            status=ChunkStatus.UPLOADED.value,
            **values,
        )
        db.add(chunk)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            winner = self.get_chunk(db, conversation_id, chunk_index, speaker)
            if winner is None:
                raise
            logger.info("Chunk %d for %s/%s was recorded by a concurrent upload", chunk_index, conversation_id, speaker)
            return IngestResult(chunk=winner, duplicate=True)
        db.refresh(chunk)
        logger.info(
            "Chunk %d for %s/%s stored at %s (%d bytes, %s)",
            chunk_index,
            conversation_id,
            speaker,
            path,
            len(payload),
            kind.value,
        )
        return IngestResult(chunk=chunk)

    def _record_failure(
        self,
        db: Session,
        existing: AudioChunk | None,
        conversation_id: str,
        chunk_index: int,
        speaker: str,
        values: dict,
    ) -> AudioChunk | None:
        """Record a failed upload for retry tracking.

        Returns the chunk if a concurrent upload of the same chunk succeeded, None otherwise.
        """
        if existing is not None:
            existing.retry_count += 1
            existing.updated_at = utcnow()
            db.commit()
            return None

        db.add(
            AudioChunk(
                conversation_id=conversation_id,
                chunk_index=chunk_index,
                speaker=speaker,
                status=ChunkStatus.FAILED.value,
                retry_count=1,
                **values,
            )
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            winner = self.get_chunk(db, conversation_id, chunk_index, speaker)
            if winner is not None and winner.status != ChunkStatus.FAILED.value:
                return winner
        return None


_chunk_ingestion_service: ChunkIngestionService | None = None


def get_chunk_ingestion_service() -> ChunkIngestionService:
    """Get singleton chunk ingestion service instance."""
    global _chunk_ingestion_service
    if _chunk_ingestion_service is None:
        _chunk_ingestion_service = ChunkIngestionService()
    return _chunk_ingestion_service
