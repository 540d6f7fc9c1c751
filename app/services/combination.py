"""Combination of a conversation's uploaded chunks into one stored recording.

Pipeline, run only by the caller that created the job:
select chunks -> download -> reassemble -> (re-encode) -> upload -> complete -> trigger transcription
"""

import logging
import time
import uuid
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.audio_chunk import AudioChunk
from app.models.combination_job import CombinationJob
from app.models.enums import ChunkStatus, ContainerKind, Speaker
from app.services.combination_job import CombinationJobManager, get_combination_job_manager
from app.services.downloader import ChunkDownloader, ChunkDownloadError, ChunkRef
from app.services.reassembly import AudioReassembler, MalformedChunkError
from app.services.reencoder import ReEncodeError, ReEncoder
from app.services.storage import ChunkStore, StorageError
from app.services.transcription_trigger import TranscriptionTrigger, get_transcription_trigger

logger = logging.getLogger(__name__)

NO_CHUNKS_MESSAGE = "No audio chunks found"


class _ContextAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['request_id']} {self.extra['key']}] {msg}", kwargs


@dataclass
class CombinationContext:
    """Per-request state passed explicitly through one combination."""

    conversation_id: str
    speaker: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    started: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        self.logger = _ContextAdapter(
            logger,
            {"request_id": self.request_id, "key": f"{self.conversation_id}/{self.speaker}"},
        )

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


@dataclass
class CombinationResult:
    """Outcome of a combination request."""

    status: str
    job_id: int | None = None
    file_path: str | None = None
    error: str | None = None
    created: bool = False
    chunk_count: int | None = None
    size_bytes: int | None = None
    duration_ms: int | None = None

    @classmethod
    def from_job(cls, job: CombinationJob, created: bool, duration_ms: int | None = None) -> "CombinationResult":
        return cls(
            status=job.status,
            job_id=job.id,
            file_path=job.combined_file_path,
            error=job.error_message,
            created=created,
            chunk_count=job.total_chunks,
            size_bytes=job.combined_size_bytes,
            duration_ms=duration_ms,
        )


class _LeaseLost(Exception):
    pass


def combined_file_path(conversation_id: str, speaker: str, kind: ContainerKind, timestamp_ms: int | None = None) -> str:
    """Storage path of a combined recording; the AI channel gets its own prefix."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    prefix = "combined-ai" if speaker == Speaker.AI.value else "combined"
    return f"{conversation_id}/{prefix}-{timestamp_ms}.{kind.extension}"


class CombinationService:
    """Runs combination jobs end to end."""

    def __init__(
        self,
        job_manager: CombinationJobManager | None = None,
        reassembler: AudioReassembler | None = None,
        reencoder: ReEncoder | None = None,
        trigger: TranscriptionTrigger | None = None,
        batch_size: int | None = None,
        reencode_self_framing: bool | None = None,
    ):
        settings = get_settings()
        self.job_manager = job_manager or get_combination_job_manager()
        self.reassembler = reassembler or AudioReassembler()
        self.reencoder = reencoder or ReEncoder()
        self.trigger = trigger or get_transcription_trigger()
        self.batch_size = batch_size or settings.DOWNLOAD_BATCH_SIZE
        if reencode_self_framing is None:
            reencode_self_framing = settings.REENCODE_SELF_FRAMING
        self.reencode_self_framing = reencode_self_framing

    def select_chunks(self, db: Session, conversation_id: str, speaker: str) -> list[AudioChunk]:
        """Chunks eligible for combination, in chunk-index order."""
        return (
            db.query(AudioChunk)
            .filter(
                AudioChunk.conversation_id == conversation_id,
                AudioChunk.speaker == speaker,
                AudioChunk.status != ChunkStatus.FAILED.value,
            )
            .order_by(AudioChunk.chunk_index.asc())
            .all()
        )

    def combine(
        self,
        db: Session,
        store: ChunkStore,
        conversation_id: str,
        speaker: str = Speaker.PATIENT.value,
        request_id: str | None = None,
    ) -> CombinationResult:
        """Create or join the job for (conversation_id, speaker) and, if created, run it."""
        extra = {"request_id": request_id} if request_id else {}
        ctx = CombinationContext(conversation_id=conversation_id, speaker=speaker, **extra)
        log = ctx.logger

        job, created = self.job_manager.create_or_join(db, conversation_id, speaker)
        if not created:
            log.info("Job %d already %s, not combining again", job.id, job.status)
            return CombinationResult.from_job(job, created=False, duration_ms=ctx.elapsed_ms)

        log.info("Starting combination job %d", job.id)
        try:
            self._run(db, store, job, ctx)
        except ChunkDownloadError as e:
            self._fail(db, job, e.message, ctx)
        except (MalformedChunkError, ReEncodeError) as e:
            self._fail(db, job, str(e), ctx)
        except StorageError as e:
            self._fail(db, job, f"Failed to upload combined file: {e.message}", ctx)
        except _LeaseLost:
            log.warning("Job %d was taken over while running", job.id)
        except Exception as e:
            db.rollback()
            self._fail(db, job, f"Unexpected error: {e}", ctx)
            raise

        db.refresh(job)
        result = CombinationResult.from_job(job, created=True, duration_ms=ctx.elapsed_ms)
        log.info("Job %d finished as %s in %dms", job.id, result.status, result.duration_ms)
        return result

    def _fail(self, db: Session, job: CombinationJob, message: str, ctx: CombinationContext) -> None:
        ctx.logger.error("Combination failed: %s", message)
        self.job_manager.mark_failed(db, job, message)

    def _keep_alive(self, db: Session, job: CombinationJob) -> None:
        if not self.job_manager.heartbeat(db, job):
            raise _LeaseLost()

    def _run(self, db: Session, store: ChunkStore, job: CombinationJob, ctx: CombinationContext) -> None:
        log = ctx.logger
        chunks = self.select_chunks(db, ctx.conversation_id, ctx.speaker)
        if not chunks:
            self._fail(db, job, NO_CHUNKS_MESSAGE, ctx)
            return

        kind = ContainerKind(chunks[0].container_kind)
        for chunk in chunks[1:]:
            if chunk.container_kind != kind.value:
                raise MalformedChunkError(
                    chunk.chunk_index,
                    f"container {chunk.container_kind} does not match {kind.value} of chunk {chunks[0].chunk_index}",
                )
        # Plain descriptors; the ORM rows expire on every heartbeat commit.
        refs = [ChunkRef(chunk.chunk_index, chunk.storage_path) for chunk in chunks]
        chunk_ids = [chunk.id for chunk in chunks]
        if not self.job_manager.set_container_kind(db, job, kind):
            raise _LeaseLost()
        log.info("Found %d %s chunks", len(refs), kind.value)

        downloader = ChunkDownloader(store, self.batch_size)
        payloads = downloader.download_all(
            refs,
            on_batch_complete=lambda done, total: self._keep_alive(db, job),
            log=log,
        )

        combined = self.reassembler.reassemble(payloads, kind, log=log)
        del payloads

        if kind is ContainerKind.SELF_FRAMING and self.reencode_self_framing and len(refs) > 1:
            self._keep_alive(db, job)
            combined = self.reencoder.normalize(combined, log=log)

        self._keep_alive(db, job)
        path = combined_file_path(ctx.conversation_id, ctx.speaker, kind)
        log.info("Uploading %d bytes to %s", len(combined), path)
        store.put(path, combined, kind.content_type, upsert=True)

        if not self.job_manager.mark_completed(db, job, path, total_chunks=len(refs), size_bytes=len(combined)):
            raise _LeaseLost()

        db.query(AudioChunk).filter(AudioChunk.id.in_(chunk_ids)).update(
            {"status": ChunkStatus.COMBINED.value}, synchronize_session=False
        )
        db.commit()

        self.trigger.trigger(ctx.conversation_id, ctx.speaker, path)


_combination_service: CombinationService | None = None


def get_combination_service() -> CombinationService:
    """Get singleton combination service instance."""
    global _combination_service
    if _combination_service is None:
        _combination_service = CombinationService()
    return _combination_service
