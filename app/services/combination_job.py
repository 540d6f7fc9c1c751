"""Combination job state machine.

At most one processing or completed job exists per (conversation_id, speaker).
The partial unique index on combination_job enforces it: the first caller's
insert wins, every later caller hits the constraint and joins the existing job.
Terminal transitions only apply to rows still in ``processing``, so a job that
was reaped for a stale heartbeat cannot be completed by its original worker.
"""

import logging
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import utcnow
from app.models.combination_job import CombinationJob
from app.models.enums import ContainerKind, JobStatus

logger = logging.getLogger(__name__)

HEARTBEAT_EXPIRED_MESSAGE = "Job heartbeat expired"


class CombinationJobManager:
    """Creates, joins, advances and reaps combination jobs."""

    def create_or_join(
        self,
        db: Session,
        conversation_id: str,
        speaker: str,
    ) -> tuple[CombinationJob, bool]:
        """Insert a new processing job, or return the job that already holds the key.

        Returns:
            (job, created). ``created`` is False when another caller owns the job;
            the caller must not run the combination in that case.
        """
        self.reap_stale(db, conversation_id=conversation_id, speaker=speaker)

        # A second attempt covers the job we conflicted with failing before we could read it.
        for _ in range(2):
            job = CombinationJob(
                conversation_id=conversation_id,
                speaker=speaker,
                status=JobStatus.PROCESSING.value,
            )
            db.add(job)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self._active_job(db, conversation_id, speaker)
                if existing is not None:
                    logger.info(
                        "Joined existing combination job %d for %s/%s (%s)",
                        existing.id,
                        conversation_id,
                        speaker,
                        existing.status,
                    )
                    return existing, False
                continue
            db.refresh(job)
            logger.info("Created combination job %d for %s/%s", job.id, conversation_id, speaker)
            return job, True

        raise RuntimeError(f"Could not create or find a combination job for {conversation_id}/{speaker}")

    def _active_job(self, db: Session, conversation_id: str, speaker: str) -> CombinationJob | None:
        return (
            db.query(CombinationJob)
            .filter(
                CombinationJob.conversation_id == conversation_id,
                CombinationJob.speaker == speaker,
                CombinationJob.status != JobStatus.FAILED.value,
            )
            .first()
        )

    def _transition(self, db: Session, job: CombinationJob, values: dict) -> bool:
        updated = (
            db.query(CombinationJob)
            .filter(CombinationJob.id == job.id, CombinationJob.status == JobStatus.PROCESSING.value)
            .update(values, synchronize_session=False)
        )
        db.commit()
        db.refresh(job)
        return updated == 1

    def set_container_kind(self, db: Session, job: CombinationJob, container_kind: ContainerKind) -> bool:
        return self._transition(db, job, {"container_kind": container_kind.value, "heartbeat_at": utcnow()})

    def heartbeat(self, db: Session, job: CombinationJob) -> bool:
        """Refresh the job's lease. Returns False if the job is no longer processing."""
        alive = self._transition(db, job, {"heartbeat_at": utcnow()})
        if not alive:
            logger.warning("Combination job %d lost its lease (status %s)", job.id, job.status)
        return alive

    def mark_completed(
        self,
        db: Session,
        job: CombinationJob,
        file_path: str,
        total_chunks: int,
        size_bytes: int,
    ) -> bool:
        now = utcnow()
        done = self._transition(
            db,
            job,
            {
                "status": JobStatus.COMPLETED.value,
                "combined_file_path": file_path,
                "total_chunks": total_chunks,
                "combined_size_bytes": size_bytes,
                "error_message": None,
                "heartbeat_at": now,
                "completed_at": now,
            },
        )
        if done:
            logger.info("Combination job %d completed: %s (%d chunks)", job.id, file_path, total_chunks)
        else:
            logger.warning("Combination job %d could not be completed, status is %s", job.id, job.status)
        return done

    def mark_failed(
        self, db: Session, job: CombinationJob, error_message: str, total_chunks: int | None = None
    ) -> bool:
        values = {
            "status": JobStatus.FAILED.value,
            "error_message": error_message,
            "completed_at": utcnow(),
        }
        if total_chunks is not None:
            values["total_chunks"] = total_chunks
        done = self._transition(db, job, values)
        if done:
            logger.warning("Combination job %d failed: %s", job.id, error_message)
        return done

    def reap_stale(
        self,
        db: Session,
        older_than_seconds: int | None = None,
        conversation_id: str | None = None,
        speaker: str | None = None,
    ) -> int:
        """Fail processing jobs whose heartbeat is older than the timeout.

        Returns:
            Number of jobs reaped.
        """
        if older_than_seconds is None:
            older_than_seconds = get_settings().JOB_HEARTBEAT_TIMEOUT_SECONDS
        now = utcnow()
        query = db.query(CombinationJob).filter(
            CombinationJob.status == JobStatus.PROCESSING.value,
            CombinationJob.heartbeat_at < now - timedelta(seconds=older_than_seconds),
        )
        if conversation_id is not None:
            query = query.filter(CombinationJob.conversation_id == conversation_id)
        if speaker is not None:
            query = query.filter(CombinationJob.speaker == speaker)

        reaped = query.update(
            {
                "status": JobStatus.FAILED.value,
                "error_message": HEARTBEAT_EXPIRED_MESSAGE,
                "completed_at": now,
            },
            synchronize_session=False,
        )
        db.commit()
        if reaped:
            logger.warning("Reaped %d stale combination job(s) older than %ds", reaped, older_than_seconds)
        return reaped

    def get_job(self, db: Session, job_id: int) -> CombinationJob | None:
        return db.query(CombinationJob).filter(CombinationJob.id == job_id).first()

    def latest_for_key(self, db: Session, conversation_id: str, speaker: str) -> CombinationJob | None:
        """Most recent job for a key, whatever its status."""
        return (
            db.query(CombinationJob)
            .filter(CombinationJob.conversation_id == conversation_id, CombinationJob.speaker == speaker)
            .order_by(CombinationJob.started_at.desc(), CombinationJob.id.desc())
            .first()
        )


_combination_job_manager: CombinationJobManager | None = None


def get_combination_job_manager() -> CombinationJobManager:
    """Get singleton combination job manager instance."""
    global _combination_job_manager
    if _combination_job_manager is None:
        _combination_job_manager = CombinationJobManager()
    return _combination_job_manager
