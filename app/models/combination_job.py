"""Combination job model."""

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text

from app.database import Base, utcnow

# Only one processing or completed job may exist per key; failed jobs never block a retry.
ACTIVE_JOB_PREDICATE = "status != 'failed'"


class CombinationJob(Base):
    """One attempt to merge every chunk of a (conversation, speaker) into a single file."""

    __tablename__ = "combination_job"
    __table_args__ = (
        Index(
            "uq_combination_job_active_key",
            "conversation_id",
            "speaker",
            unique=True,
            sqlite_where=text(ACTIVE_JOB_PREDICATE),
            postgresql_where=text(ACTIVE_JOB_PREDICATE),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(64), nullable=False, index=True)
    speaker = Column(String(16), nullable=False)
    status = Column(String(32), nullable=False, default="processing")  # processing, completed, failed
    container_kind = Column(String(32), nullable=True)
    combined_file_path = Column(String(512), nullable=True)
    combined_size_bytes = Column(Integer, nullable=True)
    total_chunks = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    heartbeat_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
