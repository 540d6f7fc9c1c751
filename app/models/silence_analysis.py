"""Silence analysis cache model."""

from sqlalchemy import JSON, Column, DateTime, Float, String

from app.database import Base, utcnow


class SilenceAnalysis(Base):
    """Cached silence scan of one stored audio file."""

    __tablename__ = "silence_analysis"

    bucket_name = Column(String(128), primary_key=True)
    file_path = Column(String(512), primary_key=True)
    segments = Column(JSON, nullable=False, default=list)  # [[start, end], ...] sorted, non-overlapping
    duration_seconds = Column(Float, nullable=False)
    threshold_db = Column(Float, nullable=False)
    min_silence_duration_seconds = Column(Float, nullable=False)
    analyzed_at = Column(DateTime, nullable=False, default=utcnow)
