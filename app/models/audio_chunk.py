"""Audio chunk model."""

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from app.database import Base, utcnow


class AudioChunk(Base):
    """One independently uploaded fragment of a conversation recording."""

    __tablename__ = "audio_chunk"
    # Two speaker channels reuse the same index numbering.
    __table_args__ = (
        UniqueConstraint("conversation_id", "chunk_index", "speaker", name="uq_audio_chunk_conversation_index_speaker"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(64), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    speaker = Column(String(16), nullable=False, default="patient")  # patient, ai
    storage_path = Column(String(512), nullable=False)
    byte_size = Column(Integer, nullable=False)
    mime_type = Column(String(128), nullable=True)
    container_kind = Column(String(32), nullable=False)  # self_framing, raw_pcm_wav
    status = Column(String(32), nullable=False, default="uploaded")  # uploaded, failed, combined
    retry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
