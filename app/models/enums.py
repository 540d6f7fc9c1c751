"""Enumerations shared by the audio models."""

from enum import Enum


class Speaker(str, Enum):
    """Recording channel within a conversation."""

    PATIENT = "patient"
    AI = "ai"


class ContainerKind(str, Enum):
    """How chunks of a recording are merged.

    Resolved once when a chunk is ingested and carried on the chunk and job rows.
    """

    SELF_FRAMING = "self_framing"
    RAW_PCM_WAV = "raw_pcm_wav"

    @property
    def extension(self) -> str:
        return "wav" if self is ContainerKind.RAW_PCM_WAV else "webm"

    @property
    def content_type(self) -> str:
        return "audio/wav" if self is ContainerKind.RAW_PCM_WAV else "audio/webm"


class ChunkStatus(str, Enum):
    UPLOADED = "uploaded"
    FAILED = "failed"
    COMBINED = "combined"


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
