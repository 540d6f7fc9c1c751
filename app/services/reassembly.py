"""Reassembly of ordered chunk payloads into one audio file.

Self-framing chunks (independently encoded WebM/Opus segments) are joined
byte for byte. PCM chunks arrive as one complete WAV file each, so their
``data`` subchunks are pulled out, concatenated, and wrapped in a single
canonical 44-byte header.
"""

import logging
import struct
from collections.abc import Sequence
from dataclasses import dataclass

from app.config import get_settings
from app.models.enums import ContainerKind

logger = logging.getLogger(__name__)

RIFF_PREAMBLE_SIZE = 12  # "RIFF" + size + "WAVE"
SUBCHUNK_HEADER_SIZE = 8  # id + little-endian uint32 size
WAV_HEADER_SIZE = 44

_SUBCHUNK_HEADER = struct.Struct("<4sI")
_CANONICAL_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


class MalformedChunkError(ValueError):
    """A chunk payload cannot be parsed as the container it claims to be."""

    def __init__(self, chunk_index: int, reason: str):
        super().__init__(f"Chunk {chunk_index} is malformed: {reason}")
        self.chunk_index = chunk_index
        self.reason = reason


@dataclass(frozen=True)
class WavFormat:
    """Fixed recording parameters of the PCM pipeline."""

    sample_rate: int = 48000
    channels: int = 1
    bits_per_sample: int = 16

    @property
    def block_align(self) -> int:
        return self.channels * self.bits_per_sample // 8

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.block_align

    @classmethod
    def from_settings(cls) -> "WavFormat":
        settings = get_settings()
        return cls(
            sample_rate=settings.WAV_SAMPLE_RATE,
            channels=settings.WAV_CHANNELS,
            bits_per_sample=settings.WAV_BITS_PER_SAMPLE,
        )


def is_riff_wave(payload: bytes) -> bool:
    return len(payload) >= RIFF_PREAMBLE_SIZE and payload[0:4] == b"RIFF" and payload[8:12] == b"WAVE"


def detect_container_kind(payload: bytes, mime_type: str | None) -> ContainerKind:
    """Classify an uploaded chunk by its magic bytes, falling back to the MIME type."""
    if is_riff_wave(payload):
        return ContainerKind.RAW_PCM_WAV
    if mime_type and "wav" in mime_type.lower():
        return ContainerKind.RAW_PCM_WAV
    return ContainerKind.SELF_FRAMING


def find_data_chunk(wav: bytes, chunk_index: int = 0) -> tuple[int, int]:
    """Locate the PCM samples of a WAV file.

    Walks the RIFF subchunk list from byte 12, since ``fmt `` extensions or
    ``LIST`` metadata may sit before ``data``.

    Returns:
        (offset of the first sample byte, declared data size)

    Raises:
        MalformedChunkError: If the preamble is wrong, no ``data`` subchunk
            exists, or the declared size runs past the end of the payload.
    """
    if not is_riff_wave(wav):
        raise MalformedChunkError(chunk_index, "missing RIFF/WAVE preamble")

    offset = RIFF_PREAMBLE_SIZE
    while offset + SUBCHUNK_HEADER_SIZE <= len(wav):
        chunk_id, chunk_size = _SUBCHUNK_HEADER.unpack_from(wav, offset)
        logger.debug("Chunk %d: subchunk %r at offset %d, size %d", chunk_index, chunk_id, offset, chunk_size)
        if chunk_id == b"data":
            data_offset = offset + SUBCHUNK_HEADER_SIZE
            if data_offset + chunk_size > len(wav):
                raise MalformedChunkError(
                    chunk_index,
                    f"data subchunk declares {chunk_size} bytes but only {len(wav) - data_offset} are present",
                )
            return data_offset, chunk_size
        offset += SUBCHUNK_HEADER_SIZE + chunk_size

    raise MalformedChunkError(chunk_index, "no data subchunk found")


def extract_pcm(wav: bytes, chunk_index: int = 0) -> memoryview:
    """Return a zero-copy view of the PCM samples of one WAV file."""
    data_offset, data_size = find_data_chunk(wav, chunk_index)
    return memoryview(wav)[data_offset : data_offset + data_size]


def build_wav_header(data_size: int, wav_format: WavFormat) -> bytes:
    """Synthesize a canonical 44-byte PCM WAV header for ``data_size`` sample bytes."""
    return _CANONICAL_HEADER.pack(
        b"RIFF",
        WAV_HEADER_SIZE - 8 + data_size,
        b"WAVE",
        b"fmt ",
        16,  # PCM fmt subchunk size
        1,  # PCM format tag
        wav_format.channels,
        wav_format.sample_rate,
        wav_format.byte_rate,
        wav_format.block_align,
        wav_format.bits_per_sample,
        b"data",
        data_size,
    )


class AudioReassembler:
    """Merges ordered chunk payloads of one container kind into a single payload."""

    def __init__(self, wav_format: WavFormat | None = None) -> None:
        self.wav_format = wav_format or WavFormat.from_settings()

    def reassemble(
        self,
        payloads: Sequence[bytes],
        kind: ContainerKind,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> bytes:
        """Merge ``payloads`` (already in chunk-index order) into one file."""
        log = log or logger
        if not payloads:
            raise ValueError("Nothing to reassemble")
        if kind is ContainerKind.RAW_PCM_WAV:
            return self._merge_wav(payloads, log)
        combined = b"".join(payloads)
        log.info("Concatenated %d self-framing chunks into %d bytes", len(payloads), len(combined))
        return combined

    def _merge_wav(self, payloads: Sequence[bytes], log: logging.Logger | logging.LoggerAdapter) -> bytes:
        block_align = self.wav_format.block_align
        slices: list[memoryview] = []
        total = 0

        for index, payload in enumerate(payloads):
            pcm = extract_pcm(payload, index)
            remainder = len(pcm) % block_align
            if remainder:
                log.warning(
                    "Chunk %d: %d PCM bytes is not sample aligned, trimming %d trailing byte(s)",
                    index,
                    len(pcm),
                    remainder,
                )
                pcm = pcm[: len(pcm) - remainder]
            slices.append(pcm)
            total += len(pcm)

        combined = build_wav_header(total, self.wav_format) + b"".join(slices)
        log.info(
            "Merged %d WAV chunks: %d PCM bytes, %d bytes with header",
            len(payloads),
            total,
            len(combined),
        )
        return combined
