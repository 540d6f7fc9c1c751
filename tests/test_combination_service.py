"""Tests for CombinationService wiring: re-encode, transcription hand-off and failure recording."""

import logging
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session

from app.models.audio_chunk import AudioChunk
from app.models.combination_job import CombinationJob
from app.models.enums import ContainerKind
from app.services.combination import CombinationContext, CombinationService, combined_file_path
from app.services.combination_job import CombinationJobManager
from app.services.reassembly import AudioReassembler, WavFormat
from app.services.reencoder import ReEncodeError
from app.services.storage import LocalChunkStore, StorageError


def _add_chunks(db: Session, store: LocalChunkStore, conversation_id: str, payloads: list[bytes], speaker="patient"):
    for index, payload in enumerate(payloads):
        path = f"{conversation_id}/{speaker}/chunk-{index:03d}.webm"
        store.put(path, payload, "audio/webm")
        db.add(
            AudioChunk(
                conversation_id=conversation_id,
                chunk_index=index,
                speaker=speaker,
                storage_path=path,
                byte_size=len(payload),
                mime_type="audio/webm",
                container_kind=ContainerKind.SELF_FRAMING.value,
            )
        )
    db.commit()


def _service(**overrides) -> CombinationService:
    defaults = {
        "job_manager": CombinationJobManager(),
        "reassembler": AudioReassembler(WavFormat()),
        "reencoder": MagicMock(),
        "trigger": MagicMock(),
        "batch_size": 2,
        "reencode_self_framing": False,
    }
    defaults.update(overrides)
    return CombinationService(**defaults)


class TestCombinationService:
    """Tests for CombinationService.combine."""

    def test_triggers_transcription_on_success(self, db_session: Session, store: LocalChunkStore):
        trigger = MagicMock()
        _add_chunks(db_session, store, "conv-1", [b"a", b"b", b"c"])

        result = _service(trigger=trigger).combine(db_session, store, "conv-1", "patient")

        assert result.status == "completed"
        trigger.trigger.assert_called_once_with("conv-1", "patient", result.file_path)

    def test_no_trigger_on_failure(self, db_session: Session, store: LocalChunkStore):
        trigger = MagicMock()
        result = _service(trigger=trigger).combine(db_session, store, "conv-empty", "patient")
        assert result.status == "failed"
        trigger.trigger.assert_not_called()

    def test_reencode_when_enabled(self, db_session: Session, store: LocalChunkStore):
        """Self-framing output goes through the re-encoder when configured."""
        reencoder = MagicMock()
        reencoder.normalize.return_value = b"normalized"
        _add_chunks(db_session, store, "conv-1", [b"one", b"two"])

        result = _service(reencoder=reencoder, reencode_self_framing=True).combine(db_session, store, "conv-1")

        reencoder.normalize.assert_called_once()
        assert reencoder.normalize.call_args.args[0] == b"onetwo"
        assert store.get(result.file_path) == b"normalized"
        assert result.size_bytes == len(b"normalized")

    def test_reencode_skipped_when_disabled(self, db_session: Session, store: LocalChunkStore):
        reencoder = MagicMock()
        _add_chunks(db_session, store, "conv-1", [b"one", b"two"])
        result = _service(reencoder=reencoder).combine(db_session, store, "conv-1")
        reencoder.normalize.assert_not_called()
        assert store.get(result.file_path) == b"onetwo"

    def test_reencode_failure_fails_job(self, db_session: Session, store: LocalChunkStore):
        reencoder = MagicMock()
        reencoder.normalize.side_effect = ReEncodeError("FFmpeg re-encode failed with exit code 1")
        _add_chunks(db_session, store, "conv-1", [b"one", b"two"])

        result = _service(reencoder=reencoder, reencode_self_framing=True).combine(db_session, store, "conv-1")

        assert result.status == "failed"
        assert result.error == "FFmpeg re-encode failed with exit code 1"
        assert db_session.query(AudioChunk).filter(AudioChunk.status == "combined").count() == 0

    def test_upload_failure_fails_job(self, db_session: Session, store: LocalChunkStore, monkeypatch):
        _add_chunks(db_session, store, "conv-1", [b"one"])

        def broken_put(*args, **kwargs):
            raise StorageError("bucket unavailable")

        monkeypatch.setattr(store, "put", broken_put)
        result = _service().combine(db_session, store, "conv-1")
        assert result.status == "failed"
        assert result.error == "Failed to upload combined file: bucket unavailable"

    def test_unexpected_error_marks_job_failed(self, db_session: Session, store: LocalChunkStore):
        """Unexpected exceptions fail the job and propagate."""
        reassembler = MagicMock()
        reassembler.reassemble.side_effect = RuntimeError("boom")
        _add_chunks(db_session, store, "conv-1", [b"one"])

        with pytest.raises(RuntimeError):
            _service(reassembler=reassembler).combine(db_session, store, "conv-1")

        job = db_session.query(CombinationJob).one()
        assert job.status == "failed"
        assert job.error_message == "Unexpected error: boom"

    def test_mixed_container_kinds_fail(self, db_session: Session, store: LocalChunkStore):
        _add_chunks(db_session, store, "conv-1", [b"one", b"two"])
        chunk = db_session.query(AudioChunk).filter(AudioChunk.chunk_index == 1).one()
        chunk.container_kind = ContainerKind.RAW_PCM_WAV.value
        db_session.commit()

        result = _service().combine(db_session, store, "conv-1")
        assert result.status == "failed"
        assert "Chunk 1 is malformed" in result.error

    def test_failed_chunks_are_skipped(self, db_session: Session, store: LocalChunkStore):
        """Chunks whose upload failed are not part of the combination."""
        _add_chunks(db_session, store, "conv-1", [b"one", b"two"])
        db_session.add(
            AudioChunk(
                conversation_id="conv-1",
                chunk_index=2,
                speaker="patient",
                storage_path="conv-1/patient/chunk-002.webm",
                byte_size=3,
                container_kind="self_framing",
                status="failed",
                retry_count=1,
            )
        )
        db_session.commit()

        result = _service().combine(db_session, store, "conv-1")
        assert result.status == "completed"
        assert result.chunk_count == 2

    def test_request_id_in_logs(self, db_session: Session, store: LocalChunkStore, caplog):
        _add_chunks(db_session, store, "conv-1", [b"one"])
        with caplog.at_level(logging.INFO, logger="app.services.combination"):
            _service().combine(db_session, store, "conv-1", request_id="req-42")
        assert "[req-42 conv-1/patient]" in caplog.text


class TestHelpers:
    def test_combined_file_path(self):
        assert combined_file_path("c1", "patient", ContainerKind.SELF_FRAMING, 1700000000000) == (
            "c1/combined-1700000000000.webm"
        )
        assert combined_file_path("c1", "ai", ContainerKind.RAW_PCM_WAV, 1700000000000) == (
            "c1/combined-ai-1700000000000.wav"
        )

    def test_context_elapsed(self):
        ctx = CombinationContext(conversation_id="c1", speaker="patient")
        assert ctx.elapsed_ms >= 0
        assert len(ctx.request_id) == 8
