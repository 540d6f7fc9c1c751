"""Tests for audio chunk upload and listing."""

import io

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.models.audio_chunk import AudioChunk
from app.services.audio_chunk import ChunkIngestionService, chunk_storage_path
from app.services.storage import LocalChunkStore, StorageError
from conftest import build_wav


def _post(client: TestClient, payload: bytes, mime: str = "audio/webm", **fields):
    data = {"conversation_id": "conv-1", "chunk_index": "0", "speaker": "patient"}
    data.update({k: str(v) for k, v in fields.items()})
    return client.post(
        "/api/v1/audio-chunks/",
        data=data,
        files={"file": ("blob", io.BytesIO(payload), mime)},
    )


class TestChunkUpload:
    """Tests for chunk upload."""

    def test_upload_webm(self, client: TestClient, store: LocalChunkStore):
        response = _post(client, b"\x1aE\xdf\xa3opus", "audio/webm;codecs=opus", chunk_index=7)
        assert response.status_code == 200
        data = response.json()
        assert data["duplicate"] is False
        chunk = data["chunk"]
        assert chunk["storage_path"] == "conv-1/patient/chunk-007.webm"
        assert chunk["container_kind"] == "self_framing"
        assert chunk["status"] == "uploaded"
        assert chunk["byte_size"] == 8
        assert store.get("conv-1/patient/chunk-007.webm") == b"\x1aE\xdf\xa3opus"

    def test_upload_wav_detected_by_magic(self, client: TestClient):
        """WAV payloads are recognised even with a generic content type."""
        response = _post(client, build_wav(b"\x00" * 4), "application/octet-stream", speaker="ai")
        chunk = response.json()["chunk"]
        assert chunk["container_kind"] == "raw_pcm_wav"
        assert chunk["storage_path"] == "conv-1/ai/chunk-000.wav"

    def test_duplicate_upload(self, client: TestClient, store: LocalChunkStore):
        """Re-sending a chunk returns the existing record without overwriting it."""
        _post(client, b"\x1aE\xdf\xa3first")
        response = _post(client, b"\x1aE\xdf\xa3second")
        assert response.status_code == 200
        assert response.json()["duplicate"] is True
        assert store.get("conv-1/patient/chunk-000.webm") == b"\x1aE\xdf\xa3first"

    def test_same_index_different_speakers(self, client: TestClient, db_session: Session):
        _post(client, b"\x1aE\xdf\xa3p", speaker="patient")
        response = _post(client, b"\x1aE\xdf\xa3a", speaker="ai")
        assert response.json()["duplicate"] is False
        assert db_session.query(AudioChunk).count() == 2

    def test_invalid_speaker(self, client: TestClient):
        response = _post(client, b"\x1aE\xdf\xa3", speaker="doctor")
        assert response.status_code == 400
        assert "Invalid speaker" in response.json()["detail"]

    def test_negative_index(self, client: TestClient):
        response = _post(client, b"\x1aE\xdf\xa3", chunk_index=-1)
        assert response.status_code == 400

    def test_empty_payload(self, client: TestClient):
        response = _post(client, b"")
        assert response.status_code == 400
        assert response.json()["detail"] == "No audio data provided"

    def test_non_audio_content_type(self, client: TestClient):
        response = _post(client, b"%PDF-1.4", "application/pdf")
        assert response.status_code == 400
        assert "Invalid content type" in response.json()["detail"]

    def test_missing_conversation_id(self, client: TestClient):
        response = client.post(
            "/api/v1/audio-chunks/",
            data={"chunk_index": "0"},
            files={"file": ("blob", io.BytesIO(b"x"), "audio/webm")},
        )
        assert response.status_code == 422


class TestChunkUploadFailures:
    """Tests for storage failures during ingestion."""

    def test_failed_upload_is_recorded_and_retried(self, db_session: Session, store: LocalChunkStore, monkeypatch):
        service = ChunkIngestionService()
        real_put = store.put

        def broken_put(*args, **kwargs):
            raise StorageError("connection reset")

        monkeypatch.setattr(store, "put", broken_put)
        for _ in range(2):
            with pytest.raises(StorageError):
                service.ingest(db_session, store, "conv-1", 0, "patient", "audio/webm", b"\x1aE\xdf\xa3")
        chunk = service.get_chunk(db_session, "conv-1", 0, "patient")
        assert chunk.status == "failed"
        assert chunk.retry_count == 2

        monkeypatch.setattr(store, "put", real_put)
        result = service.ingest(db_session, store, "conv-1", 0, "patient", "audio/webm", b"\x1aE\xdf\xa3")
        assert result.duplicate is False
        assert result.chunk.id == chunk.id
        assert result.chunk.status == "uploaded"
        assert store.get("conv-1/patient/chunk-000.webm") == b"\x1aE\xdf\xa3"

    def test_upload_failure_returns_500(self, client: TestClient, store: LocalChunkStore, monkeypatch):
        def broken_put(*args, **kwargs):
            raise StorageError("connection reset")

        monkeypatch.setattr(store, "put", broken_put)
        response = _post(client, b"\x1aE\xdf\xa3")
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to upload audio chunk 0"


class TestChunkListing:
    def test_counts_by_status(self, client: TestClient, db_session: Session):
        for index in range(3):
            _post(client, b"\x1aE\xdf\xa3", chunk_index=index)
        _post(client, b"\x1aE\xdf\xa3", chunk_index=0, speaker="ai")
        db_session.query(AudioChunk).filter(AudioChunk.chunk_index == 2).update({"status": "failed"})
        db_session.commit()

        data = client.get("/api/v1/audio-chunks/", params={"conversation_id": "conv-1", "speaker": "patient"}).json()
        assert data["total"] == 3
        assert data["uploaded"] == 2
        assert data["failed"] == 1
        assert [c["chunk_index"] for c in data["items"]] == [0, 1, 2]

        everything = client.get("/api/v1/audio-chunks/", params={"conversation_id": "conv-1"}).json()
        assert everything["total"] == 4


def test_chunk_storage_path():
    assert chunk_storage_path("abc", "ai", 3, "wav") == "abc/ai/chunk-003.wav"
