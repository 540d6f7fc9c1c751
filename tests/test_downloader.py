"""Tests for batched chunk downloads."""

import random
import threading
import time

import pytest

from app.services.downloader import ChunkDownloader, ChunkDownloadError, ChunkRef
from app.services.storage import ChunkStore, ObjectNotFoundError


class SlowStore(ChunkStore):
    """In-memory store that answers in random order."""

    def __init__(self, objects: dict[str, bytes], missing: set[str] | None = None):
        self.objects = objects
        self.missing = missing or set()
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def get(self, path: str) -> bytes:
        time.sleep(random.uniform(0, 0.01))
        with self._lock:
            self.calls.append(path)
        if path in self.missing:
            raise ObjectNotFoundError(f"Object not found: {path}", path=path)
        return self.objects[path]

    def put(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        self.objects[path] = data


def _refs(count: int) -> list[ChunkRef]:
    return [ChunkRef(i, f"conv/patient/chunk-{i:03d}.webm") for i in range(count)]


def _objects(count: int) -> dict[str, bytes]:
    return {f"conv/patient/chunk-{i:03d}.webm": f"payload-{i}".encode() for i in range(count)}


class TestChunkDownloader:
    """Tests for ChunkDownloader.download_all."""

    def test_results_in_index_order(self):
        """Payloads come back in chunk-index order whatever the completion order."""
        store = SlowStore(_objects(23))
        payloads = ChunkDownloader(store, batch_size=5).download_all(_refs(23))
        assert payloads == [f"payload-{i}".encode() for i in range(23)]
        assert len(store.calls) == 23

    def test_batch_callback(self):
        """The callback runs once per batch with a running count."""
        progress = []
        ChunkDownloader(SlowStore(_objects(7)), batch_size=3).download_all(
            _refs(7), on_batch_complete=lambda done, total: progress.append((done, total))
        )
        assert progress == [(3, 7), (6, 7), (7, 7)]

    def test_failure_names_chunk_index(self):
        """A missing chunk fails the download with its index."""
        store = SlowStore(_objects(10), missing={"conv/patient/chunk-004.webm", "conv/patient/chunk-006.webm"})
        with pytest.raises(ChunkDownloadError) as exc:
            ChunkDownloader(store, batch_size=10).download_all(_refs(10))
        assert exc.value.chunk_index == 4
        assert exc.value.message == "Failed to download chunk 4: Object not found: conv/patient/chunk-004.webm"

    def test_failure_stops_later_batches(self):
        """No batch after a failed one is started."""
        store = SlowStore(_objects(9), missing={"conv/patient/chunk-001.webm"})
        with pytest.raises(ChunkDownloadError):
            ChunkDownloader(store, batch_size=3).download_all(_refs(9))
        assert sorted(store.calls) == [f"conv/patient/chunk-{i:03d}.webm" for i in range(3)]

    def test_gap_in_indexes(self):
        """A hole in the index sequence is reported before anything is downloaded."""
        refs = [ChunkRef(0, "a"), ChunkRef(1, "b"), ChunkRef(3, "d")]
        store = SlowStore({"a": b"a", "b": b"b", "d": b"d"})
        with pytest.raises(ChunkDownloadError) as exc:
            ChunkDownloader(store, batch_size=50).download_all(refs)
        assert exc.value.chunk_index == 2
        assert store.calls == []

    def test_empty(self):
        assert ChunkDownloader(SlowStore({}), batch_size=50).download_all([]) == []

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            ChunkDownloader(SlowStore({}), batch_size=-1)
