"""Pytest configuration and fixtures."""

import stat
import struct
import sys

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.models.audio_chunk import AudioChunk  # noqa: F401
from app.models.combination_job import CombinationJob  # noqa: F401
from app.models.silence_analysis import SilenceAnalysis  # noqa: F401
from app.services.storage import LocalChunkStore, get_chunk_store


def build_wav(pcm: bytes, extra_chunks: list[tuple[bytes, bytes]] | None = None) -> bytes:
    """Build a 48kHz mono 16-bit WAV file, optionally with subchunks before ``data``."""
    fmt = struct.pack("<HHIIHH", 1, 1, 48000, 96000, 2, 16)
    body = b"WAVE" + b"fmt " + struct.pack("<I", len(fmt)) + fmt
    for chunk_id, chunk_data in extra_chunks or []:
        body += chunk_id + struct.pack("<I", len(chunk_data)) + chunk_data
    body += b"data" + struct.pack("<I", len(pcm)) + pcm
    return b"RIFF" + struct.pack("<I", len(body)) + body


@pytest.fixture(name="fake_ffmpeg")
def fake_ffmpeg_fixture(tmp_path):
    """Factory for an executable shell script that stands in for the ffmpeg binary."""
    if sys.platform == "win32":
        pytest.skip("shell script stand-in needs a POSIX shell")

    def make(body: str) -> str:
        script = tmp_path / "ffmpeg"
        script.write_text("#!/bin/sh\n" + body)
        script.chmod(script.stat().st_mode | stat.S_IXUSR)
        return str(script)

    return make


@pytest.fixture(name="db_session")
def db_session_fixture():
    """Create an in-memory SQLite database for tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="store")
def store_fixture(tmp_path):
    """Local chunk store rooted in a temporary directory."""
    return LocalChunkStore(tmp_path / "storage", bucket="audio-recordings")


@pytest.fixture(name="client")
def client_fixture(db_session: Session, store: LocalChunkStore):
    """Create a test client with overridden DB and storage dependencies and disabled rate limiting."""
    from app.rate_limit import limiter
    from main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_chunk_store] = lambda: store
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True
    app.dependency_overrides.clear()
