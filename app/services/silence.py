"""Silence detection on stored recordings using ffmpeg's silencedetect filter."""

import logging
import re
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import utcnow
from app.models.silence_analysis import SilenceAnalysis
from app.services.storage import ChunkStore

logger = logging.getLogger(__name__)

SILENCE_START_RE = re.compile(r"silence_start:\s*(-?[\d.]+(?:e[-+]?\d+)?)")
SILENCE_END_RE = re.compile(r"silence_end:\s*(-?[\d.]+(?:e[-+]?\d+)?)")
DURATION_RE = re.compile(r"Duration:\s*(\d{2}):(\d{2}):([\d.]+)")
PROGRESS_TIME_RE = re.compile(r"time=\s*(\d{2}):(\d{2}):([\d.]+)")


class SilenceAnalysisError(Exception):
    """The silence detector failed or timed out."""


@dataclass
class DetectionResult:
    segments: list[list[float]]
    duration_seconds: float


def _hms_to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_silencedetect_output(stderr: str) -> DetectionResult:
    """Turn silencedetect's stderr into sorted, non-overlapping [start, end] segments.

    Each silence_start pairs with the next silence_end greater than it. A later
    silence_start replaces one still waiting for its end, and a start left open
    when the stream ends is dropped.
    """
    segments: list[list[float]] = []
    pending_start: float | None = None
    duration = 0.0
    last_progress = 0.0

    for line in stderr.splitlines():
        duration_match = DURATION_RE.search(line)
        if duration_match:
            duration = _hms_to_seconds(*duration_match.groups())

        for progress_match in PROGRESS_TIME_RE.finditer(line):
            last_progress = _hms_to_seconds(*progress_match.groups())

        start_match = SILENCE_START_RE.search(line)
        if start_match:
            # ffmpeg reports a tiny negative start for silence at the very beginning
            pending_start = max(0.0, float(start_match.group(1)))

        end_match = SILENCE_END_RE.search(line)
        if end_match and pending_start is not None:
            end = float(end_match.group(1))
            if end > pending_start:
                segments.append([pending_start, end])
                pending_start = None

    if not duration:
        # "Duration: N/A" for some streamed WebM files
        duration = last_progress

    segments.sort()
    merged: list[list[float]] = []
    for start, end in segments:
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])

    return DetectionResult(segments=merged, duration_seconds=duration)


class SilenceAnalyzer:
    """Finds silent segments in a stored audio file and caches the result per file path."""

    def __init__(
        self,
        ffmpeg_bin: str | None = None,
        threshold_db: float | None = None,
        min_duration_seconds: float | None = None,
        timeout: int | None = None,
    ):
        settings = get_settings()
        self.ffmpeg_bin = ffmpeg_bin or settings.FFMPEG_BIN
        self.threshold_db = threshold_db if threshold_db is not None else settings.SILENCE_THRESHOLD_DB
        self.min_duration_seconds = (
            min_duration_seconds if min_duration_seconds is not None else settings.SILENCE_MIN_DURATION_SECONDS
        )
        self.timeout = timeout or settings.FFMPEG_TIMEOUT_SECONDS

    def build_command(self, input_path: Path) -> list[str]:
        return [
            self.ffmpeg_bin,
            "-hide_banner",
            "-i",
            str(input_path),
            "-af",
            f"silencedetect=noise={self.threshold_db:g}dB:d={self.min_duration_seconds:g}",
            "-f",
            "null",
            "-",
        ]

    def detect(self, input_path: Path) -> DetectionResult:
        """Run silencedetect over a local file."""
        cmd = self.build_command(input_path)
        logger.info("Running silence detection: %s", shlex.join(cmd))
        try:
            result = subprocess.run(
                cmd, capture_output=True, encoding="utf-8", errors="replace", timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise SilenceAnalysisError(f"Silence detection timed out after {self.timeout}s") from e
        except OSError as e:
            raise SilenceAnalysisError(f"Could not run {self.ffmpeg_bin}: {e}") from e

        if result.returncode != 0:
            logger.error("FFmpeg stderr: %s", result.stderr[-500:])
            raise SilenceAnalysisError(f"Silence detection failed with exit code {result.returncode}")
        return parse_silencedetect_output(result.stderr)

    def get_cached(self, db: Session, file_path: str, bucket_name: str) -> SilenceAnalysis | None:
        return (
            db.query(SilenceAnalysis)
            .filter(SilenceAnalysis.bucket_name == bucket_name, SilenceAnalysis.file_path == file_path)
            .first()
        )

    def analyze(
        self,
        db: Session,
        store: ChunkStore,
        file_path: str,
        bucket_name: str | None = None,
    ) -> tuple[SilenceAnalysis, bool]:
        """Return the silence analysis for ``file_path``, computing it on a cache miss.

        ``bucket_name`` defaults to the store's own bucket. Results are cached per
        (bucket, file path).

        Returns:
            (analysis, cached)

        Raises:
            ObjectNotFoundError: If the file is not in the store.
            StorageError: If the download fails.
            SilenceAnalysisError: If the detector fails. Nothing is cached.
        """
        bucket_name = bucket_name or store.bucket or get_settings().STORAGE_BUCKET
        cached = self.get_cached(db, file_path, bucket_name)
        if cached is not None:
            logger.info("Silence analysis cache hit for %s/%s", bucket_name, file_path)
            return cached, True

        data = store.for_bucket(bucket_name).get(file_path)
        suffix = PurePosixPath(file_path).suffix or ".webm"
        with tempfile.TemporaryDirectory(prefix="voice-stitch-silence-") as tmp_dir:
            input_path = Path(tmp_dir) / f"input{suffix}"
            input_path.write_bytes(data)
            del data
            detection = self.detect(input_path)

        logger.info(
            "Silence analysis for %s/%s: %d segments over %.2fs",
            bucket_name,
            file_path,
            len(detection.segments),
            detection.duration_seconds,
        )
        analysis = SilenceAnalysis(
            bucket_name=bucket_name,
            file_path=file_path,
            segments=detection.segments,
            duration_seconds=detection.duration_seconds,
            threshold_db=self.threshold_db,
            min_silence_duration_seconds=self.min_duration_seconds,
            analyzed_at=utcnow(),
        )
        return self._save(db, analysis), False

    def _save(self, db: Session, analysis: SilenceAnalysis) -> SilenceAnalysis:
        try:
            saved = db.merge(analysis)
            db.commit()
        except IntegrityError:
            # A concurrent request inserted the same file first; overwrite with our equivalent result.
            db.rollback()
            saved = db.merge(analysis)
            db.commit()
        db.refresh(saved)
        return saved


_silence_analyzer: SilenceAnalyzer | None = None


def get_silence_analyzer() -> SilenceAnalyzer:
    """Get singleton silence analyzer instance."""
    global _silence_analyzer
    if _silence_analyzer is None:
        _silence_analyzer = SilenceAnalyzer()
    return _silence_analyzer
