"""FFmpeg re-encode of concatenated self-framing audio into one container."""

import logging
import shlex
import subprocess
import tempfile
from pathlib import Path

from app.config import get_settings

logger = logging.getLogger(__name__)


class ReEncodeError(Exception):
    """The external re-encode failed, timed out, or could not be started."""


class ReEncoder:
    """Runs a concatenated WebM/Opus payload through ffmpeg (audio only, fixed codec and bitrate).

    Input and output live in a temporary directory that is removed on every
    exit path, including a timeout or a crashed ffmpeg process.
    """

    def __init__(
        self,
        ffmpeg_bin: str | None = None,
        audio_codec: str | None = None,
        bitrate: str | None = None,
        timeout: int | None = None,
    ):
        settings = get_settings()
        self.ffmpeg_bin = ffmpeg_bin or settings.FFMPEG_BIN
        self.audio_codec = audio_codec or settings.REENCODE_AUDIO_CODEC
        self.bitrate = bitrate or settings.REENCODE_BITRATE
        self.timeout = timeout or settings.FFMPEG_TIMEOUT_SECONDS

    def build_command(self, input_path: Path, output_path: Path) -> list[str]:
        return [
            self.ffmpeg_bin,
            "-hide_banner",
            "-y",
            "-i",
            str(input_path),
            "-vn",
            "-c:a",
            self.audio_codec,
            "-b:a",
            self.bitrate,
            str(output_path),
        ]

    def normalize(self, data: bytes, log: logging.Logger | logging.LoggerAdapter | None = None) -> bytes:
        """Return ``data`` re-encoded as a single well-formed WebM container."""
        log = log or logger
        with tempfile.TemporaryDirectory(prefix="voice-stitch-reencode-") as tmp_dir:
            input_path = Path(tmp_dir) / "input.webm"
            output_path = Path(tmp_dir) / "output.webm"
            input_path.write_bytes(data)

            cmd = self.build_command(input_path, output_path)
            log.info("Re-encoding %d bytes: %s", len(data), shlex.join(cmd))
            try:
                result = subprocess.run(
                    cmd, capture_output=True, encoding="utf-8", errors="replace", timeout=self.timeout
                )
            except subprocess.TimeoutExpired as e:
                raise ReEncodeError(f"FFmpeg re-encode timed out after {self.timeout}s") from e
            except OSError as e:
                raise ReEncodeError(f"Could not run {self.ffmpeg_bin}: {e}") from e

            log.debug("FFmpeg output: %s", result.stderr[-2000:])
            if result.returncode != 0:
                log.error("FFmpeg stderr: %s", result.stderr[-500:])
                raise ReEncodeError(f"FFmpeg re-encode failed with exit code {result.returncode}")
            if not output_path.exists() or output_path.stat().st_size == 0:
                raise ReEncodeError("FFmpeg re-encode produced no output")

            encoded = output_path.read_bytes()

        log.info("Re-encoded %d bytes into %d bytes", len(data), len(encoded))
        return encoded
