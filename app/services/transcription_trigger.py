"""Fire-and-forget hand-off of combined recordings to the transcription service."""

import logging
import threading

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)


class TranscriptionTrigger:
    """Notifies the transcription service that a combined recording is ready.

    Delivery failures are logged and never reach the combination job.
    """

    def __init__(self, url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.url = url if url is not None else settings.TRANSCRIPTION_URL
        self.timeout = timeout or settings.TRANSCRIPTION_TIMEOUT_SECONDS

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def notify(self, conversation_id: str, speaker: str, combined_file_path: str) -> bool:
        """POST the notification synchronously. Returns True if it was accepted."""
        payload = {
            "conversation_id": conversation_id,
            "speaker": speaker,
            "combined_file_path": combined_file_path,
        }
        try:
            response = httpx.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Transcription trigger for %s failed: %s", conversation_id, e)
            return False
        logger.info("Transcription triggered for %s (%s)", conversation_id, combined_file_path)
        return True

    def trigger(self, conversation_id: str, speaker: str, combined_file_path: str) -> threading.Thread | None:
        """Send the notification from a daemon thread without waiting for it."""
        if not self.enabled:
            logger.info("TRANSCRIPTION_URL not set - skipping transcription for %s", conversation_id)
            return None
        thread = threading.Thread(
            target=self.notify,
            args=(conversation_id, speaker, combined_file_path),
            name=f"transcription-trigger-{conversation_id}",
            daemon=True,
        )
        thread.start()
        return thread


_transcription_trigger: TranscriptionTrigger | None = None


def get_transcription_trigger() -> TranscriptionTrigger:
    """Get singleton transcription trigger instance."""
    global _transcription_trigger
    if _transcription_trigger is None:
        _transcription_trigger = TranscriptionTrigger()
    return _transcription_trigger
