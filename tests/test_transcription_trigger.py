"""Tests for the transcription hand-off."""

from unittest.mock import patch

import httpx

from app.services.transcription_trigger import TranscriptionTrigger


class TestTranscriptionTrigger:
    """Tests for TranscriptionTrigger."""

    def test_notify_posts_payload(self):
        response = httpx.Response(202, request=httpx.Request("POST", "http://transcriber/api/transcribe"))
        with patch("app.services.transcription_trigger.httpx.post", return_value=response) as post:
            ok = TranscriptionTrigger(url="http://transcriber/api/transcribe", timeout=5).notify(
                "conv-1", "patient", "conv-1/combined-1.webm"
            )
        assert ok is True
        post.assert_called_once_with(
            "http://transcriber/api/transcribe",
            json={"conversation_id": "conv-1", "speaker": "patient", "combined_file_path": "conv-1/combined-1.webm"},
            timeout=5,
        )

    def test_notify_logs_http_errors(self, caplog):
        with patch("app.services.transcription_trigger.httpx.post", side_effect=httpx.ConnectError("refused")):
            ok = TranscriptionTrigger(url="http://transcriber/api/transcribe").notify("conv-1", "ai", "p.webm")
        assert ok is False
        assert "Transcription trigger for conv-1 failed" in caplog.text

    def test_notify_error_status(self):
        response = httpx.Response(500, request=httpx.Request("POST", "http://transcriber/api/transcribe"))
        with patch("app.services.transcription_trigger.httpx.post", return_value=response):
            assert TranscriptionTrigger(url="http://transcriber/api/transcribe").notify("c", "patient", "p") is False

    def test_trigger_runs_in_background(self):
        trigger = TranscriptionTrigger(url="http://transcriber/api/transcribe")
        with patch.object(trigger, "notify", return_value=True) as notify:
            thread = trigger.trigger("conv-1", "patient", "conv-1/combined-1.webm")
            thread.join(timeout=5)
        assert thread.daemon is True
        notify.assert_called_once_with("conv-1", "patient", "conv-1/combined-1.webm")

    def test_disabled_without_url(self):
        trigger = TranscriptionTrigger(url="")
        assert trigger.enabled is False
        with patch("app.services.transcription_trigger.httpx.post") as post:
            assert trigger.trigger("conv-1", "patient", "p.webm") is None
        post.assert_not_called()
