"""Speech-to-text client wrapper (transcription only)."""

from __future__ import annotations

from pathlib import Path

from openai import OpenAI

from .events import log_event

ACCEPTED_FORMATS = frozenset({"wav", "mp3", "m4a", "webm"})


class TranscriptionClient:
    """Transcribes prepared candidate audio with the OpenAI audio API.

    Provider errors are not retried or wrapped here.
    """

    def __init__(self, api_key: str, model: str = "whisper-1", client: OpenAI | None = None):
        self.model = model
        self.client = client or OpenAI(api_key=api_key)

    def transcribe(self, audio_path: Path, call_id: str) -> str:
        with Path(audio_path).open("rb") as f:
            out = self.client.audio.transcriptions.create(
                file=f,
                model=self.model,
                response_format="text",
                language="en",
            )
        # response_format="text" returns a plain string; older SDKs return an object.
        text = out if isinstance(out, str) else getattr(out, "text", "")
        text = (text or "").strip()
        log_event(f"TRANSCRIBE sid={call_id} chars={len(text)}")
        return text
