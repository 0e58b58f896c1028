"""Recording retrieval and transcoding.

Twilio recordings are downloaded with a bounded number of attempts and
converted to 16 kHz mono audio before they reach the transcription adapter.
Every intermediate file lives under the recordings directory and carries the
call id in its name so a failed pipeline can be swept.
"""

from __future__ import annotations

import io
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
from urllib.parse import urlparse

import requests
from pydub import AudioSegment

from .errors import RecordingFetchError
from .events import log_event
from .stt_client import ACCEPTED_FORMATS

SAMPLE_RATE = 16000


def _media_url(recording_url: str, fmt: str) -> str:
    # Twilio serves the same recording in several encodings by extension.
    path = urlparse(recording_url).path
    if Path(path).suffix:
        return recording_url
    return f"{recording_url}.{fmt}"


class RecordingPreparer:
    """Fetches a call recording and turns it into transcription-ready audio."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        recordings_dir: Path,
        retries: int = 3,
        delay_seconds: float = 2.0,
        output_format: str = "wav",
        http: requests.Session | None = None,
    ):
        if output_format not in ACCEPTED_FORMATS:
            raise ValueError(
                f"Transcoding format '{output_format}' is not accepted by the transcription adapter "
                f"(expected one of: {', '.join(sorted(ACCEPTED_FORMATS))})"
            )
        self.auth = (account_sid, auth_token) if account_sid else None
        self.recordings_dir = Path(recordings_dir)
        self.retries = max(1, int(retries))
        self.delay_seconds = max(0.0, float(delay_seconds))
        self.output_format = output_format
        self.http = http or requests.Session()

    def fetch(self, recording_url: str, call_id: str) -> bytes:
        url = _media_url(recording_url, self.output_format)
        last_error: Exception | None = None
        for attempt in range(1, self.retries + 1):
            log_event(f"RECORDING_FETCH sid={call_id} attempt={attempt}/{self.retries}")
            try:
                r = self.http.get(url, auth=self.auth, timeout=30)
                r.raise_for_status()
                if not r.content:
                    raise RecordingFetchError("empty recording body")
                return r.content
            except (requests.RequestException, RecordingFetchError) as e:
                last_error = e
                log_event(f"RECORDING_FETCH_FAIL sid={call_id} attempt={attempt} | {e}")
                if attempt < self.retries:
                    time.sleep(self.delay_seconds)
        raise RecordingFetchError(
            f"Recording for {call_id} unavailable after {self.retries} attempts: {last_error}"
        ) from last_error

    def transcode(self, raw: bytes, call_id: str) -> Path:
        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        out_path = self.recordings_dir / f"{call_id}_{time.time_ns()}.{self.output_format}"
        segment = AudioSegment.from_file(io.BytesIO(raw))
        segment = segment.set_frame_rate(SAMPLE_RATE).set_channels(1)
        segment.export(str(out_path), format=self.output_format)
        return out_path

    def sweep_call_files(self, call_id: str) -> int:
        if not self.recordings_dir.exists():
            return 0
        removed = 0
        for p in self.recordings_dir.glob(f"*{call_id}*"):
            try:
                p.unlink(missing_ok=True)
                removed += 1
            except OSError as e:
                log_event(f"RECORDING_SWEEP_FAIL sid={call_id} file={p.name} | {e}")
        return removed

    @contextmanager
    def prepare(self, recording_url: str, call_id: str) -> Iterator[Path]:
        """Yield a transcription-ready file, removed again on exit."""
        path: Path | None = None
        try:
            raw = self.fetch(recording_url, call_id)
            path = self.transcode(raw, call_id)
            yield path
        except Exception:
            removed = self.sweep_call_files(call_id)
            if removed:
                log_event(f"RECORDING_SWEEP sid={call_id} removed={removed}")
            raise
        finally:
            if path is not None:
                path.unlink(missing_ok=True)
