from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from types import SimpleNamespace

import pytest

from interview_agent.errors import GenerationError, RecordingFetchError
from interview_agent.events import configure_log_dir
from interview_agent.orchestrator import InterviewOrchestrator
from interview_agent.store import SessionStore


@pytest.fixture(autouse=True)
def _log_to_tmp(tmp_path):
    configure_log_dir(tmp_path / "logs")
    yield


class FakeAudio:
    """Stands in for RecordingPreparer; URLs containing 'missing' fail to download."""

    def __init__(self, tmp_path: Path):
        self.tmp_path = tmp_path
        self.prepared: list[str] = []

    @contextmanager
    def prepare(self, recording_url: str, call_id: str):
        if "missing" in recording_url:
            raise RecordingFetchError(f"gone: {recording_url}")
        self.prepared.append(recording_url)
        yield self.tmp_path / f"{call_id}.wav"


class FakeTranscriber:
    """Returns canned text per recording; 'garbled' recordings raise."""

    def __init__(self, audio: FakeAudio):
        self.audio = audio
        self.calls = 0

    def transcribe(self, audio_path, call_id):
        self.calls += 1
        url = self.audio.prepared[-1]
        if "garbled" in url:
            raise RuntimeError("provider rejected audio")
        return f"transcript of {url.rsplit('/', 1)[-1]}"


class FakeGenerator:
    def __init__(self):
        self.fail = False
        self.requests: list[dict] = []

    def generate(self, instruction, role, job_description, history, temperature=None):
        self.requests.append(
            {"instruction": instruction, "role": role, "history": list(history), "temperature": temperature}
        )
        if self.fail:
            raise GenerationError("model unavailable")
        return f"AI reply {len(self.requests)}"


@pytest.fixture
def store():
    return SessionStore(ttl_seconds=3600)


@pytest.fixture
def fakes(tmp_path):
    audio = FakeAudio(tmp_path)
    return SimpleNamespace(audio=audio, transcriber=FakeTranscriber(audio), generator=FakeGenerator(), completed=[])


@pytest.fixture
def orchestrator(store, fakes):
    return InterviewOrchestrator(
        store=store,
        audio=fakes.audio,
        transcriber=fakes.transcriber,
        generator=fakes.generator,
        on_complete=lambda snapshot, status: fakes.completed.append((snapshot, status)),
    )


def chat_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def fake_openai(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
