"""In-memory call session store.

Sessions are keyed by the Twilio CallSid. Each session carries its own lock
so callbacks for one call are handled strictly one after another while other
calls proceed in parallel. Sessions expire after a fixed idle TTL so calls
whose final callback never arrives are reclaimed by the sweeper.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator

from .errors import SessionNotFound
from .events import log_event
from .llm_client import ConversationEntry


class Phase(str, Enum):
    INTRODUCTION = "introduction"
    QUESTION1 = "question1"
    QUESTION2 = "question2"
    QNA = "qna"
    ENDED = "ended"


PHASE_ORDER = (Phase.INTRODUCTION, Phase.QUESTION1, Phase.QUESTION2, Phase.QNA, Phase.ENDED)


@dataclass
class CallSession:
    call_id: str
    job_role: str
    job_description: str
    candidate_phone: str = ""
    phase: Phase = Phase.INTRODUCTION
    history: list[ConversationEntry] = field(default_factory=list)
    recording_refs: dict[str, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def advance(self, target: Phase) -> None:
        if target == self.phase == Phase.QNA:
            return
        if PHASE_ORDER.index(target) <= PHASE_ORDER.index(self.phase):
            raise ValueError(f"phase cannot move from {self.phase.value} to {target.value}")
        self.phase = target

    def append(self, role: str, content: str) -> None:
        self.history.append(ConversationEntry(role=role, content=content))

    def snapshot(self) -> dict:
        return {
            "call_id": self.call_id,
            "job_role": self.job_role,
            "job_description": self.job_description,
            "candidate_phone": self.candidate_phone,
            "phase": self.phase.value,
            "history": [e.model_dump() for e in self.history],
            "recording_refs": dict(self.recording_refs),
        }


class SessionStore:
    """Process-wide mapping from call id to session, with TTL eviction."""

    def __init__(
        self,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Callable[[CallSession], None] | None = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.on_evict = on_evict
        self._sessions: dict[str, CallSession] = {}
        self._guard = threading.Lock()
        self._sweeper: threading.Thread | None = None
        self._stop = threading.Event()

    def create(self, call_id: str, job_role: str, job_description: str, candidate_phone: str = "") -> CallSession:
        now = self.clock()
        session = CallSession(
            call_id=call_id,
            job_role=job_role,
            job_description=job_description,
            candidate_phone=candidate_phone,
            created_at=now,
            last_activity=now,
        )
        with self._guard:
            self._sessions[call_id] = session
        return session

    def get_or_create(
        self, call_id: str, job_role: str, job_description: str, candidate_phone: str = ""
    ) -> tuple[CallSession, bool]:
        with self._guard:
            existing = self._sessions.get(call_id)
            if existing is not None:
                if candidate_phone and not existing.candidate_phone:
                    existing.candidate_phone = candidate_phone
                # The answer webhook may seed a description clipped to fit its URL.
                if len(job_description) > len(existing.job_description):
                    existing.job_description = job_description
                return existing, False
            now = self.clock()
            session = CallSession(
                call_id=call_id,
                job_role=job_role,
                job_description=job_description,
                candidate_phone=candidate_phone,
                created_at=now,
                last_activity=now,
            )
            self._sessions[call_id] = session
            return session, True

    def get(self, call_id: str) -> CallSession | None:
        with self._guard:
            return self._sessions.get(call_id)

    def delete(self, call_id: str) -> CallSession | None:
        with self._guard:
            return self._sessions.pop(call_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._sessions)

    def __contains__(self, call_id: str) -> bool:
        return self.get(call_id) is not None

    @contextmanager
    def locked(self, call_id: str) -> Iterator[CallSession]:
        """Hold the per-call lock for the duration of one callback."""
        session = self.get(call_id)
        if session is None:
            raise SessionNotFound(call_id)
        with session.lock:
            # The session may have been removed while this callback waited.
            if self.get(call_id) is not session:
                raise SessionNotFound(call_id)
            session.last_activity = self.clock()
            yield session

    def sweep(self) -> list[CallSession]:
        cutoff = self.clock() - self.ttl_seconds
        with self._guard:
            expired = [
                s for s in self._sessions.values()
                if s.last_activity < cutoff and not s.lock.locked()
            ]
            for s in expired:
                self._sessions.pop(s.call_id, None)
        if self.on_evict:
            for s in expired:
                self.on_evict(s)
        return expired

    def start_sweeper(self, interval_seconds: float = 60) -> None:
        if self._sweeper and self._sweeper.is_alive():
            return
        self._stop.clear()

        def _run():
            while not self._stop.wait(interval_seconds):
                try:
                    self.sweep()
                except Exception as e:
                    log_event(f"SESSION_SWEEP_FAIL | {e}")

        self._sweeper = threading.Thread(target=_run, name="session-sweeper", daemon=True)
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper:
            self._sweeper.join(timeout=5)
        self._sweeper = None
