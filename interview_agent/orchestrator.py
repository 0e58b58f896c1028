"""Interview call orchestration.

Each Twilio webhook is one event for one call. The orchestrator looks the
call up in the session store, runs the transition registered for the
session's (phase, event) pair while holding that call's lock, and returns
the voice directives for the reply. Transitions are listed in
``InterviewOrchestrator._transitions``; any pair not listed there is an
illegal transition and leaves the session untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable
from urllib.parse import quote

from .audio import RecordingPreparer
from .config import InterviewConfig
from .directives import Directive, Hangup, Record, Speak, Tone
from .errors import GenerationError, IllegalTransition, RecordingFetchError, SessionNotFound
from .events import log_event
from .llm_client import QNA_TEMPERATURE, QUESTION_TEMPERATURE, ResponseGenerator
from .stt_client import TranscriptionClient
from .store import CallSession, Phase, SessionStore

END_KEY = "#"
INTRO_MAX_LENGTH = 60
ANSWER_MAX_LENGTH = 120
QNA_MAX_LENGTH = 60
SILENCE_TIMEOUT = 5

GREETING = "Hello, this is an automated interview for the {role} position. Please introduce yourself after the beep."
QNA_INVITATION = (
    "Thank you for your answers! Do you have any questions for me? If yes, please ask after the beep. "
    "If not, just stay silent or press the pound key to end the call."
)
QNA_FOLLOW_UP = (
    "Do you have any other questions? If yes, please ask after the beep. "
    "If not, just stay silent or press the pound key to end the call."
)
NOT_CAUGHT = "Sorry, I didn't catch that."
CLOSING = "Thank you for your time! We will review your answers and get back to you soon. Goodbye!"
APOLOGY = "Sorry, I encountered an error. Thank you for your time! Goodbye!"

FIRST_QUESTION = "Ask the first technical question."
SECOND_QUESTION = "Ask the second technical question. It must cover a different topic than the first one."
ANSWER_QUESTION = "Answer this candidate question: {question}"

TERMINAL_CALL_STATUSES = frozenset({"completed", "busy", "no-answer", "failed", "canceled"})


class EventKind(str, Enum):
    ANSWERED = "answered"
    RECORDING = "recording"
    END_SIGNAL = "end_signal"
    SILENCE = "silence"


@dataclass(frozen=True)
class InboundSignal:
    """What a recording webhook carried: a recording, the end key, or nothing."""

    recording_url: str = ""
    digits: str = ""
    recording_duration: int | None = None

    @property
    def has_recording(self) -> bool:
        return bool(self.recording_url) and self.recording_duration != 0

    @property
    def kind(self) -> EventKind:
        if (self.digits or "").strip() == END_KEY:
            return EventKind.END_SIGNAL
        if self.has_recording:
            return EventKind.RECORDING
        return EventKind.SILENCE


CompletionHook = Callable[[dict, str], None]


def callback_path(phase: Phase, call_id: str) -> str:
    return f"/twilio/{phase.value}?call_sid={quote(call_id, safe='')}"


class InterviewOrchestrator:
    """Drives one interview per call through its fixed sequence of phases."""

    def __init__(
        self,
        store: SessionStore,
        audio: RecordingPreparer,
        transcriber: TranscriptionClient,
        generator: ResponseGenerator,
        on_complete: CompletionHook | None = None,
    ):
        self.store = store
        self.audio = audio
        self.transcriber = transcriber
        self.generator = generator
        self.on_complete = on_complete
        if self.store.on_evict is None:
            self.store.on_evict = self._evicted

        answer_events = (EventKind.RECORDING, EventKind.SILENCE, EventKind.END_SIGNAL)
        self._transitions: dict[tuple[Phase, EventKind], Callable[[CallSession, InboundSignal], list[Directive]]] = {
            (Phase.INTRODUCTION, EventKind.ANSWERED): self._greet,
            **{(Phase.INTRODUCTION, k): self._after_introduction for k in answer_events},
            **{(Phase.QUESTION1, k): self._after_first_answer for k in answer_events},
            **{(Phase.QUESTION2, k): self._after_second_answer for k in answer_events},
            (Phase.QNA, EventKind.RECORDING): self._answer_candidate_question,
            (Phase.QNA, EventKind.SILENCE): self._close,
            (Phase.QNA, EventKind.END_SIGNAL): self._close,
        }

    @classmethod
    def from_config(
        cls,
        cfg: InterviewConfig,
        store: SessionStore | None = None,
        on_complete: CompletionHook | None = None,
    ) -> "InterviewOrchestrator":
        return cls(
            store=store or SessionStore(ttl_seconds=cfg.session_ttl_seconds),
            audio=RecordingPreparer(
                cfg.twilio_account_sid,
                cfg.twilio_auth_token,
                cfg.recordings_dir,
                retries=cfg.recording_fetch_retries,
                delay_seconds=cfg.recording_fetch_delay_seconds,
            ),
            transcriber=TranscriptionClient(cfg.openai_api_key, model=cfg.transcription_model),
            generator=ResponseGenerator(cfg.openai_api_key, model=cfg.openai_model),
            on_complete=on_complete,
        )

    # Entry points

    def start_session(self, call_id: str, job_role: str, job_description: str, candidate_phone: str = "") -> CallSession:
        session, created = self.store.get_or_create(call_id, job_role, job_description, candidate_phone)
        if created:
            log_event(f"SESSION_CREATED sid={call_id} role={job_role} to={candidate_phone}")
        return session

    def answer(self, call_id: str, job_role: str = "", job_description: str = "") -> list[Directive]:
        """Call answered: greet the candidate and record the introduction."""
        if self.store.get(call_id) is None:
            # The answer webhook can beat the dialer's own session seeding.
            if not job_role:
                raise SessionNotFound(call_id)
            self.start_session(call_id, job_role, job_description)
        return self._dispatch(call_id, Phase.INTRODUCTION, EventKind.ANSWERED, InboundSignal())

    def handle(self, call_id: str, phase: Phase | str, signal: InboundSignal) -> list[Directive]:
        """A recording webhook for ``phase`` arrived."""
        return self._dispatch(call_id, Phase(phase), signal.kind, signal)

    def call_status_changed(self, call_id: str, status: str) -> bool:
        """Tear down a session whose call ended before the interview did."""
        if (status or "").strip().lower() not in TERMINAL_CALL_STATUSES:
            return False
        try:
            with self.store.locked(call_id) as session:
                log_event(f"CALL_ENDED_EARLY sid={call_id} status={status} phase={session.phase.value}")
                self._finish(session, self._abandoned_status(session))
        except SessionNotFound:
            return False
        return True

    # Dispatch

    def _dispatch(self, call_id: str, expected: Phase, kind: EventKind, signal: InboundSignal) -> list[Directive]:
        with self.store.locked(call_id) as session:
            step = self._transitions.get((session.phase, kind))
            if session.phase != expected or step is None:
                log_event(f"ILLEGAL_TRANSITION sid={call_id} phase={session.phase.value} callback={expected.value} event={kind.value}")
                raise IllegalTransition(call_id, session.phase.value, f"{expected.value}:{kind.value}")
            try:
                return step(session, signal)
            except GenerationError as e:
                log_event(f"GENERATION_FAIL sid={call_id} phase={session.phase.value} | {e}")
                self._finish(session, "abrupt")
                return [Speak(APOLOGY), Hangup()]

    # Transitions

    def _greet(self, session: CallSession, signal: InboundSignal) -> list[Directive]:
        greeting = GREETING.format(role=session.job_role)
        log_event(f"AI_TURN sid={session.call_id} text={greeting}")
        return self._prompt(greeting, session.phase, session.call_id, INTRO_MAX_LENGTH)

    def _after_introduction(self, session: CallSession, signal: InboundSignal) -> list[Directive]:
        self._record_user_turn(session, signal)
        question = self._ask(session, FIRST_QUESTION, QUESTION_TEMPERATURE)
        session.advance(Phase.QUESTION1)
        return self._prompt(question, session.phase, session.call_id, ANSWER_MAX_LENGTH)

    def _after_first_answer(self, session: CallSession, signal: InboundSignal) -> list[Directive]:
        self._record_user_turn(session, signal)
        question = self._ask(session, SECOND_QUESTION, QUESTION_TEMPERATURE)
        session.advance(Phase.QUESTION2)
        return self._prompt(question, session.phase, session.call_id, ANSWER_MAX_LENGTH)

    def _after_second_answer(self, session: CallSession, signal: InboundSignal) -> list[Directive]:
        self._record_user_turn(session, signal)
        session.append("assistant", QNA_INVITATION)
        log_event(f"AI_TURN sid={session.call_id} text={QNA_INVITATION}")
        session.advance(Phase.QNA)
        return self._prompt(QNA_INVITATION, session.phase, session.call_id, QNA_MAX_LENGTH)

    def _answer_candidate_question(self, session: CallSession, signal: InboundSignal) -> list[Directive]:
        question = self._transcribe(session, signal)
        if not question:
            return [Speak(NOT_CAUGHT)] + self._prompt(QNA_FOLLOW_UP, session.phase, session.call_id, QNA_MAX_LENGTH)
        log_event(f"USER_TURN sid={session.call_id} phase={session.phase.value} text={question[:1200]}")
        answer = self.generator.generate(
            ANSWER_QUESTION.format(question=question),
            session.job_role,
            session.job_description,
            list(session.history),
            temperature=QNA_TEMPERATURE,
        )
        session.append("user", question)
        session.append("assistant", answer)
        log_event(f"AI_TURN sid={session.call_id} text={answer[:1200]}")
        return [Speak(answer), Tone()] + self._prompt(QNA_FOLLOW_UP, session.phase, session.call_id, QNA_MAX_LENGTH)

    def _close(self, session: CallSession, signal: InboundSignal) -> list[Directive]:
        log_event(f"QNA_DONE sid={session.call_id} event={signal.kind.value}")
        self._finish(session, "complete")
        return [Speak(CLOSING), Hangup()]

    # Helpers

    def _prompt(self, text: str, phase: Phase, call_id: str, max_length: int) -> list[Directive]:
        return [
            Speak(text),
            Tone(),
            Record(
                action=callback_path(phase, call_id),
                max_length=max_length,
                finish_on_key=END_KEY,
                timeout=SILENCE_TIMEOUT,
            ),
        ]

    def _ask(self, session: CallSession, instruction: str, temperature: float) -> str:
        text = self.generator.generate(
            instruction,
            session.job_role,
            session.job_description,
            list(session.history),
            temperature=temperature,
        )
        session.append("assistant", text)
        log_event(f"AI_TURN sid={session.call_id} text={text[:1200]}")
        return text

    def _record_user_turn(self, session: CallSession, signal: InboundSignal) -> None:
        text = self._transcribe(session, signal)
        if text:
            session.append("user", text)
            log_event(f"USER_TURN sid={session.call_id} phase={session.phase.value} text={text[:1200]}")

    def _transcribe(self, session: CallSession, signal: InboundSignal) -> str:
        call_id = session.call_id
        if not signal.has_recording:
            log_event(f"NO_RECORDING sid={call_id} phase={session.phase.value}")
            return ""
        session.recording_refs[session.phase.value] = signal.recording_url
        try:
            with self.audio.prepare(signal.recording_url, call_id) as path:
                return self.transcriber.transcribe(path, call_id)
        except RecordingFetchError as e:
            log_event(f"RECORDING_UNAVAILABLE sid={call_id} phase={session.phase.value} | {e}")
        except Exception as e:
            log_event(f"TRANSCRIBE_FAIL sid={call_id} phase={session.phase.value} | {e}")
        return ""

    def _finish(self, session: CallSession, completion_status: str) -> None:
        session.advance(Phase.ENDED)
        self.store.delete(session.call_id)
        log_event(f"SESSION_ENDED sid={session.call_id} status={completion_status} turns={len(session.history)}")
        self._notify(session, completion_status)

    def _abandoned_status(self, session: CallSession) -> str:
        if session.phase == Phase.QNA:
            return "complete"
        if any(e.role == "user" for e in session.history):
            return "partial"
        return "abrupt"

    def _evicted(self, session: CallSession) -> None:
        log_event(f"SESSION_EVICTED sid={session.call_id} phase={session.phase.value}")
        self._notify(session, self._abandoned_status(session))

    def _notify(self, session: CallSession, completion_status: str) -> None:
        if not self.on_complete:
            return
        try:
            self.on_complete(session.snapshot(), completion_status)
        except Exception as e:
            log_event(f"COMPLETION_HOOK_FAIL sid={session.call_id} | {e}")
