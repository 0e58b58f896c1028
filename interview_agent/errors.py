"""Domain errors raised by the interview pipeline."""

from __future__ import annotations


class InterviewError(Exception):
    """Base class for interview pipeline failures."""


class SessionNotFound(InterviewError):
    def __init__(self, call_id: str):
        super().__init__(f"Call not found: {call_id}")
        self.call_id = call_id


class IllegalTransition(InterviewError):
    """A callback arrived for a phase the session is not in."""

    def __init__(self, call_id: str, phase: str, event: str):
        super().__init__(f"Call {call_id} cannot handle '{event}' in phase '{phase}'")
        self.call_id = call_id
        self.phase = phase
        self.event = event


class RecordingFetchError(InterviewError):
    """The recording could not be downloaded within the retry budget."""


class GenerationError(InterviewError):
    """The chat-completion provider failed or returned nothing usable."""
