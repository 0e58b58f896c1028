"""Phone screening interview package.

Provider clients (recording download, transcription, chat completion) are kept
in separate modules; the orchestrator composes them per call.
"""

from .config import InterviewConfig
from .health import check_provider_health
from .orchestrator import InboundSignal, InterviewOrchestrator
from .store import Phase, SessionStore

__all__ = [
    "InterviewConfig",
    "check_provider_health",
    "InboundSignal",
    "InterviewOrchestrator",
    "Phase",
    "SessionStore",
]
