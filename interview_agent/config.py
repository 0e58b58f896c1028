"""Settings for the phone interview service, read once from the process environment.

Twilio and OpenAI credentials have no defaults; `missing_required()` names the gaps.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, "") or default)
    except ValueError:
        return default


def _normalize_base_url(url: str) -> str:
    u = (url or "").strip().rstrip("/")
    # Twilio needs an absolute callback URL.
    if u and not u.startswith(("http://", "https://")):
        return "https://" + u
    return u


def _split_origins(raw: str) -> tuple[str, ...]:
    return tuple(o.strip() for o in (raw or "").split(",") if o.strip())


@dataclass(frozen=True)
class InterviewConfig:
    """Typed container for interview runtime configuration."""

    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str
    public_base_url: str
    openai_api_key: str
    openai_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"
    twilio_voice: str = "Polly.Matthew"
    recording_fetch_retries: int = 3
    recording_fetch_delay_seconds: float = 2.0
    session_ttl_seconds: int = 3600
    session_sweep_interval_seconds: int = 60
    allowed_origins: tuple[str, ...] = field(default_factory=tuple)
    call_api_key: str = ""
    validate_twilio_signature: bool = False
    database_url: str = ""
    log_dir: Path = BASE_DIR / "logs"
    recordings_dir: Path = BASE_DIR / "call_recordings"

    @classmethod
    def from_env(cls) -> "InterviewConfig":
        return cls(
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", "").strip(),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", "").strip(),
            twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER", "").strip(),
            public_base_url=_normalize_base_url(os.getenv("PUBLIC_BASE_URL", "")),
            openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini",
            transcription_model=os.getenv("TRANSCRIPTION_MODEL", "whisper-1").strip() or "whisper-1",
            twilio_voice=os.getenv("TWILIO_VOICE", "Polly.Matthew").strip() or "Polly.Matthew",
            recording_fetch_retries=max(1, _env_int("RECORDING_FETCH_RETRIES", 3)),
            recording_fetch_delay_seconds=max(0.0, _env_float("RECORDING_FETCH_DELAY_SECONDS", 2.0)),
            session_ttl_seconds=max(1, _env_int("SESSION_TTL_SECONDS", 3600)),
            session_sweep_interval_seconds=max(1, _env_int("SESSION_SWEEP_INTERVAL_SECONDS", 60)),
            allowed_origins=_split_origins(os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")),
            call_api_key=os.getenv("CALL_API_KEY", "").strip(),
            validate_twilio_signature=_env_bool("VALIDATE_TWILIO_SIGNATURE"),
            database_url=os.getenv("DATABASE_URL", "").strip(),
            log_dir=Path(os.getenv("LOG_DIR", "") or BASE_DIR / "logs"),
            recordings_dir=Path(os.getenv("RECORDINGS_DIR", "") or BASE_DIR / "call_recordings"),
        )

    def missing_required(self) -> list[str]:
        missing = []
        if not self.twilio_account_sid:
            missing.append("TWILIO_ACCOUNT_SID")
        if not self.twilio_auth_token:
            missing.append("TWILIO_AUTH_TOKEN")
        if not self.twilio_phone_number:
            missing.append("TWILIO_PHONE_NUMBER")
        if not self.public_base_url:
            missing.append("PUBLIC_BASE_URL")
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        return missing

    def is_ready(self) -> bool:
        return not self.missing_required()
