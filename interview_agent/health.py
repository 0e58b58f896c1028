"""Health checks for Twilio and OpenAI readiness."""

from __future__ import annotations

import requests

from .config import InterviewConfig

TWILIO_ACCOUNT_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}.json"
OPENAI_MODELS_URL = "https://api.openai.com/v1/models"


def _probe(name: str, url: str, timeout_seconds: int, **kwargs) -> dict:
    try:
        resp = requests.get(url, timeout=timeout_seconds, **kwargs)
    except requests.RequestException as exc:  # pragma: no cover - network dependent
        return {"ok": False, "provider": name, "reason": "unreachable", "error": str(exc)}
    if resp.status_code in (401, 403):
        return {"ok": False, "provider": name, "reason": "unauthorized", "status": resp.status_code}
    reachable = resp.status_code < 500
    return {
        "ok": bool(reachable),
        "provider": name,
        "reason": "ready" if reachable else "unhealthy",
        "status": resp.status_code,
    }


def check_provider_health(cfg: InterviewConfig | None = None, timeout_seconds: int = 5) -> dict:
    """Probe the Twilio account and OpenAI model list with the configured credentials.

    Missing settings are reported before any network call is made.
    """

    cfg = cfg or InterviewConfig.from_env()
    missing = cfg.missing_required()
    if missing:
        return {"ok": False, "reason": "missing_env", "missing": missing}

    twilio = _probe(
        "twilio",
        TWILIO_ACCOUNT_URL.format(sid=cfg.twilio_account_sid),
        timeout_seconds,
        auth=(cfg.twilio_account_sid, cfg.twilio_auth_token),
    )
    openai = _probe(
        "openai",
        OPENAI_MODELS_URL,
        timeout_seconds,
        headers={"Authorization": f"Bearer {cfg.openai_api_key}"},
    )
    return {"ok": twilio["ok"] and openai["ok"], "providers": {"twilio": twilio, "openai": openai}}
