import hmac
import os
import threading
from urllib.parse import urlencode

from dotenv import load_dotenv
from fastapi import FastAPI, Form, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from twilio.request_validator import RequestValidator
from twilio.rest import Client

load_dotenv(override=True)

from interview_agent.config import InterviewConfig  # noqa: E402
from interview_agent.directives import render_twiml  # noqa: E402
from interview_agent.errors import IllegalTransition, SessionNotFound  # noqa: E402
from interview_agent.events import configure_log_dir, log_event  # noqa: E402
from interview_agent.health import check_provider_health  # noqa: E402
from interview_agent.orchestrator import InboundSignal, InterviewOrchestrator  # noqa: E402
from interview_agent.results import finalize_interview, init_db  # noqa: E402
from interview_agent.store import Phase, SessionStore  # noqa: E402

CONFIG = InterviewConfig.from_env()
configure_log_dir(CONFIG.log_dir)

RECORDING_PHASES = {Phase.INTRODUCTION.value, Phase.QUESTION1.value, Phase.QUESTION2.value, Phase.QNA.value}
# Keeps the answer webhook URL comfortably inside Twilio's URL length limit.
URL_JOB_DESCRIPTION_CHARS = 1000

app = FastAPI(title="Twilio Phone Screening Interviewer")
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(CONFIG.allowed_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "x-api-key"],
)

STORE = SessionStore(ttl_seconds=CONFIG.session_ttl_seconds)
_ORCHESTRATOR: InterviewOrchestrator | None = None
_ORCHESTRATOR_LOCK = threading.Lock()


def _on_interview_complete(snapshot: dict, completion_status: str):
    orch = get_orchestrator()
    threading.Thread(
        target=finalize_interview,
        args=(orch.generator, CONFIG.database_url, snapshot, completion_status),
        name=f"finalize-{snapshot.get('call_id', '')}",
        daemon=True,
    ).start()


def get_orchestrator() -> InterviewOrchestrator:
    global _ORCHESTRATOR
    with _ORCHESTRATOR_LOCK:
        if _ORCHESTRATOR is None:
            _ORCHESTRATOR = InterviewOrchestrator.from_config(CONFIG, store=STORE, on_complete=_on_interview_complete)
        return _ORCHESTRATOR


def set_orchestrator(orch: InterviewOrchestrator | None):
    global _ORCHESTRATOR
    with _ORCHESTRATOR_LOCK:
        _ORCHESTRATOR = orch


@app.on_event("startup")
def on_startup():
    ok = init_db(CONFIG.database_url) if CONFIG.database_url else False
    log_event(f"DB_INIT {'OK' if ok else 'SKIPPED_OR_FAILED'}")
    STORE.start_sweeper(CONFIG.session_sweep_interval_seconds)
    missing = CONFIG.missing_required()
    if missing:
        log_event(f"CONFIG_MISSING {', '.join(missing)}")


@app.on_event("shutdown")
def on_shutdown():
    STORE.stop_sweeper()


def _validate_required():
    missing = [
        key
        for key in CONFIG.missing_required()
        if key in {"TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER", "PUBLIC_BASE_URL"}
    ]
    if missing:
        raise HTTPException(status_code=500, detail=f"Missing env vars: {', '.join(missing)}")


def verify_call_api_key(x_api_key: str | None):
    if not CONFIG.call_api_key:
        return
    if not x_api_key:
        raise HTTPException(status_code=401, detail="Missing x-api-key")
    if not hmac.compare_digest(x_api_key, CONFIG.call_api_key):
        raise HTTPException(status_code=403, detail="Invalid x-api-key")


async def validate_twilio_request(request: Request):
    if not CONFIG.validate_twilio_signature:
        return
    signature = request.headers.get("X-Twilio-Signature", "")
    validator = RequestValidator(CONFIG.twilio_auth_token)
    form = await request.form()
    ok = validator.validate(str(request.url), dict(form), signature)
    if not ok:
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")


def _twilio_client() -> Client:
    return Client(CONFIG.twilio_account_sid, CONFIG.twilio_auth_token)


def _twiml(directives) -> Response:
    return Response(render_twiml(directives, voice=CONFIG.twilio_voice), media_type="text/xml")


def _parse_duration(raw: str) -> int | None:
    try:
        return int((raw or "").strip())
    except ValueError:
        return None


class CandidateIn(BaseModel):
    phone: str
    name: str = ""


class CallBatchRequest(BaseModel):
    job_role: str
    job_description: str = ""
    candidates: list[CandidateIn] = []


@app.post("/interview/calls")
def start_interview_calls(payload: CallBatchRequest, x_api_key: str | None = Header(default=None)):
    verify_call_api_key(x_api_key)
    candidates = payload.candidates
    if not candidates:
        raise HTTPException(status_code=400, detail="Invalid candidates data")
    if not payload.job_role.strip():
        raise HTTPException(status_code=400, detail="job_role is required")
    _validate_required()

    orch = get_orchestrator()
    client = _twilio_client()
    query = urlencode(
        {
            "job_role": payload.job_role,
            "job_description": payload.job_description[:URL_JOB_DESCRIPTION_CHARS],
        }
    )
    voice_url = f"{CONFIG.public_base_url}/twilio/voice?{query}"
    status_cb = f"{CONFIG.public_base_url}/twilio/status"

    results = []
    for candidate in candidates:
        to = candidate.phone.strip()
        if not to:
            log_event(f"CALL_START_FAIL name={candidate.name} | missing phone")
            results.append({"success": False, "phone": candidate.phone, "error": "missing phone"})
            continue
        try:
            log_event(f"CALL_START to={to} role={payload.job_role}")
            call = client.calls.create(
                to=to,
                from_=CONFIG.twilio_phone_number,
                url=voice_url,
                method="POST",
                status_callback=status_cb,
                status_callback_event=["initiated", "ringing", "answered", "completed"],
                status_callback_method="POST",
            )
            orch.start_session(call.sid, payload.job_role, payload.job_description, candidate_phone=to)
            results.append({"success": True, "call_sid": call.sid, "phone": to})
        except Exception as e:
            log_event(f"CALL_START_FAIL to={to} | {e}")
            results.append({"success": False, "phone": to, "error": str(e)})
    return {"results": results}


@app.get("/interview/sessions/{call_sid}")
def interview_session(call_sid: str, x_api_key: str | None = Header(default=None)):
    verify_call_api_key(x_api_key)
    session = get_orchestrator().store.get(call_sid)
    if not session:
        raise HTTPException(status_code=404, detail="session not found")
    return session.snapshot()


@app.api_route("/twilio/voice", methods=["GET", "POST"])
async def twilio_voice(request: Request):
    await validate_twilio_request(request)
    form = await request.form() if request.method == "POST" else {}
    call_sid = (request.query_params.get("call_sid") or form.get("CallSid") or "").strip()
    if not call_sid:
        raise HTTPException(status_code=400, detail="Missing CallSid")
    job_role = (request.query_params.get("job_role") or "").strip()
    job_description = (request.query_params.get("job_description") or "").strip()
    try:
        directives = await run_in_threadpool(get_orchestrator().answer, call_sid, job_role, job_description)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Call not found")
    except IllegalTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _twiml(directives)


@app.post("/twilio/status")
async def twilio_status(request: Request, CallSid: str = Form(default=""), CallStatus: str = Form(default="")):
    await validate_twilio_request(request)
    call_sid = (CallSid or "").strip()
    call_status = (CallStatus or "").strip().lower()
    log_event(f"CALL_STATUS sid={call_sid} status={call_status}")
    ended = False
    if call_sid:
        ended = await run_in_threadpool(get_orchestrator().call_status_changed, call_sid, call_status)
    return {"ok": True, "session_closed": ended}


@app.post("/twilio/{phase}")
async def twilio_recording(
    phase: str,
    request: Request,
    CallSid: str = Form(default=""),
    RecordingUrl: str = Form(default=""),
    RecordingDuration: str = Form(default=""),
    Digits: str = Form(default=""),
):
    await validate_twilio_request(request)
    if phase not in RECORDING_PHASES:
        raise HTTPException(status_code=404, detail="Unknown callback")
    call_sid = (request.query_params.get("call_sid") or CallSid or "").strip()
    signal = InboundSignal(
        recording_url=(RecordingUrl or "").strip(),
        digits=(Digits or "").strip(),
        recording_duration=_parse_duration(RecordingDuration),
    )
    log_event(f"CALLBACK sid={call_sid} phase={phase} event={signal.kind.value} recording={signal.recording_url}")
    try:
        directives = await run_in_threadpool(get_orchestrator().handle, call_sid, phase, signal)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Call not found")
    except IllegalTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _twiml(directives)


@app.get("/health/providers")
def provider_health():
    return check_provider_health(CONFIG)


@app.get("/favicon.ico")
def favicon():
    return Response(status_code=204)


@app.get("/config/check")
def config_check():
    status = {k: k not in CONFIG.missing_required() for k in [
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_PHONE_NUMBER",
        "PUBLIC_BASE_URL",
        "OPENAI_API_KEY",
    ]}
    status["VALIDATE_TWILIO_SIGNATURE"] = CONFIG.validate_twilio_signature
    status["CALL_API_KEY"] = bool(CONFIG.call_api_key)
    status["DATABASE_URL"] = bool(CONFIG.database_url)
    status["ALLOWED_ORIGINS"] = list(CONFIG.allowed_origins)
    return JSONResponse(status)


@app.get("/")
def root():
    return {"status": "ok", "service": "phone-screening-interviewer", "active_sessions": len(STORE)}


def run():
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    run()
