"""Persistence of finished interviews (transcript + score)."""

from __future__ import annotations

import json

import psycopg2

from .events import log_event
from .llm_client import ConversationEntry, InterviewScore, ResponseGenerator


def _db_conn(database_url: str):
    if not database_url:
        return None
    try:
        return psycopg2.connect(database_url)
    except Exception as e:
        log_event(f"DB_CONNECT_FAIL | {e}")
        return None


def init_db(database_url: str) -> bool:
    conn = _db_conn(database_url)
    if not conn:
        return False
    try:
        with conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    create table if not exists public.interview_results (
                      call_sid text primary key,
                      job_role text not null,
                      candidate_phone text,
                      transcript_json text not null,
                      technical_score real,
                      communication_score real,
                      justification text,
                      completion_status text not null,
                      created_at timestamptz not null default now()
                    );
                    """
                )
        return True
    except Exception as e:
        log_event(f"DB_INIT_FAIL | {e}")
        return False
    finally:
        conn.close()


def record_interview_result(database_url: str, snapshot: dict, score: InterviewScore) -> bool:
    """Store the finished interview; returns False when nothing was written."""
    sid = snapshot.get("call_id", "")
    log_event(
        f"INTERVIEW_RESULT sid={sid} status={score.completion_status} "
        f"technical={score.technical_score} communication={score.communication_score} "
        f"turns={len(snapshot.get('history') or [])}"
    )
    conn = _db_conn(database_url)
    if not conn:
        return False
    try:
        with conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.interview_results (
                      call_sid, job_role, candidate_phone, transcript_json,
                      technical_score, communication_score, justification, completion_status
                    )
                    values (%s,%s,%s,%s,%s,%s,%s,%s)
                    on conflict (call_sid) do update set
                      transcript_json=excluded.transcript_json,
                      technical_score=excluded.technical_score,
                      communication_score=excluded.communication_score,
                      justification=excluded.justification,
                      completion_status=excluded.completion_status
                    """,
                    (
                        sid,
                        snapshot.get("job_role", ""),
                        snapshot.get("candidate_phone") or None,
                        json.dumps(snapshot.get("history") or []),
                        score.technical_score if score.available else None,
                        score.communication_score if score.available else None,
                        score.justification,
                        score.completion_status,
                    ),
                )
        return True
    except Exception as e:
        log_event(f"RESULT_PERSIST_FAIL sid={sid} | {e}")
        return False
    finally:
        conn.close()


def finalize_interview(generator: ResponseGenerator, database_url: str, snapshot: dict, completion_status: str) -> InterviewScore:
    """Score a finished interview and store it. Runs off the request path."""
    history = [ConversationEntry(**e) for e in snapshot.get("history") or []]
    if any(e.role == "user" for e in history):
        score = generator.generate_final_score(history, snapshot.get("job_role", ""), snapshot.get("job_description", ""))
    else:
        score = InterviewScore(
            technical_score=0,
            communication_score=0,
            justification="The candidate gave no recorded responses.",
            completion_status="abrupt" if completion_status == "complete" else completion_status,
        )
    if not score.available:
        log_event(f"SCORE_UNAVAILABLE sid={snapshot.get('call_id', '')} hint={completion_status}")
    record_interview_result(database_url, snapshot, score)
    return score
