import pytest

from interview_agent.directives import Hangup, Record, Speak, Tone
from interview_agent.errors import IllegalTransition, SessionNotFound
from interview_agent.orchestrator import (
    APOLOGY,
    CLOSING,
    QNA_INVITATION,
    InboundSignal,
    callback_path,
)
from interview_agent.store import PHASE_ORDER, Phase

CALL = "CA0001"


def rec(name):
    return InboundSignal(recording_url=f"https://api.twilio.com/Recordings/{name}", recording_duration=7)


def start(orchestrator):
    orchestrator.start_session(CALL, "Backend Engineer", "Build APIs in Python.", "+15550100")
    return orchestrator.answer(CALL)


def run_to_qna(orchestrator):
    start(orchestrator)
    orchestrator.handle(CALL, "introduction", rec("intro"))
    orchestrator.handle(CALL, "question1", rec("answer1"))
    orchestrator.handle(CALL, "question2", rec("answer2"))
    return orchestrator.store.get(CALL)


def test_answer_greets_and_records_introduction(orchestrator):
    directives = start(orchestrator)
    assert isinstance(directives[0], Speak)
    assert "Backend Engineer" in directives[0].text
    assert isinstance(directives[1], Tone)
    assert directives[2] == Record(action=callback_path(Phase.INTRODUCTION, CALL), max_length=60, finish_on_key="#", timeout=5)
    assert orchestrator.store.get(CALL).phase == Phase.INTRODUCTION
    assert orchestrator.store.get(CALL).history == []


def test_answer_creates_session_from_callback_metadata(orchestrator):
    orchestrator.answer("CA-new", "Data Engineer", "Spark pipelines")
    session = orchestrator.store.get("CA-new")
    assert session.job_role == "Data Engineer"
    assert session.phase == Phase.INTRODUCTION


def test_answer_without_session_or_role_is_not_found(orchestrator):
    with pytest.raises(SessionNotFound):
        orchestrator.answer("CA-unknown")
    assert len(orchestrator.store) == 0


def test_introduction_recording_moves_to_first_question(orchestrator, fakes):
    start(orchestrator)
    directives = orchestrator.handle(CALL, "introduction", rec("intro"))

    session = orchestrator.store.get(CALL)
    assert session.phase == Phase.QUESTION1
    assert [e.role for e in session.history] == ["user", "assistant"]
    assert session.history[0].content == "transcript of intro"
    assert session.recording_refs["introduction"].endswith("/intro")
    assert directives[0] == Speak("AI reply 1")
    assert directives[2].action == callback_path(Phase.QUESTION1, CALL)
    assert directives[2].max_length == 120
    assert fakes.generator.requests[0]["instruction"] == "Ask the first technical question."


def test_history_is_replayed_into_each_generation(orchestrator, fakes):
    start(orchestrator)
    orchestrator.handle(CALL, "introduction", rec("intro"))
    orchestrator.handle(CALL, "question1", rec("answer1"))
    second = fakes.generator.requests[1]["history"]
    assert [e.content for e in second] == ["transcript of intro", "AI reply 1", "transcript of answer1"]


def test_second_answer_invites_questions(orchestrator):
    session = run_to_qna(orchestrator)
    assert session.phase == Phase.QNA
    assert len(session.history) == 6
    assert session.history[-1].content == QNA_INVITATION


def test_transcription_failure_skips_user_turn_but_continues(orchestrator):
    start(orchestrator)
    directives = orchestrator.handle(CALL, "introduction", rec("garbled"))
    session = orchestrator.store.get(CALL)
    assert session.phase == Phase.QUESTION1
    assert [e.role for e in session.history] == ["assistant"]
    assert isinstance(directives[-1], Record)


def test_missing_recording_is_treated_as_no_input(orchestrator):
    start(orchestrator)
    orchestrator.handle(CALL, "introduction", rec("missing"))
    orchestrator.handle(CALL, "question1", InboundSignal())
    session = orchestrator.store.get(CALL)
    assert session.phase == Phase.QUESTION2
    assert [e.role for e in session.history] == ["assistant", "assistant"]


def test_zero_length_recording_counts_as_silence(orchestrator, fakes):
    run_to_qna(orchestrator)
    directives = orchestrator.handle(
        CALL, "qna", InboundSignal(recording_url="https://api.twilio.com/Recordings/empty", recording_duration=0)
    )
    assert directives[-1] == Hangup()
    assert CALL not in orchestrator.store


def test_qna_recording_appends_question_and_answer(orchestrator, fakes):
    session = run_to_qna(orchestrator)
    before = list(session.history)

    directives = orchestrator.handle(CALL, "qna", rec("question"))

    assert session.phase == Phase.QNA
    assert len(session.history) == len(before) + 2
    assert session.history[: len(before)] == before
    assert session.history[-2].role == "user"
    assert session.history[-1].role == "assistant"
    assert fakes.generator.requests[-1]["temperature"] == 0.8
    assert "transcript of question" in fakes.generator.requests[-1]["instruction"]
    assert isinstance(directives[-1], Record)
    assert directives[-1].action == callback_path(Phase.QNA, CALL)


def test_qna_self_loops_until_end_signal(orchestrator, fakes):
    run_to_qna(orchestrator)
    for i in range(3):
        orchestrator.handle(CALL, "qna", rec(f"question{i}"))
    assert len(orchestrator.store.get(CALL).history) == 12

    directives = orchestrator.handle(CALL, "qna", InboundSignal(digits="#"))

    assert directives == [Speak(CLOSING), Hangup()]
    assert orchestrator.store.get(CALL) is None
    snapshot, status = fakes.completed[-1]
    assert status == "complete"
    assert snapshot["phase"] == "ended"
    assert len(snapshot["history"]) == 12


def test_end_key_wins_over_recording_in_qna(orchestrator):
    run_to_qna(orchestrator)
    signal = InboundSignal(recording_url="https://api.twilio.com/Recordings/q", digits="#", recording_duration=3)
    directives = orchestrator.handle(CALL, "qna", signal)
    assert directives[-1] == Hangup()


def test_untranscribable_question_reprompts_without_history(orchestrator, fakes):
    session = run_to_qna(orchestrator)
    calls_before = len(fakes.generator.requests)
    directives = orchestrator.handle(CALL, "qna", rec("garbled"))
    assert len(session.history) == 6
    assert len(fakes.generator.requests) == calls_before
    assert isinstance(directives[-1], Record)


def test_generation_failure_hangs_up_and_destroys_session(orchestrator, fakes):
    start(orchestrator)
    fakes.generator.fail = True
    directives = orchestrator.handle(CALL, "introduction", rec("intro"))
    assert directives == [Speak(APOLOGY), Hangup()]
    assert orchestrator.store.get(CALL) is None
    assert fakes.completed[-1][1] == "abrupt"


def test_answer_generation_failure_in_qna_hangs_up(orchestrator, fakes):
    session = run_to_qna(orchestrator)
    fakes.generator.fail = True
    directives = orchestrator.handle(CALL, "qna", rec("question"))
    assert directives == [Speak(APOLOGY), Hangup()]
    assert orchestrator.store.get(CALL) is None
    snapshot, status = fakes.completed[-1]
    assert status == "abrupt"
    assert len(snapshot["history"]) == 6
    assert len(session.history) == 6


def test_unknown_call_is_not_found_and_mutates_nothing(orchestrator, store):
    start(orchestrator)
    before = store.get(CALL).snapshot()
    with pytest.raises(SessionNotFound):
        orchestrator.handle("CA-other", "introduction", rec("intro"))
    assert store.get(CALL).snapshot() == before
    assert len(store) == 1


def test_stale_phase_callback_is_illegal(orchestrator):
    session = run_to_qna(orchestrator)
    before = list(session.history)
    with pytest.raises(IllegalTransition):
        orchestrator.handle(CALL, "question2", rec("late duplicate"))
    assert session.phase == Phase.QNA
    assert session.history == before


def test_answered_twice_after_introduction_is_illegal(orchestrator):
    start(orchestrator)
    orchestrator.handle(CALL, "introduction", rec("intro"))
    with pytest.raises(IllegalTransition):
        orchestrator.answer(CALL)


def test_phase_only_moves_forward(orchestrator):
    start(orchestrator)
    seen = [orchestrator.store.get(CALL).phase]
    for phase, name in [("introduction", "i"), ("question1", "a1"), ("question2", "a2"), ("qna", "q"), ("qna", "q2")]:
        orchestrator.handle(CALL, phase, rec(name))
        seen.append(orchestrator.store.get(CALL).phase)
    indexes = [PHASE_ORDER.index(p) for p in seen]
    assert indexes == sorted(indexes)


def test_terminal_call_status_closes_open_session(orchestrator, fakes):
    start(orchestrator)
    orchestrator.handle(CALL, "introduction", rec("intro"))
    assert orchestrator.call_status_changed(CALL, "completed") is True
    assert orchestrator.store.get(CALL) is None
    assert fakes.completed[-1][1] == "partial"


def test_non_terminal_call_status_is_ignored(orchestrator):
    start(orchestrator)
    assert orchestrator.call_status_changed(CALL, "ringing") is False
    assert orchestrator.call_status_changed("CA-unknown", "completed") is False
    assert CALL in orchestrator.store


def test_evicted_sessions_are_reported(store, orchestrator, fakes):
    start(orchestrator)
    store.ttl_seconds = 0
    store.clock = lambda: float("inf")
    evicted = store.sweep()
    assert [s.call_id for s in evicted] == [CALL]
    assert fakes.completed[-1][1] == "abrupt"
