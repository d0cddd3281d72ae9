import asyncio

import pytest

from school_cbt.errors import ExamNotFound, SubmissionFailed, Unauthorized
from school_cbt.models.session_state import SubmissionStatus, SubmitReason
from school_cbt.services.collaborators import Candidate, StaticIdentityProvider
from conftest import ScriptedSubmissionService


async def _tick_seconds(session, clock, seconds):
    for _ in range(seconds):
        clock.advance(1)
        await session.tick()


# ── 시작 ─────────────────────────────────────────────────────────────────────

def test_start_initializes_attempt(make_session):
    session = make_session()
    state = session.start("pi-quiz", "STU-001")

    assert state.exam_id == "pi-quiz"
    assert state.candidate_id == "STU-001"
    assert state.answers == {}
    assert state.current_question_index == 0
    assert state.remaining_seconds == 60
    assert state.submission_status == SubmissionStatus.IN_PROGRESS
    assert session.audit.entries("exam_started")[0]["attempt_id"] == state.attempt_id


def test_start_unauthenticated(make_session):
    session = make_session(identity=StaticIdentityProvider(None))
    with pytest.raises(Unauthorized):
        session.start("pi-quiz", "STU-001")
    assert session.state is None


@pytest.mark.parametrize("candidate", [
    Candidate(candidate_id="STU-001", role="staff"),
    Candidate(candidate_id="STU-999", role="student"),
])
def test_start_rejects_wrong_role_or_candidate(make_session, candidate):
    session = make_session(identity=StaticIdentityProvider(candidate))
    with pytest.raises(Unauthorized):
        session.start("pi-quiz", "STU-001")


def test_start_unknown_exam(make_session):
    session = make_session()
    with pytest.raises(ExamNotFound) as exc_info:
        session.start("no-such-exam", "STU-001")
    assert exc_info.value.exam_id == "no-such-exam"
    assert session.state is None


def test_start_twice_is_rejected(make_session):
    session = make_session()
    session.start("pi-quiz", "STU-001")
    with pytest.raises(RuntimeError):
        session.start("pi-quiz", "STU-001")


# ── 답안 ─────────────────────────────────────────────────────────────────────

def test_record_answer_last_write_wins(make_session):
    session = make_session()
    session.start("mixed", "STU-001")

    for text in ("3.41", "3.04", "3.14"):
        session.record_answer("q1", text)
    session.record_answer("q3", "")

    assert session.state.answers == {"q1": "3.14", "q3": ""}
    attempt_id = session.state.attempt_id
    assert len(session.audit.entries("answer_recorded", attempt_id)) == 2
    assert len(session.audit.entries("answer_changed", attempt_id)) == 2
    assert all("answer" not in e for e in session.audit.entries(attempt_id=attempt_id))


def test_record_answer_ignores_unknown_question(make_session):
    session = make_session()
    session.start("pi-quiz", "STU-001")
    session.record_answer("q99", "whatever")
    assert session.state.answers == {}


def test_record_answer_before_start_is_noop(make_session):
    session = make_session()
    session.record_answer("q1", "3.14")
    assert session.state is None


# ── 이동 ─────────────────────────────────────────────────────────────────────

def test_navigation_clamps_at_boundaries(make_session):
    session = make_session()
    session.start("mixed", "STU-001")
    session.record_answer("q1", "3.14")

    assert session.previous() == 0
    assert session.next() == 1
    assert session.next() == 2
    assert session.next() == 2
    assert session.go_to(99) == 2
    assert session.go_to(-3) == 0
    assert session.current_question.id == "q1"
    assert session.state.answers == {"q1": "3.14"}
    assert session.state.remaining_seconds == 600


def test_next_on_last_question_keeps_index(make_session):
    session = make_session()
    session.start("pi-quiz", "STU-001")
    assert session.next() == 0
    assert session.state.current_question_index == 0


# ── 타이머 ───────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("ticks", [1, 30, 59])
async def test_ticks_count_down_remaining_time(make_session, clock, ticks):
    session = make_session()
    session.start("pi-quiz", "STU-001")
    await _tick_seconds(session, clock, ticks)
    assert session.state.remaining_seconds == max(0, 60 - ticks)
    assert session.state.submission_status == SubmissionStatus.IN_PROGRESS


async def test_remaining_time_follows_clock_not_tick_count(make_session, clock):
    session = make_session()
    session.start("pi-quiz", "STU-001")

    clock.advance(10.7)
    await session.tick()
    assert session.state.remaining_seconds == 50

    # 같은 초 안의 추가 틱은 시간을 더 줄이지 않는다
    await session.tick()
    await session.tick()
    assert session.state.remaining_seconds == 50


async def test_remaining_time_never_increases(make_session, clock):
    session = make_session()
    session.start("pi-quiz", "STU-001")
    clock.advance(20)
    await session.tick()
    clock.advance(-15)
    await session.tick()
    assert session.state.remaining_seconds == 40


async def test_delayed_tick_triggers_timeout(make_session, clock, submissions):
    session = make_session()
    session.start("pi-quiz", "STU-001")
    clock.advance(600)
    await session.tick()
    assert session.state.remaining_seconds == 0
    assert session.state.submission_status == SubmissionStatus.SUBMITTED
    assert len(submissions.calls) == 1


# ── 제출 시나리오 ────────────────────────────────────────────────────────────

async def test_manual_submit_with_correct_answer(make_session, submissions, clock):
    session = make_session()
    session.start("pi-quiz", "STU-001")
    session.record_answer("q1", "3.14")
    clock.advance(12)

    result = await session.submit()

    assert result.provisional_score == 5
    assert result.total_marks == 5
    assert result.reason == SubmitReason.MANUAL
    assert result.elapsed_seconds == 12
    assert session.state.submission_status == SubmissionStatus.SUBMITTED
    assert session.result is result
    assert len(submissions.calls) == 1
    call = submissions.calls[0]
    assert call["reason"] == SubmitReason.MANUAL
    assert call["answers"] == {"q1": "3.14"}
    assert call["attempt_id"] == session.state.attempt_id


async def test_timeout_submits_exactly_once(make_session, submissions, clock):
    session = make_session()
    session.start("pi-quiz", "STU-001")
    session.record_answer("q1", "3.41")

    await _tick_seconds(session, clock, 60)
    await _tick_seconds(session, clock, 5)

    assert len(submissions.calls) == 1
    assert submissions.calls[0]["reason"] == SubmitReason.TIMEOUT
    assert session.result.provisional_score == 0
    assert session.result.total_marks == 5
    assert session.result.reason == SubmitReason.TIMEOUT
    assert session.state.submission_status == SubmissionStatus.SUBMITTED


async def test_theory_question_never_scores(make_session):
    session = make_session()
    session.start("mixed", "STU-001")
    session.record_answer("q1", "3.14")
    session.record_answer("q3", "a^2 + b^2 = c^2")

    result = await session.submit()

    assert result.provisional_score == 5
    assert result.objective_marks == 10
    assert result.total_marks == 20
    assert result.answered_count == 2


async def test_retry_after_single_failure(make_session, sleeper):
    service = ScriptedSubmissionService(fail_times=1)
    session = make_session(service=service, backoff_base=0.5)
    session.start("pi-quiz", "STU-001")
    session.record_answer("q1", "3.14")

    result = await session.submit()

    assert session.state.submission_status == SubmissionStatus.SUBMITTED
    assert result.provisional_score == 5
    assert len(service.calls) == 2
    assert len(service.results) == 1
    assert sleeper.waits == [0.5]


async def test_answers_ignored_after_submission(make_session):
    session = make_session()
    session.start("mixed", "STU-001")
    session.record_answer("q1", "3.14")
    await session.submit()

    session.record_answer("q1", "3.41")
    session.record_answer("q2", "x = 5")
    index = session.next()

    assert session.state.answers == {"q1": "3.14"}
    assert index == 0
    assert session.state.submission_status == SubmissionStatus.SUBMITTED


async def test_submit_after_submitted_returns_stored_result(make_session, submissions):
    session = make_session()
    session.start("pi-quiz", "STU-001")
    first = await session.submit()
    second = await session.submit()
    assert second is first
    assert len(submissions.calls) == 1


async def test_submit_before_start_is_noop(make_session, submissions):
    session = make_session()
    assert await session.submit() is None
    assert submissions.calls == []


# ── 동시성 ───────────────────────────────────────────────────────────────────

class SlowSubmissionService(ScriptedSubmissionService):
    async def submit(self, *args):
        await asyncio.sleep(0)
        return await super().submit(*args)


async def test_concurrent_submits_call_service_once(make_session):
    service = SlowSubmissionService()
    session = make_session(service=service)
    session.start("pi-quiz", "STU-001")

    first, second = await asyncio.gather(session.submit(), session.submit())

    assert len(service.calls) == 1
    assert first is not None
    assert second is None
    assert session.state.submission_status == SubmissionStatus.SUBMITTED


async def test_manual_submit_and_timeout_in_same_turn(make_session, clock):
    service = SlowSubmissionService()
    session = make_session(service=service)
    session.start("pi-quiz", "STU-001")
    clock.advance(60)

    await asyncio.gather(session.submit(), session.tick())

    assert len(service.calls) == 1
    assert service.calls[0]["reason"] == SubmitReason.MANUAL


async def test_tick_during_submission_is_noop(make_session, clock):
    service = SlowSubmissionService()
    session = make_session(service=service)
    session.start("pi-quiz", "STU-001")

    pending = asyncio.ensure_future(session.submit())
    await asyncio.sleep(0)
    assert session.state.submission_status == SubmissionStatus.SUBMITTING
    clock.advance(60)
    await session.tick()
    await pending

    assert len(service.calls) == 1


# ── 실패 복구 ────────────────────────────────────────────────────────────────

async def test_failed_manual_submit_reverts_and_keeps_answers(make_session, notifier):
    service = ScriptedSubmissionService(fail_times=2)
    session = make_session(service=service)
    session.start("mixed", "STU-001")
    session.record_answer("q1", "3.14")

    with pytest.raises(SubmissionFailed) as exc_info:
        await session.submit()

    assert not exc_info.value.terminal
    assert isinstance(exc_info.value.cause, ConnectionError)
    assert session.state.submission_status == SubmissionStatus.IN_PROGRESS
    assert session.state.answers == {"q1": "3.14"}
    assert session.state.last_error
    assert notifier.pending("STU-001")[-1].level == "error"

    result = await session.submit()
    assert result.provisional_score == 5
    assert len(service.calls) == 3
    assert len(service.results) == 1
    assert session.state.last_error is None


async def test_failed_timeout_is_forced_once_more(make_session, clock):
    service = ScriptedSubmissionService(fail_times=2)
    session = make_session(service=service)
    session.start("pi-quiz", "STU-001")

    await _tick_seconds(session, clock, 60)
    assert session.state.submission_status == SubmissionStatus.IN_PROGRESS
    assert session.state.timeout_attempts == 1

    # 시간 종료 후에는 답안을 받지 않는다
    session.record_answer("q1", "3.14")
    assert session.state.answers == {}

    await _tick_seconds(session, clock, 1)
    assert session.state.submission_status == SubmissionStatus.SUBMITTED
    assert session.result.reason == SubmitReason.TIMEOUT
    assert len(service.results) == 1


async def test_timeout_failures_become_terminal(make_session, clock, notifier):
    service = ScriptedSubmissionService(fail_times=100)
    session = make_session(service=service)
    session.start("pi-quiz", "STU-001")

    await _tick_seconds(session, clock, 60)
    await _tick_seconds(session, clock, 1)

    assert session.state.submission_status == SubmissionStatus.FAILED
    assert session.state.timeout_attempts == 2
    assert len(service.calls) == 4

    await _tick_seconds(session, clock, 3)
    assert await session.submit() is None
    assert len(service.calls) == 4
    assert session.audit.entries("submission_terminal_failure")
    assert notifier.pending("STU-001")[-1].title == "Submission failed"


# ── 카운트다운 루프 / 스냅샷 ─────────────────────────────────────────────────

async def test_run_countdown_ends_with_timeout_submission(make_session, sleeper):
    session = make_session()
    session.start("pi-quiz", "STU-001")

    await session.run_countdown(interval=1.0)

    assert session.state.submission_status == SubmissionStatus.SUBMITTED
    assert session.result.reason == SubmitReason.TIMEOUT
    assert sleeper.waits == [1.0] * 60


def test_snapshot_is_candidate_safe(make_session):
    session = make_session()
    assert session.snapshot() == {}
    session.start("mixed", "STU-001")
    session.record_answer("q2", "x = 5")

    snap = session.snapshot()
    assert snap["time_display"] == "10:00"
    assert snap["time_warning"] is False
    assert snap["answered_count"] == 1
    assert snap["answered_ids"] == ["q2"]
    assert snap["submission_status"] == "in_progress"
    assert "3.14" not in str(snap)
