"""
api/routes.py — FastAPI 엔드포인트

요청 1건이 스케줄링 1턴: 상태를 읽기 전에 tick()으로 남은 시간을 동기화한다.
요청이 없는 동안에는 app.py의 카운트다운 루프가 같은 역할을 한다.
응시 시작은 (candidate_id, exam_id)당 1회이며, AttemptRegistry가 브라우저와 무관하게 막는다.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

import api.session as session
from school_cbt.errors import ExamNotFound, SubmissionFailed, Unauthorized
from school_cbt.models.session_state import SubmissionStatus, SubmitReason
from school_cbt.services.collaborators import Candidate
from school_cbt.services.exam_service import awarded_marks, is_passed
from school_cbt.services.exam_session import ExamSession

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class SignInBody(BaseModel):
    candidate_id: str
    role: str = "student"

class SaveAnswerBody(BaseModel):
    question_id: str
    answer: str

class NavigateBody(BaseModel):
    index: int = 0


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _sid(request: Request) -> str:
    return request.state.session_id


def _new_exam_session(request: Request) -> ExamSession:
    state = request.app.state
    kwargs = {}
    if state.sleep is not None:
        kwargs["sleep"] = state.sleep
    return ExamSession(
        catalog=state.catalog,
        submissions=state.submissions,
        identity=session.SessionIdentityProvider(_sid(request)),
        notifier=state.notifier,
        clock=state.clock,
        audit=state.audit,
        **kwargs,
    )


def _exam_session(request: Request) -> ExamSession:
    exam_session = session.get_exam_session(_sid(request))
    if exam_session is None:
        raise HTTPException(status_code=404, detail="No exam session found.")
    return exam_session


async def _synced_exam_session(request: Request) -> ExamSession:
    exam_session = _exam_session(request)
    await exam_session.tick()
    return exam_session


# ── 엔드포인트 ───────────────────────────────────────────────────────────────

@router.post("/api/sign-in")
async def sign_in(body: SignInBody, request: Request):
    candidate_id = body.candidate_id.strip()
    if not candidate_id:
        raise HTTPException(status_code=400, detail="Candidate id is required.")
    session.set_candidate(_sid(request), Candidate(candidate_id=candidate_id, role=body.role))
    logger.info(f"로그인 - candidate {candidate_id} (role {body.role})")
    return {"ok": True, "candidate_id": candidate_id, "role": body.role}


@router.post("/api/sign-out")
async def sign_out(request: Request):
    previous = session.reset(_sid(request), keep_candidate=False)
    if previous is not None and not session.is_signed_in(previous.candidate_id):
        request.app.state.notifier.discard(previous.candidate_id)
    return {"ok": True}


@router.get("/api/exams")
async def list_exams(request: Request):
    return [
        {
            "id": exam.id,
            "title": exam.title,
            "description": exam.description,
            "duration_minutes": exam.duration_minutes,
            "total_marks": exam.total_marks,
            "passing_score": exam.passing_score,
            "question_count": exam.question_count,
        }
        for exam in request.app.state.catalog.list()
    ]


@router.post("/api/exams/{exam_id}/start")
async def start_exam(exam_id: str, request: Request):
    sid = _sid(request)
    current = session.get_exam_session(sid)
    if current is not None and current.state.submission_status in (
        SubmissionStatus.IN_PROGRESS,
        SubmissionStatus.SUBMITTING,
    ):
        raise HTTPException(status_code=409, detail="An exam is already in progress.")

    candidate = session.get_candidate(sid)
    attempts = request.app.state.attempts
    if candidate is not None and attempts.blocking(candidate.candidate_id, exam_id) is not None:
        raise HTTPException(status_code=409, detail="This exam has already been started by this candidate.")

    exam_session = _new_exam_session(request)
    try:
        exam_session.start(exam_id, candidate.candidate_id if candidate else "")
    except Unauthorized as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ExamNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    # blocking() 이후 await 가 없으므로 claim 실패는 다른 스레드의 동시 시작뿐
    if not attempts.claim(exam_session):
        raise HTTPException(status_code=409, detail="This exam has already been started by this candidate.")
    session.set_exam_session(sid, exam_session)
    return {"ok": True, **exam_session.snapshot()}


@router.get("/api/exam-state")
async def get_exam_state(request: Request):
    exam_session = await _synced_exam_session(request)
    return exam_session.snapshot()


@router.get("/api/question/{index}")
async def get_question(index: int, request: Request):
    exam_session = await _synced_exam_session(request)
    exam = exam_session.exam
    if not (0 <= index < exam.question_count):
        raise HTTPException(status_code=404, detail="Question not found.")

    q = exam.questions[index]
    d = q.public_view()
    d.update({
        "saved_answer": exam_session.state.answers.get(q.id, ""),
        "index": index,
        "total": exam.question_count,
    })
    return d


@router.post("/api/save-answer")
async def save_answer(body: SaveAnswerBody, request: Request):
    exam_session = await _synced_exam_session(request)
    # 제출 이후의 입력은 오류 없이 무시된다
    exam_session.record_answer(body.question_id, body.answer)
    snap = exam_session.snapshot()
    return {
        "ok": True,
        "answered_count": snap["answered_count"],
        "submission_status": snap["submission_status"],
    }


@router.post("/api/navigate")
async def navigate(body: NavigateBody, request: Request):
    exam_session = await _synced_exam_session(request)
    return {"index": exam_session.go_to(body.index), "ok": True}


@router.post("/api/next")
async def next_question(request: Request):
    exam_session = await _synced_exam_session(request)
    return {"index": exam_session.next(), "ok": True}


@router.post("/api/previous")
async def previous_question(request: Request):
    exam_session = await _synced_exam_session(request)
    return {"index": exam_session.previous(), "ok": True}


@router.post("/api/submit-exam")
async def submit_exam(request: Request):
    exam_session = await _synced_exam_session(request)
    try:
        result = await exam_session.submit(SubmitReason.MANUAL)
    except SubmissionFailed as e:
        if e.terminal:
            raise HTTPException(status_code=410, detail="Exam time is over and submission failed.")
        raise HTTPException(
            status_code=503,
            detail="Failed to submit exam. Your answers are saved; please try again.",
        )

    if result is None:
        if exam_session.state.submission_status == SubmissionStatus.FAILED:
            raise HTTPException(status_code=410, detail="Exam time is over and submission failed.")
        raise HTTPException(status_code=409, detail="Submission already in progress.")
    return {"ok": True, **result.model_dump(mode="json")}


@router.get("/api/results")
async def get_results(request: Request):
    exam_session = await _synced_exam_session(request)
    result = exam_session.result
    if result is None:
        raise HTTPException(status_code=400, detail="The exam has not been submitted yet.")

    exam = exam_session.exam
    answers = exam_session.state.answers
    breakdown = [
        {
            "id": q.id,
            "question_type": q.question_type.value,
            "marks": q.marks,
            "answered": q.id in answers,
            "awarded": awarded_marks(q, answers),   # 서술형은 None (수동 채점 대기)
        }
        for q in exam.questions
    ]

    return {
        **result.model_dump(mode="json"),
        "title": exam.title,
        "passing_score": exam.passing_score,
        "provisionally_passed": is_passed(result.provisional_score, exam.passing_score),
        "unanswered_count": exam.question_count - result.answered_count,
        "questions": breakdown,
    }


@router.get("/api/notifications")
async def get_notifications(request: Request):
    candidate = session.get_candidate(_sid(request))
    if candidate is None:
        return []
    return [n.model_dump() for n in request.app.state.notifier.drain(candidate.candidate_id)]


@router.post("/api/reset")
async def reset_session(request: Request):
    current = session.get_exam_session(_sid(request))
    if current is not None and current.state.is_active:
        raise HTTPException(status_code=409, detail="Submit the exam in progress before resetting.")
    previous = session.reset(_sid(request))
    if previous is not None:
        request.app.state.notifier.discard(previous.candidate_id)
    return {"ok": True}
