"""
services/exam_session.py

응시자 1명의 시험 1회 응시를 시작부터 최종 제출까지 관리하는 상태 머신.

상태 전이:
  in_progress --(시간 종료 또는 수동 제출)--> submitting --(저장 성공)--> submitted
  submitting  --(저장 실패)--> in_progress
  submitting  --(강제 제출 횟수 소진)--> failed

설계 원칙:
- 남은 시간은 틱 횟수가 아니라 시작 시각 + 주입된 Clock으로 계산 (지연된 틱에도 드리프트 없음)
- in_progress → submitting 전환은 첫 await 이전에 동기적으로 수행 → 진행 중인 제출은 최대 1건
- 제출 이후 도착한 답안 입력/이동/틱은 예외 없이 무시
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from config import (
    AUDIT_LOG_DIR,
    MAX_FORCED_TIMEOUT_ATTEMPTS,
    SUBMIT_BACKOFF_BASE,
    SUBMIT_MAX_ATTEMPTS,
    TICK_INTERVAL,
)
from school_cbt.errors import ExamNotFound, SubmissionFailed, Unauthorized
from school_cbt.models.question_model import Exam, Question
from school_cbt.models.session_state import (
    AttemptState,
    SubmissionResult,
    SubmissionStatus,
    SubmitReason,
)
from school_cbt.services.audit import AuditLog
from school_cbt.services.collaborators import (
    Clock,
    ExamCatalog,
    IdentityProvider,
    InMemoryNotificationSink,
    NotificationSink,
    SubmissionService,
    SystemClock,
)
from school_cbt.services.exam_service import (
    calculate_provisional_score,
    count_answered,
    format_remaining,
    is_time_warning,
    total_possible_marks,
)

logger = logging.getLogger(__name__)

CANDIDATE_ROLE = "student"

Sleep = Callable[[float], Awaitable[Any]]


class ExamSession:

    def __init__(
        self,
        catalog: ExamCatalog,
        submissions: SubmissionService,
        identity: IdentityProvider,
        notifier: Optional[NotificationSink] = None,
        clock: Optional[Clock] = None,
        audit: Optional[AuditLog] = None,
        sleep: Sleep = asyncio.sleep,
        max_attempts: int = SUBMIT_MAX_ATTEMPTS,
        backoff_base: float = SUBMIT_BACKOFF_BASE,
        max_timeout_attempts: int = MAX_FORCED_TIMEOUT_ATTEMPTS,
    ):
        self._catalog = catalog
        self._submissions = submissions
        self._identity = identity
        self._notifier = notifier if notifier is not None else InMemoryNotificationSink()
        self._clock = clock if clock is not None else SystemClock()
        self._audit = audit if audit is not None else AuditLog(AUDIT_LOG_DIR or None)
        self._sleep = sleep
        self._max_attempts = max(1, max_attempts)
        self._backoff_base = backoff_base
        self._max_timeout_attempts = max(1, max_timeout_attempts)

        self._exam: Optional[Exam] = None
        self._state: Optional[AttemptState] = None
        self._result: Optional[SubmissionResult] = None

    # ── 조회 ─────────────────────────────────────────────────────────────────

    @property
    def exam(self) -> Optional[Exam]:
        return self._exam

    @property
    def state(self) -> Optional[AttemptState]:
        return self._state

    @property
    def result(self) -> Optional[SubmissionResult]:
        return self._result

    @property
    def audit(self) -> AuditLog:
        return self._audit

    @property
    def current_question(self) -> Optional[Question]:
        if self._exam is None or self._state is None:
            return None
        return self._exam.questions[self._state.current_question_index]

    def snapshot(self) -> Dict[str, Any]:
        """응시자 화면용 상태 요약. 정답 정보는 포함하지 않는다."""
        if self._exam is None or self._state is None:
            return {}
        state = self._state
        return {
            "exam_id": self._exam.id,
            "attempt_id": state.attempt_id,
            "title": self._exam.title,
            "description": self._exam.description,
            "current_question_index": state.current_question_index,
            "question_count": self._exam.question_count,
            "answered_count": count_answered(self._exam.questions, state.answers),
            "answered_ids": [q.id for q in self._exam.questions if q.id in state.answers],
            "remaining_seconds": state.remaining_seconds,
            "time_display": format_remaining(state.remaining_seconds),
            "time_warning": is_time_warning(state.remaining_seconds),
            "submission_status": state.submission_status.value,
            "last_error": state.last_error,
        }

    # ── 시작 ─────────────────────────────────────────────────────────────────

    def start(self, exam_id: str, candidate_id: str) -> AttemptState:
        """
        시험지를 로드하고 응시 상태를 초기화한다.

        Raises:
            Unauthorized: 미인증, 학생 권한 아님, 또는 candidate_id 불일치.
            ExamNotFound: 카탈로그에 시험이 없음.
        """
        if self._state is not None:
            raise RuntimeError("이미 시작된 세션입니다. 새 응시는 새 ExamSession으로 시작하세요.")

        candidate = self._identity.current_candidate()
        if candidate is None:
            logger.warning(f"미인증 사용자의 시험 시작 시도 - exam {exam_id}")
            raise Unauthorized("Please log in to access the exam.")
        if candidate.role != CANDIDATE_ROLE or candidate.candidate_id != candidate_id:
            logger.warning(
                f"응시 권한 없음 - 요청 candidate {candidate_id}, "
                f"로그인 사용자 {candidate.candidate_id} (role {candidate.role})"
            )
            raise Unauthorized("Only the signed-in student can take this exam.")

        exam = self._catalog.get(exam_id)
        if exam is None:
            logger.warning(f"시험을 찾을 수 없음 - exam {exam_id}")
            raise ExamNotFound(exam_id)

        self._exam = exam
        self._state = AttemptState(
            exam_id=exam.id,
            candidate_id=candidate_id,
            remaining_seconds=exam.duration_seconds,
            started_at=self._clock.now(),
            duration_seconds=exam.duration_seconds,
        )
        self._audit.record(
            "exam_started",
            attempt_id=self._state.attempt_id,
            exam_id=exam.id,
            candidate_id=candidate_id,
            duration_seconds=exam.duration_seconds,
        )
        logger.info(
            f"시험 시작 - exam {exam.id}, candidate {candidate_id}, "
            f"{exam.question_count}문항, 제한 시간 {exam.duration_seconds}초"
        )
        return self._state

    # ── 답안 / 이동 ──────────────────────────────────────────────────────────

    def record_answer(self, question_id: str, answer_text: str) -> None:
        """답안 기록. 같은 문제는 마지막 입력만 유지한다. 응시 중이 아니면 무시."""
        state = self._state
        if state is None or not state.is_active:
            logger.debug(f"응시 중이 아니므로 답안 무시 - question {question_id}")
            return
        if state.remaining_seconds == 0:
            logger.debug(f"시간 종료 후 답안 무시 - question {question_id}")
            return
        if self._exam.question(question_id) is None:
            logger.warning(f"시험에 없는 문제 id - {question_id}")
            return

        previous = state.answers.get(question_id)
        state.answers[question_id] = answer_text
        if previous is None:
            self._audit.record("answer_recorded", attempt_id=state.attempt_id, question_id=question_id)
        elif previous != answer_text:
            self._audit.record("answer_changed", attempt_id=state.attempt_id, question_id=question_id)

    def go_to(self, index: int) -> int:
        state = self._state
        if state is None or not state.is_active:
            return state.current_question_index if state else 0
        state.current_question_index = max(0, min(index, self._exam.question_count - 1))
        return state.current_question_index

    def next(self) -> int:
        state = self._state
        if state is None:
            return 0
        return self.go_to(state.current_question_index + 1)

    def previous(self) -> int:
        state = self._state
        if state is None:
            return 0
        return self.go_to(state.current_question_index - 1)

    # ── 타이머 ───────────────────────────────────────────────────────────────

    def _sync_remaining(self) -> int:
        state = self._state
        elapsed = max(0, int(self._clock.now() - state.started_at))
        remaining = max(0, state.duration_seconds - elapsed)
        # 시계가 되돌아가도 남은 시간은 늘어나지 않는다
        state.remaining_seconds = min(state.remaining_seconds, remaining)
        return state.remaining_seconds

    async def tick(self) -> None:
        """
        스케줄러가 1초마다 호출. 남은 시간을 갱신하고 0이면 강제 제출한다.
        제출 중이거나 제출 완료 후의 틱은 무시한다. 제출 실패는 알림으로만 보고된다.
        """
        state = self._state
        if state is None or not state.is_active:
            return

        remaining = self._sync_remaining()
        if remaining % 60 == 0 or remaining <= 5:
            logger.debug(f"남은 시간 {remaining}초 - attempt {state.attempt_id}")
        if remaining > 0:
            return

        try:
            await self.submit(SubmitReason.TIMEOUT)
        except SubmissionFailed as e:
            logger.error(f"시간 종료 강제 제출 실패 (terminal={e.terminal}) - attempt {state.attempt_id}: {e}")

    async def run_countdown(self, interval: float = TICK_INTERVAL) -> None:
        """제출 완료 또는 종료 실패까지 interval 간격으로 tick()을 호출하는 루프."""
        while self._state is not None and self._state.submission_status in (
            SubmissionStatus.IN_PROGRESS,
            SubmissionStatus.SUBMITTING,
        ):
            await self._sleep(interval)
            await self.tick()
        logger.info("카운트다운 종료")

    # ── 제출 ─────────────────────────────────────────────────────────────────

    async def submit(self, reason: SubmitReason = SubmitReason.MANUAL) -> Optional[SubmissionResult]:
        """
        응시 결과를 제출한다.

        Returns:
            제출 완료 시 SubmissionResult.
            이미 제출 완료된 세션이면 저장된 결과를, 제출이 진행 중이면 None을 반환.

        Raises:
            SubmissionFailed: 재시도 후에도 저장 실패. 답안은 유지된다.
        """
        state = self._state
        if state is None:
            logger.info("시작되지 않은 세션의 제출 요청 무시")
            return None
        if state.submission_status == SubmissionStatus.SUBMITTED:
            return self._result
        if state.submission_status != SubmissionStatus.IN_PROGRESS:
            logger.info(f"중복 제출 요청 무시 ({state.submission_status.value}) - attempt {state.attempt_id}")
            return None

        reason = SubmitReason(reason)
        # 첫 await 이전에 전환해야 동시에 들어온 제출/틱이 여기를 통과하지 못한다
        state.submission_status = SubmissionStatus.SUBMITTING
        if reason == SubmitReason.TIMEOUT:
            state.timeout_attempts += 1

        self._sync_remaining()
        exam = self._exam
        answers = dict(state.answers)
        elapsed = state.duration_seconds - state.remaining_seconds
        score = calculate_provisional_score(exam.questions, answers)

        self._audit.record(
            "submission_started",
            attempt_id=state.attempt_id,
            reason=reason.value,
            answered=len(answers),
        )
        logger.info(f"제출 시작 ({reason.value}) - attempt {state.attempt_id}, 잠정 점수 {score}")

        try:
            result_id = await self._send_with_retry(state, answers, elapsed, reason)
        except SubmissionFailed as e:
            self._handle_failure(state, reason, e)
            raise

        self._result = SubmissionResult(
            result_id=result_id,
            provisional_score=score,
            total_marks=total_possible_marks(exam.questions),
            objective_marks=exam.objective_marks,
            reason=reason,
            elapsed_seconds=elapsed,
            answered_count=count_answered(exam.questions, answers),
        )
        state.submission_status = SubmissionStatus.SUBMITTED
        state.last_error = None
        self._audit.record(
            "exam_submitted",
            attempt_id=state.attempt_id,
            result_id=result_id,
            reason=reason.value,
            provisional_score=score,
        )
        self._notifier.notify(state.candidate_id, "Exam submitted", "Exam submitted successfully", "success")
        logger.info(f"제출 완료 - attempt {state.attempt_id}, result {result_id}")
        return self._result

    async def _send_with_retry(
        self,
        state: AttemptState,
        answers: Dict[str, str],
        elapsed: int,
        reason: SubmitReason,
    ) -> str:
        """제출 서비스 호출 + 지수 백오프 재시도."""
        last_exception: Optional[Exception] = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._submissions.submit(
                    state.exam_id,
                    state.candidate_id,
                    answers,
                    elapsed,
                    reason,
                    state.attempt_id,
                )
            except Exception as e:
                last_exception = e
                if attempt < self._max_attempts:
                    wait = self._backoff_base * (2 ** (attempt - 1))
                    logger.warning(
                        f"제출 실패, {wait:.1f}초 후 재시도 ({attempt}/{self._max_attempts}): "
                        f"{type(e).__name__}: {e}"
                    )
                    await self._sleep(wait)

        logger.error(f"제출 최종 실패 - attempt {state.attempt_id}: {last_exception}")
        raise SubmissionFailed("Failed to submit exam", cause=last_exception)

    def _handle_failure(self, state: AttemptState, reason: SubmitReason, error: SubmissionFailed) -> None:
        state.last_error = str(error.cause or error)

        if reason == SubmitReason.TIMEOUT and state.timeout_attempts >= self._max_timeout_attempts:
            error.terminal = True
            state.submission_status = SubmissionStatus.FAILED
            self._audit.record(
                "submission_terminal_failure",
                attempt_id=state.attempt_id,
                timeout_attempts=state.timeout_attempts,
                error=state.last_error,
            )
            self._notifier.notify(
                state.candidate_id,
                "Submission failed",
                "Time is up and the exam could not be submitted. Please contact your administrator.",
                "error",
            )
            return

        state.submission_status = SubmissionStatus.IN_PROGRESS
        self._audit.record(
            "submission_failed",
            attempt_id=state.attempt_id,
            reason=reason.value,
            error=state.last_error,
        )
        self._notifier.notify(
            state.candidate_id,
            "Submission failed",
            "Failed to submit exam. Your answers are saved; please try again.",
            "error",
        )
