"""
services/collaborators.py

시험 세션이 의존하는 외부 협력자 인터페이스와 인메모리 구현.

  - ExamCatalog        : 시험지 조회
  - SubmissionService  : 응시 결과 저장 (비동기)
  - IdentityProvider   : 현재 응시자 확인
  - NotificationSink   : 사용자 알림 (성공/실패 토스트)
  - Clock              : 시간원. 테스트에서 가짜 시계로 교체한다.

실제 백엔드 연동 시 같은 메서드 시그니처로 구현체만 바꿔 끼우면 된다.
"""

import logging
import threading
import time
import uuid
from collections import defaultdict
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel

from school_cbt.models.question_model import Exam
from school_cbt.models.session_state import SubmitReason

logger = logging.getLogger(__name__)

NOTIFICATION_LEVELS = ("info", "success", "warning", "error")


# ── 인터페이스 ───────────────────────────────────────────────────────────────

class Candidate(BaseModel):
    candidate_id: str
    role: str = "student"


class ExamCatalog(Protocol):
    def get(self, exam_id: str) -> Optional[Exam]: ...


class SubmissionService(Protocol):
    async def submit(
        self,
        exam_id: str,
        candidate_id: str,
        answers: Dict[str, str],
        duration_seconds: int,
        reason: SubmitReason,
        attempt_id: str,
    ) -> str: ...


class IdentityProvider(Protocol):
    def current_candidate(self) -> Optional[Candidate]: ...


class NotificationSink(Protocol):
    def notify(self, candidate_id: str, title: str, message: str, level: str = "info") -> None: ...


class Clock(Protocol):
    def now(self) -> float: ...


# ── 인메모리 구현 ────────────────────────────────────────────────────────────

class InMemoryExamCatalog:
    """시험 id → Exam 딕셔너리 기반 카탈로그."""

    def __init__(self, exams: Optional[List[Exam]] = None):
        self._exams: Dict[str, Exam] = {}
        for exam in exams or []:
            self.add(exam)

    def add(self, exam: Exam) -> None:
        self._exams[exam.id] = exam

    def get(self, exam_id: str) -> Optional[Exam]:
        return self._exams.get(exam_id)

    def list(self) -> List[Exam]:
        return list(self._exams.values())


class StoredSubmission(BaseModel):
    result_id: str
    attempt_id: str
    exam_id: str
    candidate_id: str
    answers: Dict[str, str]
    duration_seconds: int
    reason: SubmitReason
    created_at: float


class InMemorySubmissionService:
    """
    제출 결과 저장소.

    attempt_id 기준 멱등: 이미 저장된 응시를 다시 제출하면 기존 result_id를 반환하고
    새 결과를 만들지 않는다.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_attempt: Dict[str, StoredSubmission] = {}

    async def submit(
        self,
        exam_id: str,
        candidate_id: str,
        answers: Dict[str, str],
        duration_seconds: int,
        reason: SubmitReason,
        attempt_id: str,
    ) -> str:
        with self._lock:
            existing = self._by_attempt.get(attempt_id)
            if existing is not None:
                logger.info(f"중복 제출 감지 - attempt {attempt_id}, 기존 결과 {existing.result_id} 반환")
                return existing.result_id

            stored = StoredSubmission(
                result_id=uuid.uuid4().hex,
                attempt_id=attempt_id,
                exam_id=exam_id,
                candidate_id=candidate_id,
                answers=dict(answers),
                duration_seconds=duration_seconds,
                reason=reason,
                created_at=time.time(),
            )
            self._by_attempt[attempt_id] = stored
        logger.info(f"결과 저장 완료 - result {stored.result_id} (exam {exam_id}, candidate {candidate_id})")
        return stored.result_id

    @property
    def results(self) -> List[StoredSubmission]:
        with self._lock:
            return list(self._by_attempt.values())


class StaticIdentityProvider:
    """고정된 응시자를 반환 (None 이면 미인증)."""

    def __init__(self, candidate: Optional[Candidate] = None):
        self._candidate = candidate

    def current_candidate(self) -> Optional[Candidate]:
        return self._candidate


class Notification(BaseModel):
    title: str
    message: str
    level: str = "info"
    created_at: float


class InMemoryNotificationSink:
    """응시자별 알림 큐. drain()으로 꺼내 간다."""

    def __init__(self):
        self._lock = threading.Lock()
        self._queues: Dict[str, List[Notification]] = defaultdict(list)

    def notify(self, candidate_id: str, title: str, message: str, level: str = "info") -> None:
        if level not in NOTIFICATION_LEVELS:
            raise ValueError(f"알 수 없는 알림 레벨: {level}")
        with self._lock:
            self._queues[candidate_id].append(
                Notification(title=title, message=message, level=level, created_at=time.time())
            )

    def pending(self, candidate_id: str) -> List[Notification]:
        with self._lock:
            return list(self._queues.get(candidate_id, []))

    def drain(self, candidate_id: str) -> List[Notification]:
        with self._lock:
            return self._queues.pop(candidate_id, [])

    def discard(self, candidate_id: str) -> None:
        """응시자의 대기 중인 알림을 모두 버린다 (로그아웃·세션 만료)."""
        with self._lock:
            self._queues.pop(candidate_id, None)


class SystemClock:
    """단조 증가 시계. 벽시계 변경에 영향받지 않는다."""

    def now(self) -> float:
        return time.monotonic()
