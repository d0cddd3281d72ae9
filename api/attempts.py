"""
api/attempts.py — 응시자 × 시험 단위 응시 레지스트리

응시자 1명은 시험 1개에 대해 응시를 한 번만 가질 수 있다.
브라우저(쿠키 세션)와 무관하게 (candidate_id, exam_id) 기준으로 관리하며,
진행 중인 응시는 카운트다운 루프가 tick_active()로 시간을 진행시킨다.
"""

import logging
import threading
from typing import Optional

from school_cbt.models.session_state import SubmissionStatus
from school_cbt.services.exam_session import ExamSession

logger = logging.getLogger(__name__)

# 이 상태의 응시가 있으면 같은 시험을 새로 시작할 수 없다 (failed 만 재응시 허용)
BLOCKING_STATUSES = (
    SubmissionStatus.IN_PROGRESS,
    SubmissionStatus.SUBMITTING,
    SubmissionStatus.SUBMITTED,
)


class AttemptRegistry:

    def __init__(self):
        self._lock = threading.Lock()
        self._attempts: dict[tuple[str, str], ExamSession] = {}

    def blocking(self, candidate_id: str, exam_id: str) -> Optional[ExamSession]:
        """새 응시를 막는 기존 응시를 반환. 없으면 None."""
        with self._lock:
            existing = self._attempts.get((candidate_id, exam_id))
        if existing is not None and existing.state.submission_status in BLOCKING_STATUSES:
            return existing
        return None

    def claim(self, exam_session: ExamSession) -> bool:
        """시작된 응시를 등록. 이미 막는 응시가 있으면 False."""
        state = exam_session.state
        key = (state.candidate_id, state.exam_id)
        with self._lock:
            existing = self._attempts.get(key)
            if existing is not None and existing.state.submission_status in BLOCKING_STATUSES:
                logger.warning(f"중복 응시 차단 - candidate {key[0]}, exam {key[1]}")
                return False
            self._attempts[key] = exam_session
        return True

    def active(self) -> list[ExamSession]:
        """카운트다운이 필요한 응시 (진행 중 또는 제출 중)."""
        with self._lock:
            sessions = list(self._attempts.values())
        return [
            s for s in sessions
            if s.state.submission_status in (SubmissionStatus.IN_PROGRESS, SubmissionStatus.SUBMITTING)
        ]

    async def tick_active(self) -> int:
        """진행 중인 모든 응시에 tick()을 호출. 시간이 다 된 응시는 여기서 강제 제출된다."""
        sessions = self.active()
        for exam_session in sessions:
            try:
                await exam_session.tick()
            except Exception:
                logger.exception(f"카운트다운 tick 오류 - attempt {exam_session.state.attempt_id}")
        return len(sessions)
