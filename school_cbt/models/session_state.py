"""
models/session_state.py

응시자 1명의 시험 1회 응시(Attempt) 상태를 담는 OMR 카드 모델.
Pydantic BaseModel 기반 — 직렬화/역직렬화 및 타입 안전성 확보.
상태 전이 규칙은 services/exam_session.py 가 담당한다.
"""

import uuid
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class SubmissionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"          # 강제 제출 횟수 소진 (종료 상태)


class SubmitReason(str, Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"


class AttemptState(BaseModel):
    """
    사용자의 시험 응시 상태 전체를 표현하는 모델.

    Attributes:
        attempt_id:             응시 식별자. 제출 서비스의 멱등 키로 사용.
        exam_id:                응시 중인 시험.
        candidate_id:           응시자.
        answers:                답안지. {question.id: 응시자 답안 문자열}
                                같은 문제에 다시 답하면 덮어쓴다 (이력 없음).
        current_question_index: 현재 보고 있는 문제 인덱스 (0-based).
        remaining_seconds:      남은 시간 (초). 증가하지 않는다.
        submission_status:      in_progress → submitting → submitted 순으로만 진행.
        started_at:             시작 시각 (주입된 Clock 기준).
        duration_seconds:       제한 시간 (초).
        timeout_attempts:       시간 종료로 인한 강제 제출 시도 횟수.
        last_error:             마지막 제출 실패 메시지.
    """

    attempt_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    exam_id: str
    candidate_id: str
    answers: Dict[str, str] = Field(default_factory=dict)
    current_question_index: int = Field(default=0, ge=0)
    remaining_seconds: int = Field(..., ge=0)
    submission_status: SubmissionStatus = SubmissionStatus.IN_PROGRESS
    started_at: float
    duration_seconds: int = Field(..., ge=0)
    timeout_attempts: int = 0
    last_error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.submission_status == SubmissionStatus.IN_PROGRESS


class SubmissionResult(BaseModel):
    """제출 완료 후 조회 가능한 결과."""

    result_id: str
    provisional_score: int
    total_marks: int
    objective_marks: int
    reason: SubmitReason
    elapsed_seconds: int
    answered_count: int
