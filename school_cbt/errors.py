"""
errors.py

시험 세션 도메인 예외.
잘못된 상태 전이(제출 후 답안 입력 등)는 예외가 아니라 무시(no-op)로 처리하므로
여기에 정의하지 않는다.
"""

from typing import Optional


class ExamError(Exception):
    """시험 세션 예외의 공통 부모."""


class Unauthorized(ExamError):
    """인증되지 않았거나 응시 권한이 없는 사용자. 세션 시작 전 치명적 오류."""


class ExamNotFound(ExamError):
    """시험 카탈로그에 해당 시험이 없음. 세션 시작 전 치명적 오류."""

    def __init__(self, exam_id: str):
        super().__init__(f"Exam not found: {exam_id}")
        self.exam_id = exam_id


class SubmissionFailed(ExamError):
    """
    제출 서비스 호출이 재시도 후에도 실패.

    terminal=False 이면 응시자가 다시 제출할 수 있고,
    terminal=True 이면 강제 제출 횟수를 모두 소진하여 더 이상 제출할 수 없다.
    """

    def __init__(self, message: str, terminal: bool = False, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.terminal = terminal
        self.cause = cause
