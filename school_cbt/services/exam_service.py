"""
services/exam_service.py

시험 채점 및 시간 표시 비즈니스 로직.
순수 Python 함수로 구성 — 전역 상태 변경 없음.
"""

from typing import Dict, List, Optional

from config import TIME_WARNING_SECONDS
from school_cbt.models.question_model import Question


def calculate_provisional_score(
    questions: List[Question],
    answers: Dict[str, str],
) -> int:
    """
    객관식 문제만 자동 채점한 잠정 점수를 반환한다.

    정답 판정 기준: answers.get(question.id) == question.correct_answer
    (대소문자 구분, 공백 제거 없음 — 완전 일치)
    서술형(theory)은 0점으로 계산하며 별도 수동 채점 대상이다.

    Args:
        questions: 채점 대상 Question 리스트.
        answers:   응시자 답안지. {question.id: 답안 문자열}

    Returns:
        맞힌 객관식 문제의 배점 합계.
    """
    return sum(awarded_marks(q, answers) or 0 for q in questions)


def awarded_marks(question: Question, answers: Dict[str, str]) -> Optional[int]:
    """
    문제 1개의 자동 채점 점수.

    Returns:
        객관식: 완전 일치하면 배점, 아니면 0 (미응답 포함).
        서술형: None (수동 채점 대상).
    """
    if not question.is_objective:
        return None
    return question.marks if answers.get(question.id) == question.correct_answer else 0


def total_possible_marks(questions: List[Question]) -> int:
    """서술형을 포함한 전체 배점 합계."""
    return sum(q.marks for q in questions)


def count_answered(questions: List[Question], answers: Dict[str, str]) -> int:
    """이 시험의 문제 중 답안이 기록된 문제 수. 빈 문자열도 응답으로 센다."""
    return sum(1 for q in questions if q.id in answers)


def is_passed(score: float, passing_score: float) -> bool:
    """
    합격 여부를 반환한다.

    Returns:
        score >= passing_score 이면 True, 아니면 False.
    """
    return score >= passing_score


def format_remaining(seconds: int) -> str:
    """
    남은 시간을 표시용 문자열로 변환한다.

    1시간 이상: "H:MM:SS", 미만: "M:SS"
    """
    seconds = max(0, int(seconds))
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def is_time_warning(seconds: int, threshold: int = TIME_WARNING_SECONDS) -> bool:
    """남은 시간이 경고 기준 미만이면 True."""
    return seconds < threshold
