from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class QuestionKind(str, Enum):
    OBJECTIVE = "objective"
    THEORY = "theory"


class Question(BaseModel):
    """
    CBT 문제 모델
    Pydantic v2 적용
    """
    model_config = {"frozen": True}

    id: str = Field(
        ...,
        min_length=1,
        description="문제 식별자"
    )
    question_text: str = Field(
        ...,
        min_length=1,
        description="발문/문제 내용"
    )
    question_type: QuestionKind = Field(
        ...,
        description="objective(객관식) 또는 theory(서술형)"
    )
    options: List[str] = Field(
        default_factory=list,
        description="보기 리스트 (객관식에만 존재)"
    )
    correct_answer: Optional[str] = Field(
        None,
        description="정답 (객관식에만 존재, 응시자에게 절대 노출하지 않음)"
    )
    marks: int = Field(
        ...,
        ge=0,
        description="배점"
    )

    @model_validator(mode='after')
    def validate_kind_fields(self) -> 'Question':
        """
        검증 로직 1: 서술형은 보기와 정답을 가질 수 없다.
        검증 로직 2: 객관식은 보기가 2개 이상이고, 정답이 보기 안에 있어야 한다.
        """
        if self.question_type == QuestionKind.THEORY:
            if self.options or self.correct_answer is not None:
                raise ValueError(f"서술형 문제({self.id})는 보기나 정답을 가질 수 없습니다.")
            return self

        if len(self.options) < 2:
            raise ValueError("보기(options)는 최소 2개 이상의 항목이 필요합니다.")
        if self.correct_answer is None or self.correct_answer not in self.options:
            raise ValueError(f"정답('{self.correct_answer}')이 보기 리스트({self.options})에 존재하지 않습니다.")
        return self

    @property
    def is_objective(self) -> bool:
        return self.question_type == QuestionKind.OBJECTIVE

    def public_view(self) -> Dict[str, Any]:
        """응시자 화면용 dict. 정답은 포함하지 않는다."""
        return {
            "id": self.id,
            "question_text": self.question_text,
            "question_type": self.question_type.value,
            "options": list(self.options),
            "marks": self.marks,
        }


class Exam(BaseModel):
    """
    시험지 모델. 세션에 로드된 이후에는 변경하지 않는다.
    """
    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    duration_minutes: int = Field(..., gt=0, description="제한 시간 (분)")
    total_marks: int = Field(..., ge=0)
    passing_score: int = Field(..., ge=0)
    questions: List[Question] = Field(..., description="출제 순서대로 정렬된 문제 리스트")

    @field_validator('questions')
    @classmethod
    def validate_questions(cls, v: List[Question]) -> List[Question]:
        if not v:
            raise ValueError("시험에는 최소 1개 이상의 문제가 필요합니다.")
        ids = [q.id for q in v]
        if len(ids) != len(set(ids)):
            raise ValueError("문제 id가 중복되었습니다.")
        return v

    @model_validator(mode='after')
    def validate_marks(self) -> 'Exam':
        """
        검증 로직: 총점은 문항 배점 합계와 같고, 합격 기준은 총점을 넘을 수 없다.
        """
        marks_sum = sum(q.marks for q in self.questions)
        if self.total_marks != marks_sum:
            raise ValueError(f"총점({self.total_marks})이 문항 배점 합계({marks_sum})와 다릅니다.")
        if self.passing_score > self.total_marks:
            raise ValueError(f"합격 기준({self.passing_score})이 총점({self.total_marks})보다 큽니다.")
        return self

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def objective_marks(self) -> int:
        return sum(q.marks for q in self.questions if q.is_objective)

    def question(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None
