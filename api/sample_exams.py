"""
api/sample_exams.py — 데모용 샘플 시험지
"""

from school_cbt.models.question_model import Exam, Question, QuestionKind

MATHS_MID_TERM = Exam(
    id="maths-mid-term",
    title="Mathematics Mid-Term Examination",
    description="Answer all questions. Duration: 1 hour",
    duration_minutes=60,
    total_marks=20,
    passing_score=10,
    questions=[
        Question(
            id="q1",
            question_text="What is the value of π (pi) approximately?",
            question_type=QuestionKind.OBJECTIVE,
            options=["3.14", "3.41", "3.04", "4.13"],
            correct_answer="3.14",
            marks=5,
        ),
        Question(
            id="q2",
            question_text="Solve for x: 2x + 5 = 15",
            question_type=QuestionKind.OBJECTIVE,
            options=["x = 5", "x = 10", "x = 7.5", "x = 5.5"],
            correct_answer="x = 5",
            marks=5,
        ),
        Question(
            id="q3",
            question_text="Explain the Pythagorean theorem and provide an example.",
            question_type=QuestionKind.THEORY,
            marks=10,
        ),
    ],
)

SAMPLE_EXAMS = [MATHS_MID_TERM]
