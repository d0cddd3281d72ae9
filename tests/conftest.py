import pytest

from school_cbt.models.question_model import Exam, Question, QuestionKind
from school_cbt.services.audit import AuditLog
from school_cbt.services.collaborators import (
    Candidate,
    InMemoryExamCatalog,
    InMemoryNotificationSink,
    InMemorySubmissionService,
    StaticIdentityProvider,
)
from school_cbt.services.exam_session import ExamSession


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class ScriptedSubmissionService(InMemorySubmissionService):
    """앞의 fail_times 번 호출은 실패, 이후에는 인메모리 저장."""

    def __init__(self, fail_times: int = 0):
        super().__init__()
        self.fail_times = fail_times
        self.calls = []

    async def submit(self, exam_id, candidate_id, answers, duration_seconds, reason, attempt_id):
        self.calls.append({
            "exam_id": exam_id,
            "candidate_id": candidate_id,
            "answers": dict(answers),
            "duration_seconds": duration_seconds,
            "reason": reason,
            "attempt_id": attempt_id,
        })
        if len(self.calls) <= self.fail_times:
            raise ConnectionError("submission backend unavailable")
        return await super().submit(exam_id, candidate_id, answers, duration_seconds, reason, attempt_id)


class RecordingSleep:
    def __init__(self, clock: FakeClock | None = None):
        self.waits = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


def make_pi_exam(duration_minutes: int = 1) -> Exam:
    return Exam(
        id="pi-quiz",
        title="Pi Quiz",
        description="One question",
        duration_minutes=duration_minutes,
        total_marks=5,
        passing_score=3,
        questions=[
            Question(
                id="q1",
                question_text="What is the value of pi approximately?",
                question_type=QuestionKind.OBJECTIVE,
                options=["3.14", "3.41", "3.04"],
                correct_answer="3.14",
                marks=5,
            ),
        ],
    )


def make_mixed_exam() -> Exam:
    return Exam(
        id="mixed",
        title="Mixed Exam",
        duration_minutes=10,
        total_marks=20,
        passing_score=10,
        questions=[
            Question(
                id="q1",
                question_text="What is the value of pi approximately?",
                question_type=QuestionKind.OBJECTIVE,
                options=["3.14", "3.41"],
                correct_answer="3.14",
                marks=5,
            ),
            Question(
                id="q2",
                question_text="Solve for x: 2x + 5 = 15",
                question_type=QuestionKind.OBJECTIVE,
                options=["x = 5", "x = 10"],
                correct_answer="x = 5",
                marks=5,
            ),
            Question(
                id="q3",
                question_text="Explain the Pythagorean theorem.",
                question_type=QuestionKind.THEORY,
                marks=10,
            ),
        ],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return RecordingSleep(clock)


@pytest.fixture
def catalog():
    return InMemoryExamCatalog([make_pi_exam(), make_mixed_exam()])


@pytest.fixture
def submissions():
    return ScriptedSubmissionService()


@pytest.fixture
def notifier():
    return InMemoryNotificationSink()


@pytest.fixture
def student():
    return Candidate(candidate_id="STU-001", role="student")


@pytest.fixture
def make_session(catalog, submissions, notifier, clock, sleeper, student):
    def _make(identity=None, service=None, **kwargs):
        return ExamSession(
            catalog=catalog,
            submissions=service if service is not None else submissions,
            identity=identity if identity is not None else StaticIdentityProvider(student),
            notifier=notifier,
            clock=clock,
            audit=AuditLog(),
            sleep=sleeper,
            **kwargs,
        )
    return _make
