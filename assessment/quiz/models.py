"""
Quiz domain models.

- Question: immutable question as served by the question bank
- Answer: a learner's submitted value with computed correctness
- QuizAttempt: persisted, append-only record of one attempt
- QuizResult: derived summary handed back on submit (not persisted itself)

Question Types:
- multiple-choice: one or more options selected from a list
- true-false: "True" / "False"
- short-answer: free text matched exactly (no NLU grading)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from assessment.core.clock import parse_timestamp, utcnow

if TYPE_CHECKING:
    from assessment.certificates.issuer import Certificate


AnswerValue = str | list[str]


class QuestionType(str, Enum):
    """Question types supported by the engine."""

    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Question:
    """
    A single quiz question.

    ``correct_answer`` holds the resolved answer key: option strings for
    multiple-choice / true-false, accepted strings for short-answer.
    ``option_order`` is set once answers are shuffled and maps each displayed
    option to its position in the stored order.
    """

    id: str
    quiz_id: str
    question: str
    question_type: QuestionType
    options: tuple[str, ...] = ()
    correct_answer: tuple[str, ...] = ()
    points: int = 1
    explanation: str | None = None
    time_limit: int | None = None
    order_index: int = 0
    module_id: str | None = None
    case_sensitive: bool = True
    option_order: tuple[int, ...] | None = None

    def __post_init__(self) -> None:
        if self.points < 1:
            raise ValueError(f"Question {self.id} must be worth at least 1 point, got {self.points}")

    @property
    def is_multi_select(self) -> bool:
        return len(self.correct_answer) > 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "quiz_id": self.quiz_id,
            "question": self.question,
            "question_type": self.question_type.value,
            "options": list(self.options),
            "correct_answer": list(self.correct_answer),
            "points": self.points,
            "explanation": self.explanation,
            "time_limit": self.time_limit,
            "order_index": self.order_index,
            "module_id": self.module_id,
            "case_sensitive": self.case_sensitive,
            "option_order": list(self.option_order) if self.option_order is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Question":
        option_order = data.get("option_order")
        return cls(
            id=data["id"],
            quiz_id=data["quiz_id"],
            question=data["question"],
            question_type=QuestionType(data["question_type"]),
            options=tuple(data.get("options") or ()),
            correct_answer=tuple(data.get("correct_answer") or ()),
            points=data.get("points", 1),
            explanation=data.get("explanation"),
            time_limit=data.get("time_limit"),
            order_index=data.get("order_index", 0),
            module_id=data.get("module_id"),
            case_sensitive=data.get("case_sensitive", True),
            option_order=tuple(option_order) if option_order is not None else None,
        )


@dataclass
class Answer:
    """A submitted answer. ``is_correct`` is computed, never learner-supplied."""

    question_id: str
    answer: AnswerValue
    is_correct: bool = False
    time_spent: int = 0  # seconds
    submitted_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_id": self.question_id,
            "answer": self.answer,
            "is_correct": self.is_correct,
            "time_spent": self.time_spent,
            "submitted_at": self.submitted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Answer":
        return cls(
            question_id=data["question_id"],
            answer=data["answer"],
            is_correct=data.get("is_correct", False),
            time_spent=data.get("time_spent", 0),
            submitted_at=parse_timestamp(data.get("submitted_at")) or utcnow(),
        )


@dataclass
class QuizAttempt:
    """
    Persisted attempt record.

    ``session_id`` is the idempotency key: recording the same session twice
    returns the first record instead of counting a second attempt.
    ``attempt_number`` is assigned by the attempt repository on append.
    """

    quiz_id: str
    course_id: str
    learner_id: str
    session_id: str
    status: AttemptStatus
    answers: list[Answer] = field(default_factory=list)
    score: int = 0
    total_points: int = 0
    earned_points: int = 0
    time_spent: int = 0
    module_id: str | None = None
    attempt_number: int = 0
    completed_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class QuizResult:
    """Result summary for a submitted session."""

    quiz_id: str
    course_id: str
    score: int
    total_questions: int
    correct_answers: int
    total_points: int
    earned_points: int
    time_spent: int
    passed: bool
    pass_threshold: int
    completed_at: datetime
    answers: list[Answer] = field(default_factory=list)
    module_id: str | None = None
    feedback: str | None = None
    timed_out: bool = False
    attempt_number: int = 0
    attempts_remaining: int = 0
    can_retake: bool = False
    certificate: Certificate | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "quiz_id": self.quiz_id,
            "course_id": self.course_id,
            "module_id": self.module_id,
            "score": self.score,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "total_points": self.total_points,
            "earned_points": self.earned_points,
            "time_spent": self.time_spent,
            "passed": self.passed,
            "pass_threshold": self.pass_threshold,
            "completed_at": self.completed_at.isoformat(),
            "answers": [a.to_dict() for a in self.answers],
            "feedback": self.feedback,
            "timed_out": self.timed_out,
            "attempt_number": self.attempt_number,
            "attempts_remaining": self.attempts_remaining,
            "can_retake": self.can_retake,
            "certificate_code": self.certificate.verification_code if self.certificate else None,
        }
