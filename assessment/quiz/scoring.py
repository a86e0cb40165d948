"""
Scoring algorithm.

Pure and deterministic given (questions, answers):
- a question is correct iff the submitted value set equals the answer-key set
- every question in the quiz counts toward total points, answered or not
- score is the earned share of total points as a round-half-up percentage
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from assessment.quiz.models import Answer, AnswerValue, Question, QuestionType


@dataclass(frozen=True)
class QuestionScore:
    question_id: str
    points: int
    earned: int
    answered: bool
    is_correct: bool


@dataclass(frozen=True)
class ScoreBreakdown:
    total_points: int
    earned_points: int
    correct_answers: int
    total_questions: int
    score: int
    questions: list[QuestionScore] = field(default_factory=list)


def _normalize(values: Iterable[str], case_sensitive: bool) -> frozenset[str]:
    cleaned = (v.strip() for v in values)
    if not case_sensitive:
        cleaned = (v.casefold() for v in cleaned)
    return frozenset(v for v in cleaned if v)


def answer_values(value: AnswerValue | None) -> list[str]:
    """Flatten a submitted value into a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def is_correct(question: Question, value: AnswerValue | None) -> bool:
    """Exact, order-independent set match against the answer key."""
    if not question.correct_answer:
        return False
    case_sensitive = question.case_sensitive or question.question_type is not QuestionType.SHORT_ANSWER
    submitted = _normalize(answer_values(value), case_sensitive)
    if not submitted:
        return False
    return submitted == _normalize(question.correct_answer, case_sensitive)


def percentage(earned: int, total: int) -> int:
    """Earned share of total as an integer percentage, rounding half up."""
    if total <= 0:
        return 0
    ratio = Decimal(earned) * 100 / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_passing(score: int, pass_threshold: int) -> bool:
    return score >= pass_threshold


def score_answers(questions: Sequence[Question], answers: Mapping[str, Answer]) -> ScoreBreakdown:
    """Score a full question set; unanswered questions are zero-point misses."""
    per_question: list[QuestionScore] = []
    total = earned = correct = 0

    for question in questions:
        answer = answers.get(question.id)
        ok = answer is not None and is_correct(question, answer.answer)
        total += question.points
        if ok:
            earned += question.points
            correct += 1
        per_question.append(
            QuestionScore(
                question_id=question.id,
                points=question.points,
                earned=question.points if ok else 0,
                answered=answer is not None,
                is_correct=ok,
            )
        )

    return ScoreBreakdown(
        total_points=total,
        earned_points=earned,
        correct_answers=correct,
        total_questions=len(questions),
        score=percentage(earned, total),
        questions=per_question,
    )
