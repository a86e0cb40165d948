"""
Quiz assessment: configuration, questions, scoring, attempts and sessions.

``QuizEngine`` lives in ``assessment.quiz.engine`` and is imported from
there directly.
"""

from .configuration import (
    PRESETS,
    ConfigurationPreset,
    ConfigurationStats,
    ConfigurationStore,
    QuizConfiguration,
    validate,
)
from .ledger import AttemptLedger
from .models import (
    Answer,
    AttemptStatus,
    Question,
    QuestionType,
    QuizAttempt,
    QuizResult,
)
from .question_bank import QuestionBank, build_question, materialize
from .scoring import ScoreBreakdown, is_correct, percentage, score_answers
from .session import CompletionReason, QuizSession, SessionStatus, SessionTimer

__all__ = [
    "PRESETS",
    "Answer",
    "AttemptLedger",
    "AttemptStatus",
    "CompletionReason",
    "ConfigurationPreset",
    "ConfigurationStats",
    "ConfigurationStore",
    "Question",
    "QuestionBank",
    "QuestionType",
    "QuizAttempt",
    "QuizConfiguration",
    "QuizResult",
    "QuizSession",
    "ScoreBreakdown",
    "SessionStatus",
    "SessionTimer",
    "build_question",
    "is_correct",
    "materialize",
    "percentage",
    "score_answers",
    "validate",
]
