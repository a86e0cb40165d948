"""
Quiz tables.

- quiz_questions: question bank (read-only to the engine)
- quiz_configurations: per-course / per-quiz rule sets
- quiz_attempts: append-only attempt history

Attempt recording relies on two constraints: ``session_id`` is unique
(idempotent recording) and ``(user_id, quiz_id, attempt_number)`` is unique
(two concurrent sessions cannot claim the same attempt slot).
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QuizQuestionRow(Base):
    """
    A question in a quiz's bank.

    ``correct_answer`` is comma-joined: option text, option letters ("A, C")
    or 0-based indexes; short answers list the accepted strings.
    """

    __tablename__ = "quiz_questions"

    id: Mapped[str] = mapped_column(
        PG_UUID(as_uuid=False),
        primary_key=True,
        server_default=func.gen_random_uuid(),
    )
    quiz_id: Mapped[str] = mapped_column(PG_UUID(as_uuid=False), nullable=False, index=True)
    module_id: Mapped[str | None] = mapped_column(PG_UUID(as_uuid=False))

    question: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[list | None] = mapped_column(JSONB)
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text)
    case_sensitive: Mapped[bool] = mapped_column(Boolean, default=True)

    points: Mapped[int] = mapped_column(Integer, default=1)
    time_limit: Mapped[int | None] = mapped_column(Integer)
    order_index: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<QuizQuestionRow(quiz={self.quiz_id}, type={self.question_type}, order={self.order_index})>"


class QuizConfigurationRow(Base):
    """Rule set for a course (quiz_id NULL) or one quiz."""

    __tablename__ = "quiz_configurations"

    id: Mapped[str] = mapped_column(
        PG_UUID(as_uuid=False),
        primary_key=True,
        server_default=func.gen_random_uuid(),
    )
    course_id: Mapped[str] = mapped_column(PG_UUID(as_uuid=False), nullable=False)
    quiz_id: Mapped[str | None] = mapped_column(PG_UUID(as_uuid=False))

    # Attempts
    allow_retake: Mapped[bool] = mapped_column(Boolean, default=True)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)

    # Review
    show_correct_answers: Mapped[bool] = mapped_column(Boolean, default=True)
    show_explanations: Mapped[bool] = mapped_column(Boolean, default=True)
    show_score_breakdown: Mapped[bool] = mapped_column(Boolean, default=True)
    immediate_feedback: Mapped[bool] = mapped_column(Boolean, default=False)

    # Ordering
    randomize_questions: Mapped[bool] = mapped_column(Boolean, default=False)
    randomize_answers: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timing
    time_limit: Mapped[int | None] = mapped_column(Integer)
    auto_submit: Mapped[bool] = mapped_column(Boolean, default=False)
    show_timer: Mapped[bool] = mapped_column(Boolean, default=True)

    pass_threshold: Mapped[int] = mapped_column(Integer, default=80)

    # Navigation
    require_all_questions: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_skip_questions: Mapped[bool] = mapped_column(Boolean, default=False)
    show_progress: Mapped[bool] = mapped_column(Boolean, default=True)

    custom_feedback: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_quiz_config_lookup", "course_id", "quiz_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<QuizConfigurationRow(course={self.course_id}, quiz={self.quiz_id})>"


class QuizAttemptRow(Base):
    """One recorded attempt (completed or abandoned)."""

    __tablename__ = "quiz_attempts"

    id: Mapped[str] = mapped_column(
        PG_UUID(as_uuid=False),
        primary_key=True,
        server_default=func.gen_random_uuid(),
    )
    user_id: Mapped[str] = mapped_column(PG_UUID(as_uuid=False), nullable=False)
    quiz_id: Mapped[str] = mapped_column(PG_UUID(as_uuid=False), nullable=False)
    course_id: Mapped[str] = mapped_column(PG_UUID(as_uuid=False), nullable=False)
    module_id: Mapped[str | None] = mapped_column(PG_UUID(as_uuid=False))
    session_id: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(Text, nullable=False)  # in-progress, completed, abandoned
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    answers: Mapped[list] = mapped_column(JSONB, default=list)

    score: Mapped[int] = mapped_column(Integer, default=0)
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    earned_points: Mapped[int] = mapped_column(Integer, default=0)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("session_id", name="uq_quiz_attempt_session"),
        UniqueConstraint("user_id", "quiz_id", "attempt_number", name="uq_quiz_attempt_number"),
        Index("idx_quiz_attempts_learner", "user_id", "quiz_id"),
    )

    def __repr__(self) -> str:
        return f"<QuizAttemptRow(user={self.user_id}, quiz={self.quiz_id}, #{self.attempt_number})>"
