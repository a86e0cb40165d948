"""
Quiz session state.

A QuizSession is an explicit value owned by the caller and handed to every
engine call. It holds one learner's attempt:

    not-started -> in-progress -> completed
                   in-progress -> abandoned

``completed`` and ``abandoned`` are terminal. A session whose time ran out
without auto-submit is ``completed`` with reason ``time-expired`` and has no
result until the learner submits the partial answer set.

Transitions here are synchronous and validate before mutating, so a
rejected call leaves the session untouched. Persistence, scoring and
analytics are orchestrated by ``QuizEngine``.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from loguru import logger

from assessment.core.clock import Clock, parse_timestamp
from assessment.core.errors import (
    OutOfOrderAnswer,
    SessionNotInProgress,
    UnknownQuestion,
)
from assessment.core.identity import CourseContext, LearnerIdentity
from assessment.quiz.configuration import QuizConfiguration
from assessment.quiz.models import Answer, AnswerValue, Question, QuizResult
from assessment.quiz.scoring import is_correct


class SessionStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class CompletionReason(str, Enum):
    SUBMITTED = "submitted"
    TIME_EXPIRED = "time-expired"


@dataclass
class QuizSession:
    """One learner's attempt at a quiz."""

    quiz_id: str
    course_id: str
    learner_id: str
    configuration: QuizConfiguration
    questions: list[Question]
    seed: int
    module_id: str | None = None
    enrollment_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))

    # Progress
    current_question_index: int = 0
    answers: dict[str, Answer] = field(default_factory=dict)
    status: SessionStatus = SessionStatus.NOT_STARTED
    completion_reason: CompletionReason | None = None
    time_remaining: int | None = None  # seconds

    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_activity_at: datetime | None = None
    attempt_number: int = 1

    # Outcome
    result: QuizResult | None = None
    certificate_pending: bool = False

    # Caller context for certificate issuance; not part of the snapshot
    learner: LearnerIdentity | None = field(default=None, repr=False, compare=False)
    course: CourseContext | None = field(default=None, repr=False, compare=False)

    # ========================================
    # Derived state
    # ========================================

    @property
    def is_in_progress(self) -> bool:
        return self.status is SessionStatus.IN_PROGRESS

    @property
    def is_completed(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    @property
    def is_submitted(self) -> bool:
        return self.result is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.ABANDONED)

    @property
    def timed_out(self) -> bool:
        return self.completion_reason is CompletionReason.TIME_EXPIRED

    @property
    def awaiting_submission(self) -> bool:
        """Time expired without auto-submit; only an explicit submit remains."""
        return self.is_completed and self.timed_out and not self.is_submitted

    @property
    def current_question(self) -> Question:
        return self.questions[self.current_question_index]

    @property
    def unanswered(self) -> list[str]:
        return [q.id for q in self.questions if q.id not in self.answers]

    def question(self, question_id: str) -> Question:
        for q in self.questions:
            if q.id == question_id:
                return q
        raise UnknownQuestion(question_id)

    def elapsed_seconds(self, now: datetime) -> float:
        if self.started_at is None:
            return 0.0
        end = self.completed_at or now
        return max(0.0, (end - self.started_at).total_seconds())

    def seconds_left(self, now: datetime) -> float | None:
        limit = self.configuration.time_limit
        if limit is None:
            return None
        return max(0.0, limit - self.elapsed_seconds(now))

    def refresh_time(self, now: datetime) -> bool:
        """
        Recompute remaining time from the wall clock.

        Returns:
            True when an in-progress session has run out of time
        """
        left = self.seconds_left(now)
        if left is None:
            return False
        self.time_remaining = math.ceil(left)
        return self.is_in_progress and left <= 0

    def time_spent(self, now: datetime) -> int:
        spent = int(self.elapsed_seconds(now))
        limit = self.configuration.time_limit
        return min(spent, limit) if limit is not None else spent

    # ========================================
    # Transitions
    # ========================================

    def _require_in_progress(self) -> None:
        if not self.is_in_progress:
            raise SessionNotInProgress(self.id, self.status.value)

    def begin(self, now: datetime) -> None:
        if self.status is not SessionStatus.NOT_STARTED:
            raise SessionNotInProgress(self.id, self.status.value)
        self.status = SessionStatus.IN_PROGRESS
        self.started_at = now
        self.last_activity_at = now
        self.time_remaining = self.configuration.time_limit

    def record_answer(self, question_id: str, value: AnswerValue, now: datetime) -> Answer:
        """Store (or replace) the answer to a question."""
        self._require_in_progress()
        question = self.question(question_id)
        if not self.configuration.allow_skip_questions and question_id != self.current_question.id:
            raise OutOfOrderAnswer(question_id, self.current_question.id)
        if not isinstance(value, (str, list, tuple)):
            raise TypeError(f"Answer must be a string or a list of strings, got {type(value).__name__}")

        since = self.last_activity_at or self.started_at or now
        answer = Answer(
            question_id=question_id,
            answer=value if isinstance(value, str) else [str(v) for v in value],
            is_correct=is_correct(question, value),
            time_spent=max(0, int((now - since).total_seconds())),
            submitted_at=now,
        )
        self.answers[question_id] = answer
        self.last_activity_at = now
        return answer

    def move_to(self, index: int, now: datetime) -> Question:
        self._require_in_progress()
        if not 0 <= index < len(self.questions):
            raise IndexError(f"Question index {index} out of range (0..{len(self.questions) - 1})")
        self.current_question_index = index
        self.last_activity_at = now
        return self.current_question

    def mark_time_expired(self, now: datetime) -> None:
        self._require_in_progress()
        self.status = SessionStatus.COMPLETED
        self.completion_reason = CompletionReason.TIME_EXPIRED
        self.completed_at = now
        self.time_remaining = 0

    def mark_submitted(self, result: QuizResult, now: datetime) -> None:
        if not (self.is_in_progress or self.awaiting_submission):
            raise SessionNotInProgress(self.id, self.status.value)
        self.status = SessionStatus.COMPLETED
        if self.completion_reason is None:
            self.completion_reason = CompletionReason.SUBMITTED
        self.completed_at = self.completed_at or now
        self.result = result

    def mark_abandoned(self, now: datetime) -> None:
        self._require_in_progress()
        self.status = SessionStatus.ABANDONED
        self.completed_at = now

    # ========================================
    # Snapshot
    # ========================================

    def to_dict(self) -> dict[str, Any]:
        """Serializable snapshot of an unsubmitted session."""
        return {
            "id": self.id,
            "quiz_id": self.quiz_id,
            "course_id": self.course_id,
            "module_id": self.module_id,
            "learner_id": self.learner_id,
            "enrollment_id": self.enrollment_id,
            "configuration": self.configuration.to_dict(),
            "questions": [q.to_dict() for q in self.questions],
            "seed": self.seed,
            "current_question_index": self.current_question_index,
            "answers": [a.to_dict() for a in self.answers.values()],
            "status": self.status.value,
            "completion_reason": self.completion_reason.value if self.completion_reason else None,
            "time_remaining": self.time_remaining,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "last_activity_at": self.last_activity_at.isoformat() if self.last_activity_at else None,
            "attempt_number": self.attempt_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuizSession":
        answers = [Answer.from_dict(a) for a in data.get("answers", [])]
        reason = data.get("completion_reason")
        return cls(
            id=data["id"],
            quiz_id=data["quiz_id"],
            course_id=data["course_id"],
            module_id=data.get("module_id"),
            learner_id=data["learner_id"],
            enrollment_id=data.get("enrollment_id"),
            configuration=QuizConfiguration.from_dict(data["configuration"]),
            questions=[Question.from_dict(q) for q in data["questions"]],
            seed=data["seed"],
            current_question_index=data.get("current_question_index", 0),
            answers={a.question_id: a for a in answers},
            status=SessionStatus(data.get("status", SessionStatus.IN_PROGRESS.value)),
            completion_reason=CompletionReason(reason) if reason else None,
            time_remaining=data.get("time_remaining"),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            last_activity_at=parse_timestamp(data.get("last_activity_at")),
            attempt_number=data.get("attempt_number", 1),
        )


class SessionTimer:
    """
    Cooperative countdown for a timed session.

    Polls the clock until the session runs out of time, then invokes
    ``on_expire`` once. Cancelled on submit, exit and engine shutdown.
    """

    def __init__(
        self,
        session: QuizSession,
        clock: Clock,
        on_expire: Callable[[QuizSession], Awaitable[Any]],
        poll_interval: float = 1.0,
    ):
        self.session = session
        self.clock = clock
        self.on_expire = on_expire
        self.poll_interval = poll_interval
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while self.session.is_in_progress:
            left = self.session.seconds_left(self.clock())
            if left is None:
                return
            if left <= 0:
                try:
                    await self.on_expire(self.session)
                except Exception as e:  # Background task - surface through the log, session stays unsubmitted
                    logger.error("Time expiry handling failed for session {}: {}", self.session.id, e)
                return
            await asyncio.sleep(min(self.poll_interval, left))

    def cancel(self) -> None:
        if self._task is None or self._task.done():
            return
        if self._task is asyncio.current_task():
            return
        self._task.cancel()

    async def stop(self) -> None:
        """Cancel and wait for the countdown to finish."""
        self.cancel()
        if self._task is not None and self._task is not asyncio.current_task():
            await asyncio.gather(self._task, return_exceptions=True)
