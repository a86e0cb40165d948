"""
Persistence contracts consumed by the engine.

The engine only talks to storage through these protocols. Two backends
ship with the package:
- ``assessment.db.repositories``: SQLAlchemy (async) over PostgreSQL
- ``assessment.db.memory``: in-process, for embedding and tests

Every method may raise ``StoreUnavailable``.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from assessment.analytics.emitter import LearningEvent
    from assessment.certificates.issuer import Certificate, CertificateStatus
    from assessment.quiz.configuration import QuizConfiguration
    from assessment.quiz.models import Question, QuizAttempt


class QuestionSource(Protocol):
    async def list_questions(self, quiz_id: str) -> list[Question]:
        """Questions of a quiz ordered by ``order_index``."""
        ...


class ConfigurationRepository(Protocol):
    async def get(self, config_id: str) -> QuizConfiguration | None: ...

    async def find_latest(self, course_id: str, quiz_id: str | None) -> QuizConfiguration | None:
        """Most recently created configuration for (course, quiz); quiz None = course default."""
        ...

    async def list_for_course(self, course_id: str) -> list[QuizConfiguration]: ...

    async def insert(self, config: QuizConfiguration) -> QuizConfiguration: ...

    async def save(self, config: QuizConfiguration) -> QuizConfiguration: ...

    async def delete(self, config_id: str) -> bool: ...


class AttemptRepository(Protocol):
    async def count(self, learner_id: str, quiz_id: str) -> int: ...

    async def list_for(self, learner_id: str, quiz_id: str) -> list[QuizAttempt]: ...

    async def get_by_session(self, session_id: str) -> QuizAttempt | None: ...

    async def append(self, attempt: QuizAttempt, limit: int) -> QuizAttempt:
        """
        Conditionally append an attempt.

        Inserts only while fewer than ``limit`` attempts exist for the
        (learner, quiz) pair, assigning ``attempt_number``. Returns the stored
        record for a session that was already recorded.

        Raises:
            AttemptLimitExceeded: the pair already holds ``limit`` attempts
        """
        ...


class CertificateRepository(Protocol):
    async def get(self, certificate_id: str) -> Certificate | None: ...

    async def get_by_code(self, verification_code: str) -> Certificate | None: ...

    async def code_exists(self, verification_code: str) -> bool: ...

    async def find_active(
        self, learner_id: str, course_id: str, enrollment_id: str | None
    ) -> Certificate | None: ...

    async def insert_if_no_active(self, certificate: Certificate) -> tuple[Certificate, bool]:
        """
        Insert unless an active certificate exists for the same enrollment.

        Returns:
            (stored certificate, created flag)

        Raises:
            VerificationCodeConflict: the verification code is already taken
        """
        ...

    async def set_status(
        self, certificate_id: str, status: CertificateStatus, at: datetime
    ) -> Certificate | None: ...


class AnalyticsSink(Protocol):
    async def record(self, event: LearningEvent) -> None: ...
