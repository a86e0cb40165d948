"""
PostgreSQL repositories over an AsyncSession.

Each repository runs inside the caller's transaction (see
``assessment.db.database.async_session_scope``); nothing here commits.
Driver and SQL errors surface as ``StoreUnavailable``.

Conditional writes are single statements so concurrent sessions cannot
race past a limit:
- attempts: INSERT ... SELECT COUNT(*) + 1 ... HAVING COUNT(*) < limit,
  guarded by unique (user_id, quiz_id, attempt_number) and unique session_id
- certificates: INSERT ... ON CONFLICT DO NOTHING against the partial unique
  index on active (user_id, course_id, enrollment_id)
"""

from __future__ import annotations

from collections.abc import Callable, Generator, Mapping
from contextlib import AbstractAsyncContextManager, contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import bindparam, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assessment.analytics.emitter import LearningEvent
from assessment.certificates.issuer import Certificate, CertificateStatus
from assessment.core.errors import AttemptLimitExceeded, StoreUnavailable, VerificationCodeConflict
from assessment.quiz.configuration import RULE_FIELDS, QuizConfiguration
from assessment.quiz.models import Answer, AttemptStatus, Question, QuizAttempt
from assessment.quiz.question_bank import build_question

MAX_APPEND_RETRIES = 3


@contextmanager
def translate_errors(operation: str) -> Generator[None, None, None]:
    """Re-raise SQLAlchemy errors as StoreUnavailable."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("Database error during {}: {}", operation, e)
        raise StoreUnavailable(operation, type(e).__name__) from e


def _row_dict(row: Any) -> dict[str, Any]:
    return dict(row._mapping)


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


# ========================================
# Questions
# ========================================

_SELECT_QUESTIONS = text(
    """
    SELECT id, quiz_id, module_id, question, question_type, options,
           correct_answer, explanation, points, time_limit, order_index,
           case_sensitive
    FROM quiz_questions
    WHERE quiz_id = :quiz_id
    ORDER BY order_index, created_at
    """
)


class SqlQuestionSource:
    """Reads a quiz's questions from quiz_questions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_questions(self, quiz_id: str) -> list[Question]:
        with translate_errors("list questions"):
            result = await self.session.execute(_SELECT_QUESTIONS, {"quiz_id": quiz_id})
            rows = result.fetchall()

        questions = []
        for row in rows:
            data = _row_dict(row)
            questions.append(
                build_question(
                    id=str(data["id"]),
                    quiz_id=str(data["quiz_id"]),
                    module_id=_str_or_none(data.get("module_id")),
                    question=data["question"],
                    question_type=data["question_type"],
                    options=data.get("options") or [],
                    correct_answer=data["correct_answer"],
                    explanation=data.get("explanation"),
                    points=data.get("points") or 1,
                    time_limit=data.get("time_limit"),
                    order_index=data.get("order_index") or 0,
                    case_sensitive=data.get("case_sensitive", True),
                )
            )
        return questions


# ========================================
# Configurations
# ========================================

_CONFIG_COLUMNS = ("id", "course_id", "quiz_id", *RULE_FIELDS, "created_at", "updated_at")
_CONFIG_SELECT = f"SELECT {', '.join(_CONFIG_COLUMNS)} FROM quiz_configurations"


def _config_from_row(row: Any) -> QuizConfiguration:
    data = _row_dict(row)
    data["id"] = str(data["id"])
    data["course_id"] = str(data["course_id"])
    data["quiz_id"] = _str_or_none(data.get("quiz_id"))
    return QuizConfiguration.from_dict(data)


class SqlConfigurationRepository:
    """quiz_configurations access."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, config_id: str) -> QuizConfiguration | None:
        with translate_errors("get configuration"):
            result = await self.session.execute(text(f"{_CONFIG_SELECT} WHERE id = :id"), {"id": config_id})
            row = result.first()
        return _config_from_row(row) if row is not None else None

    async def find_latest(self, course_id: str, quiz_id: str | None) -> QuizConfiguration | None:
        if quiz_id is None:
            query = text(
                f"{_CONFIG_SELECT} WHERE course_id = :course_id AND quiz_id IS NULL "
                "ORDER BY created_at DESC LIMIT 1"
            )
            params: dict[str, Any] = {"course_id": course_id}
        else:
            query = text(
                f"{_CONFIG_SELECT} WHERE course_id = :course_id AND quiz_id = :quiz_id "
                "ORDER BY created_at DESC LIMIT 1"
            )
            params = {"course_id": course_id, "quiz_id": quiz_id}

        with translate_errors("resolve configuration"):
            result = await self.session.execute(query, params)
            row = result.first()
        return _config_from_row(row) if row is not None else None

    async def list_for_course(self, course_id: str) -> list[QuizConfiguration]:
        with translate_errors("list configurations"):
            result = await self.session.execute(
                text(f"{_CONFIG_SELECT} WHERE course_id = :course_id ORDER BY created_at DESC"),
                {"course_id": course_id},
            )
            rows = result.fetchall()
        return [_config_from_row(row) for row in rows]

    async def insert(self, config: QuizConfiguration) -> QuizConfiguration:
        columns = ", ".join(_CONFIG_COLUMNS)
        values = ", ".join(f":{c}" for c in _CONFIG_COLUMNS)
        with translate_errors("insert configuration"):
            await self.session.execute(
                text(f"INSERT INTO quiz_configurations ({columns}) VALUES ({values})"),
                config.to_dict() | {"created_at": config.created_at, "updated_at": config.updated_at},
            )
        return config

    async def save(self, config: QuizConfiguration) -> QuizConfiguration:
        assignments = ", ".join(f"{c} = :{c}" for c in (*RULE_FIELDS, "updated_at"))
        with translate_errors("save configuration"):
            await self.session.execute(
                text(f"UPDATE quiz_configurations SET {assignments} WHERE id = :id"),
                {**config.rules(), "id": config.id, "updated_at": config.updated_at},
            )
        return config

    async def delete(self, config_id: str) -> bool:
        with translate_errors("delete configuration"):
            result = await self.session.execute(
                text("DELETE FROM quiz_configurations WHERE id = :id"),
                {"id": config_id},
            )
        return result.rowcount == 1


# ========================================
# Attempts
# ========================================

_ATTEMPT_SELECT = """
    SELECT id, user_id, quiz_id, course_id, module_id, session_id, status,
           attempt_number, answers, score, total_points, earned_points,
           time_spent, completed_at, created_at
    FROM quiz_attempts
"""

_INSERT_ATTEMPT = text(
    """
    INSERT INTO quiz_attempts (
        id, user_id, quiz_id, course_id, module_id, session_id, status,
        attempt_number, answers, score, total_points, earned_points,
        time_spent, completed_at, created_at
    )
    SELECT CAST(:id AS uuid), CAST(:learner_id AS uuid), CAST(:quiz_id AS uuid),
           CAST(:course_id AS uuid), CAST(:module_id AS uuid), CAST(:session_id AS text),
           CAST(:status AS text), COUNT(*) + 1, CAST(:answers AS jsonb),
           CAST(:score AS integer), CAST(:total_points AS integer),
           CAST(:earned_points AS integer), CAST(:time_spent AS integer),
           CAST(:completed_at AS timestamptz), CAST(:created_at AS timestamptz)
    FROM quiz_attempts
    WHERE user_id = CAST(:learner_id AS uuid) AND quiz_id = CAST(:quiz_id AS uuid)
    HAVING COUNT(*) < :limit
    ON CONFLICT DO NOTHING
    RETURNING id, attempt_number
    """
).bindparams(bindparam("answers", type_=JSONB))


def _attempt_from_row(row: Any) -> QuizAttempt:
    data = _row_dict(row)
    return QuizAttempt(
        id=str(data["id"]),
        learner_id=str(data["user_id"]),
        quiz_id=str(data["quiz_id"]),
        course_id=str(data["course_id"]),
        module_id=_str_or_none(data.get("module_id")),
        session_id=data["session_id"],
        status=AttemptStatus(data["status"]),
        attempt_number=data["attempt_number"],
        answers=[Answer.from_dict(a) for a in data.get("answers") or []],
        score=data.get("score") or 0,
        total_points=data.get("total_points") or 0,
        earned_points=data.get("earned_points") or 0,
        time_spent=data.get("time_spent") or 0,
        completed_at=data.get("completed_at"),
        created_at=data["created_at"],
    )


class SqlAttemptRepository:
    """Append-only quiz_attempts access."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def count(self, learner_id: str, quiz_id: str) -> int:
        with translate_errors("count attempts"):
            result = await self.session.execute(
                text("SELECT COUNT(*) FROM quiz_attempts WHERE user_id = :learner_id AND quiz_id = :quiz_id"),
                {"learner_id": learner_id, "quiz_id": quiz_id},
            )
            return int(result.scalar_one())

    async def list_for(self, learner_id: str, quiz_id: str) -> list[QuizAttempt]:
        with translate_errors("list attempts"):
            result = await self.session.execute(
                text(f"{_ATTEMPT_SELECT} WHERE user_id = :learner_id AND quiz_id = :quiz_id ORDER BY attempt_number"),
                {"learner_id": learner_id, "quiz_id": quiz_id},
            )
            rows = result.fetchall()
        return [_attempt_from_row(row) for row in rows]

    async def get_by_session(self, session_id: str) -> QuizAttempt | None:
        with translate_errors("get attempt"):
            result = await self.session.execute(
                text(f"{_ATTEMPT_SELECT} WHERE session_id = :session_id"),
                {"session_id": session_id},
            )
            row = result.first()
        return _attempt_from_row(row) if row is not None else None

    async def append(self, attempt: QuizAttempt, limit: int) -> QuizAttempt:
        """Conditionally insert an attempt; see ``AttemptRepository.append``."""
        existing = await self.get_by_session(attempt.session_id)
        if existing is not None:
            return existing

        params = {
            "id": attempt.id,
            "learner_id": attempt.learner_id,
            "quiz_id": attempt.quiz_id,
            "course_id": attempt.course_id,
            "module_id": attempt.module_id,
            "session_id": attempt.session_id,
            "status": attempt.status.value,
            "answers": [a.to_dict() for a in attempt.answers],
            "score": attempt.score,
            "total_points": attempt.total_points,
            "earned_points": attempt.earned_points,
            "time_spent": attempt.time_spent,
            "completed_at": attempt.completed_at,
            "created_at": attempt.created_at,
            "limit": limit,
        }

        for _ in range(MAX_APPEND_RETRIES):
            with translate_errors("append attempt"):
                result = await self.session.execute(_INSERT_ATTEMPT, params)
                row = result.first()
            if row is not None:
                return replace(attempt, id=str(row.id), attempt_number=row.attempt_number)

            # Nothing inserted: the session was recorded concurrently, the
            # limit is reached, or another session took the same slot.
            existing = await self.get_by_session(attempt.session_id)
            if existing is not None:
                return existing
            count = await self.count(attempt.learner_id, attempt.quiz_id)
            if count >= limit:
                raise AttemptLimitExceeded(count, limit)
            logger.debug("Attempt slot contention for learner {} on quiz {}", attempt.learner_id, attempt.quiz_id)

        raise StoreUnavailable("append attempt", "attempt slot contention")


# ========================================
# Certificates
# ========================================

_CERT_COLUMNS = (
    "id",
    "user_id",
    "course_id",
    "enrollment_id",
    "certificate_number",
    "verification_code",
    "title",
    "recipient_name",
    "course_title",
    "completion_date",
    "score",
    "template_id",
    "issued_by",
    "status",
    "expires_at",
    "metadata",
    "created_at",
    "updated_at",
)
_CERT_SELECT = f"SELECT {', '.join(_CERT_COLUMNS)} FROM certificates"

_INSERT_CERTIFICATE = text(
    f"""
    INSERT INTO certificates ({', '.join(_CERT_COLUMNS)})
    VALUES ({', '.join(f':{c}' for c in _CERT_COLUMNS)})
    ON CONFLICT DO NOTHING
    RETURNING id
    """
).bindparams(bindparam("metadata", type_=JSONB))


def _certificate_from_row(row: Any) -> Certificate:
    data = _row_dict(row)
    return Certificate(
        id=str(data["id"]),
        user_id=str(data["user_id"]),
        course_id=str(data["course_id"]),
        enrollment_id=_str_or_none(data.get("enrollment_id")),
        certificate_number=data["certificate_number"],
        verification_code=data["verification_code"],
        title=data["title"],
        recipient_name=data["recipient_name"],
        course_title=data["course_title"],
        completion_date=data["completion_date"],
        score=data["score"],
        template_id=data.get("template_id") or "default",
        issued_by=data["issued_by"],
        status=CertificateStatus(data["status"]),
        expires_at=data.get("expires_at"),
        metadata=data.get("metadata") or {},
        created_at=data["created_at"],
        updated_at=data["updated_at"],
    )


class SqlCertificateRepository:
    """certificates access."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _one(self, operation: str, where: str, params: Mapping[str, Any]) -> Certificate | None:
        with translate_errors(operation):
            result = await self.session.execute(text(f"{_CERT_SELECT} WHERE {where}"), dict(params))
            row = result.first()
        return _certificate_from_row(row) if row is not None else None

    async def get(self, certificate_id: str) -> Certificate | None:
        return await self._one("get certificate", "id = :id", {"id": certificate_id})

    async def get_by_code(self, verification_code: str) -> Certificate | None:
        return await self._one("verify certificate", "verification_code = :code", {"code": verification_code})

    async def code_exists(self, verification_code: str) -> bool:
        with translate_errors("check verification code"):
            result = await self.session.execute(
                text("SELECT 1 FROM certificates WHERE verification_code = :code"),
                {"code": verification_code},
            )
            return result.first() is not None

    async def find_active(self, learner_id: str, course_id: str, enrollment_id: str | None) -> Certificate | None:
        return await self._one(
            "find active certificate",
            "user_id = :user_id AND course_id = :course_id "
            "AND enrollment_id IS NOT DISTINCT FROM CAST(:enrollment_id AS uuid) "
            "AND status = 'active'",
            {"user_id": learner_id, "course_id": course_id, "enrollment_id": enrollment_id},
        )

    async def insert_if_no_active(self, certificate: Certificate) -> tuple[Certificate, bool]:
        params = {
            "id": certificate.id,
            "user_id": certificate.user_id,
            "course_id": certificate.course_id,
            "enrollment_id": certificate.enrollment_id,
            "certificate_number": certificate.certificate_number,
            "verification_code": certificate.verification_code,
            "title": certificate.title,
            "recipient_name": certificate.recipient_name,
            "course_title": certificate.course_title,
            "completion_date": certificate.completion_date,
            "score": certificate.score,
            "template_id": certificate.template_id,
            "issued_by": certificate.issued_by,
            "status": certificate.status.value,
            "expires_at": certificate.expires_at,
            "metadata": certificate.metadata,
            "created_at": certificate.created_at,
            "updated_at": certificate.updated_at,
        }
        with translate_errors("insert certificate"):
            result = await self.session.execute(_INSERT_CERTIFICATE, params)
            row = result.first()
        if row is not None:
            return certificate, True

        active = await self.find_active(certificate.user_id, certificate.course_id, certificate.enrollment_id)
        if active is not None:
            return active, False
        # Remaining unique columns: verification_code and certificate_number
        raise VerificationCodeConflict(certificate.verification_code)

    async def set_status(self, certificate_id: str, status: CertificateStatus, at: datetime) -> Certificate | None:
        with translate_errors("update certificate status"):
            result = await self.session.execute(
                text(
                    "UPDATE certificates SET status = :status, updated_at = :at "
                    f"WHERE id = :id RETURNING {', '.join(_CERT_COLUMNS)}"
                ),
                {"id": certificate_id, "status": status.value, "at": at},
            )
            row = result.first()
        return _certificate_from_row(row) if row is not None else None


# ========================================
# Analytics
# ========================================

_INSERT_EVENT = text(
    """
    INSERT INTO learning_analytics (
        id, user_id, course_id, module_id, quiz_id, session_id,
        event_type, event_data, duration, score, created_at
    ) VALUES (
        :id, :user_id, :course_id, :module_id, :quiz_id, :session_id,
        :event_type, :event_data, :duration, :score, :created_at
    )
    """
).bindparams(bindparam("event_data", type_=JSONB))


class SqlAnalyticsSink:
    """
    Writes learning events to learning_analytics.

    Deliveries run after the originating operation returns, so every event
    gets its own transaction from ``session_factory`` (usually
    ``async_session_scope``).
    """

    def __init__(self, session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]]):
        self.session_factory = session_factory

    async def record(self, event: LearningEvent) -> None:
        params = event.to_dict()
        params["created_at"] = event.created_at
        with translate_errors("record learning event"):
            async with self.session_factory() as session:
                await session.execute(_INSERT_EVENT, params)
