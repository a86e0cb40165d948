"""
In-process repositories.

Same contracts as the PostgreSQL repositories, for embedding the engine
without a database and for tests. Conditional writes hold an asyncio.Lock,
which serializes them within one event loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from assessment.certificates.issuer import Certificate, CertificateStatus, with_status
from assessment.core.errors import AttemptLimitExceeded, VerificationCodeConflict
from assessment.quiz.configuration import QuizConfiguration
from assessment.quiz.models import Question, QuizAttempt


class MemoryQuestionSource:
    def __init__(self, questions: Iterable[Question] = ()):
        self._questions: dict[str, list[Question]] = {}
        for question in questions:
            self.add(question)

    def add(self, question: Question) -> None:
        self._questions.setdefault(question.quiz_id, []).append(question)

    async def list_questions(self, quiz_id: str) -> list[Question]:
        return sorted(self._questions.get(quiz_id, []), key=lambda q: q.order_index)


class MemoryConfigurationRepository:
    def __init__(self) -> None:
        self._configs: dict[str, QuizConfiguration] = {}

    async def get(self, config_id: str) -> QuizConfiguration | None:
        return self._configs.get(config_id)

    async def find_latest(self, course_id: str, quiz_id: str | None) -> QuizConfiguration | None:
        matches = [c for c in self._configs.values() if c.course_id == course_id and c.quiz_id == quiz_id]
        # Insertion order breaks created_at ties
        return max(reversed(matches), key=lambda c: c.created_at, default=None)

    async def list_for_course(self, course_id: str) -> list[QuizConfiguration]:
        configs = [c for c in self._configs.values() if c.course_id == course_id]
        return sorted(configs, key=lambda c: c.created_at, reverse=True)

    async def insert(self, config: QuizConfiguration) -> QuizConfiguration:
        self._configs[config.id] = config
        return config

    async def save(self, config: QuizConfiguration) -> QuizConfiguration:
        self._configs[config.id] = config
        return config

    async def delete(self, config_id: str) -> bool:
        return self._configs.pop(config_id, None) is not None


class MemoryAttemptRepository:
    def __init__(self) -> None:
        self._attempts: list[QuizAttempt] = []
        self._lock = asyncio.Lock()

    def _for(self, learner_id: str, quiz_id: str) -> list[QuizAttempt]:
        return [a for a in self._attempts if a.learner_id == learner_id and a.quiz_id == quiz_id]

    async def count(self, learner_id: str, quiz_id: str) -> int:
        return len(self._for(learner_id, quiz_id))

    async def list_for(self, learner_id: str, quiz_id: str) -> list[QuizAttempt]:
        return sorted(self._for(learner_id, quiz_id), key=lambda a: a.attempt_number)

    async def get_by_session(self, session_id: str) -> QuizAttempt | None:
        for attempt in self._attempts:
            if attempt.session_id == session_id:
                return attempt
        return None

    async def append(self, attempt: QuizAttempt, limit: int) -> QuizAttempt:
        async with self._lock:
            existing = await self.get_by_session(attempt.session_id)
            if existing is not None:
                return existing

            count = len(self._for(attempt.learner_id, attempt.quiz_id))
            if count >= limit:
                raise AttemptLimitExceeded(count, limit)

            stored = replace(attempt, attempt_number=count + 1)
            self._attempts.append(stored)
            return stored


class MemoryCertificateRepository:
    def __init__(self) -> None:
        self._certificates: dict[str, Certificate] = {}
        self._lock = asyncio.Lock()

    async def get(self, certificate_id: str) -> Certificate | None:
        return self._certificates.get(certificate_id)

    async def get_by_code(self, verification_code: str) -> Certificate | None:
        for certificate in self._certificates.values():
            if certificate.verification_code == verification_code:
                return certificate
        return None

    async def code_exists(self, verification_code: str) -> bool:
        return await self.get_by_code(verification_code) is not None

    async def find_active(self, learner_id: str, course_id: str, enrollment_id: str | None) -> Certificate | None:
        for certificate in self._certificates.values():
            if (
                certificate.user_id == learner_id
                and certificate.course_id == course_id
                and certificate.enrollment_id == enrollment_id
                and certificate.status is CertificateStatus.ACTIVE
            ):
                return certificate
        return None

    async def insert_if_no_active(self, certificate: Certificate) -> tuple[Certificate, bool]:
        async with self._lock:
            active = await self.find_active(certificate.user_id, certificate.course_id, certificate.enrollment_id)
            if active is not None:
                return active, False
            if await self.code_exists(certificate.verification_code):
                raise VerificationCodeConflict(certificate.verification_code)
            self._certificates[certificate.id] = certificate
            return certificate, True

    async def set_status(self, certificate_id: str, status: CertificateStatus, at: datetime) -> Certificate | None:
        certificate = self._certificates.get(certificate_id)
        if certificate is None:
            return None
        updated = with_status(certificate, status, at)
        self._certificates[certificate_id] = updated
        return updated
