"""
Certificate issuing and public verification.

A certificate is minted only for a passing result in a course with
certificates enabled, and only when the learner holds no active certificate
for the same enrollment. Verification codes are drawn from an alphabet
without look-alike characters (no 0/O, no 1/I) and checked for uniqueness
before insertion; collisions regenerate a bounded number of times.

``verify`` is reachable without authentication, so unknown codes produce a
negative verification instead of an error.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from loguru import logger

from assessment.core.clock import Clock, utcnow
from assessment.core.errors import CodeGenerationExhausted, VerificationCodeConflict
from assessment.core.identity import CourseContext, LearnerIdentity
from assessment.db.protocols import CertificateRepository
from assessment.quiz.models import QuizResult
from config import Settings, get_settings

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CERTIFICATE_NUMBER_SUFFIX_LENGTH = 6


class CertificateStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass
class Certificate:
    """Issued certificate. Only ``status`` changes after issuance."""

    user_id: str
    course_id: str
    enrollment_id: str | None
    certificate_number: str
    recipient_name: str
    course_title: str
    completion_date: datetime
    score: int
    verification_code: str
    title: str = "Certificate of Completion"
    template_id: str = "default"
    issued_by: str = ""
    status: CertificateStatus = CertificateStatus.ACTIVE
    expires_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        if self.status is CertificateStatus.EXPIRED:
            return True
        return self.expires_at is not None and self.expires_at <= now


@dataclass
class CertificateVerification:
    """Outcome of a public verification lookup."""

    certificate: Certificate | None
    is_valid: bool
    message: str
    verified_at: datetime


class CertificateIssuer:
    """Mints, verifies and changes the status of certificates."""

    def __init__(
        self,
        repository: CertificateRepository,
        settings: Settings | None = None,
        clock: Clock = utcnow,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.clock = clock

    # ========================================
    # Generation
    # ========================================

    def generate_verification_code(self) -> str:
        length = self.settings.certificate_code_length
        return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))

    def generate_certificate_number(self) -> str:
        """Human-readable number: CERT-YYYYMMDD-XXXXXX."""
        suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CERTIFICATE_NUMBER_SUFFIX_LENGTH))
        return f"CERT-{self.clock():%Y%m%d}-{suffix}"

    def is_well_formed(self, code: str) -> bool:
        return len(code) == self.settings.certificate_code_length and all(c in CODE_ALPHABET for c in code)

    # ========================================
    # Issuing
    # ========================================

    async def issue_if_eligible(
        self,
        result: QuizResult,
        learner: LearnerIdentity,
        course: CourseContext,
    ) -> Certificate | None:
        """
        Issue a certificate for a passing result.

        Returns:
            The new certificate, the learner's existing active certificate for
            this enrollment, or None when the result is not eligible.

        Raises:
            CodeGenerationExhausted: no unique verification code could be found
        """
        if not result.passed or not course.certificates_enabled:
            return None

        existing = await self.repository.find_active(learner.learner_id, course.course_id, course.enrollment_id)
        if existing is not None:
            logger.info(
                "Learner {} already holds certificate {} for course {}",
                learner.learner_id,
                existing.certificate_number,
                course.course_id,
            )
            return existing

        max_retries = self.settings.certificate_code_max_retries
        now = self.clock()
        expires_at = (
            now + timedelta(days=course.certificate_validity_days)
            if course.certificate_validity_days
            else None
        )

        for attempt in range(1, max_retries + 1):
            code = self.generate_verification_code()
            if await self.repository.code_exists(code):
                logger.warning("Verification code collision (attempt {}/{})", attempt, max_retries)
                continue

            certificate = Certificate(
                user_id=learner.learner_id,
                course_id=course.course_id,
                enrollment_id=course.enrollment_id,
                certificate_number=self.generate_certificate_number(),
                title=self.settings.certificate_title,
                recipient_name=learner.display_name,
                course_title=course.title,
                completion_date=result.completed_at,
                score=result.score,
                template_id=course.certificate_template or self.settings.certificate_template,
                issued_by=self.settings.certificate_issuer,
                verification_code=code,
                expires_at=expires_at,
                metadata={"quiz_id": result.quiz_id, "attempt_number": result.attempt_number},
                created_at=now,
                updated_at=now,
            )
            try:
                stored, created = await self.repository.insert_if_no_active(certificate)
            except VerificationCodeConflict:
                logger.warning("Verification code taken at insert (attempt {}/{})", attempt, max_retries)
                continue

            if created:
                logger.info(
                    "Issued certificate {} to learner {} for course {}",
                    stored.certificate_number,
                    learner.learner_id,
                    course.course_id,
                )
            return stored

        logger.error("Verification code generation exhausted after {} attempts", max_retries)
        raise CodeGenerationExhausted(max_retries)

    # ========================================
    # Verification
    # ========================================

    async def verify(self, code: str | None) -> CertificateVerification:
        """Look up a certificate by verification code; never raises for unknown codes."""
        now = self.clock()
        normalized = (code or "").strip().upper()

        certificate = None
        if self.is_well_formed(normalized):
            certificate = await self.repository.get_by_code(normalized)

        if certificate is None:
            return CertificateVerification(None, False, "Certificate not found or invalid", now)
        if certificate.status is CertificateStatus.REVOKED:
            return CertificateVerification(certificate, False, "Certificate has been revoked", now)
        if certificate.is_expired(now):
            return CertificateVerification(certificate, False, "Certificate has expired", now)
        return CertificateVerification(certificate, True, "Certificate is valid and active", now)

    # ========================================
    # Administrative status changes
    # ========================================

    async def revoke(self, certificate_id: str) -> Certificate | None:
        certificate = await self.repository.set_status(certificate_id, CertificateStatus.REVOKED, self.clock())
        if certificate is not None:
            logger.info("Revoked certificate {}", certificate.certificate_number)
        return certificate

    async def expire(self, certificate_id: str) -> Certificate | None:
        certificate = await self.repository.set_status(certificate_id, CertificateStatus.EXPIRED, self.clock())
        if certificate is not None:
            logger.info("Expired certificate {}", certificate.certificate_number)
        return certificate


def with_status(certificate: Certificate, status: CertificateStatus, at: datetime) -> Certificate:
    """Copy of a certificate with a new status."""
    return replace(certificate, status=status, updated_at=at)
