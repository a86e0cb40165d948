"""
Unit tests for certificate issuing and verification.
"""

from datetime import timedelta
from itertools import repeat

import pytest

from assessment.certificates.issuer import CODE_ALPHABET, CertificateIssuer, CertificateStatus
from assessment.core.errors import CodeGenerationExhausted
from assessment.core.identity import CourseContext
from assessment.db.memory import MemoryCertificateRepository
from assessment.quiz.models import QuizResult


@pytest.fixture
def repository():
    return MemoryCertificateRepository()


@pytest.fixture
def issuer(repository, test_settings, clock):
    return CertificateIssuer(repository, settings=test_settings, clock=clock)


def _result(clock, passed=True, score=92, attempt_number=1):
    return QuizResult(
        quiz_id="quiz-osi",
        course_id="course-net-101",
        score=score,
        total_questions=4,
        correct_answers=4 if passed else 1,
        total_points=5,
        earned_points=5 if passed else 1,
        time_spent=240,
        passed=passed,
        pass_threshold=80,
        completed_at=clock(),
        attempt_number=attempt_number,
    )


class TestGeneration:
    def test_verification_code_shape(self, issuer):
        for _ in range(50):
            code = issuer.generate_verification_code()
            assert len(code) == 8
            assert set(code) <= set(CODE_ALPHABET)

    def test_alphabet_has_no_lookalikes(self):
        assert not set("01IO") & set(CODE_ALPHABET)

    def test_certificate_number_format(self, issuer):
        number = issuer.generate_certificate_number()

        prefix, date, suffix = number.split("-")
        assert prefix == "CERT"
        assert date == "20250301"
        assert len(suffix) == 6


class TestIssue:
    @pytest.mark.asyncio
    async def test_failed_result_not_eligible(self, issuer, learner, course, clock):
        assert await issuer.issue_if_eligible(_result(clock, passed=False, score=40), learner, course) is None

    @pytest.mark.asyncio
    async def test_disabled_course_not_eligible(self, issuer, learner, clock):
        course = CourseContext(course_id="course-net-101", certificates_enabled=False)

        assert await issuer.issue_if_eligible(_result(clock), learner, course) is None

    @pytest.mark.asyncio
    async def test_issues_for_passing_result(self, issuer, learner, course, clock):
        certificate = await issuer.issue_if_eligible(_result(clock), learner, course)

        assert certificate.status is CertificateStatus.ACTIVE
        assert certificate.user_id == "learner-ada"
        assert certificate.enrollment_id == "enrollment-1"
        assert certificate.recipient_name == "Ada Lovelace"
        assert certificate.course_title == "Network Fundamentals"
        assert certificate.score == 92
        assert certificate.issued_by == "Winbro Training Reels"
        assert certificate.expires_at is None
        assert issuer.is_well_formed(certificate.verification_code)

    @pytest.mark.asyncio
    async def test_validity_period_sets_expiry(self, issuer, learner, clock):
        course = CourseContext(course_id="c1", certificates_enabled=True, certificate_validity_days=365)

        certificate = await issuer.issue_if_eligible(_result(clock), learner, course)

        assert certificate.expires_at == clock() + timedelta(days=365)

    @pytest.mark.asyncio
    async def test_second_pass_returns_existing_certificate(self, issuer, learner, course, clock):
        first = await issuer.issue_if_eligible(_result(clock), learner, course)
        second = await issuer.issue_if_eligible(_result(clock, score=100, attempt_number=2), learner, course)

        assert second.id == first.id
        assert second.score == 92

    @pytest.mark.asyncio
    async def test_revoked_certificate_allows_reissue(self, issuer, learner, course, clock):
        first = await issuer.issue_if_eligible(_result(clock), learner, course)
        await issuer.revoke(first.id)

        second = await issuer.issue_if_eligible(_result(clock, attempt_number=2), learner, course)

        assert second.id != first.id
        assert second.verification_code != first.verification_code

    @pytest.mark.asyncio
    async def test_code_collision_regenerates(self, issuer, repository, learner, course, clock, monkeypatch):
        taken = await issuer.issue_if_eligible(
            _result(clock), learner, CourseContext(course_id="other", certificates_enabled=True)
        )
        codes = iter([taken.verification_code, "ABCDEFGH"])
        monkeypatch.setattr(issuer, "generate_verification_code", lambda: next(codes))

        certificate = await issuer.issue_if_eligible(_result(clock), learner, course)

        assert certificate.verification_code == "ABCDEFGH"

    @pytest.mark.asyncio
    async def test_collisions_exhaust_retries(self, issuer, learner, course, clock, monkeypatch):
        taken = await issuer.issue_if_eligible(
            _result(clock), learner, CourseContext(course_id="other", certificates_enabled=True)
        )
        codes = repeat(taken.verification_code)
        monkeypatch.setattr(issuer, "generate_verification_code", lambda: next(codes))

        with pytest.raises(CodeGenerationExhausted) as exc_info:
            await issuer.issue_if_eligible(_result(clock), learner, course)

        assert exc_info.value.attempts == 5


class TestVerify:
    @pytest.mark.asyncio
    async def test_valid(self, issuer, learner, course, clock):
        certificate = await issuer.issue_if_eligible(_result(clock), learner, course)

        verification = await issuer.verify(certificate.verification_code.lower())

        assert verification.is_valid is True
        assert verification.message == "Certificate is valid and active"
        assert verification.certificate.id == certificate.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["ZZZZZZZZ", "short", "", None, "O0O0O0O0"])
    async def test_unknown_or_malformed_codes(self, issuer, code):
        verification = await issuer.verify(code)

        assert verification.is_valid is False
        assert verification.certificate is None
        assert verification.message == "Certificate not found or invalid"

    @pytest.mark.asyncio
    async def test_revoked(self, issuer, learner, course, clock):
        certificate = await issuer.issue_if_eligible(_result(clock), learner, course)
        revoked = await issuer.revoke(certificate.id)

        verification = await issuer.verify(certificate.verification_code)

        assert revoked.status is CertificateStatus.REVOKED
        assert verification.is_valid is False
        assert verification.message == "Certificate has been revoked"

    @pytest.mark.asyncio
    async def test_expired_by_date(self, issuer, learner, clock):
        course = CourseContext(course_id="c1", certificates_enabled=True, certificate_validity_days=30)
        certificate = await issuer.issue_if_eligible(_result(clock), learner, course)
        clock.advance(31 * 24 * 3600)

        verification = await issuer.verify(certificate.verification_code)

        assert verification.is_valid is False
        assert verification.message == "Certificate has expired"

    @pytest.mark.asyncio
    async def test_expired_by_status(self, issuer, learner, course, clock):
        certificate = await issuer.issue_if_eligible(_result(clock), learner, course)
        await issuer.expire(certificate.id)

        verification = await issuer.verify(certificate.verification_code)

        assert verification.message == "Certificate has expired"

    @pytest.mark.asyncio
    async def test_status_change_on_unknown_certificate(self, issuer):
        assert await issuer.revoke("missing") is None
