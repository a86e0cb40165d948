"""
Unit tests for attempt counting and the retake policy.
"""

import asyncio

import pytest

from assessment.core.errors import AttemptLimitExceeded
from assessment.db.memory import MemoryAttemptRepository
from assessment.quiz.configuration import QuizConfiguration
from assessment.quiz.ledger import AttemptLedger
from assessment.quiz.models import AttemptStatus, QuizAttempt


def _attempt(session_id: str, learner_id: str = "learner-1", quiz_id: str = "quiz-1") -> QuizAttempt:
    return QuizAttempt(
        quiz_id=quiz_id,
        course_id="course-1",
        learner_id=learner_id,
        session_id=session_id,
        status=AttemptStatus.COMPLETED,
        score=50,
    )


@pytest.fixture
def ledger():
    return AttemptLedger(MemoryAttemptRepository())


class TestAllows:
    def test_under_max_with_retakes(self):
        config = QuizConfiguration(course_id="c1", max_attempts=3, allow_retake=True)
        assert AttemptLedger.allows(0, config)
        assert AttemptLedger.allows(2, config)
        assert not AttemptLedger.allows(3, config)

    def test_retake_disabled_allows_only_first_attempt(self):
        config = QuizConfiguration(course_id="c1", max_attempts=5, allow_retake=False)
        assert AttemptLedger.allows(0, config)
        assert not AttemptLedger.allows(1, config)

    def test_remaining_uses_effective_limit(self):
        config = QuizConfiguration(course_id="c1", max_attempts=5, allow_retake=False)
        assert AttemptLedger.remaining(0, config) == 1
        assert AttemptLedger.remaining(1, config) == 0
        assert AttemptLedger.remaining(7, config) == 0


class TestLedger:
    @pytest.mark.asyncio
    async def test_record_assigns_attempt_numbers(self, ledger):
        config = QuizConfiguration(course_id="c1", max_attempts=3)

        first = await ledger.record(_attempt("s1"), config)
        second = await ledger.record(_attempt("s2"), config)

        assert (first.attempt_number, second.attempt_number) == (1, 2)
        assert await ledger.count_attempts("learner-1", "quiz-1") == 2
        assert [a.session_id for a in await ledger.history("learner-1", "quiz-1")] == ["s1", "s2"]

    @pytest.mark.asyncio
    async def test_record_is_idempotent_per_session(self, ledger):
        config = QuizConfiguration(course_id="c1", max_attempts=3)

        first = await ledger.record(_attempt("s1"), config)
        again = await ledger.record(_attempt("s1"), config)

        assert again.id == first.id
        assert await ledger.count_attempts("learner-1", "quiz-1") == 1

    @pytest.mark.asyncio
    async def test_record_refuses_over_limit(self, ledger):
        config = QuizConfiguration(course_id="c1", max_attempts=1)
        await ledger.record(_attempt("s1"), config)

        with pytest.raises(AttemptLimitExceeded) as exc_info:
            await ledger.record(_attempt("s2"), config)

        assert exc_info.value.to_dict() == {"count": 1, "max": 1}

    @pytest.mark.asyncio
    async def test_concurrent_records_never_exceed_limit(self, ledger):
        config = QuizConfiguration(course_id="c1", max_attempts=2)

        results = await asyncio.gather(
            *(ledger.record(_attempt(f"s{i}"), config) for i in range(5)),
            return_exceptions=True,
        )

        recorded = [r for r in results if isinstance(r, QuizAttempt)]
        refused = [r for r in results if isinstance(r, AttemptLimitExceeded)]
        assert len(recorded) == 2
        assert len(refused) == 3
        assert await ledger.count_attempts("learner-1", "quiz-1") == 2

    @pytest.mark.asyncio
    async def test_ensure_can_attempt_reports_effective_limit(self, ledger):
        config = QuizConfiguration(course_id="c1", max_attempts=4, allow_retake=False)
        assert await ledger.ensure_can_attempt("learner-1", "quiz-1", config) == 0
        await ledger.record(_attempt("s1"), config)

        with pytest.raises(AttemptLimitExceeded) as exc_info:
            await ledger.ensure_can_attempt("learner-1", "quiz-1", config)

        assert exc_info.value.count == 1
        assert exc_info.value.max_attempts == 1

    @pytest.mark.asyncio
    async def test_counts_are_per_learner_and_quiz(self, ledger):
        config = QuizConfiguration(course_id="c1", max_attempts=1)
        await ledger.record(_attempt("s1"), config)

        assert await ledger.can_attempt("learner-2", "quiz-1", config)
        assert await ledger.can_attempt("learner-1", "quiz-2", config)
        assert not await ledger.can_attempt("learner-1", "quiz-1", config)
        assert await ledger.attempts_remaining("learner-1", "quiz-1", config) == 0
