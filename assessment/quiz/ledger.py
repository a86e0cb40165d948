"""
Attempt Ledger.

Tracks attempt history per (learner, quiz) and enforces the attempt
ceiling: a learner may record at most ``max_attempts`` attempts, and only
one when retakes are disabled. History is append-only; recording goes
through the repository's conditional append so two concurrent sessions
cannot both push the count over the limit.
"""

from __future__ import annotations

from loguru import logger

from assessment.core.errors import AttemptLimitExceeded
from assessment.db.protocols import AttemptRepository
from assessment.quiz.configuration import QuizConfiguration
from assessment.quiz.models import QuizAttempt


class AttemptLedger:
    """Attempt counting, retake eligibility and recording."""

    def __init__(self, repository: AttemptRepository):
        self.repository = repository

    async def count_attempts(self, learner_id: str, quiz_id: str) -> int:
        """Recorded attempts for the pair, any status."""
        return await self.repository.count(learner_id, quiz_id)

    async def history(self, learner_id: str, quiz_id: str) -> list[QuizAttempt]:
        return await self.repository.list_for(learner_id, quiz_id)

    @staticmethod
    def allows(count: int, configuration: QuizConfiguration) -> bool:
        if count >= configuration.max_attempts:
            return False
        if count >= 1 and not configuration.allow_retake:
            return False
        return True

    async def can_attempt(self, learner_id: str, quiz_id: str, configuration: QuizConfiguration) -> bool:
        count = await self.count_attempts(learner_id, quiz_id)
        return self.allows(count, configuration)

    async def ensure_can_attempt(
        self, learner_id: str, quiz_id: str, configuration: QuizConfiguration
    ) -> int:
        """
        Check eligibility for a new attempt.

        Returns:
            The number of attempts already recorded

        Raises:
            AttemptLimitExceeded: with the current count and the effective limit
        """
        count = await self.count_attempts(learner_id, quiz_id)
        if not self.allows(count, configuration):
            logger.info(
                "Learner {} blocked from quiz {}: {}/{} attempts",
                learner_id,
                quiz_id,
                count,
                configuration.retake_limit,
            )
            raise AttemptLimitExceeded(count, configuration.retake_limit)
        return count

    @staticmethod
    def remaining(count: int, configuration: QuizConfiguration) -> int:
        return max(0, configuration.retake_limit - count)

    async def attempts_remaining(
        self, learner_id: str, quiz_id: str, configuration: QuizConfiguration
    ) -> int:
        count = await self.count_attempts(learner_id, quiz_id)
        return self.remaining(count, configuration)

    async def record(self, attempt: QuizAttempt, configuration: QuizConfiguration) -> QuizAttempt:
        """
        Append an attempt under the configuration's limit.

        Idempotent per session: recording the same session again returns the
        stored attempt.
        """
        stored = await self.repository.append(attempt, configuration.retake_limit)
        logger.info(
            "Recorded {} attempt #{} for learner {} on quiz {} (score={})",
            stored.status.value,
            stored.attempt_number,
            stored.learner_id,
            stored.quiz_id,
            stored.score,
        )
        return stored
