"""
Quiz Engine - the assessment API.

Drives a learner through one quiz attempt:

    start_session -> submit_answer* -> submit_quiz -> QuizResult
                                    -> exit_quiz   (abandon)
                  -> retake_quiz    (fresh session, new shuffle)

The engine is a facade over the configuration store, question bank,
attempt ledger, certificate issuer and analytics emitter. Every dependency
is passed in explicitly; sessions are values owned by the caller.

Timed sessions get a ``SessionTimer`` that auto-submits (or marks the
session time-expired) when the limit runs out. ``tick`` performs the same
check synchronously for callers that drive time themselves.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from loguru import logger

from assessment.analytics.emitter import AnalyticsEmitter, LearningEventType
from assessment.certificates.issuer import Certificate, CertificateIssuer, CertificateVerification
from assessment.core.clock import Clock, utcnow
from assessment.core.errors import (
    AttemptLimitExceeded,
    IncompleteSubmission,
    InfrastructureError,
    SessionNotFound,
    SessionNotInProgress,
)
from assessment.core.identity import CourseContext, LearnerIdentity
from assessment.quiz.configuration import (
    ConfigurationPreset,
    ConfigurationStore,
    QuizConfiguration,
)
from assessment.quiz.ledger import AttemptLedger
from assessment.quiz.models import (
    Answer,
    AnswerValue,
    AttemptStatus,
    Question,
    QuizAttempt,
    QuizResult,
)
from assessment.quiz.question_bank import QuestionBank, create_seed, materialize
from assessment.quiz.scoring import is_passing, score_answers
from assessment.quiz.session import QuizSession, SessionTimer
from assessment.quiz.session_store import SessionStore
from config import Settings, get_settings

PASS_FEEDBACK = "Congratulations! You have successfully completed this quiz."
FAIL_FEEDBACK = "You need {threshold}% to pass. Consider reviewing the material and trying again."


def default_feedback(configuration: QuizConfiguration, passed: bool) -> str:
    """Author override when set, otherwise the stock pass/fail message."""
    if configuration.custom_feedback:
        return configuration.custom_feedback
    if passed:
        return PASS_FEEDBACK
    return FAIL_FEEDBACK.format(threshold=configuration.pass_threshold)


class QuizEngine:
    """
    Orchestrates quiz sessions.

    Args:
        config_store: Resolves and edits quiz configurations
        question_bank: Loads question sets
        ledger: Attempt counting and recording
        issuer: Certificate issuing and verification
        emitter: Analytics (optional; events are dropped without one)
        clock: Wall clock, injectable for tests
        settings: Application settings (defaults to ``get_settings()``)
        session_store: Snapshot persistence for resume (optional)
    """

    def __init__(
        self,
        config_store: ConfigurationStore,
        question_bank: QuestionBank,
        ledger: AttemptLedger,
        issuer: CertificateIssuer,
        emitter: Optional[AnalyticsEmitter] = None,
        clock: Clock = utcnow,
        settings: Optional[Settings] = None,
        session_store: Optional[SessionStore] = None,
    ):
        self.config_store = config_store
        self.question_bank = question_bank
        self.ledger = ledger
        self.issuer = issuer
        self.emitter = emitter or AnalyticsEmitter(enabled=False)
        self.clock = clock
        self.settings = settings or get_settings()
        self.session_store = session_store

        self._timers: dict[str, SessionTimer] = {}
        self._submit_locks: dict[str, asyncio.Lock] = {}

    # ========================================
    # Session lifecycle
    # ========================================

    async def start_session(
        self,
        learner: LearnerIdentity,
        course: CourseContext,
        quiz_id: str,
        module_id: Optional[str] = None,
        seed: str | int | None = None,
    ) -> QuizSession:
        """
        Start a new attempt.

        Raises:
            AttemptLimitExceeded: the learner has no attempts left
            NoQuestionsFound: the quiz has no questions
        """
        configuration = await self.config_store.resolve(course.course_id, quiz_id)
        count = await self.ledger.ensure_can_attempt(learner.learner_id, quiz_id, configuration)
        questions = await self.question_bank.load(quiz_id)

        session_seed = create_seed(seed)
        session = QuizSession(
            quiz_id=quiz_id,
            course_id=course.course_id,
            module_id=module_id,
            learner_id=learner.learner_id,
            enrollment_id=course.enrollment_id,
            configuration=configuration,
            questions=materialize(questions, configuration, session_seed),
            seed=session_seed,
            attempt_number=count + 1,
            learner=learner,
            course=course,
        )
        session.begin(self.clock())

        self._arm_timer(session)
        self._snapshot(session)

        logger.info(
            "Started session {} for learner {} on quiz {} (attempt {}, {} questions)",
            session.id,
            learner.learner_id,
            quiz_id,
            session.attempt_number,
            len(session.questions),
        )
        self._emit(
            LearningEventType.QUIZ_STARTED,
            session,
            question_count=len(session.questions),
            attempt_number=session.attempt_number,
            time_limit=configuration.time_limit,
        )
        return session

    async def submit_answer(self, session: QuizSession, question_id: str, value: AnswerValue) -> Answer:
        """
        Record (or replace) the answer to one question.

        Raises:
            SessionNotInProgress: the session is terminal or its time ran out
            UnknownQuestion: the question is not part of the session
            OutOfOrderAnswer: skipping is disabled and this is not the current question
        """
        await self.tick(session)
        answer = session.record_answer(question_id, value, self.clock())
        self._snapshot(session)

        self._emit(
            LearningEventType.ANSWER_SUBMITTED,
            session,
            duration=answer.time_spent,
            question_id=question_id,
            is_correct=answer.is_correct,
            question_index=session.current_question_index,
        )
        return answer

    async def advance(self, session: QuizSession, step: int = 1) -> Question:
        """Move the cursor by ``step``, clamped to the question list."""
        await self.tick(session)
        last = len(session.questions) - 1
        target = max(0, min(last, session.current_question_index + step))
        question = session.move_to(target, self.clock())
        self._snapshot(session)
        return question

    async def go_to(self, session: QuizSession, index: int) -> Question:
        """
        Jump to a question.

        Raises:
            IndexError: ``index`` is outside the question list
        """
        await self.tick(session)
        question = session.move_to(index, self.clock())
        self._snapshot(session)
        return question

    async def tick(self, session: QuizSession) -> Optional[int]:
        """
        Recompute remaining time and handle expiry.

        Returns:
            Seconds remaining, or None for untimed sessions
        """
        if session.refresh_time(self.clock()):
            await self._expire(session)
        return session.time_remaining

    async def submit_quiz(self, session: QuizSession) -> QuizResult:
        """
        Score the session and record the attempt.

        A second call returns the same result. A failed record leaves the
        session unsubmitted so the call can be retried.

        Raises:
            SessionNotInProgress: the session was abandoned
            IncompleteSubmission: all questions are required and some are unanswered
            AttemptLimitExceeded: a concurrent session used the last attempt
        """
        lock = self._submit_locks.setdefault(session.id, asyncio.Lock())
        async with lock:
            if session.result is not None:
                if session.certificate_pending:
                    await self._issue_certificate(session)
                self._release(session)
                return session.result

            now = self.clock()
            if session.refresh_time(now):
                session.mark_time_expired(now)
            if not (session.is_in_progress or session.awaiting_submission):
                self._release(session)
                raise SessionNotInProgress(session.id, session.status.value)

            configuration = session.configuration
            if configuration.require_all_questions and not session.timed_out and session.unanswered:
                raise IncompleteSubmission(session.unanswered)

            breakdown = score_answers(session.questions, session.answers)
            time_spent = session.time_spent(now)
            completed_at = session.completed_at or now

            attempt = QuizAttempt(
                quiz_id=session.quiz_id,
                course_id=session.course_id,
                module_id=session.module_id,
                learner_id=session.learner_id,
                session_id=session.id,
                status=AttemptStatus.COMPLETED,
                answers=list(session.answers.values()),
                score=breakdown.score,
                total_points=breakdown.total_points,
                earned_points=breakdown.earned_points,
                time_spent=time_spent,
                completed_at=completed_at,
            )
            stored = await self.ledger.record(attempt, configuration)
            passed = is_passing(stored.score, configuration.pass_threshold)

            result = QuizResult(
                quiz_id=session.quiz_id,
                course_id=session.course_id,
                module_id=session.module_id,
                score=stored.score,
                total_questions=breakdown.total_questions,
                correct_answers=breakdown.correct_answers,
                total_points=stored.total_points,
                earned_points=stored.earned_points,
                time_spent=stored.time_spent,
                passed=passed,
                pass_threshold=configuration.pass_threshold,
                completed_at=stored.completed_at or completed_at,
                answers=list(stored.answers),
                feedback=default_feedback(configuration, passed),
                timed_out=session.timed_out,
                attempt_number=stored.attempt_number,
                attempts_remaining=self.ledger.remaining(stored.attempt_number, configuration),
                can_retake=self.ledger.allows(stored.attempt_number, configuration),
            )
            session.mark_submitted(result, now)
            self._disarm(session)

            logger.info(
                "Session {} submitted: score={} passed={} (attempt {})",
                session.id,
                result.score,
                result.passed,
                result.attempt_number,
            )
            self._emit(
                LearningEventType.QUIZ_COMPLETED,
                session,
                duration=result.time_spent,
                score=result.score,
                passed=result.passed,
                correct_answers=result.correct_answers,
                total_questions=result.total_questions,
                timed_out=result.timed_out,
                attempt_number=result.attempt_number,
            )

            if result.passed:
                session.certificate_pending = True
                await self._issue_certificate(session)
            self._release(session)
            return result

    async def exit_quiz(self, session: QuizSession) -> Optional[QuizAttempt]:
        """
        Abandon an in-progress session.

        Answered sessions are recorded as an abandoned attempt (counting
        toward the limit) unless ``record_abandoned_attempts`` is off.
        Exiting a terminal session does nothing.

        Returns:
            The abandoned attempt record, if one was written
        """
        if not session.is_in_progress:
            return None

        now = self.clock()
        recorded = None
        if self.settings.record_abandoned_attempts and session.answers:
            recorded = await self._record_abandoned(session, now)

        session.mark_abandoned(now)
        self._disarm(session)
        self._submit_locks.pop(session.id, None)

        logger.info("Session {} abandoned after {} answer(s)", session.id, len(session.answers))
        self._emit(
            LearningEventType.QUIZ_ABANDONED,
            session,
            duration=session.time_spent(now),
            answered=len(session.answers),
            question_index=session.current_question_index,
            recorded=recorded is not None,
        )
        return recorded

    async def retake_quiz(self, session: QuizSession) -> QuizSession:
        """
        Start a fresh attempt at the same quiz with a new shuffle seed.

        An in-progress session is abandoned first.

        Raises:
            AttemptLimitExceeded: the ledger does not allow another attempt
        """
        learner, course = self._context_for(session)
        configuration = await self.config_store.resolve(session.course_id, session.quiz_id)

        count = await self.ledger.count_attempts(session.learner_id, session.quiz_id)
        if session.is_in_progress and self.settings.record_abandoned_attempts and session.answers:
            count += 1
        if not self.ledger.allows(count, configuration):
            raise AttemptLimitExceeded(count, configuration.retake_limit)

        await self.exit_quiz(session)
        new_session = await self.start_session(learner, course, session.quiz_id, module_id=session.module_id)

        self._emit(
            LearningEventType.QUIZ_RETAKE_STARTED,
            new_session,
            previous_session_id=session.id,
            previous_score=session.result.score if session.result else None,
            attempt_number=new_session.attempt_number,
        )
        return new_session

    async def resume_session(
        self,
        snapshot: Mapping[str, Any] | str,
        learner: Optional[LearnerIdentity] = None,
        course: Optional[CourseContext] = None,
    ) -> QuizSession:
        """
        Rebuild a session from a snapshot (or a stored session id) and re-arm its timer.

        Raises:
            SessionNotFound: no resumable snapshot exists for the id
        """
        if isinstance(snapshot, str):
            data = self.session_store.load_snapshot(snapshot) if self.session_store else None
            if data is None:
                raise SessionNotFound(snapshot)
            snapshot = data

        session = QuizSession.from_dict(dict(snapshot))
        session.learner = learner
        session.course = course

        if session.is_in_progress:
            if session.refresh_time(self.clock()):
                await self._expire(session)
            else:
                self._arm_timer(session)
        logger.info("Resumed session {} ({})", session.id, session.status.value)
        return session

    async def close(self) -> None:
        """Cancel every timer, then flush and close the analytics sinks."""
        timers = list(self._timers.values())
        self._timers.clear()
        await asyncio.gather(*(timer.stop() for timer in timers))
        await self.emitter.aclose()
        self._submit_locks.clear()

    # ========================================
    # Configuration
    # ========================================

    def list_presets(self) -> list[ConfigurationPreset]:
        return self.config_store.presets()

    async def resolve_configuration(self, course_id: str, quiz_id: Optional[str] = None) -> QuizConfiguration:
        return await self.config_store.resolve(course_id, quiz_id)

    async def create_configuration(self, data: Mapping[str, Any]) -> QuizConfiguration:
        return await self.config_store.create(data)

    async def update_configuration(self, config_id: str, patch: Mapping[str, Any]) -> QuizConfiguration:
        return await self.config_store.update(config_id, patch)

    async def apply_preset(self, config_id: str, preset_id: str) -> QuizConfiguration:
        return await self.config_store.apply_preset(config_id, preset_id)

    async def duplicate_configuration(
        self,
        source_id: str,
        target_course_id: str,
        target_quiz_id: Optional[str] = None,
    ) -> QuizConfiguration:
        return await self.config_store.duplicate(source_id, target_course_id, target_quiz_id)

    # ========================================
    # Certificates
    # ========================================

    async def verify_certificate(self, code: str) -> CertificateVerification:
        return await self.issuer.verify(code)

    # ========================================
    # Internals
    # ========================================

    def _context_for(self, session: QuizSession) -> tuple[LearnerIdentity, CourseContext]:
        learner = session.learner or LearnerIdentity(learner_id=session.learner_id)
        course = session.course or CourseContext(course_id=session.course_id, enrollment_id=session.enrollment_id)
        return learner, course

    def _release(self, session: QuizSession) -> None:
        """Drop the submit lock once no certificate retry is outstanding."""
        if not session.certificate_pending:
            self._submit_locks.pop(session.id, None)

    def _arm_timer(self, session: QuizSession) -> None:
        if session.configuration.time_limit is None:
            return
        timer = SessionTimer(
            session,
            clock=self.clock,
            on_expire=self._expire,
            poll_interval=self.settings.timer_poll_interval,
        )
        self._timers[session.id] = timer
        timer.start()

    def _disarm(self, session: QuizSession) -> None:
        timer = self._timers.pop(session.id, None)
        if timer is not None:
            timer.cancel()
        if self.session_store is not None:
            self.session_store.delete(session.id)

    async def _expire(self, session: QuizSession) -> None:
        if not session.is_in_progress:
            return
        session.mark_time_expired(self.clock())
        logger.info("Session {} ran out of time", session.id)

        if session.configuration.auto_submit:
            await self.submit_quiz(session)
        else:
            timer = self._timers.pop(session.id, None)
            if timer is not None:
                timer.cancel()
            self._snapshot(session)

    async def _record_abandoned(self, session: QuizSession, now: datetime) -> Optional[QuizAttempt]:
        breakdown = score_answers(session.questions, session.answers)
        attempt = QuizAttempt(
            quiz_id=session.quiz_id,
            course_id=session.course_id,
            module_id=session.module_id,
            learner_id=session.learner_id,
            session_id=session.id,
            status=AttemptStatus.ABANDONED,
            answers=list(session.answers.values()),
            score=breakdown.score,
            total_points=breakdown.total_points,
            earned_points=breakdown.earned_points,
            time_spent=session.time_spent(now),
            completed_at=now,
        )
        try:
            return await self.ledger.record(attempt, session.configuration)
        except AttemptLimitExceeded as e:
            logger.warning("Abandoned session {} not recorded: {}", session.id, e)
            return None

    async def _issue_certificate(self, session: QuizSession) -> Optional[Certificate]:
        result = session.result
        learner, course = self._context_for(session)
        try:
            certificate = await self.issuer.issue_if_eligible(result, learner, course)
        except InfrastructureError as e:
            logger.error("Certificate issuance for session {} deferred: {}", session.id, e)
            return None

        session.certificate_pending = False
        if certificate is None:
            return None

        result.certificate = certificate
        if _issued_for(certificate, result):
            self._emit(
                LearningEventType.CERTIFICATE_EARNED,
                session,
                score=result.score,
                certificate_id=certificate.id,
                certificate_number=certificate.certificate_number,
            )
        return certificate

    def _snapshot(self, session: QuizSession) -> None:
        if self.session_store is None:
            return
        try:
            self.session_store.save(session)
        except OSError as e:
            logger.warning("Could not snapshot session {}: {}", session.id, e)

    def _emit(
        self,
        event_type: LearningEventType,
        session: QuizSession,
        duration: int = 0,
        score: Optional[int] = None,
        **data: Any,
    ) -> None:
        self.emitter.emit(
            event_type,
            learner_id=session.learner_id,
            course_id=session.course_id,
            quiz_id=session.quiz_id,
            module_id=session.module_id,
            session_id=session.id,
            duration=duration,
            score=score,
            **data,
        )


def _issued_for(certificate: Certificate, result: QuizResult) -> bool:
    """Whether the certificate was minted for this result rather than an earlier one."""
    return (
        certificate.metadata.get("quiz_id") == result.quiz_id
        and certificate.metadata.get("attempt_number") == result.attempt_number
    )
