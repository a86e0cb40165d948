"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from assessment.analytics.emitter import AnalyticsEmitter, MemorySink  # noqa: E402
from assessment.certificates.issuer import CertificateIssuer  # noqa: E402
from assessment.core.identity import CourseContext, LearnerIdentity  # noqa: E402
from assessment.db.memory import (  # noqa: E402
    MemoryAttemptRepository,
    MemoryCertificateRepository,
    MemoryConfigurationRepository,
    MemoryQuestionSource,
)
from assessment.quiz.configuration import ConfigurationStore, QuizConfiguration  # noqa: E402
from assessment.quiz.engine import QuizEngine  # noqa: E402
from assessment.quiz.ledger import AttemptLedger  # noqa: E402
from assessment.quiz.question_bank import QuestionBank, build_question  # noqa: E402
from config import Settings  # noqa: E402

COURSE_ID = "course-net-101"
QUIZ_ID = "quiz-osi"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (database tests skip without one)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class Harness:
    """An engine wired to in-memory repositories."""

    engine: QuizEngine
    configs: MemoryConfigurationRepository
    attempts: MemoryAttemptRepository
    certificates: MemoryCertificateRepository
    questions: MemoryQuestionSource
    sink: MemorySink
    clock: FakeClock

    async def configure(self, **rules) -> QuizConfiguration:
        """Create the quiz-specific configuration for the sample quiz."""
        return await self.engine.create_configuration({"course_id": COURSE_ID, "quiz_id": QUIZ_ID, **rules})


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path):
    """Settings isolated from the environment and the home directory."""
    return Settings(
        session_dir=tmp_path / "sessions",
        timer_poll_interval=0.01,
        analytics_endpoint=None,
        record_abandoned_attempts=True,
    )


@pytest.fixture
def learner():
    return LearnerIdentity(learner_id="learner-ada", display_name="Ada Lovelace")


@pytest.fixture
def course():
    return CourseContext(
        course_id=COURSE_ID,
        title="Network Fundamentals",
        enrollment_id="enrollment-1",
        certificates_enabled=True,
    )


@pytest.fixture
def sample_questions():
    """Four questions, five points in total."""
    return [
        build_question(
            id="q1",
            quiz_id=QUIZ_ID,
            question="Which layer of the OSI model handles routing?",
            question_type="multiple-choice",
            options=["Physical Layer", "Data Link Layer", "Network Layer", "Transport Layer"],
            correct_answer="C",
            order_index=0,
        ),
        build_question(
            id="q2",
            quiz_id=QUIZ_ID,
            question="TCP is connection-oriented.",
            question_type="true-false",
            correct_answer="True",
            order_index=1,
        ),
        build_question(
            id="q3",
            quiz_id=QUIZ_ID,
            question="Select the transport protocols.",
            question_type="multiple-choice",
            options=["TCP", "IP", "UDP", "ARP"],
            correct_answer="A, C",
            order_index=2,
        ),
        build_question(
            id="q4",
            quiz_id=QUIZ_ID,
            question="Which protocol resolves IP addresses to MAC addresses?",
            question_type="short-answer",
            correct_answer="ARP",
            points=2,
            order_index=3,
            case_sensitive=False,
        ),
    ]


@pytest.fixture
def correct_answers():
    return {
        "q1": "Network Layer",
        "q2": "True",
        "q3": ["UDP", "TCP"],
        "q4": "arp",
    }


@pytest_asyncio.fixture
async def harness(clock, test_settings, sample_questions):
    configs = MemoryConfigurationRepository()
    attempts = MemoryAttemptRepository()
    certificates = MemoryCertificateRepository()
    questions = MemoryQuestionSource(sample_questions)
    sink = MemorySink()

    engine = QuizEngine(
        config_store=ConfigurationStore(configs, clock=clock),
        question_bank=QuestionBank(questions),
        ledger=AttemptLedger(attempts),
        issuer=CertificateIssuer(certificates, settings=test_settings, clock=clock),
        emitter=AnalyticsEmitter([sink]),
        clock=clock,
        settings=test_settings,
    )
    yield Harness(engine, configs, attempts, certificates, questions, sink, clock)
    await engine.close()
