"""
Analytics Emitter for quiz lifecycle events.

Fire-and-forget: ``emit`` schedules delivery to every sink and returns
immediately. A failing sink is logged and never affects the session
operation that produced the event.

Sinks:
- LoggingSink: writes events to the loguru log
- MemorySink: keeps events in a list (embedding, tests)
- HttpAnalyticsSink: POSTs events to a collector over httpx
- SqlAnalyticsSink (assessment.db.repositories): learning_analytics table
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

import httpx
from loguru import logger

from assessment.core.clock import utcnow
from assessment.db.protocols import AnalyticsSink
from config import Settings


class LearningEventType(str, Enum):
    QUIZ_STARTED = "quiz_started"
    ANSWER_SUBMITTED = "answer_submitted"
    QUIZ_COMPLETED = "quiz_completed"
    QUIZ_ABANDONED = "quiz_abandoned"
    QUIZ_RETAKE_STARTED = "quiz_retake_started"
    CERTIFICATE_EARNED = "certificate_earned"


@dataclass
class LearningEvent:
    event_type: LearningEventType
    learner_id: str
    course_id: str
    quiz_id: str
    module_id: str | None = None
    session_id: str | None = None
    event_data: dict[str, Any] = field(default_factory=dict)
    duration: int = 0  # seconds
    score: int | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type.value,
            "user_id": self.learner_id,
            "course_id": self.course_id,
            "module_id": self.module_id,
            "quiz_id": self.quiz_id,
            "session_id": self.session_id,
            "event_data": self.event_data,
            "duration": self.duration,
            "score": self.score,
            "created_at": self.created_at.isoformat(),
        }


# ========================================
# Sinks
# ========================================


class LoggingSink:
    """Writes events to the application log."""

    async def record(self, event: LearningEvent) -> None:
        logger.debug(
            "Learning event {} quiz={} learner={} data={}",
            event.event_type.value,
            event.quiz_id,
            event.learner_id,
            event.event_data,
        )


class MemorySink:
    """Keeps events in memory."""

    def __init__(self) -> None:
        self.events: list[LearningEvent] = []

    async def record(self, event: LearningEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: LearningEventType) -> list[LearningEvent]:
        return [e for e in self.events if e.event_type is event_type]


class HttpAnalyticsSink:
    """POSTs events as JSON to an analytics collector."""

    def __init__(self, endpoint: str, api_key: str = "", timeout_seconds: float = 5.0):
        self.endpoint = endpoint
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
        )

    async def record(self, event: LearningEvent) -> None:
        response = await self.client.post(self.endpoint, json=event.to_dict())
        response.raise_for_status()

    async def close(self) -> None:
        await self.client.aclose()


# ========================================
# Emitter
# ========================================


class AnalyticsEmitter:
    """Best-effort, non-blocking event delivery."""

    def __init__(self, sinks: Iterable[AnalyticsSink] = (), enabled: bool = True):
        self.sinks = list(sinks)
        self.enabled = enabled
        self._pending: set[asyncio.Task] = set()

    def emit(
        self,
        event_type: LearningEventType,
        *,
        learner_id: str,
        course_id: str,
        quiz_id: str,
        module_id: str | None = None,
        session_id: str | None = None,
        duration: int = 0,
        score: int | None = None,
        **event_data: Any,
    ) -> LearningEvent | None:
        """Schedule delivery of an event to every sink and return immediately."""
        if not self.enabled or not self.sinks:
            return None

        event = LearningEvent(
            event_type=event_type,
            learner_id=learner_id,
            course_id=course_id,
            quiz_id=quiz_id,
            module_id=module_id,
            session_id=session_id,
            event_data=event_data,
            duration=duration,
            score=score,
        )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; dropped learning event {}", event_type.value)
            return None

        for sink in self.sinks:
            task = loop.create_task(self._deliver(sink, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return event

    async def _deliver(self, sink: AnalyticsSink, event: LearningEvent) -> None:
        try:
            await sink.record(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # Intentionally broad - analytics must never fail a session
            logger.warning(
                "Failed to record learning event {} via {}: {}",
                event.event_type.value,
                type(sink).__name__,
                e,
            )

    @classmethod
    def from_settings(cls, settings: Settings, sinks: Iterable[AnalyticsSink] = ()) -> "AnalyticsEmitter":
        """Emitter with a log sink, the HTTP collector when configured, and ``sinks``."""
        configured: list[AnalyticsSink] = [LoggingSink()]
        if settings.analytics_endpoint:
            configured.append(
                HttpAnalyticsSink(
                    settings.analytics_endpoint,
                    api_key=settings.analytics_api_key,
                    timeout_seconds=settings.analytics_timeout_seconds,
                )
            )
        configured.extend(sinks)
        return cls(configured, enabled=settings.analytics_enabled)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        for sink in self.sinks:
            close = getattr(sink, "close", None)
            if close is not None:
                await close()
