"""Learning analytics for quiz sessions."""

from .emitter import (
    AnalyticsEmitter,
    HttpAnalyticsSink,
    LearningEvent,
    LearningEventType,
    LoggingSink,
    MemorySink,
)

__all__ = [
    "AnalyticsEmitter",
    "HttpAnalyticsSink",
    "LearningEvent",
    "LearningEventType",
    "LoggingSink",
    "MemorySink",
]
