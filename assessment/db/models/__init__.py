# SQLAlchemy models
from .analytics import LearningAnalyticsRow
from .base import Base
from .certificates import CertificateRow
from .quiz import QuizAttemptRow, QuizConfigurationRow, QuizQuestionRow

__all__ = [
    "Base",
    "CertificateRow",
    "LearningAnalyticsRow",
    "QuizAttemptRow",
    "QuizConfigurationRow",
    "QuizQuestionRow",
]
