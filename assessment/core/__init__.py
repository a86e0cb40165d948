"""Core types shared across the assessment engine."""

from .errors import (
    AssessmentError,
    AttemptLimitExceeded,
    CodeGenerationExhausted,
    ConfigurationInvalid,
    ConfigurationNotFound,
    IncompleteSubmission,
    InfrastructureError,
    NoQuestionsFound,
    OutOfOrderAnswer,
    PolicyError,
    PresetNotFound,
    SessionNotFound,
    SessionNotInProgress,
    SessionStateError,
    StoreUnavailable,
    UnknownQuestion,
    ValidationError,
    VerificationCodeConflict,
)
from .identity import CourseContext, LearnerIdentity

__all__ = [
    "AssessmentError",
    "AttemptLimitExceeded",
    "CodeGenerationExhausted",
    "ConfigurationInvalid",
    "ConfigurationNotFound",
    "CourseContext",
    "IncompleteSubmission",
    "InfrastructureError",
    "LearnerIdentity",
    "NoQuestionsFound",
    "OutOfOrderAnswer",
    "PolicyError",
    "PresetNotFound",
    "SessionNotFound",
    "SessionNotInProgress",
    "SessionStateError",
    "StoreUnavailable",
    "UnknownQuestion",
    "ValidationError",
    "VerificationCodeConflict",
]
