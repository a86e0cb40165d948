"""
Error taxonomy for the assessment engine.

Kinds:
- Validation: configuration fields out of range (collected, never fatal)
- State: calls that do not fit the session's current state
- Policy: attempt limits, empty quizzes
- Not found: unknown configurations or presets
- Infrastructure: persistence unavailable, code generation exhausted

Analytics failures are never raised; they are logged by the emitter.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ValidationError:
    """A single invalid configuration field."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class AssessmentError(Exception):
    """Base class for every error raised by the engine."""

    kind = "assessment"


# ========================================
# Validation
# ========================================


class ConfigurationInvalid(AssessmentError):
    """Raised when a configuration create/update carries invalid fields."""

    kind = "validation"

    def __init__(self, errors: list[ValidationError]):
        self.errors = list(errors)
        fields = ", ".join(e.field for e in self.errors)
        super().__init__(f"Invalid quiz configuration: {fields}")


# ========================================
# State
# ========================================


class SessionStateError(AssessmentError):
    """The call does not fit the session's current state."""

    kind = "state"


class SessionNotInProgress(SessionStateError):
    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is {status}, not in-progress")


class UnknownQuestion(SessionStateError):
    def __init__(self, question_id: str):
        self.question_id = question_id
        super().__init__(f"Question {question_id} is not part of this session")


class OutOfOrderAnswer(SessionStateError):
    """Raised when skipping is disabled and a non-current question is answered."""

    def __init__(self, question_id: str, current_question_id: str):
        self.question_id = question_id
        self.current_question_id = current_question_id
        super().__init__(
            f"Question {question_id} answered out of order "
            f"(current question is {current_question_id})"
        )


class SessionNotFound(SessionStateError):
    """Raised when no resumable snapshot exists for a session id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"No resumable session {session_id}")


class IncompleteSubmission(SessionStateError):
    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"{len(self.missing)} question(s) must be answered before submitting")


# ========================================
# Policy
# ========================================


class PolicyError(AssessmentError):
    """A rule of the quiz forbids the operation."""

    kind = "policy"


class AttemptLimitExceeded(PolicyError):
    def __init__(self, count: int, max_attempts: int):
        self.count = count
        self.max_attempts = max_attempts
        super().__init__(f"Attempt limit reached ({count}/{max_attempts})")

    def to_dict(self) -> dict[str, int]:
        return {"count": self.count, "max": self.max_attempts}


class NoQuestionsFound(PolicyError):
    def __init__(self, quiz_id: str):
        self.quiz_id = quiz_id
        super().__init__(f"Quiz {quiz_id} has no questions")


# ========================================
# Not found
# ========================================


class ConfigurationNotFound(AssessmentError):
    kind = "not_found"

    def __init__(self, config_id: str):
        self.config_id = config_id
        super().__init__(f"Quiz configuration {config_id} not found")


class PresetNotFound(AssessmentError):
    kind = "not_found"

    def __init__(self, preset_id: str):
        self.preset_id = preset_id
        super().__init__(f"Preset {preset_id!r} not found")


# ========================================
# Infrastructure
# ========================================


class InfrastructureError(AssessmentError):
    """Persistence or generation failure; never reported as success."""

    kind = "infrastructure"


class StoreUnavailable(InfrastructureError):
    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"Store unavailable during {operation}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class CodeGenerationExhausted(InfrastructureError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"No unique verification code after {attempts} attempts")


class VerificationCodeConflict(InfrastructureError):
    """Raised by certificate repositories when an inserted code already exists."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Verification code {code} already issued")
