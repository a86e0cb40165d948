"""
Quiz configuration: rule sets, presets and the configuration store.

A configuration belongs to a course and optionally to one quiz. At session
start exactly one configuration resolves:

1. the most recent configuration for (course, quiz), else
2. the most recent course-wide configuration (quiz_id is None), else
3. a system default, synthesized and persisted for the course.

Validation never raises: ``validate`` returns every violation so a form can
highlight all bad fields at once. Create/update wrap the same list in
``ConfigurationInvalid``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from assessment.core.clock import Clock, parse_timestamp, utcnow
from assessment.core.errors import (
    ConfigurationInvalid,
    ConfigurationNotFound,
    PresetNotFound,
    ValidationError,
)
from assessment.db.protocols import ConfigurationRepository

MAX_CUSTOM_FEEDBACK_LENGTH = 1000

RULE_FIELDS: tuple[str, ...] = (
    "allow_retake",
    "max_attempts",
    "show_correct_answers",
    "show_explanations",
    "randomize_questions",
    "randomize_answers",
    "time_limit",
    "pass_threshold",
    "require_all_questions",
    "allow_skip_questions",
    "show_progress",
    "show_timer",
    "auto_submit",
    "immediate_feedback",
    "show_score_breakdown",
    "custom_feedback",
)


@dataclass
class QuizConfiguration:
    """Rule set governing one quiz's (or one course's) assessment behavior."""

    course_id: str
    quiz_id: str | None = None

    # Attempts
    allow_retake: bool = True
    max_attempts: int = 3

    # Review
    show_correct_answers: bool = True
    show_explanations: bool = True
    show_score_breakdown: bool = True
    immediate_feedback: bool = False

    # Ordering
    randomize_questions: bool = False
    randomize_answers: bool = False

    # Timing
    time_limit: int | None = None  # seconds
    auto_submit: bool = False
    show_timer: bool = True

    # Scoring
    pass_threshold: int = 80  # percentage

    # Navigation
    require_all_questions: bool = True
    allow_skip_questions: bool = False
    show_progress: bool = True

    custom_feedback: str | None = None

    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_course_default(self) -> bool:
        return self.quiz_id is None

    @property
    def retake_limit(self) -> int:
        """Attempts a learner may record: one when retakes are off."""
        return self.max_attempts if self.allow_retake else 1

    def rules(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in RULE_FIELDS}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "quiz_id": self.quiz_id,
            **self.rules(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QuizConfiguration":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        for stamp in ("created_at", "updated_at"):
            if stamp in values:
                values[stamp] = parse_timestamp(values[stamp]) or utcnow()
        return cls(**values)


# ========================================
# Presets
# ========================================


@dataclass(frozen=True)
class ConfigurationPreset:
    """A named, fixed bundle of rule values."""

    id: str
    name: str
    description: str
    rules: Mapping[str, Any]
    is_default: bool = False


PRESETS: dict[str, ConfigurationPreset] = {
    "default": ConfigurationPreset(
        id="default",
        name="Default Configuration",
        description="Standard quiz settings with moderate restrictions",
        is_default=True,
        rules={
            "allow_retake": True,
            "max_attempts": 3,
            "show_correct_answers": True,
            "show_explanations": True,
            "randomize_questions": False,
            "randomize_answers": False,
            "time_limit": None,
            "pass_threshold": 80,
            "require_all_questions": True,
            "allow_skip_questions": False,
            "show_progress": True,
            "show_timer": True,
            "auto_submit": False,
            "immediate_feedback": False,
            "show_score_breakdown": True,
            "custom_feedback": None,
        },
    ),
    "strict": ConfigurationPreset(
        id="strict",
        name="Strict Configuration",
        description="High security settings with limited attempts and no retakes",
        rules={
            "allow_retake": False,
            "max_attempts": 1,
            "show_correct_answers": False,
            "show_explanations": False,
            "randomize_questions": True,
            "randomize_answers": True,
            "time_limit": None,
            "pass_threshold": 90,
            "require_all_questions": True,
            "allow_skip_questions": False,
            "show_progress": False,
            "show_timer": True,
            "auto_submit": True,
            "immediate_feedback": False,
            "show_score_breakdown": False,
            "custom_feedback": None,
        },
    ),
    "learning": ConfigurationPreset(
        id="learning",
        name="Learning Configuration",
        description="Educational settings with immediate feedback and multiple attempts",
        rules={
            "allow_retake": True,
            "max_attempts": 5,
            "show_correct_answers": True,
            "show_explanations": True,
            "randomize_questions": False,
            "randomize_answers": False,
            "time_limit": None,
            "pass_threshold": 70,
            "require_all_questions": False,
            "allow_skip_questions": True,
            "show_progress": True,
            "show_timer": False,
            "auto_submit": False,
            "immediate_feedback": True,
            "show_score_breakdown": True,
            "custom_feedback": None,
        },
    ),
    "assessment": ConfigurationPreset(
        id="assessment",
        name="Assessment Configuration",
        description="Formal assessment settings with time limits and controlled environment",
        rules={
            "allow_retake": False,
            "max_attempts": 2,
            "show_correct_answers": False,
            "show_explanations": False,
            "randomize_questions": True,
            "randomize_answers": True,
            "time_limit": 1800,  # 30 minutes
            "pass_threshold": 85,
            "require_all_questions": True,
            "allow_skip_questions": False,
            "show_progress": True,
            "show_timer": True,
            "auto_submit": True,
            "immediate_feedback": False,
            "show_score_breakdown": True,
            "custom_feedback": None,
        },
    ),
}

SYSTEM_DEFAULT_RULES: Mapping[str, Any] = PRESETS["default"].rules


# ========================================
# Input parsing and validation
# ========================================


class ConfigurationInput(BaseModel):
    """Type-level parsing of author input; range checks live in ``validate``."""

    model_config = ConfigDict(extra="ignore")

    course_id: Optional[str] = None
    quiz_id: Optional[str] = None
    allow_retake: Optional[bool] = None
    max_attempts: Optional[int] = None
    show_correct_answers: Optional[bool] = None
    show_explanations: Optional[bool] = None
    randomize_questions: Optional[bool] = None
    randomize_answers: Optional[bool] = None
    time_limit: Optional[int] = None
    pass_threshold: Optional[int] = None
    require_all_questions: Optional[bool] = None
    allow_skip_questions: Optional[bool] = None
    show_progress: Optional[bool] = None
    show_timer: Optional[bool] = None
    auto_submit: Optional[bool] = None
    immediate_feedback: Optional[bool] = None
    show_score_breakdown: Optional[bool] = None
    custom_feedback: Optional[str] = None


# Rules that may be None: untimed quizzes and no custom feedback
OPTIONAL_RULES = frozenset({"time_limit", "custom_feedback"})


def parse_configuration_input(data: Mapping[str, Any]) -> tuple[dict[str, Any], list[ValidationError]]:
    """
    Parse raw author input.

    Fields that fail type parsing are reported and left out; the rest are
    still parsed so their ranges can be checked.

    Returns:
        (values that were explicitly set and parsed, type errors)
    """
    raw = dict(data)
    try:
        parsed = ConfigurationInput.model_validate(raw)
    except PydanticValidationError as e:
        errors = [
            ValidationError(field=str(err["loc"][0]) if err["loc"] else "__root__", message=err["msg"])
            for err in e.errors()
        ]
        rejected = {error.field for error in errors}
        remaining = {k: v for k, v in raw.items() if k not in rejected}
        parsed = ConfigurationInput.model_validate(remaining)
        return parsed.model_dump(exclude_unset=True), errors
    return parsed.model_dump(exclude_unset=True), []


def _check_ranges(values: Mapping[str, Any]) -> list[ValidationError]:
    errors: list[ValidationError] = []

    for name in RULE_FIELDS:
        if name in values and values[name] is None and name not in OPTIONAL_RULES:
            errors.append(ValidationError(name, f"{name.replace('_', ' ').capitalize()} is required"))

    max_attempts = values.get("max_attempts")
    if max_attempts is not None and max_attempts < 1:
        errors.append(ValidationError("max_attempts", "Maximum attempts must be at least 1"))

    pass_threshold = values.get("pass_threshold")
    if pass_threshold is not None and not 0 <= pass_threshold <= 100:
        errors.append(ValidationError("pass_threshold", "Pass threshold must be between 0 and 100"))

    time_limit = values.get("time_limit")
    if time_limit is not None and time_limit < 1:
        errors.append(ValidationError("time_limit", "Time limit must be at least 1 second"))

    custom_feedback = values.get("custom_feedback")
    if custom_feedback is not None and len(custom_feedback) > MAX_CUSTOM_FEEDBACK_LENGTH:
        errors.append(
            ValidationError(
                "custom_feedback",
                f"Custom feedback must be at most {MAX_CUSTOM_FEEDBACK_LENGTH} characters",
            )
        )

    return errors


def validate(candidate: QuizConfiguration | Mapping[str, Any]) -> list[ValidationError]:
    """
    Validate configuration rule values, returning every violation.

    A mapping is type-parsed first; badly typed fields are reported next to
    the range errors of the fields that parsed. Only fields present in a
    mapping are checked, so partial patches can be validated on their own.
    """
    if isinstance(candidate, QuizConfiguration):
        return _check_ranges(candidate.rules())

    values, errors = parse_configuration_input(candidate)
    return errors + _check_ranges(values)


# ========================================
# Store
# ========================================


@dataclass
class ConfigurationStats:
    """Configuration summary for a course."""

    total_configurations: int
    course_defaults: int
    quiz_specific: int
    average_settings: dict[str, Any]


class ConfigurationStore:
    """
    Loads, creates and validates quiz configurations.

    Constructed explicitly with its repository; there is no process-wide
    instance.
    """

    def __init__(self, repository: ConfigurationRepository, clock: Clock = utcnow):
        self.repository = repository
        self.clock = clock

    # ----------------------------------------
    # Presets
    # ----------------------------------------

    @staticmethod
    def presets() -> list[ConfigurationPreset]:
        return list(PRESETS.values())

    @staticmethod
    def get_preset(preset_id: str) -> ConfigurationPreset:
        try:
            return PRESETS[preset_id]
        except KeyError:
            raise PresetNotFound(preset_id) from None

    @staticmethod
    def validate(candidate: QuizConfiguration | Mapping[str, Any]) -> list[ValidationError]:
        return validate(candidate)

    # ----------------------------------------
    # Reads
    # ----------------------------------------

    async def get(self, config_id: str) -> QuizConfiguration:
        config = await self.repository.get(config_id)
        if config is None:
            raise ConfigurationNotFound(config_id)
        return config

    async def list_for_course(self, course_id: str) -> list[QuizConfiguration]:
        return await self.repository.list_for_course(course_id)

    async def resolve(self, course_id: str, quiz_id: str | None = None) -> QuizConfiguration:
        """Resolve the single configuration governing (course, quiz)."""
        if quiz_id is not None:
            config = await self.repository.find_latest(course_id, quiz_id)
            if config is not None:
                return config

        config = await self.repository.find_latest(course_id, None)
        if config is not None:
            return config

        now = self.clock()
        default = QuizConfiguration(
            course_id=course_id,
            created_at=now,
            updated_at=now,
            **SYSTEM_DEFAULT_RULES,
        )
        saved = await self.repository.insert(default)
        logger.info("Created default quiz configuration {} for course {}", saved.id, course_id)
        return saved

    # ----------------------------------------
    # Writes
    # ----------------------------------------

    async def create(self, data: Mapping[str, Any]) -> QuizConfiguration:
        """Create a configuration from author input; unset rules take system defaults."""
        values, type_errors = parse_configuration_input(data)
        errors = type_errors + _check_ranges(values)
        if not values.get("course_id") and "course_id" not in {e.field for e in type_errors}:
            errors.insert(0, ValidationError("course_id", "Course is required"))
        if errors:
            raise ConfigurationInvalid(errors)

        now = self.clock()
        rules = {**SYSTEM_DEFAULT_RULES, **{k: v for k, v in values.items() if k in RULE_FIELDS}}
        candidate = QuizConfiguration(
            course_id=values["course_id"],
            quiz_id=values.get("quiz_id"),
            created_at=now,
            updated_at=now,
            **rules,
        )
        errors = validate(candidate)
        if errors:
            raise ConfigurationInvalid(errors)

        saved = await self.repository.insert(candidate)
        logger.info(
            "Created quiz configuration {} (course={}, quiz={})",
            saved.id,
            saved.course_id,
            saved.quiz_id,
        )
        return saved

    async def update(self, config_id: str, patch: Mapping[str, Any]) -> QuizConfiguration:
        """Patch rule fields; identity and course/quiz linkage never change."""
        values, type_errors = parse_configuration_input(patch)
        errors = type_errors + _check_ranges(values)
        if errors:
            raise ConfigurationInvalid(errors)

        current = await self.get(config_id)
        rules = {k: v for k, v in values.items() if k in RULE_FIELDS}
        candidate = replace(current, updated_at=self.clock(), **rules)
        errors = validate(candidate)
        if errors:
            raise ConfigurationInvalid(errors)

        saved = await self.repository.save(candidate)
        logger.info("Updated quiz configuration {}: {}", config_id, sorted(rules))
        return saved

    async def delete(self, config_id: str) -> None:
        if not await self.repository.delete(config_id):
            raise ConfigurationNotFound(config_id)
        logger.info("Deleted quiz configuration {}", config_id)

    async def duplicate(
        self,
        source_id: str,
        target_course_id: str,
        target_quiz_id: str | None = None,
    ) -> QuizConfiguration:
        """Copy every rule field into a new configuration; identity and timestamps are fresh."""
        source = await self.get(source_id)
        now = self.clock()
        copy = QuizConfiguration(
            course_id=target_course_id,
            quiz_id=target_quiz_id,
            created_at=now,
            updated_at=now,
            **source.rules(),
        )
        saved = await self.repository.insert(copy)
        logger.info(
            "Duplicated quiz configuration {} -> {} (course={}, quiz={})",
            source_id,
            saved.id,
            target_course_id,
            target_quiz_id,
        )
        return saved

    async def apply_preset(self, config_id: str, preset_id: str) -> QuizConfiguration:
        """Overwrite every rule field from a preset, keeping identity and linkage."""
        preset = self.get_preset(preset_id)
        current = await self.get(config_id)
        updated = replace(current, updated_at=self.clock(), **dict(preset.rules))
        saved = await self.repository.save(updated)
        logger.info("Applied preset {} to quiz configuration {}", preset_id, config_id)
        return saved

    async def stats(self, course_id: str) -> ConfigurationStats:
        configs = await self.repository.list_for_course(course_id)
        total = len(configs)
        course_defaults = sum(1 for c in configs if c.is_course_default)

        average: dict[str, Any] = {}
        if total:
            average["max_attempts"] = round(sum(c.max_attempts for c in configs) / total)
            average["pass_threshold"] = round(sum(c.pass_threshold for c in configs) / total)
            for flag in (
                "allow_retake",
                "show_correct_answers",
                "show_explanations",
                "randomize_questions",
                "randomize_answers",
                "immediate_feedback",
            ):
                average[flag] = sum(1 for c in configs if getattr(c, flag)) > total / 2

        return ConfigurationStats(
            total_configurations=total,
            course_defaults=course_defaults,
            quiz_specific=total - course_defaults,
            average_settings=average,
        )
