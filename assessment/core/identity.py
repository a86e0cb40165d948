"""
Identity context handed in by the host application.

The engine trusts these values verbatim; authentication and permission
checks happen before they reach us.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LearnerIdentity:
    """The learner taking a quiz."""

    learner_id: str
    display_name: str = ""
    organization_id: str | None = None


@dataclass(frozen=True)
class CourseContext:
    """Course scope for a session, including certificate settings."""

    course_id: str
    title: str = ""
    enrollment_id: str | None = None
    certificates_enabled: bool = False
    certificate_template: str | None = None
    certificate_validity_days: int | None = None  # None = never expires
