"""
Certificate table.

At most one active certificate per (user, course, enrollment): enforced by
a partial unique index over active rows. A NULL enrollment is folded to the
nil UUID so course-level certificates are covered too.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, Text, func, literal_column
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

NIL_UUID = "00000000-0000-0000-0000-000000000000"


class CertificateRow(Base):
    __tablename__ = "certificates"

    id: Mapped[str] = mapped_column(
        PG_UUID(as_uuid=False),
        primary_key=True,
        server_default=func.gen_random_uuid(),
    )
    user_id: Mapped[str] = mapped_column(PG_UUID(as_uuid=False), nullable=False)
    course_id: Mapped[str] = mapped_column(PG_UUID(as_uuid=False), nullable=False)
    enrollment_id: Mapped[str | None] = mapped_column(PG_UUID(as_uuid=False))

    certificate_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    verification_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    recipient_name: Mapped[str] = mapped_column(Text, nullable=False)
    course_title: Mapped[str] = mapped_column(Text, nullable=False)
    completion_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    template_id: Mapped[str] = mapped_column(Text, default="default")
    issued_by: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")  # active, revoked, expired
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    certificate_metadata: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<CertificateRow({self.certificate_number}, status={self.status})>"


Index(
    "uq_certificates_active_enrollment",
    CertificateRow.user_id,
    CertificateRow.course_id,
    func.coalesce(CertificateRow.enrollment_id, literal_column(f"'{NIL_UUID}'::uuid")),
    unique=True,
    postgresql_where=CertificateRow.status == "active",
)
