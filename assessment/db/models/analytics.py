"""Learning analytics event log."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class LearningAnalyticsRow(Base):
    __tablename__ = "learning_analytics"

    id: Mapped[str] = mapped_column(
        PG_UUID(as_uuid=False),
        primary_key=True,
        server_default=func.gen_random_uuid(),
    )
    user_id: Mapped[str] = mapped_column(PG_UUID(as_uuid=False), nullable=False)
    course_id: Mapped[str] = mapped_column(PG_UUID(as_uuid=False), nullable=False)
    module_id: Mapped[str | None] = mapped_column(PG_UUID(as_uuid=False))
    quiz_id: Mapped[str | None] = mapped_column(PG_UUID(as_uuid=False))
    session_id: Mapped[str | None] = mapped_column(Text)

    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    event_data: Mapped[dict] = mapped_column(JSONB, default=dict)
    duration: Mapped[int] = mapped_column(Integer, default=0)  # seconds
    score: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_learning_analytics_user", "user_id", "course_id"),
        Index("idx_learning_analytics_event", "event_type"),
    )
