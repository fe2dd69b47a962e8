"""ORM models backing the authenticated assessment store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class AssessmentModel(TimestampMixin, Base):
    __tablename__ = "assessments"
    __table_args__ = (Index("ix_assessments_owner_updated", "owner_id", "updated_at"),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    evaluation_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Initial Assessment")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    steps: Mapped[list["AssessmentStepModel"]] = relationship(
        back_populates="assessment", cascade="all, delete-orphan", passive_deletes=True
    )


class AssessmentStepModel(Base):
    __tablename__ = "assessment_steps"
    __table_args__ = (
        UniqueConstraint("assessment_id", "step_key", name="uq_assessment_steps_assessment_step"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    assessment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_key: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[Any] = mapped_column(JSONType, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    assessment: Mapped[AssessmentModel] = relationship(back_populates="steps")


__all__ = ["AssessmentModel", "AssessmentStepModel"]
