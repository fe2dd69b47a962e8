"""Assessment and per-step persistence schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20241101_01_assessment_sessions"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "assessments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("evaluation_type", sa.String(length=32), nullable=False, server_default="Initial Assessment"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("title", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_assessments_owner_updated", "assessments", ["owner_id", "updated_at"])

    op.create_table(
        "assessment_steps",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("assessment_id", sa.String(length=36), sa.ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("step_key", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("assessment_id", "step_key", name="uq_assessment_steps_assessment_step"),
    )
    op.create_index("ix_assessment_steps_assessment_id", "assessment_steps", ["assessment_id"])


def downgrade() -> None:
    op.drop_index("ix_assessment_steps_assessment_id", table_name="assessment_steps")
    op.drop_table("assessment_steps")
    op.drop_index("ix_assessments_owner_updated", table_name="assessments")
    op.drop_table("assessments")
