"""Initial schema for Examclock.

Creates the exam_windows and enrollments tables with their lifecycle and
scheduling-mode enums, and the indexes used by the sweep, the planning
pass and enrollment counting.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    window_status = sa.Enum(
        "scheduled", "enrollment_closed", "in_progress", "finished",
        name="windowstatus",
    )
    window_status.create(op.get_bind(), checkfirst=True)

    scheduling_mode = sa.Enum("timed", "open_ended", name="schedulingmode")
    scheduling_mode.create(op.get_bind(), checkfirst=True)

    # Exam windows table
    op.create_table(
        "exam_windows",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("exam_id", sa.Uuid(), nullable=True),
        sa.Column(
            "mode",
            sa.Enum("timed", "open_ended", name="schedulingmode", create_type=False),
            nullable=False,
            server_default="timed",
        ),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "scheduled", "enrollment_closed", "in_progress", "finished",
                name="windowstatus",
                create_type=False,
            ),
            nullable=False,
            server_default="scheduled",
        ),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("capacity >= 1", name="ck_exam_windows_capacity_positive"),
        sa.CheckConstraint(
            "(mode = 'timed' AND starts_at IS NOT NULL AND duration_minutes >= 1) "
            "OR (mode = 'open_ended' AND starts_at IS NULL AND duration_minutes IS NULL)",
            name="ck_exam_windows_mode_fields",
        ),
    )
    op.create_index("ix_exam_windows_owner_id", "exam_windows", ["owner_id"])
    op.create_index(
        "ix_exam_windows_status_starts_at", "exam_windows", ["status", "starts_at"]
    )

    # Enrollments table
    op.create_table(
        "enrollments",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "window_id",
            sa.Uuid(),
            sa.ForeignKey("exam_windows.id"),
            nullable=False,
        ),
        sa.Column("participant_id", sa.Uuid(), nullable=False),
        sa.Column(
            "enrolled_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attended", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "window_id", "participant_id", name="uq_enrollments_window_participant"
        ),
    )
    op.create_index("ix_enrollments_window_id", "enrollments", ["window_id"])
    # Partial index backing active-enrollment counts
    op.create_index(
        "ix_enrollments_active_by_window",
        "enrollments",
        ["window_id"],
        postgresql_where=sa.text("cancelled_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("ix_enrollments_active_by_window", table_name="enrollments")
    op.drop_index("ix_enrollments_window_id", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_index("ix_exam_windows_status_starts_at", table_name="exam_windows")
    op.drop_index("ix_exam_windows_owner_id", table_name="exam_windows")
    op.drop_table("exam_windows")

    sa.Enum(name="schedulingmode").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="windowstatus").drop(op.get_bind(), checkfirst=True)
