"""Owner-controlled enrollment closing.

Adds exam_windows.closed_by_owner, set when the owner closes enrollment
by hand so that freed seats do not reopen the window.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "exam_windows",
        sa.Column(
            "closed_by_owner",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
    )


def downgrade() -> None:
    op.drop_column("exam_windows", "closed_by_owner")
