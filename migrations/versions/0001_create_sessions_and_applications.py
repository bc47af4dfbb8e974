"""create_sessions_and_applications

Revision ID: 0001_sessions_apps
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_sessions_apps"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "conversation_sessions",
        sa.Column("conversant_id", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=32), nullable=False, server_default="INITIAL"),
        sa.Column("locale", sa.String(length=8), nullable=False, server_default="en"),
        sa.Column("fields", sa.JSON(), nullable=True),
        sa.Column("consent_given", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("conversant_id"),
    )
    op.create_table(
        "application_records",
        sa.Column("record_id", sa.String(length=32), nullable=False),
        sa.Column("conversant_id", sa.String(length=64), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False, server_default="whatsapp"),
        sa.Column("fields", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="submitted"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("record_id"),
    )
    op.create_index(
        op.f("ix_application_records_conversant_id"),
        "application_records",
        ["conversant_id"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_application_records_conversant_id"), table_name="application_records")
    op.drop_table("application_records")
    op.drop_table("conversation_sessions")
