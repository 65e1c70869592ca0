"""Create club_snapshots table.

One JSON document per club and aggregate kind (dues, ledger).

Revision ID: 001_create_club_snapshots
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_create_club_snapshots"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "club_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "club_code",
            sa.String(length=64),
            nullable=False,
            comment="Normalized (upper-case) club code",
        ),
        sa.Column(
            "kind",
            sa.String(length=16),
            nullable=False,
            comment="Aggregate kind: dues or ledger",
        ),
        sa.Column(
            "payload",
            sa.JSON(),
            nullable=False,
            comment="Serialized snapshot document",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("club_code", "kind", name="uq_club_snapshots_club_kind"),
    )
    op.create_index("ix_club_snapshots_club_code", "club_snapshots", ["club_code"])


def downgrade() -> None:
    op.drop_index("ix_club_snapshots_club_code", table_name="club_snapshots")
    op.drop_table("club_snapshots")
