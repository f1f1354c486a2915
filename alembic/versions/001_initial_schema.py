"""initial schema — resource sequences, managed resources, memberships

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "resource_sequences",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("next_value", sa.Integer, nullable=False, server_default="1"),
    )

    op.create_table(
        "managed_resources",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("logical_name", sa.String(128), nullable=False),
        sa.Column("remote_name", sa.String(64), nullable=False, unique=True),
        sa.Column("database_name", sa.String(64), nullable=True),
        sa.Column("external_url", sa.Text, nullable=True),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("status", sa.String(32), server_default="provisioned"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("kind", "owner_id", "logical_name", name="uq_managed_resources_owner_name"),
    )
    op.create_index("ix_managed_resources_owner_id", "managed_resources", ["owner_id"])

    op.create_table(
        "memberships",
        sa.Column(
            "resource_id", sa.Integer,
            sa.ForeignKey("managed_resources.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("principal_id", sa.String(128), primary_key=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="member"),
        sa.Column("local_identity", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_memberships_principal_id", "memberships", ["principal_id"])


def downgrade() -> None:
    op.drop_index("ix_memberships_principal_id", table_name="memberships")
    op.drop_table("memberships")
    op.drop_index("ix_managed_resources_owner_id", table_name="managed_resources")
    op.drop_table("managed_resources")
    op.drop_table("resource_sequences")
