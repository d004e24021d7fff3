"""Add task catalog

Channels, groups and social tasks published by admins.

Revision ID: 5d3b9e2f7c40
Revises: 0a1c5e7d9b21
Create Date: 2026-10-18 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "5d3b9e2f7c40"
down_revision = "0a1c5e7d9b21"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "task_catalog",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("target", sa.String(300), nullable=False),
        sa.Column("platform", sa.String(30), nullable=True),
        sa.Column("points_reward", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("points_reward >= 0", name="ck_task_catalog_points_non_negative"),
        sa.UniqueConstraint("kind", "target", name="uq_task_catalog_kind_target"),
    )
    op.create_index("ix_task_catalog_kind_active", "task_catalog", ["kind", "is_active"])


def downgrade() -> None:
    op.drop_index("ix_task_catalog_kind_active", table_name="task_catalog")
    op.drop_table("task_catalog")
