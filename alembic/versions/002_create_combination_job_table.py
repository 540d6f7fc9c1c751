"""Create combination_job table

Revision ID: 002
Revises: 001
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_JOB_PREDICATE = "status != 'failed'"


def upgrade() -> None:
    op.create_table(
        "combination_job",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("conversation_id", sa.String(length=64), nullable=False),
        sa.Column("speaker", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="processing"),
        sa.Column("container_kind", sa.String(length=32), nullable=True),
        sa.Column("combined_file_path", sa.String(length=512), nullable=True),
        sa.Column("combined_size_bytes", sa.Integer(), nullable=True),
        sa.Column("total_chunks", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("heartbeat_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_combination_job_conversation_id"), "combination_job", ["conversation_id"])
    op.create_index(
        "uq_combination_job_active_key",
        "combination_job",
        ["conversation_id", "speaker"],
        unique=True,
        sqlite_where=sa.text(ACTIVE_JOB_PREDICATE),
        postgresql_where=sa.text(ACTIVE_JOB_PREDICATE),
    )


def downgrade() -> None:
    op.drop_index("uq_combination_job_active_key", table_name="combination_job")
    op.drop_index(op.f("ix_combination_job_conversation_id"), table_name="combination_job")
    op.drop_table("combination_job")
