"""Create generation session, sub-result and subject phase tables.

Revision ID: 5b2e1c7d9a10
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "5b2e1c7d9a10"
down_revision = None
branch_labels = None
depends_on = None

_NOW_ISO = sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS.US"Z"')""")


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "generation_sessions",
    sa.Column("session_id", sa.String(), primary_key=True),
    sa.Column("subject_key", sa.String(), nullable=False),
    sa.Column("subject_type", sa.String(), nullable=False),
    sa.Column("version", sa.Integer(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("seed_input", postgresql.JSONB(), nullable=False),
    sa.Column("progress_message", sa.Text(), nullable=True),
    sa.Column("final_payload", postgresql.JSONB(), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("error_kind", sa.String(), nullable=True),
    sa.Column("created_at", sa.String(), nullable=False, server_default=_NOW_ISO),
    sa.Column("updated_at", sa.String(), nullable=False, server_default=_NOW_ISO),
    sa.Column("started_at", sa.String(), nullable=True),
    sa.Column("completed_at", sa.String(), nullable=True),
    sa.UniqueConstraint("subject_key", "version", name="ux_generation_sessions_subject_version"),
  )
  op.create_index("ix_generation_sessions_subject_key", "generation_sessions", ["subject_key"])
  op.create_index("ix_generation_sessions_subject_type", "generation_sessions", ["subject_type"])
  op.create_index("ix_generation_sessions_status_updated", "generation_sessions", ["status", "updated_at"])
  # At most one queued/in_progress session per subject.
  op.create_index("ux_generation_sessions_active_subject", "generation_sessions", ["subject_key"], unique=True, postgresql_where=sa.text("status IN ('queued', 'in_progress')"))

  op.create_table(
    "session_sub_results",
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("session_id", sa.String(), sa.ForeignKey("generation_sessions.session_id", ondelete="CASCADE"), nullable=False),
    sa.Column("ordinal", sa.Integer(), nullable=False),
    sa.Column("kind", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("label", sa.String(), nullable=True),
    sa.Column("parent_ordinal", sa.Integer(), nullable=True),
    sa.Column("detail", postgresql.JSONB(), nullable=False),
    sa.Column("updated_at", sa.String(), nullable=False, server_default=_NOW_ISO),
    sa.UniqueConstraint("session_id", "ordinal", name="ux_session_sub_results_session_ordinal"),
  )
  op.create_index("ix_session_sub_results_session_id", "session_sub_results", ["session_id"])

  op.create_table(
    "subject_phases",
    sa.Column("subject_key", sa.String(), primary_key=True),
    sa.Column("phase_name", sa.String(), primary_key=True),
    sa.Column("session_id", sa.String(), sa.ForeignKey("generation_sessions.session_id", ondelete="SET NULL"), nullable=True),
    sa.Column("input_artifact", postgresql.JSONB(), nullable=True),
    sa.Column("updated_at", sa.String(), nullable=False, server_default=_NOW_ISO),
  )


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_table("subject_phases")
  op.drop_index("ix_session_sub_results_session_id", table_name="session_sub_results")
  op.drop_table("session_sub_results")
  op.drop_index("ux_generation_sessions_active_subject", table_name="generation_sessions")
  op.drop_index("ix_generation_sessions_status_updated", table_name="generation_sessions")
  op.drop_index("ix_generation_sessions_subject_type", table_name="generation_sessions")
  op.drop_index("ix_generation_sessions_subject_key", table_name="generation_sessions")
  op.drop_table("generation_sessions")
