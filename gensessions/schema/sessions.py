from __future__ import annotations

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from gensessions.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")
_NOW_ISO = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS.US"Z"')""")


class GenerationSession(Base):
  __tablename__ = "generation_sessions"
  __table_args__ = (
    UniqueConstraint("subject_key", "version", name="ux_generation_sessions_subject_version"),
    Index("ux_generation_sessions_active_subject", "subject_key", unique=True, postgresql_where=text("status IN ('queued', 'in_progress')")),
    Index("ix_generation_sessions_status_updated", "status", "updated_at"),
  )

  session_id: Mapped[str] = mapped_column(String, primary_key=True)
  subject_key: Mapped[str] = mapped_column(String, nullable=False, index=True)
  subject_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  seed_input: Mapped[dict] = mapped_column(JSONType, nullable=False)
  progress_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  final_payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  error_kind: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_NOW_ISO)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_NOW_ISO)
  started_at: Mapped[str | None] = mapped_column(String, nullable=True)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)


class SessionSubResult(Base):
  __tablename__ = "session_sub_results"
  __table_args__ = (UniqueConstraint("session_id", "ordinal", name="ux_session_sub_results_session_ordinal"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  session_id: Mapped[str] = mapped_column(ForeignKey("generation_sessions.session_id", ondelete="CASCADE"), nullable=False, index=True)
  ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
  kind: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  label: Mapped[str | None] = mapped_column(String, nullable=True)
  parent_ordinal: Mapped[int | None] = mapped_column(Integer, nullable=True)
  detail: Mapped[dict] = mapped_column(JSONType, nullable=False)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_NOW_ISO)


class SubjectPhase(Base):
  __tablename__ = "subject_phases"

  subject_key: Mapped[str] = mapped_column(String, primary_key=True)
  phase_name: Mapped[str] = mapped_column(String, primary_key=True)
  session_id: Mapped[str | None] = mapped_column(ForeignKey("generation_sessions.session_id", ondelete="SET NULL"), nullable=True)
  input_artifact: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_NOW_ISO)
