"""Postgres-backed repository for generation sessions using SQLAlchemy."""

from __future__ import annotations

import logging
from collections.abc import Collection
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gensessions.core.database import get_session_factory
from gensessions.schema.sessions import GenerationSession, SessionSubResult, SubjectPhase
from gensessions.sessions.models import ACTIVE_STATUSES, TERMINAL_STATUSES, ErrorKind, PhaseState, SessionRecord, SessionStatus, SubResult
from gensessions.storage.sessions_repo import SessionsRepository
from gensessions.utils.text import now_iso

logger = logging.getLogger(__name__)


class PostgresSessionsRepository(SessionsRepository):
  """Persist sessions, sub-results and phase links to Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_if_no_active(self, record: SessionRecord) -> tuple[SessionRecord, bool]:
    async with self._session_factory() as session:
      active = await self._active_row(session, record.subject_key)
      if active is not None:
        return await self._row_to_record(session, active), False

      max_version = await session.scalar(select(func.max(GenerationSession.version)).where(GenerationSession.subject_key == record.subject_key))
      row = GenerationSession(
        session_id=record.session_id,
        subject_key=record.subject_key,
        subject_type=record.subject_type,
        version=int(max_version or 0) + 1,
        status=record.status,
        seed_input=record.seed_input,
        progress_message=record.progress_message,
        created_at=record.created_at,
        updated_at=record.updated_at,
      )
      session.add(row)
      try:
        await session.commit()
      except IntegrityError:
        # A concurrent start won the partial unique index; hand back its session.
        await session.rollback()
        active = await self._active_row(session, record.subject_key)
        if active is None:
          raise
        logger.info("Concurrent start resolved to existing session subject_key=%s session_id=%s", record.subject_key, active.session_id)
        return await self._row_to_record(session, active), False

      return await self._row_to_record(session, row), True

  async def get(self, session_id: str) -> SessionRecord | None:
    async with self._session_factory() as session:
      row = await session.get(GenerationSession, session_id)
      if row is None:
        return None
      return await self._row_to_record(session, row)

  async def latest_for_subject(self, subject_key: str) -> SessionRecord | None:
    async with self._session_factory() as session:
      stmt = select(GenerationSession).where(GenerationSession.subject_key == subject_key).order_by(GenerationSession.created_at.desc(), GenerationSession.version.desc()).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return await self._row_to_record(session, row)

  async def find_active(self, subject_key: str) -> SessionRecord | None:
    async with self._session_factory() as session:
      row = await self._active_row(session, subject_key)
      if row is None:
        return None
      return await self._row_to_record(session, row)

  async def transition(
    self,
    session_id: str,
    *,
    expected: Collection[str],
    status: SessionStatus,
    progress_message: str | None = None,
    final_payload: dict[str, Any] | None = None,
    error_message: str | None = None,
    error_kind: ErrorKind | None = None,
  ) -> SessionRecord | None:
    async with self._session_factory() as session:
      row = await self._locked_row(session, session_id)
      if row is None or row.status not in expected:
        await session.rollback()
        return None

      now = now_iso()
      row.status = status
      row.updated_at = now
      if progress_message is not None:
        row.progress_message = progress_message
      if status == "in_progress" and row.started_at is None:
        row.started_at = now
      if status in TERMINAL_STATUSES:
        row.completed_at = now
      if status == "completed":
        row.final_payload = final_payload
      if status == "error":
        row.error_message = error_message
        row.error_kind = error_kind
      await session.commit()
      return await self._row_to_record(session, row)

  async def update_progress(self, session_id: str, message: str) -> SessionRecord | None:
    async with self._session_factory() as session:
      row = await self._locked_row(session, session_id)
      if row is None or row.status not in ACTIVE_STATUSES:
        await session.rollback()
        return None
      row.progress_message = message
      row.updated_at = now_iso()
      await session.commit()
      return await self._row_to_record(session, row)

  async def upsert_sub_result(self, session_id: str, sub_result: SubResult) -> SessionRecord | None:
    async with self._session_factory() as session:
      row = await self._locked_row(session, session_id)
      if row is None or row.status != "in_progress":
        await session.rollback()
        return None

      now = now_iso()
      stmt = select(SessionSubResult).where(SessionSubResult.session_id == session_id, SessionSubResult.ordinal == sub_result.ordinal)
      existing = (await session.execute(stmt)).scalar_one_or_none()
      if existing is None:
        existing = SessionSubResult(session_id=session_id, ordinal=sub_result.ordinal)
        session.add(existing)
      existing.kind = sub_result.kind
      existing.status = sub_result.status
      existing.label = sub_result.label
      existing.parent_ordinal = sub_result.parent_ordinal
      existing.detail = sub_result.detail
      existing.updated_at = now
      row.updated_at = now
      await session.commit()
      return await self._row_to_record(session, row)

  async def list_stale(self, *, updated_before: str, subject_key: str | None = None) -> list[SessionRecord]:
    async with self._session_factory() as session:
      stmt = select(GenerationSession).where(GenerationSession.status.in_(tuple(ACTIVE_STATUSES)), GenerationSession.updated_at < updated_before)
      if subject_key is not None:
        stmt = stmt.where(GenerationSession.subject_key == subject_key)
      rows = (await session.execute(stmt)).scalars().all()
      return [await self._row_to_record(session, row) for row in rows]

  async def get_phases(self, subject_key: str) -> list[PhaseState]:
    async with self._session_factory() as session:
      rows = (await session.execute(select(SubjectPhase).where(SubjectPhase.subject_key == subject_key))).scalars().all()
      return [_phase_to_state(row) for row in rows]

  async def set_phase_session(self, subject_key: str, phase_name: str, session_id: str) -> PhaseState:
    return await self._write_phase(subject_key, phase_name, session_id=session_id)

  async def set_phase_input(self, subject_key: str, phase_name: str, input_artifact: dict[str, Any]) -> PhaseState:
    return await self._write_phase(subject_key, phase_name, input_artifact=input_artifact)

  async def _write_phase(self, subject_key: str, phase_name: str, *, session_id: str | None = None, input_artifact: dict[str, Any] | None = None) -> PhaseState:
    async with self._session_factory() as session:
      row = await session.get(SubjectPhase, (subject_key, phase_name), with_for_update=True)
      if row is None:
        row = SubjectPhase(subject_key=subject_key, phase_name=phase_name)
        session.add(row)
      if session_id is not None:
        row.session_id = session_id
      if input_artifact is not None:
        row.input_artifact = input_artifact
      row.updated_at = now_iso()
      await session.commit()
      return _phase_to_state(row)

  async def _active_row(self, session: AsyncSession, subject_key: str) -> GenerationSession | None:
    stmt = select(GenerationSession).where(GenerationSession.subject_key == subject_key, GenerationSession.status.in_(tuple(ACTIVE_STATUSES))).limit(1)
    return (await session.execute(stmt)).scalar_one_or_none()

  async def _locked_row(self, session: AsyncSession, session_id: str) -> GenerationSession | None:
    stmt = select(GenerationSession).where(GenerationSession.session_id == session_id).with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()

  async def _row_to_record(self, session: AsyncSession, row: GenerationSession) -> SessionRecord:
    stmt = select(SessionSubResult).where(SessionSubResult.session_id == row.session_id).order_by(SessionSubResult.ordinal)
    sub_rows = (await session.execute(stmt)).scalars().all()
    return SessionRecord(
      session_id=row.session_id,
      subject_key=row.subject_key,
      subject_type=row.subject_type,
      version=row.version,
      status=row.status,  # type: ignore[arg-type]
      seed_input=dict(row.seed_input or {}),
      created_at=row.created_at,
      updated_at=row.updated_at,
      progress_message=row.progress_message,
      sub_results=[
        SubResult(ordinal=item.ordinal, kind=item.kind, status=item.status, detail=dict(item.detail or {}), parent_ordinal=item.parent_ordinal, label=item.label)
        for item in sub_rows
      ],
      final_payload=row.final_payload,
      error_message=row.error_message,
      error_kind=row.error_kind,  # type: ignore[arg-type]
      started_at=row.started_at,
      completed_at=row.completed_at,
    )


def _phase_to_state(row: SubjectPhase) -> PhaseState:
  return PhaseState(subject_key=row.subject_key, phase_name=row.phase_name, session_id=row.session_id, input_artifact=row.input_artifact, updated_at=row.updated_at)
