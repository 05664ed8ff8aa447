"""In-memory session repository for local development and tests."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Collection
from dataclasses import replace
from typing import Any

from gensessions.sessions.models import ACTIVE_STATUSES, TERMINAL_STATUSES, ErrorKind, PhaseState, SessionRecord, SessionStatus, SubResult
from gensessions.storage.sessions_repo import SessionsRepository
from gensessions.utils.text import now_iso


class InMemorySessionsRepository(SessionsRepository):
  """Keep sessions in process memory behind a single asyncio lock."""

  def __init__(self) -> None:
    self._sessions: dict[str, SessionRecord] = {}
    self._phases: dict[tuple[str, str], PhaseState] = {}
    self._lock = asyncio.Lock()

  async def create_if_no_active(self, record: SessionRecord) -> tuple[SessionRecord, bool]:
    async with self._lock:
      active = self._find_active_locked(record.subject_key)
      if active is not None:
        return copy.deepcopy(active), False

      versions = [item.version for item in self._sessions.values() if item.subject_key == record.subject_key]
      stored = replace(copy.deepcopy(record), version=max(versions, default=0) + 1)
      self._sessions[stored.session_id] = stored
      return copy.deepcopy(stored), True

  async def get(self, session_id: str) -> SessionRecord | None:
    async with self._lock:
      record = self._sessions.get(session_id)
      return copy.deepcopy(record) if record is not None else None

  async def latest_for_subject(self, subject_key: str) -> SessionRecord | None:
    async with self._lock:
      candidates = [item for item in self._sessions.values() if item.subject_key == subject_key]
      if not candidates:
        return None
      latest = max(candidates, key=lambda item: (item.created_at, item.version))
      return copy.deepcopy(latest)

  async def find_active(self, subject_key: str) -> SessionRecord | None:
    async with self._lock:
      active = self._find_active_locked(subject_key)
      return copy.deepcopy(active) if active is not None else None

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
    async with self._lock:
      record = self._sessions.get(session_id)
      if record is None or record.status not in expected:
        return None

      now = now_iso()
      record.status = status
      record.updated_at = now
      if progress_message is not None:
        record.progress_message = progress_message
      if status == "in_progress" and record.started_at is None:
        record.started_at = now
      if status in TERMINAL_STATUSES:
        record.completed_at = now
      if status == "completed":
        record.final_payload = copy.deepcopy(final_payload)
      if status == "error":
        record.error_message = error_message
        record.error_kind = error_kind
      return copy.deepcopy(record)

  async def update_progress(self, session_id: str, message: str) -> SessionRecord | None:
    async with self._lock:
      record = self._sessions.get(session_id)
      if record is None or record.status not in ACTIVE_STATUSES:
        return None
      record.progress_message = message
      record.updated_at = now_iso()
      return copy.deepcopy(record)

  async def upsert_sub_result(self, session_id: str, sub_result: SubResult) -> SessionRecord | None:
    async with self._lock:
      record = self._sessions.get(session_id)
      if record is None or record.status != "in_progress":
        return None
      kept = [item for item in record.sub_results if item.ordinal != sub_result.ordinal]
      kept.append(copy.deepcopy(sub_result))
      record.sub_results = sorted(kept, key=lambda item: item.ordinal)
      record.updated_at = now_iso()
      return copy.deepcopy(record)

  async def list_stale(self, *, updated_before: str, subject_key: str | None = None) -> list[SessionRecord]:
    async with self._lock:
      stale = [
        copy.deepcopy(item)
        for item in self._sessions.values()
        if item.status in ACTIVE_STATUSES and item.updated_at < updated_before and (subject_key is None or item.subject_key == subject_key)
      ]
      return stale

  async def get_phases(self, subject_key: str) -> list[PhaseState]:
    async with self._lock:
      return [copy.deepcopy(state) for (key, _), state in self._phases.items() if key == subject_key]

  async def set_phase_session(self, subject_key: str, phase_name: str, session_id: str) -> PhaseState:
    async with self._lock:
      state = self._phases.setdefault((subject_key, phase_name), PhaseState(subject_key=subject_key, phase_name=phase_name))
      state.session_id = session_id
      state.updated_at = now_iso()
      return copy.deepcopy(state)

  async def set_phase_input(self, subject_key: str, phase_name: str, input_artifact: dict[str, Any]) -> PhaseState:
    async with self._lock:
      state = self._phases.setdefault((subject_key, phase_name), PhaseState(subject_key=subject_key, phase_name=phase_name))
      state.input_artifact = copy.deepcopy(input_artifact)
      state.updated_at = now_iso()
      return copy.deepcopy(state)

  def _find_active_locked(self, subject_key: str) -> SessionRecord | None:
    for item in self._sessions.values():
      if item.subject_key == subject_key and item.status in ACTIVE_STATUSES:
        return item
    return None
