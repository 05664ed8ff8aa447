"""Storage interfaces for generation sessions."""

from __future__ import annotations

from collections.abc import Collection
from typing import Any, Protocol

from gensessions.sessions.models import ErrorKind, PhaseState, SessionRecord, SessionStatus, SubResult


class SessionsRepository(Protocol):
  """Repository contract for session persistence.

  Implementations serialise writes per session and enforce at most one
  queued/in_progress session per subject key. Records returned are copies.
  """

  async def create_if_no_active(self, record: SessionRecord) -> tuple[SessionRecord, bool]:
    """Insert ``record`` unless the subject already has an active session.

    Returns ``(active_session, False)`` when one exists, otherwise the stored
    record (with its version assigned) and True.
    """

  async def get(self, session_id: str) -> SessionRecord | None:
    """Fetch a session by identifier."""

  async def latest_for_subject(self, subject_key: str) -> SessionRecord | None:
    """Return the most recently created session for a subject, any status."""

  async def find_active(self, subject_key: str) -> SessionRecord | None:
    """Return the queued or in-progress session for a subject, if any."""

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
    """Compare-and-set the status; returns None when the current status is not in ``expected``."""

  async def update_progress(self, session_id: str, message: str) -> SessionRecord | None:
    """Overwrite the progress message of an active session."""

  async def upsert_sub_result(self, session_id: str, sub_result: SubResult) -> SessionRecord | None:
    """Insert or replace a sub-result by ordinal while the session is in progress."""

  async def list_stale(self, *, updated_before: str, subject_key: str | None = None) -> list[SessionRecord]:
    """Return active sessions whose last write is older than ``updated_before``."""

  async def get_phases(self, subject_key: str) -> list[PhaseState]:
    """Return stored phase linkage rows for a multi-phase subject."""

  async def set_phase_session(self, subject_key: str, phase_name: str, session_id: str) -> PhaseState:
    """Point a generation phase at its latest session."""

  async def set_phase_input(self, subject_key: str, phase_name: str, input_artifact: dict[str, Any]) -> PhaseState:
    """Record the human input artifact for a phase."""
