"""Session lifecycle: idempotent start, latest lookup, status, cancel, expiry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from gensessions.services.dispatch import SessionDispatcher
from gensessions.sessions.cancellation import CancellationRegistry
from gensessions.sessions.channel import ProgressChannel, snapshot_from_record
from gensessions.sessions.errors import AlreadyTerminal, SessionNotFound
from gensessions.sessions.models import ACTIVE_STATUSES, SessionRecord
from gensessions.sessions.subjects import parse_subject_key, resolve_startable
from gensessions.storage.sessions_repo import SessionsRepository
from gensessions.utils.ids import generate_session_id
from gensessions.utils.text import now_iso, sanitize_payload, to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartResult:
  """Outcome of ``start``: the session to attach to and whether it already existed."""

  session_id: str
  reused: bool
  session: SessionRecord


def timeout_message(seconds: int) -> str:
  if seconds % 60 == 0:
    minutes = seconds // 60
    return f"Session timed out after {minutes} minute{'s' if minutes != 1 else ''}"
  return f"Session timed out after {seconds} second{'s' if seconds != 1 else ''}"


class SessionLifecycle:
  """Own session creation and user-initiated transitions."""

  def __init__(
    self,
    repo: SessionsRepository,
    channel: ProgressChannel,
    dispatcher: SessionDispatcher,
    cancellations: CancellationRegistry,
    *,
    stale_after_seconds: int = 1800,
  ) -> None:
    self._repo = repo
    self._channel = channel
    self._dispatcher = dispatcher
    self._cancellations = cancellations
    self._stale_after_seconds = stale_after_seconds

  async def start(self, subject_key: str, seed_input: dict[str, Any] | None = None) -> StartResult:
    """Return the subject's active session, or create and dispatch a new one.

    Raises InvalidSubject for malformed or unknown keys; nothing is written then.
    """
    key, _spec = resolve_startable(subject_key)
    canonical_key = str(key)
    await self.expire_stale(canonical_key)

    now = now_iso()
    candidate = SessionRecord(
      session_id=generate_session_id(),
      subject_key=canonical_key,
      subject_type=key.subject_type,
      version=0,
      status="queued",
      seed_input=sanitize_payload(dict(seed_input or {})),
      created_at=now,
      updated_at=now,
      progress_message="Queued.",
    )
    record, created = await self._repo.create_if_no_active(candidate)
    if not created:
      logger.info("Reusing active session subject_key=%s session_id=%s status=%s", canonical_key, record.session_id, record.status)
      return StartResult(session_id=record.session_id, reused=True, session=record)

    logger.info("Created session subject_key=%s session_id=%s version=%s", canonical_key, record.session_id, record.version)
    self._dispatcher.dispatch(record.session_id)
    return StartResult(session_id=record.session_id, reused=False, session=record)

  async def latest(self, subject_key: str) -> SessionRecord | None:
    """Most recently created session for the subject, regardless of status."""
    canonical_key = str(parse_subject_key(subject_key))
    await self.expire_stale(canonical_key)
    return await self._repo.latest_for_subject(canonical_key)

  async def get(self, session_id: str) -> SessionRecord:
    record = await self._repo.get(session_id)
    if record is None:
      raise SessionNotFound(session_id)
    if record.is_active and self._is_stale(record):
      expired = await self._expire(record)
      if expired is not None:
        return expired
    return record

  async def status(self, session_id: str) -> dict[str, Any]:
    """Pull-mode snapshot of one session."""
    record = await self.get(session_id)
    return snapshot_from_record(record, poll_interval_seconds=self._channel.poll_interval_seconds)

  async def cancel(self, session_id: str) -> SessionRecord:
    """Cancel a queued or running session; terminal sessions are left untouched."""
    record = await self._repo.get(session_id)
    if record is None:
      raise SessionNotFound(session_id)
    if record.is_terminal:
      raise AlreadyTerminal(session_id, record.status)

    self._cancellations.request(session_id)
    cancelled = await self._repo.transition(session_id, expected=ACTIVE_STATUSES, status="cancelled", progress_message="Cancelled by user.")
    if cancelled is None:
      # The driver reached a terminal status first.
      self._cancellations.clear(session_id)
      current = await self._repo.get(session_id)
      raise AlreadyTerminal(session_id, current.status if current else "unknown")
    if record.status == "queued":
      # No driver may ever claim it; a late claim still sees the cancelled status in the store.
      self._cancellations.clear(session_id)

    self._channel.publish_terminal(cancelled)
    logger.info("Cancelled session session_id=%s subject_key=%s sub_results=%s", session_id, cancelled.subject_key, len(cancelled.sub_results))
    return cancelled

  async def expire_stale(self, subject_key: str | None = None) -> list[SessionRecord]:
    """Move abandoned active sessions to error so their subject can start again."""
    if self._stale_after_seconds <= 0:
      return []

    cutoff = to_iso(datetime.now(UTC) - timedelta(seconds=self._stale_after_seconds))
    expired: list[SessionRecord] = []
    for record in await self._repo.list_stale(updated_before=cutoff, subject_key=subject_key):
      result = await self._expire(record)
      if result is not None:
        expired.append(result)
    return expired

  def _is_stale(self, record: SessionRecord) -> bool:
    if self._stale_after_seconds <= 0:
      return False
    cutoff = to_iso(datetime.now(UTC) - timedelta(seconds=self._stale_after_seconds))
    return record.updated_at < cutoff

  async def _expire(self, record: SessionRecord) -> SessionRecord | None:
    self._cancellations.request(record.session_id)
    expired = await self._repo.transition(record.session_id, expected=ACTIVE_STATUSES, status="error", error_message=timeout_message(self._stale_after_seconds), error_kind="expired")
    if expired is None:
      self._cancellations.clear(record.session_id)
      return None
    logger.warning("Expired stale session session_id=%s subject_key=%s last_update=%s", record.session_id, record.subject_key, record.updated_at)
    self._channel.publish_terminal(expired)
    return expired
