"""Cooperative cancellation flags polled by the execution driver."""

from __future__ import annotations

import threading

from gensessions.storage.sessions_repo import SessionsRepository


class CancellationRegistry:
  """In-process flags with a store fallback so cancels from other workers are seen."""

  def __init__(self, repo: SessionsRepository) -> None:
    self._repo = repo
    self._flags: set[str] = set()
    self._lock = threading.Lock()

  def request(self, session_id: str) -> None:
    with self._lock:
      self._flags.add(session_id)

  async def is_requested(self, session_id: str) -> bool:
    with self._lock:
      if session_id in self._flags:
        return True

    record = await self._repo.get(session_id)
    if record is not None and record.status in {"cancelled", "error"}:
      self.request(session_id)
      return True
    return False

  def clear(self, session_id: str) -> None:
    with self._lock:
      self._flags.discard(session_id)
