"""Hand queued sessions to the execution driver."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

SessionRunner = Callable[[str], Awaitable[Any]]


class SessionDispatcher(Protocol):
  """Schedules one driver run per newly created session."""

  def dispatch(self, session_id: str) -> None:
    """Schedule ``session_id`` without waiting for it to finish."""

  async def shutdown(self) -> None:
    """Stop scheduling and release in-flight work."""


class InProcessDispatcher(SessionDispatcher):
  """Run each session as an asyncio task inside the API process."""

  def __init__(self, runner: SessionRunner) -> None:
    self._runner = runner
    self._tasks: dict[str, asyncio.Task[Any]] = {}

  def dispatch(self, session_id: str) -> None:
    if session_id in self._tasks:
      logger.debug("Session already dispatched session_id=%s", session_id)
      return
    task = asyncio.get_running_loop().create_task(self._runner(session_id), name=f"session-{session_id}")
    self._tasks[session_id] = task
    task.add_done_callback(lambda done, sid=session_id: self._finished(sid, done))

  async def drain(self) -> None:
    """Wait for every dispatched session to finish."""
    while self._tasks:
      await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

  async def shutdown(self) -> None:
    for task in list(self._tasks.values()):
      task.cancel()
    if self._tasks:
      await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
    self._tasks.clear()

  def _finished(self, session_id: str, task: asyncio.Task[Any]) -> None:
    self._tasks.pop(session_id, None)
    if task.cancelled():
      logger.warning("Session task cancelled session_id=%s", session_id)
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Session task failed session_id=%s", session_id, exc_info=exc)


class ManualDispatcher(SessionDispatcher):
  """Record dispatch requests without running them; callers drive sessions explicitly."""

  def __init__(self) -> None:
    self.dispatched: list[str] = []

  def dispatch(self, session_id: str) -> None:
    self.dispatched.append(session_id)

  async def shutdown(self) -> None:
    self.dispatched.clear()
