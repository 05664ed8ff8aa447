"""Push and pull projections of session state.

Both modes read from the same store. Push subscribers get a snapshot first
and then every write the driver or a cancel applies, in apply order, until
the terminal event. Delivery is at-least-once: an event published between
subscriber registration and the snapshot read shows up twice, and clients
apply events idempotently keyed by ordinal.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal

from gensessions.sessions.aggregator import compute_counts
from gensessions.sessions.errors import ChannelDisconnect, SessionNotFound
from gensessions.sessions.models import SessionRecord, SubResult
from gensessions.storage.sessions_repo import SessionsRepository

logger = logging.getLogger(__name__)

EventType = Literal["snapshot", "status", "progress", "sub_result", "terminal", "heartbeat"]


@dataclass(frozen=True)
class ChannelEvent:
  """One message on a session's push stream."""

  type: EventType
  session_id: str
  data: dict[str, Any] = field(default_factory=dict)
  sequence: int = 0


def snapshot_from_record(record: SessionRecord, *, poll_interval_seconds: float | None = None) -> dict[str, Any]:
  """Full pull-mode view of a session; clients replace their state with it."""
  sub_results = record.ordered_sub_results()
  snapshot: dict[str, Any] = {
    "session_id": record.session_id,
    "subject_key": record.subject_key,
    "subject_type": record.subject_type,
    "version": record.version,
    "status": record.status,
    "progress_message": record.progress_message,
    "sub_results": [item.to_dict() for item in sub_results],
    "counts": compute_counts(sub_results).to_dict(),
    "final_payload": record.final_payload if record.status == "completed" else None,
    "error_message": record.error_message if record.status == "error" else None,
    "error_kind": record.error_kind if record.status == "error" else None,
    "created_at": record.created_at,
    "updated_at": record.updated_at,
    "started_at": record.started_at,
    "completed_at": record.completed_at,
  }
  if poll_interval_seconds is not None and not record.is_terminal:
    snapshot["poll_interval_seconds"] = poll_interval_seconds
  return snapshot


class _Subscriber:
  def __init__(self, maxsize: int) -> None:
    self.queue: asyncio.Queue[ChannelEvent] = asyncio.Queue(maxsize=maxsize)
    self.overflowed = False


class ProgressChannel:
  """Fan session writes out to attached subscribers and serve pull snapshots."""

  def __init__(self, repo: SessionsRepository, *, queue_size: int = 1000, poll_interval_seconds: float = 3.0) -> None:
    self._repo = repo
    self._queue_size = queue_size
    self._poll_interval_seconds = poll_interval_seconds
    self._subscribers: dict[str, set[_Subscriber]] = defaultdict(set)
    self._sequence = itertools.count(1)

  @property
  def poll_interval_seconds(self) -> float:
    return self._poll_interval_seconds

  async def snapshot(self, session_id: str) -> dict[str, Any]:
    record = await self._repo.get(session_id)
    if record is None:
      raise SessionNotFound(session_id)
    return snapshot_from_record(record, poll_interval_seconds=self._poll_interval_seconds)

  def subscriber_count(self, session_id: str) -> int:
    return len(self._subscribers.get(session_id, ()))

  def publish_status(self, record: SessionRecord) -> None:
    if record.is_terminal:
      self.publish_terminal(record)
      return
    self._publish(record.session_id, "status", {"status": record.status, "progress_message": record.progress_message, "updated_at": record.updated_at})

  def publish_progress(self, record: SessionRecord) -> None:
    self._publish(record.session_id, "progress", {"progress_message": record.progress_message, "updated_at": record.updated_at})

  def publish_sub_result(self, record: SessionRecord, sub_result: SubResult) -> None:
    counts = compute_counts(record.sub_results).to_dict()
    self._publish(record.session_id, "sub_result", {"sub_result": sub_result.to_dict(), "counts": counts, "updated_at": record.updated_at})

  def publish_terminal(self, record: SessionRecord) -> None:
    self._publish(record.session_id, "terminal", snapshot_from_record(record))

  async def subscribe(self, session_id: str, *, heartbeat_seconds: float | None = None) -> AsyncIterator[ChannelEvent]:
    """Yield a snapshot, then live events, ending after the terminal event.

    Raises SessionNotFound before yielding anything for unknown sessions and
    ChannelDisconnect when this subscriber overflowed its queue.
    """
    subscriber = _Subscriber(self._queue_size)
    # Register before reading so no write can fall between snapshot and stream.
    self._subscribers[session_id].add(subscriber)
    try:
      record = await self._repo.get(session_id)
      if record is None:
        raise SessionNotFound(session_id)

      yield ChannelEvent(type="snapshot", session_id=session_id, data=snapshot_from_record(record, poll_interval_seconds=self._poll_interval_seconds), sequence=next(self._sequence))
      if record.is_terminal:
        yield ChannelEvent(type="terminal", session_id=session_id, data=snapshot_from_record(record), sequence=next(self._sequence))
        return

      while True:
        if subscriber.overflowed:
          raise ChannelDisconnect(f"Subscriber for session {session_id} fell behind; re-sync with a snapshot.")
        try:
          if heartbeat_seconds is None:
            event = await subscriber.queue.get()
          else:
            event = await asyncio.wait_for(subscriber.queue.get(), timeout=heartbeat_seconds)
        except TimeoutError:
          yield ChannelEvent(type="heartbeat", session_id=session_id)
          continue

        yield event
        if event.type == "terminal":
          return
    finally:
      self._discard(session_id, subscriber)

  def _publish(self, session_id: str, event_type: EventType, data: dict[str, Any]) -> None:
    subscribers = self._subscribers.get(session_id)
    if not subscribers:
      return

    event = ChannelEvent(type=event_type, session_id=session_id, data=data, sequence=next(self._sequence))
    for subscriber in list(subscribers):
      if subscriber.overflowed:
        continue
      try:
        subscriber.queue.put_nowait(event)
      except asyncio.QueueFull:
        subscriber.overflowed = True
        logger.warning("Dropping slow subscriber session_id=%s queue_size=%s", session_id, self._queue_size)

  def _discard(self, session_id: str, subscriber: _Subscriber) -> None:
    subscribers = self._subscribers.get(session_id)
    if subscribers is None:
      return
    subscribers.discard(subscriber)
    if not subscribers:
      self._subscribers.pop(session_id, None)


def format_sse(event: ChannelEvent) -> str:
  """Render an event as a Server-Sent Events frame."""
  if event.type == "heartbeat":
    return ": keep-alive\n\n"
  payload = json.dumps({"type": event.type, "session_id": event.session_id, **event.data}, ensure_ascii=False, default=str)
  return f"id: {event.sequence}\nevent: {event.type}\ndata: {payload}\n\n"


def format_resync(session_id: str) -> str:
  payload = json.dumps({"type": "resync", "session_id": session_id})
  return f"event: resync\ndata: {payload}\n\n"
