"""Client-side reconstruction of a session from snapshots and push events.

Used by dashboard clients and by tests to check that push and pull converge.
Applying the same snapshot or event twice leaves the view unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from gensessions.sessions.aggregator import compute_counts
from gensessions.sessions.models import TERMINAL_STATUSES, SubResult, SubResultCounts


@dataclass
class SessionView:
  session_id: str | None = None
  status: str = "idle"
  progress_message: str | None = None
  sub_results: dict[int, SubResult] = field(default_factory=dict)
  final_payload: dict[str, Any] | None = None
  error_message: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

  @property
  def counts(self) -> SubResultCounts:
    return compute_counts(self.sub_results.values())

  def ordered(self) -> list[SubResult]:
    return [self.sub_results[ordinal] for ordinal in sorted(self.sub_results)]

  def apply_snapshot(self, snapshot: dict[str, Any]) -> None:
    """Replace the whole view; snapshots are never merged with prior state."""
    self.session_id = snapshot.get("session_id")
    self.status = snapshot.get("status", "idle")
    self.progress_message = snapshot.get("progress_message")
    self.sub_results = {item.ordinal: item for item in (SubResult.from_dict(raw) for raw in snapshot.get("sub_results") or [])}
    self.final_payload = snapshot.get("final_payload")
    self.error_message = snapshot.get("error_message")

  def apply_event(self, event_type: str, data: dict[str, Any]) -> None:
    """Fold one push event into the view."""
    if event_type in {"snapshot", "terminal"}:
      self.apply_snapshot(data)
      return

    # A terminal view only changes through a fresh snapshot.
    if self.is_terminal:
      return

    if event_type == "status":
      self.status = data.get("status", self.status)
      self.progress_message = data.get("progress_message", self.progress_message)
    elif event_type == "progress":
      self.progress_message = data.get("progress_message", self.progress_message)
    elif event_type == "sub_result":
      item = SubResult.from_dict(data["sub_result"])
      self.sub_results[item.ordinal] = item

  def reset(self) -> None:
    """Return to the client-only idle state before a new start."""
    self.apply_snapshot({})
