"""Domain models for generation sessions."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

SessionStatus = Literal["idle", "queued", "in_progress", "completed", "error", "cancelled"]
ErrorKind = Literal["engine_failure", "contract_violation", "expired", "interrupted"]

ACTIVE_STATUSES: frozenset[str] = frozenset({"queued", "in_progress"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error", "cancelled"})

# Persisted statuses only; "idle" never leaves the client.
_TRANSITIONS: dict[str, frozenset[str]] = {
  "queued": frozenset({"in_progress", "cancelled", "error"}),
  "in_progress": frozenset({"completed", "error", "cancelled"}),
}


def can_transition(current: str, target: str) -> bool:
  """Return True when ``current -> target`` moves forward along the lifecycle."""
  return target in _TRANSITIONS.get(current, frozenset())


def is_terminal(status: str) -> bool:
  return status in TERMINAL_STATUSES


@dataclass
class Citation:
  """A source reference attached to an audited section."""

  type: Literal["url", "text"]
  value: str
  description: str | None = None

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> Citation:
    return cls(type=data.get("type", "text"), value=str(data.get("value", "")), description=data.get("description"))


@dataclass
class SubResult:
  """One independently reportable unit: a QA check or an audited section."""

  ordinal: int
  kind: str
  status: str
  detail: dict[str, Any] = field(default_factory=dict)
  parent_ordinal: int | None = None
  label: str | None = None

  @property
  def citations(self) -> list[Citation]:
    raw = self.detail.get("citations") or []
    return [Citation.from_dict(item) for item in raw if isinstance(item, dict)]

  def to_dict(self) -> dict[str, Any]:
    return asdict(self)

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> SubResult:
    return cls(
      ordinal=int(data["ordinal"]),
      kind=str(data["kind"]),
      status=str(data["status"]),
      detail=dict(data.get("detail") or {}),
      parent_ordinal=data.get("parent_ordinal"),
      label=data.get("label"),
    )


@dataclass
class SessionRecord:
  """Represents one attempt at generating output for a subject."""

  session_id: str
  subject_key: str
  subject_type: str
  version: int
  status: SessionStatus
  seed_input: dict[str, Any]
  created_at: str
  updated_at: str
  progress_message: str | None = None
  sub_results: list[SubResult] = field(default_factory=list)
  final_payload: dict[str, Any] | None = None
  error_message: str | None = None
  error_kind: ErrorKind | None = None
  started_at: str | None = None
  completed_at: str | None = None

  @property
  def is_active(self) -> bool:
    return self.status in ACTIVE_STATUSES

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

  def ordered_sub_results(self) -> list[SubResult]:
    return sorted(self.sub_results, key=lambda item: item.ordinal)


@dataclass
class PhaseState:
  """Stored linkage between a subject phase and its session or human input."""

  subject_key: str
  phase_name: str
  session_id: str | None = None
  input_artifact: dict[str, Any] | None = None
  updated_at: str | None = None


@dataclass(frozen=True)
class SubResultCounts:
  """Aggregate counts derived from the full sub-result sequence."""

  total: int = 0
  passed: int = 0
  failed: int = 0
  pending: int = 0
  warnings: int = 0

  def to_dict(self) -> dict[str, int]:
    return asdict(self)
