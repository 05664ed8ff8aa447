from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from gensessions.sessions.models import SessionStatus


class SessionStartRequest(BaseModel):
  """Request body for starting (or re-attaching to) a generation session."""

  subject_key: StrictStr = Field(min_length=3, max_length=256)
  seed_input: dict[str, Any] = Field(default_factory=dict)
  model_config = ConfigDict(extra="forbid")


class SessionStartResponse(BaseModel):
  session_id: StrictStr
  reused: bool
  status: SessionStatus
  version: int


class SubResultModel(BaseModel):
  ordinal: int
  kind: StrictStr
  status: StrictStr
  detail: dict[str, Any] = Field(default_factory=dict)
  parent_ordinal: int | None = None
  label: StrictStr | None = None


class CountsModel(BaseModel):
  total: int
  passed: int
  failed: int
  pending: int
  warnings: int


class SessionSnapshotResponse(BaseModel):
  """Pull-mode view of a session; clients replace their state with it."""

  session_id: StrictStr
  subject_key: StrictStr
  subject_type: StrictStr
  version: int
  status: SessionStatus
  progress_message: StrictStr | None = None
  sub_results: list[SubResultModel] = Field(default_factory=list)
  counts: CountsModel
  final_payload: dict[str, Any] | None = None
  error_message: StrictStr | None = None
  error_kind: StrictStr | None = None
  created_at: StrictStr
  updated_at: StrictStr
  started_at: StrictStr | None = None
  completed_at: StrictStr | None = None
  poll_interval_seconds: float | None = None


class LatestSessionResponse(BaseModel):
  session: SessionSnapshotResponse | None = None


class AdvanceRequest(BaseModel):
  seed_input: dict[str, Any] = Field(default_factory=dict)
  model_config = ConfigDict(extra="forbid")


class PhaseInputRequest(BaseModel):
  input_artifact: dict[str, Any]
  model_config = ConfigDict(extra="forbid")


class PhaseModel(BaseModel):
  name: StrictStr
  mode: Literal["generation", "human"]
  status: StrictStr
  complete: bool
  session_id: StrictStr | None = None
  session_version: int | None = None
  error_message: StrictStr | None = None
  input_artifact: dict[str, Any] | None = None
  ready_at: StrictStr | None = None


class PhasesResponse(BaseModel):
  subject_key: StrictStr
  status: StrictStr
  current_phase: StrictStr
  phases: list[PhaseModel]


class AdvanceResponse(BaseModel):
  subject_key: StrictStr
  phase: StrictStr
  action: Literal["started", "reused", "waiting_input", "completed"]
  session_id: StrictStr | None = None
  phases: PhasesResponse
