"""Sequence phase sessions for multi-phase subjects.

Phase state is never cached: every call rebuilds it from the latest session
of each phase key and the stored human inputs. A generation phase counts as
complete only when its latest session completed and was created after the
phase before it became ready, and human input counts only when it was given
after that point. Re-running an early phase therefore invalidates every
phase downstream of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from gensessions.sessions.errors import InvalidSubject, PhasePrerequisiteMissing
from gensessions.sessions.lifecycle import SessionLifecycle
from gensessions.sessions.models import PhaseState, SessionRecord
from gensessions.sessions.subjects import PhaseDefinition, SubjectKey, SubjectSpec, get_subject_spec, parse_subject_key
from gensessions.storage.sessions_repo import SessionsRepository
from gensessions.utils.text import sanitize_payload

logger = logging.getLogger(__name__)

AdvanceAction = Literal["started", "reused", "waiting_input", "completed"]


@dataclass
class PhaseView:
  """Derived state of one phase."""

  name: str
  mode: str
  status: str
  complete: bool
  session: SessionRecord | None = None
  input_artifact: dict[str, Any] | None = None
  ready_at: str | None = None

  def to_dict(self) -> dict[str, Any]:
    return {
      "name": self.name,
      "mode": self.mode,
      "status": self.status,
      "complete": self.complete,
      "session_id": self.session.session_id if self.session else None,
      "session_version": self.session.version if self.session else None,
      "error_message": self.session.error_message if self.session and self.session.status == "error" else None,
      "input_artifact": self.input_artifact,
      "ready_at": self.ready_at,
    }


@dataclass
class SubjectPhasesView:
  subject_key: str
  status: str
  current_phase: str
  phases: list[PhaseView] = field(default_factory=list)

  def phase(self, name: str) -> PhaseView:
    for item in self.phases:
      if item.name == name:
        return item
    raise InvalidSubject(f"Subject {self.subject_key} has no phase named {name!r}.")

  def to_dict(self) -> dict[str, Any]:
    return {"subject_key": self.subject_key, "status": self.status, "current_phase": self.current_phase, "phases": [item.to_dict() for item in self.phases]}


@dataclass(frozen=True)
class AdvanceResult:
  subject_key: str
  phase: str
  action: AdvanceAction
  session_id: str | None
  view: SubjectPhasesView


class PhaseCoordinator:
  """Start the next phase session once its prerequisites are satisfied."""

  def __init__(self, repo: SessionsRepository, lifecycle: SessionLifecycle) -> None:
    self._repo = repo
    self._lifecycle = lifecycle

  async def phases(self, subject_key: str) -> SubjectPhasesView:
    key, spec = _resolve_multi_phase(subject_key)
    return await self._build_view(key, spec)

  async def advance(self, subject_key: str, seed_input: dict[str, Any] | None = None) -> AdvanceResult:
    """Move the subject forward by one step from its earliest incomplete phase.

    A failed phase is retried on its own; completed earlier phases are not re-run.
    """
    key, spec = _resolve_multi_phase(subject_key)
    view = await self._build_view(key, spec)

    if view.status == "completed":
      return AdvanceResult(subject_key=key.base, phase=view.current_phase, action="completed", session_id=None, view=view)

    current = view.phase(view.current_phase)
    if current.mode == "human":
      return AdvanceResult(subject_key=key.base, phase=current.name, action="waiting_input", session_id=None, view=view)

    phase_seed = self._phase_seed(spec, view, current.name, seed_input)
    result = await self._lifecycle.start(str(key.for_phase(current.name)), phase_seed)
    await self._repo.set_phase_session(key.base, current.name, result.session_id)
    action: AdvanceAction = "reused" if result.reused else "started"
    logger.info("Advanced subject subject_key=%s phase=%s action=%s session_id=%s", key.base, current.name, action, result.session_id)

    refreshed = await self._build_view(key, spec)
    return AdvanceResult(subject_key=key.base, phase=current.name, action=action, session_id=result.session_id, view=refreshed)

  async def provide_input(self, subject_key: str, phase_name: str, input_artifact: dict[str, Any]) -> SubjectPhasesView:
    """Record human input for a phase whose upstream phases are complete."""
    key, spec = _resolve_multi_phase(subject_key)
    definition = spec.phase(phase_name)
    if definition.mode != "human":
      raise InvalidSubject(f"Phase {phase_name!r} of {key.base} is generated, not provided.")

    view = await self._build_view(key, spec)
    index = _phase_index(spec, phase_name)
    for upstream in view.phases[:index]:
      if not upstream.complete:
        raise PhasePrerequisiteMissing(f"Phase {upstream.name!r} of {key.base} must complete before {phase_name!r} input is accepted.")
    for downstream in view.phases[index + 1 :]:
      if downstream.session is not None and downstream.session.is_active:
        raise PhasePrerequisiteMissing(f"Phase {downstream.name!r} of {key.base} is running; cancel it before changing {phase_name!r} input.")

    await self._repo.set_phase_input(key.base, phase_name, sanitize_payload(dict(input_artifact)))
    logger.info("Recorded phase input subject_key=%s phase=%s", key.base, phase_name)
    return await self._build_view(key, spec)

  async def _build_view(self, key: SubjectKey, spec: SubjectSpec) -> SubjectPhasesView:
    stored: dict[str, PhaseState] = {state.phase_name: state for state in await self._repo.get_phases(key.base)}
    views: list[PhaseView] = []
    upstream_ready_at: str | None = None
    upstream_complete = True

    for definition in spec.phases:
      if definition.mode == "human":
        view = _human_phase_view(definition, stored.get(definition.name), upstream_ready_at)
      else:
        session = await self._lifecycle.latest(str(key.for_phase(definition.name)))
        view = _generation_phase_view(definition, session, upstream_ready_at)

      # Nothing downstream of an incomplete phase can count as complete.
      view.complete = view.complete and upstream_complete
      upstream_complete = view.complete
      if view.complete and view.ready_at is not None:
        upstream_ready_at = max(upstream_ready_at or view.ready_at, view.ready_at)
      views.append(view)

    current = next((item for item in views if not item.complete), views[-1])
    if all(item.complete for item in views):
      status = "completed"
    elif current.mode == "human":
      status = "waiting_input"
    else:
      status = {"queued": "in_progress", "in_progress": "in_progress", "error": "error", "cancelled": "cancelled"}.get(current.status, "pending")

    return SubjectPhasesView(subject_key=key.base, status=status, current_phase=current.name, phases=views)

  def _phase_seed(self, spec: SubjectSpec, view: SubjectPhasesView, phase_name: str, seed_input: dict[str, Any] | None) -> dict[str, Any]:
    previous: dict[str, Any] = {}
    inputs: dict[str, Any] = {}
    for item in view.phases[: _phase_index(spec, phase_name)]:
      if item.mode == "human":
        inputs[item.name] = item.input_artifact
      elif item.session is not None and item.session.final_payload is not None:
        previous[item.name] = item.session.final_payload.get("artifact", item.session.final_payload)

    seed = dict(seed_input or {})
    if not seed:
      # Retries and later phases reuse the seed the subject was first advanced with.
      for item in view.phases:
        if item.session is not None:
          seed = dict(item.session.seed_input.get("seed") or {})
          break
    return {"seed": seed, "previous": previous, "input": inputs}


def _resolve_multi_phase(subject_key: str) -> tuple[SubjectKey, SubjectSpec]:
  key = parse_subject_key(subject_key)
  spec = get_subject_spec(key.subject_type)
  if not spec.is_multi_phase:
    raise InvalidSubject(f"Subject type {key.subject_type!r} does not have phases.")
  if key.phase is not None:
    raise InvalidSubject(f"Use the base subject key {key.base!r} to coordinate phases.")
  return key, spec


def _phase_index(spec: SubjectSpec, phase_name: str) -> int:
  for index, phase in enumerate(spec.phases):
    if phase.name == phase_name:
      return index
  raise InvalidSubject(f"Subject type {spec.name} has no phase named {phase_name!r}.")


def _human_phase_view(definition: PhaseDefinition, state: PhaseState | None, upstream_ready_at: str | None) -> PhaseView:
  if state is None or state.input_artifact is None:
    return PhaseView(name=definition.name, mode=definition.mode, status="waiting", complete=False)
  if upstream_ready_at is not None and state.updated_at is not None and state.updated_at < upstream_ready_at:
    # Given against an earlier upstream result; ask again.
    return PhaseView(name=definition.name, mode=definition.mode, status="outdated", complete=False, input_artifact=state.input_artifact)
  return PhaseView(name=definition.name, mode=definition.mode, status="provided", complete=True, input_artifact=state.input_artifact, ready_at=state.updated_at)


def _generation_phase_view(definition: PhaseDefinition, session: SessionRecord | None, upstream_ready_at: str | None) -> PhaseView:
  if session is None:
    return PhaseView(name=definition.name, mode=definition.mode, status="pending", complete=False)

  complete = session.status == "completed"
  status = session.status
  if complete and upstream_ready_at is not None and session.created_at < upstream_ready_at:
    # Built from inputs that have since changed.
    complete = False
    status = "outdated"
  return PhaseView(name=definition.name, mode=definition.mode, status=status, complete=complete, session=session, ready_at=session.completed_at if complete else None)
