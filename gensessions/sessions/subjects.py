"""Subject registry: which kinds of generation the service orchestrates.

A subject key names what is being generated, ``<subject_type>:<entity_id>``.
Multi-phase subjects address each generation phase with a phase suffix,
``<subject_type>:<entity_id>::<phase>``, so every phase owns its own session
history and its own active-session slot.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from gensessions.sessions.errors import InvalidSubject

AggregationMode = Literal["passthrough", "qa", "audit"]
PhaseMode = Literal["generation", "human"]

CHECK_STATUSES: frozenset[str] = frozenset({"pending", "passed", "failed", "warning"})
SECTION_STATUSES: frozenset[str] = frozenset({"pending", "in_progress", "completed", "error"})

AUDIT_CITATION_CAP = 3

_SUBJECT_KEY_RE = re.compile(r"^(?P<subject_type>[a-z][a-z_]*):(?P<entity_id>[A-Za-z0-9][A-Za-z0-9_.\-]*)(?:::(?P<phase>[a-z][a-z_]*))?$")


@dataclass(frozen=True)
class CheckDefinition:
  """One QA check the formatting engine runs against an article."""

  kind: str
  description: str


@dataclass(frozen=True)
class PhaseDefinition:
  """One step of a multi-phase subject."""

  name: str
  mode: PhaseMode
  aggregation: AggregationMode = "passthrough"


@dataclass(frozen=True)
class SubjectSpec:
  """How sessions of one subject type are validated and aggregated."""

  name: str
  aggregation: AggregationMode
  statuses: frozenset[str]
  checks: tuple[CheckDefinition, ...] = ()
  phases: tuple[PhaseDefinition, ...] = ()
  citation_cap: int | None = None

  @property
  def is_multi_phase(self) -> bool:
    return bool(self.phases)

  def phase(self, name: str) -> PhaseDefinition:
    for phase in self.phases:
      if phase.name == name:
        return phase
    raise InvalidSubject(f"Subject type {self.name} has no phase named {name!r}.")


@dataclass(frozen=True)
class SubjectKey:
  """Parsed form of a subject key."""

  subject_type: str
  entity_id: str
  phase: str | None = None

  @property
  def base(self) -> str:
    return f"{self.subject_type}:{self.entity_id}"

  def for_phase(self, phase: str) -> SubjectKey:
    return SubjectKey(subject_type=self.subject_type, entity_id=self.entity_id, phase=phase)

  def __str__(self) -> str:
    if self.phase:
      return f"{self.base}::{self.phase}"
    return self.base


FORMATTING_CHECKS: tuple[CheckDefinition, ...] = (
  CheckDefinition("header_hierarchy", "Verify H2s and H3s use proper heading styles, not just bold text"),
  CheckDefinition("line_breaks", "Check for exactly one blank line between paragraphs, no orphan breaks"),
  CheckDefinition("section_completeness", "Ensure all required sections exist: Intro, body, FAQ intro, Conclusion"),
  CheckDefinition("list_consistency", "Verify bullet/number styles don't change within sections"),
  CheckDefinition("bold_cleanup", "Remove unnecessary or random bolding, keep only purposeful bold"),
  CheckDefinition("faq_formatting", "Check FAQ questions are bold sentence-case, answers are plain text"),
  CheckDefinition("citation_placement", "Verify single citation near top, remove any extras"),
  CheckDefinition("utm_cleanup", "Remove source=chatgpt UTM parameters from all URLs"),
)

BRAND_PHASES: tuple[PhaseDefinition, ...] = (
  PhaseDefinition("research", "generation"),
  PhaseDefinition("input", "human"),
  PhaseDefinition("brief", "generation"),
)

_REGISTRY: dict[str, SubjectSpec] = {
  "outline": SubjectSpec(name="outline", aggregation="passthrough", statuses=SECTION_STATUSES),
  "formatting_qa": SubjectSpec(name="formatting_qa", aggregation="qa", statuses=CHECK_STATUSES, checks=FORMATTING_CHECKS),
  "semantic_audit": SubjectSpec(name="semantic_audit", aggregation="audit", statuses=SECTION_STATUSES, citation_cap=AUDIT_CITATION_CAP),
  "brand_intelligence": SubjectSpec(name="brand_intelligence", aggregation="passthrough", statuses=SECTION_STATUSES, phases=BRAND_PHASES),
}


def parse_subject_key(raw: str) -> SubjectKey:
  """Parse ``raw`` into a SubjectKey, rejecting malformed or unknown keys."""
  match = _SUBJECT_KEY_RE.match(raw.strip()) if isinstance(raw, str) else None
  if match is None:
    raise InvalidSubject(f"Malformed subject key {raw!r}; expected '<type>:<entity_id>'.")

  subject_type = match.group("subject_type")
  spec = _REGISTRY.get(subject_type)
  if spec is None:
    raise InvalidSubject(f"Unknown subject type {subject_type!r}.")

  phase = match.group("phase")
  if phase is not None:
    if not spec.is_multi_phase:
      raise InvalidSubject(f"Subject type {subject_type!r} does not have phases.")
    spec.phase(phase)

  return SubjectKey(subject_type=subject_type, entity_id=match.group("entity_id"), phase=phase)


def get_subject_spec(subject_type: str) -> SubjectSpec:
  spec = _REGISTRY.get(subject_type)
  if spec is None:
    raise InvalidSubject(f"Unknown subject type {subject_type!r}.")
  return spec


def resolve_startable(raw: str) -> tuple[SubjectKey, SubjectSpec]:
  """Resolve the SubjectSpec that governs sessions started for ``raw``.

  Multi-phase base keys are not startable; their generation phases are.
  Human-input phases never own sessions.
  """
  key = parse_subject_key(raw)
  spec = get_subject_spec(key.subject_type)
  if not spec.is_multi_phase:
    return key, spec

  if key.phase is None:
    raise InvalidSubject(f"Subject {key.base} has phases; advance it instead of starting it directly.")

  phase = spec.phase(key.phase)
  if phase.mode != "generation":
    raise InvalidSubject(f"Phase {key.phase!r} of {key.base} takes human input and cannot be started.")

  phase_spec = SubjectSpec(name=f"{spec.name}.{phase.name}", aggregation=phase.aggregation, statuses=spec.statuses)
  return key, phase_spec
