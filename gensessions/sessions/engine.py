"""Contract between the execution driver and generation engines.

An engine is an async iterator of events. The driver pulls one event at a
time, so a unit of work ends whenever the engine yields.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from gensessions.sessions.errors import EngineFailure
from gensessions.sessions.models import SubResult


@dataclass(frozen=True)
class EngineRequest:
  """Everything an engine needs to run one session."""

  session_id: str
  subject_key: str
  subject_type: str
  phase: str | None
  seed_input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProgressUpdate:
  message: str


@dataclass(frozen=True)
class SubResultUpdate:
  sub_result: SubResult
  message: str | None = None


@dataclass(frozen=True)
class FinalArtifact:
  payload: dict[str, Any]


EngineEvent = ProgressUpdate | SubResultUpdate | FinalArtifact


class GenerationEngine(Protocol):
  """Opaque external generator of sub-results and artifacts."""

  def run(self, request: EngineRequest) -> AsyncIterator[EngineEvent]:
    """Stream events for ``request``; raising ends the session in error."""


class EngineRegistry:
  """Map subject spec names (``outline``, ``brand_intelligence.brief``) to engines."""

  def __init__(self, engines: Mapping[str, GenerationEngine] | None = None) -> None:
    self._engines: dict[str, GenerationEngine] = dict(engines or {})

  def register(self, name: str, engine: GenerationEngine) -> None:
    self._engines[name] = engine

  def resolve(self, name: str) -> GenerationEngine:
    engine = self._engines.get(name)
    if engine is None:
      raise EngineFailure(f"No generation engine is registered for {name!r}.")
    return engine

  def names(self) -> tuple[str, ...]:
    return tuple(sorted(self._engines))
