"""Scripted engines and event builders shared by the test suites."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from gensessions.sessions.engine import EngineEvent, EngineRequest, FinalArtifact, ProgressUpdate, SubResultUpdate
from gensessions.sessions.models import SubResult


class ScriptedEngine:
  """Engine that replays a fixed list of events.

  ``pause_before`` blocks before yielding that index until ``resume`` is set,
  which is how tests interleave cancels with engine progress.
  """

  def __init__(self, events: list[EngineEvent], *, pause_before: int | None = None, fail_before: int | None = None, error: Exception | None = None) -> None:
    self.events = list(events)
    self.pause_before = pause_before
    self.fail_before = fail_before
    self.error = error or RuntimeError("engine exploded")
    self.paused = asyncio.Event()
    self.resume = asyncio.Event()
    self.requests: list[EngineRequest] = []
    self.yielded = 0
    self.closed = False

  async def run(self, request: EngineRequest) -> AsyncIterator[EngineEvent]:
    self.requests.append(request)
    try:
      for index, event in enumerate(self.events):
        if self.pause_before == index:
          self.paused.set()
          await self.resume.wait()
        if self.fail_before == index:
          raise self.error
        self.yielded += 1
        yield event
      if self.fail_before == len(self.events):
        raise self.error
    finally:
      self.closed = True


def check(ordinal: int, kind: str, status: str, **detail: object) -> SubResultUpdate:
  return SubResultUpdate(SubResult(ordinal=ordinal, kind=kind, status=status, detail=dict(detail)))


def section(ordinal: int, title: str, status: str = "completed", *, parent: int | None = None, **detail: object) -> SubResultUpdate:
  return SubResultUpdate(SubResult(ordinal=ordinal, kind="section", status=status, detail=dict(detail), parent_ordinal=parent, label=title))


def progress(message: str) -> ProgressUpdate:
  return ProgressUpdate(message)


def artifact(**payload: object) -> FinalArtifact:
  return FinalArtifact(dict(payload))


def citation(value: str) -> dict[str, str]:
  return {"type": "url", "value": value}
