"""Deterministic scripted engines for local development.

They emit the same event shapes the real generators do so dashboards can be
exercised end to end without external services.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from typing import Any

from gensessions.sessions.engine import EngineEvent, EngineRegistry, EngineRequest, FinalArtifact, ProgressUpdate, SubResultUpdate
from gensessions.sessions.models import SubResult
from gensessions.sessions.subjects import FORMATTING_CHECKS

logger = logging.getLogger(__name__)

_UTM_RE = re.compile(r"[?&]utm_source=chatgpt(\.com)?")
_H2_RE = re.compile(r"^##\s+(.+)$", re.MULTILINE)


class DummyOutlineEngine:
  def __init__(self, delay_seconds: float = 0.0) -> None:
    self._delay = delay_seconds

  async def run(self, request: EngineRequest) -> AsyncIterator[EngineEvent]:
    topic = str(request.seed_input.get("topic") or request.subject_key)
    steps = ("Searching sources", "Reading results", "Drafting outline")
    for step in steps:
      await asyncio.sleep(self._delay)
      yield ProgressUpdate(f"{step} for {topic}.")
    yield FinalArtifact({"outline": f"# {topic}\n\n## Introduction\n\n## Key points\n\n## Conclusion\n", "citations": []})


class DummyFormattingEngine:
  def __init__(self, delay_seconds: float = 0.0) -> None:
    self._delay = delay_seconds

  async def run(self, request: EngineRequest) -> AsyncIterator[EngineEvent]:
    article = str(request.seed_input.get("article") or "")
    for ordinal, check in enumerate(FORMATTING_CHECKS):
      yield SubResultUpdate(SubResult(ordinal=ordinal, kind=check.kind, status="pending", label=check.description), message=f"Running {check.kind}.")
      await asyncio.sleep(self._delay)
      detail: dict[str, Any] = {"issues": [], "confidence": 0.9}
      status = "passed"
      if check.kind == "utm_cleanup" and _UTM_RE.search(article):
        article = _UTM_RE.sub("", article)
        detail = {"issues": ["Found ChatGPT UTM parameters in links."], "confidence": 0.95, "fix_suggestions": "Removed utm_source=chatgpt parameters.", "corrected_content": article}
        status = "failed"
      yield SubResultUpdate(SubResult(ordinal=ordinal, kind=check.kind, status=status, detail=detail, label=check.description))


class DummySemanticAuditEngine:
  def __init__(self, delay_seconds: float = 0.0) -> None:
    self._delay = delay_seconds

  async def run(self, request: EngineRequest) -> AsyncIterator[EngineEvent]:
    article = str(request.seed_input.get("article") or "")
    titles = _H2_RE.findall(article) or ["Introduction"]
    for ordinal, title in enumerate(titles):
      yield SubResultUpdate(SubResult(ordinal=ordinal, kind="section", status="in_progress", label=title), message=f"Auditing {title}.")
      await asyncio.sleep(self._delay)
      detail = {"strengths": ["Clear topic focus."], "weaknesses": [], "optimized_content": f"Optimized content for {title}.", "editing_pattern": "light"}
      yield SubResultUpdate(SubResult(ordinal=ordinal, kind="section", status="completed", detail=detail, label=title))


class DummyBrandResearchEngine:
  def __init__(self, delay_seconds: float = 0.0) -> None:
    self._delay = delay_seconds

  async def run(self, request: EngineRequest) -> AsyncIterator[EngineEvent]:
    brand = str((request.seed_input.get("seed") or {}).get("brand") or request.subject_key)
    yield ProgressUpdate(f"Researching {brand}.")
    await asyncio.sleep(self._delay)
    yield FinalArtifact(
      {
        "analysis": f"{brand} has a consistent public footprint.",
        "gaps": [{"category": "audience", "question": f"Who is the primary customer of {brand}?", "importance": "high"}],
        "sources": [{"type": "text", "value": "Public website", "description": "Homepage copy"}],
      }
    )


class DummyBrandBriefEngine:
  def __init__(self, delay_seconds: float = 0.0) -> None:
    self._delay = delay_seconds

  async def run(self, request: EngineRequest) -> AsyncIterator[EngineEvent]:
    research = (request.seed_input.get("previous") or {}).get("research") or {}
    answers = (request.seed_input.get("input") or {}).get("input") or {}
    yield ProgressUpdate("Writing brief.")
    await asyncio.sleep(self._delay)
    brief = f"{research.get('analysis', '')}\n\nClient answers: {len(answers)}"
    yield FinalArtifact({"brief": brief.strip(), "sources": research.get("sources", [])})


def build_dummy_engines(delay_seconds: float = 0.0) -> EngineRegistry:
  logger.info("Registering dummy generation engines delay=%.2fs", delay_seconds)
  return EngineRegistry(
    {
      "outline": DummyOutlineEngine(delay_seconds),
      "formatting_qa": DummyFormattingEngine(delay_seconds),
      "semantic_audit": DummySemanticAuditEngine(delay_seconds),
      "brand_intelligence.research": DummyBrandResearchEngine(delay_seconds),
      "brand_intelligence.brief": DummyBrandBriefEngine(delay_seconds),
    }
  )
