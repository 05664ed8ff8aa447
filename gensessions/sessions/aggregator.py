"""Running counts and final artifact composition for session sub-results."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from gensessions.sessions.errors import ContractViolation
from gensessions.sessions.models import SessionRecord, SubResult, SubResultCounts
from gensessions.sessions.subjects import SubjectSpec

logger = logging.getLogger(__name__)

_PASSED = frozenset({"passed", "warning", "completed"})
_FAILED = frozenset({"failed", "error"})


def compute_counts(sub_results: Iterable[SubResult]) -> SubResultCounts:
  """Recompute counts from the full sequence; never maintained incrementally."""
  total = passed = failed = pending = warnings = 0
  for item in sub_results:
    total += 1
    if item.status in _PASSED:
      passed += 1
      if item.status == "warning":
        warnings += 1
    elif item.status in _FAILED:
      failed += 1
    else:
      pending += 1
  return SubResultCounts(total=total, passed=passed, failed=failed, pending=pending, warnings=warnings)


def count_citations(sub_results: Iterable[SubResult]) -> int:
  return sum(len(item.citations) for item in sub_results)


def validate_sub_result(spec: SubjectSpec, existing: Iterable[SubResult], candidate: SubResult) -> None:
  """Reject a sub-result write that would break the subject's aggregation rules."""
  if candidate.ordinal < 0:
    raise ContractViolation(f"Sub-result ordinal must be >= 0, got {candidate.ordinal}.")

  if candidate.status not in spec.statuses:
    raise ContractViolation(f"Status {candidate.status!r} is not valid for {spec.name} sub-results.")

  if spec.checks and candidate.kind not in {item.kind for item in spec.checks}:
    raise ContractViolation(f"Unknown check kind {candidate.kind!r} for {spec.name}.")

  # The write replaces any entry with the same ordinal, so compare against the others.
  others = {item.ordinal: item for item in existing if item.ordinal != candidate.ordinal}

  if candidate.parent_ordinal is not None:
    if spec.aggregation != "audit":
      raise ContractViolation(f"{spec.name} sub-results cannot be nested.")
    parent = others.get(candidate.parent_ordinal)
    if parent is None:
      raise ContractViolation(f"Parent section {candidate.parent_ordinal} has not been recorded.")
    if parent.parent_ordinal is not None:
      raise ContractViolation("Sections may only nest one level deep.")

  if spec.citation_cap is not None:
    total = count_citations(others.values()) + len(candidate.citations)
    if total > spec.citation_cap:
      raise ContractViolation(f"Citation cap exceeded: {total} citations recorded, at most {spec.citation_cap} allowed.")


def compose_final_payload(spec: SubjectSpec, session: SessionRecord, engine_payload: Mapping[str, Any] | None) -> dict[str, Any]:
  """Build the artifact stored on the session when it completes."""
  sub_results = session.ordered_sub_results()
  counts = compute_counts(sub_results)

  if spec.aggregation == "passthrough":
    if engine_payload is None:
      raise ContractViolation(f"{spec.name} engine finished without a final artifact.")
    return {"artifact": dict(engine_payload), "counts": counts.to_dict()}

  if not sub_results:
    raise ContractViolation(f"{spec.name} engine finished without producing any sub-results.")

  if spec.aggregation == "qa":
    payload = _compose_qa(session, sub_results)
  else:
    payload = _compose_audit(spec, sub_results)

  payload["counts"] = counts.to_dict()
  if engine_payload:
    payload["engine"] = dict(engine_payload)
  logger.debug("Composed %s payload session_id=%s sub_results=%s", spec.name, session.session_id, counts.total)
  return payload


def _compose_qa(session: SessionRecord, sub_results: list[SubResult]) -> dict[str, Any]:
  cleaned_article = str(session.seed_input.get("article") or "")
  suggestions: list[dict[str, Any]] = []
  report_lines = ["# Formatting QA Report", ""]

  for item in sub_results:
    # Checks run in ordinal order over the progressively cleaned document.
    corrected = item.detail.get("corrected_content")
    if isinstance(corrected, str) and corrected:
      cleaned_article = corrected

    fix_text = item.detail.get("fix_suggestions")
    if fix_text:
      suggestions.append({"checkType": item.kind, "status": item.status, "fixSuggestions": fix_text})

    report_lines.append(f"## {item.label or item.kind}: {item.status}")
    for issue in item.detail.get("issues") or []:
      report_lines.append(f"- {issue}")
    report_lines.append("")

  return {"cleanedArticle": cleaned_article, "fixSuggestions": suggestions, "fixReport": "\n".join(report_lines).rstrip() + "\n"}


def _compose_audit(spec: SubjectSpec, sub_results: list[SubResult]) -> dict[str, Any]:
  blocks: list[str] = []
  citations: list[dict[str, Any]] = []
  editing_patterns: list[dict[str, Any]] = []

  for item in sub_results:
    citations.extend({"type": citation.type, "value": citation.value, "description": citation.description} for citation in item.citations)
    pattern = item.detail.get("editing_pattern")
    if pattern:
      editing_patterns.append({"ordinal": item.ordinal, "pattern": pattern})

    if item.status != "completed":
      continue
    content = item.detail.get("optimized_content")
    if not content:
      continue
    heading = "###" if item.parent_ordinal is not None else "##"
    title = item.label or item.kind
    blocks.append(f"{heading} {title}\n\n{content}")

  if spec.citation_cap is not None and len(citations) > spec.citation_cap:
    raise ContractViolation(f"Citation cap exceeded: {len(citations)} citations, at most {spec.citation_cap} allowed.")

  return {"optimizedArticle": "\n\n".join(blocks), "citations": citations, "editingPatterns": editing_patterns}
