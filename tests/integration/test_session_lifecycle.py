"""Lifecycle and driver behaviour against the in-memory store."""

from __future__ import annotations

import asyncio

import pytest

from gensessions.engines.dummy import build_dummy_engines
from gensessions.sessions.errors import AlreadyTerminal, InvalidSubject, SessionNotFound
from gensessions.sessions.models import SessionRecord
from gensessions.sessions.view import SessionView
from tests.helpers import ScriptedEngine, artifact, check, citation, progress, section

_LONG_AGO = "2000-01-01T00:00:00.000000Z"


async def _seed_stale_session(runtime, subject_key: str) -> SessionRecord:
  """Insert an active session whose last update is far in the past."""
  record, _ = await runtime.repo.create_if_no_active(
    SessionRecord(session_id="stale-1", subject_key=subject_key, subject_type=subject_key.split(":")[0], version=0, status="in_progress", seed_input={}, created_at=_LONG_AGO, updated_at=_LONG_AGO)
  )
  return record


@pytest.mark.anyio
async def test_start_is_idempotent_while_active(make_runtime) -> None:
  runtime = make_runtime({"formatting_qa": ScriptedEngine([])})

  first = await runtime.lifecycle.start("formatting_qa:a1", {"article": "draft"})
  second = await runtime.lifecycle.start("formatting_qa:a1", {"article": "other"})

  assert first.reused is False
  assert second.reused is True
  assert second.session_id == first.session_id
  assert second.session.seed_input == {"article": "draft"}
  assert runtime.dispatcher.dispatched == [first.session_id]


@pytest.mark.anyio
async def test_concurrent_starts_share_one_session(make_runtime) -> None:
  runtime = make_runtime({"formatting_qa": ScriptedEngine([])})

  results = await asyncio.gather(*(runtime.lifecycle.start("formatting_qa:a1") for _ in range(8)))

  assert len({result.session_id for result in results}) == 1
  assert sum(1 for result in results if not result.reused) == 1
  assert len(runtime.dispatcher.dispatched) == 1


@pytest.mark.anyio
async def test_invalid_subject_writes_nothing(make_runtime) -> None:
  runtime = make_runtime()
  with pytest.raises(InvalidSubject):
    await runtime.lifecycle.start("not-a-key")
  with pytest.raises(InvalidSubject):
    await runtime.lifecycle.start("brand_intelligence:acme")
  assert runtime.dispatcher.dispatched == []


@pytest.mark.anyio
async def test_qa_session_runs_to_completion(make_runtime) -> None:
  engine = ScriptedEngine(
    [
      progress("Checking headers"),
      check(0, "header_hierarchy", "passed"),
      check(1, "line_breaks", "passed"),
      check(2, "utm_cleanup", "failed", corrected_content="clean", fix_suggestions="Removed UTM."),
    ]
  )
  runtime = make_runtime({"formatting_qa": engine})
  started = await runtime.lifecycle.start("formatting_qa:a1", {"article": "dirty"})

  done = await runtime.driver.run(started.session_id)

  assert done is not None and done.status == "completed"
  snapshot = await runtime.lifecycle.status(started.session_id)
  assert snapshot["counts"] == {"total": 3, "passed": 2, "failed": 1, "pending": 0, "warnings": 0}
  assert snapshot["final_payload"]["cleanedArticle"] == "clean"
  assert "poll_interval_seconds" not in snapshot
  assert engine.requests[0].seed_input == {"article": "dirty"}
  assert engine.closed is True

  # A finished subject starts a fresh version.
  again = await runtime.lifecycle.start("formatting_qa:a1")
  assert again.reused is False
  assert again.session.version == 2


@pytest.mark.anyio
async def test_push_stream_and_pull_snapshot_converge(make_runtime) -> None:
  engine = ScriptedEngine([check(0, "header_hierarchy", "pending"), check(0, "header_hierarchy", "passed"), check(1, "bold_cleanup", "failed")], pause_before=0)
  runtime = make_runtime({"formatting_qa": engine})
  started = await runtime.lifecycle.start("formatting_qa:a1")

  pushed = SessionView()

  async def consume() -> None:
    async for event in runtime.channel.subscribe(started.session_id):
      pushed.apply_event(event.type, event.data)

  consumer = asyncio.create_task(consume())
  driver = asyncio.create_task(runtime.driver.run(started.session_id))
  await engine.paused.wait()
  while runtime.channel.subscriber_count(started.session_id) == 0:
    await asyncio.sleep(0)
  engine.resume.set()
  await driver
  await asyncio.wait_for(consumer, timeout=1)

  pulled = SessionView()
  pulled.apply_snapshot(await runtime.lifecycle.status(started.session_id))
  assert pushed == pulled
  assert pulled.status == "completed"
  assert pulled.counts.total == 2


@pytest.mark.anyio
async def test_cancel_mid_run_keeps_partial_results(make_runtime) -> None:
  engine = ScriptedEngine([check(0, "header_hierarchy", "passed"), check(1, "line_breaks", "passed"), check(2, "bold_cleanup", "passed"), check(3, "faq_formatting", "passed"), check(4, "utm_cleanup", "passed")], pause_before=2)
  runtime = make_runtime({"formatting_qa": engine})
  started = await runtime.lifecycle.start("formatting_qa:a1")

  task = asyncio.create_task(runtime.driver.run(started.session_id))
  await engine.paused.wait()
  cancelled = await runtime.lifecycle.cancel(started.session_id)
  engine.resume.set()
  result = await task

  assert cancelled.status == "cancelled"
  assert result is not None and result.status == "cancelled"
  stored = await runtime.lifecycle.get(started.session_id)
  assert [item.ordinal for item in stored.sub_results] == [0, 1]
  assert stored.final_payload is None
  assert engine.yielded == 3
  assert engine.closed is True

  with pytest.raises(AlreadyTerminal):
    await runtime.lifecycle.cancel(started.session_id)


@pytest.mark.anyio
async def test_cancel_queued_session_is_never_run(make_runtime) -> None:
  engine = ScriptedEngine([check(0, "header_hierarchy", "passed")])
  runtime = make_runtime({"formatting_qa": engine})
  started = await runtime.lifecycle.start("formatting_qa:a1")

  await runtime.lifecycle.cancel(started.session_id)
  result = await runtime.driver.run(started.session_id)

  assert result is not None and result.status == "cancelled"
  assert engine.requests == []


@pytest.mark.anyio
async def test_cancel_queued_session_does_not_leave_a_flag(make_runtime) -> None:
  engine = ScriptedEngine([check(0, "header_hierarchy", "passed")])
  runtime = make_runtime({"formatting_qa": engine})
  started = await runtime.lifecycle.start("formatting_qa:a1")

  await runtime.lifecycle.cancel(started.session_id)

  assert started.session_id not in runtime.cancellations._flags
  assert await runtime.cancellations.is_requested(started.session_id) is True
  result = await runtime.driver.run(started.session_id)
  assert result is not None and result.status == "cancelled"
  assert engine.requests == []
  assert runtime.cancellations._flags == set()


@pytest.mark.anyio
async def test_shutdown_marks_running_session_interrupted(make_runtime) -> None:
  engine = ScriptedEngine([check(0, "header_hierarchy", "passed"), check(1, "line_breaks", "passed")], pause_before=1)
  runtime = make_runtime({"formatting_qa": engine}, auto_dispatch=True)
  started = await runtime.lifecycle.start("formatting_qa:a1")

  await engine.paused.wait()
  await runtime.dispatcher.shutdown()

  stored = await runtime.lifecycle.get(started.session_id)
  assert stored.status == "error"
  assert stored.error_kind == "interrupted"
  assert [item.ordinal for item in stored.sub_results] == [0]
  assert engine.closed is True
  assert runtime.cancellations._flags == set()
  assert (await runtime.lifecycle.start("formatting_qa:a1")).reused is False


@pytest.mark.anyio
async def test_unknown_check_kind_fails_the_session(make_runtime) -> None:
  engine = ScriptedEngine([check(0, "header_hierarchy", "passed"), check(1, "spelling", "passed")])
  runtime = make_runtime({"formatting_qa": engine})
  started = await runtime.lifecycle.start("formatting_qa:a1")

  result = await runtime.driver.run(started.session_id)

  assert result is not None and result.status == "error"
  assert result.error_kind == "contract_violation"
  assert "spelling" in (result.error_message or "")
  assert [item.kind for item in result.sub_results] == ["header_hierarchy"]


@pytest.mark.anyio
async def test_cancel_unknown_session(make_runtime) -> None:
  runtime = make_runtime()
  with pytest.raises(SessionNotFound):
    await runtime.lifecycle.cancel("missing")


@pytest.mark.anyio
async def test_engine_failure_ends_session_in_error(make_runtime) -> None:
  engine = ScriptedEngine([check(0, "header_hierarchy", "passed"), check(1, "line_breaks", "passed")], fail_before=1, error=RuntimeError("model timeout"))
  runtime = make_runtime({"formatting_qa": engine})
  started = await runtime.lifecycle.start("formatting_qa:a1")

  result = await runtime.driver.run(started.session_id)

  assert result is not None and result.status == "error"
  assert result.error_kind == "engine_failure"
  assert "model timeout" in (result.error_message or "")
  assert len(result.sub_results) == 1
  assert (await runtime.lifecycle.start("formatting_qa:a1")).reused is False


@pytest.mark.anyio
async def test_missing_engine_is_an_engine_failure(make_runtime) -> None:
  runtime = make_runtime()
  started = await runtime.lifecycle.start("outline:topic-1")
  result = await runtime.driver.run(started.session_id)
  assert result is not None and result.status == "error"
  assert result.error_kind == "engine_failure"


@pytest.mark.anyio
async def test_citation_cap_violation_fails_the_session(make_runtime) -> None:
  engine = ScriptedEngine(
    [
      section(0, "Intro", citations=[citation("https://a"), citation("https://b")]),
      section(1, "Body", citations=[citation("https://c")]),
      section(2, "FAQ", citations=[citation("https://d")]),
    ]
  )
  runtime = make_runtime({"semantic_audit": engine})
  started = await runtime.lifecycle.start("semantic_audit:a1")

  result = await runtime.driver.run(started.session_id)

  assert result is not None and result.status == "error"
  assert result.error_kind == "contract_violation"
  assert [item.ordinal for item in result.sub_results] == [0, 1]


@pytest.mark.anyio
async def test_qa_session_without_sub_results_is_a_contract_violation(make_runtime) -> None:
  runtime = make_runtime({"formatting_qa": ScriptedEngine([progress("nothing to do")])})
  started = await runtime.lifecycle.start("formatting_qa:a1")
  result = await runtime.driver.run(started.session_id)
  assert result is not None and result.error_kind == "contract_violation"


@pytest.mark.anyio
async def test_passthrough_session_stores_engine_artifact(make_runtime) -> None:
  runtime = make_runtime({"outline": ScriptedEngine([progress("Searching"), artifact(outline="# Topic")])})
  started = await runtime.lifecycle.start("outline:topic-1")
  result = await runtime.driver.run(started.session_id)
  assert result is not None and result.status == "completed"
  assert result.final_payload is not None and result.final_payload["artifact"] == {"outline": "# Topic"}
  assert result.progress_message == "Generation complete."


@pytest.mark.anyio
async def test_latest_returns_most_recent_session(make_runtime) -> None:
  runtime = make_runtime({"outline": ScriptedEngine([artifact(outline="x")])})
  assert await runtime.lifecycle.latest("outline:topic-1") is None

  first = await runtime.lifecycle.start("outline:topic-1")
  await runtime.lifecycle.cancel(first.session_id)
  second = await runtime.lifecycle.start("outline:topic-1")

  latest = await runtime.lifecycle.latest("outline:topic-1")
  assert latest is not None and latest.session_id == second.session_id
  assert latest.version == 2


@pytest.mark.anyio
async def test_stale_active_session_expires_and_frees_the_subject(make_runtime) -> None:
  runtime = make_runtime({"outline": ScriptedEngine([artifact(outline="x")])})
  started = await _seed_stale_session(runtime, "outline:topic-1")

  fresh = await runtime.lifecycle.start("outline:topic-1")

  assert fresh.reused is False
  expired = await runtime.lifecycle.get(started.session_id)
  assert expired.status == "error"
  assert expired.error_kind == "expired"
  assert expired.error_message == "Session timed out after 30 minutes"


@pytest.mark.anyio
async def test_stale_expiry_can_be_disabled(make_runtime) -> None:
  runtime = make_runtime(stale_session_seconds=0)
  started = await _seed_stale_session(runtime, "outline:topic-1")

  again = await runtime.lifecycle.start("outline:topic-1")
  assert again.reused is True
  assert (await runtime.lifecycle.get(started.session_id)).status == "in_progress"


@pytest.mark.anyio
async def test_dummy_engines_complete_through_auto_dispatch(make_runtime) -> None:
  runtime = make_runtime(build_dummy_engines(0), auto_dispatch=True)

  qa = await runtime.lifecycle.start("formatting_qa:a1", {"article": "See [x](https://example.com/?utm_source=chatgpt.com)."})
  audit = await runtime.lifecycle.start("semantic_audit:a1", {"article": "## Intro\n\ntext\n\n## Body\n\nmore"})
  await runtime.dispatcher.drain()

  qa_done = await runtime.lifecycle.get(qa.session_id)
  assert qa_done.status == "completed"
  assert len(qa_done.sub_results) == 8
  assert qa_done.final_payload is not None
  assert "utm_source" not in qa_done.final_payload["cleanedArticle"]

  audit_done = await runtime.lifecycle.get(audit.session_id)
  assert audit_done.status == "completed"
  assert audit_done.final_payload is not None
  assert audit_done.final_payload["optimizedArticle"].startswith("## Intro")
