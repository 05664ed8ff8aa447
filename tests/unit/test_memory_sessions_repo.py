from __future__ import annotations

import asyncio

import pytest

from gensessions.sessions.models import SessionRecord, SubResult
from gensessions.storage.memory_sessions_repo import InMemorySessionsRepository
from gensessions.utils.text import now_iso


def _candidate(session_id: str, subject_key: str = "outline:t1") -> SessionRecord:
  now = now_iso()
  return SessionRecord(session_id=session_id, subject_key=subject_key, subject_type="outline", version=0, status="queued", seed_input={}, created_at=now, updated_at=now)


@pytest.mark.anyio
async def test_create_if_no_active_returns_existing_active_session() -> None:
  repo = InMemorySessionsRepository()
  first, created = await repo.create_if_no_active(_candidate("a"))
  second, created_again = await repo.create_if_no_active(_candidate("b"))

  assert created is True
  assert created_again is False
  assert second.session_id == first.session_id == "a"
  assert await repo.get("b") is None


@pytest.mark.anyio
async def test_concurrent_creates_yield_one_active_session() -> None:
  repo = InMemorySessionsRepository()
  results = await asyncio.gather(*(repo.create_if_no_active(_candidate(f"s{index}")) for index in range(10)))

  assert sum(1 for _, created in results if created) == 1
  assert len({record.session_id for record, _ in results}) == 1


@pytest.mark.anyio
async def test_versions_increment_per_subject() -> None:
  repo = InMemorySessionsRepository()
  first, _ = await repo.create_if_no_active(_candidate("a"))
  await repo.transition("a", expected={"queued"}, status="cancelled")
  second, _ = await repo.create_if_no_active(_candidate("b"))
  other, _ = await repo.create_if_no_active(_candidate("c", subject_key="outline:t2"))

  assert (first.version, second.version, other.version) == (1, 2, 1)
  latest = await repo.latest_for_subject("outline:t1")
  assert latest is not None and latest.session_id == "b"


@pytest.mark.anyio
async def test_transition_is_compare_and_set() -> None:
  repo = InMemorySessionsRepository()
  await repo.create_if_no_active(_candidate("a"))

  assert await repo.transition("a", expected={"in_progress"}, status="completed") is None
  running = await repo.transition("a", expected={"queued"}, status="in_progress")
  assert running is not None and running.started_at is not None
  done = await repo.transition("a", expected={"in_progress"}, status="completed", final_payload={"ok": True})
  assert done is not None and done.final_payload == {"ok": True} and done.completed_at is not None
  assert await repo.transition("a", expected={"queued", "in_progress"}, status="cancelled") is None


@pytest.mark.anyio
async def test_upsert_replaces_by_ordinal_and_stops_after_terminal() -> None:
  repo = InMemorySessionsRepository()
  await repo.create_if_no_active(_candidate("a"))
  assert await repo.upsert_sub_result("a", SubResult(0, "c", "pending")) is None

  await repo.transition("a", expected={"queued"}, status="in_progress")
  await repo.upsert_sub_result("a", SubResult(1, "second", "pending"))
  await repo.upsert_sub_result("a", SubResult(0, "first", "pending"))
  record = await repo.upsert_sub_result("a", SubResult(1, "second", "passed"))
  assert record is not None
  assert [(item.ordinal, item.status) for item in record.sub_results] == [(0, "pending"), (1, "passed")]

  await repo.transition("a", expected={"in_progress"}, status="cancelled")
  assert await repo.upsert_sub_result("a", SubResult(2, "third", "passed")) is None
  assert await repo.update_progress("a", "late") is None
  stored = await repo.get("a")
  assert stored is not None and len(stored.sub_results) == 2


@pytest.mark.anyio
async def test_returned_records_are_copies() -> None:
  repo = InMemorySessionsRepository()
  record, _ = await repo.create_if_no_active(_candidate("a"))
  record.status = "completed"
  stored = await repo.get("a")
  assert stored is not None and stored.status == "queued"


@pytest.mark.anyio
async def test_list_stale_only_returns_old_active_sessions() -> None:
  repo = InMemorySessionsRepository()
  await repo.create_if_no_active(_candidate("a"))
  await repo.create_if_no_active(_candidate("b", subject_key="outline:t2"))
  await repo.transition("b", expected={"queued"}, status="cancelled")

  assert [item.session_id for item in await repo.list_stale(updated_before="9999-01-01T00:00:00.000000Z")] == ["a"]
  assert await repo.list_stale(updated_before="2000-01-01T00:00:00.000000Z") == []


@pytest.mark.anyio
async def test_phase_rows_track_session_and_input() -> None:
  repo = InMemorySessionsRepository()
  await repo.set_phase_session("brand_intelligence:acme", "research", "s-1")
  await repo.set_phase_input("brand_intelligence:acme", "input", {"answers": ["yes"]})
  phases = {state.phase_name: state for state in await repo.get_phases("brand_intelligence:acme")}
  assert phases["research"].session_id == "s-1"
  assert phases["input"].input_artifact == {"answers": ["yes"]}
  assert await repo.get_phases("brand_intelligence:other") == []
